from .convert import attachments_to_parts, convert_to_core_messages
from .ui_message import (
    Attachment,
    UIFilePart,
    UIMessage,
    UIMessagePart,
    UIReasoningPart,
    UISourcePart,
    UIStepStartPart,
    UITextPart,
    UIToolInvocation,
    UIToolInvocationPart,
)

__all__ = [
    "convert_to_core_messages",
    "attachments_to_parts",
    "Attachment",
    "UIMessage",
    "UIMessagePart",
    "UITextPart",
    "UIReasoningPart",
    "UIToolInvocation",
    "UIToolInvocationPart",
    "UISourcePart",
    "UIFilePart",
    "UIStepStartPart",
]

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from typing import Any, Literal

import pydantic

from ..ui import convert as convert_
from ..ui import ui_message as ui_message_
from . import errors as errors_
from . import messages as messages_
from . import tools as tools_

PromptType = Literal["messages", "ui-messages", "other"]
MessageCharacteristics = Literal[
    "has-ui-specific-parts", "has-core-specific-parts", "message", "other"
]

_CORE_MODELS = (
    messages_.SystemMessage,
    messages_.UserMessage,
    messages_.AssistantMessage,
    messages_.ToolMessage,
)
_UI_ONLY_ROLES = frozenset({"function", "data"})
_UI_ONLY_KEYS = frozenset(
    {"toolInvocations", "tool_invocations", "parts", "experimental_attachments"}
)
_CORE_ONLY_KEYS = frozenset(
    {"providerOptions", "provider_options", "experimental_providerMetadata"}
)
_CORE_ROLES = frozenset({"system", "user", "assistant", "tool"})


def detect_message_characteristics(message: Any) -> MessageCharacteristics:
    """Classify one caller-supplied message by the fields it carries."""
    if isinstance(message, ui_message_.UIMessage):
        return "has-ui-specific-parts"
    if isinstance(message, _CORE_MODELS):
        return "has-core-specific-parts"
    if not isinstance(message, Mapping):
        return "other"

    if message.get("role") in _UI_ONLY_ROLES or _UI_ONLY_KEYS & message.keys():
        return "has-ui-specific-parts"
    if "content" in message and (
        isinstance(message["content"], list) or _CORE_ONLY_KEYS & message.keys()
    ):
        return "has-core-specific-parts"
    if (
        "role" in message
        and isinstance(message.get("content"), str)
        and message["role"] in _CORE_ROLES
    ):
        return "message"
    return "other"


def detect_prompt_type(messages: Any) -> PromptType:
    """Tell core messages, UI messages and anything else apart.

    Pure function of the input. A single UI-only trait anywhere makes the
    whole list UI messages.
    """
    if isinstance(messages, (str, bytes)) or not isinstance(messages, Sequence):
        return "other"
    if not messages:
        return "messages"

    characteristics = [detect_message_characteristics(m) for m in messages]
    if "has-ui-specific-parts" in characteristics:
        return "ui-messages"
    if all(c in ("has-core-specific-parts", "message") for c in characteristics):
        return "messages"
    return "other"


@dataclasses.dataclass
class StandardizedPrompt:
    type: Literal["prompt", "messages"]
    messages: list[messages_.Message]
    system: str | None = None

    def to_model_messages(self) -> list[messages_.Message]:
        """The message list sent to the provider, system prompt first."""
        head: list[messages_.Message] = []
        if self.system is not None:
            head.append(messages_.SystemMessage(content=self.system))
        return head + list(self.messages)


def standardize_prompt(
    *,
    system: Any = None,
    prompt: Any = None,
    messages: Any = None,
    tools: tools_.ToolSet | None = None,
) -> StandardizedPrompt:
    """Normalize ``prompt`` or ``messages`` (exactly one) into core messages."""
    raw = {"system": system, "prompt": prompt, "messages": messages}

    if prompt is None and messages is None:
        raise errors_.InvalidPromptError(
            prompt=raw, message="prompt or messages must be defined"
        )
    if prompt is not None and messages is not None:
        raise errors_.InvalidPromptError(
            prompt=raw, message="prompt and messages cannot be defined at the same time"
        )
    if system is not None and not isinstance(system, str):
        raise errors_.InvalidPromptError(prompt=raw, message="system must be a string")

    if prompt is not None:
        if not isinstance(prompt, str):
            raise errors_.InvalidPromptError(
                prompt=raw, message="prompt must be a string"
            )
        return StandardizedPrompt(
            type="prompt",
            system=system,
            messages=[messages_.UserMessage(content=prompt)],
        )

    prompt_type = detect_prompt_type(messages)
    if prompt_type == "other":
        raise errors_.InvalidPromptError(
            prompt=raw, message="messages must be a list of core messages or UI messages"
        )

    try:
        if prompt_type == "ui-messages":
            core = convert_.convert_to_core_messages(messages, tools=tools)
        else:
            core = messages_.message_list_adapter.validate_python(list(messages))
    except pydantic.ValidationError as exc:
        raise errors_.InvalidPromptError(
            prompt=raw,
            message="messages must be a list of core messages or UI messages",
            cause=exc,
        ) from exc

    return StandardizedPrompt(type="messages", system=system, messages=core)

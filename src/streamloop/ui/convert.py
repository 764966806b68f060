"""Lowering of UI messages to core messages."""

from __future__ import annotations

import base64
import binascii
import json
import urllib.parse
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..core import errors as errors_
from ..core import messages as messages_
from ..core import tools as tools_
from . import ui_message


def _decode_data_url(url: str) -> tuple[str, str]:
    try:
        header, content = url.split(",", 1)
        mime_type = header.split(";")[0].split(":")[1]
    except (ValueError, IndexError) as exc:
        raise ValueError(f"Error processing data URL: {url}") from exc
    if not mime_type or not content:
        raise ValueError(f"Invalid data URL format: {url}")
    return mime_type, content


def attachments_to_parts(
    attachments: Iterable[ui_message.Attachment],
) -> list[messages_.UserContentPart]:
    """Turn browser attachments into user content parts.

    Remote http(s) URLs are kept as URLs. ``data:`` URLs are decoded, with
    ``text/*`` payloads inlined as text.
    """
    parts: list[messages_.UserContentPart] = []
    for attachment in attachments:
        try:
            parts.append(_attachment_part(attachment))
        except ValueError as exc:
            raise errors_.MessageConversionError(
                original_message=attachment, message=str(exc)
            ) from exc
    return parts


def _attachment_part(attachment: ui_message.Attachment) -> messages_.UserContentPart:
    scheme = urllib.parse.urlsplit(attachment.url).scheme
    content_type = attachment.content_type or ""

    match scheme:
        case "http" | "https":
            if content_type.startswith("image/"):
                return messages_.ImagePart(image=attachment.url)
            if not content_type:
                raise ValueError(
                    "If the attachment is not an image, it must specify a content type"
                )
            return messages_.FilePart(data=attachment.url, mime_type=content_type)
        case "data":
            _, content = _decode_data_url(attachment.url)
            if content_type.startswith("image/"):
                return messages_.ImagePart(image=_b64decode(content))
            if content_type.startswith("text/"):
                return messages_.TextPart(text=_b64decode(content).decode("utf-8"))
            if not content_type:
                raise ValueError(
                    "If the attachment is not an image or text, "
                    "it must specify a content type"
                )
            return messages_.FilePart(data=content, mime_type=content_type)
        case _:
            raise ValueError(f"Unsupported URL protocol: {scheme}:")


def _b64decode(content: str) -> bytes:
    try:
        return base64.b64decode(content, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"Invalid base64 content: {content[:32]}") from exc


def _tool_result_part(
    invocation: ui_message.UIToolInvocation,
    tools: Mapping[str, tools_.Tool],
    message: ui_message.UIMessage,
) -> messages_.ToolResultPart:
    if not invocation.has_result:
        raise errors_.MessageConversionError(
            original_message=message,
            message="ToolInvocation must have a result: "
            + json.dumps(invocation.model_dump(by_alias=True), default=str),
        )
    tool = tools.get(invocation.tool_name)
    if tool is not None and tool.to_tool_result_content is not None:
        content = tool.to_tool_result_content(invocation.result)
        return messages_.ToolResultPart(
            tool_call_id=invocation.tool_call_id,
            tool_name=invocation.tool_name,
            result=content,
            content=content,
        )
    return messages_.ToolResultPart(
        tool_call_id=invocation.tool_call_id,
        tool_name=invocation.tool_name,
        result=invocation.result,
    )


def _tool_call_part(invocation: ui_message.UIToolInvocation) -> messages_.ToolCallPart:
    return messages_.ToolCallPart(
        tool_call_id=invocation.tool_call_id,
        tool_name=invocation.tool_name,
        args=invocation.args,
    )


class _BlockWriter:
    """Groups assistant parts into blocks, one per model step."""

    def __init__(
        self,
        message: ui_message.UIMessage,
        tools: Mapping[str, tools_.Tool],
        out: list[messages_.Message],
    ) -> None:
        self.message = message
        self.tools = tools
        self.out = out
        self.block: list[ui_message.UIMessagePart] = []
        self.has_tool_invocations = False
        self.current_step = 0

    def add(self, part: ui_message.UIMessagePart) -> None:
        match part:
            case ui_message.UITextPart():
                if self.has_tool_invocations:
                    self.flush()
                self.block.append(part)
            case ui_message.UIFilePart() | ui_message.UIReasoningPart():
                self.block.append(part)
            case ui_message.UIToolInvocationPart(tool_invocation=inv):
                if (inv.step or 0) != self.current_step:
                    self.flush()
                self.block.append(part)
                self.has_tool_invocations = True
            case _:
                # step-start and source parts carry no model input
                pass

    def flush(self) -> None:
        content: list[messages_.AssistantContentPart] = []
        invocations: list[ui_message.UIToolInvocation] = []
        for part in self.block:
            match part:
                case ui_message.UITextPart(text=text):
                    content.append(messages_.TextPart(text=text))
                case ui_message.UIFilePart(data=data, mime_type=mime_type):
                    content.append(messages_.FilePart(data=data, mime_type=mime_type))
                case ui_message.UIReasoningPart(details=details):
                    for detail in details:
                        if isinstance(detail, ui_message.UIReasoningTextDetail):
                            content.append(
                                messages_.ReasoningPart(
                                    text=detail.text, signature=detail.signature
                                )
                            )
                        else:
                            content.append(
                                messages_.RedactedReasoningPart(data=detail.data)
                            )
                case ui_message.UIToolInvocationPart(tool_invocation=inv):
                    content.append(_tool_call_part(inv))
                    invocations.append(inv)

        self.out.append(messages_.AssistantMessage(content=content))
        if invocations:
            self.out.append(
                messages_.ToolMessage(
                    content=[
                        _tool_result_part(inv, self.tools, self.message)
                        for inv in invocations
                    ]
                )
            )

        self.block = []
        self.has_tool_invocations = False
        self.current_step += 1


def _convert_legacy_assistant(
    message: ui_message.UIMessage,
    tools: Mapping[str, tools_.Tool],
    is_last_message: bool,
    out: list[messages_.Message],
) -> None:
    invocations = message.tool_invocations or []
    if not invocations:
        out.append(messages_.AssistantMessage(content=message.content))
        return

    max_step = max((inv.step or 0) for inv in invocations)
    for step in range(max_step + 1):
        step_invocations = [inv for inv in invocations if (inv.step or 0) == step]
        if not step_invocations:
            continue

        content: list[messages_.AssistantContentPart] = []
        if is_last_message and message.content and step == 0:
            content.append(messages_.TextPart(text=message.content))
        content.extend(_tool_call_part(inv) for inv in step_invocations)
        out.append(messages_.AssistantMessage(content=content))
        out.append(
            messages_.ToolMessage(
                content=[
                    _tool_result_part(inv, tools, message) for inv in step_invocations
                ]
            )
        )

    if message.content and not is_last_message:
        out.append(messages_.AssistantMessage(content=message.content))


def convert_to_core_messages(
    messages: Sequence[ui_message.UIMessage | Mapping[str, Any]],
    *,
    tools: Mapping[str, tools_.Tool] | None = None,
) -> list[messages_.Message]:
    """Lower UI messages to core messages.

    Assistant messages with ``parts`` are split into one assistant message
    (plus one tool message when tools were invoked) per model step. A new
    block starts when a tool invocation belongs to a different step, or when
    text follows a block that already invoked tools.
    """
    tools = tools or {}
    core: list[messages_.Message] = []

    for i, raw in enumerate(messages):
        if isinstance(raw, ui_message.UIMessage):
            message = raw
        else:
            role = raw.get("role")
            if role not in ("system", "user", "assistant", "data"):
                raise errors_.MessageConversionError(
                    original_message=raw, message=f"Unsupported role: {role}"
                )
            message = ui_message.UIMessage.model_validate(raw)
        is_last_message = i == len(messages) - 1

        match message.role:
            case "system":
                core.append(messages_.SystemMessage(content=message.content))

            case "user":
                if message.experimental_attachments:
                    core.append(
                        messages_.UserMessage(
                            content=[
                                messages_.TextPart(text=message.content),
                                *attachments_to_parts(message.experimental_attachments),
                            ]
                        )
                    )
                else:
                    core.append(messages_.UserMessage(content=message.content))

            case "assistant":
                if message.parts is not None:
                    writer = _BlockWriter(message, tools, core)
                    for part in message.parts:
                        writer.add(part)
                    writer.flush()
                else:
                    _convert_legacy_assistant(message, tools, is_last_message, core)

            case "data":
                pass

    return core

"""Events emitted on the engine's full stream."""

from __future__ import annotations

import dataclasses
from typing import Any, Literal

from . import messages as messages_
from . import step as step_


@dataclasses.dataclass
class TextDeltaEvent:
    text_delta: str
    type: Literal["text-delta"] = dataclasses.field(default="text-delta", init=False)


@dataclasses.dataclass
class ReasoningEvent:
    text_delta: str
    type: Literal["reasoning"] = dataclasses.field(default="reasoning", init=False)


@dataclasses.dataclass
class ReasoningSignatureEvent:
    signature: str
    type: Literal["reasoning-signature"] = dataclasses.field(
        default="reasoning-signature", init=False
    )


@dataclasses.dataclass
class RedactedReasoningEvent:
    data: str
    type: Literal["redacted-reasoning"] = dataclasses.field(
        default="redacted-reasoning", init=False
    )


@dataclasses.dataclass
class SourceEvent:
    source: step_.Source
    type: Literal["source"] = dataclasses.field(default="source", init=False)


@dataclasses.dataclass
class FileEvent:
    file: step_.GeneratedFile
    type: Literal["file"] = dataclasses.field(default="file", init=False)


@dataclasses.dataclass
class ToolCallEvent:
    tool_call_id: str
    tool_name: str
    args: Any
    type: Literal["tool-call"] = dataclasses.field(default="tool-call", init=False)


@dataclasses.dataclass
class ToolCallStreamingStartEvent:
    tool_call_id: str
    tool_name: str
    type: Literal["tool-call-streaming-start"] = dataclasses.field(
        default="tool-call-streaming-start", init=False
    )


@dataclasses.dataclass
class ToolCallDeltaEvent:
    tool_call_id: str
    tool_name: str
    args_text_delta: str
    type: Literal["tool-call-delta"] = dataclasses.field(
        default="tool-call-delta", init=False
    )


@dataclasses.dataclass
class ToolResultEvent:
    tool_call_id: str
    tool_name: str
    args: Any
    result: Any
    type: Literal["tool-result"] = dataclasses.field(default="tool-result", init=False)


@dataclasses.dataclass
class StepStartEvent:
    message_id: str
    request: step_.RequestInfo = dataclasses.field(default_factory=step_.RequestInfo)
    warnings: list[Any] = dataclasses.field(default_factory=list)
    type: Literal["step-start"] = dataclasses.field(default="step-start", init=False)


@dataclasses.dataclass
class StepFinishEvent:
    message_id: str
    finish_reason: messages_.FinishReason
    usage: messages_.Usage
    response: step_.ResponseInfo
    is_continued: bool = False
    request: step_.RequestInfo = dataclasses.field(default_factory=step_.RequestInfo)
    warnings: list[Any] = dataclasses.field(default_factory=list)
    provider_metadata: dict[str, Any] | None = None
    type: Literal["step-finish"] = dataclasses.field(default="step-finish", init=False)


@dataclasses.dataclass
class FinishEvent:
    finish_reason: messages_.FinishReason
    usage: messages_.Usage
    response: step_.ResponseInfo | None = None
    provider_metadata: dict[str, Any] | None = None
    type: Literal["finish"] = dataclasses.field(default="finish", init=False)


@dataclasses.dataclass
class ErrorEvent:
    error: Any
    type: Literal["error"] = dataclasses.field(default="error", init=False)


@dataclasses.dataclass
class ObjectEvent:
    """A new partial object during object streaming."""

    object: Any
    type: Literal["object"] = dataclasses.field(default="object", init=False)


StreamEvent = (
    TextDeltaEvent
    | ReasoningEvent
    | ReasoningSignatureEvent
    | RedactedReasoningEvent
    | SourceEvent
    | FileEvent
    | ToolCallEvent
    | ToolCallStreamingStartEvent
    | ToolCallDeltaEvent
    | ToolResultEvent
    | StepStartEvent
    | StepFinishEvent
    | FinishEvent
    | ErrorEvent
)

ObjectStreamEvent = ObjectEvent | TextDeltaEvent | ErrorEvent | FinishEvent

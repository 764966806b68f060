from __future__ import annotations

import abc
import dataclasses
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any, Literal

from . import abort as abort_
from . import errors as errors_
from . import messages as messages_
from . import settings as settings_
from . import step as step_
from . import tools as tools_

# -- Provider stream parts -----------------------------------------------------


@dataclasses.dataclass
class TextDelta:
    text_delta: str
    type: Literal["text-delta"] = dataclasses.field(default="text-delta", init=False)


@dataclasses.dataclass
class ReasoningDelta:
    text_delta: str
    type: Literal["reasoning"] = dataclasses.field(default="reasoning", init=False)


@dataclasses.dataclass
class ReasoningSignature:
    signature: str
    type: Literal["reasoning-signature"] = dataclasses.field(
        default="reasoning-signature", init=False
    )


@dataclasses.dataclass
class RedactedReasoningDelta:
    data: str
    type: Literal["redacted-reasoning"] = dataclasses.field(
        default="redacted-reasoning", init=False
    )


@dataclasses.dataclass
class SourceChunk:
    source: step_.Source
    type: Literal["source"] = dataclasses.field(default="source", init=False)


@dataclasses.dataclass
class FileChunk:
    data: str | bytes
    mime_type: str
    type: Literal["file"] = dataclasses.field(default="file", init=False)


@dataclasses.dataclass
class ToolCallDelta:
    tool_call_id: str
    tool_name: str
    args_text_delta: str
    type: Literal["tool-call-delta"] = dataclasses.field(
        default="tool-call-delta", init=False
    )


@dataclasses.dataclass
class ToolCallChunk:
    tool_call_id: str
    tool_name: str
    args: str
    type: Literal["tool-call"] = dataclasses.field(default="tool-call", init=False)


@dataclasses.dataclass
class ResponseMetadata:
    id: str | None = None
    timestamp: Any = None
    model_id: str | None = None
    type: Literal["response-metadata"] = dataclasses.field(
        default="response-metadata", init=False
    )


@dataclasses.dataclass
class FinishChunk:
    finish_reason: messages_.FinishReason
    usage: messages_.Usage = dataclasses.field(default_factory=messages_.Usage)
    provider_metadata: dict[str, Any] | None = None
    type: Literal["finish"] = dataclasses.field(default="finish", init=False)


@dataclasses.dataclass
class ErrorChunk:
    error: Any
    type: Literal["error"] = dataclasses.field(default="error", init=False)


StreamPart = (
    TextDelta
    | ReasoningDelta
    | ReasoningSignature
    | RedactedReasoningDelta
    | SourceChunk
    | FileChunk
    | ToolCallDelta
    | ToolCallChunk
    | ResponseMetadata
    | FinishChunk
    | ErrorChunk
)


# -- Call options --------------------------------------------------------------


@dataclasses.dataclass
class FunctionTool:
    """What the model sees: name, description, and JSON Schema for parameters."""

    name: str
    parameters: dict[str, Any]
    description: str | None = None
    type: Literal["function"] = dataclasses.field(default="function", init=False)


@dataclasses.dataclass
class ToolChoice:
    type: Literal["auto", "none", "required", "tool"]
    tool_name: str | None = None


ToolChoiceLike = Literal["auto", "none", "required"] | Mapping[str, str] | ToolChoice


@dataclasses.dataclass
class RegularMode:
    tools: list[FunctionTool] | None = None
    tool_choice: ToolChoice | None = None
    type: Literal["regular"] = dataclasses.field(default="regular", init=False)


@dataclasses.dataclass
class ObjectJsonMode:
    schema: dict[str, Any] | None = None
    name: str | None = None
    description: str | None = None
    type: Literal["object-json"] = dataclasses.field(default="object-json", init=False)


@dataclasses.dataclass
class ObjectToolMode:
    tool: FunctionTool
    type: Literal["object-tool"] = dataclasses.field(default="object-tool", init=False)


Mode = RegularMode | ObjectJsonMode | ObjectToolMode


@dataclasses.dataclass
class ResponseFormat:
    type: Literal["text", "json"] = "text"
    schema: dict[str, Any] | None = None
    name: str | None = None
    description: str | None = None


@dataclasses.dataclass
class CallOptions:
    mode: Mode
    prompt: list[messages_.Message]
    input_format: Literal["prompt", "messages"] = "messages"
    response_format: ResponseFormat | None = None
    settings: settings_.CallSettings = dataclasses.field(
        default_factory=settings_.CallSettings
    )
    abort_signal: abort_.AbortSignal | None = None
    headers: dict[str, str] | None = None
    provider_options: dict[str, Any] | None = None


@dataclasses.dataclass
class CallWarning:
    type: Literal["unsupported-setting", "unsupported-tool", "other"]
    setting: str | None = None
    message: str | None = None


# -- Responses -----------------------------------------------------------------


@dataclasses.dataclass
class ProviderResponseInfo:
    id: str | None = None
    timestamp: Any = None
    model_id: str | None = None
    headers: dict[str, str] | None = None
    body: Any = None


@dataclasses.dataclass
class GenerateResponse:
    finish_reason: messages_.FinishReason
    usage: messages_.Usage
    text: str | None = None
    reasoning: str | list[step_.ReasoningDetail] | None = None
    tool_calls: list[step_.ToolCall] | None = None
    files: list[step_.GeneratedFile] | None = None
    sources: list[step_.Source] | None = None
    warnings: list[CallWarning] | None = None
    request: step_.RequestInfo | None = None
    response: ProviderResponseInfo | None = None
    provider_metadata: dict[str, Any] | None = None


@dataclasses.dataclass
class StreamResponse:
    stream: AsyncIterator[StreamPart]
    warnings: list[CallWarning] | None = None
    request: step_.RequestInfo | None = None
    response: ProviderResponseInfo | None = None


class LanguageModel(abc.ABC):
    """The provider-facing contract the engine drives."""

    specification_version: str = "v1"
    provider: str = "unknown"
    model_id: str = "unknown"
    supports_structured_outputs: bool = False
    supports_image_urls: bool = True
    default_object_generation_mode: Literal["json", "tool"] | None = "json"

    @abc.abstractmethod
    async def do_generate(self, options: CallOptions) -> GenerateResponse:
        raise NotImplementedError

    @abc.abstractmethod
    async def do_stream(self, options: CallOptions) -> StreamResponse:
        raise NotImplementedError


# -- Tool preparation ----------------------------------------------------------


def _normalize_tool_choice(tool_choice: ToolChoiceLike | None) -> ToolChoice:
    match tool_choice:
        case None:
            return ToolChoice(type="auto")
        case ToolChoice():
            return tool_choice
        case "auto" | "none" | "required":
            return ToolChoice(type=tool_choice)
        case {"type": "tool", "tool_name": str(name)} | {
            "type": "tool",
            "toolName": str(name),
        }:
            return ToolChoice(type="tool", tool_name=name)
        case _:
            raise errors_.InvalidArgumentError(
                parameter="tool_choice",
                value=tool_choice,
                message="tool_choice must be 'auto', 'none', 'required' "
                "or {'type': 'tool', 'tool_name': ...}",
            )


def prepare_tools_and_tool_choice(
    tools: tools_.ToolSet | None,
    tool_choice: ToolChoiceLike | None = None,
    active_tools: Sequence[str] | None = None,
) -> RegularMode:
    """Turn a tool set into the function definitions sent to the provider."""
    if not tools:
        return RegularMode()

    selected = (
        {name: t for name, t in tools.items() if name in active_tools}
        if active_tools is not None
        else dict(tools)
    )
    return RegularMode(
        tools=[
            FunctionTool(
                name=name,
                description=t.description,
                parameters=t.parameters.json_schema,
            )
            for name, t in selected.items()
        ],
        tool_choice=_normalize_tool_choice(tool_choice),
    )

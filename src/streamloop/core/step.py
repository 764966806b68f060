"""Step record types produced by the step loop."""

from __future__ import annotations

import base64
import datetime
from dataclasses import dataclass, field
from typing import Any, Literal

from . import messages as messages_


@dataclass
class ToolCall:
    """A tool call as proposed by the model; ``args`` is raw JSON text."""

    tool_call_id: str
    tool_name: str
    args: str
    tool_call_type: Literal["function"] = "function"


@dataclass
class ResolvedToolCall:
    """A tool call whose arguments were validated against the tool's schema."""

    tool_call_id: str
    tool_name: str
    args: Any
    type: Literal["tool-call"] = field(default="tool-call", init=False)


@dataclass
class ToolResult:
    tool_call_id: str
    tool_name: str
    args: Any
    result: Any
    type: Literal["tool-result"] = field(default="tool-result", init=False)


@dataclass
class ReasoningText:
    text: str
    signature: str | None = None
    type: Literal["text"] = field(default="text", init=False)


@dataclass
class RedactedReasoning:
    data: str
    type: Literal["redacted"] = field(default="redacted", init=False)


ReasoningDetail = ReasoningText | RedactedReasoning


def reasoning_text(details: list[ReasoningDetail]) -> str | None:
    """Concatenated visible reasoning, or ``None`` when there is none."""
    texts = [d.text for d in details if isinstance(d, ReasoningText)]
    return "".join(texts) if texts else None


@dataclass
class Source:
    id: str
    url: str
    title: str | None = None
    source_type: Literal["url"] = "url"
    provider_metadata: dict[str, Any] | None = None


@dataclass
class GeneratedFile:
    """A file produced by the model. ``data`` is base64 text or raw bytes."""

    data: str | bytes
    mime_type: str

    @property
    def as_base64(self) -> str:
        if isinstance(self.data, bytes):
            return base64.b64encode(self.data).decode("ascii")
        return self.data

    @property
    def as_bytes(self) -> bytes:
        if isinstance(self.data, bytes):
            return self.data
        return base64.b64decode(self.data)


@dataclass
class RequestInfo:
    body: Any = None


@dataclass
class ResponseInfo:
    id: str
    timestamp: datetime.datetime
    model_id: str
    headers: dict[str, str] | None = None
    body: Any = None
    messages: list[messages_.ResponseMessage] = field(default_factory=list)


StepType = Literal["initial", "continue", "tool-result"]


@dataclass
class StepResult:
    """Everything that happened in one model round trip."""

    step_type: StepType
    text: str
    finish_reason: messages_.FinishReason
    usage: messages_.Usage
    response: ResponseInfo
    reasoning: str | None = None
    reasoning_details: list[ReasoningDetail] = field(default_factory=list)
    files: list[GeneratedFile] = field(default_factory=list)
    sources: list[Source] = field(default_factory=list)
    tool_calls: list[ResolvedToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    warnings: list[Any] = field(default_factory=list)
    request: RequestInfo = field(default_factory=RequestInfo)
    is_continued: bool = False
    provider_metadata: dict[str, Any] | None = None

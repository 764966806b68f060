from __future__ import annotations

import uuid
from typing import Annotated, Any, Literal

import pydantic

FinishReason = Literal[
    "stop", "length", "content-filter", "tool-calls", "error", "other", "unknown"
]


def _gen_id() -> str:
    return uuid.uuid4().hex[:12]


def generate_id(prefix: str | None = None, size: int = 24) -> str:
    """Random id, optionally prefixed (``msg-...``, ``aitxt-...``)."""
    body = uuid.uuid4().hex[:size]
    return f"{prefix}-{body}" if prefix else body


class _Model(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(populate_by_name=True)


# -- Parts ---------------------------------------------------------------------


class TextPart(_Model):
    text: str
    type: Literal["text"] = "text"
    provider_options: dict[str, Any] | None = pydantic.Field(
        default=None, alias="providerOptions"
    )


class ImagePart(_Model):
    # URL, data URL or base64 string, or raw bytes
    image: str | bytes
    mime_type: str | None = pydantic.Field(default=None, alias="mimeType")
    type: Literal["image"] = "image"
    provider_options: dict[str, Any] | None = pydantic.Field(
        default=None, alias="providerOptions"
    )


class FilePart(_Model):
    data: str | bytes
    mime_type: str = pydantic.Field(alias="mimeType")
    filename: str | None = None
    type: Literal["file"] = "file"
    provider_options: dict[str, Any] | None = pydantic.Field(
        default=None, alias="providerOptions"
    )


class ReasoningPart(_Model):
    text: str
    # Anthropic-style thinking blocks carry a signature that must round-trip.
    signature: str | None = None
    type: Literal["reasoning"] = "reasoning"
    provider_options: dict[str, Any] | None = pydantic.Field(
        default=None, alias="providerOptions"
    )


class RedactedReasoningPart(_Model):
    data: str
    type: Literal["redacted-reasoning"] = "redacted-reasoning"
    provider_options: dict[str, Any] | None = pydantic.Field(
        default=None, alias="providerOptions"
    )


class ToolCallPart(_Model):
    tool_call_id: str = pydantic.Field(alias="toolCallId")
    tool_name: str = pydantic.Field(alias="toolName")
    args: Any = None
    type: Literal["tool-call"] = "tool-call"
    provider_options: dict[str, Any] | None = pydantic.Field(
        default=None, alias="providerOptions"
    )


class ToolResultPart(_Model):
    tool_call_id: str = pydantic.Field(alias="toolCallId")
    tool_name: str = pydantic.Field(alias="toolName")
    result: Any = None
    is_error: bool | None = pydantic.Field(default=None, alias="isError")
    # rich content produced by a tool's ``to_tool_result_content`` hook
    content: list[dict[str, Any]] | None = None
    type: Literal["tool-result"] = "tool-result"
    provider_options: dict[str, Any] | None = pydantic.Field(
        default=None, alias="providerOptions"
    )


UserContentPart = Annotated[
    TextPart | ImagePart | FilePart, pydantic.Field(discriminator="type")
]

AssistantContentPart = Annotated[
    TextPart | FilePart | ReasoningPart | RedactedReasoningPart | ToolCallPart,
    pydantic.Field(discriminator="type"),
]


# -- Messages ------------------------------------------------------------------


class SystemMessage(_Model):
    content: str
    role: Literal["system"] = "system"
    provider_options: dict[str, Any] | None = pydantic.Field(
        default=None, alias="providerOptions"
    )


class UserMessage(_Model):
    content: str | list[UserContentPart]
    role: Literal["user"] = "user"
    provider_options: dict[str, Any] | None = pydantic.Field(
        default=None, alias="providerOptions"
    )


class AssistantMessage(_Model):
    content: str | list[AssistantContentPart]
    role: Literal["assistant"] = "assistant"
    id: str | None = None
    provider_options: dict[str, Any] | None = pydantic.Field(
        default=None, alias="providerOptions"
    )

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        if isinstance(self.content, str):
            return []
        return [p for p in self.content if isinstance(p, ToolCallPart)]


class ToolMessage(_Model):
    content: list[ToolResultPart]
    role: Literal["tool"] = "tool"
    id: str | None = None
    provider_options: dict[str, Any] | None = pydantic.Field(
        default=None, alias="providerOptions"
    )


Message = Annotated[
    SystemMessage | UserMessage | AssistantMessage | ToolMessage,
    pydantic.Field(discriminator="role"),
]

ResponseMessage = AssistantMessage | ToolMessage

message_list_adapter: pydantic.TypeAdapter[list[Message]] = pydantic.TypeAdapter(
    list[Message]
)


# -- Usage ---------------------------------------------------------------------


class Usage(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_tokens(cls, prompt_tokens: int, completion_tokens: int) -> Usage:
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


def make_messages(*, system: str | None = None, user: str) -> list[Message]:
    """Convenience builder for common system + user message pattern."""
    result: list[Message] = []
    if system is not None:
        result.append(SystemMessage(content=system))
    result.append(UserMessage(content=user))
    return result

"""
Pydantic models for chat-UI flavoured messages.

These can be used directly with FastAPI (or any JSON payload) and are lowered
to core messages by ``convert_to_core_messages``. Keys accept both the
camelCase names used by browser clients and snake_case names.
"""

from __future__ import annotations

import uuid
from typing import Any, Literal, cast

import pydantic


def _generate_id(prefix: str = "id") -> str:
    """Generate a unique ID with prefix."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class _UIModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(populate_by_name=True)


class UITextPart(_UIModel):
    type: Literal["text"] = "text"
    text: str


class UIReasoningTextDetail(_UIModel):
    type: Literal["text"] = "text"
    text: str
    signature: str | None = None


class UIReasoningRedactedDetail(_UIModel):
    type: Literal["redacted"] = "redacted"
    data: str


UIReasoningDetail = UIReasoningTextDetail | UIReasoningRedactedDetail


class UIReasoningPart(_UIModel):
    type: Literal["reasoning"] = "reasoning"
    reasoning: str
    details: list[UIReasoningDetail] = pydantic.Field(default_factory=list)

    @pydantic.model_validator(mode="after")
    def _default_details(self) -> UIReasoningPart:
        # older clients only send the flat reasoning text
        if not self.details and self.reasoning:
            self.details = [UIReasoningTextDetail(text=self.reasoning)]
        return self


# Tool invocation states:
# - "partial-call": arguments are still streaming
# - "call": arguments are complete, no result yet
# - "result": the tool ran and ``result`` is set
UIToolInvocationState = Literal["partial-call", "call", "result"]


class UIToolInvocation(_UIModel):
    state: UIToolInvocationState = "call"
    step: int | None = None
    tool_call_id: str = pydantic.Field(alias="toolCallId")
    tool_name: str = pydantic.Field(alias="toolName")
    args: Any = None
    result: Any = None

    @property
    def has_result(self) -> bool:
        return "result" in self.model_fields_set or self.state == "result"


class UIToolInvocationPart(_UIModel):
    type: Literal["tool-invocation"] = "tool-invocation"
    tool_invocation: UIToolInvocation = pydantic.Field(alias="toolInvocation")


class UISourcePart(_UIModel):
    type: Literal["source"] = "source"
    source: dict[str, Any]


class UIFilePart(_UIModel):
    type: Literal["file"] = "file"
    mime_type: str = pydantic.Field(alias="mimeType")
    data: str


class UIStepStartPart(_UIModel):
    """Step boundary marker. Skipped during conversion to core messages."""

    type: Literal["step-start"] = "step-start"


UIMessagePart = (
    UITextPart
    | UIReasoningPart
    | UIToolInvocationPart
    | UISourcePart
    | UIFilePart
    | UIStepStartPart
)


_UI_PART_TYPES: dict[str, type[pydantic.BaseModel]] = {
    "text": UITextPart,
    "reasoning": UIReasoningPart,
    "tool-invocation": UIToolInvocationPart,
    "source": UISourcePart,
    "file": UIFilePart,
    "step-start": UIStepStartPart,
}


def _parse_ui_part(part_data: dict[str, Any]) -> UIMessagePart | None:
    """Parse a UI part dict. Returns None for unknown part types (skipped)."""
    if model_cls := _UI_PART_TYPES.get(part_data.get("type", "")):
        return cast(UIMessagePart, model_cls.model_validate(part_data))
    return None


class Attachment(_UIModel):
    url: str
    name: str | None = None
    content_type: str | None = pydantic.Field(default=None, alias="contentType")


class UIMessage(_UIModel):
    id: str = pydantic.Field(default_factory=lambda: _generate_id("msg"))
    role: Literal["system", "user", "assistant", "data"]
    content: str = ""
    parts: list[UIMessagePart] | None = None
    tool_invocations: list[UIToolInvocation] | None = pydantic.Field(
        default=None, alias="toolInvocations"
    )
    experimental_attachments: list[Attachment] | None = None
    annotations: list[Any] | None = None
    reasoning: str | None = None

    @pydantic.field_validator("parts", mode="before")
    @classmethod
    def parse_parts(cls, v: Any) -> Any:
        """Parse parts using the type dispatcher, dropping unknown kinds."""
        if not isinstance(v, list):
            return v
        result: list[UIMessagePart] = []
        for part_data in v:
            if isinstance(part_data, dict):
                parsed = _parse_ui_part(part_data)
                if parsed is not None:
                    result.append(parsed)
            else:
                # Already parsed
                result.append(part_data)
        return result

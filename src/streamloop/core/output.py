"""Structured output definitions for ``generate_text`` / ``stream_text``."""

from __future__ import annotations

import dataclasses
from typing import Any, Literal, Protocol

from . import errors as errors_
from . import llm as llm_
from . import output_strategy as output_strategy_
from . import partial_json as partial_json_
from . import schema as schema_


@dataclasses.dataclass
class ParsedPartial:
    partial: Any


@dataclasses.dataclass
class OutputContext:
    response: Any = None
    usage: Any = None


class Output(Protocol):
    type: Literal["text", "object"]

    def response_format(self, model: llm_.LanguageModel) -> llm_.ResponseFormat: ...

    def inject_into_system_prompt(
        self, system: str | None, model: llm_.LanguageModel
    ) -> str | None: ...

    def parse_partial(self, text: str) -> ParsedPartial | None: ...

    def parse_output(self, text: str, context: OutputContext) -> Any: ...


class TextOutput:
    type: Literal["text"] = "text"

    def response_format(self, model: llm_.LanguageModel) -> llm_.ResponseFormat:
        return llm_.ResponseFormat(type="text")

    def inject_into_system_prompt(
        self, system: str | None, model: llm_.LanguageModel
    ) -> str | None:
        return system

    def parse_partial(self, text: str) -> ParsedPartial | None:
        return ParsedPartial(partial=text)

    def parse_output(self, text: str, context: OutputContext) -> Any:
        return text


class ObjectOutput:
    type: Literal["object"] = "object"

    def __init__(self, schema: schema_.SchemaLike) -> None:
        self.schema = schema_.as_schema(schema)

    def response_format(self, model: llm_.LanguageModel) -> llm_.ResponseFormat:
        return llm_.ResponseFormat(
            type="json",
            schema=self.schema.json_schema if model.supports_structured_outputs else None,
        )

    def inject_into_system_prompt(
        self, system: str | None, model: llm_.LanguageModel
    ) -> str | None:
        if model.supports_structured_outputs:
            return system
        return output_strategy_.inject_json_instruction(system, self.schema.json_schema)

    def parse_partial(self, text: str) -> ParsedPartial | None:
        result = partial_json_.parse_partial_json(text)
        if result.state in ("failed-parse", "undefined-input"):
            return None
        # partial values are not validated
        return ParsedPartial(partial=result.value)

    def parse_output(self, text: str, context: OutputContext) -> Any:
        parsed = schema_.safe_parse_json(text)
        if not parsed.success:
            raise errors_.NoObjectGeneratedError(
                "No object generated: could not parse the response.",
                text=text,
                response=context.response,
                usage=context.usage,
                cause=parsed.error,
            )
        validated = schema_.safe_validate_types(parsed.value, self.schema)
        if not validated.success:
            raise errors_.NoObjectGeneratedError(
                "No object generated: response did not match schema.",
                text=text,
                response=context.response,
                usage=context.usage,
                cause=validated.error,
            )
        return validated.value


def text() -> TextOutput:
    return TextOutput()


def object(schema: schema_.SchemaLike) -> ObjectOutput:
    return ObjectOutput(schema)

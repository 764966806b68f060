"""
Shaping and validation of structured model output.

Each strategy is selected once per call. The object generation loops never
look at the output kind themselves; they only go through
``validate_partial_result``, ``validate_final_result`` and
``create_element_stream``.
"""

from __future__ import annotations

import abc
import dataclasses
import json
from collections.abc import AsyncIterable, AsyncIterator, Sequence
from typing import Any, Literal

import pydantic

from . import errors as errors_
from . import events as events_
from . import schema as schema_

OutputKind = Literal["object", "array", "enum", "no-schema"]

_DRAFT_07 = "http://json-schema.org/draft-07/schema#"


def _json_default(value: Any) -> Any:
    if isinstance(value, pydantic.BaseModel):
        return value.model_dump(mode="json")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json_text(value: Any) -> str:
    """Compact JSON, matching what a browser's ``JSON.stringify`` produces."""
    return json.dumps(value, separators=(",", ":"), default=_json_default)


@dataclasses.dataclass
class PartialResult:
    partial: Any
    text_delta: str


@dataclasses.dataclass
class FinalResultContext:
    text: str
    response: Any = None
    usage: Any = None


class OutputStrategy(abc.ABC):
    type: OutputKind
    json_schema: dict[str, Any] | None = None

    @abc.abstractmethod
    def validate_partial_result(
        self,
        value: Any,
        *,
        text_delta: str,
        latest_object: Any,
        is_first_delta: bool,
        is_final_delta: bool,
    ) -> schema_.ValidationResult:
        """On success ``value`` is a ``PartialResult``."""

    @abc.abstractmethod
    def validate_final_result(
        self, value: Any, context: FinalResultContext
    ) -> schema_.ValidationResult: ...

    def create_element_stream(
        self, stream: AsyncIterable[events_.ObjectStreamEvent]
    ) -> AsyncIterator[Any]:
        raise errors_.UnsupportedFunctionalityError(
            functionality=f"element streams in {self.type} mode"
        )


class NoSchemaOutputStrategy(OutputStrategy):
    type = "no-schema"

    def validate_partial_result(
        self,
        value: Any,
        *,
        text_delta: str,
        latest_object: Any,
        is_first_delta: bool,
        is_final_delta: bool,
    ) -> schema_.ValidationResult:
        return schema_.ValidationResult(
            success=True, value=PartialResult(partial=value, text_delta=text_delta)
        )

    def validate_final_result(
        self, value: Any, context: FinalResultContext
    ) -> schema_.ValidationResult:
        if value is None:
            return schema_.ValidationResult(
                success=False,
                error=errors_.NoObjectGeneratedError(
                    "No object generated: response did not match schema.",
                    text=context.text,
                    response=context.response,
                    usage=context.usage,
                ),
            )
        return schema_.ValidationResult(success=True, value=value)


class ObjectOutputStrategy(OutputStrategy):
    type = "object"

    def __init__(self, schema: schema_.Schema) -> None:
        self.schema = schema
        self.json_schema = schema.json_schema

    def validate_partial_result(
        self,
        value: Any,
        *,
        text_delta: str,
        latest_object: Any,
        is_first_delta: bool,
        is_final_delta: bool,
    ) -> schema_.ValidationResult:
        # partial objects are forwarded unvalidated so fields can fill in
        return schema_.ValidationResult(
            success=True, value=PartialResult(partial=value, text_delta=text_delta)
        )

    def validate_final_result(
        self, value: Any, context: FinalResultContext
    ) -> schema_.ValidationResult:
        return schema_.safe_validate_types(value, self.schema)


def _elements_error(value: Any) -> schema_.ValidationResult:
    return schema_.ValidationResult(
        success=False,
        error=errors_.TypeValidationError(
            value=value,
            cause=ValueError(
                "value must be an object that contains an array of elements"
            ),
        ),
    )


class ArrayOutputStrategy(OutputStrategy):
    """Streams a list of elements, wrapped as ``{"elements": [...]}`` for the model."""

    type = "array"

    def __init__(self, schema: schema_.Schema) -> None:
        self.schema = schema
        item_schema = {k: v for k, v in schema.json_schema.items() if k != "$schema"}
        self.json_schema = {
            "$schema": _DRAFT_07,
            "type": "object",
            "properties": {"elements": {"type": "array", "items": item_schema}},
            "required": ["elements"],
            "additionalProperties": False,
        }

    def validate_partial_result(
        self,
        value: Any,
        *,
        text_delta: str,
        latest_object: Any,
        is_first_delta: bool,
        is_final_delta: bool,
    ) -> schema_.ValidationResult:
        if not isinstance(value, dict) or not isinstance(value.get("elements"), list):
            return _elements_error(value)

        elements: list[Any] = value["elements"]
        validated: list[Any] = []
        for i, element in enumerate(elements):
            # the last element may still be streaming
            if i == len(elements) - 1 and not is_final_delta:
                continue
            result = schema_.safe_validate_types(element, self.schema)
            if not result.success:
                return result
            validated.append(result.value)

        published = len(latest_object) if latest_object is not None else 0
        delta = ""
        if is_first_delta:
            delta += "["
        if published > 0:
            delta += ","
        delta += ",".join(to_json_text(e) for e in validated[published:])
        if is_final_delta:
            delta += "]"

        return schema_.ValidationResult(
            success=True, value=PartialResult(partial=validated, text_delta=delta)
        )

    def validate_final_result(
        self, value: Any, context: FinalResultContext
    ) -> schema_.ValidationResult:
        if not isinstance(value, dict) or not isinstance(value.get("elements"), list):
            return _elements_error(value)

        validated: list[Any] = []
        for element in value["elements"]:
            result = schema_.safe_validate_types(element, self.schema)
            if not result.success:
                return result
            validated.append(result.value)
        return schema_.ValidationResult(success=True, value=validated)

    async def create_element_stream(
        self, stream: AsyncIterable[events_.ObjectStreamEvent]
    ) -> AsyncIterator[Any]:
        published = 0
        async for event in stream:
            if isinstance(event, events_.ObjectEvent):
                array = event.object
                while published < len(array):
                    yield array[published]
                    published += 1


class EnumOutputStrategy(OutputStrategy):
    type = "enum"

    def __init__(self, enum_values: Sequence[str]) -> None:
        self.enum_values = list(enum_values)
        self.json_schema = {
            "$schema": _DRAFT_07,
            "type": "object",
            "properties": {"result": {"type": "string", "enum": self.enum_values}},
            "required": ["result"],
            "additionalProperties": False,
        }

    def validate_partial_result(
        self,
        value: Any,
        *,
        text_delta: str,
        latest_object: Any,
        is_first_delta: bool,
        is_final_delta: bool,
    ) -> schema_.ValidationResult:
        raise errors_.UnsupportedFunctionalityError(
            functionality="partial results in enum mode"
        )

    def validate_final_result(
        self, value: Any, context: FinalResultContext
    ) -> schema_.ValidationResult:
        if not isinstance(value, dict) or not isinstance(value.get("result"), str):
            return schema_.ValidationResult(
                success=False,
                error=errors_.TypeValidationError(
                    value=value,
                    cause=ValueError(
                        'value must be an object that contains a string in the '
                        '"result" property.'
                    ),
                ),
            )
        result = value["result"]
        if result not in self.enum_values:
            return schema_.ValidationResult(
                success=False,
                error=errors_.TypeValidationError(
                    value=value, cause=ValueError("value must be a string in the enum")
                ),
            )
        return schema_.ValidationResult(success=True, value=result)


def get_output_strategy(
    output: OutputKind,
    schema: schema_.SchemaLike | None = None,
    enum_values: Sequence[str] | None = None,
) -> OutputStrategy:
    match output:
        case "object":
            return ObjectOutputStrategy(schema_.as_schema(schema))
        case "array":
            return ArrayOutputStrategy(schema_.as_schema(schema))
        case "enum":
            return EnumOutputStrategy(enum_values or [])
        case "no-schema":
            return NoSchemaOutputStrategy()
        case _:
            raise ValueError(f"Unsupported output: {output}")


def _invalid(parameter: str, value: Any, message: str) -> errors_.InvalidArgumentError:
    return errors_.InvalidArgumentError(
        parameter=parameter, value=value, message=message
    )


def validate_object_generation_input(
    *,
    output: Any,
    mode: str | None = None,
    schema: Any = None,
    schema_name: str | None = None,
    schema_description: str | None = None,
    enum_values: Sequence[Any] | None = None,
) -> None:
    """Reject argument combinations that make no sense for ``output``."""
    if output is not None and output not in ("object", "array", "enum", "no-schema"):
        raise _invalid("output", output, "Invalid output type.")

    match output:
        case "no-schema":
            if mode in ("auto", "tool"):
                raise _invalid("mode", mode, 'Mode must be "json" for no-schema output.')
            if schema is not None:
                raise _invalid(
                    "schema", schema, "Schema is not supported for no-schema output."
                )
            if schema_description is not None:
                raise _invalid(
                    "schema_description",
                    schema_description,
                    "Schema description is not supported for no-schema output.",
                )
            if schema_name is not None:
                raise _invalid(
                    "schema_name",
                    schema_name,
                    "Schema name is not supported for no-schema output.",
                )
            if enum_values is not None:
                raise _invalid(
                    "enum_values",
                    enum_values,
                    "Enum values are not supported for no-schema output.",
                )

        case "object" | "array":
            if schema is None:
                required = "Schema" if output == "object" else "Element schema"
                raise _invalid(
                    "schema", schema, f"{required} is required for {output} output."
                )
            if enum_values is not None:
                raise _invalid(
                    "enum_values",
                    enum_values,
                    f"Enum values are not supported for {output} output.",
                )

        case "enum":
            if schema is not None:
                raise _invalid("schema", schema, "Schema is not supported for enum output.")
            if schema_description is not None:
                raise _invalid(
                    "schema_description",
                    schema_description,
                    "Schema description is not supported for enum output.",
                )
            if schema_name is not None:
                raise _invalid(
                    "schema_name",
                    schema_name,
                    "Schema name is not supported for enum output.",
                )
            if enum_values is None:
                raise _invalid(
                    "enum_values", enum_values, "Enum values are required for enum output."
                )
            for value in enum_values:
                if not isinstance(value, str):
                    raise _invalid("enum_values", value, "Enum values must be strings.")


_DEFAULT_SCHEMA_PREFIX = "JSON schema:"
_DEFAULT_SCHEMA_SUFFIX = (
    "You MUST answer with a JSON object that matches the JSON schema above."
)
_DEFAULT_GENERIC_SUFFIX = "You MUST answer with JSON."


def inject_json_instruction(
    prompt: str | None,
    schema: dict[str, Any] | None = None,
    *,
    schema_prefix: str | None = None,
    schema_suffix: str | None = None,
) -> str:
    """Append a JSON answering instruction (with the schema, if any) to a system prompt."""
    if schema_prefix is None and schema is not None:
        schema_prefix = _DEFAULT_SCHEMA_PREFIX
    if schema_suffix is None:
        schema_suffix = (
            _DEFAULT_SCHEMA_SUFFIX if schema is not None else _DEFAULT_GENERIC_SUFFIX
        )

    lines: list[str | None] = [
        prompt or None,
        "" if prompt else None,
        schema_prefix,
        json.dumps(schema, separators=(",", ":")) if schema is not None else None,
        schema_suffix,
    ]
    return "\n".join(line for line in lines if line is not None)

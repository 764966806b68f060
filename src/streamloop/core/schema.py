from __future__ import annotations

import dataclasses
import json
from collections.abc import Callable
from typing import Any

import jsonschema
import jsonschema.validators
import pydantic

from . import errors as errors_


@dataclasses.dataclass
class ValidationResult:
    success: bool
    value: Any = None
    error: BaseException | None = None


def _ok(value: Any) -> ValidationResult:
    return ValidationResult(success=True, value=value)


def _fail(error: BaseException) -> ValidationResult:
    return ValidationResult(success=False, error=error)


@dataclasses.dataclass
class Schema:
    """A JSON schema paired with a validator producing typed values.

    ``validate`` raises on mismatch and returns the (possibly converted)
    value otherwise. When it is ``None`` every value is accepted.
    """

    json_schema: dict[str, Any]
    validate: Callable[[Any], Any] | None = None


SchemaLike = Schema | type[pydantic.BaseModel] | pydantic.TypeAdapter[Any] | dict[str, Any]


def json_schema(raw: dict[str, Any]) -> Schema:
    """Wrap a raw JSON schema dict, validating values with ``jsonschema``."""
    cls = jsonschema.validators.validator_for(raw, default=jsonschema.Draft7Validator)
    cls.check_schema(raw)
    validator = cls(raw)

    def validate(value: Any) -> Any:
        error = jsonschema.exceptions.best_match(validator.iter_errors(value))
        if error is not None:
            raise error
        return value

    return Schema(json_schema=raw, validate=validate)


def as_schema(schema: SchemaLike | None) -> Schema:
    match schema:
        case None:
            return Schema(json_schema={"properties": {}, "additionalProperties": False})
        case Schema():
            return schema
        case type() if issubclass(schema, pydantic.BaseModel):
            model = schema
            return Schema(
                json_schema=model.model_json_schema(), validate=model.model_validate
            )
        case pydantic.TypeAdapter():
            adapter = schema
            return Schema(
                json_schema=adapter.json_schema(), validate=adapter.validate_python
            )
        case dict():
            return json_schema(schema)
        case _:
            raise TypeError(f"Unsupported schema type: {type(schema).__name__}")


def safe_validate_types(value: Any, schema: SchemaLike) -> ValidationResult:
    schema = as_schema(schema)
    if schema.validate is None:
        return _ok(value)
    try:
        return _ok(schema.validate(value))
    except (pydantic.ValidationError, jsonschema.ValidationError, ValueError, TypeError) as exc:
        return _fail(errors_.TypeValidationError(value=value, cause=exc))


def safe_parse_json(text: str, schema: SchemaLike | None = None) -> ValidationResult:
    """Parse JSON text, then validate it against ``schema`` when given."""
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        return _fail(errors_.JSONParseError(text=text, cause=exc))
    if schema is None:
        return _ok(value)
    return safe_validate_types(value, schema)


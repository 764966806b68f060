from __future__ import annotations

from typing import Any

import pydantic

from . import errors as errors_


class CallSettings(pydantic.BaseModel):
    """Sampling and length settings forwarded to the model provider."""

    model_config = pydantic.ConfigDict(strict=True, extra="forbid", frozen=True)

    max_tokens: int | None = pydantic.Field(default=None, ge=1)
    temperature: float | None = 0
    top_p: float | None = None
    top_k: float | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    stop_sequences: list[str] | None = None
    seed: int | None = None

    @pydantic.field_validator("stop_sequences")
    @classmethod
    def _empty_stop_sequences(cls, v: list[str] | None) -> list[str] | None:
        return v or None


def prepare_call_settings(**settings: Any) -> CallSettings:
    """Validate raw keyword settings, reporting the first offending parameter."""
    # explicit None means "use the default"
    provided = {k: v for k, v in settings.items() if v is not None}
    try:
        return CallSettings.model_validate(provided)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        parameter = str(first["loc"][0]) if first["loc"] else "settings"
        raise errors_.InvalidArgumentError(
            parameter=parameter,
            value=settings.get(parameter),
            message=first["msg"],
            cause=exc,
        ) from exc

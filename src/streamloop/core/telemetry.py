"""Tracing capability passed explicitly into the engine's entry points."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping
from typing import TypeVar, Any, Protocol, runtime_checkable

T = TypeVar("T")

AttributeValue = str | int | float | bool | list[str] | list[int] | list[float] | None


@runtime_checkable
class Span(Protocol):
    def set_attributes(self, attributes: Mapping[str, AttributeValue]) -> None: ...
    def record_exception(self, error: BaseException) -> None: ...
    def end(self) -> None: ...


@runtime_checkable
class Tracer(Protocol):
    def start_span(
        self, name: str, attributes: Mapping[str, AttributeValue] | None = None
    ) -> Span: ...


class NoopSpan:
    def set_attributes(self, attributes: Mapping[str, AttributeValue]) -> None:
        pass

    def record_exception(self, error: BaseException) -> None:
        pass

    def end(self) -> None:
        pass


class NoopTracer:
    def start_span(
        self, name: str, attributes: Mapping[str, AttributeValue] | None = None
    ) -> Span:
        return NoopSpan()


NOOP_TRACER = NoopTracer()


def _clean(attributes: Mapping[str, Any]) -> dict[str, AttributeValue]:
    return {k: v for k, v in attributes.items() if v is not None}


async def record_span(
    tracer: Tracer,
    name: str,
    attributes: Mapping[str, Any],
    fn: Callable[[Span], Awaitable[T] | T],
    *,
    end_when_done: bool = True,
) -> T:
    """Run ``fn`` inside a span, recording any exception before re-raising.

    With ``end_when_done=False`` the caller owns the span on success (used by
    streaming calls whose span outlives the function that opened it).
    """
    span = tracer.start_span(name, _clean(attributes))
    try:
        result = fn(span)
        if inspect.isawaitable(result):
            result = await result
    except BaseException as exc:
        span.record_exception(exc)
        span.end()
        raise
    if end_when_done:
        span.end()
    return result  # type: ignore[return-value]

from __future__ import annotations

import asyncio
import datetime
from collections.abc import AsyncIterable, AsyncIterator, Sequence
from typing import Generic, TypeVar, Any

import streamloop as ai
from streamloop.core import llm, messages, retry, step

T = TypeVar("T")

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.UTC)

Scripted = llm.GenerateResponse | llm.StreamResponse | Sequence[llm.StreamPart] | BaseException


class MockLanguageModel(ai.LanguageModel):
    """Model that returns pre-configured responses, one per call, and records calls."""

    provider = "mock-provider"
    model_id = "mock-model-id"

    def __init__(
        self,
        *,
        generate: Sequence[Scripted] = (),
        stream: Sequence[Scripted] = (),
        supports_structured_outputs: bool = False,
        default_object_generation_mode: str | None = "json",
    ) -> None:
        self._generate = list(generate)
        self._stream = list(stream)
        self.supports_structured_outputs = supports_structured_outputs
        self.default_object_generation_mode = default_object_generation_mode
        self.generate_calls: list[llm.CallOptions] = []
        self.stream_calls: list[llm.CallOptions] = []

    async def do_generate(self, options: llm.CallOptions) -> llm.GenerateResponse:
        self.generate_calls.append(options)
        if not self._generate:
            raise RuntimeError("MockLanguageModel: no more responses configured")
        item = self._generate.pop(0)
        if isinstance(item, BaseException):
            raise item
        assert isinstance(item, llm.GenerateResponse)
        return item

    async def do_stream(self, options: llm.CallOptions) -> llm.StreamResponse:
        self.stream_calls.append(options)
        if not self._stream:
            raise RuntimeError("MockLanguageModel: no more streams configured")
        item = self._stream.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, llm.StreamResponse):
            return item
        return llm.StreamResponse(stream=iterate(item))


async def iterate(items: Sequence[T]) -> AsyncIterator[T]:
    for item in items:
        if isinstance(item, BaseException):
            raise item
        yield item


async def collect(stream: AsyncIterable[T]) -> list[T]:
    return [item async for item in stream]


def usage(prompt: int = 3, completion: int = 10) -> messages.Usage:
    return messages.Usage.from_tokens(prompt, completion)


def response_info(id: str = "id-0", model_id: str = "mock-model-id") -> llm.ProviderResponseInfo:
    return llm.ProviderResponseInfo(id=id, timestamp=EPOCH, model_id=model_id)


def text_response(
    text: str | None,
    *,
    finish_reason: messages.FinishReason = "stop",
    tool_calls: list[step.ToolCall] | None = None,
    prompt_tokens: int = 3,
    completion_tokens: int = 10,
    id: str = "id-0",
    **kwargs: Any,
) -> llm.GenerateResponse:
    return llm.GenerateResponse(
        text=text,
        finish_reason=finish_reason,
        usage=usage(prompt_tokens, completion_tokens),
        tool_calls=tool_calls,
        response=response_info(id),
        **kwargs,
    )


def tool_call(
    name: str, args: str = "{}", *, id: str = "call-1"
) -> step.ToolCall:
    return step.ToolCall(tool_call_id=id, tool_name=name, args=args)


def text_parts(
    *deltas: str,
    finish_reason: messages.FinishReason = "stop",
    prompt_tokens: int = 3,
    completion_tokens: int = 10,
    id: str = "id-0",
) -> list[llm.StreamPart]:
    return [
        llm.ResponseMetadata(id=id, timestamp=EPOCH, model_id="mock-model-id"),
        *(llm.TextDelta(text_delta=d) for d in deltas),
        llm.FinishChunk(
            finish_reason=finish_reason, usage=usage(prompt_tokens, completion_tokens)
        ),
    ]


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def fast_retry(max_retries: int = 2, sleep: SleepRecorder | None = None) -> retry.RetryPolicy:
    return retry.RetryPolicy(max_retries=max_retries, sleep=sleep or SleepRecorder())


def counter_ids(prefix: str) -> Any:
    """Deterministic id generator: ``prefix-0``, ``prefix-1``, ..."""
    count = 0

    def generate() -> str:
        nonlocal count
        value = f"{prefix}-{count}"
        count += 1
        return value

    return generate


class StalledStream(Generic[T]):
    """Yields ``items`` and then waits forever, recording whether it was cancelled."""

    def __init__(self, items: Sequence[T]) -> None:
        self.items = items
        self.cancelled = False

    async def _run(self) -> AsyncIterator[T]:
        for item in self.items:
            yield item
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise

    def __aiter__(self) -> AsyncIterator[T]:
        return self._run()


class StalledModel(MockLanguageModel):
    """A model whose calls never return on their own."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.cancelled = False

    async def do_generate(self, options: llm.CallOptions) -> llm.GenerateResponse:
        self.generate_calls.append(options)
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        raise AssertionError("unreachable")


class RecordingSpan:
    def __init__(self, name: str, attributes: object) -> None:
        self.name = name
        self.attributes = dict(attributes or {})  # type: ignore[call-overload]
        self.errors: list[BaseException] = []
        self.ends = 0

    def set_attributes(self, attributes: object) -> None:
        self.attributes.update(attributes)  # type: ignore[call-overload]

    def record_exception(self, error: BaseException) -> None:
        self.errors.append(error)

    @property
    def ended(self) -> bool:
        return self.ends > 0

    def end(self) -> None:
        self.ends += 1


class RecordingTracer:
    def __init__(self) -> None:
        self.spans: list[RecordingSpan] = []

    def start_span(self, name: str, attributes: object = None) -> RecordingSpan:
        span = RecordingSpan(name, attributes)
        self.spans.append(span)
        return span

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Awaitable
from typing import TypeVar, Any

from . import errors as errors_

T = TypeVar("T")


class AbortSignal:
    """Read side of an abort controller, threaded through model and tool calls."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Any = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Any:
        return self._reason

    def throw_if_aborted(self) -> None:
        if self._event.is_set():
            raise errors_.AbortError(reason=self._reason)

    async def wait(self) -> None:
        await self._event.wait()

    def _abort(self, reason: Any) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()


class AbortController:
    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: Any = None) -> None:
        self.signal._abort(reason if reason is not None else "aborted")


def is_abort_error(error: BaseException) -> bool:
    return isinstance(error, (errors_.AbortError, asyncio.CancelledError))


async def _settle(task: asyncio.Future[Any]) -> None:
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


async def race(awaitable: Awaitable[T], signal: AbortSignal | None) -> T:
    """
    Await ``awaitable`` unless ``signal`` fires first.

    On abort the pending work is cancelled (and allowed to unwind) before
    ``AbortError`` is raised, so a hung provider call never outlives it.
    """
    if signal is None:
        return await awaitable
    if signal.aborted:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        signal.throw_if_aborted()

    work = asyncio.ensure_future(awaitable)
    aborted = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({work, aborted}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await _settle(work)
        await _settle(aborted)
        raise

    if work.done():
        await _settle(aborted)
        return work.result()
    await _settle(work)
    raise errors_.AbortError(reason=signal.reason)


async def abortable(
    stream: AsyncIterable[T], signal: AbortSignal | None
) -> AsyncIterator[T]:
    """Iterate ``stream``, ending with ``AbortError`` as soon as ``signal`` fires."""
    if signal is None:
        async for item in stream:
            yield item
        return

    iterator = aiter(stream)
    exhausted = object()

    async def pull() -> Any:
        try:
            return await anext(iterator)
        except StopAsyncIteration:
            return exhausted

    try:
        while True:
            item = await race(pull(), signal)
            if item is exhausted:
                return
            yield item
    finally:
        close = getattr(iterator, "aclose", None)
        if close is not None:
            await close()

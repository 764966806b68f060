"""
Stream plumbing for the streaming step loop.

- ``StitchableStream``: one logical stream fed by sources appended over time.
- ``DelayedResult``: a single-assignment value resolved from inside a stream.
- ``Broadcast``: a buffered stream each subscriber can replay from the start.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterable, AsyncIterator, Generator
from typing import Generic, TypeVar, Any

T = TypeVar("T")

logger = logging.getLogger(__name__)


class _Close:
    pass


_CLOSE = _Close()


@dataclasses.dataclass
class _Failure:
    error: BaseException


class _End:
    pass


_END = _End()


# -- StitchableStream ----------------------------------------------------------


class StitchableStream(Generic[T]):
    """
    Sequentially drains appended sources into a single output stream.

    A background task pulls sources from a queue strictly in append order and
    forwards their items to one unbounded output queue. ``close`` lets every
    queued source drain first; ``terminate`` cancels the drain immediately.
    A source that raises ends the output stream with that error.
    """

    def __init__(self) -> None:
        self._sources: asyncio.Queue[AsyncIterable[T] | _Close] = asyncio.Queue()
        self._out: asyncio.Queue[T | _Failure | _End] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self._ended = False
        self._consumed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _ensure_task(self) -> None:
        if self._task is None and not self._ended:
            self._task = asyncio.get_running_loop().create_task(self._drain())

    def _end(self) -> None:
        if not self._ended:
            self._ended = True
            self._out.put_nowait(_END)

    async def _drain(self) -> None:
        try:
            while True:
                source = await self._sources.get()
                if isinstance(source, _Close):
                    break
                async for item in source:
                    self._out.put_nowait(item)
        except Exception as exc:
            logger.debug("stitched source failed: %r", exc)
            if not self._ended:
                self._out.put_nowait(_Failure(exc))
        finally:
            self._end()

    def add_stream(self, source: AsyncIterable[T]) -> None:
        if self._closed:
            raise RuntimeError("Cannot add inner stream: outer stream is closed")
        self._sources.put_nowait(source)
        self._ensure_task()

    def close(self) -> None:
        """Stop accepting sources; the stream ends once queued ones drain."""
        if self._closed:
            return
        self._closed = True
        self._sources.put_nowait(_CLOSE)
        self._ensure_task()

    def terminate(self) -> None:
        """Cancel all sources and end the stream without draining."""
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._end()

    async def __aiter__(self) -> AsyncIterator[T]:
        if self._consumed:
            raise RuntimeError("StitchableStream supports a single consumer")
        self._consumed = True
        while True:
            item = await self._out.get()
            if isinstance(item, _End):
                return
            if isinstance(item, _Failure):
                raise item.error
            yield item


# -- DelayedResult -------------------------------------------------------------


class DelayedResult(Generic[T]):
    """
    A value resolved or rejected exactly once, awaitable any number of times.

    The underlying future is only created when someone awaits, so a
    rejection nobody looks at never triggers "exception was never retrieved".
    """

    def __init__(self) -> None:
        self._state: tuple[str, Any] | None = None
        self._future: asyncio.Future[T] | None = None

    @property
    def done(self) -> bool:
        return self._state is not None

    def resolve(self, value: T) -> None:
        if self._state is not None:
            raise RuntimeError("DelayedResult already settled")
        self._state = ("resolved", value)
        if self._future is not None and not self._future.done():
            self._future.set_result(value)

    def reject(self, error: BaseException) -> None:
        if self._state is not None:
            raise RuntimeError("DelayedResult already settled")
        self._state = ("rejected", error)
        if self._future is not None and not self._future.done():
            self._future.set_exception(error)

    def _get_future(self) -> asyncio.Future[T]:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
            if self._state is not None:
                kind, value = self._state
                if kind == "resolved":
                    self._future.set_result(value)
                else:
                    self._future.set_exception(value)
        return self._future

    def __await__(self) -> Generator[Any, None, T]:
        return self._get_future().__await__()


# -- Broadcast -----------------------------------------------------------------


class Broadcast(Generic[T]):
    """An append-only buffer of items; every subscriber sees all of them."""

    def __init__(self) -> None:
        self._items: list[T] = []
        self._done = False
        self._error: BaseException | None = None
        self._signal = asyncio.Event()

    def _notify(self) -> None:
        self._signal.set()
        self._signal = asyncio.Event()

    def push(self, item: T) -> None:
        if self._done:
            raise RuntimeError("Broadcast already finished")
        self._items.append(item)
        self._notify()

    def finish(self, error: BaseException | None = None) -> None:
        if self._done:
            return
        self._done = True
        self._error = error
        self._notify()

    async def subscribe(self) -> AsyncIterator[T]:
        index = 0
        while True:
            if index < len(self._items):
                yield self._items[index]
                index += 1
                continue
            if self._done:
                if self._error is not None:
                    raise self._error
                return
            await self._signal.wait()

"""StitchableStream, DelayedResult and Broadcast plumbing."""

import asyncio

import pytest

from streamloop.core.streams import Broadcast, DelayedResult, StitchableStream

from ..conftest import collect, iterate


# -- StitchableStream ------------------------------------------------------


@pytest.mark.asyncio
async def test_sources_drain_in_append_order() -> None:
    stitcher: StitchableStream[int] = StitchableStream()
    stitcher.add_stream(iterate([1, 2]))
    stitcher.add_stream(iterate([3]))
    stitcher.close()
    assert await collect(stitcher) == [1, 2, 3]


@pytest.mark.asyncio
async def test_sources_can_be_added_while_draining() -> None:
    stitcher: StitchableStream[int] = StitchableStream()

    async def first():  # type: ignore[no-untyped-def]
        yield 1
        # the next source is appended by the source itself, as a step does
        stitcher.add_stream(iterate([2]))
        stitcher.close()

    stitcher.add_stream(first())
    assert await collect(stitcher) == [1, 2]


@pytest.mark.asyncio
async def test_add_after_close_raises() -> None:
    stitcher: StitchableStream[int] = StitchableStream()
    stitcher.close()
    assert stitcher.is_closed
    with pytest.raises(RuntimeError, match="closed"):
        stitcher.add_stream(iterate([1]))


@pytest.mark.asyncio
async def test_failing_source_ends_stream_with_error() -> None:
    stitcher: StitchableStream[int] = StitchableStream()
    stitcher.add_stream(iterate([1, ValueError("bad")]))  # type: ignore[list-item]
    stitcher.add_stream(iterate([2]))
    stitcher.close()

    seen: list[int] = []
    with pytest.raises(ValueError, match="bad"):
        async for item in stitcher:
            seen.append(item)
    assert seen == [1]


@pytest.mark.asyncio
async def test_terminate_ends_without_draining() -> None:
    stitcher: StitchableStream[int] = StitchableStream()
    gate = asyncio.Event()

    async def slow():  # type: ignore[no-untyped-def]
        yield 1
        await gate.wait()
        yield 2

    stitcher.add_stream(slow())
    seen: list[int] = []
    async for item in stitcher:
        seen.append(item)
        stitcher.terminate()
    assert seen == [1]
    assert stitcher.is_closed


@pytest.mark.asyncio
async def test_single_consumer() -> None:
    stitcher: StitchableStream[int] = StitchableStream()
    stitcher.close()
    await collect(stitcher)
    with pytest.raises(RuntimeError, match="single consumer"):
        await collect(stitcher)


# -- DelayedResult ---------------------------------------------------------


@pytest.mark.asyncio
async def test_delayed_result_resolves_for_every_awaiter() -> None:
    d: DelayedResult[int] = DelayedResult()
    waiters = [asyncio.ensure_future(_await(d)) for _ in range(3)]
    await asyncio.sleep(0)
    d.resolve(7)
    assert await asyncio.gather(*waiters) == [7, 7, 7]
    assert await d == 7


@pytest.mark.asyncio
async def test_delayed_result_settles_once() -> None:
    d: DelayedResult[int] = DelayedResult()
    d.reject(ValueError("x"))
    assert d.done
    with pytest.raises(RuntimeError, match="already settled"):
        d.resolve(1)
    with pytest.raises(ValueError, match="x"):
        await d


async def _await(d: DelayedResult[int]) -> int:
    return await d


# -- Broadcast -------------------------------------------------------------


@pytest.mark.asyncio
async def test_late_subscriber_replays_everything() -> None:
    b: Broadcast[str] = Broadcast()
    b.push("a")
    b.push("b")
    b.finish()
    assert await collect(b.subscribe()) == ["a", "b"]
    assert await collect(b.subscribe()) == ["a", "b"]


@pytest.mark.asyncio
async def test_live_subscriber_sees_new_items() -> None:
    b: Broadcast[int] = Broadcast()
    task = asyncio.ensure_future(collect(b.subscribe()))
    await asyncio.sleep(0)
    b.push(1)
    await asyncio.sleep(0)
    b.push(2)
    b.finish()
    assert await task == [1, 2]


@pytest.mark.asyncio
async def test_finish_with_error_raises_after_items() -> None:
    b: Broadcast[int] = Broadcast()
    b.push(1)
    b.finish(ValueError("broken"))
    seen: list[int] = []
    with pytest.raises(ValueError, match="broken"):
        async for item in b.subscribe():
            seen.append(item)
    assert seen == [1]

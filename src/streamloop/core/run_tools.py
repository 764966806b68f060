"""Turns a provider stream into engine events, running tools as calls arrive."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterable, AsyncIterator, Sequence

from . import abort as abort_
from . import errors as errors_
from . import events as events_
from . import llm as llm_
from . import messages as messages_
from . import step as step_
from . import telemetry as telemetry_
from . import tool_calls as tool_calls_
from . import tools as tools_

logger = logging.getLogger(__name__)

StepChunk = (
    events_.TextDeltaEvent
    | events_.ReasoningEvent
    | events_.ReasoningSignatureEvent
    | events_.RedactedReasoningEvent
    | events_.SourceEvent
    | events_.FileEvent
    | events_.ToolCallStreamingStartEvent
    | events_.ToolCallDeltaEvent
    | events_.ToolCallEvent
    | events_.ToolResultEvent
    | events_.ErrorEvent
    | llm_.ResponseMetadata
    | llm_.FinishChunk
)


@dataclasses.dataclass
class _Raised:
    error: BaseException


class _Done:
    pass


_DONE = _Done()


class _ToolRunner:
    """
    Reads one step's provider stream into a queue.

    Executable tool calls are started as tasks the moment they are parsed;
    their results (or ``ToolExecutionError`` events) join the same queue in
    completion order. The step's finish chunk is held back until the
    provider stream ended and every started tool settled.
    """

    def __init__(
        self,
        stream: AsyncIterable[llm_.StreamPart],
        tools: tools_.ToolSet | None,
        *,
        tool_call_streaming: bool,
        system: str | None,
        messages: Sequence[messages_.Message],
        abort_signal: abort_.AbortSignal | None,
        repair_tool_call: tool_calls_.RepairToolCall | None,
        tracer: telemetry_.Tracer,
    ) -> None:
        self._stream = stream
        self._tools = tools
        self._tool_call_streaming = tool_call_streaming
        self._system = system
        self._messages = messages
        self._abort_signal = abort_signal
        self._repair_tool_call = repair_tool_call
        self._tracer = tracer

        self._queue: asyncio.Queue[StepChunk | _Raised | _Done] = asyncio.Queue()
        self._tool_tasks: set[asyncio.Task[None]] = set()
        self._streaming_calls: set[str] = set()
        self._finish: llm_.FinishChunk | None = None

    async def run(self) -> None:
        try:
            async for part in abort_.abortable(self._stream, self._abort_signal):
                await self._forward(part)
            if self._tool_tasks:
                await abort_.race(
                    asyncio.gather(*self._tool_tasks), self._abort_signal
                )
            if self._finish is not None:
                self._queue.put_nowait(self._finish)
        except Exception as exc:
            self.cancel()
            self._queue.put_nowait(_Raised(exc))
        finally:
            self._queue.put_nowait(_DONE)

    def cancel(self) -> None:
        for task in self._tool_tasks:
            task.cancel()

    async def _forward(self, part: llm_.StreamPart) -> None:
        emit = self._queue.put_nowait
        match part:
            case llm_.TextDelta(text_delta=delta):
                emit(events_.TextDeltaEvent(text_delta=delta))
            case llm_.ReasoningDelta(text_delta=delta):
                emit(events_.ReasoningEvent(text_delta=delta))
            case llm_.ReasoningSignature(signature=signature):
                emit(events_.ReasoningSignatureEvent(signature=signature))
            case llm_.RedactedReasoningDelta(data=data):
                emit(events_.RedactedReasoningEvent(data=data))
            case llm_.SourceChunk(source=source):
                emit(events_.SourceEvent(source=source))
            case llm_.FileChunk(data=data, mime_type=mime_type):
                emit(
                    events_.FileEvent(
                        file=step_.GeneratedFile(data=data, mime_type=mime_type)
                    )
                )
            case llm_.ResponseMetadata():
                emit(part)
            case llm_.ErrorChunk(error=error):
                emit(events_.ErrorEvent(error=error))
            case llm_.ToolCallDelta():
                if not self._tool_call_streaming:
                    return
                if part.tool_call_id not in self._streaming_calls:
                    self._streaming_calls.add(part.tool_call_id)
                    emit(
                        events_.ToolCallStreamingStartEvent(
                            tool_call_id=part.tool_call_id, tool_name=part.tool_name
                        )
                    )
                emit(
                    events_.ToolCallDeltaEvent(
                        tool_call_id=part.tool_call_id,
                        tool_name=part.tool_name,
                        args_text_delta=part.args_text_delta,
                    )
                )
            case llm_.ToolCallChunk():
                await self._on_tool_call(part)
            case llm_.FinishChunk():
                self._finish = part
            case _:
                raise errors_.InvalidStreamPartError(
                    chunk=part, message=f"Unhandled stream part: {part!r}"
                )

    async def _on_tool_call(self, part: llm_.ToolCallChunk) -> None:
        try:
            resolved = await tool_calls_.parse_tool_call(
                step_.ToolCall(
                    tool_call_id=part.tool_call_id,
                    tool_name=part.tool_name,
                    args=part.args,
                ),
                self._tools,
                repair_tool_call=self._repair_tool_call,
                system=self._system,
                messages=self._messages,
            )
        except errors_.AISDKError as exc:
            self._queue.put_nowait(events_.ErrorEvent(error=exc))
            return

        self._queue.put_nowait(
            events_.ToolCallEvent(
                tool_call_id=resolved.tool_call_id,
                tool_name=resolved.tool_name,
                args=resolved.args,
            )
        )
        tool = (self._tools or {}).get(resolved.tool_name)
        if tool is None or tool.execute is None:
            return
        task = asyncio.get_running_loop().create_task(self._execute(resolved, tool))
        self._tool_tasks.add(task)

    async def _execute(self, call: step_.ResolvedToolCall, tool: tools_.Tool) -> None:
        try:
            result = await tool_calls_.execute_tool_call(
                call,
                tool,
                messages=self._messages,
                abort_signal=self._abort_signal,
                tracer=self._tracer,
            )
        except errors_.ToolExecutionError as exc:
            self._queue.put_nowait(events_.ErrorEvent(error=exc))
            return
        self._queue.put_nowait(
            events_.ToolResultEvent(
                tool_call_id=result.tool_call_id,
                tool_name=result.tool_name,
                args=result.args,
                result=result.result,
            )
        )

    async def chunks(self) -> AsyncIterator[StepChunk]:
        while True:
            item = await self._queue.get()
            if isinstance(item, _Done):
                return
            if isinstance(item, _Raised):
                raise item.error
            yield item


async def run_tools_transformation(
    stream: AsyncIterable[llm_.StreamPart],
    tools: tools_.ToolSet | None,
    *,
    tool_call_streaming: bool = False,
    system: str | None = None,
    messages: Sequence[messages_.Message] = (),
    abort_signal: abort_.AbortSignal | None = None,
    repair_tool_call: tool_calls_.RepairToolCall | None = None,
    tracer: telemetry_.Tracer = telemetry_.NOOP_TRACER,
) -> AsyncIterator[StepChunk]:
    """
    Map provider parts to engine events for one step.

    Resolved tool calls are emitted as soon as they are parsed and executable
    ones start running right away. Parse and execution failures become
    ``error`` events rather than ending the stream. The ``FinishChunk`` comes
    last, after all tool results of the step.
    """
    runner = _ToolRunner(
        stream,
        tools,
        tool_call_streaming=tool_call_streaming,
        system=system,
        messages=messages,
        abort_signal=abort_signal,
        repair_tool_call=repair_tool_call,
        tracer=tracer,
    )
    pump = asyncio.get_running_loop().create_task(runner.run())
    try:
        async for chunk in runner.chunks():
            yield chunk
    finally:
        if not pump.done():
            runner.cancel()
            pump.cancel()

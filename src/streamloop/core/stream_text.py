"""
Streaming step loop.

``stream_text`` returns immediately. Each step's provider stream is wrapped
into an event stream and appended to a ``StitchableStream``; the end of one
step starts the next model call. A pump task drains the stitched stream
through the caller's transforms, records steps and broadcasts the events, so
any number of consumers can replay the full run.
"""

from __future__ import annotations

import asyncio
import dataclasses
import datetime
import inspect
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable, Mapping, Sequence
from typing import Any

from ..data_stream import adapter as adapter_
from . import abort as abort_
from . import errors as errors_
from . import events as events_
from . import generate_text as generate_text_
from . import llm as llm_
from . import messages as messages_
from . import output as output_
from . import output_strategy as output_strategy_
from . import prompt as prompt_
from . import retry as retry_
from . import run_tools as run_tools_
from . import settings as settings_
from . import step as step_
from . import streams as streams_
from . import telemetry as telemetry_
from . import tool_calls as tool_calls_
from . import tools as tools_

logger = logging.getLogger(__name__)

StreamTransform = Callable[
    [AsyncIterator[events_.StreamEvent], tools_.ToolSet | None, Callable[[], None]],
    AsyncIterator[events_.StreamEvent],
]

_CHUNK_EVENTS = (
    events_.TextDeltaEvent,
    events_.ReasoningEvent,
    events_.SourceEvent,
    events_.ToolCallEvent,
    events_.ToolResultEvent,
    events_.ToolCallStreamingStartEvent,
    events_.ToolCallDeltaEvent,
)


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


@dataclasses.dataclass
class _Item:
    event: events_.StreamEvent
    partial_output: Any = None


@dataclasses.dataclass
class _StepInput:
    index: int
    step_type: step_.StepType
    message_id: str
    usage: messages_.Usage
    previous_text: str = ""
    has_leading_whitespace: bool = False


class _StepSpan:
    """Ends the wrapped span once. Failures after the step finished are not recorded."""

    def __init__(self, span: telemetry_.Span) -> None:
        self._span = span
        self.ended = False

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        self._span.set_attributes(attributes)

    def record_exception(self, error: BaseException) -> None:
        if not self.ended:
            self._span.record_exception(error)

    def end(self) -> None:
        if not self.ended:
            self.ended = True
            self._span.end()


class _StepText:
    """
    Text bookkeeping for one streamed step.

    With word buffering on, only text up to the last whitespace is published;
    the trailing partial word waits for more text or for the end of the step.
    """

    def __init__(self, previous_text: str, trim_leading: bool) -> None:
        self.text = ""
        self.full_text = previous_text
        self.trailing_whitespace = False
        self._buffer = ""
        self._published = False
        self._in_prefix = True
        self._trim_leading = trim_leading

    def publish(self, delta: str) -> events_.TextDeltaEvent:
        self.text += delta
        self.full_text += delta
        self._published = True
        self.trailing_whitespace = delta.rstrip() != delta
        return events_.TextDeltaEvent(text_delta=delta)

    def feed(self, delta: str, *, buffered: bool) -> events_.TextDeltaEvent | None:
        if not buffered:
            return self.publish(delta)
        if self._in_prefix and self._trim_leading:
            delta = delta.lstrip()
        if not delta:
            return None
        self._in_prefix = False
        self._buffer += delta
        split = generate_text_.split_on_last_whitespace(self._buffer)
        if split is None:
            return None
        self._buffer = split.suffix
        return self.publish(split.prefix + split.whitespace)

    def flush(
        self, *, step_type: step_.StepType, next_type: step_.StepType | None
    ) -> events_.TextDeltaEvent | None:
        # a continue step that published nothing must not swallow its only word
        if self._buffer and (
            next_type != "continue"
            or (step_type == "continue" and not self._published)
        ):
            event = self.publish(self._buffer)
            self._buffer = ""
            return event
        return None


class _Recorder:
    """Rebuilds step results from the event stream as consumers see it."""

    def __init__(
        self,
        *,
        tools: tools_.ToolSet | None,
        max_steps: int,
        continue_steps: bool,
        generate_message_id: Callable[[], str],
    ) -> None:
        self._tools = tools
        self._max_steps = max_steps
        self._continue_steps = continue_steps
        self._generate_message_id = generate_message_id

        self.steps: list[step_.StepResult] = []
        self.sources: list[step_.Source] = []
        self.full_text = ""
        self.finish: events_.FinishEvent | None = None
        self._messages: list[messages_.ResponseMessage] = []
        self._step_type: step_.StepType = "initial"
        self._reset()
        self._continuation_text = ""

    def _reset(self) -> None:
        self._text = ""
        self._reasoning: list[step_.ReasoningDetail] = []
        self._active_reasoning: step_.ReasoningText | None = None
        self._files: list[step_.GeneratedFile] = []
        self._step_sources: list[step_.Source] = []
        self._tool_calls: list[step_.ResolvedToolCall] = []
        self._tool_results: list[step_.ToolResult] = []

    def record(self, event: events_.StreamEvent) -> step_.StepResult | None:
        """Track one event; returns the step result when a step finished."""
        match event:
            case events_.TextDeltaEvent(text_delta=delta):
                self._text += delta
                self._continuation_text += delta
                self.full_text += delta
            case events_.ReasoningEvent(text_delta=delta):
                if self._active_reasoning is None:
                    self._active_reasoning = step_.ReasoningText(text=delta)
                    self._reasoning.append(self._active_reasoning)
                else:
                    self._active_reasoning.text += delta
            case events_.ReasoningSignatureEvent(signature=signature):
                # the step stream already rejects a signature without reasoning
                if self._active_reasoning is not None:
                    self._active_reasoning.signature = signature
                    self._active_reasoning = None
            case events_.RedactedReasoningEvent(data=data):
                self._reasoning.append(step_.RedactedReasoning(data=data))
            case events_.FileEvent(file=file):
                self._files.append(file)
            case events_.SourceEvent(source=source):
                self.sources.append(source)
                self._step_sources.append(source)
            case events_.ToolCallEvent():
                self._tool_calls.append(
                    step_.ResolvedToolCall(
                        tool_call_id=event.tool_call_id,
                        tool_name=event.tool_name,
                        args=event.args,
                    )
                )
            case events_.ToolResultEvent():
                self._tool_results.append(
                    step_.ToolResult(
                        tool_call_id=event.tool_call_id,
                        tool_name=event.tool_name,
                        args=event.args,
                        result=event.result,
                    )
                )
            case events_.StepFinishEvent():
                return self._finish_step(event)
            case events_.FinishEvent():
                self.finish = event
        return None

    def _finish_step(self, event: events_.StepFinishEvent) -> step_.StepResult:
        step_messages = generate_text_.to_response_messages(
            text=self._continuation_text,
            files=self._files,
            reasoning=self._reasoning,
            tools=self._tools or {},
            tool_calls=self._tool_calls,
            tool_results=self._tool_results,
            message_id=event.message_id,
            generate_message_id=self._generate_message_id,
        )
        next_type = generate_text_.next_step_type(
            step_count=len(self.steps) + 1,
            max_steps=self._max_steps,
            continue_steps=self._continue_steps,
            finish_reason=event.finish_reason,
            tool_call_count=len(self._tool_calls),
            tool_result_count=len(self._tool_results),
        )
        result = step_.StepResult(
            step_type=self._step_type,
            text=self._text,
            finish_reason=event.finish_reason,
            usage=event.usage,
            response=dataclasses.replace(
                event.response,
                messages=generate_text_.snapshot([*self._messages, *step_messages]),
            ),
            reasoning=step_.reasoning_text(self._reasoning),
            reasoning_details=self._reasoning,
            files=self._files,
            sources=self._step_sources,
            tool_calls=self._tool_calls,
            tool_results=self._tool_results,
            warnings=event.warnings,
            request=event.request,
            is_continued=event.is_continued,
            provider_metadata=event.provider_metadata,
        )
        self.steps.append(result)
        self._reset()
        if next_type is not None:
            self._step_type = next_type
        if next_type != "continue":
            self._messages.extend(step_messages)
            self._continuation_text = ""
        return result


class StreamTextResult:
    """
    Handle on a running ``stream_text`` call.

    The deferred values (``text``, ``usage``, ``steps`` ...) are awaitables
    settled once the run ends. ``full_stream``, ``text_stream`` and
    ``partial_output_stream`` each return a fresh iterator over the whole
    run, so they can be consumed concurrently or after the fact.
    """

    def __init__(
        self,
        *,
        model: llm_.LanguageModel,
        tools: tools_.ToolSet | None,
        tool_choice: llm_.ToolChoiceLike | None,
        system: str | None,
        prompt: str | None,
        messages: Sequence[Any] | None,
        max_retries: int | None,
        abort_signal: abort_.AbortSignal | None,
        headers: dict[str, str] | None,
        max_steps: int,
        continue_steps: bool,
        output: output_.Output | None,
        repair_tool_call: tool_calls_.RepairToolCall | None,
        active_tools: Sequence[str] | None,
        tool_call_streaming: bool,
        transforms: Sequence[StreamTransform],
        on_chunk: Callable[[events_.StreamEvent], Any] | None,
        on_error: Callable[[Any], Any] | None,
        on_finish: Callable[[generate_text_.GenerateTextResult], Any] | None,
        on_step_finish: generate_text_.StepCallback | None,
        provider_options: Mapping[str, Any] | None,
        tracer: telemetry_.Tracer | None,
        generate_message_id: Callable[[], str],
        generate_response_id: Callable[[], str],
        retry_policy: retry_.RetryPolicy | None,
        settings: dict[str, Any],
    ) -> None:
        if max_steps < 1:
            raise errors_.InvalidArgumentError(
                parameter="max_steps",
                value=max_steps,
                message="max_steps must be at least 1",
            )

        self.text: streams_.DelayedResult[str] = streams_.DelayedResult()
        self.reasoning: streams_.DelayedResult[str | None] = streams_.DelayedResult()
        self.reasoning_details: streams_.DelayedResult[
            list[step_.ReasoningDetail]
        ] = streams_.DelayedResult()
        self.sources: streams_.DelayedResult[list[step_.Source]] = (
            streams_.DelayedResult()
        )
        self.files: streams_.DelayedResult[list[step_.GeneratedFile]] = (
            streams_.DelayedResult()
        )
        self.tool_calls: streams_.DelayedResult[list[step_.ResolvedToolCall]] = (
            streams_.DelayedResult()
        )
        self.tool_results: streams_.DelayedResult[list[step_.ToolResult]] = (
            streams_.DelayedResult()
        )
        self.finish_reason: streams_.DelayedResult[messages_.FinishReason] = (
            streams_.DelayedResult()
        )
        self.usage: streams_.DelayedResult[messages_.Usage] = streams_.DelayedResult()
        self.warnings: streams_.DelayedResult[list[Any]] = streams_.DelayedResult()
        self.request: streams_.DelayedResult[step_.RequestInfo] = (
            streams_.DelayedResult()
        )
        self.response: streams_.DelayedResult[step_.ResponseInfo] = (
            streams_.DelayedResult()
        )
        self.steps: streams_.DelayedResult[list[step_.StepResult]] = (
            streams_.DelayedResult()
        )
        self.provider_metadata: streams_.DelayedResult[dict[str, Any] | None] = (
            streams_.DelayedResult()
        )

        self.output = output
        self._model = model
        self._tools = tools
        self._abort_signal = abort_signal
        self._headers = headers
        self._max_steps = max_steps
        self._continue_steps = continue_steps
        self._repair_tool_call = repair_tool_call
        self._tool_call_streaming = tool_call_streaming
        self._transforms = list(transforms)
        self._on_chunk = on_chunk
        self._on_error = on_error
        self._on_finish = on_finish
        self._on_step_finish = on_step_finish
        self._provider_options = dict(provider_options) if provider_options else None
        self._tracer = tracer or telemetry_.NOOP_TRACER
        self._generate_message_id = generate_message_id
        self._generate_response_id = generate_response_id

        resolved_retries, self._retry = retry_.prepare_retries(max_retries)
        if retry_policy is not None:
            self._retry = retry_policy
        self._call_settings = settings_.prepare_call_settings(**settings)
        self._system = system
        self._prompt = prompt_.standardize_prompt(
            system=output.inject_into_system_prompt(system, model) if output else system,
            prompt=prompt,
            messages=messages,
            tools=tools,
        )
        self._mode = llm_.prepare_tools_and_tool_choice(tools, tool_choice, active_tools)
        self._attributes = {
            "ai.model.provider": model.provider,
            "ai.model.id": model.model_id,
            "ai.settings.maxRetries": resolved_retries,
        }

        self._response_messages: list[messages_.ResponseMessage] = []
        self._failure: BaseException | None = None
        self._stitcher: streams_.StitchableStream[events_.StreamEvent] = (
            streams_.StitchableStream()
        )
        self._broadcast: streams_.Broadcast[_Item] = streams_.Broadcast()
        self._recorder = _Recorder(
            tools=tools,
            max_steps=max_steps,
            continue_steps=continue_steps,
            generate_message_id=generate_message_id,
        )

        self._root_span = self._tracer.start_span(
            "ai.streamText",
            {
                k: v
                for k, v in {
                    **self._attributes,
                    "ai.prompt.system": system,
                    "ai.maxSteps": max_steps,
                }.items()
                if v is not None
            },
        )
        loop = asyncio.get_running_loop()
        self._tasks = {
            loop.create_task(self._start()),
            loop.create_task(self._pump()),
        }

    # ── Step driving ──────────────────────────────────────────────

    async def _start(self) -> None:
        try:
            await self._start_step(
                _StepInput(
                    index=0,
                    step_type="initial",
                    message_id=self._generate_message_id(),
                    usage=messages_.Usage(),
                )
            )
        except Exception as exc:
            logger.debug("stream_text failed before the first step: %r", exc)
            self._failure = exc
            if not self._stitcher.is_closed:
                self._stitcher.add_stream(_single(events_.ErrorEvent(error=exc)))
                self._stitcher.close()

    async def _start_step(self, step: _StepInput) -> None:
        step_input = [*self._prompt.messages, *self._response_messages]
        input_format = self._prompt.type if not self._response_messages else "messages"
        options = llm_.CallOptions(
            mode=self._mode,
            prompt=[*self._prompt.to_model_messages(), *self._response_messages],
            input_format=input_format,
            response_format=(
                self.output.response_format(self._model) if self.output else None
            ),
            settings=self._call_settings,
            abort_signal=self._abort_signal,
            headers=self._headers,
            provider_options=self._provider_options,
        )

        async def do_stream(
            span: telemetry_.Span,
        ) -> tuple[telemetry_.Span, llm_.StreamResponse]:
            if self._abort_signal is not None:
                self._abort_signal.throw_if_aborted()
            return span, await abort_.race(
                self._model.do_stream(options), self._abort_signal
            )

        span, response = await self._retry(
            lambda: telemetry_.record_span(
                self._tracer,
                "ai.streamText.doStream",
                {**self._attributes, "ai.prompt.format": input_format},
                do_stream,
                end_when_done=False,
            )
        )
        if self._stitcher.is_closed:
            # stopped by a transform while the model call was in flight
            span.end()
            return
        logger.debug("step %d (%s) started", step.index + 1, step.step_type)
        self._stitcher.add_stream(self._step_stream(step, step_input, span, response))

    async def _step_stream(
        self,
        step: _StepInput,
        step_input: list[messages_.Message],
        span: telemetry_.Span,
        response: llm_.StreamResponse,
    ) -> AsyncIterator[events_.StreamEvent]:
        step_span = _StepSpan(span)
        try:
            step_events = self._step_events(step, step_input, step_span, response)
            async for event in step_events:
                yield event
        except Exception as exc:
            logger.debug("stream_text step %d failed: %r", step.index + 1, exc)
            step_span.record_exception(exc)
            step_span.end()
            self._failure = exc
            self._stitcher.close()
            yield events_.ErrorEvent(error=exc)

    async def _step_events(
        self,
        step: _StepInput,
        step_input: list[messages_.Message],
        span: _StepSpan,
        response: llm_.StreamResponse,
    ) -> AsyncIterator[events_.StreamEvent]:
        warnings = list(response.warnings or [])
        request = response.request or step_.RequestInfo()
        provider_info = response.response or llm_.ProviderResponseInfo()
        response_id = provider_info.id or self._generate_response_id()
        timestamp = provider_info.timestamp or _now()
        model_id = provider_info.model_id or self._model.model_id

        tool_calls: list[step_.ResolvedToolCall] = []
        tool_results: list[step_.ToolResult] = []
        reasoning: list[step_.ReasoningDetail] = []
        active_reasoning: step_.ReasoningText | None = None
        files: list[step_.GeneratedFile] = []
        finish_reason: messages_.FinishReason = "unknown"
        usage = messages_.Usage()
        provider_metadata: dict[str, Any] | None = None
        text = _StepText(
            step.previous_text if step.step_type == "continue" else "",
            trim_leading=step.has_leading_whitespace,
        )

        yield events_.StepStartEvent(
            message_id=step.message_id, request=request, warnings=warnings
        )

        chunks = run_tools_.run_tools_transformation(
            response.stream,
            self._tools,
            tool_call_streaming=self._tool_call_streaming,
            system=self._system,
            messages=step_input,
            abort_signal=self._abort_signal,
            repair_tool_call=self._repair_tool_call,
            tracer=self._tracer,
        )
        async for chunk in chunks:
            if self._abort_signal is not None:
                self._abort_signal.throw_if_aborted()
            match chunk:
                case events_.TextDeltaEvent(text_delta=""):
                    continue
                case events_.TextDeltaEvent(text_delta=delta):
                    event = text.feed(delta, buffered=self._continue_steps)
                    if event is not None:
                        yield event
                case events_.ReasoningEvent(text_delta=delta):
                    yield chunk
                    if active_reasoning is None:
                        active_reasoning = step_.ReasoningText(text=delta)
                        reasoning.append(active_reasoning)
                    else:
                        active_reasoning.text += delta
                case events_.ReasoningSignatureEvent(signature=signature):
                    yield chunk
                    if active_reasoning is None:
                        raise errors_.InvalidStreamPartError(
                            chunk=chunk, message="reasoning-signature without reasoning"
                        )
                    active_reasoning.signature = signature
                    active_reasoning = None
                case events_.RedactedReasoningEvent(data=data):
                    yield chunk
                    reasoning.append(step_.RedactedReasoning(data=data))
                case events_.ToolCallEvent():
                    yield chunk
                    tool_calls.append(
                        step_.ResolvedToolCall(
                            tool_call_id=chunk.tool_call_id,
                            tool_name=chunk.tool_name,
                            args=chunk.args,
                        )
                    )
                case events_.ToolResultEvent():
                    yield chunk
                    tool_results.append(
                        step_.ToolResult(
                            tool_call_id=chunk.tool_call_id,
                            tool_name=chunk.tool_name,
                            args=chunk.args,
                            result=chunk.result,
                        )
                    )
                case llm_.ResponseMetadata():
                    response_id = chunk.id or response_id
                    timestamp = chunk.timestamp or timestamp
                    model_id = chunk.model_id or model_id
                case llm_.FinishChunk():
                    usage = chunk.usage
                    finish_reason = chunk.finish_reason
                    provider_metadata = chunk.provider_metadata
                case events_.FileEvent(file=file):
                    files.append(file)
                    yield chunk
                case events_.ErrorEvent():
                    yield chunk
                    finish_reason = "error"
                case _:
                    yield chunk

        next_type = generate_text_.next_step_type(
            step_count=step.index + 1,
            max_steps=self._max_steps,
            continue_steps=self._continue_steps,
            finish_reason=finish_reason,
            tool_call_count=len(tool_calls),
            tool_result_count=len(tool_results),
        )
        if self._continue_steps:
            event = text.flush(step_type=step.step_type, next_type=next_type)
            if event is not None:
                yield event

        span.set_attributes(
            {
                "ai.response.finishReason": finish_reason,
                "ai.response.id": response_id,
                "ai.usage.promptTokens": usage.prompt_tokens,
                "ai.usage.completionTokens": usage.completion_tokens,
            }
        )
        span.end()

        response_info = step_.ResponseInfo(
            id=response_id,
            timestamp=timestamp,
            model_id=model_id,
            headers=provider_info.headers,
        )
        yield events_.StepFinishEvent(
            message_id=step.message_id,
            finish_reason=finish_reason,
            usage=usage,
            response=response_info,
            is_continued=next_type == "continue",
            request=request,
            warnings=warnings,
            provider_metadata=provider_metadata,
        )

        combined_usage = step.usage + usage
        if next_type is None:
            yield events_.FinishEvent(
                finish_reason=finish_reason,
                usage=combined_usage,
                response=response_info,
                provider_metadata=provider_metadata,
            )
            self._stitcher.close()
            return

        if step.step_type == "continue":
            generate_text_.append_continuation(self._response_messages, text.text)
        else:
            self._response_messages.extend(
                generate_text_.to_response_messages(
                    text=text.text,
                    files=files,
                    reasoning=reasoning,
                    tools=self._tools or {},
                    tool_calls=tool_calls,
                    tool_results=tool_results,
                    message_id=step.message_id,
                    generate_message_id=self._generate_message_id,
                )
            )
        await self._start_step(
            _StepInput(
                index=step.index + 1,
                step_type=next_type,
                # a continue step extends the message it continues
                message_id=(
                    step.message_id
                    if next_type == "continue"
                    else self._generate_message_id()
                ),
                usage=combined_usage,
                previous_text=text.full_text,
                has_leading_whitespace=text.trailing_whitespace,
            )
        )

    # ── Consumption ───────────────────────────────────────────────

    async def _with_partial_output(
        self, stream: AsyncIterable[events_.StreamEvent]
    ) -> AsyncIterator[_Item]:
        if self.output is None:
            async for event in stream:
                yield _Item(event)
            return

        text = ""
        pending = ""
        last_published = ""
        async for event in stream:
            if isinstance(event, events_.StepFinishEvent) and pending:
                yield _Item(events_.TextDeltaEvent(text_delta=pending))
                pending = ""
            if not isinstance(event, events_.TextDeltaEvent):
                yield _Item(event)
                continue
            text += event.text_delta
            pending += event.text_delta
            parsed = self.output.parse_partial(text)
            if parsed is None:
                continue
            current = output_strategy_.to_json_text(parsed.partial)
            if current != last_published:
                yield _Item(events_.TextDeltaEvent(text_delta=pending), parsed.partial)
                pending = ""
                last_published = current
        if pending:
            yield _Item(events_.TextDeltaEvent(text_delta=pending))

    async def _pump(self) -> None:
        stream: AsyncIterator[events_.StreamEvent] = aiter(self._stitcher)
        for transform in self._transforms:
            stream = transform(stream, self._tools, self._stitcher.terminate)
        try:
            async for item in self._with_partial_output(stream):
                self._broadcast.push(item)
                await self._record(item.event)
            await self._settle()
        except Exception as exc:
            logger.debug("stream_text failed: %r", exc)
            self._stitcher.terminate()
            self._root_span.record_exception(exc)
            self._reject(exc)
            self._broadcast.finish(exc)
        else:
            self._broadcast.finish()
        finally:
            self._root_span.end()

    async def _record(self, event: events_.StreamEvent) -> None:
        if isinstance(event, _CHUNK_EVENTS):
            await _invoke(self._on_chunk, event)
        if isinstance(event, events_.ErrorEvent):
            await _invoke(self._on_error, event.error)
        finished = self._recorder.record(event)
        if finished is not None:
            await generate_text_.notify_step_finish(self._on_step_finish, finished)

    def _deferred(self) -> list[streams_.DelayedResult[Any]]:
        return [
            self.text,
            self.reasoning,
            self.reasoning_details,
            self.sources,
            self.files,
            self.tool_calls,
            self.tool_results,
            self.finish_reason,
            self.usage,
            self.warnings,
            self.request,
            self.response,
            self.steps,
            self.provider_metadata,
        ]

    def _reject(self, error: BaseException) -> None:
        for deferred in self._deferred():
            if not deferred.done:
                deferred.reject(error)

    async def _settle(self) -> None:
        if self._failure is not None:
            self._reject(self._failure)
            return
        recorder = self._recorder
        if not recorder.steps:
            self._reject(errors_.AISDKError("The stream ended before any step finished."))
            return

        last = recorder.steps[-1]
        finish_reason = recorder.finish.finish_reason if recorder.finish else "unknown"
        usage = recorder.finish.usage if recorder.finish else messages_.Usage()

        self.warnings.resolve(last.warnings)
        self.request.resolve(last.request)
        self.response.resolve(last.response)
        self.tool_calls.resolve(last.tool_calls)
        self.tool_results.resolve(last.tool_results)
        self.provider_metadata.resolve(last.provider_metadata)
        self.reasoning.resolve(last.reasoning)
        self.reasoning_details.resolve(last.reasoning_details)
        self.finish_reason.resolve(finish_reason)
        self.usage.resolve(usage)
        self.text.resolve(recorder.full_text)
        self.sources.resolve(recorder.sources)
        self.files.resolve(last.files)
        self.steps.resolve(recorder.steps)

        self._root_span.set_attributes(
            {
                "ai.response.finishReason": finish_reason,
                "ai.usage.promptTokens": usage.prompt_tokens,
                "ai.usage.completionTokens": usage.completion_tokens,
            }
        )
        await _invoke(
            self._on_finish,
            generate_text_.GenerateTextResult(
                text=recorder.full_text,
                finish_reason=finish_reason,
                usage=usage,
                response=last.response,
                steps=recorder.steps,
                reasoning=last.reasoning,
                reasoning_details=last.reasoning_details,
                files=last.files,
                sources=last.sources,
                tool_calls=last.tool_calls,
                tool_results=last.tool_results,
                warnings=last.warnings,
                request=last.request,
                provider_metadata=last.provider_metadata,
                output_spec=self.output,
            ),
        )

    # ── Public channels ───────────────────────────────────────────

    @property
    def full_stream(self) -> AsyncIterator[events_.StreamEvent]:
        return self._events()

    @property
    def text_stream(self) -> AsyncIterator[str]:
        return self._text_deltas()

    @property
    def partial_output_stream(self) -> AsyncIterator[Any]:
        if self.output is None:
            raise errors_.NoOutputSpecifiedError()
        return self._partial_outputs()

    async def _events(self) -> AsyncIterator[events_.StreamEvent]:
        async for item in self._broadcast.subscribe():
            yield item.event

    async def _text_deltas(self) -> AsyncIterator[str]:
        async for item in self._broadcast.subscribe():
            if isinstance(item.event, events_.TextDeltaEvent):
                yield item.event.text_delta

    async def _partial_outputs(self) -> AsyncIterator[Any]:
        async for item in self._broadcast.subscribe():
            if item.partial_output is not None:
                yield item.partial_output

    async def consume_stream(self) -> None:
        """Drain the run, e.g. to get ``on_finish`` called without a reader."""
        async for _ in self.full_stream:
            pass

    def to_data_stream(
        self,
        *,
        get_error_message: Callable[[Any], str] = adapter_.mask_error_message,
        send_usage: bool = True,
        send_reasoning: bool = False,
        send_sources: bool = False,
        send_finish: bool = True,
    ) -> AsyncIterator[str]:
        """The run as data stream protocol lines."""
        return adapter_.to_data_stream(
            self.full_stream,
            get_error_message=get_error_message,
            send_usage=send_usage,
            send_reasoning=send_reasoning,
            send_sources=send_sources,
            send_finish=send_finish,
        )


async def _single(event: events_.StreamEvent) -> AsyncIterator[events_.StreamEvent]:
    yield event


def stream_text(
    model: llm_.LanguageModel,
    *,
    tools: tools_.ToolSet | None = None,
    tool_choice: llm_.ToolChoiceLike | None = None,
    system: str | None = None,
    prompt: str | None = None,
    messages: Sequence[Any] | None = None,
    max_retries: int | None = None,
    abort_signal: abort_.AbortSignal | None = None,
    headers: dict[str, str] | None = None,
    max_steps: int = 1,
    continue_steps: bool = False,
    output: output_.Output | None = None,
    repair_tool_call: tool_calls_.RepairToolCall | None = None,
    active_tools: Sequence[str] | None = None,
    tool_call_streaming: bool = False,
    transforms: StreamTransform | Sequence[StreamTransform] = (),
    on_chunk: Callable[[events_.StreamEvent], Any] | None = None,
    on_error: Callable[[Any], Any] | None = None,
    on_finish: Callable[[generate_text_.GenerateTextResult], Any] | None = None,
    on_step_finish: generate_text_.StepCallback | None = None,
    provider_options: Mapping[str, Any] | None = None,
    tracer: telemetry_.Tracer | None = None,
    generate_message_id: Callable[[], str] = generate_text_.generate_message_id,
    generate_response_id: Callable[[], str] = generate_text_.generate_response_id,
    retry_policy: retry_.RetryPolicy | None = None,
    **settings: Any,
) -> StreamTextResult:
    """
    Stream text (and tool activity) from a language model.

    Must be called with a running event loop. Argument errors raise here;
    everything that fails later surfaces as an ``error`` event and as the
    rejection of the result's deferred values.
    """
    return StreamTextResult(
        model=model,
        tools=tools,
        tool_choice=tool_choice,
        system=system,
        prompt=prompt,
        messages=messages,
        max_retries=max_retries,
        abort_signal=abort_signal,
        headers=headers,
        max_steps=max_steps,
        continue_steps=continue_steps,
        output=output,
        repair_tool_call=repair_tool_call,
        active_tools=active_tools,
        tool_call_streaming=tool_call_streaming,
        transforms=[transforms] if callable(transforms) else list(transforms),
        on_chunk=on_chunk,
        on_error=on_error,
        on_finish=on_finish,
        on_step_finish=on_step_finish,
        provider_options=provider_options,
        tracer=tracer,
        generate_message_id=generate_message_id,
        generate_response_id=generate_response_id,
        retry_policy=retry_policy,
        settings=settings,
    )

"""
Structured object generation.

``generate_object`` asks the model for JSON (through a JSON response mode or
a forced tool call) and validates it with an output strategy.
``stream_object`` streams the partial object as the JSON text grows.
"""

from __future__ import annotations

import asyncio
import dataclasses
import datetime
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from typing import Any, Literal

from . import abort as abort_
from . import errors as errors_
from . import events as events_
from . import llm as llm_
from . import messages as messages_
from . import output_strategy as output_strategy_
from . import partial_json as partial_json_
from . import prompt as prompt_
from . import retry as retry_
from . import schema as schema_
from . import settings as settings_
from . import step as step_
from . import streams as streams_
from . import telemetry as telemetry_

logger = logging.getLogger(__name__)

ObjectGenerationMode = Literal["auto", "json", "tool"]
RepairText = Callable[..., Awaitable[str | None] | str | None]

_DEFAULT_TOOL_NAME = "json"
_DEFAULT_TOOL_DESCRIPTION = "Respond with a JSON object."


def generate_object_id() -> str:
    return messages_.generate_id("aiobj")


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _resolve_mode(
    mode: ObjectGenerationMode | None,
    strategy: output_strategy_.OutputStrategy,
    model: llm_.LanguageModel,
) -> Literal["json", "tool"]:
    if strategy.type == "no-schema" and mode is None:
        return "json"
    if mode in ("auto", None):
        if model.default_object_generation_mode is None:
            raise errors_.InvalidArgumentError(
                parameter="mode",
                value=mode,
                message="Model does not have a default object generation mode.",
            )
        return model.default_object_generation_mode
    return mode


@dataclasses.dataclass
class _ObjectCall:
    """What differs between the json and tool modes of one call."""

    mode: llm_.Mode
    prompt: prompt_.StandardizedPrompt


def _prepare_call(
    resolved_mode: Literal["json", "tool"],
    strategy: output_strategy_.OutputStrategy,
    model: llm_.LanguageModel,
    *,
    system: str | None,
    prompt: str | None,
    messages: Sequence[Any] | None,
    schema_name: str | None,
    schema_description: str | None,
) -> _ObjectCall:
    if resolved_mode == "json":
        if strategy.json_schema is None:
            system = output_strategy_.inject_json_instruction(system)
        elif not model.supports_structured_outputs:
            system = output_strategy_.inject_json_instruction(
                system, strategy.json_schema
            )
        return _ObjectCall(
            mode=llm_.ObjectJsonMode(
                schema=strategy.json_schema,
                name=schema_name,
                description=schema_description,
            ),
            prompt=prompt_.standardize_prompt(
                system=system, prompt=prompt, messages=messages
            ),
        )
    return _ObjectCall(
        mode=llm_.ObjectToolMode(
            tool=llm_.FunctionTool(
                name=schema_name or _DEFAULT_TOOL_NAME,
                description=schema_description or _DEFAULT_TOOL_DESCRIPTION,
                parameters=strategy.json_schema or {},
            )
        ),
        prompt=prompt_.standardize_prompt(
            system=system, prompt=prompt, messages=messages
        ),
    )


def _no_object(
    message: str,
    *,
    text: str | None = None,
    response: Any = None,
    usage: messages_.Usage | None = None,
    cause: BaseException | None = None,
) -> errors_.NoObjectGeneratedError:
    return errors_.NoObjectGeneratedError(
        f"No object generated: {message}",
        text=text,
        response=response,
        usage=usage,
        cause=cause,
    )


# ── generate_object ───────────────────────────────────────────────


@dataclasses.dataclass
class GenerateObjectResult:
    object: Any
    finish_reason: messages_.FinishReason
    usage: messages_.Usage
    response: step_.ResponseInfo
    warnings: list[Any] = dataclasses.field(default_factory=list)
    request: step_.RequestInfo = dataclasses.field(default_factory=step_.RequestInfo)
    provider_metadata: dict[str, Any] | None = None

    def to_json(self) -> str:
        return output_strategy_.to_json_text(self.object)


async def generate_object(
    model: llm_.LanguageModel,
    *,
    output: output_strategy_.OutputKind = "object",
    schema: schema_.SchemaLike | None = None,
    enum: Sequence[str] | None = None,
    schema_name: str | None = None,
    schema_description: str | None = None,
    mode: ObjectGenerationMode | None = None,
    system: str | None = None,
    prompt: str | None = None,
    messages: Sequence[Any] | None = None,
    max_retries: int | None = None,
    abort_signal: abort_.AbortSignal | None = None,
    headers: dict[str, str] | None = None,
    repair_text: RepairText | None = None,
    provider_options: Mapping[str, Any] | None = None,
    tracer: telemetry_.Tracer | None = None,
    generate_response_id: Callable[[], str] = generate_object_id,
    retry_policy: retry_.RetryPolicy | None = None,
    **settings: Any,
) -> GenerateObjectResult:
    """
    Generate a structured object.

    ``output`` picks the shape: an ``object`` matching ``schema``, an
    ``array`` of ``schema`` elements, one of the ``enum`` values, or any
    JSON (``no-schema``). A ``repair_text(text=..., error=...)`` hook gets
    one chance to fix text that does not parse or validate.
    """
    output_strategy_.validate_object_generation_input(
        output=output,
        mode=mode,
        schema=schema,
        schema_name=schema_name,
        schema_description=schema_description,
        enum_values=enum,
    )
    resolved_retries, retry = retry_.prepare_retries(max_retries)
    if retry_policy is not None:
        retry = retry_policy
    strategy = output_strategy_.get_output_strategy(output, schema, enum)
    call_settings = settings_.prepare_call_settings(**settings)
    tracer = tracer or telemetry_.NOOP_TRACER
    attributes = {
        "ai.model.provider": model.provider,
        "ai.model.id": model.model_id,
        "ai.settings.maxRetries": resolved_retries,
        "ai.settings.output": strategy.type,
    }

    async def run(span: telemetry_.Span) -> GenerateObjectResult:
        resolved_mode = _resolve_mode(mode, strategy, model)
        call = _prepare_call(
            resolved_mode,
            strategy,
            model,
            system=system,
            prompt=prompt,
            messages=messages,
            schema_name=schema_name,
            schema_description=schema_description,
        )
        options = llm_.CallOptions(
            mode=call.mode,
            prompt=call.prompt.to_model_messages(),
            input_format=call.prompt.type,
            settings=call_settings,
            abort_signal=abort_signal,
            headers=headers,
            provider_options=dict(provider_options) if provider_options else None,
        )

        async def do_generate(
            inner: telemetry_.Span,
        ) -> tuple[llm_.GenerateResponse, str, step_.ResponseInfo]:
            if abort_signal is not None:
                abort_signal.throw_if_aborted()
            result = await abort_.race(model.do_generate(options), abort_signal)
            info = result.response or llm_.ProviderResponseInfo()
            response = step_.ResponseInfo(
                id=info.id or generate_response_id(),
                timestamp=info.timestamp or _now(),
                model_id=info.model_id or model.model_id,
                headers=info.headers,
                body=info.body,
            )
            if resolved_mode == "json":
                text = result.text
                missing = "the model did not return a response."
            else:
                text = result.tool_calls[0].args if result.tool_calls else None
                missing = "the tool was not called."
            if text is None:
                raise _no_object(missing, response=response, usage=result.usage)
            inner.set_attributes(
                {
                    "ai.response.finishReason": result.finish_reason,
                    "ai.response.object": text,
                    "ai.usage.promptTokens": result.usage.prompt_tokens,
                    "ai.usage.completionTokens": result.usage.completion_tokens,
                }
            )
            return result, text, response

        result, text, response = await retry(
            lambda: telemetry_.record_span(
                tracer,
                "ai.generateObject.doGenerate",
                {**attributes, "ai.settings.mode": resolved_mode},
                do_generate,
            )
        )

        def process(candidate: str) -> Any:
            parsed = schema_.safe_parse_json(candidate)
            if not parsed.success:
                raise _no_object(
                    "could not parse the response.",
                    text=candidate,
                    response=response,
                    usage=result.usage,
                    cause=parsed.error,
                )
            validated = strategy.validate_final_result(
                parsed.value,
                output_strategy_.FinalResultContext(
                    text=candidate, response=response, usage=result.usage
                ),
            )
            if not validated.success:
                raise _no_object(
                    "response did not match schema.",
                    text=candidate,
                    response=response,
                    usage=result.usage,
                    cause=validated.error,
                )
            return validated.value

        try:
            value = process(text)
        except errors_.NoObjectGeneratedError as exc:
            repairable = isinstance(
                exc.cause, (errors_.JSONParseError, errors_.TypeValidationError)
            )
            if repair_text is None or not repairable:
                raise
            repaired = repair_text(text=text, error=exc.cause)
            if inspect.isawaitable(repaired):
                repaired = await repaired
            if repaired is None:
                raise
            logger.debug("repaired object text for %s output", strategy.type)
            value = process(repaired)

        span.set_attributes(
            {
                "ai.response.finishReason": result.finish_reason,
                "ai.usage.promptTokens": result.usage.prompt_tokens,
                "ai.usage.completionTokens": result.usage.completion_tokens,
            }
        )
        return GenerateObjectResult(
            object=value,
            finish_reason=result.finish_reason,
            usage=result.usage,
            response=response,
            warnings=list(result.warnings or []),
            request=result.request or step_.RequestInfo(),
            provider_metadata=result.provider_metadata,
        )

    return await telemetry_.record_span(tracer, "ai.generateObject", attributes, run)


# ── stream_object ─────────────────────────────────────────────────


@dataclasses.dataclass
class StreamObjectFinish:
    """Passed to ``on_finish``; ``object`` is ``None`` when ``error`` is set."""

    usage: messages_.Usage
    response: step_.ResponseInfo
    object: Any = None
    error: BaseException | None = None
    warnings: list[Any] = dataclasses.field(default_factory=list)
    provider_metadata: dict[str, Any] | None = None


class StreamObjectResult:
    """
    Handle on a running ``stream_object`` call.

    ``object`` settles with the validated final value (or rejects with
    ``NoObjectGeneratedError``); the stream properties replay the run.
    """

    def __init__(
        self,
        *,
        model: llm_.LanguageModel,
        strategy: output_strategy_.OutputStrategy,
        mode: ObjectGenerationMode | None,
        schema_name: str | None,
        schema_description: str | None,
        system: str | None,
        prompt: str | None,
        messages: Sequence[Any] | None,
        max_retries: int | None,
        abort_signal: abort_.AbortSignal | None,
        headers: dict[str, str] | None,
        provider_options: Mapping[str, Any] | None,
        on_error: Callable[[Any], Any] | None,
        on_finish: Callable[[StreamObjectFinish], Any] | None,
        tracer: telemetry_.Tracer | None,
        generate_response_id: Callable[[], str],
        retry_policy: retry_.RetryPolicy | None,
        settings: dict[str, Any],
    ) -> None:
        self.object: streams_.DelayedResult[Any] = streams_.DelayedResult()
        self.usage: streams_.DelayedResult[messages_.Usage] = streams_.DelayedResult()
        self.provider_metadata: streams_.DelayedResult[dict[str, Any] | None] = (
            streams_.DelayedResult()
        )
        self.warnings: streams_.DelayedResult[list[Any]] = streams_.DelayedResult()
        self.request: streams_.DelayedResult[step_.RequestInfo] = (
            streams_.DelayedResult()
        )
        self.response: streams_.DelayedResult[step_.ResponseInfo] = (
            streams_.DelayedResult()
        )

        self.output_strategy = strategy
        self._model = model
        self._mode = mode
        self._schema_name = schema_name
        self._schema_description = schema_description
        self._system = system
        self._prompt = prompt
        self._messages = messages
        self._abort_signal = abort_signal
        self._headers = headers
        self._provider_options = dict(provider_options) if provider_options else None
        self._on_error = on_error
        self._on_finish = on_finish
        self._tracer = tracer or telemetry_.NOOP_TRACER
        self._generate_response_id = generate_response_id

        resolved_retries, self._retry = retry_.prepare_retries(max_retries)
        if retry_policy is not None:
            self._retry = retry_policy
        self._call_settings = settings_.prepare_call_settings(**settings)
        self._attributes = {
            "ai.model.provider": model.provider,
            "ai.model.id": model.model_id,
            "ai.settings.maxRetries": resolved_retries,
            "ai.settings.output": strategy.type,
        }
        self._broadcast: streams_.Broadcast[events_.ObjectStreamEvent] = (
            streams_.Broadcast()
        )
        self._task = asyncio.get_running_loop().create_task(self._run())

    def _deferred(self) -> list[streams_.DelayedResult[Any]]:
        return [
            self.object,
            self.usage,
            self.provider_metadata,
            self.warnings,
            self.request,
            self.response,
        ]

    async def _emit(self, event: events_.ObjectStreamEvent) -> None:
        self._broadcast.push(event)
        if isinstance(event, events_.ErrorEvent) and self._on_error is not None:
            result = self._on_error(event.error)
            if inspect.isawaitable(result):
                await result

    async def _run(self) -> None:
        root = self._tracer.start_span("ai.streamObject", self._attributes)
        try:
            await self._stream(root)
        except Exception as exc:
            logger.debug("stream_object failed: %r", exc)
            root.record_exception(exc)
            for deferred in self._deferred():
                if not deferred.done:
                    deferred.reject(exc)
            try:
                await self._emit(events_.ErrorEvent(error=exc))
            except Exception as callback_error:
                self._broadcast.finish(callback_error)
        finally:
            self._broadcast.finish()
            root.end()

    async def _open_stream(
        self,
    ) -> tuple[telemetry_.Span, llm_.StreamResponse, Literal["json", "tool"]]:
        resolved_mode = _resolve_mode(self._mode, self.output_strategy, self._model)
        call = _prepare_call(
            resolved_mode,
            self.output_strategy,
            self._model,
            system=self._system,
            prompt=self._prompt,
            messages=self._messages,
            schema_name=self._schema_name,
            schema_description=self._schema_description,
        )
        options = llm_.CallOptions(
            mode=call.mode,
            prompt=call.prompt.to_model_messages(),
            input_format=call.prompt.type,
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
                "ai.streamObject.doStream",
                {**self._attributes, "ai.settings.mode": resolved_mode},
                do_stream,
                end_when_done=False,
            )
        )
        return span, response, resolved_mode

    async def _stream(self, root: telemetry_.Span) -> None:
        span, stream_response, resolved_mode = await self._open_stream()
        warnings = list(stream_response.warnings or [])
        self.request.resolve(stream_response.request or step_.RequestInfo())
        self.warnings.resolve(warnings)

        info = stream_response.response or llm_.ProviderResponseInfo()
        response = step_.ResponseInfo(
            id=info.id or self._generate_response_id(),
            timestamp=info.timestamp or _now(),
            model_id=info.model_id or self._model.model_id,
            headers=info.headers,
        )
        usage: messages_.Usage | None = None
        provider_metadata: dict[str, Any] | None = None
        final_object: Any = None
        final_error: BaseException | None = None

        accumulated = ""
        text_delta = ""
        latest_json: Any = None
        latest_object: Any = None
        is_first_delta = True

        try:
            async for part in abort_.abortable(
                stream_response.stream, self._abort_signal
            ):
                match part:
                    case llm_.TextDelta(text_delta=delta) if resolved_mode == "json":
                        pass
                    case llm_.ToolCallDelta(args_text_delta=delta) if (
                        resolved_mode == "tool"
                    ):
                        pass
                    case llm_.ResponseMetadata():
                        response = dataclasses.replace(
                            response,
                            id=part.id or response.id,
                            timestamp=part.timestamp or response.timestamp,
                            model_id=part.model_id or response.model_id,
                        )
                        continue
                    case llm_.ErrorChunk(error=error):
                        await self._emit(events_.ErrorEvent(error=error))
                        continue
                    case llm_.FinishChunk():
                        if text_delta:
                            await self._emit(events_.TextDeltaEvent(text_delta=text_delta))
                            text_delta = ""
                        usage = part.usage
                        provider_metadata = part.provider_metadata
                        await self._emit(
                            events_.FinishEvent(
                                finish_reason=part.finish_reason,
                                usage=usage,
                                response=response,
                                provider_metadata=provider_metadata,
                            )
                        )
                        self.usage.resolve(usage)
                        self.provider_metadata.resolve(provider_metadata)
                        self.response.resolve(response)

                        validated = self.output_strategy.validate_final_result(
                            latest_json,
                            output_strategy_.FinalResultContext(
                                text=accumulated, response=response, usage=usage
                            ),
                        )
                        if validated.success:
                            final_object = validated.value
                            self.object.resolve(final_object)
                        else:
                            final_error = _no_object(
                                "response did not match schema.",
                                text=accumulated,
                                response=response,
                                usage=usage,
                                cause=validated.error,
                            )
                            self.object.reject(final_error)
                        continue
                    case _:
                        continue

                accumulated += delta
                text_delta += delta
                parsed = partial_json_.parse_partial_json(accumulated)
                if parsed.value is None or parsed.value == latest_json:
                    continue
                result = self.output_strategy.validate_partial_result(
                    parsed.value,
                    text_delta=text_delta,
                    latest_object=latest_object,
                    is_first_delta=is_first_delta,
                    is_final_delta=parsed.state == "successful-parse",
                )
                if not result.success or result.value.partial == latest_object:
                    continue
                latest_json = parsed.value
                latest_object = result.value.partial
                await self._emit(events_.ObjectEvent(object=latest_object))
                await self._emit(
                    events_.TextDeltaEvent(text_delta=result.value.text_delta)
                )
                text_delta = ""
                is_first_delta = False
        finally:
            span.end()

        if usage is None:
            # the provider stream ended without a finish part
            final_error = _no_object(
                "the stream ended before it finished.",
                text=accumulated,
                response=response,
            )
            for deferred in (
                self.object,
                self.usage,
                self.provider_metadata,
                self.response,
            ):
                deferred.reject(final_error)

        if final_error is None:
            root.set_attributes(
                {"ai.response.object": output_strategy_.to_json_text(final_object)}
            )
        if self._on_finish is not None:
            finished = self._on_finish(
                StreamObjectFinish(
                    usage=usage or messages_.Usage(),
                    response=response,
                    object=final_object,
                    error=final_error,
                    warnings=warnings,
                    provider_metadata=provider_metadata,
                )
            )
            if inspect.isawaitable(finished):
                await finished

    # ── Public channels ───────────────────────────────────────────

    @property
    def full_stream(self) -> AsyncIterator[events_.ObjectStreamEvent]:
        return self._broadcast.subscribe()

    @property
    def partial_object_stream(self) -> AsyncIterator[Any]:
        return self._partials()

    @property
    def text_stream(self) -> AsyncIterator[str]:
        return self._text_deltas()

    @property
    def element_stream(self) -> AsyncIterator[Any]:
        """Complete array elements, once each (``array`` output only)."""
        return self.output_strategy.create_element_stream(self._broadcast.subscribe())

    async def _partials(self) -> AsyncIterator[Any]:
        async for event in self._broadcast.subscribe():
            if isinstance(event, events_.ObjectEvent):
                yield event.object

    async def _text_deltas(self) -> AsyncIterator[str]:
        async for event in self._broadcast.subscribe():
            if isinstance(event, events_.TextDeltaEvent):
                yield event.text_delta

    async def consume_stream(self) -> None:
        async for _ in self.full_stream:
            pass


def stream_object(
    model: llm_.LanguageModel,
    *,
    output: output_strategy_.OutputKind = "object",
    schema: schema_.SchemaLike | None = None,
    schema_name: str | None = None,
    schema_description: str | None = None,
    mode: ObjectGenerationMode | None = None,
    system: str | None = None,
    prompt: str | None = None,
    messages: Sequence[Any] | None = None,
    max_retries: int | None = None,
    abort_signal: abort_.AbortSignal | None = None,
    headers: dict[str, str] | None = None,
    provider_options: Mapping[str, Any] | None = None,
    on_error: Callable[[Any], Any] | None = None,
    on_finish: Callable[[StreamObjectFinish], Any] | None = None,
    tracer: telemetry_.Tracer | None = None,
    generate_response_id: Callable[[], str] = generate_object_id,
    retry_policy: retry_.RetryPolicy | None = None,
    **settings: Any,
) -> StreamObjectResult:
    """Stream a structured object; enum output is not supported here."""
    if output == "enum":
        raise errors_.UnsupportedFunctionalityError(
            functionality="enum output in stream_object"
        )
    output_strategy_.validate_object_generation_input(
        output=output,
        mode=mode,
        schema=schema,
        schema_name=schema_name,
        schema_description=schema_description,
    )
    return StreamObjectResult(
        model=model,
        strategy=output_strategy_.get_output_strategy(output, schema),
        mode=mode,
        schema_name=schema_name,
        schema_description=schema_description,
        system=system,
        prompt=prompt,
        messages=messages,
        max_retries=max_retries,
        abort_signal=abort_signal,
        headers=headers,
        provider_options=provider_options,
        on_error=on_error,
        on_finish=on_finish,
        tracer=tracer,
        generate_response_id=generate_response_id,
        retry_policy=retry_policy,
        settings=settings,
    )

"""
Non-streaming step loop.

One call to ``generate_text`` runs the model up to ``max_steps`` times. After
each response the next step type is decided: ``continue`` splices the next
response onto a length-truncated text, ``tool-result`` feeds executed tool
results back to the model, ``done`` ends the loop.
"""

from __future__ import annotations

import dataclasses
import datetime
import inspect
import json
import logging
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from . import abort as abort_
from . import errors as errors_
from . import llm as llm_
from . import messages as messages_
from . import output as output_
from . import prompt as prompt_
from . import retry as retry_
from . import settings as settings_
from . import step as step_
from . import telemetry as telemetry_
from . import tool_calls as tool_calls_
from . import tools as tools_

logger = logging.getLogger(__name__)

StepCallback = Callable[[step_.StepResult], Awaitable[None] | None]


def generate_message_id() -> str:
    return messages_.generate_id("msg")


def generate_response_id() -> str:
    return messages_.generate_id("aitxt")


# ── Text splicing ─────────────────────────────────────────────────

_LAST_WHITESPACE = re.compile(r"^([\s\S]*?)(\s+)(\S*)$")


@dataclasses.dataclass
class WhitespaceSplit:
    prefix: str
    whitespace: str
    suffix: str


def split_on_last_whitespace(text: str) -> WhitespaceSplit | None:
    """Split ``text`` around its last run of whitespace, if it has one."""
    match = _LAST_WHITESPACE.match(text)
    if match is None:
        return None
    return WhitespaceSplit(*match.groups())


def remove_text_after_last_whitespace(text: str) -> str:
    split = split_on_last_whitespace(text)
    return split.prefix + split.whitespace if split else text


def next_step_type(
    *,
    step_count: int,
    max_steps: int,
    continue_steps: bool,
    finish_reason: messages_.FinishReason,
    tool_call_count: int,
    tool_result_count: int,
) -> step_.StepType | None:
    """
    Decide what follows a finished step; ``None`` means the loop is done.

    ``step_count`` counts the steps run so far, including the one that just
    finished.
    """
    if step_count >= max_steps:
        return None
    if continue_steps and finish_reason == "length" and tool_call_count == 0:
        return "continue"
    if tool_call_count > 0 and tool_result_count == tool_call_count:
        return "tool-result"
    return None


def splice_step_text(
    running_text: str,
    original_text: str,
    *,
    step_type: step_.StepType,
    next_type: step_.StepType | None,
) -> str:
    """
    The text contributed by one step.

    A continue step drops its leading whitespace when the running text
    already ends in whitespace. When the next step continues this one, the
    possibly cut-off last word is removed; the next step re-emits it.
    """
    text = original_text
    if step_type == "continue" and running_text.rstrip() != running_text:
        text = text.lstrip()
    if next_type == "continue":
        text = remove_text_after_last_whitespace(text)
    return text


# ── Response messages ─────────────────────────────────────────────


def as_reasoning_details(
    reasoning: str | Sequence[step_.ReasoningDetail] | None,
) -> list[step_.ReasoningDetail]:
    if reasoning is None:
        return []
    if isinstance(reasoning, str):
        return [step_.ReasoningText(text=reasoning)]
    return list(reasoning)


def to_response_messages(
    *,
    text: str,
    files: Sequence[step_.GeneratedFile],
    reasoning: Sequence[step_.ReasoningDetail],
    tools: tools_.ToolSet,
    tool_calls: Sequence[step_.ResolvedToolCall],
    tool_results: Sequence[step_.ToolResult],
    message_id: str,
    generate_message_id: Callable[[], str] = generate_message_id,
) -> list[messages_.ResponseMessage]:
    """
    Build the assistant message (and tool message, if there are results)
    that record one step in the conversation.
    """
    content: list[Any] = []
    for detail in reasoning:
        if isinstance(detail, step_.ReasoningText):
            content.append(
                messages_.ReasoningPart(text=detail.text, signature=detail.signature)
            )
        else:
            content.append(messages_.RedactedReasoningPart(data=detail.data))
    content.extend(
        messages_.FilePart(data=f.as_base64, mime_type=f.mime_type) for f in files
    )
    # the text part is always present, even when empty
    content.append(messages_.TextPart(text=text))
    content.extend(
        messages_.ToolCallPart(
            tool_call_id=tc.tool_call_id, tool_name=tc.tool_name, args=tc.args
        )
        for tc in tool_calls
    )

    result: list[messages_.ResponseMessage] = [
        messages_.AssistantMessage(content=content, id=message_id)
    ]
    if tool_results:
        parts: list[messages_.ToolResultPart] = []
        for tr in tool_results:
            tool = tools.get(tr.tool_name)
            if tool is not None and tool.to_tool_result_content is not None:
                rich = tool.to_tool_result_content(tr.result)
                parts.append(
                    messages_.ToolResultPart(
                        tool_call_id=tr.tool_call_id,
                        tool_name=tr.tool_name,
                        result=rich,
                        content=rich,
                    )
                )
            else:
                parts.append(
                    messages_.ToolResultPart(
                        tool_call_id=tr.tool_call_id,
                        tool_name=tr.tool_name,
                        result=tr.result,
                    )
                )
        result.append(messages_.ToolMessage(content=parts, id=generate_message_id()))
    return result


def append_continuation(
    response_messages: list[messages_.ResponseMessage], text: str
) -> None:
    """Add a continue step's text to the assistant message it extends."""
    last = response_messages[-1] if response_messages else None
    if not isinstance(last, messages_.AssistantMessage):
        raise errors_.AISDKError(
            "A continue step must follow an assistant message."
        )
    if isinstance(last.content, str):
        last.content += text
    else:
        last.content.append(messages_.TextPart(text=text))


def snapshot(
    messages: Sequence[messages_.ResponseMessage],
) -> list[messages_.ResponseMessage]:
    # step records must not see messages added by later steps
    return [m.model_copy(deep=True) for m in messages]


async def notify_step_finish(
    callback: StepCallback | None, step: step_.StepResult
) -> None:
    if callback is None:
        return
    try:
        result = callback(step)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("on_step_finish callback failed")


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


# ── Result ────────────────────────────────────────────────────────


@dataclasses.dataclass
class GenerateTextResult:
    """The outcome of a full ``generate_text`` run (all steps)."""

    text: str
    finish_reason: messages_.FinishReason
    usage: messages_.Usage
    response: step_.ResponseInfo
    steps: list[step_.StepResult]
    reasoning: str | None = None
    reasoning_details: list[step_.ReasoningDetail] = dataclasses.field(
        default_factory=list
    )
    files: list[step_.GeneratedFile] = dataclasses.field(default_factory=list)
    sources: list[step_.Source] = dataclasses.field(default_factory=list)
    tool_calls: list[step_.ResolvedToolCall] = dataclasses.field(default_factory=list)
    tool_results: list[step_.ToolResult] = dataclasses.field(default_factory=list)
    warnings: list[Any] = dataclasses.field(default_factory=list)
    request: step_.RequestInfo = dataclasses.field(default_factory=step_.RequestInfo)
    provider_metadata: dict[str, Any] | None = None
    output_spec: output_.Output | None = dataclasses.field(default=None, repr=False)

    @property
    def output(self) -> Any:
        """The text parsed by the ``output`` given to ``generate_text``."""
        if self.output_spec is None:
            raise errors_.NoOutputSpecifiedError()
        return self.output_spec.parse_output(
            self.text,
            output_.OutputContext(response=self.response, usage=self.usage),
        )


# ── Entry point ───────────────────────────────────────────────────


def _call_attributes(
    model: llm_.LanguageModel,
    call_settings: settings_.CallSettings,
    max_retries: int,
) -> dict[str, Any]:
    return {
        "ai.model.provider": model.provider,
        "ai.model.id": model.model_id,
        "ai.settings.maxRetries": max_retries,
        **{
            f"ai.settings.{key}": value
            for key, value in call_settings.model_dump(exclude_none=True).items()
            if not isinstance(value, list)
        },
    }


async def generate_text(
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
    on_step_finish: StepCallback | None = None,
    provider_options: Mapping[str, Any] | None = None,
    tracer: telemetry_.Tracer | None = None,
    generate_message_id: Callable[[], str] = generate_message_id,
    generate_response_id: Callable[[], str] = generate_response_id,
    retry_policy: retry_.RetryPolicy | None = None,
    **settings: Any,
) -> GenerateTextResult:
    """
    Generate text (and run tools) with a language model.

    Tools with ``execute`` are run after each step; with ``max_steps > 1``
    their results are sent back to the model until it stops calling tools.
    Failures of model calls are retried per ``max_retries``; a failing tool
    makes the whole call fail with ``ToolExecutionError``.
    """
    if max_steps < 1:
        raise errors_.InvalidArgumentError(
            parameter="max_steps",
            value=max_steps,
            message="max_steps must be at least 1",
        )

    resolved_retries, retry = retry_.prepare_retries(max_retries)
    if retry_policy is not None:
        retry = retry_policy
    call_settings = settings_.prepare_call_settings(**settings)
    tracer = tracer or telemetry_.NOOP_TRACER

    initial_prompt = prompt_.standardize_prompt(
        system=output.inject_into_system_prompt(system, model) if output else system,
        prompt=prompt,
        messages=messages,
        tools=tools,
    )
    base_attributes = _call_attributes(model, call_settings, resolved_retries)

    async def run(span: telemetry_.Span) -> GenerateTextResult:
        mode = llm_.prepare_tools_and_tool_choice(tools, tool_choice, active_tools)

        response_messages: list[messages_.ResponseMessage] = []
        steps: list[step_.StepResult] = []
        sources: list[step_.Source] = []
        usage = messages_.Usage()
        text = ""
        step_type: step_.StepType | None = "initial"
        step_count = 0

        tool_calls: list[step_.ResolvedToolCall] = []
        tool_results: list[step_.ToolResult] = []
        reasoning_details: list[step_.ReasoningDetail] = []
        model_response: llm_.GenerateResponse
        response_info: step_.ResponseInfo

        while step_type is not None:
            input_format = (
                initial_prompt.type if step_count == 0 else "messages"
            )
            step_input = [*initial_prompt.messages, *response_messages]
            call_options = llm_.CallOptions(
                mode=mode,
                prompt=[*initial_prompt.to_model_messages(), *response_messages],
                input_format=input_format,
                response_format=output.response_format(model) if output else None,
                settings=call_settings,
                abort_signal=abort_signal,
                headers=headers,
                provider_options=dict(provider_options) if provider_options else None,
            )

            async def do_generate(inner: telemetry_.Span) -> llm_.GenerateResponse:
                if abort_signal is not None:
                    abort_signal.throw_if_aborted()
                result = await abort_.race(
                    model.do_generate(call_options), abort_signal
                )
                inner.set_attributes(
                    {
                        "ai.response.finishReason": result.finish_reason,
                        "ai.usage.promptTokens": result.usage.prompt_tokens,
                        "ai.usage.completionTokens": result.usage.completion_tokens,
                    }
                )
                return result

            model_response = await retry(
                lambda: telemetry_.record_span(
                    tracer,
                    "ai.generateText.doGenerate",
                    {**base_attributes, "ai.prompt.format": input_format},
                    do_generate,
                )
            )
            provider_info = model_response.response or llm_.ProviderResponseInfo()

            tool_calls = [
                await tool_calls_.parse_tool_call(
                    tc,
                    tools,
                    repair_tool_call=repair_tool_call,
                    system=system,
                    messages=step_input,
                )
                for tc in model_response.tool_calls or []
            ]
            tool_results = (
                []
                if tools is None
                else await abort_.race(
                    tool_calls_.execute_tools(
                        tool_calls,
                        tools,
                        messages=step_input,
                        abort_signal=abort_signal,
                        tracer=tracer,
                    ),
                    abort_signal,
                )
            )

            step_usage = model_response.usage
            usage = usage + step_usage
            step_count += 1
            next_type = next_step_type(
                step_count=step_count,
                max_steps=max_steps,
                continue_steps=continue_steps,
                finish_reason=model_response.finish_reason,
                tool_call_count=len(tool_calls),
                tool_result_count=len(tool_results),
            )

            step_text = splice_step_text(
                text,
                model_response.text or "",
                step_type=step_type,
                next_type=next_type,
            )
            if next_type == "continue" or step_type == "continue":
                text += step_text
            else:
                text = step_text

            reasoning_details = as_reasoning_details(model_response.reasoning)
            files = list(model_response.files or [])
            sources.extend(model_response.sources or [])

            if step_type == "continue":
                append_continuation(response_messages, step_text)
            else:
                response_messages.extend(
                    to_response_messages(
                        text=text,
                        files=files,
                        reasoning=reasoning_details,
                        tools=tools or {},
                        tool_calls=tool_calls,
                        tool_results=tool_results,
                        message_id=generate_message_id(),
                        generate_message_id=generate_message_id,
                    )
                )

            response_info = step_.ResponseInfo(
                id=provider_info.id or generate_response_id(),
                timestamp=provider_info.timestamp or _now(),
                model_id=provider_info.model_id or model.model_id,
                headers=provider_info.headers,
                body=provider_info.body,
                messages=snapshot(response_messages),
            )
            current_step = step_.StepResult(
                step_type=step_type,
                text=step_text,
                finish_reason=model_response.finish_reason,
                usage=step_usage,
                response=response_info,
                reasoning=step_.reasoning_text(reasoning_details),
                reasoning_details=reasoning_details,
                files=files,
                sources=list(model_response.sources or []),
                tool_calls=tool_calls,
                tool_results=tool_results,
                warnings=list(model_response.warnings or []),
                request=model_response.request or step_.RequestInfo(),
                is_continued=next_type == "continue",
                provider_metadata=model_response.provider_metadata,
            )
            steps.append(current_step)
            logger.debug(
                "step %d (%s) finished: %s -> %s",
                step_count,
                step_type,
                model_response.finish_reason,
                next_type or "done",
            )
            await notify_step_finish(on_step_finish, current_step)
            step_type = next_type

        span.set_attributes(
            {
                "ai.response.finishReason": model_response.finish_reason,
                "ai.response.text": model_response.text,
                "ai.response.toolCalls": json.dumps(
                    [dataclasses.asdict(tc) for tc in model_response.tool_calls or []]
                ),
                "ai.usage.promptTokens": usage.prompt_tokens,
                "ai.usage.completionTokens": usage.completion_tokens,
            }
        )

        return GenerateTextResult(
            text=text,
            finish_reason=model_response.finish_reason,
            usage=usage,
            response=dataclasses.replace(response_info, messages=response_messages),
            steps=steps,
            reasoning=step_.reasoning_text(reasoning_details),
            reasoning_details=reasoning_details,
            files=list(model_response.files or []),
            sources=sources,
            tool_calls=tool_calls,
            tool_results=tool_results,
            warnings=list(model_response.warnings or []),
            request=model_response.request or step_.RequestInfo(),
            provider_metadata=model_response.provider_metadata,
            output_spec=output,
        )

    return await telemetry_.record_span(
        tracer,
        "ai.generateText",
        {**base_attributes, "ai.prompt.system": system, "ai.maxSteps": max_steps},
        run,
    )

"""Resolution and execution of model-proposed tool calls."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from . import abort as abort_
from . import errors as errors_
from . import messages as messages_
from . import schema as schema_
from . import step as step_
from . import telemetry as telemetry_
from . import tools as tools_

logger = logging.getLogger(__name__)

RepairToolCall = Callable[
    ..., Awaitable[step_.ToolCall | None] | step_.ToolCall | None
]


def _do_parse_tool_call(
    tool_call: step_.ToolCall, tools: tools_.ToolSet
) -> step_.ResolvedToolCall:
    tool = tools.get(tool_call.tool_name)
    if tool is None:
        raise errors_.NoSuchToolError(
            tool_name=tool_call.tool_name, available_tools=list(tools)
        )

    if tool_call.args.strip() == "":
        result = schema_.safe_validate_types({}, tool.parameters)
    else:
        result = schema_.safe_parse_json(tool_call.args, tool.parameters)

    if result.error is not None:
        raise errors_.InvalidToolArgumentsError(
            tool_name=tool_call.tool_name,
            tool_args=tool_call.args,
            cause=result.error,
        )

    return step_.ResolvedToolCall(
        tool_call_id=tool_call.tool_call_id,
        tool_name=tool_call.tool_name,
        args=result.value,
    )


async def parse_tool_call(
    tool_call: step_.ToolCall,
    tools: tools_.ToolSet | None,
    *,
    repair_tool_call: RepairToolCall | None = None,
    system: str | None = None,
    messages: Sequence[messages_.Message] = (),
) -> step_.ResolvedToolCall:
    """Validate a tool call against its tool's schema, repairing it at most once."""
    if tools is None:
        raise errors_.NoSuchToolError(tool_name=tool_call.tool_name)

    try:
        return _do_parse_tool_call(tool_call, tools)
    except (errors_.NoSuchToolError, errors_.InvalidToolArgumentsError) as error:
        if repair_tool_call is None:
            raise

        def parameter_schema(tool_name: str) -> dict[str, Any]:
            return tools[tool_name].parameters.json_schema

        try:
            repaired = repair_tool_call(
                tool_call=tool_call,
                tools=tools,
                parameter_schema=parameter_schema,
                system=system,
                messages=list(messages),
                error=error,
            )
            if inspect.isawaitable(repaired):
                repaired = await repaired
        except Exception as repair_error:
            raise errors_.ToolCallRepairError(
                cause=repair_error, original_error=error
            ) from repair_error

        if repaired is None:
            raise

        logger.debug(
            "repaired tool call %s (%s)", tool_call.tool_call_id, tool_call.tool_name
        )
        return _do_parse_tool_call(repaired, tools)


async def execute_tool_call(
    tool_call: step_.ResolvedToolCall,
    tool: tools_.Tool,
    *,
    messages: Sequence[messages_.Message],
    abort_signal: abort_.AbortSignal | None = None,
    tracer: telemetry_.Tracer = telemetry_.NOOP_TRACER,
) -> step_.ToolResult:
    """Run one executable tool, wrapping its failure in ``ToolExecutionError``."""

    async def run(span: telemetry_.Span) -> step_.ToolResult:
        try:
            result = await tool.call(
                tool_call.args,
                tools_.ToolExecutionOptions(
                    tool_call_id=tool_call.tool_call_id,
                    messages=messages,
                    abort_signal=abort_signal,
                ),
            )
        except Exception as exc:
            logger.debug("tool %s failed: %r", tool_call.tool_name, exc)
            raise errors_.ToolExecutionError(
                tool_call_id=tool_call.tool_call_id,
                tool_name=tool_call.tool_name,
                tool_args=tool_call.args,
                cause=exc,
            ) from exc
        span.set_attributes({"ai.toolCall.result": json.dumps(result, default=str)})
        return step_.ToolResult(
            tool_call_id=tool_call.tool_call_id,
            tool_name=tool_call.tool_name,
            args=tool_call.args,
            result=result,
        )

    return await telemetry_.record_span(
        tracer,
        "ai.toolCall",
        {
            "ai.toolCall.name": tool_call.tool_name,
            "ai.toolCall.id": tool_call.tool_call_id,
            "ai.toolCall.args": json.dumps(tool_call.args, default=str),
        },
        run,
    )


async def execute_tools(
    tool_calls: Sequence[step_.ResolvedToolCall],
    tools: tools_.ToolSet,
    *,
    messages: Sequence[messages_.Message],
    abort_signal: abort_.AbortSignal | None = None,
    tracer: telemetry_.Tracer = telemetry_.NOOP_TRACER,
) -> list[step_.ToolResult]:
    """
    Run every executable tool call of a step concurrently.

    Calls to tools without ``execute`` are skipped. A failing call does not
    cancel its siblings; once all calls settled, the first failure is raised
    as ``ToolExecutionError``.
    """
    runnable = [
        (tc, tools[tc.tool_name])
        for tc in tool_calls
        if tc.tool_name in tools and tools[tc.tool_name].execute is not None
    ]
    outcomes = await asyncio.gather(
        *(
            execute_tool_call(
                tc, tool, messages=messages, abort_signal=abort_signal, tracer=tracer
            )
            for tc, tool in runnable
        ),
        return_exceptions=True,
    )

    results: list[step_.ToolResult] = []
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
        results.append(outcome)
    return results

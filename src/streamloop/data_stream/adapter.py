"""
Engine events → data stream protocol lines.
"""

from __future__ import annotations

import dataclasses
from collections.abc import AsyncIterable, AsyncIterator, Callable
from typing import Any

from ..core import events as events_
from . import protocol


def _to_camel_case(snake_str: str) -> str:
    components = snake_str.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


def _camel_dict(obj: Any) -> dict[str, Any]:
    d = dataclasses.asdict(obj)
    return {_to_camel_case(k): v for k, v in d.items() if v is not None}


def mask_error_message(error: Any) -> str:
    """Default error text: never leak provider or tool details to clients."""
    return "An error occurred."


def _usage(usage: Any, send_usage: bool) -> dict[str, int] | None:
    if not send_usage:
        return None
    return {
        "promptTokens": usage.prompt_tokens,
        "completionTokens": usage.completion_tokens,
    }


def _without_none(value: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in value.items() if v is not None}


def format_event(
    event: events_.StreamEvent,
    *,
    get_error_message: Callable[[Any], str] = mask_error_message,
    send_usage: bool = True,
    send_reasoning: bool = False,
    send_sources: bool = False,
    send_finish: bool = True,
) -> str | None:
    """The protocol line for one event, or ``None`` when it is not sent."""
    fmt = protocol.format_data_stream_part
    match event:
        case events_.TextDeltaEvent(text_delta=delta):
            return fmt("text", delta)
        case events_.ReasoningEvent(text_delta=delta):
            return fmt("reasoning", delta) if send_reasoning else None
        case events_.RedactedReasoningEvent(data=data):
            return fmt("redacted_reasoning", {"data": data}) if send_reasoning else None
        case events_.ReasoningSignatureEvent(signature=signature):
            if not send_reasoning:
                return None
            return fmt("reasoning_signature", {"signature": signature})
        case events_.FileEvent(file=file):
            return fmt("file", {"mimeType": file.mime_type, "data": file.as_base64})
        case events_.SourceEvent(source=source):
            return fmt("source", _camel_dict(source)) if send_sources else None
        case events_.ToolCallStreamingStartEvent():
            return fmt(
                "tool_call_streaming_start",
                {"toolCallId": event.tool_call_id, "toolName": event.tool_name},
            )
        case events_.ToolCallDeltaEvent():
            return fmt(
                "tool_call_delta",
                {
                    "toolCallId": event.tool_call_id,
                    "argsTextDelta": event.args_text_delta,
                },
            )
        case events_.ToolCallEvent():
            return fmt(
                "tool_call",
                {
                    "toolCallId": event.tool_call_id,
                    "toolName": event.tool_name,
                    "args": event.args,
                },
            )
        case events_.ToolResultEvent():
            return fmt(
                "tool_result",
                {"toolCallId": event.tool_call_id, "result": event.result},
            )
        case events_.ErrorEvent(error=error):
            return fmt("error", get_error_message(error))
        case events_.StepStartEvent(message_id=message_id):
            return fmt("start_step", {"messageId": message_id})
        case events_.StepFinishEvent():
            return fmt(
                "finish_step",
                _without_none(
                    {
                        "finishReason": event.finish_reason,
                        "usage": _usage(event.usage, send_usage),
                        "isContinued": event.is_continued,
                    }
                ),
            )
        case events_.FinishEvent():
            if not send_finish:
                return None
            return fmt(
                "finish_message",
                _without_none(
                    {
                        "finishReason": event.finish_reason,
                        "usage": _usage(event.usage, send_usage),
                    }
                ),
            )
        case _:
            raise ValueError(f"Unknown event type: {event!r}")


async def to_data_stream(
    events: AsyncIterable[events_.StreamEvent],
    *,
    get_error_message: Callable[[Any], str] = mask_error_message,
    send_usage: bool = True,
    send_reasoning: bool = False,
    send_sources: bool = False,
    send_finish: bool = True,
) -> AsyncIterator[str]:
    """
    Serialize an event stream for a data stream HTTP response.

    Error texts go through ``get_error_message``, which masks them by default.
    Reasoning and sources are opt-in.
    """
    async for event in events:
        line = format_event(
            event,
            get_error_message=get_error_message,
            send_usage=send_usage,
            send_reasoning=send_reasoning,
            send_sources=send_sources,
            send_finish=send_finish,
        )
        if line is not None:
            yield line

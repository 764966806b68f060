"""
Data stream protocol: one ``<code>:<json>\\n`` line per part.
"""

from __future__ import annotations

import dataclasses
import json
import math
from collections.abc import Callable, Mapping
from typing import Any

# headers a client needs to recognise a data stream response
DATA_STREAM_HEADERS = {
    "Content-Type": "text/plain; charset=utf-8",
    "x-vercel-ai-data-stream": "v1",
}


@dataclasses.dataclass(frozen=True)
class DataStreamPart:
    """A parsed line: the part name (e.g. ``"text"``) and its JSON value."""

    type: str
    value: Any


def _has_str(value: Any, *keys: str) -> bool:
    return isinstance(value, Mapping) and all(
        isinstance(value.get(k), str) for k in keys
    )


def _usage(value: Mapping[str, Any]) -> dict[str, float] | None:
    usage = value.get("usage")
    if not isinstance(usage, Mapping) or not {
        "promptTokens",
        "completionTokens",
    } <= usage.keys():
        return None

    def number(v: Any) -> float:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return v
        return math.nan

    return {
        "promptTokens": number(usage["promptTokens"]),
        "completionTokens": number(usage["completionTokens"]),
    }


def _parse_text(value: Any) -> Any:
    if not isinstance(value, str):
        raise ValueError('"text" parts expect a string value.')
    return value


def _parse_data(value: Any) -> Any:
    if not isinstance(value, list):
        raise ValueError('"data" parts expect an array value.')
    return value


def _parse_error(value: Any) -> Any:
    if not isinstance(value, str):
        raise ValueError('"error" parts expect a string value.')
    return value


def _parse_message_annotations(value: Any) -> Any:
    if not isinstance(value, list):
        raise ValueError('"message_annotations" parts expect an array value.')
    return value


def _parse_tool_call(value: Any) -> Any:
    if not _has_str(value, "toolCallId", "toolName") or not isinstance(
        value.get("args"), (Mapping, list)
    ):
        raise ValueError(
            '"tool_call" parts expect an object with a "toolCallId", "toolName", '
            'and "args" property.'
        )
    return value


def _parse_tool_result(value: Any) -> Any:
    if not _has_str(value, "toolCallId") or "result" not in value:
        raise ValueError(
            '"tool_result" parts expect an object with a "toolCallId" and a '
            '"result" property.'
        )
    return value


def _parse_tool_call_streaming_start(value: Any) -> Any:
    if not _has_str(value, "toolCallId", "toolName"):
        raise ValueError(
            '"tool_call_streaming_start" parts expect an object with a '
            '"toolCallId" and "toolName" property.'
        )
    return value


def _parse_tool_call_delta(value: Any) -> Any:
    if not _has_str(value, "toolCallId", "argsTextDelta"):
        raise ValueError(
            '"tool_call_delta" parts expect an object with a "toolCallId" and '
            '"argsTextDelta" property.'
        )
    return value


def _parse_finish_message(value: Any) -> Any:
    if not _has_str(value, "finishReason"):
        raise ValueError(
            '"finish_message" parts expect an object with a "finishReason" property.'
        )
    result: dict[str, Any] = {"finishReason": value["finishReason"]}
    if (usage := _usage(value)) is not None:
        result["usage"] = usage
    return result


def _parse_finish_step(value: Any) -> Any:
    if not _has_str(value, "finishReason"):
        raise ValueError(
            '"finish_step" parts expect an object with a "finishReason" property.'
        )
    result: dict[str, Any] = {"finishReason": value["finishReason"], "isContinued": False}
    if (usage := _usage(value)) is not None:
        result["usage"] = usage
    if isinstance(value.get("isContinued"), bool):
        result["isContinued"] = value["isContinued"]
    return result


def _parse_start_step(value: Any) -> Any:
    if not _has_str(value, "messageId"):
        raise ValueError(
            '"start_step" parts expect an object with a "messageId" property.'
        )
    return {"messageId": value["messageId"]}


def _parse_reasoning(value: Any) -> Any:
    if not isinstance(value, str):
        raise ValueError('"reasoning" parts expect a string value.')
    return value


def _parse_source(value: Any) -> Any:
    if not isinstance(value, Mapping):
        raise ValueError('"source" parts expect a Source object.')
    return value


def _parse_redacted_reasoning(value: Any) -> Any:
    if not _has_str(value, "data"):
        raise ValueError(
            '"redacted_reasoning" parts expect an object with a "data" property.'
        )
    return {"data": value["data"]}


def _parse_reasoning_signature(value: Any) -> Any:
    if not _has_str(value, "signature"):
        raise ValueError(
            '"reasoning_signature" parts expect an object with a "signature" property.'
        )
    return {"signature": value["signature"]}


def _parse_file(value: Any) -> Any:
    if not _has_str(value, "data", "mimeType"):
        raise ValueError(
            '"file" parts expect an object with a "data" and "mimeType" property.'
        )
    return value


@dataclasses.dataclass(frozen=True)
class PartSpec:
    code: str
    name: str
    parse: Callable[[Any], Any]


DATA_STREAM_PARTS: tuple[PartSpec, ...] = (
    PartSpec("0", "text", _parse_text),
    PartSpec("2", "data", _parse_data),
    PartSpec("3", "error", _parse_error),
    PartSpec("8", "message_annotations", _parse_message_annotations),
    PartSpec("9", "tool_call", _parse_tool_call),
    PartSpec("a", "tool_result", _parse_tool_result),
    PartSpec("b", "tool_call_streaming_start", _parse_tool_call_streaming_start),
    PartSpec("c", "tool_call_delta", _parse_tool_call_delta),
    PartSpec("d", "finish_message", _parse_finish_message),
    PartSpec("e", "finish_step", _parse_finish_step),
    PartSpec("f", "start_step", _parse_start_step),
    PartSpec("g", "reasoning", _parse_reasoning),
    PartSpec("h", "source", _parse_source),
    PartSpec("i", "redacted_reasoning", _parse_redacted_reasoning),
    PartSpec("j", "reasoning_signature", _parse_reasoning_signature),
    PartSpec("k", "file", _parse_file),
)

_BY_CODE = {part_spec.code: part_spec for part_spec in DATA_STREAM_PARTS}
_BY_NAME = {part_spec.name: part_spec for part_spec in DATA_STREAM_PARTS}


def format_data_stream_part(name: str, value: Any) -> str:
    """Encode one part as a protocol line (with the trailing newline)."""
    part_spec = _BY_NAME.get(name)
    if part_spec is None:
        raise ValueError(f"Invalid stream part type: {name}")
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return f"{part_spec.code}:{text}\n"


def parse_data_stream_part(line: str) -> DataStreamPart | None:
    """
    Decode one protocol line.

    Returns ``None`` for codes this version does not know, so newer servers
    can add parts. Malformed lines and invalid values raise ``ValueError``.
    """
    code, sep, payload = line.rstrip("\n").partition(":")
    if not sep:
        raise ValueError("Failed to parse stream string. No separator found.")
    part_spec = _BY_CODE.get(code)
    if part_spec is None:
        return None
    try:
        value = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Failed to parse stream part value: {payload!r}") from exc
    return DataStreamPart(type=part_spec.name, value=part_spec.parse(value))

"""@tool decorator, schema helpers, tool call parsing, repair and execution."""

from typing import Optional

import pydantic
import pytest

import streamloop as ai
from streamloop.core import errors, schema, step, tool_calls, tools


# -- Schema extraction from type hints ------------------------------------


def test_simple_types_produce_correct_schema() -> None:
    @ai.tool
    async def greet(name: str, count: int) -> str:
        """Say hello."""
        return f"Hello {name}" * count

    assert greet.name == "greet"
    assert greet.description == "Say hello."
    props = greet.parameters.json_schema["properties"]
    assert props["name"]["type"] == "string"
    assert props["count"]["type"] == "integer"
    assert set(greet.parameters.json_schema["required"]) == {"name", "count"}


def test_optional_param_not_required() -> None:
    @ai.tool
    async def search(query: str, limit: Optional[int] = None) -> str:
        """Search."""
        return query

    required = search.parameters.json_schema.get("required", [])
    assert "query" in required
    assert "limit" not in required
    assert "limit" in search.parameters.json_schema["properties"]


def test_options_parameter_excluded_from_schema() -> None:
    @ai.tool
    async def whoami(options: tools.ToolExecutionOptions) -> str:
        """Return the call id."""
        return options.tool_call_id

    assert whoami.parameters.json_schema["properties"] == {}


def test_tool_set_keys_by_name() -> None:
    @ai.tool
    def a() -> int:
        return 1

    @ai.tool
    def b() -> int:
        return 2

    assert list(ai.tool_set(a, b)) == ["a", "b"]


# -- Schema helpers --------------------------------------------------------


class Point(pydantic.BaseModel):
    x: int
    y: int


def test_pydantic_schema_validates() -> None:
    assert schema.safe_validate_types({"x": 1, "y": 2}, Point).value == Point(x=1, y=2)
    result = schema.safe_validate_types({"x": "nope"}, Point)
    assert not result.success
    assert isinstance(result.error, errors.TypeValidationError)


def test_json_schema_validates() -> None:
    s = ai.json_schema({"type": "object", "properties": {"n": {"type": "number"}}, "required": ["n"]})
    assert schema.safe_validate_types({"n": 1}, s).success
    assert not schema.safe_validate_types({}, s).success


def test_safe_parse_json() -> None:
    assert schema.safe_parse_json('{"x": 1, "y": 2}', Point).value == Point(x=1, y=2)
    bad = schema.safe_parse_json("{", Point)
    assert isinstance(bad.error, errors.JSONParseError)


# -- parse_tool_call -------------------------------------------------------


def point_tool(execute=None) -> tools.Tool:  # type: ignore[no-untyped-def]
    return tools.Tool(parameters=Point, description="A point.", execute=execute)


@pytest.mark.asyncio
async def test_parse_tool_call_validates_args() -> None:
    resolved = await tool_calls.parse_tool_call(
        step.ToolCall(tool_call_id="c1", tool_name="point", args='{"x": 1, "y": 2}'),
        {"point": point_tool()},
    )
    assert resolved.tool_call_id == "c1"
    assert resolved.args == Point(x=1, y=2)


@pytest.mark.asyncio
async def test_empty_args_validate_as_empty_object() -> None:
    resolved = await tool_calls.parse_tool_call(
        step.ToolCall(tool_call_id="c1", tool_name="t", args="  "),
        {"t": tools.Tool(parameters={"type": "object"})},
    )
    assert resolved.args == {}


@pytest.mark.asyncio
async def test_unknown_tool_raises_no_such_tool() -> None:
    with pytest.raises(errors.NoSuchToolError) as exc_info:
        await tool_calls.parse_tool_call(
            step.ToolCall(tool_call_id="c1", tool_name="nope", args="{}"),
            {"point": point_tool()},
        )
    assert exc_info.value.available_tools == ["point"]


@pytest.mark.asyncio
async def test_no_tools_raises_no_such_tool() -> None:
    with pytest.raises(errors.NoSuchToolError, match="No tools are available"):
        await tool_calls.parse_tool_call(
            step.ToolCall(tool_call_id="c1", tool_name="nope", args="{}"), None
        )


@pytest.mark.asyncio
async def test_invalid_args_raise() -> None:
    with pytest.raises(errors.InvalidToolArgumentsError) as exc_info:
        await tool_calls.parse_tool_call(
            step.ToolCall(tool_call_id="c1", tool_name="point", args='{"x": "a"}'),
            {"point": point_tool()},
        )
    assert exc_info.value.tool_args == '{"x": "a"}'


# -- Repair ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_repair_is_invoked_once() -> None:
    seen: list[object] = []

    async def repair(**kwargs: object) -> step.ToolCall:
        seen.append(kwargs["error"])
        assert kwargs["parameter_schema"]("point")["title"] == "Point"  # type: ignore[operator]
        return step.ToolCall(tool_call_id="c1", tool_name="point", args='{"x": 1, "y": 2}')

    resolved = await tool_calls.parse_tool_call(
        step.ToolCall(tool_call_id="c1", tool_name="point", args="{bad"),
        {"point": point_tool()},
        repair_tool_call=repair,
    )
    assert resolved.args == Point(x=1, y=2)
    assert len(seen) == 1
    assert isinstance(seen[0], errors.InvalidToolArgumentsError)


@pytest.mark.asyncio
async def test_repair_returning_none_reraises_original() -> None:
    with pytest.raises(errors.NoSuchToolError):
        await tool_calls.parse_tool_call(
            step.ToolCall(tool_call_id="c1", tool_name="nope", args="{}"),
            {"point": point_tool()},
            repair_tool_call=lambda **_: None,
        )


@pytest.mark.asyncio
async def test_failing_repair_raises_repair_error() -> None:
    def repair(**_: object) -> None:
        raise RuntimeError("repair broke")

    with pytest.raises(errors.ToolCallRepairError) as exc_info:
        await tool_calls.parse_tool_call(
            step.ToolCall(tool_call_id="c1", tool_name="nope", args="{}"),
            {"point": point_tool()},
            repair_tool_call=repair,
        )
    assert isinstance(exc_info.value.original_error, errors.NoSuchToolError)


@pytest.mark.asyncio
async def test_repaired_call_still_invalid_is_not_repaired_again() -> None:
    calls = 0

    def repair(**_: object) -> step.ToolCall:
        nonlocal calls
        calls += 1
        return step.ToolCall(tool_call_id="c1", tool_name="point", args="{still bad")

    with pytest.raises(errors.InvalidToolArgumentsError):
        await tool_calls.parse_tool_call(
            step.ToolCall(tool_call_id="c1", tool_name="point", args="{bad"),
            {"point": point_tool()},
            repair_tool_call=repair,
        )
    assert calls == 1


# -- Execution -------------------------------------------------------------


@pytest.mark.asyncio
async def test_decorated_tool_receives_kwargs_and_options() -> None:
    @ai.tool
    async def add(a: int, b: int, options: tools.ToolExecutionOptions) -> str:
        """Add."""
        return f"{options.tool_call_id}:{a + b}"

    resolved = await tool_calls.parse_tool_call(
        step.ToolCall(tool_call_id="c9", tool_name="add", args='{"a": 1, "b": 2}'),
        {"add": add},
    )
    result = await tool_calls.execute_tool_call(resolved, add, messages=[])
    assert result.result == "c9:3"


@pytest.mark.asyncio
async def test_execute_tools_skips_non_executable() -> None:
    calls = [
        step.ResolvedToolCall(tool_call_id="c1", tool_name="run", args={}),
        step.ResolvedToolCall(tool_call_id="c2", tool_name="client", args={}),
    ]
    toolset = {
        "run": tools.Tool(parameters={"type": "object"}, execute=lambda args, opts: "ran"),
        "client": tools.Tool(parameters={"type": "object"}),
    }
    results = await tool_calls.execute_tools(calls, toolset, messages=[])
    assert [(r.tool_call_id, r.result) for r in results] == [("c1", "ran")]


@pytest.mark.asyncio
async def test_execute_tools_wraps_failure() -> None:
    def explode(args: object, opts: object) -> None:
        raise ValueError("kaboom")

    calls = [step.ResolvedToolCall(tool_call_id="c1", tool_name="bad", args={"q": 1})]
    with pytest.raises(errors.ToolExecutionError) as exc_info:
        await tool_calls.execute_tools(
            calls, {"bad": tools.Tool(parameters={"type": "object"}, execute=explode)}, messages=[]
        )
    err = exc_info.value
    assert err.tool_call_id == "c1"
    assert err.tool_args == {"q": 1}
    assert isinstance(err.cause, ValueError)
    assert "kaboom" in err.message

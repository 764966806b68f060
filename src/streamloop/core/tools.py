from __future__ import annotations

import dataclasses
import inspect
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, get_type_hints

import pydantic

from . import schema as schema_

if TYPE_CHECKING:
    from . import abort as abort_
    from . import messages as messages_


@dataclasses.dataclass
class ToolExecutionOptions:
    """Context handed to ``execute`` next to the validated arguments."""

    tool_call_id: str
    messages: Sequence[messages_.Message]
    abort_signal: abort_.AbortSignal | None = None


Execute = Callable[[Any, ToolExecutionOptions], Any | Awaitable[Any]]


class Tool:
    """
    A capability the model may call.

    ``parameters`` describes (and validates) the arguments. Tools without
    ``execute`` are never run by the engine; their calls are handed back to
    the caller unresolved.
    """

    def __init__(
        self,
        *,
        parameters: schema_.SchemaLike,
        description: str | None = None,
        execute: Execute | None = None,
        to_tool_result_content: Callable[[Any], list[dict[str, Any]]] | None = None,
        name: str | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.parameters = schema_.as_schema(parameters)
        self.execute = execute
        self.to_tool_result_content = to_tool_result_content

    async def call(self, args: Any, options: ToolExecutionOptions) -> Any:
        if self.execute is None:
            raise RuntimeError(f"Tool {self.name!r} has no execute function")
        result = self.execute(args, options)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"Tool(name={self.name!r}, executable={self.execute is not None})"


ToolSet = Mapping[str, Tool]


def _find_options_param(hints: dict[str, Any]) -> str | None:
    for param_name, hint in hints.items():
        if hint is ToolExecutionOptions:
            return param_name
    return None


def tool(fn: Callable[..., Any]) -> Tool:
    """Decorator to define an executable tool from a (sync or async) function.

    The function's docstring becomes the description and its annotated
    parameters the argument schema. A parameter annotated with
    ``ToolExecutionOptions`` receives the call context instead of a model
    supplied value.
    """

    # 1. build the argument model from the signature
    sig = inspect.signature(fn)
    hints = get_type_hints(fn) if hasattr(fn, "__annotations__") else {}
    options_param = _find_options_param(hints)

    fields: dict[str, Any] = {}
    for param_name, param in sig.parameters.items():
        if param_name == options_param:
            continue
        param_type = hints.get(param_name, str)
        if param.default is inspect.Parameter.empty:
            fields[param_name] = (param_type, ...)
        else:
            fields[param_name] = (param_type, param.default)

    validator = pydantic.create_model(f"{fn.__name__}_Args", **fields)

    def validate(value: Any) -> dict[str, Any]:
        model = validator.model_validate(value)
        return {name: getattr(model, name) for name in fields}

    # 2. wrap the function as an execute callable
    async def execute(args: dict[str, Any], options: ToolExecutionOptions) -> Any:
        kwargs = dict(args)
        if options_param:
            kwargs[options_param] = options
        result = fn(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    return Tool(
        name=fn.__name__,
        description=inspect.getdoc(fn) or "",
        parameters=schema_.Schema(
            json_schema=validator.model_json_schema(), validate=validate
        ),
        execute=execute,
    )


def tool_set(*tools: Tool) -> dict[str, Tool]:
    """Key decorated tools by their function name."""
    result: dict[str, Tool] = {}
    for t in tools:
        if not t.name:
            raise ValueError("tool_set() needs named tools; use a dict instead")
        result[t.name] = t
    return result

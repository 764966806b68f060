"""Interceptors around a language model's generate and stream calls."""

from __future__ import annotations

import dataclasses
import inspect
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Literal

from typing_extensions import override

from . import llm as llm_

GenerateHandler = Callable[[llm_.CallOptions], Awaitable[llm_.GenerateResponse]]
StreamHandler = Callable[[llm_.CallOptions], Awaitable[llm_.StreamResponse]]


@dataclasses.dataclass
class LanguageModelMiddleware:
    """
    Optional hooks, each taking the next handler explicitly.

    - ``transform_params(options, type)`` rewrites call options before either call.
    - ``wrap_generate(do_generate, options, model)`` wraps ``do_generate``.
    - ``wrap_stream(do_stream, options, model)`` wraps ``do_stream``.
    """

    transform_params: (
        Callable[
            [llm_.CallOptions, Literal["generate", "stream"]],
            llm_.CallOptions | Awaitable[llm_.CallOptions],
        ]
        | None
    ) = None
    wrap_generate: (
        Callable[
            [GenerateHandler, llm_.CallOptions, llm_.LanguageModel],
            Awaitable[llm_.GenerateResponse],
        ]
        | None
    ) = None
    wrap_stream: (
        Callable[
            [StreamHandler, llm_.CallOptions, llm_.LanguageModel],
            Awaitable[llm_.StreamResponse],
        ]
        | None
    ) = None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class _WrappedModel(llm_.LanguageModel):
    def __init__(
        self,
        model: llm_.LanguageModel,
        middleware: LanguageModelMiddleware,
        model_id: str | None,
        provider_id: str | None,
    ) -> None:
        self._model = model
        self._middleware = middleware
        self.provider = provider_id or model.provider
        self.model_id = model_id or model.model_id
        self.supports_structured_outputs = model.supports_structured_outputs
        self.supports_image_urls = model.supports_image_urls
        self.default_object_generation_mode = model.default_object_generation_mode

    async def _params(
        self, options: llm_.CallOptions, kind: Literal["generate", "stream"]
    ) -> llm_.CallOptions:
        if self._middleware.transform_params is None:
            return options
        return await _maybe_await(self._middleware.transform_params(options, kind))

    @override
    async def do_generate(self, options: llm_.CallOptions) -> llm_.GenerateResponse:
        params = await self._params(options, "generate")
        if self._middleware.wrap_generate is None:
            return await self._model.do_generate(params)
        return await self._middleware.wrap_generate(
            self._model.do_generate, params, self._model
        )

    @override
    async def do_stream(self, options: llm_.CallOptions) -> llm_.StreamResponse:
        params = await self._params(options, "stream")
        if self._middleware.wrap_stream is None:
            return await self._model.do_stream(params)
        return await self._middleware.wrap_stream(
            self._model.do_stream, params, self._model
        )


def wrap_language_model(
    model: llm_.LanguageModel,
    middleware: LanguageModelMiddleware | Sequence[LanguageModelMiddleware],
    *,
    model_id: str | None = None,
    provider_id: str | None = None,
) -> llm_.LanguageModel:
    """Compose middleware around ``model``; the first middleware runs outermost."""
    stack = (
        [middleware]
        if isinstance(middleware, LanguageModelMiddleware)
        else list(middleware)
    )
    wrapped = model
    for mw in reversed(stack):
        wrapped = _WrappedModel(wrapped, mw, model_id, provider_id)
    return wrapped

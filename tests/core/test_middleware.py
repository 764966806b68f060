"""Middleware composition around a language model."""

import dataclasses

import pytest

import streamloop as ai
from streamloop.core import llm, settings

from ..conftest import MockLanguageModel, collect, text_parts, text_response


@pytest.mark.asyncio
async def test_transform_params_rewrites_options() -> None:
    def low_temperature(options: llm.CallOptions, kind: str) -> llm.CallOptions:
        return dataclasses.replace(
            options, settings=settings.CallSettings(temperature=0.1)
        )

    model = MockLanguageModel(generate=[text_response("ok")])
    wrapped = ai.wrap_language_model(
        model, ai.LanguageModelMiddleware(transform_params=low_temperature)
    )
    await ai.generate_text(wrapped, prompt="x", temperature=0.9)
    assert model.generate_calls[0].settings.temperature == 0.1


@pytest.mark.asyncio
async def test_first_middleware_runs_outermost() -> None:
    order: list[str] = []

    def tracing(name: str) -> ai.LanguageModelMiddleware:
        async def wrap_generate(do_generate, options, model):  # type: ignore[no-untyped-def]
            order.append(f"{name}:before")
            result = await do_generate(options)
            order.append(f"{name}:after")
            return result

        return ai.LanguageModelMiddleware(wrap_generate=wrap_generate)

    model = MockLanguageModel(generate=[text_response("ok")])
    wrapped = ai.wrap_language_model(model, [tracing("outer"), tracing("inner")])
    await ai.generate_text(wrapped, prompt="x")
    assert order == ["outer:before", "inner:before", "inner:after", "outer:after"]


@pytest.mark.asyncio
async def test_wrap_stream_and_identity() -> None:
    kinds: list[str] = []

    async def record_kind(options: llm.CallOptions, kind: str) -> llm.CallOptions:
        kinds.append(kind)
        return options

    model = MockLanguageModel(stream=[text_parts("hi")], supports_structured_outputs=True)
    wrapped = ai.wrap_language_model(
        model,
        ai.LanguageModelMiddleware(transform_params=record_kind),
        model_id="renamed",
    )
    assert wrapped.model_id == "renamed"
    assert wrapped.provider == "mock-provider"
    assert wrapped.supports_structured_outputs

    result = ai.stream_text(wrapped, prompt="x")
    assert await collect(result.text_stream) == ["hi"]
    assert kinds == ["stream"]

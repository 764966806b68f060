"""OpenAI chat adapter: request building, response mapping and error mapping."""

import asyncio
import json
from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest
from openai.types.chat import ChatCompletion, ChatCompletionChunk

from streamloop.core import abort, errors, llm, messages, settings
from streamloop.openai import OpenAIChatModel, to_api_call_error

from ..conftest import StalledStream, collect

URL = "https://api.example.com/v1/chat/completions"


class FakeCompletions:
    def __init__(self, result: Any) -> None:
        self.result = result
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def fake_model(result: Any, **kwargs: Any) -> tuple[OpenAIChatModel, FakeCompletions]:
    completions = FakeCompletions(result)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIChatModel("gpt-4o", client=client, **kwargs), completions  # type: ignore[arg-type]


def options(**kwargs: Any) -> llm.CallOptions:
    kwargs.setdefault("mode", llm.RegularMode())
    kwargs.setdefault("prompt", [messages.UserMessage(content="hi")])
    return llm.CallOptions(**kwargs)


def status_error(cls: type[openai.APIStatusError], status: int) -> openai.APIStatusError:
    response = httpx.Response(status, request=httpx.Request("POST", URL), text="nope")
    return cls("request failed", response=response, body={"error": "nope"})


def chunk(delta: dict[str, Any] | None = None, **extra: Any) -> ChatCompletionChunk:
    data: dict[str, Any] = {
        "id": "chunk-1",
        "object": "chat.completion.chunk",
        "created": 0,
        "model": "gpt-4o-2024",
        "choices": [],
    }
    if delta is not None:
        data["choices"] = [
            {"index": 0, "delta": delta, "finish_reason": extra.pop("finish_reason", None)}
        ]
    data.update(extra)
    return ChatCompletionChunk.model_validate(data)


async def chunks(*items: Any) -> Any:
    for item in items:
        if isinstance(item, Exception):
            raise item
        yield item


# -- Error mapping ---------------------------------------------------------


@pytest.mark.parametrize(
    ("cls", "status", "retryable"),
    [
        (openai.RateLimitError, 429, True),
        (openai.InternalServerError, 500, True),
        (openai.APIStatusError, 408, True),
        (openai.ConflictError, 409, True),
        (openai.BadRequestError, 400, False),
        (openai.AuthenticationError, 401, False),
    ],
)
def test_status_errors(cls: type[openai.APIStatusError], status: int, retryable: bool) -> None:
    err = to_api_call_error(status_error(cls, status))
    assert err.status_code == status
    assert err.is_retryable is retryable
    assert err.url == URL
    assert err.response_body == "nope"
    assert err.data == {"error": "nope"}


def test_connection_errors_are_retryable() -> None:
    request = httpx.Request("POST", URL)
    assert to_api_call_error(openai.APIConnectionError(request=request)).is_retryable
    assert to_api_call_error(openai.APITimeoutError(request=request)).is_retryable


@pytest.mark.asyncio
async def test_generate_maps_client_errors() -> None:
    model, _ = fake_model(status_error(openai.RateLimitError, 429))
    with pytest.raises(errors.APICallError) as exc_info:
        await model.do_generate(options())
    assert exc_info.value.is_retryable
    assert isinstance(exc_info.value.cause, openai.RateLimitError)


# -- Request building ------------------------------------------------------


@pytest.mark.asyncio
async def test_message_conversion() -> None:
    model, completions = fake_model(None)
    prompt = [
        messages.SystemMessage(content="sys"),
        messages.UserMessage(
            content=[
                messages.TextPart(text="look"),
                messages.ImagePart(image=b"\x00", mime_type="image/png"),
                messages.ImagePart(image="https://example.com/cat.png"),
            ]
        ),
        messages.AssistantMessage(
            content=[
                messages.ReasoningPart(text="thinking"),
                messages.TextPart(text="calling"),
                messages.ToolCallPart(tool_call_id="c1", tool_name="t", args={"x": 1}),
            ]
        ),
        messages.ToolMessage(
            content=[
                messages.ToolResultPart(tool_call_id="c1", tool_name="t", result={"ok": True}),
                messages.ToolResultPart(tool_call_id="c2", tool_name="t", result="plain"),
            ]
        ),
    ]
    kwargs, _ = model._request(options(prompt=prompt))
    assert kwargs["messages"] == [
        {"role": "system", "content": "sys"},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": "look"},
                {"type": "image_url", "image_url": {"url": "data:image/png;base64,AA=="}},
                {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}},
            ],
        },
        {
            "role": "assistant",
            "content": "calling",
            "reasoning": "thinking",
            "tool_calls": [
                {
                    "id": "c1",
                    "type": "function",
                    "function": {"name": "t", "arguments": '{"x": 1}'},
                }
            ],
        },
        {"role": "tool", "tool_call_id": "c1", "content": '{"ok": true}'},
        {"role": "tool", "tool_call_id": "c2", "content": "plain"},
    ]
    assert completions.calls == []


def test_file_parts_are_unsupported() -> None:
    model, _ = fake_model(None)
    prompt = [
        messages.UserMessage(
            content=[messages.FilePart(data="AA==", mime_type="application/pdf")]
        )
    ]
    with pytest.raises(errors.UnsupportedFunctionalityError):
        model._request(options(prompt=prompt))


def test_settings_tools_and_warnings() -> None:
    model, _ = fake_model(None)
    tool = llm.FunctionTool(name="t", parameters={"type": "object"}, description="d")
    kwargs, warnings = model._request(
        options(
            mode=llm.RegularMode(
                tools=[tool], tool_choice=llm.ToolChoice(type="tool", tool_name="t")
            ),
            settings=settings.CallSettings(
                max_tokens=10, top_k=3.0, stop_sequences=["END"], seed=1
            ),
            headers={"x-trace": "1"},
        )
    )
    assert kwargs["max_tokens"] == 10
    assert kwargs["temperature"] == 0
    assert kwargs["stop"] == ["END"]
    assert kwargs["seed"] == 1
    assert "top_k" not in kwargs
    assert warnings == [llm.CallWarning(type="unsupported-setting", setting="top_k")]
    assert kwargs["tools"][0]["function"]["name"] == "t"
    assert kwargs["tool_choice"] == {"type": "function", "function": {"name": "t"}}
    assert kwargs["extra_headers"] == {"x-trace": "1"}


def test_object_modes() -> None:
    schema = {"type": "object", "properties": {}}
    plain, _ = fake_model(None)
    kwargs, _ = plain._request(options(mode=llm.ObjectJsonMode(schema=schema)))
    assert kwargs["response_format"] == {"type": "json_object"}
    assert plain.default_object_generation_mode == "tool"

    strict, _ = fake_model(None, structured_outputs=True)
    kwargs, _ = strict._request(
        options(mode=llm.ObjectJsonMode(schema=schema, name="thing", description="A thing"))
    )
    assert kwargs["response_format"] == {
        "type": "json_schema",
        "json_schema": {
            "name": "thing",
            "schema": schema,
            "strict": True,
            "description": "A thing",
        },
    }

    tool = llm.FunctionTool(name="json", parameters=schema)
    kwargs, _ = plain._request(options(mode=llm.ObjectToolMode(tool=tool)))
    assert kwargs["tool_choice"] == {"type": "function", "function": {"name": "json"}}


def test_reasoning_and_provider_options_go_to_extra_body() -> None:
    model, _ = fake_model(None, thinking=True, budget_tokens=512)
    kwargs, _ = model._request(options(provider_options={"openai": {"user": "u1"}}))
    assert kwargs["extra_body"] == {
        "reasoning": {"enabled": True, "max_tokens": 512},
        "user": "u1",
    }


# -- Responses -------------------------------------------------------------


@pytest.mark.asyncio
async def test_do_generate() -> None:
    completion = ChatCompletion.model_validate(
        {
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 0,
            "model": "gpt-4o-2024",
            "choices": [
                {
                    "index": 0,
                    "finish_reason": "tool_calls",
                    "message": {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [
                            {
                                "id": "call_1",
                                "type": "function",
                                "function": {
                                    "name": "weather",
                                    "arguments": json.dumps({"city": "Oslo"}),
                                },
                            }
                        ],
                    },
                }
            ],
            "usage": {"prompt_tokens": 5, "completion_tokens": 7, "total_tokens": 12},
        }
    )
    model, completions = fake_model(completion)
    result = await model.do_generate(options())

    assert result.finish_reason == "tool-calls"
    assert result.usage == messages.Usage.from_tokens(5, 7)
    assert result.text is None
    assert result.tool_calls is not None
    assert result.tool_calls[0].tool_name == "weather"
    assert json.loads(result.tool_calls[0].args) == {"city": "Oslo"}
    assert result.response is not None
    assert result.response.id == "chatcmpl-1"
    assert result.response.model_id == "gpt-4o-2024"
    assert result.response.timestamp.year == 1970
    assert completions.calls[0]["model"] == "gpt-4o"


@pytest.mark.asyncio
async def test_do_stream_text_and_tool_calls() -> None:
    stream = chunks(
        chunk({"role": "assistant", "content": "Hel"}),
        chunk({"content": "lo"}),
        chunk(
            {
                "tool_calls": [
                    {
                        "index": 0,
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "weather", "arguments": ""},
                    }
                ]
            }
        ),
        chunk({"tool_calls": [{"index": 0, "function": {"arguments": '{"city":'}}]}),
        chunk(
            {"tool_calls": [{"index": 0, "function": {"arguments": '"Oslo"}'}}]},
            finish_reason="tool_calls",
        ),
        chunk(usage={"prompt_tokens": 4, "completion_tokens": 6, "total_tokens": 10}),
    )
    model, completions = fake_model(stream)
    response = await model.do_stream(options())
    parts = await collect(response.stream)

    assert completions.calls[0]["stream"] is True
    assert completions.calls[0]["stream_options"] == {"include_usage": True}
    assert parts == [
        llm.ResponseMetadata(id="chunk-1", timestamp=parts[0].timestamp, model_id="gpt-4o-2024"),
        llm.TextDelta(text_delta="Hel"),
        llm.TextDelta(text_delta="lo"),
        llm.ToolCallDelta(tool_call_id="call_1", tool_name="weather", args_text_delta='{"city":'),
        llm.ToolCallDelta(tool_call_id="call_1", tool_name="weather", args_text_delta='"Oslo"}'),
        llm.ToolCallChunk(tool_call_id="call_1", tool_name="weather", args='{"city":"Oslo"}'),
        llm.FinishChunk(finish_reason="tool-calls", usage=messages.Usage.from_tokens(4, 6)),
    ]


@pytest.mark.asyncio
async def test_do_stream_error_mid_stream() -> None:
    stream = chunks(
        chunk({"content": "partial"}),
        openai.APIConnectionError(request=httpx.Request("POST", URL)),
    )
    model, _ = fake_model(stream)
    response = await model.do_stream(options())
    parts = await collect(response.stream)

    assert [p.type for p in parts] == ["response-metadata", "text-delta", "error", "finish"]
    error = parts[2]
    assert isinstance(error, llm.ErrorChunk)
    assert isinstance(error.error, errors.APICallError)
    assert parts[3] == llm.FinishChunk(finish_reason="error")


# -- Abort -----------------------------------------------------------------


class HangingCompletions(FakeCompletions):
    def __init__(self) -> None:
        super().__init__(None)
        self.started = asyncio.Event()

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        self.started.set()
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_abort_interrupts_request() -> None:
    completions = HangingCompletions()
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    model = OpenAIChatModel("gpt-4o", client=client)  # type: ignore[arg-type]
    controller = abort.AbortController()

    pending = asyncio.ensure_future(
        model.do_generate(options(abort_signal=controller.signal))
    )
    await completions.started.wait()
    controller.abort()
    with pytest.raises(errors.AbortError):
        await asyncio.wait_for(pending, 1.0)


@pytest.mark.asyncio
async def test_abort_ends_idle_stream() -> None:
    stalled = StalledStream([chunk({"content": "Hel"})])
    model, _ = fake_model(stalled)
    controller = abort.AbortController()
    response = await model.do_stream(options(abort_signal=controller.signal))
    seen: list[str] = []

    async def drain() -> None:
        async for part in response.stream:
            seen.append(part.type)
            if part.type == "text-delta":
                controller.abort()

    with pytest.raises(errors.AbortError):
        await asyncio.wait_for(drain(), 1.0)
    assert seen == ["response-metadata", "text-delta"]
    assert stalled.cancelled

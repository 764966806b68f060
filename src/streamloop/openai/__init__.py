from __future__ import annotations

import base64
import contextlib
import datetime
import json
import os
from collections.abc import AsyncIterator, Iterator
from typing import Any

from typing_extensions import override

import openai

from ..core import abort as abort_
from ..core import errors as errors_
from ..core import llm as llm_
from ..core import messages as messages_
from ..core import step as step_


def _tools_to_openai(tools: list[llm_.FunctionTool]) -> list[dict[str, Any]]:
    """Convert function tools to OpenAI tool schema format."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }
        for tool in tools
    ]


def _tool_choice_to_openai(choice: llm_.ToolChoice | None) -> Any:
    if choice is None:
        return None
    if choice.type == "tool":
        return {"type": "function", "function": {"name": choice.tool_name}}
    return choice.type


def _json_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


def _user_part_to_openai(part: Any) -> dict[str, Any]:
    match part:
        case messages_.TextPart(text=text):
            return {"type": "text", "text": text}
        case messages_.ImagePart(image=bytes() as data):
            mime_type = part.mime_type or "image/jpeg"
            encoded = base64.b64encode(data).decode("ascii")
            return {
                "type": "image_url",
                "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
            }
        case messages_.ImagePart(image=str() as image):
            if not image.startswith(("http://", "https://", "data:")):
                image = f"data:{part.mime_type or 'image/jpeg'};base64,{image}"
            return {"type": "image_url", "image_url": {"url": image}}
        case _:
            raise errors_.UnsupportedFunctionalityError(
                functionality=f"'{part.type}' user message parts"
            )


def _messages_to_openai(messages: list[messages_.Message]) -> list[dict[str, Any]]:
    """Convert standardized messages to OpenAI API format.

    Assistant tool calls travel in ``tool_calls``; each tool result becomes
    its own ``tool`` role message. Reasoning is passed back under
    ``reasoning`` so gateways that preserve it can resume the model's
    thought process.
    """
    result: list[dict[str, Any]] = []
    for msg in messages:
        match msg:
            case messages_.SystemMessage(content=content):
                result.append({"role": "system", "content": content})
            case messages_.UserMessage(content=str() as content):
                result.append({"role": "user", "content": content})
            case messages_.UserMessage(content=parts):
                if len(parts) == 1 and isinstance(parts[0], messages_.TextPart):
                    result.append({"role": "user", "content": parts[0].text})
                else:
                    result.append(
                        {
                            "role": "user",
                            "content": [_user_part_to_openai(p) for p in parts],
                        }
                    )
            case messages_.AssistantMessage(content=str() as content):
                result.append({"role": "assistant", "content": content})
            case messages_.AssistantMessage(content=parts):
                content = ""
                reasoning = ""
                tool_calls = []
                for part in parts:
                    if isinstance(part, messages_.TextPart):
                        content += part.text
                    elif isinstance(part, messages_.ReasoningPart):
                        reasoning += part.text
                    elif isinstance(part, messages_.ToolCallPart):
                        tool_calls.append(
                            {
                                "id": part.tool_call_id,
                                "type": "function",
                                "function": {
                                    "name": part.tool_name,
                                    "arguments": _json_text(part.args),
                                },
                            }
                        )
                entry: dict[str, Any] = {"role": "assistant", "content": content}
                if reasoning:
                    entry["reasoning"] = reasoning
                if tool_calls:
                    entry["tool_calls"] = tool_calls
                result.append(entry)
            case messages_.ToolMessage(content=results):
                for part in results:
                    result.append(
                        {
                            "role": "tool",
                            "tool_call_id": part.tool_call_id,
                            "content": _json_text(part.result),
                        }
                    )
    return result


def _finish_reason(reason: str | None) -> messages_.FinishReason:
    match reason:
        case "stop":
            return "stop"
        case "length":
            return "length"
        case "content_filter":
            return "content-filter"
        case "function_call" | "tool_calls":
            return "tool-calls"
        case _:
            return "unknown"


def _usage(usage: Any) -> messages_.Usage:
    if usage is None:
        return messages_.Usage()
    return messages_.Usage.from_tokens(
        usage.prompt_tokens or 0, usage.completion_tokens or 0
    )


def _timestamp(created: int | None) -> datetime.datetime | None:
    if created is None:
        return None
    return datetime.datetime.fromtimestamp(created, tz=datetime.UTC)


def _reasoning_of(delta: Any) -> str | None:
    # gateways return reasoning either as an attribute or as an extra field
    value = getattr(delta, "reasoning", None)
    if not value and getattr(delta, "model_extra", None):
        value = delta.model_extra.get("reasoning")
    return value or None


def to_api_call_error(exc: openai.APIError) -> errors_.APICallError:
    """Map an OpenAI client failure to ``APICallError``.

    Rate limits, connection problems, timeouts, server errors and
    408/409 responses are retryable; every other status is not.
    """
    request = getattr(exc, "request", None)
    url = str(request.url) if request is not None else None
    match exc:
        case openai.APIConnectionError():
            return errors_.APICallError(
                exc.message, url=url, is_retryable=True, cause=exc
            )
        case openai.APIStatusError(status_code=status_code):
            retryable = (
                isinstance(exc, (openai.RateLimitError, openai.InternalServerError))
                or status_code in (408, 409)
                or status_code >= 500
            )
            return errors_.APICallError(
                exc.message,
                url=url,
                status_code=status_code,
                response_body=exc.response.text,
                is_retryable=retryable,
                data=exc.body,
                cause=exc,
            )
        case _:
            return errors_.APICallError(
                exc.message, url=url, is_retryable=False, cause=exc
            )


@contextlib.contextmanager
def _api_errors() -> Iterator[None]:
    try:
        yield
    except openai.APIError as exc:
        raise to_api_call_error(exc) from exc


class OpenAIChatModel(llm_.LanguageModel):
    """OpenAI chat completions adapter, with reasoning via the Vercel AI Gateway.

    See: https://vercel.com/docs/ai-gateway/openai-compat/advanced
    """

    provider = "openai.chat"

    def __init__(
        self,
        model: str = "gpt-4o",
        base_url: str | None = None,
        api_key: str | None = None,
        thinking: bool = False,
        budget_tokens: int | None = None,
        reasoning_effort: str | None = None,
        structured_outputs: bool = False,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            model: Model identifier (e.g. 'gpt-4o', 'openai/gpt-5.2' via gateway)
            base_url: API base URL (e.g. 'https://ai-gateway.vercel.sh/v1')
            api_key: API key; falls back to ``OPENAI_API_KEY``
            thinking: Enable reasoning output
            budget_tokens: Max tokens for reasoning (exclusive with reasoning_effort)
            reasoning_effort: 'minimal', 'low', 'medium', 'high'
            structured_outputs: Send JSON schemas as strict ``json_schema``
                response formats instead of plain JSON mode
            client: Preconfigured client, mostly for tests
        """
        self.model_id = model
        self._thinking = thinking
        self._budget_tokens = budget_tokens
        self._reasoning_effort = reasoning_effort
        self.supports_structured_outputs = structured_outputs
        self.default_object_generation_mode = "json" if structured_outputs else "tool"
        if client is None:
            resolved_key = api_key or os.environ.get("OPENAI_API_KEY") or ""
            client = openai.AsyncOpenAI(base_url=base_url, api_key=resolved_key)
        self._client = client

    def _request(
        self, options: llm_.CallOptions
    ) -> tuple[dict[str, Any], list[llm_.CallWarning]]:
        settings = options.settings
        warnings: list[llm_.CallWarning] = []
        if settings.top_k is not None:
            warnings.append(llm_.CallWarning(type="unsupported-setting", setting="top_k"))

        kwargs: dict[str, Any] = {
            "model": self.model_id,
            "messages": _messages_to_openai(options.prompt),
        }
        for key, value in (
            ("max_tokens", settings.max_tokens),
            ("temperature", settings.temperature),
            ("top_p", settings.top_p),
            ("presence_penalty", settings.presence_penalty),
            ("frequency_penalty", settings.frequency_penalty),
            ("stop", settings.stop_sequences),
            ("seed", settings.seed),
        ):
            if value is not None:
                kwargs[key] = value

        match options.mode:
            case llm_.RegularMode(tools=tools, tool_choice=tool_choice):
                if tools:
                    kwargs["tools"] = _tools_to_openai(tools)
                    kwargs["tool_choice"] = _tool_choice_to_openai(tool_choice)
            case llm_.ObjectJsonMode(schema=schema, name=name, description=description):
                if schema is not None and self.supports_structured_outputs:
                    json_schema: dict[str, Any] = {
                        "name": name or "response",
                        "schema": schema,
                        "strict": True,
                    }
                    if description:
                        json_schema["description"] = description
                    kwargs["response_format"] = {
                        "type": "json_schema",
                        "json_schema": json_schema,
                    }
                else:
                    kwargs["response_format"] = {"type": "json_object"}
            case llm_.ObjectToolMode(tool=tool):
                kwargs["tools"] = _tools_to_openai([tool])
                kwargs["tool_choice"] = {
                    "type": "function",
                    "function": {"name": tool.name},
                }

        extra_body: dict[str, Any] = {}
        if self._thinking:
            reasoning_config: dict[str, Any] = {"enabled": True}
            if self._budget_tokens is not None:
                reasoning_config["max_tokens"] = self._budget_tokens
            elif self._reasoning_effort is not None:
                reasoning_config["effort"] = self._reasoning_effort
            extra_body["reasoning"] = reasoning_config
        if options.provider_options and "openai" in options.provider_options:
            extra_body.update(options.provider_options["openai"])
        if extra_body:
            kwargs["extra_body"] = extra_body
        if options.headers:
            kwargs["extra_headers"] = options.headers
        return kwargs, warnings

    @override
    async def do_generate(self, options: llm_.CallOptions) -> llm_.GenerateResponse:
        kwargs, warnings = self._request(options)
        with _api_errors():
            response = await abort_.race(
                self._client.chat.completions.create(**kwargs), options.abort_signal
            )

        choice = response.choices[0]
        message = choice.message
        tool_calls = [
            step_.ToolCall(
                tool_call_id=tc.id,
                tool_name=tc.function.name,
                args=tc.function.arguments,
            )
            for tc in message.tool_calls or []
        ]
        return llm_.GenerateResponse(
            finish_reason=_finish_reason(choice.finish_reason),
            usage=_usage(response.usage),
            text=message.content,
            reasoning=_reasoning_of(message),
            tool_calls=tool_calls,
            warnings=warnings,
            request=step_.RequestInfo(body=kwargs),
            response=llm_.ProviderResponseInfo(
                id=response.id,
                timestamp=_timestamp(response.created),
                model_id=response.model,
                body=response.model_dump(),
            ),
        )

    @override
    async def do_stream(self, options: llm_.CallOptions) -> llm_.StreamResponse:
        kwargs, warnings = self._request(options)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}
        with _api_errors():
            stream = await abort_.race(
                self._client.chat.completions.create(**kwargs), options.abort_signal
            )
        return llm_.StreamResponse(
            stream=self._parts(stream, options.abort_signal),
            warnings=warnings,
            request=step_.RequestInfo(body=kwargs),
        )

    async def _parts(
        self, stream: Any, abort_signal: abort_.AbortSignal | None = None
    ) -> AsyncIterator[llm_.StreamPart]:
        tool_calls: dict[int, dict[str, Any]] = {}  # index -> {id, name, args}
        finish_reason: messages_.FinishReason = "unknown"
        usage = messages_.Usage()
        first = True

        try:
            async for chunk in abort_.abortable(stream, abort_signal):
                if first:
                    first = False
                    yield llm_.ResponseMetadata(
                        id=chunk.id,
                        timestamp=_timestamp(chunk.created),
                        model_id=chunk.model,
                    )
                if chunk.usage is not None:
                    usage = _usage(chunk.usage)
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                if choice.finish_reason is not None:
                    finish_reason = _finish_reason(choice.finish_reason)
                delta = choice.delta
                if delta is None:
                    continue

                if reasoning := _reasoning_of(delta):
                    yield llm_.ReasoningDelta(text_delta=reasoning)
                if delta.content:
                    yield llm_.TextDelta(text_delta=delta.content)

                for tc in delta.tool_calls or []:
                    entry = tool_calls.setdefault(
                        tc.index, {"id": None, "name": None, "args": ""}
                    )
                    if tc.id:
                        entry["id"] = tc.id
                    if tc.function is None:
                        continue
                    if tc.function.name:
                        entry["name"] = tc.function.name
                    if tc.function.arguments:
                        entry["args"] += tc.function.arguments
                        if entry["id"]:
                            yield llm_.ToolCallDelta(
                                tool_call_id=entry["id"],
                                tool_name=entry["name"] or "",
                                args_text_delta=tc.function.arguments,
                            )
        except openai.APIError as exc:
            yield llm_.ErrorChunk(error=to_api_call_error(exc))
            yield llm_.FinishChunk(finish_reason="error", usage=usage)
            return
        finally:
            # releases the HTTP connection when the caller stops early
            close = getattr(stream, "close", None)
            if close is not None:
                await close()

        for entry in tool_calls.values():
            if entry["id"] and entry["name"]:
                yield llm_.ToolCallChunk(
                    tool_call_id=entry["id"],
                    tool_name=entry["name"],
                    args=entry["args"] or "{}",
                )
        yield llm_.FinishChunk(finish_reason=finish_reason, usage=usage)


__all__ = ["OpenAIChatModel", "to_api_call_error"]

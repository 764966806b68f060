"""generate_text: single step, tool loops, continuation, retries and callbacks."""

import pydantic
import pytest

import streamloop as ai
from streamloop.core import errors, generate_text, llm, messages, output, step, tools

from ..conftest import (
    MockLanguageModel,
    RecordingTracer,
    SleepRecorder,
    counter_ids,
    fast_retry,
    text_response,
    tool_call,
)


def weather_tools(log: list[object] | None = None) -> dict[str, tools.Tool]:
    def execute(args: dict[str, object], options: tools.ToolExecutionOptions) -> str:
        if log is not None:
            log.append((args, options.tool_call_id))
        return f"sunny in {args['city']}"

    return {
        "weather": tools.Tool(
            description="Weather for a city.",
            parameters={
                "type": "object",
                "properties": {"city": {"type": "string"}},
                "required": ["city"],
            },
            execute=execute,
        )
    }


# -- Single step -----------------------------------------------------------


@pytest.mark.asyncio
async def test_single_step_text() -> None:
    model = MockLanguageModel(generate=[text_response("Hello, world!")])
    result = await ai.generate_text(model, prompt="hi", system="be nice")

    assert result.text == "Hello, world!"
    assert result.finish_reason == "stop"
    assert result.usage == messages.Usage.from_tokens(3, 10)
    assert len(result.steps) == 1
    assert result.steps[0].step_type == "initial"
    assert result.response.id == "id-0"

    [call] = model.generate_calls
    assert call.input_format == "prompt"
    assert isinstance(call.prompt[0], messages.SystemMessage)
    assert call.prompt[1] == messages.UserMessage(content="hi")
    assert call.mode == llm.RegularMode()


@pytest.mark.asyncio
async def test_response_messages_recorded() -> None:
    model = MockLanguageModel(generate=[text_response("Hi")])
    result = await ai.generate_text(
        model, prompt="hi", generate_message_id=counter_ids("msg")
    )
    [assistant] = result.response.messages
    assert isinstance(assistant, messages.AssistantMessage)
    assert assistant.id == "msg-0"
    assert assistant.text == "Hi"


@pytest.mark.asyncio
async def test_settings_forwarded() -> None:
    model = MockLanguageModel(generate=[text_response("x")])
    await ai.generate_text(model, prompt="hi", max_tokens=50, temperature=0.5, seed=3)
    settings = model.generate_calls[0].settings
    assert (settings.max_tokens, settings.temperature, settings.seed) == (50, 0.5, 3)


@pytest.mark.asyncio
async def test_invalid_arguments_raise_before_model_call() -> None:
    model = MockLanguageModel()
    with pytest.raises(errors.InvalidArgumentError):
        await ai.generate_text(model, prompt="hi", max_steps=0)
    with pytest.raises(errors.InvalidArgumentError):
        await ai.generate_text(model, prompt="hi", max_tokens=-1)
    with pytest.raises(errors.InvalidPromptError):
        await ai.generate_text(model)
    assert model.generate_calls == []


# -- Tool loop -------------------------------------------------------------


@pytest.mark.asyncio
async def test_tool_call_without_more_steps_stops() -> None:
    log: list[object] = []
    model = MockLanguageModel(
        generate=[
            text_response(
                None,
                finish_reason="tool-calls",
                tool_calls=[tool_call("weather", '{"city": "Paris"}')],
            )
        ]
    )
    result = await ai.generate_text(model, prompt="weather?", tools=weather_tools(log))

    assert len(result.steps) == 1
    assert result.tool_calls[0].args == {"city": "Paris"}
    assert result.tool_results[0].result == "sunny in Paris"
    assert log == [({"city": "Paris"}, "call-1")]
    assistant, tool_msg = result.response.messages
    assert isinstance(tool_msg, messages.ToolMessage)


@pytest.mark.asyncio
async def test_tool_loop_feeds_results_back() -> None:
    model = MockLanguageModel(
        generate=[
            text_response(
                "",
                finish_reason="tool-calls",
                tool_calls=[tool_call("weather", '{"city": "Oslo"}')],
                id="id-0",
            ),
            text_response("It is sunny.", prompt_tokens=5, completion_tokens=4, id="id-1"),
        ]
    )
    steps: list[step.StepResult] = []
    result = await ai.generate_text(
        model,
        prompt="weather?",
        tools=weather_tools(),
        max_steps=3,
        on_step_finish=steps.append,
    )

    assert result.text == "It is sunny."
    assert [s.step_type for s in result.steps] == ["initial", "tool-result"]
    assert steps == result.steps
    assert result.usage == messages.Usage.from_tokens(8, 14)
    assert result.response.id == "id-1"

    second = model.generate_calls[1]
    assert second.input_format == "messages"
    roles = [m.role for m in second.prompt]
    assert roles == ["user", "assistant", "tool"]
    assert second.prompt[2].content[0].result == "sunny in Oslo"

    # step records only see messages up to their own step
    assert len(result.steps[0].response.messages) == 2
    assert len(result.steps[1].response.messages) == 3
    assert len(result.response.messages) == 3


@pytest.mark.asyncio
async def test_max_steps_bounds_model_calls() -> None:
    looping = [
        text_response(
            "",
            finish_reason="tool-calls",
            tool_calls=[tool_call("weather", '{"city": "Rome"}', id=f"call-{i}")],
        )
        for i in range(5)
    ]
    model = MockLanguageModel(generate=looping)
    result = await ai.generate_text(
        model, prompt="loop", tools=weather_tools(), max_steps=2
    )
    assert len(model.generate_calls) == 2
    assert len(result.steps) == 2


@pytest.mark.asyncio
async def test_client_side_tool_ends_loop() -> None:
    model = MockLanguageModel(
        generate=[
            text_response(
                "",
                finish_reason="tool-calls",
                tool_calls=[tool_call("confirm", "{}")],
            )
        ]
    )
    result = await ai.generate_text(
        model,
        prompt="x",
        tools={"confirm": tools.Tool(parameters={"type": "object"})},
        max_steps=5,
    )
    assert len(result.steps) == 1
    assert result.tool_calls[0].tool_name == "confirm"
    assert result.tool_results == []


@pytest.mark.asyncio
async def test_failing_tool_rejects_call() -> None:
    def explode(args: object, options: object) -> None:
        raise RuntimeError("no network")

    model = MockLanguageModel(
        generate=[
            text_response("", finish_reason="tool-calls", tool_calls=[tool_call("net")])
        ]
    )
    with pytest.raises(errors.ToolExecutionError, match="no network"):
        await ai.generate_text(
            model,
            prompt="x",
            tools={"net": tools.Tool(parameters={"type": "object"}, execute=explode)},
        )


@pytest.mark.asyncio
async def test_unknown_tool_rejects_call() -> None:
    model = MockLanguageModel(
        generate=[text_response("", tool_calls=[tool_call("ghost")])]
    )
    with pytest.raises(errors.NoSuchToolError):
        await ai.generate_text(model, prompt="x", tools=weather_tools())


@pytest.mark.asyncio
async def test_active_tools_and_tool_choice() -> None:
    model = MockLanguageModel(generate=[text_response("ok")])
    all_tools = {**weather_tools(), "other": tools.Tool(parameters={"type": "object"})}
    await ai.generate_text(
        model,
        prompt="x",
        tools=all_tools,
        active_tools=["weather"],
        tool_choice={"type": "tool", "tool_name": "weather"},
    )
    mode = model.generate_calls[0].mode
    assert isinstance(mode, llm.RegularMode)
    assert [t.name for t in mode.tools or []] == ["weather"]
    assert mode.tool_choice == llm.ToolChoice(type="tool", tool_name="weather")


# -- Continuation ----------------------------------------------------------


@pytest.mark.asyncio
async def test_continue_steps_splice_text() -> None:
    model = MockLanguageModel(
        generate=[
            text_response("The quick brown fo", finish_reason="length"),
            text_response("fox jumps.", finish_reason="stop"),
        ]
    )
    result = await ai.generate_text(
        model, prompt="story", max_steps=3, continue_steps=True
    )

    assert result.text == "The quick brown fox jumps."
    assert [s.step_type for s in result.steps] == ["initial", "continue"]
    assert result.steps[0].text == "The quick brown "
    assert result.steps[0].is_continued
    assert not result.steps[1].is_continued

    # the continuation extends the same assistant message
    [assistant] = result.response.messages
    assert isinstance(assistant, messages.AssistantMessage)
    assert assistant.text == "The quick brown fox jumps."


@pytest.mark.asyncio
async def test_continue_step_trims_leading_whitespace_after_whitespace() -> None:
    model = MockLanguageModel(
        generate=[
            text_response("The quick ", finish_reason="length"),
            text_response(" brown fox.", finish_reason="stop"),
        ]
    )
    result = await ai.generate_text(
        model, prompt="story", max_steps=3, continue_steps=True
    )
    assert result.text == "The quick brown fox."
    assert result.steps[1].text == "brown fox."


@pytest.mark.parametrize(
    ("running", "text", "step_type", "expected"),
    [
        ("The quick ", " brown", "continue", "brown"),
        ("The quick", " brown", "continue", " brown"),
        ("The quick ", " brown", "tool-result", " brown"),
    ],
)
def test_splice_step_text_leading_whitespace(
    running: str, text: str, step_type: step.StepType, expected: str
) -> None:
    spliced = generate_text.splice_step_text(
        running, text, step_type=step_type, next_type=None
    )
    assert spliced == expected


# -- Retries and callbacks -------------------------------------------------


@pytest.mark.asyncio
async def test_retryable_model_error_is_retried() -> None:
    sleep = SleepRecorder()
    model = MockLanguageModel(
        generate=[
            errors.APICallError("overloaded", status_code=529),
            text_response("finally"),
        ]
    )
    result = await ai.generate_text(
        model, prompt="x", retry_policy=fast_retry(sleep=sleep)
    )
    assert result.text == "finally"
    assert len(model.generate_calls) == 2
    assert len(sleep.delays) == 1


@pytest.mark.asyncio
async def test_failing_step_callback_is_logged_not_raised(
    caplog: pytest.LogCaptureFixture,
) -> None:
    def broken(step_result: step.StepResult) -> None:
        raise ValueError("callback bug")

    model = MockLanguageModel(generate=[text_response("fine")])
    result = await ai.generate_text(model, prompt="x", on_step_finish=broken)
    assert result.text == "fine"
    assert "on_step_finish callback failed" in caplog.text


@pytest.mark.asyncio
async def test_abort_before_call() -> None:
    controller = ai.AbortController()
    controller.abort("stop")
    model = MockLanguageModel(generate=[text_response("never")])
    with pytest.raises(errors.AbortError):
        await ai.generate_text(model, prompt="x", abort_signal=controller.signal)


# -- Output specs ----------------------------------------------------------


class Answer(pydantic.BaseModel):
    answer: int


@pytest.mark.asyncio
async def test_object_output_parses_text() -> None:
    model = MockLanguageModel(generate=[text_response('{"answer": 42}')])
    result = await ai.generate_text(
        model, prompt="x", system="math", output=output.object(Answer)
    )
    assert result.output == Answer(answer=42)
    call = model.generate_calls[0]
    assert call.response_format == llm.ResponseFormat(type="json")
    assert "JSON schema" in call.prompt[0].content


@pytest.mark.asyncio
async def test_output_without_spec_raises() -> None:
    model = MockLanguageModel(generate=[text_response("x")])
    result = await ai.generate_text(model, prompt="x")
    with pytest.raises(errors.NoOutputSpecifiedError):
        _ = result.output


# -- Tracing ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_tracer_records_call_and_tool_spans() -> None:
    model = MockLanguageModel(
        generate=[
            text_response(
                "",
                finish_reason="tool-calls",
                tool_calls=[tool_call("weather", '{"city": "Oslo"}')],
            ),
            text_response("It is sunny."),
        ]
    )
    tracer = RecordingTracer()
    await ai.generate_text(
        model, prompt="weather?", tools=weather_tools(), max_steps=2, tracer=tracer
    )

    assert [s.name for s in tracer.spans] == [
        "ai.generateText",
        "ai.generateText.doGenerate",
        "ai.toolCall",
        "ai.generateText.doGenerate",
    ]
    assert all(s.ended for s in tracer.spans)
    assert tracer.spans[0].attributes["ai.maxSteps"] == 2


@pytest.mark.asyncio
async def test_tracer_records_failures() -> None:
    model = MockLanguageModel(generate=[RuntimeError("boom")])
    tracer = RecordingTracer()
    with pytest.raises(RuntimeError):
        await ai.generate_text(model, prompt="x", tracer=tracer)
    assert all(s.ended for s in tracer.spans)
    assert isinstance(tracer.spans[0].errors[0], RuntimeError)

"""
Streaming a multi-step tool loop.

Tool calls, their results and text deltas arrive on ``full_stream`` as the
model works; the aggregated values are awaitable on the result afterwards.
"""

import asyncio
import os

import dotenv

import streamloop as ai

dotenv.load_dotenv()


@ai.tool
async def add_one(number: int) -> int:
    """Add one to a number."""
    return number + 1


@ai.tool
async def multiply_by_two(number: int) -> int:
    """Multiply a number by two."""
    return number * 2


async def main() -> None:
    llm = ai.openai.OpenAIChatModel(
        model="openai/gpt-4o-mini",
        base_url="https://ai-gateway.vercel.sh/v1",
        api_key=os.environ.get("AI_GATEWAY_API_KEY"),
    )

    result = ai.stream_text(
        llm,
        system="Use the tools for every arithmetic step.",
        prompt="Start at 5, add one, then multiply by two. What do you get?",
        tools=ai.tool_set(add_one, multiply_by_two),
        max_steps=5,
        tool_call_streaming=True,
    )

    async for event in result.full_stream:
        match event.type:
            case "text-delta":
                print(event.text_delta, end="", flush=True)
            case "tool-call":
                print(f"\n> {event.tool_name}({event.args})")
            case "tool-result":
                print(f"< {event.result}")
            case "error":
                print(f"\n! {event.error}")
    print()

    print(f"finish reason: {await result.finish_reason}")
    print(f"total usage: {await result.usage}")


if __name__ == "__main__":
    asyncio.run(main())

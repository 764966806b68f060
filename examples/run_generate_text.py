import asyncio
import os

import dotenv

import streamloop as ai

dotenv.load_dotenv()


@ai.tool
async def get_weather(city: str) -> dict[str, object]:
    """Get the current weather for a city."""
    return {"city": city, "temperature": 18, "conditions": "cloudy"}


async def main() -> None:
    llm = ai.openai.OpenAIChatModel(
        model="openai/gpt-4o-mini",
        base_url="https://ai-gateway.vercel.sh/v1",
        api_key=os.environ.get("AI_GATEWAY_API_KEY"),
    )

    result = await ai.generate_text(
        llm,
        system="You are a concise weather assistant.",
        prompt="What's the weather like in Oslo?",
        tools=ai.tool_set(get_weather),
        max_steps=3,
        on_step_finish=lambda step: print(f"[step: {step.step_type}, {step.finish_reason}]"),
    )

    print(result.text)
    print(f"\nsteps: {len(result.steps)}, tokens: {result.usage.total_tokens}")


if __name__ == "__main__":
    asyncio.run(main())

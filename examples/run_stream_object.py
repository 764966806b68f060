import asyncio
import os

import dotenv
import pydantic

import streamloop as ai

dotenv.load_dotenv()


class WeatherForecast(pydantic.BaseModel):
    city: str
    temperature: float
    conditions: str
    humidity: int
    wind_speed: float


async def main() -> None:
    llm = ai.openai.OpenAIChatModel(
        model="openai/gpt-4o-mini",
        base_url="https://ai-gateway.vercel.sh/v1",
        api_key=os.environ.get("AI_GATEWAY_API_KEY"),
        structured_outputs=True,
    )

    # Streaming: partial objects grow as the JSON arrives
    print("--- Streaming ---")
    stream = ai.stream_object(
        llm,
        schema=WeatherForecast,
        schema_name="weather_forecast",
        system="You are a weather assistant. Respond with realistic weather data.",
        prompt="What's the weather like in San Francisco right now?",
    )
    async for partial in stream.partial_object_stream:
        print(partial)
    forecast = await stream.object
    print(f"\nParsed: {forecast!r}")

    # Non-streaming: get the validated object directly
    print("\n--- Generate ---")
    result = await ai.generate_object(
        llm,
        output="array",
        schema=WeatherForecast,
        prompt="Give me forecasts for Oslo and Lisbon.",
    )
    for item in result.object:
        print(f"{item.city}: {item.temperature} degrees, {item.conditions}")


if __name__ == "__main__":
    asyncio.run(main())

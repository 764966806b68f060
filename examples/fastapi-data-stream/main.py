"""FastAPI chat endpoint that streams a tool loop in the data stream protocol."""

import os

import dotenv
import fastapi
import fastapi.middleware.cors
import fastapi.responses
import pydantic

import streamloop as ai

dotenv.load_dotenv()


@ai.tool
async def get_weather(city: str) -> str:
    """Get the current weather for a city."""
    return f"It is sunny in {city}."


TOOLS = ai.tool_set(get_weather)


class ChatRequest(pydantic.BaseModel):
    """Request body sent by a chat frontend."""

    messages: list[ai.ui.UIMessage]


def get_llm() -> ai.LanguageModel:
    return ai.openai.OpenAIChatModel(
        model="openai/gpt-4o-mini",
        base_url="https://ai-gateway.vercel.sh/v1",
        api_key=os.environ.get("AI_GATEWAY_API_KEY"),
    )


app = fastapi.FastAPI(title="streamloop-chat")

app.add_middleware(
    fastapi.middleware.cors.CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.post("/api/chat")
async def chat(request: ChatRequest) -> fastapi.responses.StreamingResponse:
    """Run the tool loop and stream it back to the client."""
    result = ai.stream_text(
        get_llm(),
        system="You are a helpful assistant.",
        messages=ai.ui.convert_to_core_messages(request.messages, tools=TOOLS),
        tools=TOOLS,
        max_steps=5,
    )
    return fastapi.responses.StreamingResponse(
        result.to_data_stream(send_reasoning=True),
        headers=ai.DATA_STREAM_HEADERS,
    )


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}

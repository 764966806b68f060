from . import core, data_stream, openai, ui

# Re-export the public engine surface for convenient access
from .core.abort import AbortController, AbortSignal
from .core.errors import (
    AISDKError,
    AbortError,
    APICallError,
    InvalidArgumentError,
    InvalidPromptError,
    InvalidStreamPartError,
    InvalidToolArgumentsError,
    JSONParseError,
    MessageConversionError,
    NoObjectGeneratedError,
    NoOutputSpecifiedError,
    NoSuchToolError,
    RetryError,
    RetryExhausted,
    ToolCallRepairError,
    ToolExecutionError,
    TypeValidationError,
    UnsupportedFunctionalityError,
)
from .core.generate_object import (
    GenerateObjectResult,
    StreamObjectFinish,
    StreamObjectResult,
    generate_object,
    stream_object,
)
from .core.generate_text import GenerateTextResult, generate_text
from .core.llm import LanguageModel
from .core.messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolMessage,
    Usage,
    UserMessage,
    make_messages,
)
from .core.middleware import LanguageModelMiddleware, wrap_language_model
from .core import output
from .core.partial_json import parse_partial_json
from .core.retry import RetryPolicy
from .core.schema import json_schema
from .core.step import StepResult, ToolCall, ToolResult
from .core.stream_text import StreamTextResult, stream_text
from .core.telemetry import Span, Tracer
from .core.tools import Tool, tool, tool_set
from .data_stream import (
    DATA_STREAM_HEADERS,
    format_data_stream_part,
    parse_data_stream_part,
)

__all__ = [
    # Step loops
    "generate_text",
    "stream_text",
    "generate_object",
    "stream_object",
    "GenerateTextResult",
    "StreamTextResult",
    "GenerateObjectResult",
    "StreamObjectResult",
    "StreamObjectFinish",
    "StepResult",
    "ToolCall",
    "ToolResult",
    # Messages
    "Message",
    "SystemMessage",
    "UserMessage",
    "AssistantMessage",
    "ToolMessage",
    "Usage",
    "make_messages",
    # Tools and output
    "Tool",
    "tool",
    "tool_set",
    "json_schema",
    "output",
    "parse_partial_json",
    # Providers
    "LanguageModel",
    "LanguageModelMiddleware",
    "wrap_language_model",
    "RetryPolicy",
    "Tracer",
    "Span",
    "AbortController",
    "AbortSignal",
    # Wire protocol
    "format_data_stream_part",
    "parse_data_stream_part",
    "DATA_STREAM_HEADERS",
    # Errors
    "AISDKError",
    "AbortError",
    "APICallError",
    "InvalidArgumentError",
    "InvalidPromptError",
    "InvalidStreamPartError",
    "InvalidToolArgumentsError",
    "JSONParseError",
    "MessageConversionError",
    "NoObjectGeneratedError",
    "NoOutputSpecifiedError",
    "NoSuchToolError",
    "RetryError",
    "RetryExhausted",
    "ToolCallRepairError",
    "ToolExecutionError",
    "TypeValidationError",
    "UnsupportedFunctionalityError",
    # Submodules
    "core",
    "data_stream",
    "openai",
    "ui",
]

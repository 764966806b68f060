"""Error taxonomy shared by every part of the engine."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any, Literal


class AISDKError(Exception):
    """Base class for all errors raised by streamloop."""

    name: str = "AI_SDKError"

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @classmethod
    def is_instance(cls, error: object) -> bool:
        return isinstance(error, cls)


def get_error_message(error: object) -> str:
    """Best-effort human readable message for any raised value."""
    if error is None:
        return "unknown error"
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return json.dumps(error, default=str)


# -- Validation --------------------------------------------------------------


class InvalidArgumentError(AISDKError):
    name = "AI_InvalidArgumentError"

    def __init__(
        self,
        *,
        parameter: str,
        value: Any,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            f"Invalid argument for parameter {parameter}: {message}", cause=cause
        )
        self.parameter = parameter
        self.value = value


class InvalidPromptError(AISDKError):
    name = "AI_InvalidPromptError"

    def __init__(
        self, *, prompt: Any, message: str, cause: BaseException | None = None
    ) -> None:
        super().__init__(f"Invalid prompt: {message}", cause=cause)
        self.prompt = prompt


class MessageConversionError(AISDKError):
    name = "AI_MessageConversionError"

    def __init__(self, *, original_message: Any, message: str) -> None:
        super().__init__(message)
        self.original_message = original_message


class UnsupportedFunctionalityError(AISDKError):
    name = "AI_UnsupportedFunctionalityError"

    def __init__(self, *, functionality: str) -> None:
        super().__init__(f"'{functionality}' functionality not supported.")
        self.functionality = functionality


class NoOutputSpecifiedError(AISDKError):
    name = "AI_NoOutputSpecifiedError"

    def __init__(self, message: str = "No output specified.") -> None:
        super().__init__(message)


# -- Provider ----------------------------------------------------------------


class APICallError(AISDKError):
    """A failed call to a model provider.

    ``is_retryable`` is decided by the provider adapter; by default
    request timeouts, conflicts, rate limits and server errors retry.
    """

    name = "AI_APICallError"

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
        response_body: str | None = None,
        is_retryable: bool | None = None,
        data: Any = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.url = url
        self.status_code = status_code
        self.response_body = response_body
        self.data = data
        if is_retryable is None:
            is_retryable = status_code is not None and (
                status_code in (408, 409, 429) or status_code >= 500
            )
        self.is_retryable = is_retryable


RetryErrorReason = Literal["maxRetriesExceeded", "errorNotRetryable", "abort"]


class RetryError(AISDKError):
    name = "AI_RetryError"

    def __init__(
        self,
        *,
        message: str,
        reason: RetryErrorReason,
        errors: Sequence[BaseException],
    ) -> None:
        last_error = errors[-1] if errors else None
        super().__init__(message, cause=last_error)
        self.reason = reason
        self.errors = list(errors)
        self.last_error = last_error


RetryExhausted = RetryError


class AbortError(AISDKError):
    """The caller cancelled the operation through an abort signal."""

    name = "AbortError"

    def __init__(self, message: str = "The operation was aborted.", *, reason: Any = None) -> None:
        super().__init__(message)
        self.reason = reason


# -- Tools -------------------------------------------------------------------


class NoSuchToolError(AISDKError):
    name = "AI_NoSuchToolError"

    def __init__(
        self, *, tool_name: str, available_tools: Sequence[str] | None = None
    ) -> None:
        if available_tools:
            available = f"Available tools: {', '.join(available_tools)}."
        else:
            available = "No tools are available."
        super().__init__(
            f"Model tried to call unavailable tool '{tool_name}'. {available}"
        )
        self.tool_name = tool_name
        self.available_tools = list(available_tools) if available_tools else None


class InvalidToolArgumentsError(AISDKError):
    name = "AI_InvalidToolArgumentsError"

    def __init__(
        self, *, tool_name: str, tool_args: str, cause: BaseException
    ) -> None:
        super().__init__(
            f"Invalid arguments for tool {tool_name}: {get_error_message(cause)}",
            cause=cause,
        )
        self.tool_name = tool_name
        self.tool_args = tool_args


class ToolCallRepairError(AISDKError):
    name = "AI_ToolCallRepairError"

    def __init__(
        self,
        *,
        cause: BaseException,
        original_error: NoSuchToolError | InvalidToolArgumentsError,
    ) -> None:
        super().__init__(
            f"Error repairing tool call: {get_error_message(cause)}", cause=cause
        )
        self.original_error = original_error


class ToolExecutionError(AISDKError):
    name = "AI_ToolExecutionError"

    def __init__(
        self,
        *,
        tool_call_id: str,
        tool_name: str,
        tool_args: Any,
        cause: BaseException,
    ) -> None:
        super().__init__(
            f"Error executing tool {tool_name}: {get_error_message(cause)}",
            cause=cause,
        )
        self.tool_call_id = tool_call_id
        self.tool_name = tool_name
        self.tool_args = tool_args


# -- Output shape ------------------------------------------------------------


class JSONParseError(AISDKError):
    name = "AI_JSONParseError"

    def __init__(self, *, text: str, cause: BaseException) -> None:
        super().__init__(
            f"JSON parsing failed: Text: {text}.\n"
            f"Error message: {get_error_message(cause)}",
            cause=cause,
        )
        self.text = text


class TypeValidationError(AISDKError):
    name = "AI_TypeValidationError"

    def __init__(self, *, value: Any, cause: BaseException | None = None) -> None:
        super().__init__(
            f"Type validation failed: Value: {json.dumps(value, default=str)}.\n"
            f"Error message: {get_error_message(cause)}",
            cause=cause,
        )
        self.value = value


class NoObjectGeneratedError(AISDKError):
    name = "AI_NoObjectGeneratedError"

    def __init__(
        self,
        message: str = "No object generated.",
        *,
        text: str | None = None,
        response: Any = None,
        usage: Any = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.text = text
        self.response = response
        self.usage = usage


class InvalidStreamPartError(AISDKError):
    name = "AI_InvalidStreamPartError"

    def __init__(self, *, chunk: Any, message: str) -> None:
        super().__init__(message)
        self.chunk = chunk

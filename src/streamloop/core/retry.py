from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import tenacity

from . import abort as abort_
from . import errors as errors_

T = TypeVar("T")

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_INITIAL_DELAY = 2.0
DEFAULT_BACKOFF_FACTOR = 2.0


def _is_retryable(error: BaseException) -> bool:
    if abort_.is_abort_error(error):
        return False
    return isinstance(error, errors_.APICallError) and error.is_retryable


class RetryPolicy:
    """
    Bounded exponential backoff around a unit of work.

    Only provider errors flagged ``is_retryable`` are retried. Cancellation
    always propagates untouched. With ``max_retries=n`` the unit of work runs
    at most ``n + 1`` times, and the delays before the attempts are
    ``initial_delay * backoff_factor ** k`` for ``k = 0 .. n - 1``.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.backoff_factor = backoff_factor
        self._sleep = sleep

    def _retrying(self) -> tenacity.AsyncRetrying:
        return tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self.max_retries + 1),
            wait=tenacity.wait_exponential(
                multiplier=self.initial_delay, exp_base=self.backoff_factor
            ),
            retry=tenacity.retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def __call__(self, fn: Callable[[], Awaitable[T]]) -> T:
        errors: list[BaseException] = []
        try:
            async for attempt in self._retrying():
                with attempt:
                    try:
                        return await fn()
                    except Exception as exc:
                        errors.append(exc)
                        raise
        except Exception as exc:
            wrapped = self._wrap(exc, errors)
            if wrapped is None:
                raise
            raise wrapped from None
        raise AssertionError("unreachable")  # pragma: no cover

    def _wrap(
        self, error: BaseException, errors: list[BaseException]
    ) -> errors_.RetryError | None:
        if abort_.is_abort_error(error) or self.max_retries == 0:
            return None

        message = errors_.get_error_message(error)
        try_number = len(errors)

        if try_number > self.max_retries:
            return errors_.RetryError(
                message=f"Failed after {try_number} attempts. Last error: {message}",
                reason="maxRetriesExceeded",
                errors=errors,
            )
        if try_number <= 1:
            return None
        return errors_.RetryError(
            message=(
                f"Failed after {try_number} attempts with non-retryable error: "
                f"'{message}'"
            ),
            reason="errorNotRetryable",
            errors=errors,
        )


def prepare_retries(
    max_retries: int | None = None,
    *,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> tuple[int, RetryPolicy]:
    """Validate ``max_retries`` and build the policy used around model calls."""
    if max_retries is not None:
        if isinstance(max_retries, bool) or not isinstance(max_retries, int):
            raise errors_.InvalidArgumentError(
                parameter="max_retries",
                value=max_retries,
                message="max_retries must be an integer",
            )
        if max_retries < 0:
            raise errors_.InvalidArgumentError(
                parameter="max_retries",
                value=max_retries,
                message="max_retries must be >= 0",
            )

    resolved = DEFAULT_MAX_RETRIES if max_retries is None else max_retries
    policy = RetryPolicy(
        max_retries=resolved,
        initial_delay=initial_delay,
        backoff_factor=backoff_factor,
        sleep=sleep,
    )
    return resolved, policy

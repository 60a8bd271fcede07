"""Retry with exponential backoff and jitter for vector store calls.

Wraps ``tenacity.AsyncRetrying`` so every network call made by the engine is
retried the same way: exponential backoff capped at ``max_delay``, up to 10%
random jitter, a predicate that separates transient from permanent failures,
and an overall time budget that turns a slow dependency into an error
instead of a hang.
"""

import asyncio
import logging
import random
import socket
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
)
from tenacity.wait import wait_base

from hybrid_search.errors import (
    CircuitOpenError,
    IndexNotBuiltError,
    PermanentRequestError,
    RetryExhaustedError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

NETWORK_ERROR_MARKERS = (
    "network",
    "timeout",
    "timed out",
    "econnreset",
    "connection reset",
    "econnrefused",
    "connection refused",
    "etimedout",
    "enotfound",
    "name or service not known",
    "temporary failure in name resolution",
    "socket hang up",
)

NETWORK_ERROR_TYPES = (
    TimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
    socket.gaierror,
    httpx.TransportError,
)

RATE_LIMIT_MARKERS = ("rate limit", "too many requests")

TEMPORARY_MARKERS = ("temporary", "unavailable")


def is_retryable_error(error: BaseException | None) -> bool:
    """Classify an error as retryable (transient) or not.

    Args:
        error: Exception raised by an operation.

    Returns:
        True for network failures, retryable HTTP status codes and
        rate-limit or temporary-unavailability messages.
    """
    if error is None:
        return False

    if isinstance(error, (PermanentRequestError, CircuitOpenError, IndexNotBuiltError)):
        return False
    if isinstance(error, TransientNetworkError):
        return True
    if isinstance(error, NETWORK_ERROR_TYPES):
        return True

    status_code = getattr(error, "status_code", None) or getattr(error, "status", None)
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        return True

    message = str(error).lower()
    if any(marker in message for marker in NETWORK_ERROR_MARKERS):
        return True
    if any(marker in message for marker in RATE_LIMIT_MARKERS):
        return True
    return any(marker in message for marker in TEMPORARY_MARKERS)


@dataclass
class RetryOptions:
    """Retry configuration.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1).
        base_delay: Delay before the first retry in seconds.
        max_delay: Upper bound for the exponential delay in seconds.
        backoff_factor: Multiplier applied per attempt.
        timeout: Overall time budget in seconds for all attempts, or None.
        jitter_ratio: Maximum jitter as a fraction of the delay.
        retry_predicate: Decides whether an error is worth retrying.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    timeout: float | None = None
    jitter_ratio: float = 0.1
    retry_predicate: Callable[[BaseException], bool] = field(default=is_retryable_error)


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retried operation.

    Attributes:
        success: Whether an attempt succeeded.
        result: Value returned by the successful attempt.
        error: Last error when every attempt failed.
        attempts: Number of attempts made.
        total_time: Wall time spent in seconds, including backoff sleeps.
    """

    success: bool
    result: T | None = None
    error: BaseException | None = None
    attempts: int = 0
    total_time: float = 0.0

    def unwrap(self) -> T:
        """Return the result or raise the failure.

        Errors that were still retryable when attempts ran out are raised as
        ``RetryExhaustedError``; non-retryable errors are raised unchanged.
        """
        if self.success:
            return self.result  # type: ignore[return-value]
        if self.error is not None and not is_retryable_error(self.error):
            raise self.error
        raise RetryExhaustedError(
            f"Operation failed after {self.attempts} attempts: {self.error}",
            attempts=self.attempts,
            last_error=self.error,
        ) from self.error


class wait_backoff_with_jitter(wait_base):  # noqa: N801 - tenacity naming convention
    """Exponential backoff capped at ``max_delay`` plus up to ``jitter_ratio`` jitter."""

    def __init__(
        self,
        base_delay: float,
        max_delay: float,
        backoff_factor: float,
        jitter_ratio: float = 0.1,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter_ratio = jitter_ratio

    def __call__(self, retry_state: RetryCallState) -> float:
        attempt = retry_state.attempt_number - 1
        delay = min(self.base_delay * self.backoff_factor**attempt, self.max_delay)
        return delay + delay * self.jitter_ratio * random.random()


def _log_before_sleep(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        f"Attempt {retry_state.attempt_number} failed, retrying in {delay:.2f}s: {error}"
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryResult[T]:
    """Execute an async operation with exponential backoff retries.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt.
        options: Retry configuration (defaults used if None).
        sleep: Coroutine used for backoff sleeps (injectable for tests).

    Returns:
        RetryResult describing the outcome. Never raises for operation errors.
    """
    options = options or RetryOptions()
    start = time.monotonic()

    stop = stop_after_attempt(options.max_retries + 1)
    if options.timeout is not None:
        stop = stop | stop_after_delay(options.timeout)

    retrying = AsyncRetrying(
        stop=stop,
        wait=wait_backoff_with_jitter(
            base_delay=options.base_delay,
            max_delay=options.max_delay,
            backoff_factor=options.backoff_factor,
            jitter_ratio=options.jitter_ratio,
        ),
        retry=retry_if_exception(options.retry_predicate),
        before_sleep=_log_before_sleep,
        sleep=sleep,
        reraise=True,
    )

    attempts = 0
    try:
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                result = await _run_attempt(operation, options.timeout, start)
    except Exception as e:
        if not options.retry_predicate(e):
            logger.info(f"Non-retryable error, stopping retries: {e}")
        return RetryResult(
            success=False,
            error=e,
            attempts=attempts,
            total_time=time.monotonic() - start,
        )

    return RetryResult(
        success=True,
        result=result,
        attempts=attempts,
        total_time=time.monotonic() - start,
    )


async def _run_attempt(
    operation: Callable[[], Awaitable[T]], budget: float | None, start: float
) -> T:
    """Run one attempt, bounded by whatever remains of the time budget."""
    if budget is None:
        return await operation()
    remaining = budget - (time.monotonic() - start)
    if remaining <= 0:
        raise TimeoutError(f"Retry time budget of {budget:.1f}s exhausted")
    return await asyncio.wait_for(operation(), timeout=remaining)


async def retry_call(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> tuple[T, int]:
    """Execute with retries and raise on failure.

    Returns:
        Tuple of (result, attempts).

    Raises:
        RetryExhaustedError: If a retryable error persisted past the last attempt.
        Exception: The original error if it was not retryable.
    """
    outcome = await with_retry(operation, options, sleep=sleep)
    return outcome.unwrap(), outcome.attempts

"""Circuit breaker guarding the vector store connection.

After ``max_failures`` consecutive failures the circuit opens and every call
is rejected with ``CircuitOpenError`` until ``reset_timeout`` has elapsed.
The first call after that is let through as a probe (HALF_OPEN); its outcome
closes or re-opens the circuit. Concurrent callers arriving while the probe
is in flight are rejected as if the circuit were still open.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from hybrid_search.errors import CircuitOpenError, PermanentRequestError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker state.

    Attributes:
        CLOSED: Calls flow normally.
        OPEN: Calls fail fast without contacting the dependency.
        HALF_OPEN: A single probe call decides the next state.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Three-state circuit breaker for async operations.

    ``PermanentRequestError`` does not count as a failure: the dependency
    answered, the request itself was wrong.

    Example:
        >>> breaker = CircuitBreaker(max_failures=5, reset_timeout=60.0)
        >>> result = await breaker.call(lambda: store.similarity_search(...))
    """

    def __init__(
        self,
        max_failures: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            max_failures: Consecutive failures that open the circuit.
            reset_timeout: Seconds to stay open before admitting a probe.
            clock: Monotonic time source (injectable for tests).
        """
        self.max_failures = max_failures
        self.reset_timeout = reset_timeout
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state without triggering transitions."""
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures recorded since the last success."""
        return self._failure_count

    @property
    def is_open(self) -> bool:
        """Whether calls are currently being rejected."""
        return self._state is CircuitState.OPEN

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an operation through the breaker.

        Args:
            operation: Zero-argument coroutine factory.

        Returns:
            The operation result.

        Raises:
            CircuitOpenError: If the circuit is open or a probe is already running.
            Exception: Whatever the operation raised.
        """
        half_open_trial = await self._before_call()

        try:
            result = await operation()
        except PermanentRequestError:
            await self._release_probe()
            raise
        except asyncio.CancelledError:
            if half_open_trial:
                self._abandon_trial()
            raise
        except Exception:
            await self._on_failure()
            raise

        await self._on_success()
        return result

    async def _before_call(self) -> bool:
        """Admit or reject a call; True when it is the half-open trial call."""
        async with self._lock:
            if self._state is CircuitState.OPEN:
                elapsed = self._clock() - self._last_failure_time
                if elapsed < self.reset_timeout:
                    raise CircuitOpenError(
                        "Circuit breaker is OPEN - too many recent failures",
                        retry_after_seconds=self.reset_timeout - elapsed,
                    )
                logger.info("Circuit breaker HALF_OPEN, admitting probe call")
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = True
                return True
            if self._state is CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError("Circuit breaker is HALF_OPEN - probe in flight")
                self._probe_in_flight = True
                return True
            return False

    async def _on_success(self) -> None:
        async with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                logger.info("Circuit breaker probe succeeded, closing circuit")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._probe_in_flight = False

    async def _on_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            was_probe = self._state is CircuitState.HALF_OPEN
            self._probe_in_flight = False

            if was_probe or self._failure_count >= self.max_failures:
                self._state = CircuitState.OPEN
                logger.error(f"Circuit breaker OPEN after {self._failure_count} failures")

    async def _release_probe(self) -> None:
        async with self._lock:
            self._probe_in_flight = False

    def _abandon_trial(self) -> None:
        # Runs while a cancellation unwinds, so it must not await the lock.
        # The failure timestamp is kept so the next call is admitted at once.
        if self._state is CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning("Circuit breaker trial call cancelled, circuit back to OPEN")
        self._probe_in_flight = False

    def reset(self) -> None:
        """Force the circuit closed and clear the failure count."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._probe_in_flight = False
        logger.info("Circuit breaker reset")

"""Connection pool holding a single reusable client handle."""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

C = TypeVar("C")


class ConnectionPool(Generic[C]):
    """Lazily created client reused while it has been used recently.

    The client is created on first ``acquire()``. Later calls reuse it as long
    as the previous use was less than ``idle_timeout`` seconds ago; otherwise
    the stale client is closed and a fresh one is created.
    """

    def __init__(
        self,
        factory: Callable[[], C],
        idle_timeout: float = 300.0,
        closer: Callable[[C], Awaitable[Any] | Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the pool.

        Args:
            factory: Creates a new client handle.
            idle_timeout: Seconds of inactivity after which the client is replaced.
            closer: Releases a client handle (sync or async).
            clock: Monotonic time source (injectable for tests).
        """
        self._factory = factory
        self.idle_timeout = idle_timeout
        self._closer = closer
        self._clock = clock

        self._client: C | None = None
        self._last_used = 0.0
        self._lock = asyncio.Lock()
        self.connections_created = 0

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def acquire(self) -> C:
        """Return a live client, reconnecting if the current one sat idle too long."""
        async with self._lock:
            now = self._clock()
            if self._client is not None and now - self._last_used < self.idle_timeout:
                self._last_used = now
                return self._client

            if self._client is not None:
                logger.info(
                    f"Pooled client idle for {now - self._last_used:.0f}s, reconnecting"
                )
                await self._close_client(self._client)

            self._client = self._factory()
            self._last_used = now
            self.connections_created += 1
            logger.debug(f"Created pooled client (total created: {self.connections_created})")
            return self._client

    async def close(self) -> None:
        """Close the pooled client, if any."""
        async with self._lock:
            if self._client is not None:
                await self._close_client(self._client)
                self._client = None

    async def _close_client(self, client: C) -> None:
        if self._closer is None:
            return
        try:
            result = self._closer(client)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Error closing pooled client: {e}")

"""TTL cache for search results.

Entries expire a fixed number of seconds after they were written. Expired
entries are dropped lazily on read; once the cache grows past its ceiling it
is trimmed to the newest 80% of the ceiling.
"""

import hashlib
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

CACHE_KEY_LENGTH = 32
RETAIN_RATIO = 0.8


def make_cache_key(query: str, options: Mapping[str, Any] | None = None) -> str:
    """Build a deterministic cache key for a query and its options.

    Args:
        query: Query text.
        options: Search options that change the result (k, namespace, filters...).

    Returns:
        SHA-256 hex digest of the canonical JSON encoding, truncated to 32 chars.
    """
    payload = json.dumps(
        {"query": query, "options": dict(options or {})},
        sort_keys=True,
        default=str,
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:CACHE_KEY_LENGTH]


@dataclass
class CacheEntry(Generic[K, V]):
    """Cached value with its write timestamp."""

    key: K
    value: V
    timestamp: float


@dataclass
class CacheStats:
    """Cache counters for monitoring."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return (self.hits / total) if total else 0.0


class TTLCache(Generic[K, V]):
    """Size-bounded cache with a fixed time-to-live.

    Example:
        >>> cache: TTLCache[str, list[str]] = TTLCache(ttl=600, max_size=100)
        >>> cache.set("key", ["doc"])
        >>> cache.get("key")
        ['doc']
    """

    def __init__(
        self,
        ttl: float,
        max_size: int = 100,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize cache.

        Args:
            ttl: Seconds an entry stays valid after being written.
            max_size: Entry ceiling that triggers eviction.
            name: Name used in logs and metrics.
            clock: Time source (injectable for tests).
        """
        self.ttl = ttl
        self.max_size = max_size
        self.name = name
        self._clock = clock
        self._entries: dict[K, CacheEntry[K, V]] = {}
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def get(self, key: K) -> V | None:
        """Return the cached value, or None if missing or expired.

        Expired entries are removed as a side effect.
        """
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            return None

        if self._clock() - entry.timestamp > self.ttl:
            del self._entries[key]
            self.stats.misses += 1
            self.stats.evictions += 1
            return None

        self.stats.hits += 1
        return entry.value

    def set(self, key: K, value: V) -> None:
        """Insert or overwrite an entry, evicting old entries past the ceiling."""
        self._entries[key] = CacheEntry(key=key, value=value, timestamp=self._clock())
        self.stats.sets += 1

        if len(self._entries) > self.max_size:
            self._cleanup()

    def invalidate(self, key: K | None = None) -> None:
        """Drop one entry, or every entry when no key is given."""
        if key is None:
            dropped = len(self._entries)
            self._entries.clear()
            logger.info(f"Cache '{self.name}' cleared ({dropped} entries)")
            return
        self._entries.pop(key, None)

    def _cleanup(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.timestamp > self.ttl]
        for k in expired:
            del self._entries[k]
        self.stats.evictions += len(expired)

        if len(self._entries) > self.max_size:
            keep = max(1, int(self.max_size * RETAIN_RATIO))
            oldest_first = sorted(self._entries.values(), key=lambda e: e.timestamp)
            for entry in oldest_first[: len(oldest_first) - keep]:
                del self._entries[entry.key]
                self.stats.evictions += 1

        logger.debug(f"Cache '{self.name}' cleanup: {len(self._entries)} entries remaining")

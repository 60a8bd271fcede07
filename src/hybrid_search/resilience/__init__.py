"""Resilience layer for calls to the vector store and embedding provider."""

from hybrid_search.resilience.cache import CacheEntry, CacheStats, TTLCache, make_cache_key
from hybrid_search.resilience.circuit_breaker import CircuitBreaker, CircuitState
from hybrid_search.resilience.pool import ConnectionPool
from hybrid_search.resilience.retry import (
    RetryOptions,
    RetryResult,
    is_retryable_error,
    retry_call,
    with_retry,
)

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CircuitBreaker",
    "CircuitState",
    "ConnectionPool",
    "RetryOptions",
    "RetryResult",
    "TTLCache",
    "is_retryable_error",
    "make_cache_key",
    "retry_call",
    "with_retry",
]

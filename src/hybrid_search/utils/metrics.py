"""Prometheus metrics instrumentation for the hybrid search service.

This module tracks:
- Search latency, throughput and per-method result counts
- Cache hit rates for the result and namespace caches
- Retry attempts and circuit breaker state for the vector store
- Namespace fan-out and ingestion batch outcomes
"""

import functools
import time
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest

from hybrid_search import __version__

# Service information
SERVICE_INFO = Info("hybrid_search_service", "Hybrid search service information")
SERVICE_INFO.info(
    {
        "version": __version__,
        "service": "hybrid-search",
        "component": "retrieval-engine",
    }
)

# ==================== Request Metrics ====================

SEARCH_LATENCY = Histogram(
    "hybrid_search_latency_seconds",
    "Hybrid search latency in seconds",
    ["mode"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

SEARCH_REQUESTS = Counter(
    "hybrid_search_requests_total",
    "Total hybrid search requests",
    ["strategy", "status"],
)

METHOD_RESULTS = Histogram(
    "hybrid_search_method_results_count",
    "Number of candidates returned per retrieval method",
    ["method"],
    buckets=[0, 1, 5, 10, 25, 50, 100, 250],
)

SEARCH_DEGRADED = Counter(
    "hybrid_search_degraded_total",
    "Searches served without one of the retrieval methods",
    ["method"],
)

# ==================== Cache Metrics ====================

CACHE_HITS = Counter("hybrid_search_cache_hits_total", "Total cache hits", ["cache"])

CACHE_MISSES = Counter("hybrid_search_cache_misses_total", "Total cache misses", ["cache"])

# ==================== Resilience Metrics ====================

RETRY_ATTEMPTS = Histogram(
    "vector_store_attempts",
    "Attempts needed per vector store call",
    ["operation"],
    buckets=[1, 2, 3, 4, 5, 8],
)

CIRCUIT_STATE = Gauge(
    "vector_store_circuit_state",
    "Circuit breaker state (0=closed, 1=half-open, 2=open)",
)

# ==================== Orchestration Metrics ====================

NAMESPACE_FANOUT = Histogram(
    "namespace_fanout_size",
    "Namespaces searched per multi-namespace query",
    buckets=[1, 2, 5, 10, 20, 50],
)

# ==================== Ingestion Metrics ====================

UPSERT_BATCHES = Counter(
    "upsert_batches_total",
    "Upsert batches by outcome",
    ["status"],
)

UPSERT_DOCUMENTS = Counter(
    "upsert_documents_total",
    "Documents written by outcome",
    ["status"],
)

INDEX_DOCUMENTS = Gauge(
    "lexical_index_documents",
    "Documents in the current lexical/fuzzy snapshot",
)

_CIRCUIT_STATE_VALUES = {"CLOSED": 0, "HALF_OPEN": 1, "OPEN": 2}

P = ParamSpec("P")
T = TypeVar("T")


def track_search(mode: str) -> Callable[..., Any]:
    """Decorator to track search latency.

    Args:
        mode: Search mode label (single, multi_namespace).

    Example:
        @track_search(mode="single")
        async def _search_single(...) -> HybridSearchResponse:
            ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                SEARCH_LATENCY.labels(mode=mode).observe(time.perf_counter() - start_time)

        return wrapper

    return decorator


# ==================== Helper Functions ====================


def record_search(strategy: str, success: bool) -> None:
    status = "success" if success else "error"
    SEARCH_REQUESTS.labels(strategy=strategy, status=status).inc()


def record_method_results(method: str, count: int) -> None:
    METHOD_RESULTS.labels(method=method).observe(count)


def record_degradation(method: str) -> None:
    SEARCH_DEGRADED.labels(method=method).inc()


def record_cache_lookup(cache: str, hit: bool) -> None:
    """Record a cache lookup.

    Args:
        cache: Cache name (semantic, search, namespaces).
        hit: Whether the lookup was served from cache.
    """
    if hit:
        CACHE_HITS.labels(cache=cache).inc()
    else:
        CACHE_MISSES.labels(cache=cache).inc()


def record_attempts(operation: str, attempts: int) -> None:
    RETRY_ATTEMPTS.labels(operation=operation).observe(attempts)


def set_circuit_state(state: str) -> None:
    """Publish the circuit breaker state as a gauge value."""
    CIRCUIT_STATE.set(_CIRCUIT_STATE_VALUES.get(state, 0))


def record_namespace_fanout(count: int) -> None:
    NAMESPACE_FANOUT.observe(count)


def record_upsert_batch(success: bool, documents: int) -> None:
    """Record an upsert batch outcome.

    Args:
        success: Whether the batch was written.
        documents: Documents in the batch.
    """
    status = "success" if success else "error"
    UPSERT_BATCHES.labels(status=status).inc()
    UPSERT_DOCUMENTS.labels(status=status).inc(documents)


def set_index_documents(count: int) -> None:
    INDEX_DOCUMENTS.set(count)


def render_metrics() -> tuple[bytes, str]:
    """Serialize the default registry in Prometheus text format.

    Returns:
        Tuple of (payload, content type).
    """
    return generate_latest(), CONTENT_TYPE_LATEST

"""Dense-vector search through the resilience layer.

The query is embedded, then the vector store is queried through the circuit
breaker and retry wrapper. The store is asked for ``ceil(k * over_fetch)``
candidates so the post-filter on score still leaves ``k`` results where
possible.
"""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from hybrid_search.clients.base import Embedder, VectorStore
from hybrid_search.indexing.corpus import DEFAULT_NAMESPACE_FIELD
from hybrid_search.resilience.cache import TTLCache, make_cache_key
from hybrid_search.resilience.circuit_breaker import CircuitBreaker
from hybrid_search.resilience.retry import RetryOptions, retry_call
from hybrid_search.retrieval.types import Document, SemanticResult, VectorMatch
from hybrid_search.utils.metrics import record_attempts, record_cache_lookup, set_circuit_state

logger = logging.getLogger(__name__)

SCORE_METADATA_KEY = "_score"


@dataclass
class SemanticSearchOutcome:
    """Semantic hits plus how they were obtained."""

    results: list[SemanticResult] = field(default_factory=list)
    attempts: int = 0
    cached: bool = False


class SemanticSearchClient:
    """Embeds queries and searches the vector store with retries and a breaker.

    Example:
        >>> client = SemanticSearchClient(store, embedder, breaker, RetryOptions())
        >>> outcome = await client.search("monsoon rainfall", k=10)
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        breaker: CircuitBreaker,
        retry_options: RetryOptions | None = None,
        cache: TTLCache[str, list[SemanticResult]] | None = None,
        over_fetch: float = 1.5,
        score_threshold: float = 0.5,
        namespace_field: str = DEFAULT_NAMESPACE_FIELD,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize semantic search client.

        Args:
            store: Vector store.
            embedder: Query embedder.
            breaker: Circuit breaker guarding the store.
            retry_options: Retry configuration for store and embedder calls.
            cache: Cache for raw per-namespace results.
            over_fetch: Multiplier applied to k for the store query.
            score_threshold: Default minimum store score.
            namespace_field: Metadata key the hit namespace is copied into.
            sleep: Backoff sleep (injectable for tests).
        """
        self.store = store
        self.embedder = embedder
        self.breaker = breaker
        self.retry_options = retry_options or RetryOptions()
        self.cache = cache
        self.over_fetch = over_fetch
        self.score_threshold = score_threshold
        self.namespace_field = namespace_field
        self._sleep = sleep

    async def search(
        self,
        query: str,
        k: int,
        namespace: str | None = None,
        filter: Mapping[str, Any] | None = None,
        score_threshold: float | None = None,
    ) -> SemanticSearchOutcome:
        """Search the vector store for a query.

        Args:
            query: Query text.
            k: Maximum number of results.
            namespace: Restrict to one namespace.
            filter: Exact-match metadata filter.
            score_threshold: Minimum store score (client default if None).

        Returns:
            Outcome with up to k results and the number of store attempts.

        Raises:
            CircuitOpenError: If the breaker rejected the call.
            RetryExhaustedError: If transient failures outlasted the retries.
            PermanentRequestError: If the store or embedder rejected the request.
        """
        threshold = self.score_threshold if score_threshold is None else score_threshold
        cache_key = make_cache_key(
            query,
            {"k": k, "namespace": namespace, "filter": filter, "threshold": threshold},
        )

        if self.cache is not None:
            cached = self.cache.get(cache_key)
            record_cache_lookup("semantic", cached is not None)
            if cached is not None:
                return SemanticSearchOutcome(results=cached, cached=True)

        vector, _ = await retry_call(
            lambda: self.embedder.embed(query, is_query=True),
            self.retry_options,
            sleep=self._sleep,
        )

        fetch = max(1, math.ceil(k * self.over_fetch))
        attempts = 0

        async def query_store() -> list[VectorMatch]:
            nonlocal attempts
            matches, attempts = await retry_call(
                lambda: self.store.similarity_search(
                    vector,
                    top_k=fetch,
                    namespace=namespace,
                    filter=filter,
                    score_threshold=threshold,
                ),
                self.retry_options,
                sleep=self._sleep,
            )
            return matches

        try:
            matches = await self.breaker.call(query_store)
        finally:
            set_circuit_state(self.breaker.state.value)

        record_attempts("similarity_search", attempts)
        if attempts > 1:
            logger.info(f"Semantic search succeeded after {attempts} attempts")

        results = [self._to_result(m) for m in matches if m.score >= threshold][:k]
        if self.cache is not None:
            self.cache.set(cache_key, results)
        return SemanticSearchOutcome(results=results, attempts=attempts)

    def _to_result(self, match: VectorMatch) -> SemanticResult:
        metadata = dict(match.metadata)
        metadata[SCORE_METADATA_KEY] = match.score
        if match.namespace is not None:
            metadata[self.namespace_field] = match.namespace
        return SemanticResult(
            document=Document(id=match.id, content=match.content, metadata=metadata),
            score=match.score,
            namespace=match.namespace,
        )

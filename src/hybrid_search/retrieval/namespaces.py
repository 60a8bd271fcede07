"""Multi-namespace search orchestration.

When a search is not pinned to a namespace, the orchestrator ranks the
namespaces known to the vector store, searches the best ones in parallel
with a reduced per-namespace ``k`` and a relaxed threshold, runs one
fallback pass over the remaining namespaces if that produced too few unique
results, then deduplicates, boosts and truncates the merged list.
"""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass

from hybrid_search.clients.base import VectorStore
from hybrid_search.errors import IndexNotBuiltError, NoResultsAvailableError
from hybrid_search.indexing.corpus import fingerprint, tokenize
from hybrid_search.resilience.cache import TTLCache, make_cache_key
from hybrid_search.resilience.circuit_breaker import CircuitBreaker
from hybrid_search.resilience.retry import RetryOptions, retry_call
from hybrid_search.retrieval.constants import (
    DEFAULT_NAMESPACE,
    DEFAULT_NAMESPACE_BOOST,
    NAMESPACE_LEXICAL_MULTIPLIER,
    NAMESPACE_MAX_BOOST,
    NAMESPACE_STRUCTURAL_MULTIPLIER,
    STRUCTURAL_NAMESPACE_BOOSTS,
)
from hybrid_search.retrieval.fusion import annotate_document
from hybrid_search.retrieval.types import (
    HybridSearchResponse,
    NamespaceInfo,
    QueryAnalysis,
    SearchMetadata,
    SearchOptions,
    SearchResult,
)
from hybrid_search.utils.metrics import record_cache_lookup, record_namespace_fanout

logger = logging.getLogger(__name__)

NAMESPACE_CACHE_KEY = "namespaces"

SearchFn = Callable[[str, QueryAnalysis, SearchOptions], Awaitable[HybridSearchResponse]]


@dataclass(frozen=True)
class RankedNamespace:
    """Namespace with the scores used to order and boost it."""

    name: str
    structural: int
    lexical: int

    @property
    def total(self) -> int:
        return self.structural + self.lexical

    @property
    def boost(self) -> float:
        multiplier = (
            1
            + NAMESPACE_STRUCTURAL_MULTIPLIER * self.structural
            + NAMESPACE_LEXICAL_MULTIPLIER * self.lexical
        )
        return min(multiplier, NAMESPACE_MAX_BOOST)


def expand_terms(terms: Sequence[str], aliases: Mapping[str, Sequence[str]]) -> set[str]:
    """Add configured alias variants (e.g. transliterations) to query terms."""
    expanded = {t.lower() for t in terms}
    for canonical, variants in aliases.items():
        group = {canonical.lower(), *(v.lower() for v in variants)}
        if expanded & group:
            expanded |= group
    return expanded


def rank_namespaces(
    query: str,
    namespaces: Sequence[str],
    aliases: Mapping[str, Sequence[str]] | None = None,
) -> list[RankedNamespace]:
    """Order namespaces by structural boost plus lexical overlap with the query.

    Structural boost is the highest matching content type in the name
    (table 3, heading 2, text 1, list 1), plus 1 for the default namespace.
    Lexical overlap counts query terms (and their aliases) that occur in the
    name, case-insensitively.
    """
    terms = expand_terms(tokenize(query), aliases or {})
    ranked = []
    for name in namespaces:
        lowered = name.lower()
        structural = max(
            (boost for kind, boost in STRUCTURAL_NAMESPACE_BOOSTS.items() if kind in lowered),
            default=0,
        )
        if lowered == DEFAULT_NAMESPACE:
            structural += DEFAULT_NAMESPACE_BOOST
        lexical = sum(1 for term in terms if term in lowered)
        ranked.append(RankedNamespace(name=name, structural=structural, lexical=lexical))

    ranked.sort(key=lambda ns: (-ns.total, ns.name))
    return ranked


class NamespaceOrchestrator:
    """Fans a query out across namespaces and merges the results."""

    def __init__(
        self,
        store: VectorStore,
        search_fn: SearchFn,
        breaker: CircuitBreaker,
        retry_options: RetryOptions | None = None,
        namespace_cache: TTLCache[str, list[NamespaceInfo]] | None = None,
        result_cache: TTLCache[str, HybridSearchResponse] | None = None,
        fanout: int = 10,
        concurrency: int = 10,
        k_divisor: int = 4,
        threshold_factor: float = 0.3,
        fallback_threshold_factor: float = 0.1,
        aliases: Mapping[str, Sequence[str]] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize orchestrator.

        Args:
            store: Vector store used to list namespaces.
            search_fn: Hybrid search for one namespace.
            breaker: Circuit breaker guarding the store.
            retry_options: Retry configuration for the namespace listing.
            namespace_cache: Cache for the namespace listing.
            result_cache: Cache for aggregated responses.
            fanout: Top ranked namespaces searched in the first pass.
            concurrency: Maximum concurrent namespace searches.
            k_divisor: Per-namespace k is ``ceil(k / k_divisor)``.
            threshold_factor: Per-namespace threshold multiplier.
            fallback_threshold_factor: Fallback pass threshold multiplier.
            aliases: Term to multilingual variants for namespace matching.
            sleep: Backoff sleep (injectable for tests).
        """
        self.store = store
        self.search_fn = search_fn
        self.breaker = breaker
        self.retry_options = retry_options or RetryOptions()
        self.namespace_cache = namespace_cache
        self.result_cache = result_cache
        self.fanout = fanout
        self.k_divisor = k_divisor
        self.threshold_factor = threshold_factor
        self.fallback_threshold_factor = fallback_threshold_factor
        self.aliases = dict(aliases or {})
        self._semaphore = asyncio.Semaphore(concurrency)
        self._sleep = sleep

    async def list_namespaces(self) -> list[NamespaceInfo]:
        """Namespace listing, cached. Raises on store failure."""
        if self.namespace_cache is not None:
            cached = self.namespace_cache.get(NAMESPACE_CACHE_KEY)
            record_cache_lookup("namespaces", cached is not None)
            if cached is not None:
                return cached

        async def fetch() -> list[NamespaceInfo]:
            namespaces, _ = await retry_call(
                self.store.list_namespaces, self.retry_options, sleep=self._sleep
            )
            return namespaces

        namespaces = await self.breaker.call(fetch)
        if self.namespace_cache is not None:
            self.namespace_cache.set(NAMESPACE_CACHE_KEY, namespaces)
        return namespaces

    async def search(
        self, query: str, analysis: QueryAnalysis, options: SearchOptions
    ) -> HybridSearchResponse:
        """Search across namespaces.

        Falls back to a single un-namespaced search when listing fails or the
        store reports no namespaces.

        Raises:
            NoResultsAvailableError: If every namespace search failed.
        """
        cache_key = make_cache_key(query, {"mode": "multi", **options.model_dump(mode="json")})
        if self.result_cache is not None:
            cached = self.result_cache.get(cache_key)
            record_cache_lookup("search", cached is not None)
            if cached is not None:
                response = cached.model_copy(deep=True)
                response.metadata.cached = True
                return response

        try:
            namespaces = await self.list_namespaces()
        except Exception as e:
            logger.warning(f"Namespace listing failed, searching without namespace: {e}")
            namespaces = []

        if not namespaces:
            return await self.search_fn(query, analysis, options)

        ranked = rank_namespaces(query, [ns.name for ns in namespaces], self.aliases)
        primary, remaining = ranked[: self.fanout], ranked[self.fanout :]

        k_ns = max(1, math.ceil(options.k / self.k_divisor))
        responses = await self._search_many(
            query, analysis, options, primary, k_ns, options.score_threshold * self.threshold_factor
        )

        fallback_used = False
        if self._unique_count(responses) < options.k and remaining:
            logger.info(
                f"Only {self._unique_count(responses)} unique results from "
                f"{len(primary)} namespaces, searching {len(remaining)} more"
            )
            fallback_used = True
            responses.update(
                await self._search_many(
                    query,
                    analysis,
                    options,
                    remaining,
                    k_ns,
                    options.score_threshold * self.fallback_threshold_factor,
                )
            )

        record_namespace_fanout(len(responses))
        response = self._merge(ranked, responses, options.k, fallback_used)

        if self.result_cache is not None:
            self.result_cache.set(cache_key, response)
        return response

    async def _search_many(
        self,
        query: str,
        analysis: QueryAnalysis,
        options: SearchOptions,
        namespaces: list[RankedNamespace],
        k: int,
        threshold: float,
    ) -> dict[str, HybridSearchResponse | BaseException]:
        async def search_one(name: str) -> HybridSearchResponse:
            scoped = options.model_copy(
                update={"namespace": name, "k": k, "score_threshold": threshold}
            )
            async with self._semaphore:
                return await self.search_fn(query, analysis, scoped)

        outcomes = await asyncio.gather(
            *(search_one(ns.name) for ns in namespaces), return_exceptions=True
        )
        results: dict[str, HybridSearchResponse | BaseException] = {}
        for ns, outcome in zip(namespaces, outcomes, strict=True):
            if isinstance(outcome, IndexNotBuiltError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.warning(f"Search in namespace '{ns.name}' failed: {outcome}")
            results[ns.name] = outcome
        return results

    @staticmethod
    def _unique_count(responses: Mapping[str, HybridSearchResponse | BaseException]) -> int:
        keys = {
            fingerprint(result.document.content)
            for response in responses.values()
            if isinstance(response, HybridSearchResponse)
            for result in response.results
        }
        return len(keys)

    def _merge(
        self,
        ranked: list[RankedNamespace],
        responses: Mapping[str, HybridSearchResponse | BaseException],
        k: int,
        fallback_used: bool,
    ) -> HybridSearchResponse:
        succeeded = {
            name: r for name, r in responses.items() if isinstance(r, HybridSearchResponse)
        }
        if not succeeded:
            failures = {
                name: r for name, r in responses.items() if isinstance(r, BaseException)
            }
            raise NoResultsAvailableError(
                f"All {len(failures)} namespace searches failed", failures=failures
            )

        boosts = {ns.name: ns.boost for ns in ranked}
        best: dict[str, SearchResult] = {}
        for name, response in succeeded.items():
            for result in response.results:
                key = fingerprint(result.document.content)
                if key not in best or result.hybrid_score > best[key].hybrid_score:
                    best[key] = result.model_copy(
                        update={"namespace": result.namespace or name}
                    )

        merged = []
        for result in best.values():
            boost = boosts.get(result.namespace or "", 1.0)
            merged.append(result.model_copy(update={"hybrid_score": result.hybrid_score * boost}))
        merged.sort(key=lambda r: r.hybrid_score, reverse=True)
        merged = merged[:k]

        metadata = self._merge_metadata(list(succeeded.values()), responses, fallback_used)
        metadata.total_results = len(merged)
        return HybridSearchResponse(
            documents=[annotate_document(r) for r in merged],
            results=merged,
            metadata=metadata,
        )

    @staticmethod
    def _merge_metadata(
        succeeded: list[HybridSearchResponse],
        responses: Mapping[str, HybridSearchResponse | BaseException],
        fallback_used: bool,
    ) -> SearchMetadata:
        first = succeeded[0].metadata
        failed_methods = sorted({m for r in succeeded for m in r.metadata.failed_methods})
        return SearchMetadata(
            bm25_count=sum(r.metadata.bm25_count for r in succeeded),
            semantic_count=sum(r.metadata.semantic_count for r in succeeded),
            fuzzy_count=sum(r.metadata.fuzzy_count for r in succeeded),
            strategy=first.strategy,
            weights=first.weights,
            semantic_attempts=sum(r.metadata.semantic_attempts for r in succeeded),
            degraded=any(r.metadata.degraded for r in succeeded)
            or len(succeeded) < len(responses),
            failed_methods=failed_methods,
            namespaces_searched=list(responses.keys()),
            fallback_used=fallback_used,
        )

"""Hybrid retrieval engine.

The engine owns every shared resource of the retrieval pipeline: the vector
store client pool, the circuit breaker, the result caches and the current
corpus snapshot. One engine is created per process and passed to whatever
needs it.

Search flow:
1. Pick a fusion strategy from the query analysis
2. Start the semantic search task (the only network-bound method)
3. Run BM25 and fuzzy matching on the snapshot while it is in flight
4. Await the semantic task, degrading to lexical + fuzzy if it failed
5. Fuse, deduplicate, threshold and truncate
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from hybrid_search.clients.base import Embedder, VectorStore
from hybrid_search.config import Settings
from hybrid_search.errors import (
    IndexNotBuiltError,
    NoResultsAvailableError,
    PermanentRequestError,
)
from hybrid_search.indexing.corpus import CorpusIndex, generate_doc_id
from hybrid_search.indexing.writer import BatchUpsertWriter
from hybrid_search.resilience.cache import TTLCache
from hybrid_search.resilience.circuit_breaker import CircuitBreaker
from hybrid_search.resilience.retry import RetryOptions
from hybrid_search.retrieval.bm25 import BM25Index
from hybrid_search.retrieval.classifier import QueryAnalyzer
from hybrid_search.retrieval.constants import (
    BM25_FETCH_MULTIPLIER,
    FUZZY_FETCH_MULTIPLIER,
    SEMANTIC_FETCH_MULTIPLIER,
)
from hybrid_search.retrieval.fusion import (
    annotate_document,
    calculate_weights,
    determine_strategy,
    fuse_results,
)
from hybrid_search.retrieval.fuzzy import FuzzyIndex
from hybrid_search.retrieval.namespaces import NamespaceOrchestrator
from hybrid_search.retrieval.semantic import SemanticSearchClient, SemanticSearchOutcome
from hybrid_search.retrieval.types import (
    Document,
    FuzzyResult,
    HealthReport,
    HealthStatus,
    HybridSearchResponse,
    IndexStats,
    NamespaceInfo,
    QueryAnalysis,
    SearchMetadata,
    SearchOptions,
    SemanticResult,
    UpsertReport,
)
from hybrid_search.utils.metrics import (
    record_degradation,
    record_method_results,
    record_search,
    set_index_documents,
    track_search,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorpusSnapshot:
    """Corpus with the indexes built over it. Replaced wholesale on rebuild."""

    corpus: CorpusIndex
    bm25: BM25Index
    fuzzy: FuzzyIndex
    built_at: float


class RetrievalEngine:
    """Hybrid BM25 + semantic + fuzzy retrieval over a namespaced collection.

    Attributes:
        settings: Application settings.
        store: Vector store collaborator.
        embedder: Embedding provider collaborator.
        breaker: Circuit breaker guarding the vector store.
        analyzer: Fallback query analyzer when callers pass no analysis.
    """

    def __init__(
        self,
        settings: Settings,
        store: VectorStore,
        embedder: Embedder,
        analyzer: QueryAnalyzer | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            settings: Application settings.
            store: Vector store.
            embedder: Embedding provider.
            analyzer: Query analyzer (heuristic analyzer if None).
            clock: Monotonic time source for caches, breaker and staleness.
            sleep: Backoff sleep for retries.
        """
        self.settings = settings
        self.store = store
        self.embedder = embedder
        self.analyzer = analyzer or QueryAnalyzer()
        self._clock = clock

        self.breaker = CircuitBreaker(
            max_failures=settings.circuit_max_failures,
            reset_timeout=settings.circuit_reset_timeout,
            clock=clock,
        )
        self.retry_options = RetryOptions(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            backoff_factor=settings.retry_backoff_factor,
            timeout=settings.retry_timeout,
        )
        self.semantic_cache: TTLCache[str, list[SemanticResult]] = TTLCache(
            settings.cache_ttl, settings.cache_max_size, name="semantic", clock=clock
        )
        self.result_cache: TTLCache[str, HybridSearchResponse] = TTLCache(
            settings.cache_ttl, settings.cache_max_size, name="search", clock=clock
        )
        self.namespace_cache: TTLCache[str, list[NamespaceInfo]] = TTLCache(
            settings.namespace_cache_ttl, 1, name="namespaces", clock=clock
        )

        self.semantic = SemanticSearchClient(
            store=store,
            embedder=embedder,
            breaker=self.breaker,
            retry_options=self.retry_options,
            cache=self.semantic_cache,
            over_fetch=settings.semantic_over_fetch,
            score_threshold=settings.semantic_score_threshold,
            namespace_field=settings.namespace_field,
            sleep=sleep,
        )
        self.orchestrator = NamespaceOrchestrator(
            store=store,
            search_fn=self._search_single,
            breaker=self.breaker,
            retry_options=self.retry_options,
            namespace_cache=self.namespace_cache,
            result_cache=self.result_cache,
            fanout=settings.namespace_fanout,
            concurrency=settings.namespace_concurrency,
            k_divisor=settings.namespace_k_divisor,
            threshold_factor=settings.namespace_threshold_factor,
            fallback_threshold_factor=settings.namespace_fallback_threshold_factor,
            aliases=settings.namespace_aliases,
            sleep=sleep,
        )
        self.writer = BatchUpsertWriter(
            store=store,
            embedder=embedder,
            breaker=self.breaker,
            retry_options=self.retry_options,
            batch_size=settings.upsert_batch_size,
            concurrency=settings.upsert_concurrency,
            max_split_depth=settings.upsert_max_split_depth,
            sleep=sleep,
        )

        self._snapshot: CorpusSnapshot | None = None

    # ==================== Index lifecycle ====================

    @property
    def is_built(self) -> bool:
        return self._snapshot is not None

    def build_index(self, documents: Iterable[Document]) -> IndexStats:
        """Build a fresh lexical/fuzzy snapshot and swap it in.

        Searches already running keep the snapshot they started with. Result
        caches are cleared since they may reference the old corpus.

        Args:
            documents: Full document list for the new snapshot.

        Returns:
            Statistics of the new snapshot.
        """
        start = time.perf_counter()
        corpus = CorpusIndex.build(documents, namespace_field=self.settings.namespace_field)
        snapshot = CorpusSnapshot(
            corpus=corpus,
            bm25=BM25Index(corpus),
            fuzzy=FuzzyIndex(
                corpus,
                threshold=self.settings.fuzzy_threshold,
                min_match_char_length=self.settings.fuzzy_min_match_char_length,
            ),
            built_at=self._clock(),
        )
        self._snapshot = snapshot
        self.invalidate_caches()
        set_index_documents(corpus.total_documents)

        logger.info(
            f"Index built with {corpus.total_documents} documents "
            f"in {(time.perf_counter() - start) * 1000:.0f}ms"
        )
        return self.index_stats()

    def index_stats(self) -> IndexStats:
        """Statistics of the current snapshot."""
        snapshot = self._snapshot
        if snapshot is None:
            return IndexStats()
        corpus = snapshot.corpus
        return IndexStats(
            is_built=True,
            total_documents=corpus.total_documents,
            unique_terms=corpus.unique_terms,
            average_doc_length=corpus.average_doc_length,
            last_update=corpus.built_at,
        )

    def invalidate_caches(self) -> None:
        """Drop cached search results and the namespace listing."""
        self.semantic_cache.invalidate()
        self.result_cache.invalidate()
        self.namespace_cache.invalidate()

    # ==================== Search ====================

    async def search(
        self,
        query: str,
        analysis: QueryAnalysis | None = None,
        options: SearchOptions | None = None,
    ) -> HybridSearchResponse:
        """Run a hybrid search.

        A pinned ``options.namespace`` searches that namespace only; otherwise
        the query fans out across namespaces.

        Args:
            query: Query text.
            analysis: Query analysis (heuristic analysis if None).
            options: Search options (settings defaults if None).

        Returns:
            Ranked documents, fused results and search metadata. An empty
            result list means nothing cleared the threshold.

        Raises:
            IndexNotBuiltError: If ``build_index`` has not been called.
            PermanentRequestError: If the store or embedder rejected the request.
            NoResultsAvailableError: If every enabled method failed.
        """
        if self._snapshot is None:
            raise IndexNotBuiltError("Search index has not been built")

        options = options or SearchOptions(
            k=self.settings.search_default_k,
            score_threshold=self.settings.search_score_threshold,
        )
        if options.k > self.settings.search_max_k:
            logger.debug(f"Clamping k={options.k} to {self.settings.search_max_k}")
            options = options.model_copy(update={"k": self.settings.search_max_k})
        analysis = analysis or self.analyzer.analyze(query)
        start = time.perf_counter()

        try:
            if options.namespace is not None:
                response = await self._search_single(query, analysis, options)
            else:
                response = await self.orchestrator.search(query, analysis, options)
        except Exception:
            record_search(determine_strategy(analysis).value, success=False)
            raise

        response.metadata.elapsed_ms = (time.perf_counter() - start) * 1000
        record_search(response.metadata.strategy.value, success=True)
        logger.info(
            f"Search returned {response.metadata.total_results} results "
            f"({response.metadata.strategy.value}) in {response.metadata.elapsed_ms:.0f}ms"
        )
        return response

    @track_search(mode="single")
    async def _search_single(
        self, query: str, analysis: QueryAnalysis, options: SearchOptions
    ) -> HybridSearchResponse:
        snapshot = self._snapshot
        if snapshot is None:
            raise IndexNotBuiltError("Search index has not been built")

        strategy = determine_strategy(analysis)
        weights = options.weights or calculate_weights(strategy, analysis)
        k = options.k
        failures: dict[str, BaseException] = {}

        semantic_task = asyncio.create_task(
            self.semantic.search(
                query,
                k * SEMANTIC_FETCH_MULTIPLIER,
                namespace=options.namespace,
                filter=options.filter,
            )
        )

        bm25_results = self._run_local(
            "bm25",
            failures,
            lambda: snapshot.bm25.search(
                query, k * BM25_FETCH_MULTIPLIER, options.namespace, options.filter
            ),
        )
        fuzzy_results: list[FuzzyResult] = []
        if options.enable_fuzzy:
            fuzzy_results = self._run_local(
                "fuse",
                failures,
                lambda: snapshot.fuzzy.search(
                    query, k * FUZZY_FETCH_MULTIPLIER, options.namespace, options.filter
                ),
            )

        try:
            semantic = await semantic_task
        except PermanentRequestError:
            raise
        except Exception as e:
            logger.warning(f"Semantic search unavailable, degrading to lexical + fuzzy: {e}")
            failures["semantic"] = e
            semantic = SemanticSearchOutcome()

        enabled = 3 if options.enable_fuzzy else 2
        if len(failures) == enabled:
            raise NoResultsAvailableError(
                f"All retrieval methods failed: {', '.join(sorted(failures))}", failures=failures
            )

        for method in failures:
            record_degradation(method)
        record_method_results("bm25", len(bm25_results))
        record_method_results("semantic", len(semantic.results))
        record_method_results("fuse", len(fuzzy_results))

        fused = fuse_results(
            bm25_results, semantic.results, fuzzy_results, weights, options.score_threshold, k
        )
        if options.namespace is not None:
            for result in fused:
                if result.namespace is None:
                    result.namespace = options.namespace

        metadata = SearchMetadata(
            total_results=len(fused),
            bm25_count=len(bm25_results),
            semantic_count=len(semantic.results),
            fuzzy_count=len(fuzzy_results),
            strategy=strategy,
            weights=weights,
            semantic_attempts=semantic.attempts,
            degraded=bool(failures),
            failed_methods=sorted(failures),
            namespaces_searched=[options.namespace] if options.namespace else [],
        )
        return HybridSearchResponse(
            documents=[annotate_document(r) for r in fused], results=fused, metadata=metadata
        )

    @staticmethod
    def _run_local(
        method: str,
        failures: dict[str, BaseException],
        run: Callable[[], list[Any]],
    ) -> list[Any]:
        try:
            return run()
        except Exception as e:
            logger.error(f"{method} search failed: {e}", exc_info=True)
            failures[method] = e
            return []

    # ==================== Ingestion ====================

    async def ingest(
        self,
        documents: list[Document],
        namespace: str | None = None,
        rebuild_index: bool = True,
    ) -> UpsertReport:
        """Embed and upsert documents, then refresh caches and the snapshot.

        Args:
            documents: Documents to ingest.
            namespace: Target namespace (also recorded in document metadata).
            rebuild_index: Append successfully written documents to the
                lexical/fuzzy snapshot and rebuild it.

        Returns:
            Per-batch upsert report.
        """
        current = self._current_documents()
        prepared = []
        for i, doc in enumerate(documents):
            update: dict[str, Any] = {}
            if not doc.id:
                update["id"] = generate_doc_id(doc, len(current) + i)
            if namespace is not None:
                update["metadata"] = {**doc.metadata, self.settings.namespace_field: namespace}
            prepared.append(doc.model_copy(update=update) if update else doc)

        report = await self.writer.write(prepared, namespace)
        self.invalidate_caches()

        if rebuild_index and report.upserted:
            failed_ids = {doc_id for f in report.failures for doc_id in f.document_ids}
            merged = {doc.id: doc for doc in current}
            merged.update({doc.id: doc for doc in prepared if doc.id not in failed_ids})
            self.build_index(merged.values())
            report.index_rebuilt = True

        return report

    def _current_documents(self) -> list[Document]:
        snapshot = self._snapshot
        if snapshot is None:
            return []
        return [doc.to_document() for doc in snapshot.corpus.documents]

    # ==================== Health ====================

    async def list_namespaces(self) -> list[NamespaceInfo]:
        """Namespaces known to the vector store (cached)."""
        return await self.orchestrator.list_namespaces()

    async def health_check(self) -> HealthReport:
        """Report engine health.

        Unhealthy when the index was never built or is empty; degraded when
        the index is stale, the circuit breaker is open or the vector store
        does not respond.
        """
        stats = self.index_stats()
        issues: list[str] = []
        status = HealthStatus.HEALTHY

        if not stats.is_built:
            issues.append("Index has not been built")
            status = HealthStatus.UNHEALTHY
        elif stats.total_documents == 0:
            issues.append("Index contains no documents")
            status = HealthStatus.UNHEALTHY

        snapshot = self._snapshot
        stale_after = self.settings.index_stale_after
        if snapshot is not None and self._clock() - snapshot.built_at > stale_after:
            hours = stale_after / 3600
            issues.append(f"Index is older than {hours:g} hours")
            if status is HealthStatus.HEALTHY:
                status = HealthStatus.DEGRADED

        if self.breaker.is_open:
            issues.append("Vector store circuit breaker is open")
            if status is HealthStatus.HEALTHY:
                status = HealthStatus.DEGRADED

        reachable = await self.store.health_check()
        if not reachable:
            issues.append("Vector store is not reachable")
            if status is HealthStatus.HEALTHY:
                status = HealthStatus.DEGRADED

        return HealthReport(
            status=status,
            issues=issues,
            stats=stats,
            circuit_state=self.breaker.state.value,
            vector_store_reachable=reachable,
        )

    async def aclose(self) -> None:
        """Close the vector store and embedder clients."""
        await self.store.close()
        close = getattr(self.embedder, "close", None)
        if close is not None:
            await close()

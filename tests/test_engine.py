"""Tests for the hybrid retrieval engine."""

import math
from unittest.mock import MagicMock

import pytest

from hybrid_search.errors import (
    IndexNotBuiltError,
    NoResultsAvailableError,
    PermanentRequestError,
    TransientNetworkError,
)
from hybrid_search.retrieval.constants import SEMANTIC_FETCH_MULTIPLIER
from hybrid_search.retrieval.engine import RetrievalEngine
from hybrid_search.retrieval.types import (
    Document,
    HealthStatus,
    NamespaceInfo,
    QueryAnalysis,
    QueryType,
    SearchMethod,
    SearchOptions,
    SearchStrategy,
    VectorMatch,
)


@pytest.fixture
def built_engine(engine: RetrievalEngine, sample_documents: list[Document]) -> RetrievalEngine:
    """Engine with the sample corpus indexed."""
    engine.build_index(sample_documents)
    return engine


class TestIndexLifecycle:
    """Tests for building the index."""

    def test_not_built_initially(self, engine: RetrievalEngine) -> None:
        """Test a new engine has no index."""
        assert engine.is_built is False
        assert engine.index_stats().is_built is False

    def test_build_index_stats(
        self, engine: RetrievalEngine, sample_documents: list[Document]
    ) -> None:
        """Test building returns corpus statistics."""
        stats = engine.build_index(sample_documents)

        assert engine.is_built is True
        assert stats.is_built is True
        assert stats.total_documents == 3
        assert stats.unique_terms > 0
        assert stats.average_doc_length > 0
        assert stats.last_update is not None

    async def test_rebuild_invalidates_caches(
        self, built_engine: RetrievalEngine, mock_store: MagicMock
    ) -> None:
        """Test rebuilding drops cached results."""
        mock_store.list_namespaces.return_value = [NamespaceInfo(name="text")]
        await built_engine.search("rainfall")
        assert len(built_engine.result_cache) == 1

        built_engine.build_index([Document(id="x", content="new corpus")])

        assert len(built_engine.result_cache) == 0
        assert len(built_engine.namespace_cache) == 0


class TestSearch:
    """Tests for RetrievalEngine.search."""

    async def test_search_before_build_raises(self, engine: RetrievalEngine) -> None:
        """Test searching without an index raises IndexNotBuiltError."""
        with pytest.raises(IndexNotBuiltError):
            await engine.search("rainfall")

    async def test_lexical_results_with_defaults(self, built_engine: RetrievalEngine) -> None:
        """Test a keyword query ranks the matching document first."""
        response = await built_engine.search("rainfall Kerala")

        assert response.results
        assert response.results[0].document.id == "kerala"
        assert response.metadata.strategy is SearchStrategy.KEYWORD_HEAVY
        assert response.metadata.weights is not None
        assert response.metadata.degraded is False
        assert response.metadata.elapsed_ms >= 0
        assert len(response.documents) == len(response.results)
        assert response.documents[0].metadata["_search_method"] in {"bm25", "fuse", "hybrid"}

    async def test_semantic_hit_fused_with_lexical(
        self, built_engine: RetrievalEngine, mock_store: MagicMock, sample_documents
    ) -> None:
        """Test a document found by BM25 and the vector store is one hybrid result."""
        kerala = sample_documents[0]
        mock_store.similarity_search.return_value = [
            VectorMatch(
                id="kerala", content=kerala.content, metadata={}, score=0.92, namespace="text"
            )
        ]

        response = await built_engine.search(
            "rainfall Kerala", options=SearchOptions(k=3, namespace="text")
        )

        top = response.results[0]
        assert top.document.id == "kerala"
        assert top.method is SearchMethod.HYBRID
        assert top.semantic_score == pytest.approx(0.92)
        assert top.bm25_score > 0
        assert response.metadata.semantic_count == 1
        assert response.metadata.semantic_attempts == 1

    async def test_semantic_failure_degrades(
        self, built_engine: RetrievalEngine, mock_store: MagicMock
    ) -> None:
        """Test an unreachable vector store still returns lexical results."""
        mock_store.similarity_search.side_effect = TransientNetworkError("connection refused")

        response = await built_engine.search(
            "rainfall Kerala", options=SearchOptions(namespace="text")
        )

        assert response.metadata.degraded is True
        assert response.metadata.failed_methods == ["semantic"]
        assert response.metadata.semantic_count == 0
        assert response.results[0].document.id == "kerala"
        # Initial attempt plus two retries
        assert mock_store.similarity_search.await_count == 3

    async def test_permanent_semantic_error_propagates(
        self, built_engine: RetrievalEngine, mock_store: MagicMock
    ) -> None:
        """Test a rejected vector query is raised instead of degrading."""
        mock_store.similarity_search.side_effect = PermanentRequestError("bad vector", 400)

        with pytest.raises(PermanentRequestError):
            await built_engine.search("rainfall", options=SearchOptions(namespace="text"))

    async def test_all_methods_failing_raises(
        self, built_engine: RetrievalEngine, mock_store: MagicMock
    ) -> None:
        """Test NoResultsAvailableError when every enabled method fails."""
        mock_store.similarity_search.side_effect = TransientNetworkError("down")
        snapshot = built_engine._snapshot
        snapshot.bm25.search = MagicMock(side_effect=RuntimeError("bm25 broken"))
        snapshot.fuzzy.search = MagicMock(side_effect=RuntimeError("fuzzy broken"))

        with pytest.raises(NoResultsAvailableError) as exc_info:
            await built_engine.search("rainfall", options=SearchOptions(namespace="text"))

        assert set(exc_info.value.failures) == {"bm25", "fuse", "semantic"}

    async def test_disabled_fuzzy_not_counted_as_failure(
        self, built_engine: RetrievalEngine, mock_store: MagicMock
    ) -> None:
        """Test BM25 and semantic failing with fuzzy disabled raises."""
        mock_store.similarity_search.side_effect = TransientNetworkError("down")
        built_engine._snapshot.bm25.search = MagicMock(side_effect=RuntimeError("broken"))

        with pytest.raises(NoResultsAvailableError):
            await built_engine.search(
                "rainfall", options=SearchOptions(namespace="text", enable_fuzzy=False)
            )

    async def test_fuzzy_disabled(self, built_engine: RetrievalEngine) -> None:
        """Test fuzzy matching can be switched off."""
        response = await built_engine.search(
            "rainfall", options=SearchOptions(namespace="text", enable_fuzzy=False)
        )

        assert response.metadata.fuzzy_count == 0
        assert all(r.fuse_score == 0 for r in response.results)

    async def test_pinned_namespace_skips_listing(
        self, built_engine: RetrievalEngine, mock_store: MagicMock
    ) -> None:
        """Test a namespace in the options searches only that namespace."""
        response = await built_engine.search(
            "monsoon", options=SearchOptions(namespace="table", score_threshold=0.0)
        )

        mock_store.list_namespaces.assert_not_awaited()
        assert response.metadata.namespaces_searched == ["table"]
        assert all(r.document.metadata["namespace"] == "table" for r in response.results)
        assert mock_store.similarity_search.await_args.kwargs["namespace"] == "table"

    async def test_fans_out_across_namespaces(
        self, built_engine: RetrievalEngine, mock_store: MagicMock
    ) -> None:
        """Test an unpinned search covers every namespace the store lists."""
        mock_store.list_namespaces.return_value = [
            NamespaceInfo(name="text", document_count=2),
            NamespaceInfo(name="table", document_count=1),
        ]

        response = await built_engine.search(
            "rainfall monsoon", options=SearchOptions(k=4, score_threshold=0.05)
        )

        assert sorted(response.metadata.namespaces_searched) == ["table", "text"]
        assert {r.namespace for r in response.results} <= {"table", "text"}
        searched = {c.kwargs["namespace"] for c in mock_store.similarity_search.await_args_list}
        assert searched == {"text", "table"}

    async def test_explicit_analysis_and_weights(self, built_engine: RetrievalEngine) -> None:
        """Test caller-provided analysis and weights are used as given."""
        analysis = QueryAnalysis(query_type=QueryType.COMPARATIVE, complexity=3)
        options = SearchOptions(
            namespace="text",
            weights={"bm25_weight": 1.0, "semantic_weight": 0.0, "fuse_weight": 0.0},
            score_threshold=0.0,
        )

        response = await built_engine.search("rainfall", analysis=analysis, options=options)

        assert response.metadata.strategy is SearchStrategy.BALANCED
        assert response.metadata.weights.bm25_weight == 1.0
        assert all(r.hybrid_score == pytest.approx(r.bm25_score) for r in response.results)

    async def test_high_threshold_returns_empty(self, built_engine: RetrievalEngine) -> None:
        """Test nothing above the threshold gives an empty, non-error response."""
        response = await built_engine.search(
            "rainfall", options=SearchOptions(namespace="text", score_threshold=0.99)
        )

        assert response.results == []
        assert response.metadata.total_results == 0

    async def test_semantic_recovers_after_transient_failures(
        self, built_engine: RetrievalEngine, mock_store: MagicMock, sample_documents
    ) -> None:
        """Test two transient store failures followed by a success return the hit."""
        kerala = sample_documents[0]
        mock_store.similarity_search.side_effect = [
            TransientNetworkError("connection reset"),
            TransientNetworkError("connection reset"),
            [
                VectorMatch(
                    id="kerala", content=kerala.content, metadata={}, score=0.9, namespace="text"
                )
            ],
        ]

        response = await built_engine.search(
            "rainfall Kerala", options=SearchOptions(namespace="text")
        )

        assert response.metadata.semantic_attempts == 3
        assert response.metadata.semantic_count == 1
        assert response.metadata.degraded is False
        assert response.metadata.failed_methods == []
        assert response.results[0].document.id == "kerala"
        assert response.results[0].semantic_score == pytest.approx(0.9)
        assert built_engine.breaker.failure_count == 0

    async def test_unscoped_documents_searched_in_fan_out(
        self, engine: RetrievalEngine, mock_store: MagicMock, sample_documents
    ) -> None:
        """Test documents indexed without a namespace still reach BM25 and fuzzy."""
        engine.build_index(
            [
                doc.model_copy(
                    update={
                        "metadata": {k: v for k, v in doc.metadata.items() if k != "namespace"}
                    }
                )
                for doc in sample_documents
            ]
        )
        mock_store.list_namespaces.return_value = [NamespaceInfo(name="default")]

        response = await engine.search("rainfall")

        assert response.metadata.namespaces_searched == ["default"]
        assert response.metadata.bm25_count > 0
        assert response.results
        assert {"kerala", "tamil"} & {r.document.id for r in response.results}

    async def test_k_clamped_to_configured_maximum(
        self, settings, mock_store: MagicMock, mock_embedder: MagicMock, clock, sleep
    ) -> None:
        """Test a k above search_max_k is reduced before searching."""
        engine = RetrievalEngine(
            settings.model_copy(update={"search_max_k": 2}),
            mock_store,
            mock_embedder,
            clock=clock,
            sleep=sleep,
        )
        engine.build_index(
            [Document(id=f"d{i}", content=f"rainfall report number {i}") for i in range(5)]
        )

        response = await engine.search(
            "rainfall", options=SearchOptions(k=10, score_threshold=0.0)
        )

        assert len(response.results) == 2
        expected_fetch = math.ceil(2 * SEMANTIC_FETCH_MULTIPLIER * settings.semantic_over_fetch)
        assert mock_store.similarity_search.await_args.kwargs["top_k"] == expected_fetch


class TestIngest:
    """Tests for RetrievalEngine.ingest."""

    async def test_ingest_rebuilds_index(
        self, built_engine: RetrievalEngine, mock_store: MagicMock
    ) -> None:
        """Test ingested documents become searchable lexically."""
        report = await built_engine.ingest(
            [Document(content="Cyclone warnings issued for the Odisha coast")],
            namespace="alerts",
        )

        assert report.upserted == 1
        assert report.index_rebuilt is True
        assert built_engine.index_stats().total_documents == 4
        assert mock_store.upsert.await_args.args[1] == "alerts"
        record = mock_store.upsert.await_args.args[0][0]
        assert record.metadata["namespace"] == "alerts"

        response = await built_engine.search(
            "cyclone Odisha", options=SearchOptions(namespace="alerts")
        )
        assert response.results[0].document.content.startswith("Cyclone warnings")

    async def test_ingest_without_rebuild(self, built_engine: RetrievalEngine) -> None:
        """Test the index is left alone when rebuild is disabled."""
        report = await built_engine.ingest(
            [Document(id="new", content="Dry spell in Rajasthan")], rebuild_index=False
        )

        assert report.upserted == 1
        assert report.index_rebuilt is False
        assert built_engine.index_stats().total_documents == 3

    async def test_failed_documents_not_indexed(
        self, built_engine: RetrievalEngine, mock_store: MagicMock
    ) -> None:
        """Test documents whose batch failed are left out of the rebuilt index."""

        async def upsert(records, namespace=None):
            if any(r.id == "bad" for r in records):
                raise PermanentRequestError("rejected", status_code=400)
            return len(records)

        mock_store.upsert.side_effect = upsert

        report = await built_engine.ingest(
            [Document(id="good", content="Heat wave"), Document(id="bad", content="Broken")]
        )

        assert report.upserted == 1
        assert [f.document_ids for f in report.failures] == [["bad"]]
        ids = {doc.id for doc in built_engine._current_documents()}
        assert "good" in ids
        assert "bad" not in ids

    async def test_ingest_into_empty_engine(self, engine: RetrievalEngine) -> None:
        """Test ingesting builds the index when none existed."""
        await engine.ingest([Document(id="a", content="Monsoon onset over Kerala")])

        assert engine.is_built is True
        assert engine.index_stats().total_documents == 1

    async def test_ingest_uses_configured_namespace_field(
        self, settings, mock_store: MagicMock, mock_embedder: MagicMock, clock, sleep
    ) -> None:
        """Test ingest and lexical scoping agree on the configured namespace key."""
        engine = RetrievalEngine(
            settings.model_copy(update={"namespace_field": "collection"}),
            mock_store,
            mock_embedder,
            clock=clock,
            sleep=sleep,
        )
        engine.build_index(
            [Document(id="old", content="Cyclone season notes", metadata={"collection": "text"})]
        )

        await engine.ingest(
            [Document(id="new", content="Cyclone warnings for Odisha")], namespace="alerts"
        )

        record = mock_store.upsert.await_args.args[0][0]
        assert record.metadata["collection"] == "alerts"
        assert "namespace" not in record.metadata
        response = await engine.search(
            "cyclone", options=SearchOptions(namespace="alerts", score_threshold=0.0)
        )
        assert [r.document.id for r in response.results] == ["new"]


class TestHealth:
    """Tests for RetrievalEngine.health_check."""

    async def test_unhealthy_before_build(self, engine: RetrievalEngine) -> None:
        """Test an engine without an index is unhealthy."""
        report = await engine.health_check()

        assert report.status is HealthStatus.UNHEALTHY
        assert "Index has not been built" in report.issues

    async def test_unhealthy_when_empty(self, engine: RetrievalEngine) -> None:
        """Test an empty index is unhealthy."""
        engine.build_index([])

        report = await engine.health_check()

        assert report.status is HealthStatus.UNHEALTHY
        assert "Index contains no documents" in report.issues

    async def test_healthy(self, built_engine: RetrievalEngine) -> None:
        """Test a fresh index with a reachable store is healthy."""
        report = await built_engine.health_check()

        assert report.status is HealthStatus.HEALTHY
        assert report.issues == []
        assert report.circuit_state == "CLOSED"
        assert report.vector_store_reachable is True
        assert report.stats.total_documents == 3

    async def test_degraded_when_stale(self, built_engine: RetrievalEngine, clock) -> None:
        """Test an index older than the staleness window is degraded."""
        clock.advance(24 * 60 * 60 + 1)

        report = await built_engine.health_check()

        assert report.status is HealthStatus.DEGRADED
        assert "Index is older than 24 hours" in report.issues

    async def test_degraded_when_store_unreachable(
        self, built_engine: RetrievalEngine, mock_store: MagicMock
    ) -> None:
        """Test an unreachable vector store degrades health."""
        mock_store.health_check.return_value = False

        report = await built_engine.health_check()

        assert report.status is HealthStatus.DEGRADED
        assert report.vector_store_reachable is False

    async def test_degraded_when_circuit_open(
        self, built_engine: RetrievalEngine, mock_store: MagicMock
    ) -> None:
        """Test an open circuit breaker degrades health."""
        mock_store.similarity_search.side_effect = TransientNetworkError("down")
        for query in ("one", "two", "three"):
            await built_engine.search(query, options=SearchOptions(namespace="text"))

        report = await built_engine.health_check()

        assert built_engine.breaker.is_open is True
        assert report.status is HealthStatus.DEGRADED
        assert report.circuit_state == "OPEN"


class TestLifecycle:
    """Tests for closing the engine."""

    async def test_aclose(
        self, engine: RetrievalEngine, mock_store: MagicMock, mock_embedder: MagicMock
    ) -> None:
        """Test closing releases the store and embedder clients."""
        await engine.aclose()

        mock_store.close.assert_awaited_once()
        mock_embedder.close.assert_awaited_once()

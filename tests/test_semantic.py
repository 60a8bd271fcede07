"""Tests for dense-vector search through the resilience layer."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from hybrid_search.errors import (
    CircuitOpenError,
    PermanentRequestError,
    RetryExhaustedError,
    TransientNetworkError,
)
from hybrid_search.resilience.cache import TTLCache
from hybrid_search.resilience.circuit_breaker import CircuitBreaker, CircuitState
from hybrid_search.resilience.retry import RetryOptions
from hybrid_search.retrieval.semantic import SemanticSearchClient
from hybrid_search.retrieval.types import VectorMatch


def _match(doc_id: str, score: float, namespace: str | None = "text") -> VectorMatch:
    return VectorMatch(
        id=doc_id,
        content=f"content of {doc_id}",
        metadata={"source": "report.pdf"},
        score=score,
        namespace=namespace,
    )


@pytest.fixture
def breaker(clock) -> CircuitBreaker:
    """Breaker opening after two failures."""
    return CircuitBreaker(max_failures=2, reset_timeout=30.0, clock=clock)


@pytest.fixture
def client(
    mock_store: MagicMock, mock_embedder: MagicMock, breaker: CircuitBreaker, clock, sleep
) -> SemanticSearchClient:
    """Semantic client with a cache and two retries."""
    return SemanticSearchClient(
        store=mock_store,
        embedder=mock_embedder,
        breaker=breaker,
        retry_options=RetryOptions(max_retries=2, base_delay=0.01),
        cache=TTLCache(ttl=600, clock=clock),
        over_fetch=1.5,
        score_threshold=0.5,
        sleep=sleep,
    )


class TestSemanticSearchClient:
    """Tests for SemanticSearchClient.search."""

    async def test_returns_results_above_threshold(
        self, client: SemanticSearchClient, mock_store: MagicMock, mock_embedder: MagicMock
    ) -> None:
        """Test matches below the threshold are dropped and metadata is enriched."""
        mock_store.similarity_search.return_value = [
            _match("a", 0.9),
            _match("b", 0.6),
            _match("c", 0.4),
        ]

        outcome = await client.search("monsoon rainfall", k=5, namespace="text")

        assert [r.document.id for r in outcome.results] == ["a", "b"]
        assert outcome.attempts == 1
        assert outcome.cached is False
        first = outcome.results[0]
        assert first.namespace == "text"
        assert first.document.metadata["_score"] == 0.9
        assert first.document.metadata["namespace"] == "text"
        assert first.document.metadata["source"] == "report.pdf"
        mock_embedder.embed.assert_awaited_once_with("monsoon rainfall", is_query=True)

    async def test_namespace_copied_into_configured_field(
        self, mock_store: MagicMock, mock_embedder: MagicMock, breaker: CircuitBreaker
    ) -> None:
        """Test the hit namespace lands under the configured metadata key."""
        client = SemanticSearchClient(
            store=mock_store,
            embedder=mock_embedder,
            breaker=breaker,
            namespace_field="collection",
        )
        mock_store.similarity_search.return_value = [_match("a", 0.9, namespace="table")]

        outcome = await client.search("rainfall", k=1)

        metadata = outcome.results[0].document.metadata
        assert metadata["collection"] == "table"
        assert "namespace" not in metadata

    async def test_over_fetches_and_truncates(
        self, client: SemanticSearchClient, mock_store: MagicMock
    ) -> None:
        """Test the store is asked for ceil(k * 1.5) and results are cut to k."""
        mock_store.similarity_search.return_value = [_match(str(i), 0.9) for i in range(6)]

        outcome = await client.search("rainfall", k=4, filter={"source": "report.pdf"})

        assert len(outcome.results) == 4
        call = mock_store.similarity_search.await_args
        assert call.kwargs["top_k"] == 6
        assert call.kwargs["filter"] == {"source": "report.pdf"}
        assert call.kwargs["score_threshold"] == 0.5

    async def test_explicit_threshold(
        self, client: SemanticSearchClient, mock_store: MagicMock
    ) -> None:
        """Test a per-call threshold overrides the default."""
        mock_store.similarity_search.return_value = [_match("a", 0.3), _match("b", 0.1)]

        outcome = await client.search("rainfall", k=5, score_threshold=0.2)

        assert [r.document.id for r in outcome.results] == ["a"]

    async def test_retries_transient_store_errors(
        self, client: SemanticSearchClient, mock_store: MagicMock, sleep: AsyncMock
    ) -> None:
        """Test two transient failures then success report three attempts."""
        mock_store.similarity_search.side_effect = [
            TransientNetworkError("reset"),
            TransientNetworkError("reset"),
            [_match("a", 0.8)],
        ]

        outcome = await client.search("rainfall", k=3)

        assert outcome.attempts == 3
        assert len(outcome.results) == 1
        assert sleep.await_count == 2

    async def test_exhausted_retries_count_once_against_breaker(
        self, client: SemanticSearchClient, mock_store: MagicMock, breaker: CircuitBreaker
    ) -> None:
        """Test one exhausted retry sequence is one breaker failure."""
        mock_store.similarity_search.side_effect = TransientNetworkError("unavailable", 503)

        with pytest.raises(RetryExhaustedError):
            await client.search("rainfall", k=3)

        assert mock_store.similarity_search.await_count == 3
        assert breaker.failure_count == 1
        assert breaker.state is CircuitState.CLOSED

    async def test_open_breaker_skips_store(
        self, client: SemanticSearchClient, mock_store: MagicMock
    ) -> None:
        """Test an open circuit fails fast without querying the store."""
        mock_store.similarity_search.side_effect = TransientNetworkError("down")
        for query in ("first", "second"):
            with pytest.raises(RetryExhaustedError):
                await client.search(query, k=3)
        mock_store.similarity_search.reset_mock()

        with pytest.raises(CircuitOpenError):
            await client.search("third", k=3)

        mock_store.similarity_search.assert_not_awaited()

    async def test_permanent_error_propagates(
        self, client: SemanticSearchClient, mock_store: MagicMock, breaker: CircuitBreaker
    ) -> None:
        """Test rejected requests are raised without retries or breaker failures."""
        mock_store.similarity_search.side_effect = PermanentRequestError("wrong dimension", 400)

        with pytest.raises(PermanentRequestError):
            await client.search("rainfall", k=3)

        assert mock_store.similarity_search.await_count == 1
        assert breaker.failure_count == 0

    async def test_results_cached(
        self,
        client: SemanticSearchClient,
        mock_store: MagicMock,
        mock_embedder: MagicMock,
        clock,
    ) -> None:
        """Test repeated queries hit the cache until the TTL elapses."""
        mock_store.similarity_search.return_value = [_match("a", 0.8)]

        await client.search("rainfall", k=3)
        cached = await client.search("rainfall", k=3)
        clock.advance(601)
        await client.search("rainfall", k=3)

        assert cached.cached is True
        assert [r.document.id for r in cached.results] == ["a"]
        assert mock_store.similarity_search.await_count == 2
        assert mock_embedder.embed.await_count == 2

    async def test_cache_key_includes_namespace(
        self, client: SemanticSearchClient, mock_store: MagicMock
    ) -> None:
        """Test the same query in different namespaces is not shared."""
        await client.search("rainfall", k=3, namespace="text")
        await client.search("rainfall", k=3, namespace="table")

        assert mock_store.similarity_search.await_count == 2

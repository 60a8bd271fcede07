"""Pytest configuration and shared fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from hybrid_search.config import Settings
from hybrid_search.retrieval.engine import RetrievalEngine
from hybrid_search.retrieval.types import Document


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock starting at t=1000."""
    return FakeClock()


@pytest.fixture
def sleep() -> AsyncMock:
    """Backoff sleep that returns immediately."""
    return AsyncMock()


@pytest.fixture
def settings() -> Settings:
    """Create test settings without reading a .env file."""
    return Settings(
        _env_file=None,
        qdrant_url="http://localhost:6333",
        qdrant_collection="test_documents",
        retry_max_retries=2,
        retry_base_delay=0.01,
        retry_max_delay=0.05,
        retry_timeout=5.0,
        circuit_max_failures=3,
        circuit_reset_timeout=30.0,
    )


@pytest.fixture
def mock_store() -> MagicMock:
    """Create mock vector store returning no matches and no namespaces."""
    store = MagicMock()
    store.similarity_search = AsyncMock(return_value=[])
    store.upsert = AsyncMock(side_effect=lambda records, namespace=None: len(records))
    store.list_namespaces = AsyncMock(return_value=[])
    store.describe_stats = AsyncMock(return_value={"total_documents": 0, "namespaces": {}})
    store.health_check = AsyncMock(return_value=True)
    store.close = AsyncMock()
    return store


@pytest.fixture
def mock_embedder() -> MagicMock:
    """Create mock embedder producing 3-dimensional vectors."""
    embedder = MagicMock()
    embedder.embed = AsyncMock(return_value=[0.1, 0.2, 0.3])
    embedder.embed_batch = AsyncMock(
        side_effect=lambda texts, is_query=True: [[0.1, 0.2, 0.3] for _ in texts]
    )
    embedder.close = AsyncMock()
    return embedder


@pytest.fixture
def sample_documents() -> list[Document]:
    """Small corpus about regional rainfall."""
    return [
        Document(
            id="kerala",
            content="Annual rainfall in Kerala averages 3000 mm during the monsoon season.",
            metadata={"source": "climate.pdf", "title": "Kerala Climate", "namespace": "text"},
        ),
        Document(
            id="tamil",
            content="Tamil Nadu receives most of its rainfall from the northeast monsoon.",
            metadata={"source": "climate.pdf", "title": "Tamil Nadu Climate", "namespace": "text"},
        ),
        Document(
            id="temps",
            content="Average temperatures in the Deccan plateau range from 20 to 35 degrees.",
            metadata={"source": "geography.pdf", "title": "Deccan", "namespace": "table"},
        ),
    ]


@pytest.fixture
def engine(
    settings: Settings,
    mock_store: MagicMock,
    mock_embedder: MagicMock,
    clock: FakeClock,
    sleep: AsyncMock,
) -> RetrievalEngine:
    """Create an engine wired to mock collaborators."""
    return RetrievalEngine(settings, mock_store, mock_embedder, clock=clock, sleep=sleep)

"""Async Qdrant vector store with namespace-scoped search and upsert.

Namespaces are a keyword payload field inside a single collection. Qdrant
client exceptions are translated into the engine's error taxonomy here so
the resilience layer can decide what to retry.
"""

import logging
import uuid
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import httpx
from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from hybrid_search.config import Settings
from hybrid_search.errors import PermanentRequestError, TransientNetworkError
from hybrid_search.resilience.pool import ConnectionPool
from hybrid_search.resilience.retry import RETRYABLE_STATUS_CODES
from hybrid_search.retrieval.types import NamespaceInfo, VectorMatch, VectorRecord

logger = logging.getLogger(__name__)

CONTENT_KEY = "content"
DOC_ID_KEY = "doc_id"
NAMESPACE_FACET_LIMIT = 1000


def point_id(doc_id: str) -> str:
    """Qdrant point ids must be UUIDs or integers; derive one from the document id."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, doc_id))


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Re-raise Qdrant and transport exceptions as engine errors."""
    try:
        yield
    except UnexpectedResponse as e:
        status = e.status_code
        message = f"Qdrant {operation} failed with HTTP {status}: {e.reason_phrase}"
        if status in RETRYABLE_STATUS_CODES:
            raise TransientNetworkError(message, status_code=status) from e
        raise PermanentRequestError(message, status_code=status) from e
    except (ResponseHandlingException, httpx.TransportError, ConnectionError, TimeoutError) as e:
        raise TransientNetworkError(f"Qdrant {operation} failed: {e}") from e


def build_filter(
    namespace_field: str,
    namespace: str | None = None,
    filter: Mapping[str, Any] | None = None,
) -> models.Filter | None:
    """Build a Qdrant filter from a namespace and an exact-match metadata filter.

    List values become ``MatchAny`` conditions, scalars ``MatchValue``.
    """
    conditions: list[models.Condition] = []

    if namespace is not None:
        conditions.append(
            models.FieldCondition(key=namespace_field, match=models.MatchValue(value=namespace))
        )

    for key, value in (filter or {}).items():
        if isinstance(value, (list, tuple, set)):
            match: models.MatchAny | models.MatchValue = models.MatchAny(any=list(value))
        else:
            match = models.MatchValue(value=value)
        conditions.append(models.FieldCondition(key=key, match=match))

    if not conditions:
        return None
    return models.Filter(must=conditions)


class QdrantVectorStore:
    """Vector store backed by one Qdrant collection.

    The ``AsyncQdrantClient`` is held by a ``ConnectionPool`` and recreated
    after sitting idle longer than the pool timeout.
    """

    def __init__(self, settings: Settings, pool: ConnectionPool[AsyncQdrantClient] | None = None):
        """Initialize the vector store.

        Args:
            settings: Application settings containing Qdrant configuration.
            pool: Client pool (created from settings if None).
        """
        self.settings = settings
        self.collection_name = settings.qdrant_collection
        self.vector_name = settings.qdrant_vector_name
        self.namespace_field = settings.namespace_field
        self.pool = pool or ConnectionPool(
            factory=self._create_client,
            idle_timeout=settings.pool_idle_timeout,
            closer=lambda client: client.close(),
        )

    def _create_client(self) -> AsyncQdrantClient:
        logger.info(
            f"Connecting to Qdrant at {self.settings.qdrant_url} "
            f"(collection: {self.collection_name})"
        )
        # Only pass grpc_port when it's set
        client_kwargs: dict[str, Any] = {
            "url": self.settings.qdrant_url,
            "api_key": self.settings.qdrant_api_key,
            "timeout": self.settings.qdrant_timeout,
            "prefer_grpc": self.settings.qdrant_prefer_grpc,
        }
        if self.settings.qdrant_grpc_port is not None:
            client_kwargs["grpc_port"] = self.settings.qdrant_grpc_port
        return AsyncQdrantClient(**client_kwargs)

    async def connect(self) -> None:
        """Create the client and verify the collection is reachable."""
        client = await self.pool.acquire()
        try:
            await client.get_collection(collection_name=self.collection_name)
            logger.info(f"Successfully connected to Qdrant collection: {self.collection_name}")
        except Exception as e:
            logger.warning(
                f"Could not verify collection '{self.collection_name}': {e}. "
                "Collection may not exist yet."
            )

    async def close(self) -> None:
        """Close the pooled Qdrant client."""
        logger.info("Closing Qdrant client connection")
        await self.pool.close()

    async def ensure_collection(self) -> bool:
        """Create the collection and namespace index if missing.

        Returns:
            True if the collection was created, False if it already existed.
        """
        client = await self.pool.acquire()
        with translate_errors("ensure_collection"):
            if await client.collection_exists(collection_name=self.collection_name):
                return False

            logger.info(f"Creating collection '{self.collection_name}'")
            await client.create_collection(
                collection_name=self.collection_name,
                vectors_config={
                    self.vector_name: models.VectorParams(
                        size=self.settings.qdrant_vector_size,
                        distance=models.Distance.COSINE,
                    ),
                },
            )
            # Keyword index backs namespace filtering and the facet listing
            await client.create_payload_index(
                collection_name=self.collection_name,
                field_name=self.namespace_field,
                field_schema=models.PayloadSchemaType.KEYWORD,
            )
        return True

    async def similarity_search(
        self,
        vector: list[float],
        top_k: int,
        namespace: str | None = None,
        filter: Mapping[str, Any] | None = None,
        score_threshold: float | None = None,
    ) -> list[VectorMatch]:
        """Find the nearest documents to a query vector.

        Args:
            vector: Query embedding.
            top_k: Number of points to return.
            namespace: Restrict to one namespace.
            filter: Exact-match payload filter.
            score_threshold: Minimum similarity applied by Qdrant.

        Returns:
            Matches with content, metadata, score and namespace.
        """
        client = await self.pool.acquire()
        with translate_errors("query"):
            response = await client.query_points(
                collection_name=self.collection_name,
                query=vector,
                using=self.vector_name,
                query_filter=build_filter(self.namespace_field, namespace, filter),
                limit=top_k,
                with_payload=True,
                score_threshold=score_threshold,
            )
        return [self._to_match(point) for point in response.points]

    def _to_match(self, point: models.ScoredPoint) -> VectorMatch:
        payload = dict(point.payload or {})
        content = str(payload.pop(CONTENT_KEY, ""))
        doc_id = payload.pop(DOC_ID_KEY, None)
        return VectorMatch(
            id=str(doc_id if doc_id is not None else point.id),
            content=content,
            metadata=payload,
            score=point.score,
            namespace=payload.get(self.namespace_field),
        )

    async def upsert(self, records: list[VectorRecord], namespace: str | None = None) -> int:
        """Write embedded documents into a namespace.

        Returns:
            Number of points written.
        """
        if not records:
            return 0

        points = []
        for record in records:
            payload = dict(record.metadata)
            payload[CONTENT_KEY] = record.content
            payload[DOC_ID_KEY] = record.id
            if namespace is not None:
                payload[self.namespace_field] = namespace
            points.append(
                models.PointStruct(
                    id=point_id(record.id),
                    vector={self.vector_name: record.vector},
                    payload=payload,
                )
            )

        client = await self.pool.acquire()
        with translate_errors("upsert"):
            await client.upsert(collection_name=self.collection_name, points=points, wait=True)
        logger.debug(f"Upserted {len(points)} points into namespace '{namespace}'")
        return len(points)

    async def list_namespaces(self) -> list[NamespaceInfo]:
        """List namespaces with their document counts using the facet API."""
        client = await self.pool.acquire()
        with translate_errors("facet"):
            response = await client.facet(
                collection_name=self.collection_name,
                key=self.namespace_field,
                limit=NAMESPACE_FACET_LIMIT,
            )
        return [
            NamespaceInfo(name=str(hit.value), document_count=hit.count) for hit in response.hits
        ]

    async def describe_stats(self) -> dict[str, Any]:
        """Collection point count and per-namespace counts."""
        client = await self.pool.acquire()
        with translate_errors("describe"):
            info = await client.get_collection(collection_name=self.collection_name)
        namespaces = await self.list_namespaces()
        return {
            "total_documents": info.points_count or 0,
            "namespaces": {ns.name: ns.document_count for ns in namespaces},
        }

    async def health_check(self) -> bool:
        """Check if Qdrant is healthy and responsive.

        Returns:
            True if the collection can be read, False otherwise.
        """
        try:
            client = await self.pool.acquire()
            await client.get_collection(collection_name=self.collection_name)
            return True
        except Exception as e:
            logger.error(f"Qdrant health check failed: {e}")
            return False

    async def __aenter__(self) -> "QdrantVectorStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

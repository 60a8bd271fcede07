"""Narrow interfaces for the engine's network collaborators."""

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from hybrid_search.retrieval.types import NamespaceInfo, VectorMatch, VectorRecord


@runtime_checkable
class Embedder(Protocol):
    """Produces dense vectors for queries and documents."""

    async def embed(self, text: str, is_query: bool = True) -> list[float]: ...

    async def embed_batch(self, texts: list[str], is_query: bool = True) -> list[list[float]]: ...


@runtime_checkable
class VectorStore(Protocol):
    """Namespace-aware vector store."""

    async def similarity_search(
        self,
        vector: list[float],
        top_k: int,
        namespace: str | None = None,
        filter: Mapping[str, Any] | None = None,
        score_threshold: float | None = None,
    ) -> list[VectorMatch]: ...

    async def upsert(self, records: list[VectorRecord], namespace: str | None = None) -> int: ...

    async def list_namespaces(self) -> list[NamespaceInfo]: ...

    async def describe_stats(self) -> dict[str, Any]: ...

    async def health_check(self) -> bool: ...

    async def close(self) -> None: ...

"""Pydantic schemas for API request and response models."""

from typing import Any

from pydantic import BaseModel, Field

from hybrid_search.retrieval.types import (
    Document,
    HybridSearchResponse,
    IndexStats,
    NamespaceInfo,
    QueryAnalysis,
    SearchOptions,
    SearchWeights,
)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status: 'healthy', 'degraded' or 'unhealthy'")
    version: str = Field(description="Service version")
    issues: list[str] = Field(default_factory=list, description="Detected problems")
    circuit_state: str = Field(description="Vector store circuit breaker state")
    vector_store_reachable: bool | None = Field(
        default=None, description="Whether the vector store answered the health probe"
    )
    index: IndexStats = Field(description="Current index statistics")


class SearchRequest(BaseModel):
    """Search request payload."""

    query: str = Field(min_length=1, description="Search query text")
    analysis: QueryAnalysis | None = Field(
        default=None, description="Precomputed query analysis (heuristic analysis if omitted)"
    )
    k: int = Field(default=6, ge=1, le=100, description="Maximum number of results")
    namespace: str | None = Field(
        default=None, description="Search a single namespace instead of fanning out"
    )
    filter: dict[str, Any] | None = Field(
        default=None, description="Exact-match metadata filter; list values match any"
    )
    score_threshold: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Minimum hybrid score to keep a result"
    )
    enable_fuzzy: bool = Field(default=True, description="Whether to run fuzzy matching")
    weights: SearchWeights | None = Field(
        default=None, description="Override the strategy weights"
    )

    def to_options(self) -> SearchOptions:
        return SearchOptions(
            k=self.k,
            namespace=self.namespace,
            filter=self.filter,
            score_threshold=self.score_threshold,
            enable_fuzzy=self.enable_fuzzy,
            weights=self.weights,
        )


class SearchResponse(HybridSearchResponse):
    """Search response with request timing."""

    took_ms: int = Field(description="Request duration in milliseconds")


class IndexRequest(BaseModel):
    """Replace the lexical/fuzzy index with a new corpus."""

    documents: list[Document] = Field(description="Full corpus to index")


class IngestRequest(BaseModel):
    """Embed and upsert documents into the vector store."""

    documents: list[Document] = Field(min_length=1, description="Documents to ingest")
    namespace: str | None = Field(default=None, description="Target namespace")
    rebuild_index: bool = Field(
        default=True, description="Add written documents to the lexical/fuzzy index"
    )


class NamespacesResponse(BaseModel):
    """Namespaces known to the vector store."""

    namespaces: list[NamespaceInfo] = Field(description="Namespaces with document counts")
    total: int = Field(description="Number of namespaces")


class StatsResponse(BaseModel):
    """Index and vector store statistics."""

    index: IndexStats = Field(description="Lexical/fuzzy index statistics")
    vector_store: dict[str, Any] | None = Field(
        default=None, description="Vector store statistics (None when unreachable)"
    )

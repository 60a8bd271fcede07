"""Core types for the retrieval module.

This module defines the data structures used throughout the retrieval
pipeline: documents, query analysis, search options, per-method results,
fused results and index/health reports.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator

from hybrid_search.retrieval.constants import WEIGHT_TOLERANCE


class QueryType(str, Enum):
    """Query intent category produced by query analysis."""

    FACTUAL = "FACTUAL"
    COMPARATIVE = "COMPARATIVE"
    ANALYTICAL = "ANALYTICAL"
    INFERENTIAL = "INFERENTIAL"
    SYNTHETIC = "SYNTHETIC"


class SearchStrategy(str, Enum):
    """Weighting strategy for hybrid fusion.

    Attributes:
        KEYWORD_HEAVY: Favor BM25 (entity lookups).
        SEMANTIC_HEAVY: Favor dense vectors (analytical or complex queries).
        BALANCED: Equal lexical and semantic weight.
        ADAPTIVE: Weights derived from entity count and complexity.
    """

    KEYWORD_HEAVY = "keyword-heavy"
    SEMANTIC_HEAVY = "semantic-heavy"
    BALANCED = "balanced"
    ADAPTIVE = "adaptive"


class SearchMethod(str, Enum):
    """Retrieval method a result came from."""

    BM25 = "bm25"
    SEMANTIC = "semantic"
    FUSE = "fuse"
    HYBRID = "hybrid"


class HealthStatus(str, Enum):
    """Overall engine health."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class Document(BaseModel):
    """A document fragment passed into and returned from the engine.

    Attributes:
        id: Stable document identifier (generated at index time if missing).
        content: Text content.
        metadata: Arbitrary metadata (title, source, namespace...).
    """

    id: str | None = Field(default=None, description="Document identifier")
    content: str = Field(description="Text content")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Document metadata")


class QueryAnalysis(BaseModel):
    """Structured description of a query used to pick a fusion strategy."""

    query_type: QueryType = Field(default=QueryType.FACTUAL, description="Query intent")
    complexity: int = Field(default=1, ge=1, le=5, description="Complexity from 1 to 5")
    key_entities: list[str] = Field(default_factory=list, description="Named entities")
    requires_cross_reference: bool = Field(
        default=False, description="Whether the answer spans several sources"
    )
    data_types_needed: list[str] = Field(
        default_factory=list, description="Structural content types (table, list...)"
    )
    suggested_k: int = Field(default=6, ge=1, description="Suggested number of results")


class SearchWeights(BaseModel):
    """Per-method fusion weights. Must sum to 1."""

    bm25_weight: float = Field(ge=0.0, le=1.0)
    semantic_weight: float = Field(ge=0.0, le=1.0)
    fuse_weight: float = Field(ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_sum(self) -> "SearchWeights":
        total = self.bm25_weight + self.semantic_weight + self.fuse_weight
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Search weights must sum to 1.0, got {total:.6f}")
        return self


class SearchOptions(BaseModel):
    """Caller options for a hybrid search.

    Attributes:
        k: Number of results to return.
        namespace: Pin the search to one namespace (skips orchestration).
        filter: Exact-match metadata filter.
        score_threshold: Minimum fused score.
        enable_fuzzy: Whether to run the fuzzy method.
        weights: Override the strategy weight table.
    """

    k: int = Field(default=6, ge=1, le=100, description="Number of results")
    namespace: str | None = Field(default=None, description="Namespace to search")
    filter: dict[str, Any] | None = Field(default=None, description="Metadata filter")
    score_threshold: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Minimum fused score"
    )
    enable_fuzzy: bool = Field(default=True, description="Run fuzzy matching")
    weights: SearchWeights | None = Field(
        default=None, description="Explicit weights (strategy table if None)"
    )


class LexicalResult(BaseModel):
    """BM25 hit with its raw score."""

    method: Literal["bm25"] = "bm25"
    document: Document
    score: float
    matched_terms: list[str] = Field(default_factory=list)


class SemanticResult(BaseModel):
    """Vector store hit with the store's similarity score."""

    method: Literal["semantic"] = "semantic"
    document: Document
    score: float
    namespace: str | None = None


class FuzzyResult(BaseModel):
    """Fuzzy hit; score is ``1 - distance``."""

    method: Literal["fuse"] = "fuse"
    document: Document
    score: float
    matched_fields: list[str] = Field(default_factory=list)


MethodResult = Annotated[
    LexicalResult | SemanticResult | FuzzyResult,
    Field(discriminator="method"),
]


class SearchResult(BaseModel):
    """Fused result with normalized per-method scores."""

    document: Document
    bm25_score: float = 0.0
    semantic_score: float = 0.0
    fuse_score: float = 0.0
    hybrid_score: float = 0.0
    method: SearchMethod
    namespace: str | None = None


class SearchMetadata(BaseModel):
    """Diagnostics describing how a search was executed."""

    total_results: int = 0
    bm25_count: int = 0
    semantic_count: int = 0
    fuzzy_count: int = 0
    strategy: SearchStrategy = SearchStrategy.ADAPTIVE
    weights: SearchWeights | None = None
    elapsed_ms: float = 0.0
    semantic_attempts: int = 0
    degraded: bool = False
    failed_methods: list[str] = Field(default_factory=list)
    cached: bool = False
    namespaces_searched: list[str] = Field(default_factory=list)
    fallback_used: bool = False


class HybridSearchResponse(BaseModel):
    """Ranked documents plus per-result provenance and diagnostics."""

    documents: list[Document] = Field(default_factory=list)
    results: list[SearchResult] = Field(default_factory=list)
    metadata: SearchMetadata = Field(default_factory=SearchMetadata)


class VectorMatch(BaseModel):
    """A single hit returned by the vector store."""

    id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float
    namespace: str | None = None


class VectorRecord(BaseModel):
    """A document with its embedding, ready to upsert."""

    id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    vector: list[float]


class NamespaceInfo(BaseModel):
    """Namespace name with its document count."""

    name: str
    document_count: int = 0


class IndexStats(BaseModel):
    """Lexical/fuzzy snapshot statistics."""

    is_built: bool = False
    total_documents: int = 0
    unique_terms: int = 0
    average_doc_length: float = 0.0
    last_update: datetime | None = None


class HealthReport(BaseModel):
    """Engine health with the reasons behind a non-healthy status."""

    status: HealthStatus
    issues: list[str] = Field(default_factory=list)
    stats: IndexStats
    circuit_state: str
    vector_store_reachable: bool | None = None


class BatchFailure(BaseModel):
    """A batch that still failed after every split."""

    batch_index: int
    document_ids: list[str]
    error: str


class UpsertReport(BaseModel):
    """Outcome of an ingestion run."""

    namespace: str | None = None
    total_documents: int = 0
    upserted: int = 0
    batches: int = 0
    failures: list[BatchFailure] = Field(default_factory=list)
    index_rebuilt: bool = False

    @property
    def failed(self) -> int:
        return sum(len(f.document_ids) for f in self.failures)

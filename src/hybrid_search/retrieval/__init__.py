"""Retrieval module for hybrid lexical, semantic and fuzzy search.

This module provides the building blocks of the retrieval pipeline:
- BM25 and fuzzy indexes over an immutable corpus snapshot
- Dense-vector search through the resilience layer
- Strategy selection and score fusion
- Multi-namespace fan-out with a fallback pass
- Heuristic query analysis

Example usage:
    >>> from hybrid_search.retrieval.engine import RetrievalEngine
    >>> engine.build_index(documents)
    >>> response = await engine.search("annual rainfall in Kerala", options=SearchOptions(k=5))
"""

from hybrid_search.retrieval.classifier import QueryAnalyzer
from hybrid_search.retrieval.constants import (
    BM25_B,
    BM25_K1,
    FINGERPRINT_LENGTH,
    STRATEGY_WEIGHTS,
)
from hybrid_search.retrieval.types import (
    Document,
    FuzzyResult,
    HealthReport,
    HealthStatus,
    HybridSearchResponse,
    IndexStats,
    LexicalResult,
    MethodResult,
    QueryAnalysis,
    QueryType,
    SearchMetadata,
    SearchMethod,
    SearchOptions,
    SearchResult,
    SearchStrategy,
    SearchWeights,
    SemanticResult,
)

__all__ = [
    # Analysis
    "QueryAnalyzer",
    # Types
    "Document",
    "FuzzyResult",
    "HealthReport",
    "HealthStatus",
    "HybridSearchResponse",
    "IndexStats",
    "LexicalResult",
    "MethodResult",
    "QueryAnalysis",
    "QueryType",
    "SearchMetadata",
    "SearchMethod",
    "SearchOptions",
    "SearchResult",
    "SearchStrategy",
    "SearchWeights",
    "SemanticResult",
    # Constants
    "BM25_B",
    "BM25_K1",
    "FINGERPRINT_LENGTH",
    "STRATEGY_WEIGHTS",
]

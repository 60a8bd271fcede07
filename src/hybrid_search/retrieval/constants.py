"""Configuration constants for the retrieval module.

This module defines the ranking parameters, strategy weight tables and
fetch multipliers used throughout the hybrid retrieval pipeline.
"""

# BM25 parameters
BM25_K1 = 1.2
"""Term frequency saturation.

Higher values let repeated terms keep adding to the score for longer.
"""

BM25_B = 0.75
"""Document length normalization strength (0 = none, 1 = full)."""

BM25_EPSILON = 0.25
"""Fraction of the average IDF used as the floor for negative IDFs.

Terms present in more than half of the corpus get a negative raw IDF, which
would make documents score lower the more often they contain the term. Those
IDFs are replaced with ``BM25_EPSILON * average_idf``, the rank-bm25 Okapi
convention.
"""

BM25_MIN_IDF = 1e-6
"""Lower bound for the IDF floor when the corpus average IDF is not positive."""

# Tokenization
MIN_TOKEN_LENGTH = 2
MAX_TOKEN_LENGTH = 50

# Fusion
FINGERPRINT_LENGTH = 100
"""Characters of whitespace-collapsed content used to identify a document across methods."""

BM25_FETCH_MULTIPLIER = 2
SEMANTIC_FETCH_MULTIPLIER = 3
FUZZY_FETCH_MULTIPLIER = 2
"""Each method fetches ``multiplier * k`` candidates before fusion."""

WEIGHT_TOLERANCE = 1e-6
"""Allowed deviation of the weight sum from 1.0."""

STRATEGY_WEIGHTS: dict[str, tuple[float, float, float]] = {
    "keyword-heavy": (0.6, 0.3, 0.1),
    "semantic-heavy": (0.2, 0.7, 0.1),
    "balanced": (0.4, 0.4, 0.2),
}
"""(bm25, semantic, fuse) weights per fixed strategy."""

# Adaptive weighting
ADAPTIVE_BM25_BASE = 0.3
ADAPTIVE_BM25_ENTITY_SCALE = 0.3
ADAPTIVE_BM25_MAX = 0.6
ADAPTIVE_SEMANTIC_BASE = 0.4
ADAPTIVE_SEMANTIC_COMPLEX_BONUS = 0.3
ADAPTIVE_SEMANTIC_SIMPLE_BONUS = 0.1
ADAPTIVE_SEMANTIC_MAX = 0.7
ADAPTIVE_FUSE_MIN = 0.1
ENTITY_RATIO_DIVISOR = 10

# Fuzzy matching
FUZZY_FIELD_WEIGHTS: dict[str, float] = {
    "content": 0.7,
    "title": 0.2,
    "source": 0.1,
}
"""Relative weight of each document field in the fuzzy score."""

# Namespace ranking
STRUCTURAL_NAMESPACE_BOOSTS: dict[str, int] = {
    "table": 3,
    "heading": 2,
    "text": 1,
    "list": 1,
}
"""Boost for namespaces whose name contains a structural content type."""

DEFAULT_NAMESPACE = "default"
DEFAULT_NAMESPACE_BOOST = 1

NAMESPACE_STRUCTURAL_MULTIPLIER = 0.05
NAMESPACE_LEXICAL_MULTIPLIER = 0.1
NAMESPACE_MAX_BOOST = 1.5
"""Result boost is ``1 + 0.05 * structural + 0.1 * lexical``, capped at 1.5."""

"""Strategy selection and score fusion for hybrid search.

Each method's scores are divided by that method's maximum in the current
result set (or by 1 when the maximum is below 1), so the same raw score can
fuse differently depending on what else was retrieved in the call. Results
are merged by content fingerprint; a document found by more than one method
is tagged ``hybrid``.
"""

import logging

from hybrid_search.indexing.corpus import fingerprint
from hybrid_search.retrieval.constants import (
    ADAPTIVE_BM25_BASE,
    ADAPTIVE_BM25_ENTITY_SCALE,
    ADAPTIVE_BM25_MAX,
    ADAPTIVE_FUSE_MIN,
    ADAPTIVE_SEMANTIC_BASE,
    ADAPTIVE_SEMANTIC_COMPLEX_BONUS,
    ADAPTIVE_SEMANTIC_MAX,
    ADAPTIVE_SEMANTIC_SIMPLE_BONUS,
    ENTITY_RATIO_DIVISOR,
    STRATEGY_WEIGHTS,
)
from hybrid_search.retrieval.types import (
    Document,
    FuzzyResult,
    LexicalResult,
    MethodResult,
    QueryAnalysis,
    QueryType,
    SearchMethod,
    SearchResult,
    SearchStrategy,
    SearchWeights,
    SemanticResult,
)

logger = logging.getLogger(__name__)


def determine_strategy(analysis: QueryAnalysis) -> SearchStrategy:
    """Pick a fusion strategy from the query analysis.

    Rules are checked in order:
    1. Factual query naming entities -> keyword-heavy
    2. Analytical or complexity > 3 -> semantic-heavy
    3. Comparative or complexity == 2 -> balanced
    4. Otherwise -> adaptive
    """
    if analysis.query_type is QueryType.FACTUAL and analysis.key_entities:
        return SearchStrategy.KEYWORD_HEAVY
    if analysis.query_type is QueryType.ANALYTICAL or analysis.complexity > 3:
        return SearchStrategy.SEMANTIC_HEAVY
    if analysis.query_type is QueryType.COMPARATIVE or analysis.complexity == 2:
        return SearchStrategy.BALANCED
    return SearchStrategy.ADAPTIVE


def calculate_weights(strategy: SearchStrategy, analysis: QueryAnalysis) -> SearchWeights:
    """Weights for a strategy; adaptive weights are rescaled to sum to 1."""
    if strategy is not SearchStrategy.ADAPTIVE:
        bm25, semantic, fuse = STRATEGY_WEIGHTS[strategy.value]
        return SearchWeights(bm25_weight=bm25, semantic_weight=semantic, fuse_weight=fuse)

    entity_ratio = len(analysis.key_entities) / ENTITY_RATIO_DIVISOR
    bm25 = min(ADAPTIVE_BM25_MAX, ADAPTIVE_BM25_BASE + entity_ratio * ADAPTIVE_BM25_ENTITY_SCALE)
    bonus = (
        ADAPTIVE_SEMANTIC_COMPLEX_BONUS
        if analysis.complexity > 3
        else ADAPTIVE_SEMANTIC_SIMPLE_BONUS
    )
    semantic = min(ADAPTIVE_SEMANTIC_MAX, ADAPTIVE_SEMANTIC_BASE + bonus)
    fuse = max(ADAPTIVE_FUSE_MIN, 1 - bm25 - semantic)

    # The fuse floor can push the sum past 1
    total = bm25 + semantic + fuse
    return SearchWeights(
        bm25_weight=bm25 / total,
        semantic_weight=semantic / total,
        fuse_weight=1.0 - bm25 / total - semantic / total,
    )


def to_search_result(result: MethodResult, normalized_score: float) -> SearchResult:
    """Map a per-method result onto a fused result carrying one normalized score."""
    if isinstance(result, LexicalResult):
        return SearchResult(
            document=result.document, bm25_score=normalized_score, method=SearchMethod.BM25
        )
    if isinstance(result, SemanticResult):
        return SearchResult(
            document=result.document,
            semantic_score=normalized_score,
            method=SearchMethod.SEMANTIC,
            namespace=result.namespace,
        )
    if isinstance(result, FuzzyResult):
        return SearchResult(
            document=result.document, fuse_score=normalized_score, method=SearchMethod.FUSE
        )
    raise TypeError(f"Unsupported result type: {type(result).__name__}")


def annotate_document(result: SearchResult) -> Document:
    """Copy of the result's document with its scores recorded in metadata."""
    metadata = dict(result.document.metadata)
    metadata.update(
        {
            "_hybrid_score": result.hybrid_score,
            "_bm25_score": result.bm25_score,
            "_semantic_score": result.semantic_score,
            "_fuse_score": result.fuse_score,
            "_search_method": result.method.value,
        }
    )
    if result.namespace is not None:
        metadata.setdefault("namespace", result.namespace)
    return result.document.model_copy(update={"metadata": metadata})


def _hybrid_score(result: SearchResult, weights: SearchWeights) -> float:
    return (
        weights.bm25_weight * result.bm25_score
        + weights.semantic_weight * result.semantic_score
        + weights.fuse_weight * result.fuse_score
    )


def _merge(existing: SearchResult, incoming: SearchResult) -> None:
    existing.bm25_score = max(existing.bm25_score, incoming.bm25_score)
    existing.semantic_score = max(existing.semantic_score, incoming.semantic_score)
    existing.fuse_score = max(existing.fuse_score, incoming.fuse_score)
    if existing.namespace is None:
        existing.namespace = incoming.namespace
    if incoming.method is not existing.method:
        existing.method = SearchMethod.HYBRID


def fuse_results(
    bm25_results: list[LexicalResult],
    semantic_results: list[SemanticResult],
    fuzzy_results: list[FuzzyResult],
    weights: SearchWeights,
    score_threshold: float,
    k: int,
) -> list[SearchResult]:
    """Combine per-method results into one ranked list.

    Args:
        bm25_results: BM25 hits with raw scores.
        semantic_results: Vector store hits.
        fuzzy_results: Fuzzy hits.
        weights: Per-method weights (missing methods keep their weight).
        score_threshold: Minimum hybrid score to keep.
        k: Maximum number of results.

    Returns:
        Results sorted by descending hybrid score. Empty when nothing clears
        the threshold.
    """
    combined: dict[str, SearchResult] = {}

    for results in (bm25_results, semantic_results, fuzzy_results):
        method_max = max((r.score for r in results), default=0.0)
        divisor = max(method_max, 1.0)
        for result in results:
            incoming = to_search_result(result, result.score / divisor)
            key = fingerprint(result.document.content)
            if key in combined:
                _merge(combined[key], incoming)
            else:
                combined[key] = incoming

    ranked = []
    for result in combined.values():
        result.hybrid_score = _hybrid_score(result, weights)
        if result.hybrid_score >= score_threshold:
            ranked.append(result)

    ranked.sort(key=lambda r: r.hybrid_score, reverse=True)
    logger.debug(
        f"Fused {len(bm25_results)} bm25 + {len(semantic_results)} semantic + "
        f"{len(fuzzy_results)} fuzzy into {len(combined)} unique, {len(ranked)} above threshold"
    )
    return ranked[:k]

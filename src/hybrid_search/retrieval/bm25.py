"""Okapi BM25 ranking over a corpus snapshot.

IDFs are computed once per snapshot. Terms that occur in more than half of
the corpus get a negative raw IDF; those are floored at a small positive
fraction of the average IDF so that a document never scores lower for
containing a query term more often.

See: https://en.wikipedia.org/wiki/Okapi_BM25
"""

import logging
import math
from collections.abc import Mapping
from typing import Any

from hybrid_search.indexing.corpus import CorpusIndex, IndexedDocument, tokenize
from hybrid_search.retrieval.constants import BM25_B, BM25_EPSILON, BM25_K1, BM25_MIN_IDF
from hybrid_search.retrieval.types import LexicalResult

logger = logging.getLogger(__name__)


def raw_idf(total_documents: int, document_frequency: int) -> float:
    """Okapi IDF: ``ln((N - df + 0.5) / (df + 0.5))``. Negative for common terms."""
    return math.log((total_documents - document_frequency + 0.5) / (document_frequency + 0.5))


def bm25_term_score(
    idf: float,
    term_frequency: int,
    doc_length: int,
    average_doc_length: float,
    k1: float = BM25_K1,
    b: float = BM25_B,
) -> float:
    """Contribution of one query term to a document's score."""
    if term_frequency <= 0:
        return 0.0
    length_ratio = doc_length / average_doc_length if average_doc_length > 0 else 0.0
    denominator = term_frequency + k1 * (1 - b + b * length_ratio)
    return idf * term_frequency * (k1 + 1) / denominator


class BM25Index:
    """BM25 scorer bound to one corpus snapshot.

    Example:
        >>> index = BM25Index(CorpusIndex.build(documents))
        >>> hits = index.search("annual rainfall", k=10)
    """

    def __init__(
        self,
        corpus: CorpusIndex,
        k1: float = BM25_K1,
        b: float = BM25_B,
        epsilon: float = BM25_EPSILON,
    ) -> None:
        self.corpus = corpus
        self.k1 = k1
        self.b = b
        self.epsilon = epsilon
        self.idf = self._compute_idf()

    def _compute_idf(self) -> dict[str, float]:
        n = self.corpus.total_documents
        idf = {
            term: raw_idf(n, df) for term, df in self.corpus.document_frequencies.items()
        }
        if not idf:
            return idf

        average_idf = sum(idf.values()) / len(idf)
        floor = max(self.epsilon * average_idf, BM25_MIN_IDF)
        floored = 0
        for term, value in idf.items():
            if value <= 0:
                idf[term] = floor
                floored += 1

        if floored:
            logger.debug(f"Floored {floored} non-positive IDFs at {floor:.4f}")
        return idf

    def score(self, query_tokens: list[str], document: IndexedDocument) -> float:
        """Sum of per-term scores for the distinct query tokens in the document."""
        total = 0.0
        for token in set(query_tokens):
            tf = document.term_frequencies.get(token, 0)
            if tf:
                total += bm25_term_score(
                    self.idf[token],
                    tf,
                    document.length,
                    self.corpus.average_doc_length,
                    self.k1,
                    self.b,
                )
        return total

    def search(
        self,
        query: str,
        k: int,
        namespace: str | None = None,
        filter: Mapping[str, Any] | None = None,
    ) -> list[LexicalResult]:
        """Rank documents for a query.

        Args:
            query: Query text.
            k: Maximum number of results.
            namespace: Restrict to documents in this namespace.
            filter: Exact-match metadata filter.

        Returns:
            Up to k results by descending score; documents matching no query
            term are excluded and ties keep corpus order.
        """
        query_tokens = tokenize(query)
        if not query_tokens or k <= 0:
            return []

        scored: list[tuple[float, int, IndexedDocument, list[str]]] = []
        for position, document in self.corpus.candidates(namespace, filter):
            matched = [t for t in dict.fromkeys(query_tokens) if t in document.term_frequencies]
            if not matched:
                continue
            scored.append((self.score(query_tokens, document), position, document, matched))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [
            LexicalResult(document=document.to_document(), score=score, matched_terms=matched)
            for score, _, document, matched in scored[:k]
        ]

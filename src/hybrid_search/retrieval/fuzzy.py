"""Typo-tolerant fuzzy matching over a corpus snapshot using rapidfuzz.

Each document is compared against the query on three fields (content, title,
source) with weights 0.7 / 0.2 / 0.1. A field's similarity is the best
partial alignment of the query inside the field text; alignments shorter
than ``min_match_char_length`` count as no match. The document score is the
weighted mean over the fields it has, and documents whose distance
(``1 - score``) exceeds ``threshold`` are dropped.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from rapidfuzz import fuzz, utils

from hybrid_search.indexing.corpus import CorpusIndex, IndexedDocument
from hybrid_search.retrieval.constants import FUZZY_FIELD_WEIGHTS
from hybrid_search.retrieval.types import FuzzyResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _FuzzyEntry:
    position: int
    document: IndexedDocument
    fields: dict[str, str]


class FuzzyIndex:
    """Fuzzy matcher bound to one corpus snapshot.

    Attributes:
        threshold: Maximum allowed distance (0 = exact, 1 = anything).
        min_match_char_length: Shortest query term and alignment considered.
    """

    def __init__(
        self,
        corpus: CorpusIndex,
        threshold: float = 0.4,
        min_match_char_length: int = 3,
        field_weights: Mapping[str, float] | None = None,
    ) -> None:
        self.corpus = corpus
        self.threshold = threshold
        self.min_match_char_length = min_match_char_length
        self.field_weights = dict(field_weights or FUZZY_FIELD_WEIGHTS)
        self._entries = [
            _FuzzyEntry(position, document, self._extract_fields(document))
            for position, document in enumerate(corpus.documents)
        ]

    def _extract_fields(self, document: IndexedDocument) -> dict[str, str]:
        raw = {
            "content": document.content,
            "title": document.metadata.get("title"),
            "source": document.metadata.get("source"),
        }
        fields = {}
        for name, value in raw.items():
            if name in self.field_weights and value:
                processed = utils.default_process(str(value))
                if processed:
                    fields[name] = processed
        return fields

    def _prepare_query(self, query: str) -> str:
        terms = utils.default_process(query).split()
        return " ".join(t for t in terms if len(t) >= self.min_match_char_length)

    def field_similarity(self, query: str, text: str) -> float:
        """Similarity in [0, 1] of a processed query against processed field text."""
        if len(text) < len(query):
            return fuzz.ratio(query, text) / 100.0

        alignment = fuzz.partial_ratio_alignment(query, text)
        if alignment is None:
            return 0.0
        if alignment.dest_end - alignment.dest_start < self.min_match_char_length:
            return 0.0
        return alignment.score / 100.0

    def search(
        self,
        query: str,
        k: int,
        namespace: str | None = None,
        filter: Mapping[str, Any] | None = None,
    ) -> list[FuzzyResult]:
        """Find documents approximately matching the query.

        Args:
            query: Query text (typos tolerated).
            k: Maximum number of results.
            namespace: Restrict to documents in this namespace.
            filter: Exact-match metadata filter.

        Returns:
            Up to k results by descending score (``1 - distance``).
        """
        prepared = self._prepare_query(query)
        if not prepared or k <= 0:
            return []

        allowed = {position for position, _ in self.corpus.candidates(namespace, filter)}
        hits: list[tuple[float, int, IndexedDocument, list[str]]] = []

        for entry in self._entries:
            if entry.position not in allowed or not entry.fields:
                continue

            weighted = 0.0
            weight_total = 0.0
            matched_fields = []
            for name, text in entry.fields.items():
                weight = self.field_weights[name]
                similarity = self.field_similarity(prepared, text)
                weighted += weight * similarity
                weight_total += weight
                if 1.0 - similarity <= self.threshold:
                    matched_fields.append(name)

            score = weighted / weight_total if weight_total else 0.0
            if 1.0 - score <= self.threshold:
                hits.append((score, entry.position, entry.document, matched_fields))

        hits.sort(key=lambda item: (-item[0], item[1]))
        return [
            FuzzyResult(document=document.to_document(), score=score, matched_fields=fields)
            for score, _, document, fields in hits[:k]
        ]

"""Corpus snapshots and the vector store write path."""

from hybrid_search.indexing.corpus import (
    CorpusIndex,
    IndexedDocument,
    fingerprint,
    generate_doc_id,
    matches_filter,
    tokenize,
)

__all__ = [
    "CorpusIndex",
    "IndexedDocument",
    "fingerprint",
    "generate_doc_id",
    "matches_filter",
    "tokenize",
]

"""Immutable corpus snapshot shared by the BM25 and fuzzy indexes.

A snapshot is built once from a document list and never mutated afterwards.
Rebuilding produces a new ``CorpusIndex`` that replaces the old one by
reference, so searches already running keep the snapshot they started with.
"""

import hashlib
import logging
import re
import unicodedata
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from hybrid_search.retrieval.constants import (
    FINGERPRINT_LENGTH,
    MAX_TOKEN_LENGTH,
    MIN_TOKEN_LENGTH,
)
from hybrid_search.retrieval.types import Document

logger = logging.getLogger(__name__)

DOC_ID_LENGTH = 12
DEFAULT_NAMESPACE_FIELD = "namespace"

_WHITESPACE = re.compile(r"\s+")


def _is_word_char(char: str) -> bool:
    # Letters, combining marks and digits of any script
    return char == "_" or unicodedata.category(char)[0] in "LMN"


def tokenize(text: str) -> list[str]:
    """Split text into index terms.

    Lower-cases, replaces punctuation with spaces and splits on whitespace.
    Tokens shorter than 2 or longer than 50 characters and purely numeric
    tokens are dropped. Combining marks are kept so scripts such as Malayalam
    or Devanagari tokenize into whole words.

    Args:
        text: Text to tokenize.

    Returns:
        List of tokens in document order.
    """
    cleaned = "".join(ch if _is_word_char(ch) else " " for ch in text.lower())
    return [
        token
        for token in cleaned.split()
        if MIN_TOKEN_LENGTH <= len(token) <= MAX_TOKEN_LENGTH and not token.isdigit()
    ]


def fingerprint(content: str) -> str:
    """Content-prefix key used to merge duplicate hits across methods."""
    return _WHITESPACE.sub(" ", content[:FINGERPRINT_LENGTH]).strip()


def generate_doc_id(document: Document, index: int) -> str:
    """Derive a stable id from the document source, position and content."""
    source = str(document.metadata.get("source", "doc"))
    digest = hashlib.sha256(f"{source}:{index}:{document.content}".encode()).hexdigest()
    return digest[:DOC_ID_LENGTH]


def matches_filter(
    metadata: Mapping[str, Any],
    filter: Mapping[str, Any] | None = None,
    namespace: str | None = None,
    namespace_field: str = DEFAULT_NAMESPACE_FIELD,
) -> bool:
    """Check a document's metadata against a namespace and exact-match filter.

    List values in the filter match if the metadata value is any of them.
    Documents without a namespace in ``namespace_field`` are visible in every
    namespace.
    """
    if namespace is not None:
        document_namespace = metadata.get(namespace_field)
        if document_namespace is not None and document_namespace != namespace:
            return False
    if not filter:
        return True
    for key, expected in filter.items():
        actual = metadata.get(key)
        if isinstance(expected, (list, tuple, set)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


@dataclass(frozen=True)
class IndexedDocument:
    """Document with its precomputed token statistics."""

    id: str
    content: str
    metadata: dict[str, Any]
    tokens: tuple[str, ...]
    term_frequencies: dict[str, int]
    length: int

    def to_document(self) -> Document:
        return Document(id=self.id, content=self.content, metadata=dict(self.metadata))


@dataclass(frozen=True)
class CorpusIndex:
    """Token statistics over an immutable document list.

    Attributes:
        documents: Indexed documents in input order.
        document_frequencies: Number of documents containing each term.
        total_documents: Corpus size.
        average_doc_length: Mean token count (0 for an empty corpus).
        built_at: Build timestamp.
        namespace_field: Metadata key holding a document's namespace.
    """

    documents: tuple[IndexedDocument, ...] = ()
    document_frequencies: dict[str, int] = field(default_factory=dict)
    total_documents: int = 0
    average_doc_length: float = 0.0
    built_at: datetime | None = None
    namespace_field: str = DEFAULT_NAMESPACE_FIELD

    @property
    def unique_terms(self) -> int:
        return len(self.document_frequencies)

    @classmethod
    def build(
        cls, documents: Iterable[Document], namespace_field: str = DEFAULT_NAMESPACE_FIELD
    ) -> "CorpusIndex":
        """Tokenize documents and compute corpus statistics.

        Documents without an id get one from ``generate_doc_id``.
        """
        indexed: list[IndexedDocument] = []
        document_frequencies: Counter[str] = Counter()
        total_length = 0

        for position, document in enumerate(documents):
            tokens = tuple(tokenize(document.content))
            term_frequencies = Counter(tokens)
            document_frequencies.update(term_frequencies.keys())
            total_length += len(tokens)
            indexed.append(
                IndexedDocument(
                    id=document.id or generate_doc_id(document, position),
                    content=document.content,
                    metadata=dict(document.metadata),
                    tokens=tokens,
                    term_frequencies=dict(term_frequencies),
                    length=len(tokens),
                )
            )

        total = len(indexed)
        corpus = cls(
            documents=tuple(indexed),
            document_frequencies=dict(document_frequencies),
            total_documents=total,
            average_doc_length=(total_length / total) if total else 0.0,
            built_at=datetime.now(timezone.utc),
            namespace_field=namespace_field,
        )
        logger.info(
            f"Built corpus index: {total} documents, {corpus.unique_terms} unique terms, "
            f"avg length {corpus.average_doc_length:.1f}"
        )
        return corpus

    def candidates(
        self, namespace: str | None = None, filter: Mapping[str, Any] | None = None
    ) -> list[tuple[int, IndexedDocument]]:
        """Documents (with their positions) passing the namespace and metadata filter."""
        return [
            (position, doc)
            for position, doc in enumerate(self.documents)
            if matches_filter(doc.metadata, filter, namespace, self.namespace_field)
        ]

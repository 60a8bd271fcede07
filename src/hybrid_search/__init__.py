"""Hybrid retrieval service combining BM25, dense-vector and fuzzy search."""

__version__ = "0.1.0"

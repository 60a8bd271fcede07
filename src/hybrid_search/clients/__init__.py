"""Client wrappers for external services.

Provides async client wrappers for:
- Qdrant: vector store with namespace-scoped search, upsert and facet listing
- HuggingFace: dense embeddings via the Inference API
"""

from hybrid_search.clients.base import Embedder, VectorStore
from hybrid_search.clients.huggingface import HuggingFaceEmbedder
from hybrid_search.clients.qdrant import QdrantVectorStore, build_filter

__all__ = [
    "Embedder",
    "HuggingFaceEmbedder",
    "QdrantVectorStore",
    "VectorStore",
    "build_filter",
]

"""HTTP API for the hybrid search service."""

from hybrid_search.api.router import router

__all__ = ["router"]

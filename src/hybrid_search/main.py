"""Hybrid Search Service - FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hybrid_search import __version__
from hybrid_search.api import router
from hybrid_search.clients import HuggingFaceEmbedder, QdrantVectorStore
from hybrid_search.config import get_settings
from hybrid_search.retrieval.engine import RetrievalEngine
from hybrid_search.utils.logging import configure_logging, get_logger
from hybrid_search.utils.tracing import TracingMiddleware

# Configure structured logging
settings = get_settings()
configure_logging(
    level="DEBUG" if settings.debug else "INFO",
    json_format=not settings.debug,  # Human-readable in debug mode
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Creates the vector store, embedder and retrieval engine on startup and
    closes their clients on shutdown. The index starts empty; it is filled
    through the indexing endpoints.

    Args:
        app: FastAPI application instance.

    Yields:
        None after startup, before shutdown.
    """
    settings = get_settings()

    logger.info("Starting Hybrid Search Service...")
    logger.info(f"Qdrant URL: {settings.qdrant_url}")
    logger.info(f"Qdrant Collection: {settings.qdrant_collection}")
    logger.info(f"Embedder Model: {settings.embedder_model}")

    store = QdrantVectorStore(settings)
    embedder = HuggingFaceEmbedder(
        model_id=settings.embedder_model,
        api_token=settings.hf_api_token,
        timeout=settings.embedder_timeout,
    )

    try:
        await store.connect()
        created = await store.ensure_collection()
        if created:
            logger.info(
                f"Created collection '{settings.qdrant_collection}' with "
                f"{settings.qdrant_vector_size}-dim dense vectors"
            )
    except Exception as e:
        # The engine degrades to lexical + fuzzy search while Qdrant is down
        logger.error(f"Failed to initialize Qdrant collection: {e}")
        logger.warning("Service starting in degraded mode without Qdrant")

    app.state.engine = RetrievalEngine(settings, store, embedder)
    logger.info("Hybrid Search Service startup complete")

    yield

    logger.info("Shutting down Hybrid Search Service...")
    try:
        await app.state.engine.aclose()
        logger.info("Engine clients closed successfully")
    except Exception as e:
        logger.error(f"Error closing engine clients: {e}")

    logger.info("Hybrid Search Service shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    app_settings = get_settings()

    app = FastAPI(
        title="Hybrid Search Service",
        description=(
            "Hybrid retrieval combining BM25, dense-vector and fuzzy search "
            "across namespaced document collections"
        ),
        version=__version__,
        lifespan=lifespan,
        debug=app_settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(TracingMiddleware)

    app.include_router(router)

    return app


# Create app instance for uvicorn
app = create_app()


def run() -> None:
    """Run the application with uvicorn.

    This is the entry point for the 'hybrid-search' command defined in pyproject.toml.
    """
    settings = get_settings()

    logger.info(f"Starting server on {settings.search_host}:{settings.search_port}")

    uvicorn.run(
        "hybrid_search.main:app",
        host=settings.search_host,
        port=settings.search_port,
        reload=settings.debug,
        log_level="info",
    )


if __name__ == "__main__":
    run()

"""API route handlers for search, indexing and health endpoints."""

import logging
import time

from fastapi import APIRouter, HTTPException, Request, Response, status

from hybrid_search import __version__
from hybrid_search.api.schemas import (
    HealthResponse,
    IndexRequest,
    IngestRequest,
    NamespacesResponse,
    SearchRequest,
    SearchResponse,
    StatsResponse,
)
from hybrid_search.errors import (
    CircuitOpenError,
    HybridSearchError,
    IndexNotBuiltError,
    NoResultsAvailableError,
    PermanentRequestError,
)
from hybrid_search.retrieval.engine import RetrievalEngine
from hybrid_search.retrieval.types import IndexStats, UpsertReport
from hybrid_search.utils.metrics import render_metrics

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_engine(request: Request) -> RetrievalEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search service unavailable: engine not initialized",
        )
    return engine


def _service_unavailable(e: CircuitOpenError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=str(e),
        headers={"Retry-After": str(max(1, int(e.retry_after_seconds)))},
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Report index state, breaker state and vector store reachability.

    Args:
        request: FastAPI request object with app state.

    Returns:
        Health status with any detected issues.
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return HealthResponse(
            status="unhealthy",
            version=__version__,
            issues=["Engine not initialized"],
            circuit_state="UNKNOWN",
            index=IndexStats(),
        )

    report = await engine.health_check()
    return HealthResponse(
        status=report.status.value,
        version=__version__,
        issues=report.issues,
        circuit_state=report.circuit_state,
        vector_store_reachable=report.vector_store_reachable,
        index=report.stats,
    )


@router.get("/ready")
async def readiness_check(request: Request) -> dict[str, str]:
    """Kubernetes readiness probe.

    Ready once the engine exists and the index has been built.
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return {"status": "not_ready", "reason": "engine not initialized"}
    if not engine.is_built:
        return {"status": "not_ready", "reason": "index not built"}
    return {"status": "ready"}


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Metrics in Prometheus text exposition format.
    """
    content, content_type = render_metrics()
    return Response(content=content, media_type=content_type)


@router.post("/search", response_model=SearchResponse)
async def search(request: Request, search_request: SearchRequest) -> SearchResponse:
    """Run a hybrid BM25 + semantic + fuzzy search.

    Args:
        request: FastAPI request object with app state.
        search_request: Query and search options.

    Returns:
        Ranked documents, per-method scores and search metadata.

    Raises:
        HTTPException: 409 before the index is built, 400 when the request was
            rejected downstream, 503 when no retrieval method could answer.
    """
    start_time = time.time()
    logger.info(
        f"Search request: query='{search_request.query[:50]}', k={search_request.k}, "
        f"namespace={search_request.namespace}"
    )

    engine = _get_engine(request)

    try:
        response = await engine.search(
            search_request.query,
            analysis=search_request.analysis,
            options=search_request.to_options(),
        )
    except IndexNotBuiltError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except PermanentRequestError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except NoResultsAvailableError as e:
        logger.error(f"Search failed in every method: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)
        ) from e
    except Exception as e:
        took_ms = int((time.time() - start_time) * 1000)
        logger.error(f"Search failed after {took_ms}ms: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Search failed: {str(e)}",
        ) from e

    took_ms = int((time.time() - start_time) * 1000)
    logger.info(f"Search completed: results={len(response.results)}, took_ms={took_ms}")

    return SearchResponse(**response.model_dump(), took_ms=took_ms)


@router.post("/index", response_model=IndexStats)
async def build_index(request: Request, index_request: IndexRequest) -> IndexStats:
    """Replace the lexical/fuzzy index with the given corpus."""
    engine = _get_engine(request)
    logger.info(f"Index request: documents={len(index_request.documents)}")
    return engine.build_index(index_request.documents)


@router.post("/documents", response_model=UpsertReport)
async def ingest_documents(request: Request, ingest_request: IngestRequest) -> UpsertReport:
    """Embed and upsert documents into the vector store.

    Batch failures are reported in the response body rather than failing the
    whole request.
    """
    engine = _get_engine(request)
    logger.info(
        f"Ingest request: documents={len(ingest_request.documents)}, "
        f"namespace={ingest_request.namespace}"
    )

    try:
        return await engine.ingest(
            ingest_request.documents,
            namespace=ingest_request.namespace,
            rebuild_index=ingest_request.rebuild_index,
        )
    except HybridSearchError as e:
        logger.error(f"Ingest failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Ingest failed: {str(e)}",
        ) from e


@router.get("/namespaces", response_model=NamespacesResponse)
async def list_namespaces(request: Request) -> NamespacesResponse:
    """List namespaces with their document counts."""
    engine = _get_engine(request)

    try:
        namespaces = await engine.list_namespaces()
    except CircuitOpenError as e:
        raise _service_unavailable(e) from e
    except HybridSearchError as e:
        logger.error(f"Namespace listing failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)
        ) from e

    return NamespacesResponse(namespaces=namespaces, total=len(namespaces))


@router.get("/stats", response_model=StatsResponse)
async def stats(request: Request) -> StatsResponse:
    """Index statistics plus vector store counts when reachable."""
    engine = _get_engine(request)

    vector_store = None
    try:
        vector_store = await engine.store.describe_stats()
    except HybridSearchError as e:
        logger.warning(f"Vector store stats unavailable: {e}")

    return StatsResponse(index=engine.index_stats(), vector_store=vector_store)

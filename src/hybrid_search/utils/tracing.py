"""Request correlation IDs bound into the structured logging context."""

import time
import uuid
from contextvars import ContextVar
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from hybrid_search.utils.logging import bind_context, clear_context, get_logger

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"

logger = get_logger(__name__)


def get_correlation_id() -> str:
    """Correlation ID of the current request, or an empty string outside one."""
    return correlation_id_var.get()


class TracingMiddleware(BaseHTTPMiddleware):
    """Tag every request with a correlation ID.

    The ID is taken from ``X-Correlation-ID`` (or ``X-Request-ID``) when the
    caller sends one and generated otherwise. It is bound into the logging
    context for the duration of the request and echoed in the response
    headers.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        # Context from a previous request on this task must not leak
        clear_context()

        correlation_id = request.headers.get(
            CORRELATION_ID_HEADER, request.headers.get(REQUEST_ID_HEADER, str(uuid.uuid4()))
        )
        correlation_id_var.set(correlation_id)
        bind_context(
            correlation_id=correlation_id,
            method=request.method,
            path=request.url.path,
        )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                exc_info=True,
            )
            raise

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response

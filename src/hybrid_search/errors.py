"""Error taxonomy for the retrieval engine.

Errors raised by the vector store and embedding provider are translated into
these types at the client boundary so the resilience layer can decide what to
retry and callers can tell an outage apart from an empty result.
"""


class HybridSearchError(Exception):
    """Base class for all retrieval engine errors."""


class TransientNetworkError(HybridSearchError):
    """Retryable failure: timeouts, connection resets, 5xx, rate limiting."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize transient error.

        Args:
            message: Error message.
            status_code: HTTP status code reported by the remote side, if any.
        """
        super().__init__(message)
        self.status_code = status_code


class RetryExhaustedError(TransientNetworkError):
    """Raised when a retryable operation ran out of attempts or time budget."""

    def __init__(self, message: str, attempts: int, last_error: BaseException | None) -> None:
        status_code = getattr(last_error, "status_code", None)
        super().__init__(message, status_code=status_code)
        self.attempts = attempts
        self.last_error = last_error


class PermanentRequestError(HybridSearchError):
    """Non-retryable failure: malformed request, auth failure, other 4xx."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class IndexNotBuiltError(HybridSearchError):
    """Search attempted before the lexical/fuzzy index was built."""


class CircuitOpenError(HybridSearchError):
    """Vector store presumed unavailable; call rejected without contacting it."""

    def __init__(self, message: str, retry_after_seconds: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class NoResultsAvailableError(HybridSearchError):
    """Every enabled retrieval method failed, so no ranking could be produced.

    Distinct from an empty result list, which means the methods ran and found
    nothing relevant.
    """

    def __init__(self, message: str, failures: dict[str, BaseException]) -> None:
        super().__init__(message)
        self.failures = failures

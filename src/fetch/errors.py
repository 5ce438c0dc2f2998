"""Exceptions raised by the ingestion fetch path.

The hierarchy separates failures the serving layer must tell apart:
``CircuitOpenError`` (fail-fast, no attempt made) from ``FetchFailedError``
(an attempt was made and failed).
"""

from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from src.fetch.metrics import FetchMetricsSnapshot


class IngestionError(Exception):
    """Base exception for all ingestion errors."""


class CircuitOpenError(IngestionError):
    """Raised when the circuit breaker refuses a call.

    No network attempt was made. Carries the fetcher metrics at the time of
    refusal so callers can degrade gracefully.
    """

    def __init__(
        self,
        endpoint: str,
        retry_in_ms: float,
        metrics: "FetchMetricsSnapshot | None" = None,
    ) -> None:
        """Initialize the error.

        Args:
            endpoint: Endpoint the breaker protects.
            retry_in_ms: Milliseconds until a probe will be admitted.
            metrics: Fetcher metrics at the time of refusal.
        """
        self.endpoint = endpoint
        self.retry_in_ms = retry_in_ms
        self.metrics = metrics
        super().__init__(
            f"Circuit open for {endpoint}; retry in {max(0, int(retry_in_ms))} ms"
        )


class FetchFailedError(IngestionError):
    """Raised when a fetch attempt fails terminally.

    Attributes:
        url: Requested URL (credentials redacted).
        status_code: HTTP status, or None for transport failures.
        body_snippet: Truncated response body, if any.
    """

    def __init__(
        self,
        message: str,
        url: str,
        status_code: int | None = None,
        body_snippet: str | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Human-readable message.
            url: Requested URL.
            status_code: HTTP status code if a response was received.
            body_snippet: Truncated response body.
        """
        self.url = url
        self.status_code = status_code
        self.body_snippet = body_snippet
        super().__init__(message)


class TransientBackendError(FetchFailedError):
    """Raised when 5xx/429 responses persist after all retries."""


class ResponseParseError(FetchFailedError):
    """Raised when a response body is not valid JSON."""


class InconsistentPaginationError(IngestionError):
    """Signals that pages of one pass carried different freshness tokens.

    Internal to the paginator: it triggers a full-pass retry and is surfaced
    to callers only as ``Snapshot.fallback_used``.
    """

    def __init__(
        self,
        page: int,
        expected: str | None,
        actual: str | None,
    ) -> None:
        """Initialize the error.

        Args:
            page: Page number whose token differed.
            expected: Token captured from page 1.
            actual: Token reported by the page.
        """
        self.page = page
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Page {page} last-modified {actual!r} != page 1 {expected!r}"
        )

"""Data models for the HTTP fetch layer."""

import random
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from src.fetch.constants import (
    DEFAULT_BACKOFF_BASE_MS,
    DEFAULT_BACKOFF_CAP_MS,
    HEADER_ETAG,
    HEADER_LAST_MODIFIED,
    HTTP_STATUS_NOT_MODIFIED,
    HTTP_STATUS_OK_MAX,
    HTTP_STATUS_OK_MIN,
)
from src.fetch.transport import TransportResponse


class FetchErrorClass(str, Enum):
    """Classification of fetch errors for metrics and retry decisions.

    - NETWORK_TIMEOUT: Request exceeded its deadline
    - CONNECTION_ERROR: Transport failed before a response was received
    - HTTP_4XX: Non-retryable 4xx client error (except 429)
    - HTTP_5XX: Retryable 5xx server error
    - RATE_LIMITED: 429 Too Many Requests
    - PARSE_ERROR: Body was not valid JSON
    - UNKNOWN: Unclassified error
    """

    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    HTTP_4XX = "HTTP_4XX"
    HTTP_5XX = "HTTP_5XX"
    RATE_LIMITED = "RATE_LIMITED"
    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN = "UNKNOWN"


RETRYABLE_ERROR_CLASSES = frozenset(
    {
        FetchErrorClass.HTTP_5XX,
        FetchErrorClass.RATE_LIMITED,
    }
)


class FetchResult(BaseModel):
    """Normalized result of ``HttpFetcher.fetch_json``.

    ``body`` is the parsed JSON document, or None for empty bodies and
    304 responses served from cache.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    status_code: int = Field(ge=100, le=599, description="HTTP status code")
    url: Annotated[str, Field(min_length=1, description="Requested URL")]
    headers: dict[str, str] = Field(
        default_factory=dict, description="Response headers (lower-cased names)"
    )
    body: Any = Field(default=None, description="Parsed JSON body")
    from_cache: bool = Field(
        default=False, description="Whether the cached copy is still valid (304)"
    )

    @property
    def is_success(self) -> bool:
        """Check if the status is 2xx."""
        return HTTP_STATUS_OK_MIN <= self.status_code < HTTP_STATUS_OK_MAX

    @property
    def is_not_modified(self) -> bool:
        """Check if the server answered 304 Not Modified."""
        return self.status_code == HTTP_STATUS_NOT_MODIFIED

    @property
    def etag(self) -> str | None:
        """ETag of the response, if any."""
        return self.headers.get(HEADER_ETAG)

    @property
    def last_modified(self) -> str | None:
        """Last-Modified freshness token of the response, if any."""
        return self.headers.get(HEADER_LAST_MODIFIED)


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    Uses full-jitter exponential backoff:
    delay = uniform(0, min(max_delay_ms, base_delay_ms * 2 ** attempt))
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_retries: Annotated[int, Field(ge=0, le=20)] = 3
    base_delay_ms: Annotated[int, Field(ge=0, le=60000)] = DEFAULT_BACKOFF_BASE_MS
    max_delay_ms: Annotated[int, Field(ge=0, le=300000)] = DEFAULT_BACKOFF_CAP_MS

    def should_retry(self, error_class: FetchErrorClass, attempt: int) -> bool:
        """Determine if a request should be retried.

        Args:
            error_class: Classification of the failed attempt.
            attempt: Current attempt number (0-indexed).

        Returns:
            True if the request should be retried.
        """
        if attempt >= self.max_retries:
            return False
        return error_class in RETRYABLE_ERROR_CLASSES

    def get_delay_ms(self, attempt: int, rng: random.Random | None = None) -> float:
        """Calculate delay before the next retry attempt.

        Args:
            attempt: Number of the attempt that just failed (0-indexed).
            rng: Optional random source for deterministic tests.

        Returns:
            Delay in milliseconds, in ``[0, min(max_delay_ms, base * 2**attempt)]``.
        """
        ceiling = min(self.max_delay_ms, self.base_delay_ms * (2**attempt))
        source = rng or random
        return source.uniform(0, ceiling)


class AttemptKind(str, Enum):
    """Tag for the outcome of one network attempt."""

    SUCCESS = "SUCCESS"
    RETRYABLE = "RETRYABLE"
    FATAL = "FATAL"


@dataclass(frozen=True)
class AttemptOutcome:
    """Tagged result of a single attempt inside the bounded retry loop.

    Attributes:
        kind: SUCCESS (any response the caller should handle), RETRYABLE
            (5xx/429) or FATAL (transport failure).
        response: Transport response when one was received.
        error_class: Classification for non-success outcomes.
        message: Human-readable description for non-success outcomes.
    """

    kind: AttemptKind
    response: TransportResponse | None = None
    error_class: FetchErrorClass | None = None
    message: str | None = None

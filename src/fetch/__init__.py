"""HTTP fetch layer with conditional caching, retries, and a circuit breaker.

This module provides resilient JSON fetches with:
- ETag conditional requests backed by a persistent cache store
- Bounded full-jitter exponential backoff for 5xx and 429 responses
- A per-endpoint circuit breaker that fails fast while the backend is unhealthy
- Header and URL redaction for logs
- Per-fetcher metrics collection
"""

from src.fetch.breaker import BreakerSnapshot, CircuitBreaker, CircuitState
from src.fetch.cache import CacheManager, CacheStore, build_url, compute_cache_key
from src.fetch.client import HttpFetcher
from src.fetch.clock import Clock, SystemClock
from src.fetch.config import CircuitBreakerConfig, FetchConfig
from src.fetch.errors import (
    CircuitOpenError,
    FetchFailedError,
    InconsistentPaginationError,
    IngestionError,
    ResponseParseError,
    TransientBackendError,
)
from src.fetch.metrics import FetchMetrics, FetchMetricsSnapshot
from src.fetch.models import FetchErrorClass, FetchResult, RetryPolicy
from src.fetch.redact import redact_headers, redact_url
from src.fetch.transport import (
    HttpxTransport,
    Transport,
    TransportError,
    TransportResponse,
    TransportTimeoutError,
)


__all__ = [
    # Client
    "HttpFetcher",
    # Breaker
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitState",
    # Cache
    "CacheManager",
    "CacheStore",
    "build_url",
    "compute_cache_key",
    # Config
    "CircuitBreakerConfig",
    "FetchConfig",
    "RetryPolicy",
    # Models
    "FetchErrorClass",
    "FetchResult",
    # Errors
    "CircuitOpenError",
    "FetchFailedError",
    "InconsistentPaginationError",
    "IngestionError",
    "ResponseParseError",
    "TransientBackendError",
    # Metrics
    "FetchMetrics",
    "FetchMetricsSnapshot",
    # Transport and time
    "Clock",
    "HttpxTransport",
    "SystemClock",
    "Transport",
    "TransportError",
    "TransportResponse",
    "TransportTimeoutError",
    # Redaction
    "redact_headers",
    "redact_url",
]

"""Metrics collection for the HTTP fetch layer."""

import threading
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from src.fetch.models import FetchErrorClass


class FetchMetricsSnapshot(BaseModel):
    """Point-in-time, read-only view of a fetcher's counters."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_requests: int = 0
    total_cache_hits_304: int = 0
    total_retries: int = 0
    failures_by_class: dict[str, int] = Field(default_factory=dict)
    last_rate_limit_remaining: int | None = None
    last_rate_limit_reset: int | None = None
    last_status: int | None = None
    last_url: str | None = None
    circuit_state: str = "CLOSED"
    circuit_opened_reason: str | None = None
    avg_duration_ms: float = 0.0


@dataclass
class FetchMetrics:
    """Running counters for one ``HttpFetcher``.

    Owned by the fetcher instance rather than shared process-wide, so that
    two endpoints never mix their counters. All mutators are thread-safe.
    """

    total_requests: int = 0
    total_cache_hits_304: int = 0
    total_retries: int = 0
    failures_by_class: dict[str, int] = field(default_factory=dict)
    last_rate_limit_remaining: int | None = None
    last_rate_limit_reset: int | None = None
    last_status: int | None = None
    last_url: str | None = None
    duration_ms_total: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_request(self, url: str, status_code: int | None) -> None:
        """Record a logical request that reached the transport.

        Args:
            url: Requested URL (already redacted).
            status_code: Final HTTP status, or None for transport failures.
        """
        with self._lock:
            self.total_requests += 1
            self.last_url = url
            self.last_status = status_code

    def record_cache_hit(self) -> None:
        """Record a cache hit (304 response)."""
        with self._lock:
            self.total_cache_hits_304 += 1

    def record_retry(self) -> None:
        """Record a retry attempt."""
        with self._lock:
            self.total_retries += 1

    def record_failure(self, error_class: FetchErrorClass) -> None:
        """Record a terminal fetch failure.

        Args:
            error_class: Classification of the failure.
        """
        with self._lock:
            key = error_class.value
            self.failures_by_class[key] = self.failures_by_class.get(key, 0) + 1

    def record_rate_limit(self, remaining: int | None, reset: int | None) -> None:
        """Record the request budget advertised by the API.

        None values leave the previous observation in place.
        """
        with self._lock:
            if remaining is not None:
                self.last_rate_limit_remaining = remaining
            if reset is not None:
                self.last_rate_limit_reset = reset

    def record_duration(self, duration_ms: float) -> None:
        """Record the duration of a logical request."""
        with self._lock:
            self.duration_ms_total += duration_ms

    def snapshot(
        self,
        circuit_state: str,
        circuit_opened_reason: str | None,
    ) -> FetchMetricsSnapshot:
        """Capture a consistent copy of all counters.

        Args:
            circuit_state: Current breaker state name.
            circuit_opened_reason: Why the breaker last opened, if it did.

        Returns:
            Immutable metrics snapshot.
        """
        with self._lock:
            avg = (
                self.duration_ms_total / self.total_requests
                if self.total_requests
                else 0.0
            )
            return FetchMetricsSnapshot(
                total_requests=self.total_requests,
                total_cache_hits_304=self.total_cache_hits_304,
                total_retries=self.total_retries,
                failures_by_class=dict(self.failures_by_class),
                last_rate_limit_remaining=self.last_rate_limit_remaining,
                last_rate_limit_reset=self.last_rate_limit_reset,
                last_status=self.last_status,
                last_url=self.last_url,
                circuit_state=circuit_state,
                circuit_opened_reason=circuit_opened_reason,
                avg_duration_ms=round(avg, 2),
            )

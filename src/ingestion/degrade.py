"""Mapping of ingestion failures to degraded serving responses.

Request handlers read the latest snapshot and never fetch themselves; when
that is not possible they answer with one of three shapes:

- circuit open: 503 with metadata of the last-known snapshot
- no snapshot yet: 503 with an explicit retry-later message
- anything else: 500 with a redacted message
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.fetch.errors import CircuitOpenError
from src.fetch.redact import redact_message
from src.ingestion.models import Snapshot


HTTP_SERVICE_UNAVAILABLE = 503
HTTP_INTERNAL_ERROR = 500

ERROR_CIRCUIT_OPEN = "circuit_open"
ERROR_NO_SNAPSHOT = "no_snapshot_available"
ERROR_INTERNAL = "internal_error"

NO_SNAPSHOT_MESSAGE = (
    "No market snapshot is available yet. "
    "Please try again after the next scheduled fetch completes."
)


@dataclass(frozen=True)
class DegradedResponse:
    """Status code and JSON payload for a serving-layer response."""

    status_code: int
    payload: dict[str, Any] = field(default_factory=dict)


def snapshot_metadata(
    snapshot: Snapshot | None, now: datetime
) -> dict[str, Any] | None:
    """Describe a snapshot without its records."""
    if snapshot is None:
        return None
    return {
        "fetched_at": snapshot.fetched_at.isoformat(),
        "last_modified": snapshot.last_modified,
        "item_count": snapshot.item_count,
        "fallback_used": snapshot.fallback_used,
        "age_ms": round(snapshot.age_ms(now)),
    }


def no_snapshot_response() -> DegradedResponse:
    """Response for requests arriving before the first successful pass."""
    return DegradedResponse(
        status_code=HTTP_SERVICE_UNAVAILABLE,
        payload={
            "error": ERROR_NO_SNAPSHOT,
            "message": NO_SNAPSHOT_MESSAGE,
            "market_snapshot_used": False,
        },
    )


def map_failure(
    error: Exception,
    latest: Snapshot | None,
    now: datetime,
) -> DegradedResponse:
    """Map an ingestion failure to a degraded response.

    Args:
        error: The failure raised by the ingestion path.
        latest: Latest published snapshot, if any.
        now: Current time, for the snapshot age.

    Returns:
        503 for an open circuit, 500 otherwise.
    """
    if isinstance(error, CircuitOpenError):
        metrics = error.metrics.model_dump() if error.metrics is not None else None
        return DegradedResponse(
            status_code=HTTP_SERVICE_UNAVAILABLE,
            payload={
                "error": ERROR_CIRCUIT_OPEN,
                "message": str(error),
                "retry_in_ms": round(error.retry_in_ms),
                "latest_snapshot": snapshot_metadata(latest, now),
                "metrics": metrics,
            },
        )

    return DegradedResponse(
        status_code=HTTP_INTERNAL_ERROR,
        payload={
            "error": ERROR_INTERNAL,
            "message": redact_message(str(error)),
        },
    )

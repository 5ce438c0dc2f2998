"""Background worker publishing the latest consistent snapshot."""

import threading
import time
from enum import Enum
from typing import Annotated

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.fetch.errors import CircuitOpenError
from src.fetch.metrics import FetchMetricsSnapshot
from src.fetch.redact import redact_url
from src.ingestion.models import OrderSelector
from src.ingestion.paginator import PaginatedSnapshotFetcher
from src.scheduler.slot import LatestSnapshotSlot


logger = structlog.get_logger()

DEFAULT_INTERVAL_MS = 300_000
DEFAULT_MIN_INTERVAL_MS = 15_000


class SchedulerConfig(BaseModel):
    """Timing of the snapshot scheduler.

    ``interval_ms`` below ``min_interval_ms`` is raised to the floor when the
    scheduler is built. The floor itself must be positive.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    interval_ms: Annotated[int, Field(ge=0)] = DEFAULT_INTERVAL_MS
    min_interval_ms: Annotated[int, Field(gt=0)] = DEFAULT_MIN_INTERVAL_MS
    stale_after_ms: Annotated[int, Field(ge=0)] = DEFAULT_INTERVAL_MS
    max_pages: int | None = Field(default=None, ge=1)

    @property
    def effective_interval_ms(self) -> int:
        """Interval with the floor applied."""
        return max(self.interval_ms, self.min_interval_ms)


class TickOutcome(str, Enum):
    """Result of one scheduler run."""

    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    SKIPPED = "SKIPPED"


class SnapshotScheduler:
    """Periodically refreshes the latest-snapshot slot.

    Runs one pass immediately on ``start()`` and then at a fixed rate.
    Ticks that fall due while a pass is still running are skipped, so at
    most one pass is ever in flight. A failed pass leaves the previously
    published snapshot in place; no error escapes the worker thread.
    """

    def __init__(  # noqa: PLR0913
        self,
        paginator: PaginatedSnapshotFetcher,
        slot: LatestSnapshotSlot,
        url: str,
        selector: OrderSelector,
        config: SchedulerConfig | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            paginator: Assembles snapshots through the shared endpoint client.
            slot: Slot the scheduler is the single writer of.
            url: URL of the paginated resource.
            selector: Market the snapshot covers.
            config: Timing configuration; defaults apply when omitted.
        """
        self._paginator = paginator
        self._slot = slot
        self._url = url
        self._selector = selector
        self._config = config or SchedulerConfig()
        self._clock = paginator.fetcher.clock
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._log = logger.bind(component="scheduler", url=redact_url(url))

        if self._config.interval_ms < self._config.min_interval_ms:
            self._log.warning(
                "scheduler_interval_clamped",
                requested_ms=self._config.interval_ms,
                floor_ms=self._config.min_interval_ms,
            )

    @property
    def interval_ms(self) -> int:
        """Effective interval between ticks."""
        return self._config.effective_interval_ms

    @property
    def slot(self) -> LatestSnapshotSlot:
        """Get the slot this scheduler publishes to."""
        return self._slot

    @property
    def is_running(self) -> bool:
        """Check if the worker thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread; the first pass runs immediately."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="snapshot-scheduler", daemon=True
        )
        self._thread.start()
        self._log.info(
            "scheduler_started",
            interval_ms=self.interval_ms,
            selector=self._selector.model_dump(),
        )

    def stop(self, timeout: float | None = None) -> None:
        """Cancel future ticks and wait for an in-flight pass.

        Args:
            timeout: Seconds to wait for the worker; None waits until the
                running pass finishes or times out on its own.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                self._log.warning("scheduler_stop_timeout", timeout=timeout)
                return
        self._thread = None
        self._log.info("scheduler_stopped")

    def run_once(self) -> TickOutcome:
        """Run one pass unless another is already in flight.

        Returns:
            What the pass did to the slot.
        """
        if not self._run_lock.acquire(blocking=False):
            self._log.info("snapshot_tick_skipped", reason="run_in_progress")
            return TickOutcome.SKIPPED
        try:
            return self._run_pass()
        finally:
            self._run_lock.release()

    def _run_pass(self) -> TickOutcome:
        fetcher = self._paginator.fetcher
        before = fetcher.get_metrics()
        start = self._clock.monotonic()

        try:
            snapshot = self._paginator.fetch_consistent_snapshot(
                self._url, self._selector, self._config.max_pages
            )
        except CircuitOpenError as e:
            self._log.warning(
                "snapshot_fetch_circuit_open",
                retry_in_ms=round(e.retry_in_ms),
                has_snapshot=self._slot.get() is not None,
            )
            return TickOutcome.CIRCUIT_OPEN
        except Exception as e:  # noqa: BLE001
            self._log.error(
                "snapshot_fetch_failure",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((self._clock.monotonic() - start) * 1000, 2),
                has_snapshot=self._slot.get() is not None,
            )
            return TickOutcome.FAILED

        self._slot.publish(snapshot)
        after = fetcher.get_metrics()
        self._log.info(
            "snapshot_fetch_success",
            duration_ms=round((self._clock.monotonic() - start) * 1000, 2),
            item_count=snapshot.item_count,
            pages=snapshot.pages_fetched,
            last_modified=snapshot.last_modified,
            fallback_used=snapshot.fallback_used,
            **_metric_deltas(before, after),
        )
        return TickOutcome.PUBLISHED

    def _loop(self) -> None:
        """Fixed-rate tick loop; missed ticks are dropped, not queued.

        Ticks are timed with the real monotonic clock, the one
        ``Event.wait`` sleeps on, whatever clock the fetcher uses.
        """
        interval = self.interval_ms / 1000.0
        self.run_once()
        next_due = time.monotonic() + interval

        while not self._stop_event.wait(max(0.0, next_due - time.monotonic())):
            self.run_once()
            next_due += interval
            now = time.monotonic()
            if now > next_due:
                missed = int((now - next_due) // interval) + 1
                next_due += missed * interval
                self._log.info(
                    "snapshot_tick_skipped", reason="overran_interval", missed=missed
                )


def _metric_deltas(
    before: FetchMetricsSnapshot, after: FetchMetricsSnapshot
) -> dict[str, int | None]:
    return {
        "requests": after.total_requests - before.total_requests,
        "cache_hits_304": after.total_cache_hits_304 - before.total_cache_hits_304,
        "retries": after.total_retries - before.total_retries,
        "rate_limit_remaining": after.last_rate_limit_remaining,
        "rate_limit_reset": after.last_rate_limit_reset,
    }

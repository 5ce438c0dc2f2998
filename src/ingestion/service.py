"""Inbound surface of market snapshot ingestion and its wiring."""

from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.fetch.client import HttpFetcher
from src.fetch.metrics import FetchMetricsSnapshot
from src.fetch.transport import Transport
from src.ingestion.constants import COMPONENT_SERVICE, market_orders_url
from src.ingestion.degrade import (
    DegradedResponse,
    map_failure,
    no_snapshot_response,
    snapshot_metadata,
)
from src.ingestion.history import fetch_price_history_for_types
from src.ingestion.models import OrderSelector, PriceHistoryRow, Snapshot
from src.ingestion.paginator import PaginatedSnapshotFetcher, PaginationConfig
from src.scheduler.scheduler import SchedulerConfig, SnapshotScheduler
from src.scheduler.slot import LatestSnapshotSlot
from src.store.store import CacheEntryStore


if TYPE_CHECKING:
    from src.settings.app import AppSettings


logger = structlog.get_logger()

HTTP_OK = 200


class SnapshotStatus(BaseModel):
    """Availability and freshness of the latest published snapshot."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    available: bool
    is_stale: bool
    age_ms: float | None = Field(default=None, ge=0)
    fetched_at: datetime | None = None
    last_modified: str | None = None
    item_count: int = 0
    fallback_used: bool = False
    circuit_state: str = "CLOSED"


class MarketSnapshotService:
    """Entry point used by request handlers and the CLI.

    Reads of the latest snapshot never touch the network; only
    ``fetch_snapshot`` and the scheduler do, both through the single
    fetcher owned for the endpoint.
    """

    def __init__(  # noqa: PLR0913
        self,
        paginator: PaginatedSnapshotFetcher,
        slot: LatestSnapshotSlot,
        base_url: str,
        selector: OrderSelector,
        scheduler_config: SchedulerConfig | None = None,
        store: CacheEntryStore | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            paginator: Snapshot assembler over the endpoint fetcher.
            slot: Latest-snapshot slot shared with the scheduler.
            base_url: API base URL.
            selector: Default market selection.
            scheduler_config: Scheduler timing; defaults apply when omitted.
            store: Cache store to close with the service, if owned.
        """
        self._paginator = paginator
        self._fetcher = paginator.fetcher
        self._slot = slot
        self._base_url = base_url
        self._selector = selector
        self._scheduler_config = scheduler_config or SchedulerConfig()
        self._store = store
        self._scheduler = SnapshotScheduler(
            paginator,
            slot,
            market_orders_url(base_url, selector.region_id),
            selector,
            self._scheduler_config,
        )
        self._log = logger.bind(component=COMPONENT_SERVICE)

    @property
    def scheduler(self) -> SnapshotScheduler:
        """Get the background scheduler."""
        return self._scheduler

    @property
    def selector(self) -> OrderSelector:
        """Get the default market selection."""
        return self._selector

    def fetch_snapshot(self, selector: OrderSelector | None = None) -> Snapshot:
        """Fetch a consistent snapshot now, bypassing the slot.

        Raises:
            CircuitOpenError: The endpoint breaker is open.
            FetchFailedError: A page could not be fetched.
        """
        selector = selector or self._selector
        return self._paginator.fetch_consistent_snapshot(
            market_orders_url(self._base_url, selector.region_id),
            selector,
            self._scheduler_config.max_pages,
        )

    def fetch_price_history(
        self, type_ids: list[int], region_id: int | None = None
    ) -> dict[int, list[PriceHistoryRow]]:
        """Fetch daily price history for item types of a region."""
        return fetch_price_history_for_types(
            self._fetcher,
            region_id or self._selector.region_id,
            type_ids,
            self._base_url,
        )

    def get_latest_snapshot(self) -> Snapshot | None:
        """Return the latest published snapshot without blocking on I/O."""
        return self._slot.get()

    def get_metrics(self) -> FetchMetricsSnapshot:
        """Get the endpoint fetcher metrics."""
        return self._fetcher.get_metrics()

    def snapshot_status(self, now: datetime | None = None) -> SnapshotStatus:
        """Report availability and staleness of the latest snapshot."""
        now = now or self._fetcher.clock.now()
        snapshot = self._slot.get()
        circuit_state = self._fetcher.breaker.state.value
        if snapshot is None:
            return SnapshotStatus(
                available=False, is_stale=True, circuit_state=circuit_state
            )

        age = snapshot.age_ms(now)
        return SnapshotStatus(
            available=True,
            is_stale=age > self._scheduler_config.stale_after_ms,
            age_ms=age,
            fetched_at=snapshot.fetched_at,
            last_modified=snapshot.last_modified,
            item_count=snapshot.item_count,
            fallback_used=snapshot.fallback_used,
            circuit_state=circuit_state,
        )

    def serve_latest(self, now: datetime | None = None) -> DegradedResponse:
        """Answer a read request from the slot alone.

        Returns:
            200 with the snapshot metadata, or 503 before the first pass.
        """
        now = now or self._fetcher.clock.now()
        snapshot = self._slot.get()
        if snapshot is None:
            return no_snapshot_response()
        return DegradedResponse(
            status_code=HTTP_OK,
            payload={
                "market_snapshot_used": True,
                "snapshot": snapshot_metadata(snapshot, now),
            },
        )

    def describe_failure(
        self, error: Exception, now: datetime | None = None
    ) -> DegradedResponse:
        """Map a failure of ``fetch_snapshot`` to a degraded response."""
        now = now or self._fetcher.clock.now()
        self._log.warning(
            "snapshot_request_degraded",
            error_type=type(error).__name__,
            has_snapshot=self._slot.get() is not None,
        )
        return map_failure(error, self._slot.get(), now)

    def start(self) -> None:
        """Start background publication."""
        self._scheduler.start()

    def close(self, timeout: float | None = None) -> None:
        """Stop the scheduler and release owned resources."""
        self._scheduler.stop(timeout)
        self._fetcher.close()
        if self._store is not None:
            self._store.close()


def build_service(
    settings: "AppSettings",
    transport: Transport | None = None,
    store: CacheEntryStore | None = None,
) -> MarketSnapshotService:
    """Wire one fetcher, paginator and scheduler for the configured endpoint.

    Args:
        settings: Application settings.
        transport: Optional transport; httpx is used when omitted.
        store: Optional connected cache store; one is opened at
            ``settings.sqlite_db_path`` and owned by the service otherwise.

    Returns:
        Ready service; call ``start()`` to begin background publication.
    """
    owned_store = None
    if store is None:
        owned_store = store = CacheEntryStore(settings.sqlite_db_path)
        store.connect()

    fetcher = HttpFetcher(settings.to_fetch_config(), store, transport=transport)
    scheduler_config = settings.to_scheduler_config()
    paginator = PaginatedSnapshotFetcher(
        fetcher, PaginationConfig(max_pages=scheduler_config.max_pages)
    )

    logger.info(
        "service_built",
        component=COMPONENT_SERVICE,
        endpoint=fetcher.config.endpoint,
        db_path=store.db_path,
        interval_ms=scheduler_config.effective_interval_ms,
    )
    return MarketSnapshotService(
        paginator,
        LatestSnapshotSlot(),
        settings.esi_base_url,
        settings.to_selector(),
        scheduler_config,
        store=owned_store,
    )

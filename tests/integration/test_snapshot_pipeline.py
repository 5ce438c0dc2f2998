"""Integration tests: snapshot assembly over real HTTP and a real cache store."""

from collections.abc import Generator
from pathlib import Path

import pytest

from src.fetch.client import HttpFetcher
from src.fetch.config import CircuitBreakerConfig, FetchConfig
from src.fetch.errors import CircuitOpenError, TransientBackendError
from src.fetch.models import RetryPolicy
from src.ingestion.constants import THE_FORGE_REGION_ID, market_orders_url
from src.ingestion.models import OrderSelector
from src.ingestion.paginator import PaginatedSnapshotFetcher
from src.ingestion.service import build_service
from src.scheduler.scheduler import TickOutcome
from src.settings.app import AppSettings
from src.store.store import CacheEntryStore
from tests.helpers.market_server import LAST_MODIFIED, MarketHandler, run_market_server


@pytest.fixture
def base_url() -> Generator[str]:
    """Base URL of a local market server."""
    with run_market_server() as url:
        yield url


@pytest.fixture
def store(tmp_path: Path) -> Generator[CacheEntryStore]:
    """Connected cache store in a temporary directory."""
    with CacheEntryStore(tmp_path / "cache.sqlite") as cache_store:
        yield cache_store


def make_fetcher(store: CacheEntryStore, threshold: int = 5) -> HttpFetcher:
    config = FetchConfig(
        timeout_seconds=5.0,
        retry_policy=RetryPolicy(max_retries=1, base_delay_ms=0, max_delay_ms=0),
        breaker=CircuitBreakerConfig(
            failure_threshold=threshold, min_open_duration_ms=60_000
        ),
    )
    return HttpFetcher(config, store)


@pytest.mark.integration
class TestSnapshotOverHttp:
    """Paginated snapshot assembly against a local server."""

    def test_reads_every_page_and_filters_system(
        self, base_url: str, store: CacheEntryStore
    ) -> None:
        """Orders of every page are combined, then narrowed to the system."""
        fetcher = make_fetcher(store)
        paginator = PaginatedSnapshotFetcher(fetcher)

        snapshot = paginator.fetch_consistent_snapshot(
            market_orders_url(base_url, THE_FORGE_REGION_ID), OrderSelector()
        )
        fetcher.close()

        assert snapshot.pages_fetched == 2
        assert snapshot.item_count == 2
        assert snapshot.last_modified == LAST_MODIFIED
        assert snapshot.fallback_used is False
        assert {r.system_id for r in snapshot.records} == {30000142}

    def test_second_pass_is_served_by_304(
        self, base_url: str, store: CacheEntryStore
    ) -> None:
        """A repeated pass revalidates each page and keeps the same records."""
        fetcher = make_fetcher(store)
        paginator = PaginatedSnapshotFetcher(fetcher)
        url = market_orders_url(base_url, THE_FORGE_REGION_ID)

        first = paginator.fetch_consistent_snapshot(url, OrderSelector())
        second = paginator.fetch_consistent_snapshot(url, OrderSelector())
        metrics = fetcher.get_metrics()
        fetcher.close()

        assert second.item_count == first.item_count
        assert second.pages_fetched == 2
        assert second.last_modified == LAST_MODIFIED
        assert metrics.total_cache_hits_304 == 2
        validators = [inm for _, inm in MarketHandler.requests[2:]]
        assert validators == ['"orders-1-v1"', '"orders-2-v1"']

    def test_validators_are_persisted(
        self, base_url: str, store: CacheEntryStore
    ) -> None:
        """One cache entry is stored per page URL."""
        fetcher = make_fetcher(store)
        PaginatedSnapshotFetcher(fetcher).fetch_consistent_snapshot(
            market_orders_url(base_url, THE_FORGE_REGION_ID), OrderSelector()
        )
        fetcher.close()

        assert store.count() == 2

    def test_changed_pages_are_downloaded_again(
        self, base_url: str, store: CacheEntryStore
    ) -> None:
        """A new ETag on the server yields a fresh body instead of a 304."""
        fetcher = make_fetcher(store)
        paginator = PaginatedSnapshotFetcher(fetcher)
        url = market_orders_url(base_url, THE_FORGE_REGION_ID)

        paginator.fetch_consistent_snapshot(url, OrderSelector())
        MarketHandler.version = 2
        MarketHandler.pages[2].append({**MarketHandler.pages[2][0], "order_id": 4})
        snapshot = paginator.fetch_consistent_snapshot(url, OrderSelector())
        metrics = fetcher.get_metrics()
        fetcher.close()

        assert snapshot.item_count == 3
        assert metrics.total_cache_hits_304 == 0


@pytest.mark.integration
class TestBreakerOverHttp:
    """Circuit breaker behavior against a failing server."""

    def test_persistent_5xx_opens_the_circuit(
        self, base_url: str, store: CacheEntryStore
    ) -> None:
        """After the threshold, calls fail fast without reaching the server."""
        MarketHandler.fail_status = 503
        fetcher = make_fetcher(store, threshold=2)
        url = market_orders_url(base_url, THE_FORGE_REGION_ID)

        for _ in range(2):
            with pytest.raises(TransientBackendError):
                fetcher.fetch_json(url, {"page": 1})
        sent = len(MarketHandler.requests)

        with pytest.raises(CircuitOpenError) as exc_info:
            fetcher.fetch_json(url, {"page": 1})
        fetcher.close()

        assert sent == 4
        assert len(MarketHandler.requests) == sent
        assert exc_info.value.retry_in_ms > 0
        assert fetcher.get_metrics().circuit_state == "OPEN"

    def test_errors_are_not_cached(
        self, base_url: str, store: CacheEntryStore
    ) -> None:
        """Failed responses leave no validators behind."""
        MarketHandler.fail_status = 500
        fetcher = make_fetcher(store)

        with pytest.raises(TransientBackendError):
            fetcher.fetch_json(
                market_orders_url(base_url, THE_FORGE_REGION_ID), {"page": 1}
            )
        fetcher.close()

        assert store.count() == 0


@pytest.mark.integration
class TestServiceOverHttp:
    """Service wiring from settings against a local server."""

    def test_scheduler_pass_feeds_serving_reads(
        self, base_url: str, tmp_path: Path
    ) -> None:
        """One scheduler pass makes the latest snapshot servable."""
        settings = AppSettings(
            SQLITE_DB_PATH=str(tmp_path / "svc.sqlite"),
            ESI_BASE_URL=base_url,
            ESI_MAX_RETRIES=0,
        )
        service = build_service(settings)

        before = service.serve_latest()
        outcome = service.scheduler.run_once()
        after = service.serve_latest()
        status = service.snapshot_status()
        service.close()

        assert before.status_code == 503
        assert outcome is TickOutcome.PUBLISHED
        assert after.status_code == 200
        assert after.payload["snapshot"]["item_count"] == 2
        assert status.available is True
        assert status.is_stale is False

    def test_failed_pass_keeps_previous_snapshot(
        self, base_url: str, tmp_path: Path
    ) -> None:
        """A failing pass after a good one does not clear the slot."""
        settings = AppSettings(
            SQLITE_DB_PATH=str(tmp_path / "svc.sqlite"),
            ESI_BASE_URL=base_url,
            ESI_MAX_RETRIES=0,
        )
        service = build_service(settings)

        assert service.scheduler.run_once() is TickOutcome.PUBLISHED
        published = service.get_latest_snapshot()
        MarketHandler.fail_status = 502
        outcome = service.scheduler.run_once()
        latest = service.get_latest_snapshot()
        service.close()

        assert outcome is TickOutcome.FAILED
        assert latest is published

    def test_price_history_over_http(self, base_url: str, tmp_path: Path) -> None:
        """History rows are parsed per type id."""
        settings = AppSettings(
            SQLITE_DB_PATH=str(tmp_path / "svc.sqlite"),
            ESI_BASE_URL=base_url,
        )
        service = build_service(settings)

        history = service.fetch_price_history([34, 35])
        service.close()

        assert sorted(history) == [34, 35]
        assert [row.date for row in history[34]] == ["2024-01-01", "2024-01-02"]

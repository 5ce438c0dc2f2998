"""Market order snapshot ingestion.

Assembles internally consistent snapshots of the paginated order book and
fetches daily price history, all through one breaker-bearing fetcher per
endpoint. The service facade lives in ``src.ingestion.service``.
"""

from src.ingestion.history import fetch_price_history, fetch_price_history_for_types
from src.ingestion.models import (
    OrderSelector,
    OrderSide,
    PriceHistoryRow,
    RawOrder,
    Snapshot,
    SnapshotRecord,
)
from src.ingestion.paginator import (
    PageBodyMemo,
    PaginatedSnapshotFetcher,
    PaginationConfig,
    parse_page_count,
)


__all__ = [
    "OrderSelector",
    "OrderSide",
    "PageBodyMemo",
    "PaginatedSnapshotFetcher",
    "PaginationConfig",
    "PriceHistoryRow",
    "RawOrder",
    "Snapshot",
    "SnapshotRecord",
    "fetch_price_history",
    "fetch_price_history_for_types",
    "parse_page_count",
]

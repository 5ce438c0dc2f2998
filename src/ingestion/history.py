"""Daily regional price history, fetched through the shared endpoint client."""

import structlog
from pydantic import ValidationError

from src.fetch.client import HttpFetcher
from src.ingestion.constants import ESI_BASE_URL, market_history_url
from src.ingestion.models import PriceHistoryRow


logger = structlog.get_logger()


def fetch_price_history(
    fetcher: HttpFetcher,
    region_id: int,
    type_id: int,
    base_url: str = ESI_BASE_URL,
) -> list[PriceHistoryRow]:
    """Fetch the daily price history of one item type in a region.

    Requests are sent without validators: a 304 carries no rows and
    history bodies are not remembered between calls.

    Args:
        fetcher: Breaker-bearing client of the endpoint.
        region_id: Region to query.
        type_id: Item type to query.
        base_url: API base URL.

    Returns:
        History rows; empty when the body is not a list.

    Raises:
        CircuitOpenError: The endpoint breaker is open.
        FetchFailedError: The request failed.
    """
    result = fetcher.fetch_json(
        market_history_url(base_url, region_id),
        {"type_id": type_id},
        conditional=False,
    )
    if not isinstance(result.body, list):
        return []

    rows: list[PriceHistoryRow] = []
    for raw in result.body:
        try:
            rows.append(PriceHistoryRow.model_validate(raw))
        except ValidationError:
            logger.warning(
                "invalid_history_row_skipped",
                component="history",
                type_id=type_id,
            )
    return rows


def fetch_price_history_for_types(
    fetcher: HttpFetcher,
    region_id: int,
    type_ids: list[int],
    base_url: str = ESI_BASE_URL,
) -> dict[int, list[PriceHistoryRow]]:
    """Fetch price history for several item types, one request at a time."""
    history: dict[int, list[PriceHistoryRow]] = {}
    for type_id in type_ids:
        history[type_id] = fetch_price_history(fetcher, region_id, type_id, base_url)
    logger.info(
        "price_history_fetched",
        component="history",
        region_id=region_id,
        types=len(type_ids),
        rows=sum(len(rows) for rows in history.values()),
    )
    return history

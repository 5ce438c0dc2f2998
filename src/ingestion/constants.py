"""Constants for market order ingestion."""

ESI_BASE_URL = "https://esi.evetech.net/latest"

# The Forge region and its Jita trade hub
THE_FORGE_REGION_ID = 10000002
JITA_SYSTEM_ID = 30000142

# Full paginated passes attempted before falling back to page 1 only
DEFAULT_CONSISTENCY_ATTEMPTS = 2

COMPONENT_PAGINATOR = "paginator"
COMPONENT_SERVICE = "service"


def market_orders_url(base_url: str, region_id: int) -> str:
    """URL of the paginated order book for a region."""
    return f"{base_url.rstrip('/')}/markets/{region_id}/orders/"


def market_history_url(base_url: str, region_id: int) -> str:
    """URL of the daily price history for a region."""
    return f"{base_url.rstrip('/')}/markets/{region_id}/history/"

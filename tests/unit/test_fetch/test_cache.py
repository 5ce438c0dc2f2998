"""Unit tests for cache keys and the cache manager."""

from datetime import UTC, datetime

import pytest

from src.fetch.cache import CacheManager, build_url, compute_cache_key, normalize_query
from src.fetch.transport import TransportResponse
from src.store.models import CacheEntry
from tests.helpers.fakes import BrokenCacheStore, MemoryCacheStore


FETCHED_AT = datetime(2024, 1, 1, tzinfo=UTC)


def _entry(cache_key: str = "k", etag: str | None = '"v1"') -> CacheEntry:
    return CacheEntry(
        cache_key=cache_key,
        url="https://api.example.com/r",
        etag=etag,
        last_modified="Mon, 01 Jan 2024 00:00:00 GMT",
        fetched_at=FETCHED_AT,
        http_status=200,
    )


@pytest.mark.unit
class TestCacheKey:
    """Tests for request normalization."""

    def test_query_order_irrelevant(self) -> None:
        """Test that parameter order does not change the key."""
        a = compute_cache_key("https://x/r", {"page": 2, "type_id": 34})
        b = compute_cache_key("https://x/r", {"type_id": 34, "page": 2})

        assert a == b

    def test_query_values_matter(self) -> None:
        """Test that different pages get different keys."""
        a = compute_cache_key("https://x/r", {"page": 1})
        b = compute_cache_key("https://x/r", {"page": 2})

        assert a != b

    def test_key_is_sha256_hex(self) -> None:
        """Test the key format."""
        key = compute_cache_key("https://x/r")

        assert len(key) == 64
        int(key, 16)

    def test_bool_lowercase(self) -> None:
        """Test that booleans render the way the API spells them."""
        assert normalize_query({"is_buy": True}) == "is_buy=true"

    def test_build_url(self) -> None:
        """Test query appending."""
        assert build_url("https://x/r", None) == "https://x/r"
        assert build_url("https://x/r", {"page": 3}) == "https://x/r?page=3"
        assert build_url("https://x/r?a=1", {"page": 3}) == "https://x/r?a=1&page=3"


@pytest.mark.unit
class TestCacheManager:
    """Tests for cache manager behavior."""

    def test_lookup_hit(self) -> None:
        """Test that stored entries are returned."""
        store = MemoryCacheStore()
        store.upsert(_entry())
        manager = CacheManager(store, "esi")

        assert manager.lookup("k") == _entry()

    def test_store_failure_is_miss(self) -> None:
        """Test that a failing store degrades to a cache miss."""
        manager = CacheManager(BrokenCacheStore(), "esi")

        assert manager.lookup("k") is None

    def test_record_failure_swallowed(self) -> None:
        """Test that a failing write does not raise."""
        manager = CacheManager(BrokenCacheStore(), "esi")
        response = TransportResponse(200, {"etag": '"v2"'}, "[]")

        assert manager.record("k", "https://x/r", response, FETCHED_AT) is None

    def test_record_copies_validators(self) -> None:
        """Test that a fresh entry carries the response validators."""
        store = MemoryCacheStore()
        manager = CacheManager(store, "esi")
        response = TransportResponse(
            200,
            {
                "etag": '"v2"',
                "last-modified": "Tue, 02 Jan 2024 00:00:00 GMT",
                "expires": "Tue, 02 Jan 2024 00:05:00 GMT",
            },
            "[]",
        )

        manager.record("k", "https://x/r", response, FETCHED_AT)

        entry = store.entries["k"]
        assert entry.etag == '"v2"'
        assert entry.last_modified == "Tue, 02 Jan 2024 00:00:00 GMT"
        assert entry.expires_at == "Tue, 02 Jan 2024 00:05:00 GMT"
        assert entry.http_status == 200

    def test_conditional_headers(self) -> None:
        """Test If-None-Match construction."""
        assert CacheManager.conditional_headers(_entry()) == {"If-None-Match": '"v1"'}
        assert CacheManager.conditional_headers(_entry(etag=None)) == {}
        assert CacheManager.conditional_headers(None) == {}

    def test_merge_not_modified_headers(self) -> None:
        """Test that a bare 304 inherits the cached validators."""
        merged = CacheManager.merge_not_modified_headers({}, _entry())

        assert merged["etag"] == '"v1"'
        assert merged["last-modified"] == "Mon, 01 Jan 2024 00:00:00 GMT"

    def test_merge_keeps_fresh_headers(self) -> None:
        """Test that validators sent with the 304 win."""
        merged = CacheManager.merge_not_modified_headers({"etag": '"v9"'}, _entry())

        assert merged["etag"] == '"v9"'

"""Cache management for conditional requests.

Encapsulates all cache-related logic for ETag revalidation and keeps storage
failures from ever failing a fetch.
"""

import hashlib
from collections.abc import Mapping
from datetime import datetime
from typing import Protocol
from urllib.parse import urlencode

import structlog

from src.fetch.constants import HEADER_ETAG, HEADER_EXPIRES, HEADER_LAST_MODIFIED
from src.fetch.transport import TransportResponse
from src.store.errors import StoreError
from src.store.models import CacheEntry


logger = structlog.get_logger()

QueryParams = Mapping[str, str | int | float | bool]


class CacheStore(Protocol):
    """Protocol for cache entry storage.

    Abstracts the storage layer to enable testing and alternative implementations.
    """

    def get(self, cache_key: str) -> CacheEntry | None:
        """Retrieve the entry for a cache key, or None."""
        ...

    def upsert(self, entry: CacheEntry) -> None:
        """Store or fully overwrite an entry."""
        ...


def normalize_query(query: QueryParams | None) -> str:
    """Encode query parameters in a stable order.

    Booleans are rendered lower-case to match how the API spells them.
    """
    if not query:
        return ""
    items = []
    for key in sorted(query):
        value = query[key]
        text = str(value).lower() if isinstance(value, bool) else str(value)
        items.append((key, text))
    return urlencode(items)


def build_url(url: str, query: QueryParams | None) -> str:
    """Append the normalized query string to a base URL."""
    search = normalize_query(query)
    if not search:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{search}"


def compute_cache_key(url: str, query: QueryParams | None = None) -> str:
    """Compute the cache key for a request.

    Args:
        url: Base URL.
        query: Query parameters.

    Returns:
        SHA-256 hex digest of the normalized ``url?query``.
    """
    return hashlib.sha256(build_url(url, query).encode("utf-8")).hexdigest()


class CacheManager:
    """Manages cache operations for conditional requests.

    Encapsulates the logic for:
    - Looking up entries, treating storage failures as a miss
    - Building the If-None-Match header
    - Recording fresh entries from completed responses
    """

    def __init__(self, store: CacheStore, endpoint: str) -> None:
        """Initialize the cache manager.

        Args:
            store: Storage backend for cache entries.
            endpoint: Endpoint name for logging.
        """
        self._store = store
        self._log = logger.bind(component="cache", endpoint=endpoint)

    def lookup(self, cache_key: str) -> CacheEntry | None:
        """Look up an entry; storage failures degrade to a miss.

        Args:
            cache_key: Key to look up.

        Returns:
            The cached entry, or None on miss or storage failure.
        """
        try:
            entry = self._store.get(cache_key)
        except StoreError as e:
            self._log.warning(
                "cache_store_error",
                op="get",
                cache_key=cache_key,
                error=str(e),
            )
            return None

        self._log.debug(
            "cache_lookup",
            cache_key=cache_key,
            hit=entry is not None,
            has_etag=entry is not None and entry.etag is not None,
        )
        return entry

    @staticmethod
    def conditional_headers(entry: CacheEntry | None) -> dict[str, str]:
        """Build conditional request headers from a cached entry."""
        if entry is not None and entry.etag:
            return {"If-None-Match": entry.etag}
        return {}

    def record(
        self,
        cache_key: str,
        url: str,
        response: TransportResponse,
        fetched_at: datetime,
    ) -> CacheEntry | None:
        """Persist a fresh entry built from a fully read response.

        Args:
            cache_key: Key of the request.
            url: Full request URL.
            response: The completed response.
            fetched_at: When the response was received.

        Returns:
            The stored entry, or None if the write failed.
        """
        entry = CacheEntry(
            cache_key=cache_key,
            url=url,
            etag=response.headers.get(HEADER_ETAG),
            expires_at=response.headers.get(HEADER_EXPIRES),
            last_modified=response.headers.get(HEADER_LAST_MODIFIED),
            fetched_at=fetched_at,
            http_status=response.status_code,
        )
        try:
            self._store.upsert(entry)
        except StoreError as e:
            self._log.warning(
                "cache_store_error",
                op="upsert",
                cache_key=cache_key,
                error=str(e),
            )
            return None

        self._log.debug(
            "cache_update",
            cache_key=cache_key,
            status_code=response.status_code,
            etag=entry.etag is not None,
            last_modified=entry.last_modified is not None,
        )
        return entry

    @staticmethod
    def merge_not_modified_headers(
        headers: dict[str, str], entry: CacheEntry
    ) -> dict[str, str]:
        """Fill validators a 304 omitted from the cached entry.

        Args:
            headers: Headers of the 304 response.
            entry: Existing cache entry.

        Returns:
            Headers with ``etag`` and ``last-modified`` preserved.
        """
        merged = dict(headers)
        if entry.etag and HEADER_ETAG not in merged:
            merged[HEADER_ETAG] = entry.etag
        if entry.last_modified and HEADER_LAST_MODIFIED not in merged:
            merged[HEADER_LAST_MODIFIED] = entry.last_modified
        return merged

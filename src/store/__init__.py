"""SQLite persistence for conditional-request cache entries."""

from src.store.errors import (
    CacheStoreError,
    ConnectionError,
    MigrationError,
    StoreError,
)
from src.store.metrics import StoreMetrics
from src.store.migrations import CURRENT_VERSION, MigrationManager
from src.store.models import CacheEntry
from src.store.store import CacheEntryStore


__all__ = [
    "CURRENT_VERSION",
    "CacheEntry",
    "CacheEntryStore",
    "CacheStoreError",
    "ConnectionError",
    "MigrationError",
    "MigrationManager",
    "StoreError",
    "StoreMetrics",
]

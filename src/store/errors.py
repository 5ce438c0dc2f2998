"""Domain exceptions for the cache store.

Infrastructure errors (database issues) are wrapped in ``CacheStoreError``
so the fetch path can degrade to a cache miss without knowing about sqlite.
"""


class StoreError(Exception):
    """Base exception for all store errors."""


class ConnectionError(StoreError):
    """Raised when the database connection is not established."""

    def __init__(self, message: str = "Database not connected") -> None:
        """Initialize the connection error.

        Args:
            message: Human-readable error message.
        """
        super().__init__(message)


class CacheStoreError(StoreError):
    """Raised when reading or writing a cache entry fails.

    Attributes:
        operation: The store operation that failed.
        cache_key: Key involved, when known.
    """

    def __init__(self, operation: str, message: str, cache_key: str | None = None):
        """Initialize the error.

        Args:
            operation: Name of the failed operation.
            message: Underlying error description.
            cache_key: Key involved, when known.
        """
        self.operation = operation
        self.cache_key = cache_key
        super().__init__(f"Cache store {operation} failed: {message}")


class MigrationError(StoreError):
    """Raised when a schema migration fails."""

    def __init__(self, version: int, message: str) -> None:
        """Initialize the migration error.

        Args:
            version: The migration version that failed.
            message: Human-readable error message.
        """
        self.version = version
        super().__init__(f"Migration {version} failed: {message}")

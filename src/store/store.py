"""SQLite cache store implementation."""

import sqlite3
import threading
import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import structlog

from src.store.errors import CacheStoreError, MigrationError
from src.store.errors import ConnectionError as StoreConnectionError
from src.store.metrics import StoreMetrics, TransactionContext
from src.store.migrations import CURRENT_VERSION, MigrationManager
from src.store.models import CacheEntry


logger = structlog.get_logger()

MEMORY_DB = ":memory:"


class CacheEntryStore:
    """SQLite store holding one conditional-request entry per cache key.

    Pure data store: no TTL eviction, no interpretation of ``expires_at``.
    The connection is shared across threads and serialized by a lock.
    """

    def __init__(self, db_path: Path | str, run_id: str | None = None) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            run_id: Optional run ID for logging context.
        """
        self._db_path = str(db_path)
        self._run_id = run_id or str(uuid.uuid4())
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._metrics = StoreMetrics()
        self._log = logger.bind(
            component="store",
            run_id=self._run_id,
            db_path=self._db_path,
        )

    @property
    def db_path(self) -> str:
        """Get the database path."""
        return self._db_path

    @property
    def metrics(self) -> StoreMetrics:
        """Get the store metrics."""
        return self._metrics

    @property
    def is_connected(self) -> bool:
        """Check if connected to database."""
        return self._conn is not None

    def connect(self) -> None:
        """Open the connection and apply migrations.

        Creates parent directories for file databases and enables WAL mode.

        Raises:
            CacheStoreError: If the database cannot be opened.
        """
        with self._lock:
            if self._conn is not None:
                return

            if self._db_path != MEMORY_DB:
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

            self._log.info("connecting_to_database")
            try:
                conn = sqlite3.connect(self._db_path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
            except sqlite3.Error as e:
                raise CacheStoreError("connect", str(e)) from e

            migration_mgr = MigrationManager(conn)
            try:
                old_version = migration_mgr.get_current_version()
                applied = migration_mgr.apply_migrations()
            except (MigrationError, sqlite3.Error):
                conn.close()
                raise
            self._conn = conn

            self._log.info(
                "database_connected",
                old_version=old_version,
                new_version=CURRENT_VERSION,
                migrations_applied=applied,
            )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                self._log.info("database_closed")

    def __enter__(self) -> "CacheEntryStore":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.close()

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database is connected.

        Raises:
            StoreConnectionError: If not connected.
        """
        if self._conn is None:
            raise StoreConnectionError("Database not connected. Call connect() first.")
        return self._conn

    @contextmanager
    def _transaction(self, operation: str) -> Generator[TransactionContext]:
        """Context manager for write transactions with timing and logging.

        Args:
            operation: Name of the operation for logging.

        Yields:
            Transaction context with timing information.

        Raises:
            CacheStoreError: If the transaction fails; it is rolled back.
        """
        with self._lock:
            conn = self._ensure_connected()
            tx_id = str(uuid.uuid4())[:8]
            start_ns = time.perf_counter_ns()
            ctx = TransactionContext(
                tx_id=tx_id, start_time_ns=start_ns, operation=operation
            )

            try:
                yield ctx
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                self._metrics.record_error()
                self._log.error(
                    "transaction_failed",
                    tx_id=tx_id,
                    op=operation,
                    error=str(e),
                )
                raise CacheStoreError(operation, str(e)) from e

            duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
            self._metrics.record_upsert(duration_ms)
            self._log.debug(
                "transaction_complete",
                tx_id=tx_id,
                op=operation,
                affected_rows=ctx.affected_rows,
                duration_ms=round(duration_ms, 2),
            )

    def upsert(self, entry: CacheEntry) -> None:
        """Insert or fully overwrite the entry for ``entry.cache_key``.

        Args:
            entry: The cache entry to store.

        Raises:
            CacheStoreError: If the write fails.
        """
        with self._transaction("upsert_cache_entry") as ctx:
            conn = self._ensure_connected()
            conn.execute(
                """
                INSERT INTO cache_entry
                    (cache_key, url, etag, expires_at, last_modified, fetched_at, http_status)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(cache_key) DO UPDATE SET
                    url = excluded.url,
                    etag = excluded.etag,
                    expires_at = excluded.expires_at,
                    last_modified = excluded.last_modified,
                    fetched_at = excluded.fetched_at,
                    http_status = excluded.http_status
                """,
                (
                    entry.cache_key,
                    entry.url,
                    entry.etag,
                    entry.expires_at,
                    entry.last_modified,
                    entry.fetched_at.isoformat(),
                    entry.http_status,
                ),
            )
            ctx.add_affected_rows(1)

    def get(self, cache_key: str) -> CacheEntry | None:
        """Get the entry for a cache key.

        Args:
            cache_key: The key to look up.

        Returns:
            The cache entry, or None if not found.

        Raises:
            CacheStoreError: If the read fails.
        """
        with self._lock:
            conn = self._ensure_connected()
            try:
                row = conn.execute(
                    "SELECT * FROM cache_entry WHERE cache_key = ?",
                    (cache_key,),
                ).fetchone()
            except sqlite3.Error as e:
                self._metrics.record_error()
                raise CacheStoreError("get", str(e), cache_key=cache_key) from e

        self._metrics.record_read(hit=row is not None)
        if row is None:
            return None

        return CacheEntry(
            cache_key=row["cache_key"],
            url=row["url"],
            etag=row["etag"],
            expires_at=row["expires_at"],
            last_modified=row["last_modified"],
            fetched_at=datetime.fromisoformat(row["fetched_at"]),
            http_status=row["http_status"],
        )

    def count(self) -> int:
        """Get the number of stored entries."""
        with self._lock:
            conn = self._ensure_connected()
            return int(conn.execute("SELECT COUNT(*) FROM cache_entry").fetchone()[0])

    def get_schema_version(self) -> int:
        """Get current schema version."""
        with self._lock:
            return MigrationManager(self._ensure_connected()).get_current_version()

"""Metrics collection for the cache store."""

import threading
from dataclasses import dataclass, field


@dataclass
class TransactionContext:
    """Context for tracking a transaction.

    Attributes:
        tx_id: Unique transaction identifier.
        start_time_ns: Start time in nanoseconds.
        operation: Name of the operation.
        affected_rows: Number of rows affected.
    """

    tx_id: str
    start_time_ns: int
    operation: str
    affected_rows: int = 0

    def add_affected_rows(self, count: int) -> None:
        """Add to the affected row count."""
        self.affected_rows += count


@dataclass
class StoreMetrics:
    """Counters for one cache store instance.

    Attributes:
        reads_total: Number of ``get`` calls.
        hits_total: Reads that found an entry.
        upserts_total: Successful writes.
        errors_total: Failed reads or writes.
        tx_duration_ms_total: Cumulative write transaction time.
    """

    reads_total: int = 0
    hits_total: int = 0
    upserts_total: int = 0
    errors_total: int = 0
    tx_duration_ms_total: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_read(self, hit: bool) -> None:
        """Record a read and whether it found an entry."""
        with self._lock:
            self.reads_total += 1
            if hit:
                self.hits_total += 1

    def record_upsert(self, duration_ms: float) -> None:
        """Record a committed write."""
        with self._lock:
            self.upserts_total += 1
            self.tx_duration_ms_total += duration_ms

    def record_error(self) -> None:
        """Record a failed operation."""
        with self._lock:
            self.errors_total += 1

    def to_dict(self) -> dict[str, int | float]:
        """Convert metrics to dictionary."""
        with self._lock:
            return {
                "reads_total": self.reads_total,
                "hits_total": self.hits_total,
                "upserts_total": self.upserts_total,
                "errors_total": self.errors_total,
                "tx_duration_ms_total": round(self.tx_duration_ms_total, 2),
            }

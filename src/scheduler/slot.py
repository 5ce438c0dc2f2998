"""Single-writer, multi-reader holder of the latest snapshot."""

import threading
from datetime import datetime

from src.ingestion.models import Snapshot


class LatestSnapshotSlot:
    """Holds at most one published snapshot.

    Constructed once at startup, written only by the scheduler and passed by
    reference to readers. Snapshots are immutable and replaced by reference,
    so a reader sees either the previous or the new snapshot in full.
    """

    def __init__(self) -> None:
        self._snapshot: Snapshot | None = None
        self._condition = threading.Condition()

    def publish(self, snapshot: Snapshot) -> None:
        """Replace the current snapshot and wake waiting readers."""
        with self._condition:
            self._snapshot = snapshot
            self._condition.notify_all()

    def get(self) -> Snapshot | None:
        """Return the latest snapshot without blocking on I/O."""
        with self._condition:
            return self._snapshot

    def wait(self, timeout: float | None = None) -> Snapshot | None:
        """Block until a snapshot has been published or the timeout expires.

        Args:
            timeout: Seconds to wait; None waits indefinitely.

        Returns:
            The latest snapshot, or None if none arrived in time.
        """
        with self._condition:
            self._condition.wait_for(lambda: self._snapshot is not None, timeout)
            return self._snapshot

    def age_ms(self, now: datetime) -> float | None:
        """Staleness of the latest snapshot, or None when absent."""
        snapshot = self.get()
        if snapshot is None:
            return None
        return snapshot.age_ms(now)

    def is_stale(self, now: datetime, stale_after_ms: float) -> bool:
        """Check if the latest snapshot is absent or older than the limit."""
        age = self.age_ms(now)
        return age is None or age > stale_after_ms

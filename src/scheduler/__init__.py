"""Background publication of the latest consistent snapshot."""

from src.scheduler.scheduler import SchedulerConfig, SnapshotScheduler, TickOutcome
from src.scheduler.slot import LatestSnapshotSlot


__all__ = [
    "LatestSnapshotSlot",
    "SchedulerConfig",
    "SnapshotScheduler",
    "TickOutcome",
]

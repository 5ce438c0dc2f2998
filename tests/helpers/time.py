"""Shared, deterministic timestamps for tests."""

from datetime import UTC, datetime


# Wall-clock origin of ManualClock; snapshot ages are measured from here.
FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

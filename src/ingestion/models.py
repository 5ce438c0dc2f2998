"""Data models for market order snapshots."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from src.ingestion.constants import JITA_SYSTEM_ID, THE_FORGE_REGION_ID


class OrderSide(str, Enum):
    """Side of the order book."""

    BUY = "buy"
    SELL = "sell"


class RawOrder(BaseModel):
    """Minimal shape of one order as returned by the API.

    Only the fields a snapshot needs are validated; everything else is
    ignored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    order_id: int
    type_id: int
    system_id: int
    is_buy_order: bool
    price: Annotated[float, Field(ge=0)]
    volume_remain: Annotated[int, Field(ge=0)]
    issued: datetime


class OrderSelector(BaseModel):
    """Selects the logical market a snapshot covers.

    The region picks the paginated resource; the optional system narrows
    the records kept from it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    region_id: Annotated[int, Field(gt=0)] = THE_FORGE_REGION_ID
    system_id: int | None = Field(default=JITA_SYSTEM_ID, gt=0)

    def matches(self, order: RawOrder) -> bool:
        """Check if an order belongs to the selected market."""
        return self.system_id is None or order.system_id == self.system_id


class SnapshotRecord(BaseModel):
    """One normalized order inside a snapshot. Immutable once produced."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    region_id: int
    system_id: int
    type_id: int = Field(description="Record kind (item type)")
    side: OrderSide
    price: float
    quantity: int
    issued_at: datetime
    snapshot_ts: datetime

    @classmethod
    def from_order(
        cls, order: RawOrder, region_id: int, snapshot_ts: datetime
    ) -> "SnapshotRecord":
        """Normalize an API order into a snapshot record.

        Args:
            order: Validated API order.
            region_id: Region the order book belongs to.
            snapshot_ts: Timestamp shared by every record of the snapshot.

        Returns:
            New record with a generated ``record_id``.
        """
        return cls(
            region_id=region_id,
            system_id=order.system_id,
            type_id=order.type_id,
            side=OrderSide.BUY if order.is_buy_order else OrderSide.SELL,
            price=order.price,
            quantity=order.volume_remain,
            issued_at=order.issued,
            snapshot_ts=snapshot_ts,
        )


class Snapshot(BaseModel):
    """Records of one consistent paginated pass.

    Created wholesale and superseded by the next successful pass, never
    patched. ``fallback_used`` marks a page-1-only result that carries no
    cross-page atomicity guarantee.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    records: tuple[SnapshotRecord, ...] = ()
    last_modified: str | None = None
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    fallback_used: bool = False
    pages_fetched: int = Field(default=0, ge=0)

    @property
    def item_count(self) -> int:
        """Number of records in the snapshot."""
        return len(self.records)

    def age_ms(self, now: datetime) -> float:
        """Milliseconds elapsed since the snapshot was fetched."""
        return max(0.0, (now - self.fetched_at).total_seconds() * 1000)


class PriceHistoryRow(BaseModel):
    """One day of regional price history for an item type."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    date: str
    average: float
    volume: int

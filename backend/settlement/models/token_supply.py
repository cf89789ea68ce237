"""TokenSupply ORM — one row per tokenized property, the ledger's invariant-bearing record.

Invariants:
    - property_id is unique (one supply row per property)
    - CHECK: available_supply >= 0, reserved_supply >= 0,
      available_supply + reserved_supply <= total_supply
    - version increments on every supply mutation

Design Decisions:
    - Buckets are mutated only through conditional UPDATEs in services/token_ledger.py;
      the CHECK constraints are the last line if a caller bypasses it
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from settlement.core.supply_rules import SupplySnapshot
from settlement.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenSupply(Base):
    """Token-supply ledger row for one property."""
    __tablename__ = "token_supply"
    __table_args__ = (
        CheckConstraint("available_supply >= 0", name="available_non_negative"),
        CheckConstraint("reserved_supply >= 0", name="reserved_non_negative"),
        CheckConstraint(
            "available_supply + reserved_supply <= total_supply",
            name="buckets_within_total",
        ),
        CheckConstraint("total_supply > 0", name="total_positive"),
        CheckConstraint("minimum_investment >= 1", name="minimum_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    property_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True,
    )
    total_supply: Mapped[int] = mapped_column(Integer, nullable=False)
    available_supply: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_supply: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )
    token_price: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False,
    )
    minimum_investment: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1,
    )
    maximum_investment: Mapped[int | None] = mapped_column(
        Integer, nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    last_price_update: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    @property
    def issued_supply(self) -> int:
        return self.total_supply - self.available_supply - self.reserved_supply

    def snapshot(self) -> SupplySnapshot:
        return SupplySnapshot(
            total=self.total_supply,
            available=self.available_supply,
            reserved=self.reserved_supply,
            minimum_investment=self.minimum_investment,
            maximum_investment=self.maximum_investment,
        )

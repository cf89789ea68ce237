"""Reservation ORM — tokens held against an in-flight payment.

Invariants:
    - status transitions: pending -> confirmed | released | expired (terminal states final)
    - token_price / gross / fee / net are snapshots taken at reservation time
    - idempotency_key is unique when present: a retried reserve returns the same row
    - payment_ref is set exactly once, on confirmation
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from settlement.db.base import Base


class Reservation(Base):
    """Reserved tokens for one user on one property."""
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("token_amount > 0", name="token_amount_positive"),
        Index("ix_reservations_status_expires_at", "status", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    property_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("token_supply.property_id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    token_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    token_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    fee_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending",
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(128), nullable=True, unique=True,
    )
    payment_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    release_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

"""FeeSchedule ORM — active fee rules per fee type.

Invariants:
    - A schedule applies when is_active and effective_from <= now < effective_until (open-ended if null)
    - The most recently effective schedule wins when several match
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from settlement.core.fees import FeeRule
from settlement.db.base import Base


class FeeSchedule(Base):
    __tablename__ = "fee_schedules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    fee_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    percentage: Mapped[Decimal] = mapped_column(
        Numeric(7, 4), nullable=False, default=Decimal("0"),
    )
    fixed_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"),
    )
    min_fee: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0"),
    )
    max_fee: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    effective_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    effective_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def to_rule(self) -> FeeRule:
        return FeeRule(
            percentage=Decimal(str(self.percentage)),
            fixed_amount=Decimal(str(self.fixed_amount)),
            min_fee=Decimal(str(self.min_fee)),
            max_fee=(
                Decimal(str(self.max_fee)) if self.max_fee is not None else None
            ),
        )

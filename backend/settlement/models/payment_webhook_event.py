"""PaymentWebhookEvent ORM — inbox of received payment processor events.

Invariants:
    - event_id is unique: a redelivered event is recognized and not re-applied
    - processing_status: processed | ignored | failed; only failed events are retried
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from settlement.db.base import Base


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    event_id: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True,
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_ref: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True,
    )
    processing_status: Mapped[str] = mapped_column(String(20), nullable=False)
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_event: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    attempts: Mapped[int] = mapped_column(nullable=False, default=1)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

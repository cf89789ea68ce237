"""Reservation Schemas — reserve, confirm, release."""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ReservationCreate(BaseModel):
    property_id: str = Field(min_length=1, max_length=64)
    user_id: str = Field(min_length=1, max_length=64)
    token_amount: int
    idempotency_key: str | None = Field(None, min_length=1, max_length=128)


class ReservationConfirm(BaseModel):
    payment_ref: str = Field(min_length=1, max_length=128)


class ReservationRelease(BaseModel):
    # "expired" is reserved for the sweeper
    reason: Literal["released", "payment_failed", "payment_canceled"] = "released"


class ReservationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    property_id: str
    user_id: str
    token_amount: int
    token_price: Decimal
    gross_amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal
    status: str
    payment_ref: str | None
    release_reason: str | None
    expires_at: datetime
    created_at: datetime
    resolved_at: datetime | None


class ExpireResponse(BaseModel):
    expired: int

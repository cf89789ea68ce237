"""Investment Schemas — starting an investment and reading issued investments.

Invariants:
    - InvestmentCreate.payment_method is one of the processor-backed methods
    - InvestmentStartResponse mirrors the reservation's price snapshot
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class InvestmentCreate(BaseModel):
    """Start an investment: reserve tokens and open a payment attempt."""
    property_id: str = Field(min_length=1, max_length=64)
    user_id: str = Field(min_length=1, max_length=64)
    token_amount: int
    payment_method: Literal["card", "bank_transfer", "crypto"] = "card"
    payment_ref: str | None = Field(None, min_length=1, max_length=128)
    idempotency_key: str | None = Field(None, min_length=1, max_length=128)


class PaymentAttach(BaseModel):
    payment_ref: str = Field(min_length=1, max_length=128)


class InvestmentStartResponse(BaseModel):
    reservation_id: UUID
    transaction_id: UUID
    property_id: str
    token_amount: int
    token_price: Decimal
    gross_amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal
    payment_currency: str
    payment_ref: str | None
    status: str
    expires_at: datetime


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reservation_id: UUID
    user_id: str
    property_id: str
    transaction_type: str
    token_amount: int
    total_amount: Decimal
    fees_amount: Decimal
    net_amount: Decimal
    payment_method: str | None
    payment_currency: str
    payment_ref: str | None
    status: str
    failure_reason: str | None
    created_at: datetime
    processed_at: datetime | None


class InvestmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reservation_id: UUID
    investment_transaction_id: UUID | None
    user_id: str
    property_id: str
    token_amount: int
    price_per_token: Decimal
    total_amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal
    payment_currency: str
    payment_ref: str
    status: str
    confirmed_at: datetime

"""Webhook Schemas — payment processor event envelope.

Invariants:
    - Only the fields the settlement layer reads are modelled; unknown fields are ignored
    - data.object is the payment intent; its id is the payment_ref
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PaymentIntentObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1, max_length=128)
    amount: int | None = None
    currency: str | None = None
    status: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    last_payment_error: dict[str, Any] | None = None

    @property
    def failure_message(self) -> str | None:
        if not self.last_payment_error:
            return None
        return self.last_payment_error.get("message")


class PaymentEventData(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    payment_intent: PaymentIntentObject = Field(alias="object")


class PaymentEvent(BaseModel):
    """Signed event delivered to POST /api/v1/webhooks/payments."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1, max_length=128)
    type: str = Field(min_length=1, max_length=64)
    created: int | None = None
    data: PaymentEventData

    @property
    def payment_ref(self) -> str:
        return self.data.payment_intent.id

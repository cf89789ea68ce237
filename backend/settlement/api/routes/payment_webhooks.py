"""Payment Webhook Routes — signed payment processor events drive settlement.

Invariants:
    - The signature is verified against the RAW body before anything is parsed
    - Unsigned or tampered requests get 401 and never touch the ledger
    - A processing failure returns a non-2xx status so the processor redelivers

Design Decisions:
    - Raw Request body over a Pydantic body parameter: re-serialized JSON would not
      match the signed bytes
"""

import logging
import time

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import Settings, get_settings
from settlement.core.errors import LedgerValidationError
from settlement.core.webhook_signature import verify_signature
from settlement.infrastructure.database import get_db
from settlement.schemas.webhook import PaymentEvent
from settlement.services.payment_settlement import (
    PaymentSettlement, SUPPORTED_EVENTS,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "payment-signature"


@router.post("/payments")
async def handle_payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Verify, parse and apply one payment processor event."""
    payload = await request.body()
    verify_signature(
        payload,
        request.headers.get(SIGNATURE_HEADER),
        settings.payment_webhook_secret,
        tolerance_seconds=settings.payment_webhook_tolerance_seconds,
        now=int(time.time()),
    )

    try:
        event = PaymentEvent.model_validate_json(payload)
    except ValidationError as e:
        logger.warning(f"Malformed payment event: {e.error_count()} error(s)")
        raise LedgerValidationError("Malformed payment event payload", "body")

    return await PaymentSettlement(db, settings).process_event(event)


@router.get("/payments/status")
async def webhook_status(settings: Settings = Depends(get_settings)):
    """Report webhook configuration (never the secret itself)."""
    return {
        "configured": bool(settings.payment_webhook_secret),
        "signature_header": SIGNATURE_HEADER,
        "tolerance_seconds": settings.payment_webhook_tolerance_seconds,
        "supported_events": SUPPORTED_EVENTS,
    }

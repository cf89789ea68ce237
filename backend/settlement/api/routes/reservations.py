"""Reservation Routes — reserve, confirm, release and expire token reservations.

Invariants:
    - POST /reservations/expire is registered before /{reservation_id} routes
    - Confirm and release are safe to retry (see services/token_ledger.py)
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import Settings, get_settings
from settlement.infrastructure.database import get_db
from settlement.schemas.investment import InvestmentResponse
from settlement.schemas.reservation import (
    ExpireResponse, ReservationConfirm, ReservationCreate, ReservationRelease,
    ReservationResponse,
)
from settlement.services.token_ledger import TokenLedger

router = APIRouter(prefix="/api/v1/reservations", tags=["reservations"])


@router.post(
    "", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED,
)
async def reserve_tokens(
    body: ReservationCreate,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Move tokens from available to reserved for a pending purchase."""
    reservation = await TokenLedger(db, settings).reserve_tokens(
        body.property_id, body.user_id, body.token_amount,
        idempotency_key=body.idempotency_key,
    )
    return ReservationResponse.model_validate(reservation)


@router.post("/expire", response_model=ExpireResponse)
async def expire_reservations(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Release every pending reservation past its expires_at."""
    expired = await TokenLedger(db, settings).expire_stale_reservations()
    return ExpireResponse(expired=expired)


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: UUID,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    reservation = await TokenLedger(db, settings).get_reservation(reservation_id)
    return ReservationResponse.model_validate(reservation)


@router.post("/{reservation_id}/confirm", response_model=InvestmentResponse)
async def confirm_reservation(
    reservation_id: UUID,
    body: ReservationConfirm,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Issue reserved tokens after a confirmed payment."""
    investment = await TokenLedger(db, settings).confirm_reservation(
        reservation_id, body.payment_ref,
    )
    return InvestmentResponse.model_validate(investment)


@router.post("/{reservation_id}/release", response_model=ReservationResponse)
async def release_reservation(
    reservation_id: UUID,
    body: ReservationRelease | None = None,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Return reserved tokens to available supply."""
    reason = body.reason if body else "released"
    reservation = await TokenLedger(db, settings).release_reservation(
        reservation_id, reason,
    )
    return ReservationResponse.model_validate(reservation)

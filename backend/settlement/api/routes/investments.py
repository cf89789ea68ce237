"""Investment Routes — start an investment, attach the processor's payment ref, read holdings.

Invariants:
    - POST /investments reserves tokens and opens a pending transaction atomically
    - Settlement itself happens only via the payment webhook
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import Settings, get_settings
from settlement.infrastructure.database import get_db
from settlement.schemas.investment import (
    InvestmentCreate, InvestmentResponse, InvestmentStartResponse, PaymentAttach,
    TransactionResponse,
)
from settlement.services.investment_flow import InvestmentFlow

router = APIRouter(prefix="/api/v1/investments", tags=["investments"])


@router.post(
    "", response_model=InvestmentStartResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_investment(
    body: InvestmentCreate,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Reserve tokens and return the amount the client must charge."""
    summary = await InvestmentFlow(db, settings).start_investment(
        body.property_id,
        body.user_id,
        body.token_amount,
        payment_method=body.payment_method,
        payment_ref=body.payment_ref,
        idempotency_key=body.idempotency_key,
    )
    return InvestmentStartResponse(**summary)


@router.get("", response_model=list[InvestmentResponse])
async def list_investments(
    user_id: str | None = None,
    property_id: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    investments = await InvestmentFlow(db, settings).list_investments(
        user_id=user_id, property_id=property_id, limit=limit, offset=offset,
    )
    return [InvestmentResponse.model_validate(i) for i in investments]


@router.get("/{investment_id}", response_model=InvestmentResponse)
async def get_investment(
    investment_id: UUID,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    investment = await InvestmentFlow(db, settings).get_investment(investment_id)
    return InvestmentResponse.model_validate(investment)


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: UUID,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    transaction = await InvestmentFlow(db, settings).get_transaction(transaction_id)
    return TransactionResponse.model_validate(transaction)


@router.post(
    "/transactions/{transaction_id}/payment", response_model=TransactionResponse,
)
async def attach_payment(
    transaction_id: UUID,
    body: PaymentAttach,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Link the processor's payment intent to a pending transaction."""
    transaction = await InvestmentFlow(db, settings).attach_payment(
        transaction_id, body.payment_ref,
    )
    return TransactionResponse.model_validate(transaction)

"""Token Supply Routes — register a property's supply, read its buckets, reprice.

Invariants:
    - Supply is created once per property (409 on repeat)
    - Price changes affect only reservations made after the change
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import Settings, get_settings
from settlement.infrastructure.database import get_db
from settlement.schemas.supply import PriceUpdate, SupplyCreate, SupplyResponse
from settlement.services.token_ledger import TokenLedger

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/supplies", tags=["supplies"])


@router.post(
    "", response_model=SupplyResponse, status_code=status.HTTP_201_CREATED,
)
async def register_supply(
    body: SupplyCreate,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Register the token supply of a tokenized property."""
    ledger = TokenLedger(db, settings)
    supply = await ledger.register_supply(
        body.property_id,
        body.total_supply,
        body.token_price,
        minimum_investment=body.minimum_investment,
        maximum_investment=body.maximum_investment,
    )
    return SupplyResponse.model_validate(supply)


@router.get("/{property_id}", response_model=SupplyResponse)
async def get_supply(
    property_id: str,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    supply = await TokenLedger(db, settings).get_supply(property_id)
    return SupplyResponse.model_validate(supply)


@router.patch("/{property_id}/price", response_model=SupplyResponse)
async def update_price(
    property_id: str,
    body: PriceUpdate,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    supply = await TokenLedger(db, settings).update_token_price(
        property_id, body.token_price,
    )
    logger.info(
        f"Token price for {property_id} set to {supply.token_price}",
        extra={"property_id": property_id},
    )
    return SupplyResponse.model_validate(supply)

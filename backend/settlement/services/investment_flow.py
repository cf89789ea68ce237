"""Investment Flow — reserve tokens and open a payment attempt in one transaction.

Invariants:
    - The reservation and its pending InvestmentTransaction commit together or not at all
    - An idempotent replay returns the original reservation's transaction
    - A replayed reservation that is no longer pending never gets a new transaction
    - A transaction stays pending until settled, whether payment_ref arrives at
      start or through attach_payment
    - No payment processor is called here; the client charges the returned gross_amount
      and the processor's webhook drives settlement
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import Settings
from settlement.core.domain_types import ReservationStatus, TransactionStatus
from settlement.core.errors import (
    ErrorContext, ReservationConflictError, ResourceNotFoundError,
)
from settlement.models.investment import Investment
from settlement.models.investment_transaction import InvestmentTransaction
from settlement.models.reservation import Reservation
from settlement.services.token_ledger import TokenLedger

logger = logging.getLogger(__name__)


class InvestmentFlow:
    """Entry point for investors buying tokens."""

    def __init__(self, db: AsyncSession, settings: Settings):
        self.db = db
        self.settings = settings
        self.ledger = TokenLedger(db, settings)

    async def start_investment(
        self,
        property_id: str,
        user_id: str,
        token_amount: int,
        payment_method: str = "card",
        payment_ref: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict:
        """Reserve tokens and record a pending payment attempt."""
        reservation = await self.ledger.reserve_tokens(
            property_id, user_id, token_amount,
            idempotency_key=idempotency_key, commit=False,
        )
        transaction = await self._transaction_for(reservation.id)
        if transaction is None:
            if reservation.status != ReservationStatus.PENDING.value:
                error = ReservationConflictError(
                    f"Reservation {reservation.id} is {reservation.status}; "
                    f"no tokens are held for a new payment",
                    ErrorContext(
                        property_id=property_id,
                        reservation_id=str(reservation.id),
                    ),
                )
                await self.db.rollback()
                raise error
            transaction = InvestmentTransaction(
                reservation_id=reservation.id,
                user_id=user_id,
                property_id=property_id,
                transaction_type="purchase",
                token_amount=token_amount,
                token_price=reservation.token_price,
                total_amount=reservation.gross_amount,
                fees_amount=reservation.fee_amount,
                net_amount=reservation.net_amount,
                payment_method=payment_method,
                payment_currency=self.settings.payment_currency,
                payment_ref=payment_ref,
                status=TransactionStatus.PENDING.value,
            )
            self.db.add(transaction)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                raise ReservationConflictError(
                    f"payment_ref '{payment_ref}' already belongs to another transaction",
                    ErrorContext(property_id=property_id, payment_ref=payment_ref),
                )
            logger.info(
                f"Investment started: transaction {transaction.id} "
                f"for reservation {reservation.id}",
                extra={
                    "property_id": property_id,
                    "reservation_id": reservation.id,
                    "transaction_id": transaction.id,
                },
            )
        return self._summary(reservation, transaction)

    async def attach_payment(
        self, transaction_id: UUID, payment_ref: str,
    ) -> InvestmentTransaction:
        """Record the processor's reference on a pending transaction."""
        transaction = await self.get_transaction(transaction_id)
        ctx = ErrorContext(
            property_id=transaction.property_id, payment_ref=payment_ref,
            reservation_id=str(transaction.reservation_id),
        )
        if transaction.payment_ref == payment_ref:
            return transaction
        if transaction.payment_ref is not None:
            raise ReservationConflictError(
                f"Transaction {transaction_id} already has a payment_ref", ctx,
            )
        if transaction.status != TransactionStatus.PENDING.value:
            raise ReservationConflictError(
                f"Transaction {transaction_id} is {transaction.status}", ctx,
            )
        transaction.payment_ref = payment_ref
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ReservationConflictError(
                f"payment_ref '{payment_ref}' already belongs to another transaction",
                ctx,
            )
        return transaction

    async def get_transaction(self, transaction_id: UUID) -> InvestmentTransaction:
        result = await self.db.execute(
            select(InvestmentTransaction)
            .where(InvestmentTransaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        transaction = result.scalar_one_or_none()
        if not transaction:
            raise ResourceNotFoundError("InvestmentTransaction", str(transaction_id))
        return transaction

    async def get_investment(self, investment_id: UUID) -> Investment:
        result = await self.db.execute(
            select(Investment).where(Investment.id == investment_id)
        )
        investment = result.scalar_one_or_none()
        if not investment:
            raise ResourceNotFoundError("Investment", str(investment_id))
        return investment

    async def list_investments(
        self,
        user_id: str | None = None,
        property_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Investment]:
        query = select(Investment).order_by(Investment.confirmed_at.desc())
        if user_id:
            query = query.where(Investment.user_id == user_id)
        if property_id:
            query = query.where(Investment.property_id == property_id)
        result = await self.db.execute(query.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def _transaction_for(
        self, reservation_id: UUID,
    ) -> InvestmentTransaction | None:
        result = await self.db.execute(
            select(InvestmentTransaction)
            .where(InvestmentTransaction.reservation_id == reservation_id)
            .order_by(InvestmentTransaction.created_at)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _summary(
        self, reservation: Reservation, transaction: InvestmentTransaction,
    ) -> dict:
        return {
            "reservation_id": reservation.id,
            "transaction_id": transaction.id,
            "property_id": reservation.property_id,
            "token_amount": reservation.token_amount,
            "token_price": reservation.token_price,
            "gross_amount": reservation.gross_amount,
            "fee_amount": reservation.fee_amount,
            "net_amount": reservation.net_amount,
            "payment_currency": transaction.payment_currency,
            "payment_ref": transaction.payment_ref,
            "status": transaction.status,
            "expires_at": reservation.expires_at,
        }

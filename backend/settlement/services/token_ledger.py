"""Token Ledger — atomic reserve / confirm / release over a property's TokenSupply row.

Invariants:
    - Every supply mutation is ONE conditional UPDATE whose WHERE clause re-checks its
      precondition (available_supply >= n, reserved_supply >= n); concurrent callers on
      the same property serialize on the row and the loser sees rowcount == 0
    - Reservation transitions are compare-and-swap on status (WHERE status = 'pending')
    - Each public operation commits once (or leaves the unit open when commit=False);
      any LedgerError rolls the whole unit back
    - confirm_reservation is idempotent per (reservation, payment_ref);
      release_reservation is idempotent for already released/expired reservations

Design Decisions:
    - Conditional UPDATE over SELECT ... FOR UPDATE: no lock held across round-trips,
      and identical behaviour on PostgreSQL and SQLite
    - commit=False lets InvestmentFlow and PaymentSettlement add their own rows to the
      same transaction before committing
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import Settings
from settlement.core.domain_types import (
    FeeType, InvestmentStatus, OPEN_TRANSACTION_STATUSES, ReleaseReason,
    ReservationStatus, TransactionStatus,
)
from settlement.core.errors import (
    ErrorContext, InsufficientSupplyError, LedgerError, ReservationConflictError,
    ResourceNotFoundError, SupplyConflictError, SupplyInvariantError,
)
from settlement.core.fees import FeeRule, quote_investment, to_money
from settlement.core.supply_rules import (
    apply_confirm, apply_release, apply_reserve, validate_reservation_request,
)
from settlement.models.fee_schedule import FeeSchedule
from settlement.models.investment import Investment
from settlement.models.investment_transaction import InvestmentTransaction
from settlement.models.reservation import Reservation
from settlement.models.token_supply import TokenSupply

logger = logging.getLogger(__name__)

_RELEASED_STATES = (
    ReservationStatus.RELEASED.value, ReservationStatus.EXPIRED.value,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenLedger:
    """Reservation state machine and supply bookkeeping."""

    def __init__(self, db: AsyncSession, settings: Settings):
        self.db = db
        self.settings = settings

    # ─── Supply ─────────────────────────────────────────────────

    async def register_supply(
        self,
        property_id: str,
        total_supply: int,
        token_price: Decimal,
        minimum_investment: int = 1,
        maximum_investment: int | None = None,
    ) -> TokenSupply:
        """Create the supply row for a property with everything available."""
        ctx = ErrorContext(property_id=property_id)
        if await self._find_supply(property_id):
            raise SupplyConflictError(
                f"Token supply for property '{property_id}' already registered", ctx,
            )
        supply = TokenSupply(
            property_id=property_id,
            total_supply=total_supply,
            available_supply=total_supply,
            reserved_supply=0,
            token_price=to_money(token_price),
            minimum_investment=minimum_investment,
            maximum_investment=maximum_investment,
        )
        self.db.add(supply)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise SupplyConflictError(
                f"Token supply for property '{property_id}' already registered", ctx,
            )
        logger.info(
            f"Registered {total_supply} tokens for property {property_id}",
            extra={"property_id": property_id},
        )
        return supply

    async def get_supply(self, property_id: str) -> TokenSupply:
        supply = await self._find_supply(property_id)
        if not supply:
            raise ResourceNotFoundError(
                "TokenSupply", property_id, ErrorContext(property_id=property_id),
            )
        return supply

    async def update_token_price(
        self, property_id: str, token_price: Decimal,
    ) -> TokenSupply:
        """Change the price quoted to NEW reservations (existing ones keep their snapshot)."""
        now = _utcnow()
        result = await self.db.execute(
            update(TokenSupply)
            .where(TokenSupply.property_id == property_id)
            .values(
                token_price=to_money(token_price),
                last_price_update=now,
                updated_at=now,
                version=TokenSupply.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise ResourceNotFoundError(
                "TokenSupply", property_id, ErrorContext(property_id=property_id),
            )
        await self.db.commit()
        return await self.get_supply(property_id)

    # ─── Reserve ────────────────────────────────────────────────

    async def reserve_tokens(
        self,
        property_id: str,
        user_id: str,
        token_amount: int,
        idempotency_key: str | None = None,
        fee_type: FeeType = FeeType.INVESTMENT,
        commit: bool = True,
    ) -> Reservation:
        """Move `token_amount` tokens from available to reserved.

        Raises InsufficientSupplyError when the conditional UPDATE finds fewer than
        `token_amount` available tokens. A repeated idempotency_key returns the
        original reservation without touching supply.
        """
        ctx = ErrorContext(property_id=property_id)
        if idempotency_key:
            existing = await self._find_by_idempotency_key(idempotency_key)
            if existing:
                return self._replayed_reservation(
                    existing, property_id, user_id, token_amount,
                )

        supply = await self.get_supply(property_id)
        snapshot = supply.snapshot()
        validate_reservation_request(snapshot, token_amount, ctx)
        apply_reserve(snapshot, token_amount)

        quote = quote_investment(
            token_amount,
            supply.token_price,
            await self._active_fee_rule(fee_type),
            self.settings.default_fee_percentage,
        )
        now = _utcnow()
        try:
            moved = await self.db.execute(
                update(TokenSupply)
                .where(TokenSupply.property_id == property_id)
                .where(TokenSupply.available_supply >= token_amount)
                .values(
                    available_supply=TokenSupply.available_supply - token_amount,
                    reserved_supply=TokenSupply.reserved_supply + token_amount,
                    version=TokenSupply.version + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if moved.rowcount != 1:
                raise InsufficientSupplyError(token_amount, context=ctx)

            reservation = Reservation(
                property_id=property_id,
                user_id=user_id,
                token_amount=token_amount,
                token_price=quote.token_price,
                gross_amount=quote.gross_amount,
                fee_amount=quote.fee_amount,
                net_amount=quote.net_amount,
                status=ReservationStatus.PENDING.value,
                idempotency_key=idempotency_key,
                expires_at=now + timedelta(
                    seconds=self.settings.reservation_ttl_seconds,
                ),
                created_at=now,
            )
            self.db.add(reservation)
            await self.db.flush()
            if commit:
                await self.db.commit()
        except LedgerError:
            await self.db.rollback()
            raise
        except IntegrityError:
            await self.db.rollback()
            # Lost an idempotency_key race: the winner's row is the answer
            if idempotency_key:
                existing = await self._find_by_idempotency_key(idempotency_key)
                if existing:
                    return self._replayed_reservation(
                        existing, property_id, user_id, token_amount,
                    )
            raise

        logger.info(
            f"Reserved {token_amount} tokens on {property_id} "
            f"(reservation {reservation.id})",
            extra={
                "property_id": property_id,
                "reservation_id": reservation.id,
                "token_amount": token_amount,
            },
        )
        return reservation

    # ─── Confirm ────────────────────────────────────────────────

    async def confirm_reservation(
        self, reservation_id: UUID, payment_ref: str, commit: bool = True,
    ) -> Investment:
        """Issue the reserved tokens: reserved -> issued, and create the Investment."""
        ctx = ErrorContext(
            reservation_id=str(reservation_id), payment_ref=payment_ref,
        )
        reservation = await self.get_reservation(reservation_id)
        ctx.property_id = reservation.property_id
        if reservation.status != ReservationStatus.PENDING.value:
            return await self._replayed_confirmation(reservation, payment_ref, ctx)

        supply = await self.get_supply(reservation.property_id)
        apply_confirm(supply.snapshot(), reservation.token_amount)

        now = _utcnow()
        try:
            claimed = await self.db.execute(
                update(Reservation)
                .where(Reservation.id == reservation.id)
                .where(Reservation.status == ReservationStatus.PENDING.value)
                .values(
                    status=ReservationStatus.CONFIRMED.value,
                    payment_ref=payment_ref,
                    resolved_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                await self.db.rollback()
                current = await self.get_reservation(reservation_id)
                return await self._replayed_confirmation(current, payment_ref, ctx)

            moved = await self.db.execute(
                update(TokenSupply)
                .where(TokenSupply.property_id == reservation.property_id)
                .where(TokenSupply.reserved_supply >= reservation.token_amount)
                .values(
                    reserved_supply=(
                        TokenSupply.reserved_supply - reservation.token_amount
                    ),
                    version=TokenSupply.version + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if moved.rowcount != 1:
                raise SupplyInvariantError(
                    [f"reserved_supply below {reservation.token_amount} on confirm"],
                    ctx,
                )

            transaction = await self._open_transaction(reservation.id, payment_ref)
            if transaction:
                transaction.status = TransactionStatus.COMPLETED.value
                transaction.processed_at = now
                if transaction.payment_ref is None:
                    transaction.payment_ref = payment_ref

            investment = Investment(
                reservation_id=reservation.id,
                investment_transaction_id=transaction.id if transaction else None,
                user_id=reservation.user_id,
                property_id=reservation.property_id,
                token_amount=reservation.token_amount,
                price_per_token=reservation.token_price,
                total_amount=reservation.gross_amount,
                fee_amount=reservation.fee_amount,
                net_amount=reservation.net_amount,
                payment_currency=self.settings.payment_currency,
                payment_ref=payment_ref,
                status=InvestmentStatus.TOKENS_ISSUED.value,
                confirmed_at=now,
            )
            self.db.add(investment)
            await self.db.flush()
            await self.db.refresh(reservation)
            if commit:
                await self.db.commit()
        except LedgerError:
            await self.db.rollback()
            raise
        except IntegrityError:
            await self.db.rollback()
            current = await self.get_reservation(reservation_id)
            return await self._replayed_confirmation(current, payment_ref, ctx)

        logger.info(
            f"Confirmed reservation {reservation.id}: "
            f"{reservation.token_amount} tokens issued",
            extra={
                "property_id": reservation.property_id,
                "reservation_id": reservation.id,
                "payment_ref": payment_ref,
            },
        )
        return investment

    # ─── Release ────────────────────────────────────────────────

    async def release_reservation(
        self,
        reservation_id: UUID,
        reason: ReleaseReason | str = ReleaseReason.RELEASED,
        commit: bool = True,
    ) -> Reservation:
        """Return reserved tokens to available supply (payment failure or timeout)."""
        reservation, _ = await self._release(reservation_id, reason, commit)
        return reservation

    async def expire_stale_reservations(
        self, now: datetime | None = None, limit: int = 500,
    ) -> int:
        """Release every pending reservation whose expires_at has passed."""
        cutoff = now or _utcnow()
        result = await self.db.execute(
            select(Reservation.id)
            .where(Reservation.status == ReservationStatus.PENDING.value)
            .where(Reservation.expires_at <= cutoff)
            .order_by(Reservation.expires_at)
            .limit(limit)
        )
        expired = 0
        for reservation_id in result.scalars().all():
            try:
                _, changed = await self._release(
                    reservation_id, ReleaseReason.EXPIRED, commit=True,
                )
            except ReservationConflictError:
                logger.info(
                    f"Reservation {reservation_id} confirmed before expiry sweep",
                    extra={"reservation_id": reservation_id},
                )
                continue
            if changed:
                expired += 1
        if expired:
            logger.info(f"Expired {expired} stale reservation(s)")
        return expired

    # ─── Reads ──────────────────────────────────────────────────

    async def get_reservation(self, reservation_id: UUID) -> Reservation:
        result = await self.db.execute(
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        reservation = result.scalar_one_or_none()
        if not reservation:
            raise ResourceNotFoundError(
                "Reservation", str(reservation_id),
                ErrorContext(reservation_id=str(reservation_id)),
            )
        return reservation

    async def get_investment_for(self, reservation_id: UUID) -> Investment | None:
        result = await self.db.execute(
            select(Investment).where(Investment.reservation_id == reservation_id)
        )
        return result.scalar_one_or_none()

    # ─── Internals ──────────────────────────────────────────────

    async def _release(
        self, reservation_id: UUID, reason: ReleaseReason | str, commit: bool,
    ) -> tuple[Reservation, bool]:
        reason = ReleaseReason(reason)
        ctx = ErrorContext(reservation_id=str(reservation_id))
        reservation = await self.get_reservation(reservation_id)
        ctx.property_id = reservation.property_id
        if reservation.status in _RELEASED_STATES:
            return reservation, False
        if reservation.status == ReservationStatus.CONFIRMED.value:
            raise ReservationConflictError(
                f"Reservation {reservation_id} is already confirmed", ctx,
            )

        supply = await self.get_supply(reservation.property_id)
        apply_release(supply.snapshot(), reservation.token_amount)

        target = (
            ReservationStatus.EXPIRED if reason is ReleaseReason.EXPIRED
            else ReservationStatus.RELEASED
        )
        now = _utcnow()
        try:
            claimed = await self.db.execute(
                update(Reservation)
                .where(Reservation.id == reservation.id)
                .where(Reservation.status == ReservationStatus.PENDING.value)
                .values(
                    status=target.value,
                    release_reason=reason.value,
                    resolved_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                await self.db.rollback()
                current = await self.get_reservation(reservation_id)
                if current.status in _RELEASED_STATES:
                    return current, False
                raise ReservationConflictError(
                    f"Reservation {reservation_id} is already {current.status}", ctx,
                )

            moved = await self.db.execute(
                update(TokenSupply)
                .where(TokenSupply.property_id == reservation.property_id)
                .where(TokenSupply.reserved_supply >= reservation.token_amount)
                .values(
                    available_supply=(
                        TokenSupply.available_supply + reservation.token_amount
                    ),
                    reserved_supply=(
                        TokenSupply.reserved_supply - reservation.token_amount
                    ),
                    version=TokenSupply.version + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if moved.rowcount != 1:
                raise SupplyInvariantError(
                    [f"reserved_supply below {reservation.token_amount} on release"],
                    ctx,
                )

            transaction_status = (
                TransactionStatus.FAILED if reason is ReleaseReason.PAYMENT_FAILED
                else TransactionStatus.CANCELLED
            )
            await self.db.execute(
                update(InvestmentTransaction)
                .where(InvestmentTransaction.reservation_id == reservation.id)
                .where(InvestmentTransaction.status.in_(OPEN_TRANSACTION_STATUSES))
                .values(
                    status=transaction_status.value,
                    failure_reason=reason.value,
                    processed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.refresh(reservation)
            if commit:
                await self.db.commit()
        except LedgerError:
            await self.db.rollback()
            raise

        logger.info(
            f"Released reservation {reservation.id} ({reason.value}): "
            f"{reservation.token_amount} tokens back to available",
            extra={
                "property_id": reservation.property_id,
                "reservation_id": reservation.id,
            },
        )
        return reservation, True

    async def _replayed_confirmation(
        self, reservation: Reservation, payment_ref: str, ctx: ErrorContext,
    ) -> Investment:
        if (
            reservation.status == ReservationStatus.CONFIRMED.value
            and reservation.payment_ref == payment_ref
        ):
            investment = await self.get_investment_for(reservation.id)
            if investment:
                logger.info(
                    f"Duplicate confirmation for reservation {reservation.id} ignored",
                    extra={"reservation_id": reservation.id, "payment_ref": payment_ref},
                )
                return investment
        if reservation.status == ReservationStatus.CONFIRMED.value:
            raise ReservationConflictError(
                f"Reservation {reservation.id} already confirmed "
                f"with a different payment_ref", ctx,
            )
        raise ReservationConflictError(
            f"Reservation {reservation.id} is {reservation.status} "
            f"and cannot be confirmed", ctx,
        )

    def _replayed_reservation(
        self, existing: Reservation, property_id: str, user_id: str, token_amount: int,
    ) -> Reservation:
        if (
            existing.property_id != property_id
            or existing.user_id != user_id
            or existing.token_amount != token_amount
        ):
            raise ReservationConflictError(
                "idempotency_key already used for a different reservation",
                ErrorContext(
                    property_id=property_id, reservation_id=str(existing.id),
                ),
            )
        logger.info(
            f"Idempotent replay of reservation {existing.id}",
            extra={"reservation_id": existing.id},
        )
        return existing

    async def _find_supply(self, property_id: str) -> TokenSupply | None:
        result = await self.db.execute(
            select(TokenSupply)
            .where(TokenSupply.property_id == property_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _find_by_idempotency_key(self, key: str) -> Reservation | None:
        result = await self.db.execute(
            select(Reservation)
            .where(Reservation.idempotency_key == key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _open_transaction(
        self, reservation_id: UUID, payment_ref: str,
    ) -> InvestmentTransaction | None:
        result = await self.db.execute(
            select(InvestmentTransaction)
            .where(InvestmentTransaction.reservation_id == reservation_id)
            .where(InvestmentTransaction.status.in_(OPEN_TRANSACTION_STATUSES))
            .where(or_(
                InvestmentTransaction.payment_ref == payment_ref,
                InvestmentTransaction.payment_ref.is_(None),
            ))
            .order_by(InvestmentTransaction.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _active_fee_rule(self, fee_type: FeeType) -> FeeRule | None:
        now = _utcnow()
        result = await self.db.execute(
            select(FeeSchedule)
            .where(FeeSchedule.fee_type == FeeType(fee_type).value)
            .where(FeeSchedule.is_active.is_(True))
            .where(FeeSchedule.effective_from <= now)
            .where(or_(
                FeeSchedule.effective_until.is_(None),
                FeeSchedule.effective_until > now,
            ))
            .order_by(FeeSchedule.effective_from.desc())
            .limit(1)
        )
        schedule = result.scalar_one_or_none()
        return schedule.to_rule() if schedule else None

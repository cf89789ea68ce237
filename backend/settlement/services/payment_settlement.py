"""Payment Settlement — applies payment processor events to the ledger exactly once.

Invariants:
    - Each event_id is applied at most once: the ledger change and the inbox row
      (payment_webhook_events) commit in the same transaction
    - payment_intent.succeeded  -> confirm_reservation (reserved -> issued)
    - payment_intent.payment_failed -> transaction failed, release_reservation
    - payment_intent.canceled   -> transaction cancelled, release_reservation
    - Unknown event types are recorded as ignored
    - A failed event is recorded as failed and re-raised so the processor redelivers;
      redelivery of a failed event is retried, redelivery of anything else is a no-op
"""

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import Settings
from settlement.core.domain_types import (
    PaymentEventType, ReleaseReason, ReservationStatus, TransactionStatus,
    WebhookProcessingStatus,
)
from settlement.core.errors import ErrorContext, LedgerError, ResourceNotFoundError
from settlement.models.investment_transaction import InvestmentTransaction
from settlement.models.payment_webhook_event import PaymentWebhookEvent
from settlement.schemas.webhook import PaymentEvent
from settlement.services.token_ledger import TokenLedger

logger = logging.getLogger(__name__)

SUPPORTED_EVENTS = [e.value for e in PaymentEventType]


class PaymentSettlement:
    """Routes verified payment events to ledger operations."""

    def __init__(self, db: AsyncSession, settings: Settings):
        self.db = db
        self.settings = settings
        self.ledger = TokenLedger(db, settings)

    async def process_event(self, event: PaymentEvent) -> dict:
        log_extra = {
            "event_id": event.id, "event_type": event.type,
            "payment_ref": event.payment_ref,
        }
        previous = await self._find_event(event.id)
        if previous and previous.processing_status != WebhookProcessingStatus.FAILED.value:
            logger.info(
                f"Duplicate payment event {event.id} ignored", extra=log_extra,
            )
            return {
                "event_id": event.id,
                "processing_status": "duplicate",
            }

        handlers = {
            PaymentEventType.SUCCEEDED.value: self._handle_succeeded,
            PaymentEventType.FAILED.value: self._handle_failed,
            PaymentEventType.CANCELED.value: self._handle_canceled,
        }
        handler = handlers.get(event.type)
        logger.info(f"Processing payment event {event.type}", extra=log_extra)

        outcome: dict = {}
        try:
            if handler:
                outcome = await handler(event)
                status = WebhookProcessingStatus.PROCESSED
            else:
                logger.warning(
                    f"Unhandled payment event type: {event.type}", extra=log_extra,
                )
                status = WebhookProcessingStatus.IGNORED
            await self._record(event, status, None)
            await self.db.commit()
        except LedgerError as e:
            await self.db.rollback()
            logger.error(
                f"Payment event {event.id} failed: {e.message}",
                extra={**log_extra, "error_code": e.code},
            )
            await self._record_failure(event, e.message)
            raise
        except IntegrityError:
            # Concurrent delivery of the same event committed first
            await self.db.rollback()
            logger.info(
                f"Payment event {event.id} committed by a concurrent delivery",
                extra=log_extra,
            )
            return {"event_id": event.id, "processing_status": "duplicate"}

        return {
            "event_id": event.id,
            "processing_status": status.value,
            **outcome,
        }

    # ─── Handlers ───────────────────────────────────────────────

    async def _handle_succeeded(self, event: PaymentEvent) -> dict:
        transaction = await self._transaction_for(event)
        investment = await self.ledger.confirm_reservation(
            transaction.reservation_id, event.payment_ref, commit=False,
        )
        return {
            "reservation_id": str(transaction.reservation_id),
            "investment_id": str(investment.id),
        }

    async def _handle_failed(self, event: PaymentEvent) -> dict:
        return await self._fail_and_release(
            event, TransactionStatus.FAILED, ReleaseReason.PAYMENT_FAILED,
        )

    async def _handle_canceled(self, event: PaymentEvent) -> dict:
        return await self._fail_and_release(
            event, TransactionStatus.CANCELLED, ReleaseReason.PAYMENT_CANCELED,
        )

    async def _fail_and_release(
        self,
        event: PaymentEvent,
        transaction_status: TransactionStatus,
        reason: ReleaseReason,
    ) -> dict:
        transaction = await self._transaction_for(event)
        reservation = await self.ledger.get_reservation(transaction.reservation_id)
        if reservation.status == ReservationStatus.CONFIRMED.value:
            logger.warning(
                f"{event.type} for already settled reservation {reservation.id}",
                extra={"event_id": event.id, "reservation_id": reservation.id},
            )
            return {
                "reservation_id": str(reservation.id),
                "reservation_status": reservation.status,
            }

        now = datetime.now(timezone.utc)
        if transaction.status != TransactionStatus.COMPLETED.value:
            transaction.status = transaction_status.value
            transaction.failure_reason = (
                event.data.payment_intent.failure_message or reason.value
            )
            transaction.processed_at = now
            await self.db.flush()
        reservation = await self.ledger.release_reservation(
            transaction.reservation_id, reason, commit=False,
        )
        return {
            "reservation_id": str(reservation.id),
            "reservation_status": reservation.status,
        }

    # ─── Helpers ────────────────────────────────────────────────

    async def _transaction_for(self, event: PaymentEvent) -> InvestmentTransaction:
        """Resolve the payment attempt by payment_ref, then by metadata.transaction_id."""
        result = await self.db.execute(
            select(InvestmentTransaction)
            .where(InvestmentTransaction.payment_ref == event.payment_ref)
        )
        transaction = result.scalar_one_or_none()
        if transaction:
            return transaction

        transaction_id = _as_uuid(
            event.data.payment_intent.metadata.get("transaction_id", ""),
        )
        if transaction_id:
            result = await self.db.execute(
                select(InvestmentTransaction)
                .where(InvestmentTransaction.id == transaction_id)
            )
            transaction = result.scalar_one_or_none()
            if transaction:
                if transaction.payment_ref is None:
                    transaction.payment_ref = event.payment_ref
                return transaction

        raise ResourceNotFoundError(
            "InvestmentTransaction", event.payment_ref,
            ErrorContext(payment_ref=event.payment_ref),
        )

    async def _find_event(self, event_id: str) -> PaymentWebhookEvent | None:
        result = await self.db.execute(
            select(PaymentWebhookEvent)
            .where(PaymentWebhookEvent.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _record(
        self,
        event: PaymentEvent,
        status: WebhookProcessingStatus,
        error: str | None,
    ) -> None:
        existing = await self._find_event(event.id)
        if existing:
            existing.processing_status = status.value
            existing.processing_error = error
            existing.attempts += 1
            return
        self.db.add(PaymentWebhookEvent(
            event_id=event.id,
            event_type=event.type,
            payment_ref=event.payment_ref,
            processing_status=status.value,
            processing_error=error,
            raw_event=event.model_dump(mode="json", by_alias=True),
        ))

    async def _record_failure(self, event: PaymentEvent, error: str) -> None:
        try:
            await self._record(event, WebhookProcessingStatus.FAILED, error)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(
                f"Could not record failure of payment event {event.id}",
                extra={"event_id": event.id},
            )


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(value)
    except ValueError:
        return None

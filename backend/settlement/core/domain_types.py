"""Domain Types — identities and lifecycle enums for the token ledger.

Invariants:
    - ReservationStatus: pending -> confirmed | released | expired; terminal states are final
    - TransactionStatus: pending -> completed | failed | cancelled (processing is optional)
    - All valid states encoded as Enums — no raw string matching in services

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: stored as plain strings in the DB and serialized as-is in JSON
"""

from enum import Enum
from typing import NewType
from uuid import UUID


# ─── Identity Types ──────────────────────────────────────────────

PropertyId = NewType("PropertyId", str)
ReservationId = NewType("ReservationId", UUID)
TransactionId = NewType("TransactionId", UUID)
InvestmentId = NewType("InvestmentId", UUID)
PaymentRef = NewType("PaymentRef", str)


# ─── Enums ───────────────────────────────────────────────────────

class ReservationStatus(str, Enum):
    """Reservation lifecycle — maps to reservations.status."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not ReservationStatus.PENDING


class TransactionStatus(str, Enum):
    """Payment attempt lifecycle — maps to investment_transactions.status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


OPEN_TRANSACTION_STATUSES: tuple[str, ...] = (
    TransactionStatus.PENDING.value,
)


class InvestmentStatus(str, Enum):
    """Investment state — an Investment only exists once tokens are issued."""
    TOKENS_ISSUED = "tokens_issued"


class FeeType(str, Enum):
    """Fee schedule categories."""
    ONBOARDING = "onboarding"
    INVESTMENT = "investment"
    MANAGEMENT = "management"
    SECONDARY_MARKET = "secondary_market"
    WITHDRAWAL = "withdrawal"


class ReleaseReason(str, Enum):
    """Why reserved tokens went back to available supply."""
    RELEASED = "released"
    EXPIRED = "expired"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELED = "payment_canceled"


class PaymentEventType(str, Enum):
    """Payment processor webhook events the settlement layer acts on."""
    SUCCEEDED = "payment_intent.succeeded"
    FAILED = "payment_intent.payment_failed"
    CANCELED = "payment_intent.canceled"


class WebhookProcessingStatus(str, Enum):
    """Outcome recorded for each received webhook event."""
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"

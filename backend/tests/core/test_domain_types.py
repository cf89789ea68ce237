"""Domain Types & Errors — verifies enum values and the error envelope.

Tests:
    - Enum values match what is stored in the database
    - Only pending reservations are non-terminal
    - to_response() carries code, category, severity and ledger identifiers
"""

from uuid import uuid4

from settlement.core.domain_types import (
    OPEN_TRANSACTION_STATUSES, PaymentEventType, PropertyId, ReleaseReason,
    ReservationId, ReservationStatus, TransactionStatus,
)
from settlement.core.errors import (
    ErrorCategory, ErrorContext, InsufficientSupplyError, ResourceNotFoundError,
    SupplyInvariantError,
)


def test_identity_types_wrap_values():
    uid = uuid4()
    assert ReservationId(uid) == uid
    assert PropertyId("prop-1") == "prop-1"


def test_reservation_status_values():
    assert {s.value for s in ReservationStatus} == {
        "pending", "confirmed", "released", "expired",
    }


def test_only_pending_is_non_terminal():
    assert not ReservationStatus.PENDING.is_terminal
    assert ReservationStatus.CONFIRMED.is_terminal
    assert ReservationStatus.RELEASED.is_terminal
    assert ReservationStatus.EXPIRED.is_terminal


def test_open_transaction_statuses():
    assert OPEN_TRANSACTION_STATUSES == (
        TransactionStatus.PENDING.value,
    )


def test_payment_event_types():
    assert PaymentEventType.SUCCEEDED.value == "payment_intent.succeeded"
    assert PaymentEventType.FAILED.value == "payment_intent.payment_failed"
    assert PaymentEventType.CANCELED.value == "payment_intent.canceled"


def test_release_reason_accepts_raw_string():
    assert ReleaseReason("payment_failed") is ReleaseReason.PAYMENT_FAILED


def test_error_response_envelope():
    err = InsufficientSupplyError(
        10, 3, ErrorContext(property_id="prop-1", reservation_id="r-1"),
    )
    body = err.to_response()["error"]
    assert body["code"] == "INSUFFICIENT_SUPPLY"
    assert body["category"] == ErrorCategory.CONFLICT.value
    assert body["severity"] == "warning"
    assert body["context"]["property_id"] == "prop-1"
    assert body["context"]["reservation_id"] == "r-1"
    assert body["context"]["payment_ref"] is None
    assert "timestamp" in body


def test_not_found_is_404():
    err = ResourceNotFoundError("Reservation", "abc")
    assert err.http_status == 404
    assert "abc" in err.message


def test_invariant_error_is_critical_500():
    err = SupplyInvariantError(["available_supply=-1 < 0"])
    assert err.http_status == 500
    assert err.severity.value == "critical"
    assert "available_supply=-1" in err.message

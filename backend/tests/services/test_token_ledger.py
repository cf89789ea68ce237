"""Token Ledger — verifies reserve / confirm / release against a real (SQLite) database.

Invariants:
    - available + reserved + issued == total after every operation
    - Failed operations leave supply untouched
    - Confirm is idempotent per payment_ref; release is idempotent once released
    - Expiry sweep only touches pending reservations past expires_at
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from settlement.core.errors import (
    InsufficientSupplyError, InvestmentLimitError, LedgerValidationError,
    ReservationConflictError, ResourceNotFoundError, SupplyConflictError,
)
from settlement.models.fee_schedule import FeeSchedule
from settlement.models.investment import Investment

PROPERTY_ID = "prop-001"


async def _buckets(ledger):
    supply = await ledger.get_supply(PROPERTY_ID)
    return (
        supply.available_supply, supply.reserved_supply, supply.issued_supply,
    )


# ─── Supply ─────────────────────────────────────────────────────

async def test_register_supply_starts_fully_available(ledger, supply):
    assert supply.total_supply == 1000
    assert await _buckets(ledger) == (1000, 0, 0)
    assert supply.token_price == Decimal("50.00")


async def test_register_supply_twice_conflicts(ledger, supply):
    with pytest.raises(SupplyConflictError):
        await ledger.register_supply(PROPERTY_ID, 10, Decimal("1.00"))


async def test_get_unknown_supply_is_not_found(ledger):
    with pytest.raises(ResourceNotFoundError):
        await ledger.get_supply("nope")


async def test_update_token_price_bumps_version(ledger, supply):
    version = supply.version
    updated = await ledger.update_token_price(PROPERTY_ID, Decimal("55.5"))
    assert updated.token_price == Decimal("55.50")
    assert updated.version == version + 1


async def test_update_price_of_unknown_property_is_not_found(ledger):
    with pytest.raises(ResourceNotFoundError):
        await ledger.update_token_price("nope", Decimal("1.00"))


# ─── Reserve ────────────────────────────────────────────────────

async def test_reserve_moves_tokens_to_reserved(ledger, supply):
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)

    assert reservation.status == "pending"
    assert reservation.token_amount == 100
    assert reservation.gross_amount == Decimal("5000.00")
    assert reservation.fee_amount == Decimal("125.00")
    assert reservation.net_amount == Decimal("4875.00")
    assert await _buckets(ledger) == (900, 100, 0)


async def test_reserve_sets_expiry_from_ttl(ledger, supply, settings):
    before = datetime.now(timezone.utc)
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 1)
    ttl = timedelta(seconds=settings.reservation_ttl_seconds)
    assert before + ttl <= reservation.expires_at
    assert reservation.expires_at <= datetime.now(timezone.utc) + ttl


async def test_reserve_more_than_available_fails_without_side_effects(ledger, supply):
    await ledger.reserve_tokens(PROPERTY_ID, "user-1", 500)
    await ledger.reserve_tokens(PROPERTY_ID, "user-2", 450)

    with pytest.raises(InsufficientSupplyError):
        await ledger.reserve_tokens(PROPERTY_ID, "user-3", 51)
    assert await _buckets(ledger) == (50, 950, 0)


async def test_reserve_exactly_remaining_supply(ledger, supply):
    await ledger.reserve_tokens(PROPERTY_ID, "user-1", 500)
    await ledger.reserve_tokens(PROPERTY_ID, "user-2", 500)
    assert await _buckets(ledger) == (0, 1000, 0)


async def test_reserve_rejects_non_positive_amount(ledger, supply):
    with pytest.raises(LedgerValidationError):
        await ledger.reserve_tokens(PROPERTY_ID, "user-1", 0)
    assert await _buckets(ledger) == (1000, 0, 0)


async def test_reserve_above_maximum_investment(ledger, supply):
    with pytest.raises(InvestmentLimitError):
        await ledger.reserve_tokens(PROPERTY_ID, "user-1", 501)


async def test_reserve_unknown_property_is_not_found(ledger):
    with pytest.raises(ResourceNotFoundError):
        await ledger.reserve_tokens("nope", "user-1", 1)


async def test_reserve_replays_idempotency_key(ledger, supply):
    first = await ledger.reserve_tokens(
        PROPERTY_ID, "user-1", 10, idempotency_key="idem-1",
    )
    second = await ledger.reserve_tokens(
        PROPERTY_ID, "user-1", 10, idempotency_key="idem-1",
    )
    assert first.id == second.id
    assert await _buckets(ledger) == (990, 10, 0)


async def test_reserve_idempotency_key_reuse_with_other_params_conflicts(ledger, supply):
    await ledger.reserve_tokens(PROPERTY_ID, "user-1", 10, idempotency_key="idem-1")
    with pytest.raises(ReservationConflictError):
        await ledger.reserve_tokens(
            PROPERTY_ID, "user-1", 11, idempotency_key="idem-1",
        )


async def test_reserve_uses_active_fee_schedule(ledger, supply, test_db):
    test_db.add(FeeSchedule(
        fee_type="investment",
        percentage=Decimal("1.0"),
        fixed_amount=Decimal("5.00"),
        min_fee=Decimal("0"),
        effective_from=datetime.now(timezone.utc) - timedelta(days=1),
    ))
    await test_db.commit()

    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 10)
    assert reservation.gross_amount == Decimal("500.00")
    assert reservation.fee_amount == Decimal("10.00")
    assert reservation.net_amount == Decimal("490.00")


async def test_inactive_fee_schedule_ignored(ledger, supply, test_db):
    test_db.add(FeeSchedule(
        fee_type="investment",
        percentage=Decimal("10"),
        is_active=False,
        effective_from=datetime.now(timezone.utc) - timedelta(days=1),
    ))
    await test_db.commit()

    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 10)
    assert reservation.fee_amount == Decimal("12.50")


async def test_reservation_keeps_price_snapshot(ledger, supply):
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 2)
    await ledger.update_token_price(PROPERTY_ID, Decimal("80.00"))

    reloaded = await ledger.get_reservation(reservation.id)
    assert reloaded.token_price == Decimal("50.00")
    assert reloaded.gross_amount == Decimal("100.00")


# ─── Confirm ────────────────────────────────────────────────────

async def test_confirm_issues_reserved_tokens(ledger, supply):
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)
    investment = await ledger.confirm_reservation(reservation.id, "pi_1")

    assert investment.token_amount == 100
    assert investment.user_id == "user-1"
    assert investment.payment_ref == "pi_1"
    assert investment.status == "tokens_issued"
    assert investment.total_amount == Decimal("5000.00")
    # available is untouched by confirm: only reserved -> issued
    assert await _buckets(ledger) == (900, 0, 100)

    reloaded = await ledger.get_reservation(reservation.id)
    assert reloaded.status == "confirmed"
    assert reloaded.payment_ref == "pi_1"
    assert reloaded.resolved_at is not None


async def test_confirm_twice_with_same_payment_ref_is_idempotent(ledger, supply, test_db):
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)
    first = await ledger.confirm_reservation(reservation.id, "pi_1")
    second = await ledger.confirm_reservation(reservation.id, "pi_1")

    assert first.id == second.id
    assert await _buckets(ledger) == (900, 0, 100)
    result = await test_db.execute(select(Investment))
    assert len(result.scalars().all()) == 1


async def test_confirm_with_different_payment_ref_conflicts(ledger, supply):
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)
    await ledger.confirm_reservation(reservation.id, "pi_1")
    with pytest.raises(ReservationConflictError):
        await ledger.confirm_reservation(reservation.id, "pi_2")
    assert await _buckets(ledger) == (900, 0, 100)


async def test_confirm_released_reservation_conflicts(ledger, supply):
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)
    await ledger.release_reservation(reservation.id)
    with pytest.raises(ReservationConflictError):
        await ledger.confirm_reservation(reservation.id, "pi_1")
    assert await _buckets(ledger) == (1000, 0, 0)


async def test_confirm_unknown_reservation_is_not_found(ledger, supply):
    with pytest.raises(ResourceNotFoundError):
        await ledger.confirm_reservation(uuid4(), "pi_1")


# ─── Release ────────────────────────────────────────────────────

async def test_release_returns_tokens(ledger, supply):
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)
    released = await ledger.release_reservation(reservation.id)

    assert released.status == "released"
    assert released.release_reason == "released"
    assert await _buckets(ledger) == (1000, 0, 0)


async def test_release_is_idempotent(ledger, supply):
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)
    await ledger.release_reservation(reservation.id)
    again = await ledger.release_reservation(reservation.id)

    assert again.status == "released"
    assert await _buckets(ledger) == (1000, 0, 0)


async def test_release_confirmed_reservation_conflicts(ledger, supply):
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)
    await ledger.confirm_reservation(reservation.id, "pi_1")
    with pytest.raises(ReservationConflictError):
        await ledger.release_reservation(reservation.id)
    assert await _buckets(ledger) == (900, 0, 100)


async def test_release_records_payment_failure_reason(ledger, supply):
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 5)
    released = await ledger.release_reservation(reservation.id, "payment_failed")
    assert released.status == "released"
    assert released.release_reason == "payment_failed"


# ─── Expiry ─────────────────────────────────────────────────────

async def test_expire_stale_reservations_releases_only_expired(ledger, supply):
    stale = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)
    await ledger.reserve_tokens(PROPERTY_ID, "user-2", 50)
    await ledger.confirm_reservation(
        (await ledger.reserve_tokens(PROPERTY_ID, "user-3", 10)).id, "pi_3",
    )

    later = datetime.now(timezone.utc) + timedelta(seconds=901)
    expired = await ledger.expire_stale_reservations(now=later)

    # every pending reservation is past its TTL at `later`; confirmed ones are not touched
    assert expired == 2
    reloaded = await ledger.get_reservation(stale.id)
    assert reloaded.status == "expired"
    assert reloaded.release_reason == "expired"
    assert await _buckets(ledger) == (990, 0, 10)


async def test_expire_before_ttl_does_nothing(ledger, supply):
    await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)
    assert await ledger.expire_stale_reservations() == 0
    assert await _buckets(ledger) == (900, 100, 0)


async def test_expire_is_idempotent(ledger, supply):
    await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)
    later = datetime.now(timezone.utc) + timedelta(seconds=901)
    assert await ledger.expire_stale_reservations(now=later) == 1
    assert await ledger.expire_stale_reservations(now=later) == 0
    assert await _buckets(ledger) == (1000, 0, 0)


async def test_expired_reservation_cannot_be_confirmed(ledger, supply):
    reservation = await ledger.reserve_tokens(PROPERTY_ID, "user-1", 100)
    later = datetime.now(timezone.utc) + timedelta(seconds=901)
    await ledger.expire_stale_reservations(now=later)

    with pytest.raises(ReservationConflictError):
        await ledger.confirm_reservation(reservation.id, "pi_1")

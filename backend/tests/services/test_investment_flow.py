"""Investment Flow — verifies reservation + pending transaction are created together.

Invariants:
    - start_investment returns the quote the client must charge
    - An idempotent replay does not open a second transaction
    - A replay whose reservation is no longer pending opens no transaction at all
    - A payment_ref can be attached exactly once
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from settlement.core.errors import (
    InsufficientSupplyError, InvestmentLimitError, ReservationConflictError,
    ResourceNotFoundError,
)
from settlement.models.investment_transaction import InvestmentTransaction
from settlement.services.investment_flow import InvestmentFlow

PROPERTY_ID = "prop-001"


@pytest.fixture
def flow(test_db, settings):
    return InvestmentFlow(test_db, settings)


async def _transaction_count(db) -> int:
    result = await db.execute(select(func.count(InvestmentTransaction.id)))
    return result.scalar_one()


async def test_start_investment_reserves_and_opens_transaction(flow, supply, test_db):
    summary = await flow.start_investment(PROPERTY_ID, "user-1", 20)

    assert summary["token_amount"] == 20
    assert summary["gross_amount"] == Decimal("1000.00")
    assert summary["fee_amount"] == Decimal("25.00")
    assert summary["net_amount"] == Decimal("975.00")
    assert summary["status"] == "pending"
    assert summary["payment_currency"] == "USD"

    transaction = await flow.get_transaction(summary["transaction_id"])
    assert transaction.reservation_id == summary["reservation_id"]
    assert transaction.total_amount == Decimal("1000.00")
    assert transaction.payment_method == "card"

    supply_row = await flow.ledger.get_supply(PROPERTY_ID)
    assert supply_row.reserved_supply == 20
    assert await _transaction_count(test_db) == 1


async def test_start_investment_with_payment_ref(flow, supply):
    summary = await flow.start_investment(
        PROPERTY_ID, "user-1", 5, payment_method="bank_transfer", payment_ref="pi_9",
    )
    transaction = await flow.get_transaction(summary["transaction_id"])
    assert transaction.payment_ref == "pi_9"
    assert transaction.payment_method == "bank_transfer"


async def test_start_investment_replay_returns_same_transaction(flow, supply, test_db):
    first = await flow.start_investment(
        PROPERTY_ID, "user-1", 5, idempotency_key="checkout-1",
    )
    second = await flow.start_investment(
        PROPERTY_ID, "user-1", 5, idempotency_key="checkout-1",
    )
    assert first["transaction_id"] == second["transaction_id"]
    assert first["reservation_id"] == second["reservation_id"]
    assert await _transaction_count(test_db) == 1


async def test_replay_on_released_reservation_conflicts(flow, supply, test_db):
    reservation = await flow.ledger.reserve_tokens(
        PROPERTY_ID, "user-1", 5, idempotency_key="checkout-2",
    )
    await flow.ledger.release_reservation(reservation.id)

    with pytest.raises(ReservationConflictError):
        await flow.start_investment(
            PROPERTY_ID, "user-1", 5, idempotency_key="checkout-2",
        )
    assert await _transaction_count(test_db) == 0
    supply_row = await flow.ledger.get_supply(PROPERTY_ID)
    assert supply_row.available_supply == 1000
    assert supply_row.reserved_supply == 0


async def test_replay_on_expired_reservation_conflicts(flow, supply, test_db):
    await flow.ledger.reserve_tokens(
        PROPERTY_ID, "user-1", 5, idempotency_key="checkout-3",
    )
    later = datetime.now(timezone.utc) + timedelta(seconds=901)
    assert await flow.ledger.expire_stale_reservations(now=later) == 1

    with pytest.raises(ReservationConflictError):
        await flow.start_investment(
            PROPERTY_ID, "user-1", 5, idempotency_key="checkout-3",
        )
    assert await _transaction_count(test_db) == 0


async def test_replay_on_confirmed_reservation_conflicts(flow, supply, test_db):
    reservation = await flow.ledger.reserve_tokens(
        PROPERTY_ID, "user-1", 5, idempotency_key="checkout-4",
    )
    await flow.ledger.confirm_reservation(reservation.id, "pi_done")

    with pytest.raises(ReservationConflictError):
        await flow.start_investment(
            PROPERTY_ID, "user-1", 5, idempotency_key="checkout-4",
        )
    assert await _transaction_count(test_db) == 0


async def test_replay_after_release_returns_closed_transaction(flow, supply, test_db):
    first = await flow.start_investment(
        PROPERTY_ID, "user-1", 5, idempotency_key="checkout-5",
    )
    await flow.ledger.release_reservation(first["reservation_id"])

    again = await flow.start_investment(
        PROPERTY_ID, "user-1", 5, idempotency_key="checkout-5",
    )
    assert again["transaction_id"] == first["transaction_id"]
    assert again["status"] == "cancelled"
    assert await _transaction_count(test_db) == 1


async def test_payment_ref_at_start_and_attach_give_same_status(flow, supply):
    at_start = await flow.start_investment(
        PROPERTY_ID, "user-1", 5, payment_ref="pi_early",
    )
    later = await flow.start_investment(PROPERTY_ID, "user-2", 5)
    attached = await flow.attach_payment(later["transaction_id"], "pi_late")

    assert at_start["status"] == attached.status == "pending"


async def test_rejected_reservation_opens_no_transaction(flow, supply, test_db):
    with pytest.raises(InvestmentLimitError):
        await flow.start_investment(PROPERTY_ID, "user-1", 2000)
    assert await _transaction_count(test_db) == 0


async def test_sold_out_property_opens_no_transaction(flow, supply, test_db):
    await flow.start_investment(PROPERTY_ID, "user-1", 500)
    await flow.start_investment(PROPERTY_ID, "user-2", 500)
    with pytest.raises(InsufficientSupplyError):
        await flow.start_investment(PROPERTY_ID, "user-3", 1)
    assert await _transaction_count(test_db) == 2


async def test_duplicate_payment_ref_rolls_back_reservation(flow, supply, test_db):
    await flow.start_investment(PROPERTY_ID, "user-1", 5, payment_ref="pi_dup")
    with pytest.raises(ReservationConflictError):
        await flow.start_investment(PROPERTY_ID, "user-2", 7, payment_ref="pi_dup")

    supply_row = await flow.ledger.get_supply(PROPERTY_ID)
    assert supply_row.reserved_supply == 5
    assert supply_row.available_supply == 995


async def test_attach_payment_sets_ref_and_stays_pending(flow, supply):
    summary = await flow.start_investment(PROPERTY_ID, "user-1", 5)
    transaction = await flow.attach_payment(summary["transaction_id"], "pi_1")
    assert transaction.payment_ref == "pi_1"
    assert transaction.status == "pending"


async def test_attach_same_payment_ref_is_noop(flow, supply):
    summary = await flow.start_investment(PROPERTY_ID, "user-1", 5)
    await flow.attach_payment(summary["transaction_id"], "pi_1")
    again = await flow.attach_payment(summary["transaction_id"], "pi_1")
    assert again.payment_ref == "pi_1"


async def test_attach_different_payment_ref_conflicts(flow, supply):
    summary = await flow.start_investment(PROPERTY_ID, "user-1", 5)
    await flow.attach_payment(summary["transaction_id"], "pi_1")
    with pytest.raises(ReservationConflictError):
        await flow.attach_payment(summary["transaction_id"], "pi_2")


async def test_attach_to_unknown_transaction_is_not_found(flow):
    with pytest.raises(ResourceNotFoundError):
        await flow.attach_payment(uuid4(), "pi_1")


async def test_list_investments_filters_by_user(flow, supply):
    for user, ref in (("user-1", "pi_a"), ("user-2", "pi_b"), ("user-1", "pi_c")):
        summary = await flow.start_investment(PROPERTY_ID, user, 3, payment_ref=ref)
        await flow.ledger.confirm_reservation(summary["reservation_id"], ref)

    mine = await flow.list_investments(user_id="user-1")
    assert {i.payment_ref for i in mine} == {"pi_a", "pi_c"}
    assert len(await flow.list_investments(property_id=PROPERTY_ID)) == 3
    assert len(await flow.list_investments(limit=1)) == 1


async def test_confirm_completes_open_transaction(flow, supply):
    summary = await flow.start_investment(PROPERTY_ID, "user-1", 3)
    investment = await flow.ledger.confirm_reservation(summary["reservation_id"], "pi_x")

    transaction = await flow.get_transaction(summary["transaction_id"])
    assert transaction.status == "completed"
    assert transaction.payment_ref == "pi_x"
    assert investment.investment_transaction_id == transaction.id
    assert (await flow.get_investment(investment.id)).id == investment.id

"""Service test fixtures — a TokenLedger bound to the test session and a seeded property."""

from decimal import Decimal

import pytest

from settlement.services.token_ledger import TokenLedger

PROPERTY_ID = "prop-001"


@pytest.fixture
def ledger(test_db, settings):
    return TokenLedger(test_db, settings)


@pytest.fixture
async def supply(ledger):
    """1000 tokens at 50.00, minimum 1, maximum 500."""
    return await ledger.register_supply(
        PROPERTY_ID, 1000, Decimal("50.00"),
        minimum_investment=1, maximum_investment=500,
    )

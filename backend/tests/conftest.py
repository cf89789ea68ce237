"""Root conftest — shared test configuration and database fixtures.

Invariants:
    - Every test gets a fresh in-memory SQLite database
    - Settings are built explicitly (never read from .env)

Design Decisions:
    - SQLite in-memory: fast, no external dependency; the conditional UPDATEs the
      ledger relies on behave the same as on PostgreSQL
"""

import os

# Ensure tests never reach a real database or a real webhook secret
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///test.db",
)
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("RESERVATION_SWEEP_INTERVAL_SECONDS", "0")
os.environ.setdefault("LOG_FORMAT", "text")

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession, create_async_engine, async_sessionmaker,
)

from settlement.config import Settings  # noqa: E402
from settlement.db.base import Base  # noqa: E402
import settlement.models  # noqa: E402,F401

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        reservation_ttl_seconds=900,
        reservation_sweep_interval_seconds=0,
        payment_webhook_secret=WEBHOOK_SECRET,
        payment_webhook_tolerance_seconds=300,
        default_fee_percentage=Decimal("2.5"),
    )

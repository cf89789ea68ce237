"""API test fixtures — FastAPI test client over the in-memory database.

Invariants:
    - get_db and get_settings dependencies overridden per test
    - db_manager patched so the readiness probe sees the test engine
"""

import json
import time

import pytest
from httpx import ASGITransport, AsyncClient

from settlement.config import get_settings
from settlement.core.webhook_signature import build_signature_header
from settlement.infrastructure.database import get_db, DatabaseSessionManager
import settlement.infrastructure.database as db_module
from settlement.main import app


@pytest.fixture
async def client(test_engine, test_session_factory, settings):
    """FastAPI test client with DB and settings dependencies overridden."""
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings

    original_manager = db_module.db_manager
    fake_manager = DatabaseSessionManager.__new__(DatabaseSessionManager)
    fake_manager.engine = test_engine
    fake_manager._session_factory = test_session_factory
    db_module.db_manager = fake_manager

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    db_module.db_manager = original_manager


@pytest.fixture
async def property_supply(client):
    """Register prop-api: 1000 tokens at 25.00."""
    res = await client.post("/api/v1/supplies", json={
        "property_id": "prop-api",
        "total_supply": 1000,
        "token_price": "25.00",
    })
    assert res.status_code == 201
    return res.json()


@pytest.fixture
def signed_post(client, settings):
    """POST a payment event with a valid signature header."""
    async def _post(event: dict, secret: str | None = None, timestamp: int | None = None):
        body = json.dumps(event).encode()
        header = build_signature_header(
            body,
            secret or settings.payment_webhook_secret,
            timestamp if timestamp is not None else int(time.time()),
        )
        return await client.post(
            "/api/v1/webhooks/payments",
            content=body,
            headers={"payment-signature": header, "content-type": "application/json"},
        )
    return _post

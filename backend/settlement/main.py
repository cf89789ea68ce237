"""Token Ledger API — FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map LedgerError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Database and reservation sweeper started on startup via lifespan, stopped on shutdown

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Sweeper runs in-process as an asyncio task; reservation_sweep_interval_seconds=0
      disables it (an external cron can call POST /api/v1/reservations/expire instead)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from settlement.api.error_handlers import register_error_handlers
from settlement.api.routes import (
    health, investments, payment_webhooks, reservations, supplies,
)
from settlement.config import get_settings
from settlement.infrastructure.database import init_db
from settlement.infrastructure.observability import setup_logging
from settlement.services.reservation_sweeper import ReservationSweeper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    manager = init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    sweeper = None
    if settings.reservation_sweep_interval_seconds > 0:
        sweeper = ReservationSweeper(manager.session, settings)
        sweeper.start()
    logger.info("Token Ledger API started")
    yield
    logger.info("Token Ledger API shutting down")
    if sweeper:
        await sweeper.stop()
    await manager.dispose()


app = FastAPI(
    title="Token Ledger API", version="1.0.0", lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(supplies.router)
app.include_router(reservations.router)
app.include_router(investments.router)
app.include_router(payment_webhooks.router)

register_error_handlers(app)

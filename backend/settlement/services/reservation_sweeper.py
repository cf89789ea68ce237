"""Reservation Sweeper — periodically expires pending reservations past their TTL.

Invariants:
    - Each sweep uses a fresh DB session from the injected session factory
    - A failing sweep is logged and the loop keeps running; cancellation stops it
    - start() is idempotent; stop() waits for the task to finish
"""

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config import Settings
from settlement.services.token_ledger import TokenLedger

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class ReservationSweeper:
    """Background asyncio task releasing expired reservations."""

    def __init__(
        self,
        session_factory: SessionFactory,
        settings: Settings,
        interval_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._interval = (
            interval_seconds if interval_seconds is not None
            else settings.reservation_sweep_interval_seconds
        )
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        async with self._session_factory() as db:
            return await TokenLedger(db, self._settings).expire_stale_reservations()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="reservation-sweeper")
        logger.info(f"Reservation sweeper started (every {self._interval}s)")

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Reservation sweeper stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Reservation sweep failed: {e}", exc_info=True)
            await asyncio.sleep(self._interval)

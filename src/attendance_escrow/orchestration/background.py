"""Periodic background jobs started from the FastAPI lifespan.

Jobs:
    event_sweep     published -> live -> ended on schedule
    retention       ended -> archived after the retention window
    no_shows        forfeit stakes of attendees who never checked in
    reconciliation  repair tickets stuck behind the ledger
    escrow_consumer drain TICKET_CHECKED_IN into stake releases

Each run opens its own unit of work. A failing run is logged and rolled
back; the next tick picks up the same work again.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from attendance_escrow.infrastructure.database.engine import session_scope
from attendance_escrow.logging_config import get_logger
from attendance_escrow.services.escrow_coordinator import EscrowSettlementCoordinator
from attendance_escrow.services.event_bus import DomainEventBus, EventConsumer
from attendance_escrow.services.event_lifecycle import EventLifecycleEngine

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from contextlib import AbstractAsyncContextManager
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from attendance_escrow.config import Settings
    from attendance_escrow.domain.ledger_protocol import EscrowLedger
    from attendance_escrow.domain.models import BatchResult, ReconciliationReport, SweepResult
    from attendance_escrow.services.confirmation_cache import ConfirmationCache

    SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

logger = get_logger(__name__)


class BackgroundJobs:
    """Owns the periodic asyncio tasks; each ``run_*`` method is one tick."""

    def __init__(
        self,
        settings: Settings,
        ledger: EscrowLedger,
        cache: ConfirmationCache,
        scope: SessionScope = session_scope,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._ledger = ledger
        self._cache = cache
        self._scope = scope
        self._clock = clock
        self._tasks: list[asyncio.Task] = []

    def _coordinator(self, session: AsyncSession) -> EscrowSettlementCoordinator:
        return EscrowSettlementCoordinator(
            session, self._ledger, self._cache, self._settings, clock=self._clock
        )

    # ------------------------------------------------------------------
    # Single runs
    # ------------------------------------------------------------------

    async def run_event_sweep(self) -> SweepResult:
        async with self._scope() as session:
            return await EventLifecycleEngine(session, clock=self._clock).sweep()

    async def run_retention(self) -> SweepResult:
        async with self._scope() as session:
            return await EventLifecycleEngine(session, clock=self._clock).apply_retention(
                self._settings.event_retention
            )

    async def run_no_shows(self) -> BatchResult:
        async with self._scope() as session:
            return await self._coordinator(session).process_no_shows()

    async def run_reconciliation(self) -> ReconciliationReport:
        async with self._scope() as session:
            return await self._coordinator(session).reconcile()

    async def drain_escrow_consumer(self) -> int:
        """Deliver pending check-ins to the coordinator; offsets commit with the releases."""
        async with self._scope() as session:
            consumer = EventConsumer(
                EscrowSettlementCoordinator.CONSUMER_NAME,
                DomainEventBus(session, gap_timeout=self._settings.consumer_gap_timeout),
                self._coordinator(session).handlers,
            )
            return await consumer.drain()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def start(self) -> None:
        s = self._settings
        schedule: list[tuple[str, float, Callable[[], Awaitable[Any]]]] = [
            ("event_sweep", s.event_sweep_interval_seconds, self.run_event_sweep),
            ("retention", s.retention_interval_seconds, self.run_retention),
            ("reconciliation", s.reconcile_interval_seconds, self.run_reconciliation),
            ("escrow_consumer", s.consumer_poll_interval_seconds, self.drain_escrow_consumer),
        ]
        if s.auto_forfeit_no_shows:
            schedule.append(("no_shows", s.no_show_interval_seconds, self.run_no_shows))

        for name, interval, job in schedule:
            self._tasks.append(asyncio.create_task(self._loop(name, interval, job), name=name))
        logger.info("background.started", jobs=[name for name, _, _ in schedule])

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("background.stopped")

    @staticmethod
    async def _loop(name: str, interval: float, job: Callable[[], Awaitable[Any]]) -> None:
        log = logger.bind(job=name)
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("background.job_failed")
            await asyncio.sleep(interval)

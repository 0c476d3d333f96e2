"""Tests for BackgroundJobs: one tick per job, each in its own unit of work."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta

import pytest
from factories import (
    ATTENDEE_ID,
    ATTENDEE_WALLET,
    ORGANIZER_WALLET,
    STAKE,
    published_event,
    stake_on_chain,
)

from attendance_escrow.domain.enums import EventStatus, TicketStatus
from attendance_escrow.ledger import to_wei
from attendance_escrow.orchestration import BackgroundJobs
from attendance_escrow.services.escrow_coordinator import EscrowSettlementCoordinator
from attendance_escrow.services.event_lifecycle import EventLifecycleEngine
from attendance_escrow.services.ticket_lifecycle import TicketLifecycleEngine


@pytest.fixture
def scope(session_factory):
    @asynccontextmanager
    async def _scope():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return _scope


@pytest.fixture
def jobs(settings, ledger, cache, scope, clock) -> BackgroundJobs:
    return BackgroundJobs(settings, ledger, cache, scope=scope, clock=clock)


async def _staked_ticket(scope, ledger, cache, settings, clock):
    async with scope() as session:
        event = await published_event(EventLifecycleEngine(session, clock=clock), require_stake=True)
        ticket = await TicketLifecycleEngine(session, clock=clock).register(
            event.id, ATTENDEE_ID, wallet_address=ATTENDEE_WALLET
        )
    tx_hash = await stake_on_chain(ledger, event)
    async with scope() as session:
        coordinator = EscrowSettlementCoordinator(session, ledger, cache, settings, clock=clock)
        await coordinator.verify_stake(ticket.id, tx_hash)
    return event, ticket


class TestBackgroundJobs:
    @pytest.mark.asyncio
    async def test_check_in_release_through_consumer(
        self, jobs, scope, ledger, cache, settings, clock
    ) -> None:
        event, ticket = await _staked_ticket(scope, ledger, cache, settings, clock)
        clock.set(event.scheduled_start_at + timedelta(minutes=5))

        sweep = await jobs.run_event_sweep()
        assert sweep.went_live == [event.id]

        async with scope() as session:
            await TicketLifecycleEngine(session, clock=clock).check_in(ticket.id, scanner_id="door_1")

        assert await jobs.drain_escrow_consumer() == 1
        assert await jobs.drain_escrow_consumer() == 0
        assert ledger.balance_of(ORGANIZER_WALLET) == to_wei(STAKE)

    @pytest.mark.asyncio
    async def test_no_shows_and_retention(self, jobs, scope, ledger, cache, settings, clock) -> None:
        event, ticket = await _staked_ticket(scope, ledger, cache, settings, clock)
        clock.set(event.scheduled_end_at + timedelta(hours=2))
        await jobs.run_event_sweep()

        result = await jobs.run_no_shows()
        assert result.succeeded == [ticket.id]

        clock.set(event.scheduled_end_at + settings.event_retention + timedelta(minutes=1))
        retention = await jobs.run_retention()
        assert retention.archived == [event.id]

        async with scope() as session:
            assert (
                await EventLifecycleEngine(session, clock=clock).get(event.id)
            ).status == EventStatus.ARCHIVED
            assert (
                await TicketLifecycleEngine(session, clock=clock).get(ticket.id)
            ).status == TicketStatus.FORFEITED

    @pytest.mark.asyncio
    async def test_reconciliation_tick(self, jobs, clock) -> None:
        report = await jobs.run_reconciliation()
        assert report.examined == 0

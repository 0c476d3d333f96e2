"""Tests for the TicketLifecycleEngine."""

from __future__ import annotations

from datetime import timedelta

import pytest
from factories import (
    ATTENDEE_ID,
    ATTENDEE_WALLET,
    ORGANIZER_ID,
    published_event,
    schedule,
    stake_on_chain,
)

from attendance_escrow.domain.enums import TERMINAL_TICKET_STATUSES, DomainEventType, TicketStatus
from attendance_escrow.domain.exceptions import (
    CapacityExceededError,
    ConflictError,
    InvalidTransitionError,
    TicketNotFoundError,
    UnauthorizedError,
)
from attendance_escrow.domain.models import EventOptions
from attendance_escrow.services.event_bus import DomainEventBus


class TestRegistration:
    @pytest.mark.asyncio
    async def test_free_event_scenario(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine)

        ticket = await ticket_engine.register(event.id, "user_1")
        assert ticket.status == TicketStatus.ISSUED

        result = await ticket_engine.check_in_by_qr(ticket.qr_token, event.id, "door_1")
        assert result.status == TicketStatus.CHECKED_IN
        assert not result.already_checked_in

        history = await ticket_engine.history(ticket.id)
        assert [e.type for e in history] == [
            DomainEventType.TICKET_REGISTERED,
            DomainEventType.TICKET_ISSUED,
            DomainEventType.TICKET_CHECKED_IN,
        ]

    @pytest.mark.asyncio
    async def test_stake_event_awaits_stake(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine, require_stake=True)
        ticket = await ticket_engine.register(event.id, "user_1", wallet_address=ATTENDEE_WALLET)

        assert ticket.status == TicketStatus.APPROVED
        assert ticket.stake_wallet_address == ATTENDEE_WALLET.lower()

    @pytest.mark.asyncio
    async def test_registration_closed_on_draft(self, event_engine, ticket_engine) -> None:
        event = await event_engine.create(ORGANIZER_ID, schedule(), EventOptions(title="Draft"))
        with pytest.raises(InvalidTransitionError, match="registration is closed"):
            await ticket_engine.register(event.id, "user_1")

    @pytest.mark.asyncio
    async def test_duplicate_registration(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine)
        await ticket_engine.register(event.id, "user_1")

        with pytest.raises(ConflictError) as exc_info:
            await ticket_engine.register(event.id, "user_1")
        assert exc_info.value.code == "ALREADY_REGISTERED"

    @pytest.mark.asyncio
    async def test_capacity(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine, require_approval=True, capacity=1)
        first = await ticket_engine.register(event.id, "user_1")

        with pytest.raises(CapacityExceededError):
            await ticket_engine.register(event.id, "user_2")

        # A rejected ticket gives its seat back
        await ticket_engine.reject(first.id, ORGANIZER_ID)
        second = await ticket_engine.register(event.id, "user_2")
        assert second.status == TicketStatus.PENDING_APPROVAL


class TestApproval:
    @pytest.mark.asyncio
    async def test_approval_then_reject(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine, require_approval=True)
        ticket = await ticket_engine.register(event.id, "user_1")
        assert ticket.status == TicketStatus.PENDING_APPROVAL

        ticket = await ticket_engine.reject(ticket.id, ORGANIZER_ID, reason="full")
        assert ticket.status == TicketStatus.REJECTED

        with pytest.raises(InvalidTransitionError):
            await ticket_engine.check_in(ticket.id, scanner_id="door_1")
        assert (await ticket_engine.get(ticket.id)).status == TicketStatus.REJECTED

    @pytest.mark.asyncio
    async def test_approve_issues_free_ticket(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine, require_approval=True)
        ticket = await ticket_engine.register(event.id, "user_1")

        ticket = await ticket_engine.approve(ticket.id, ORGANIZER_ID)
        assert ticket.status == TicketStatus.ISSUED
        assert ticket.previous_status == TicketStatus.APPROVED

        # Approving again is a no-op
        again = await ticket_engine.approve(ticket.id, ORGANIZER_ID)
        assert again.status == TicketStatus.ISSUED

    @pytest.mark.asyncio
    async def test_approve_stake_ticket_waits_for_stake(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine, require_approval=True, require_stake=True)
        ticket = await ticket_engine.register(event.id, "user_1", wallet_address=ATTENDEE_WALLET)

        ticket = await ticket_engine.approve(ticket.id, ORGANIZER_ID)
        assert ticket.status == TicketStatus.APPROVED

    @pytest.mark.asyncio
    async def test_only_organizer_approves(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine, require_approval=True)
        ticket = await ticket_engine.register(event.id, "user_1")
        with pytest.raises(UnauthorizedError):
            await ticket_engine.approve(ticket.id, "user_1")


class TestCheckIn:
    @pytest.mark.asyncio
    async def test_check_in_is_idempotent(self, session, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine)
        ticket = await ticket_engine.register(event.id, "user_1")

        first = await ticket_engine.check_in(ticket.id, scanner_id="door_1")
        second = await ticket_engine.check_in(ticket.id, scanner_id="door_2")

        assert first.status == second.status == TicketStatus.CHECKED_IN
        assert second.already_checked_in
        assert second.checked_in_at == first.checked_in_at

        bus = DomainEventBus(session)
        checked_in = [
            e
            async for e in bus.subscribe("inspector", [DomainEventType.TICKET_CHECKED_IN])
        ]
        assert len(checked_in) == 1
        assert checked_in[0].payload["from_status"] == TicketStatus.ISSUED
        assert checked_in[0].payload["scanner_id"] == "door_1"

    @pytest.mark.asyncio
    async def test_unknown_qr_token(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine)
        with pytest.raises(TicketNotFoundError):
            await ticket_engine.check_in_by_qr("nope", event.id, "door_1")

    @pytest.mark.asyncio
    async def test_approved_stake_ticket_cannot_check_in(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine, require_stake=True)
        ticket = await ticket_engine.register(event.id, "user_1", wallet_address=ATTENDEE_WALLET)
        with pytest.raises(InvalidTransitionError):
            await ticket_engine.check_in(ticket.id, scanner_id="door_1")


class TestRevoke:
    @pytest.mark.asyncio
    async def test_revoke_issued(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine)
        ticket = await ticket_engine.register(event.id, "user_1")

        ticket = await ticket_engine.revoke(ticket.id, ORGANIZER_ID, reason="duplicate account")
        assert ticket.status == TicketStatus.REVOKED

        info = await ticket_engine.status_info(ticket.id)
        assert info.is_terminal
        assert info.allowed_transitions == []
        assert info.lifecycle.previous_status == TicketStatus.ISSUED

    @pytest.mark.asyncio
    async def test_terminal_ticket_cannot_be_revoked(self, event_engine, ticket_engine) -> None:
        event = await published_event(event_engine)
        ticket = await ticket_engine.register(event.id, "user_1")
        await ticket_engine.check_in(ticket.id, scanner_id="door_1")

        with pytest.raises(InvalidTransitionError):
            await ticket_engine.revoke(ticket.id, ORGANIZER_ID)


TERMINAL_NOOPS = {
    (TicketStatus.REJECTED, "reject"),
    (TicketStatus.CHECKED_IN, "check_in"),
}


async def _terminal_ticket(status, event_engine, ticket_engine, ledger, coordinator, clock):
    """Drive a fresh ticket into ``status`` through its normal path."""
    if status == TicketStatus.REJECTED:
        event = await published_event(event_engine, require_approval=True)
        ticket = await ticket_engine.register(event.id, ATTENDEE_ID)
        return await ticket_engine.reject(ticket.id, ORGANIZER_ID)

    if status in (TicketStatus.CHECKED_IN, TicketStatus.REVOKED):
        event = await published_event(event_engine)
        ticket = await ticket_engine.register(event.id, ATTENDEE_ID)
        if status == TicketStatus.CHECKED_IN:
            await ticket_engine.check_in(ticket.id, scanner_id="door_1")
        else:
            await ticket_engine.revoke(ticket.id, ORGANIZER_ID)
        return await ticket_engine.get(ticket.id)

    event = await published_event(event_engine, require_stake=True)
    ticket = await ticket_engine.register(event.id, ATTENDEE_ID, wallet_address=ATTENDEE_WALLET)
    await coordinator.verify_stake(ticket.id, await stake_on_chain(ledger, event))
    if status == TicketStatus.REFUNDED:
        return await coordinator.refund(ticket.id, ATTENDEE_ID)

    clock.set(event.scheduled_end_at + timedelta(minutes=5))
    await event_engine.sweep()
    return await coordinator.forfeit(ticket.id, ORGANIZER_ID)


def _attempt(action, ticket_engine, coordinator, ticket_id):
    calls = {
        "approve": lambda: ticket_engine.approve(ticket_id, ORGANIZER_ID),
        "reject": lambda: ticket_engine.reject(ticket_id, ORGANIZER_ID),
        "check_in": lambda: ticket_engine.check_in(ticket_id, scanner_id="door_2"),
        "revoke": lambda: ticket_engine.revoke(ticket_id, ORGANIZER_ID),
        "refund": lambda: coordinator.refund(ticket_id, ATTENDEE_ID),
        "forfeit": lambda: coordinator.forfeit(ticket_id, ORGANIZER_ID),
    }
    return calls[action]()


class TestTerminalStatuses:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", sorted(TERMINAL_TICKET_STATUSES))
    @pytest.mark.parametrize(
        "action", ["approve", "reject", "check_in", "revoke", "refund", "forfeit"]
    )
    async def test_terminal_ticket_never_moves(
        self, status, action, event_engine, ticket_engine, ledger, coordinator, clock
    ) -> None:
        ticket = await _terminal_ticket(
            status, event_engine, ticket_engine, ledger, coordinator, clock
        )
        assert ticket.status == status
        changed_at = ticket.status_changed_at
        published = len(await ticket_engine.history(ticket.id))

        if (status, action) in TERMINAL_NOOPS:
            await _attempt(action, ticket_engine, coordinator, ticket.id)
        else:
            with pytest.raises(InvalidTransitionError):
                await _attempt(action, ticket_engine, coordinator, ticket.id)

        ticket = await ticket_engine.get(ticket.id)
        assert ticket.status == status
        assert ticket.status_changed_at == changed_at
        assert len(await ticket_engine.history(ticket.id)) == published

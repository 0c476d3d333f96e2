"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Status changes go through ``compare_and_set_status``: a single
``UPDATE ... WHERE id = :id AND status = :expected``. Exactly one of any
set of racing writers sees rowcount 1; the others get False and a
refreshed object showing the winner's state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update

from attendance_escrow.domain.enums import EventStatus, TicketStatus
from attendance_escrow.infrastructure.database.orm_models import (
    ConsumerOffset,
    DomainEventRecord,
    Event,
    Ticket,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession


class EventRepository:
    """Data access for events."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, event: Event) -> Event:
        """Insert a new event."""
        self._session.add(event)
        await self._session.flush()
        return event

    async def get_by_id(self, event_id: uuid.UUID) -> Event | None:
        """Fetch an event by its UUID."""
        result = await self._session.execute(select(Event).where(Event.id == event_id))
        return result.scalar_one_or_none()

    async def list_due_to_go_live(self, now: datetime) -> list[Event]:
        """Published events whose scheduled start has passed."""
        result = await self._session.execute(
            select(Event)
            .where(
                Event.status == EventStatus.PUBLISHED.value,
                Event.scheduled_start_at <= now,
            )
            .order_by(Event.scheduled_start_at.asc())
        )
        return list(result.scalars().all())

    async def list_due_to_end(self, now: datetime) -> list[Event]:
        """Live events whose scheduled end has passed."""
        result = await self._session.execute(
            select(Event)
            .where(
                Event.status == EventStatus.LIVE.value,
                Event.scheduled_end_at <= now,
            )
            .order_by(Event.scheduled_end_at.asc())
        )
        return list(result.scalars().all())

    async def list_ended_before(self, cutoff: datetime) -> list[Event]:
        """Ended events whose scheduled end is at or before ``cutoff``."""
        result = await self._session.execute(
            select(Event)
            .where(
                Event.status == EventStatus.ENDED.value,
                Event.scheduled_end_at <= cutoff,
            )
            .order_by(Event.scheduled_end_at.asc())
        )
        return list(result.scalars().all())

    async def compare_and_set_status(
        self,
        event: Event,
        expected: EventStatus,
        new_status: EventStatus,
        at: datetime,
    ) -> bool:
        """Move ``event`` from ``expected`` to ``new_status`` if nobody beat us to it."""
        result = await self._session.execute(
            update(Event)
            .where(Event.id == event.id, Event.status == expected.value)
            .values(
                status=new_status.value,
                previous_status=expected.value,
                transitioned_at=at,
                updated_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(event)
        return result.rowcount == 1


class TicketRepository:
    """Data access for tickets."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, ticket: Ticket) -> Ticket:
        """Insert a new ticket."""
        self._session.add(ticket)
        await self._session.flush()
        return ticket

    async def get_by_id(self, ticket_id: uuid.UUID) -> Ticket | None:
        """Fetch a ticket by its UUID."""
        result = await self._session.execute(select(Ticket).where(Ticket.id == ticket_id))
        return result.scalar_one_or_none()

    async def get_by_qr_token(self, qr_token: str, event_id: uuid.UUID) -> Ticket | None:
        """Resolve a check-in credential scoped to one event."""
        result = await self._session.execute(
            select(Ticket).where(Ticket.qr_token == qr_token, Ticket.event_id == event_id)
        )
        return result.scalar_one_or_none()

    async def get_by_event_and_user(self, event_id: uuid.UUID, user_id: str) -> Ticket | None:
        result = await self._session.execute(
            select(Ticket).where(Ticket.event_id == event_id, Ticket.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_by_event_and_wallet(
        self, event_id: uuid.UUID, wallet_address: str
    ) -> Ticket | None:
        result = await self._session.execute(
            select(Ticket).where(
                Ticket.event_id == event_id,
                func.lower(Ticket.stake_wallet_address) == wallet_address.lower(),
            )
        )
        return result.scalars().first()

    async def count_for_event(
        self,
        event_id: uuid.UUID,
        statuses: Iterable[TicketStatus] | None = None,
        exclude: Iterable[TicketStatus] | None = None,
    ) -> int:
        """Count tickets for an event, optionally filtered by status."""
        stmt = select(func.count()).select_from(Ticket).where(Ticket.event_id == event_id)
        if statuses is not None:
            stmt = stmt.where(Ticket.status.in_([s.value for s in statuses]))
        if exclude is not None:
            stmt = stmt.where(Ticket.status.not_in([s.value for s in exclude]))
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def list_stuck(
        self,
        status: TicketStatus,
        changed_before: datetime,
        require_stake: bool = True,
    ) -> list[Ticket]:
        """Tickets sitting in ``status`` since before ``changed_before``."""
        result = await self._session.execute(
            select(Ticket)
            .join(Event, Event.id == Ticket.event_id)
            .where(
                Ticket.status == status.value,
                Ticket.status_changed_at <= changed_before,
                Event.require_stake == require_stake,
            )
            .order_by(Ticket.status_changed_at.asc())
        )
        return list(result.scalars().all())

    async def list_unsettled_check_ins(self, changed_before: datetime) -> list[Ticket]:
        """Checked-in tickets that came from ``staked`` but never recorded a settlement."""
        result = await self._session.execute(
            select(Ticket)
            .where(
                Ticket.status == TicketStatus.CHECKED_IN.value,
                Ticket.previous_status == TicketStatus.STAKED.value,
                Ticket.escrow_settled_at.is_(None),
                Ticket.status_changed_at <= changed_before,
            )
            .order_by(Ticket.status_changed_at.asc())
        )
        return list(result.scalars().all())

    async def list_staked_for_events(self, event_ids: Iterable[uuid.UUID]) -> list[Ticket]:
        ids = list(event_ids)
        if not ids:
            return []
        result = await self._session.execute(
            select(Ticket)
            .where(Ticket.event_id.in_(ids), Ticket.status == TicketStatus.STAKED.value)
            .order_by(Ticket.created_at.asc())
        )
        return list(result.scalars().all())

    async def compare_and_set_status(
        self,
        ticket: Ticket,
        expected: TicketStatus,
        new_status: TicketStatus,
        at: datetime,
        **values: Any,
    ) -> bool:
        """Move ``ticket`` from ``expected`` to ``new_status``, writing ``values`` alongside."""
        result = await self._session.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.status == expected.value)
            .values(
                status=new_status.value,
                previous_status=expected.value,
                status_changed_at=at,
                updated_at=at,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(ticket)
        return result.rowcount == 1

    async def mark_settled(self, ticket: Ticket, tx_hash: str | None, at: datetime) -> bool:
        """Record the organizer payout once; False if it was already recorded."""
        result = await self._session.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.escrow_settled_at.is_(None))
            .values(settlement_tx_hash=tx_hash, escrow_settled_at=at, updated_at=at)
            .execution_options(synchronize_session=False)
        )
        await self._session.refresh(ticket)
        return result.rowcount == 1


class DomainEventRepository:
    """Data access for the append-only domain event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def next_version(self, aggregate_type: str, aggregate_id: uuid.UUID) -> int:
        result = await self._session.execute(
            select(func.coalesce(func.max(DomainEventRecord.version), 0)).where(
                DomainEventRecord.aggregate_type == aggregate_type,
                DomainEventRecord.aggregate_id == aggregate_id,
            )
        )
        return int(result.scalar_one()) + 1

    async def append(self, record: DomainEventRecord) -> DomainEventRecord:
        """Append a new event. This is the ONLY write operation allowed."""
        self._session.add(record)
        await self._session.flush()
        return record

    async def list_after(self, position: int, limit: int = 100) -> list[DomainEventRecord]:
        """Events past ``position`` in log order, every type included.

        Consumers filter by type themselves so they can see holes in the
        position sequence.
        """
        result = await self._session.execute(
            select(DomainEventRecord)
            .where(DomainEventRecord.position > position)
            .order_by(DomainEventRecord.position.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_for_aggregate(
        self, aggregate_type: str, aggregate_id: uuid.UUID
    ) -> list[DomainEventRecord]:
        """Full history of one aggregate in version order."""
        result = await self._session.execute(
            select(DomainEventRecord)
            .where(
                DomainEventRecord.aggregate_type == aggregate_type,
                DomainEventRecord.aggregate_id == aggregate_id,
            )
            .order_by(DomainEventRecord.version.asc())
        )
        return list(result.scalars().all())


class ConsumerOffsetRepository:
    """Data access for per-consumer log offsets."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_position(self, consumer_name: str) -> int:
        offset = await self._session.get(ConsumerOffset, consumer_name)
        return offset.last_position if offset is not None else 0

    async def advance(self, consumer_name: str, position: int) -> int:
        """Move the offset forward to ``position``; never moves it back."""
        offset = await self._session.get(ConsumerOffset, consumer_name)
        if offset is None:
            offset = ConsumerOffset(consumer_name=consumer_name, last_position=position)
            self._session.add(offset)
        elif position > offset.last_position:
            offset.last_position = position
        await self._session.flush()
        return offset.last_position

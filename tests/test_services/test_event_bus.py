"""Tests for the DomainEventBus and EventConsumer."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from factories import NOW

from attendance_escrow.domain.enums import AggregateType, DomainEventType
from attendance_escrow.domain.models import Actor
from attendance_escrow.infrastructure.database.orm_models import DomainEventRecord
from attendance_escrow.services.event_bus import DomainEventBus, EventConsumer

ACTOR = Actor.system("test")
CHECKED_IN = [DomainEventType.TICKET_CHECKED_IN]


async def _publish(bus: DomainEventBus, aggregate_id: uuid.UUID, event_type: DomainEventType):
    return await bus.publish(
        event_type,
        AggregateType.TICKET,
        aggregate_id,
        payload={"from_status": "staked"},
        actor=ACTOR,
        occurred_at=NOW,
    )


async def _commit_at(session, position: int) -> DomainEventRecord:
    """Insert a check-in at ``position`` as a late-committing transaction would."""
    record = DomainEventRecord(
        position=position,
        aggregate_type=AggregateType.TICKET.value,
        aggregate_id=uuid.uuid4(),
        version=1,
        event_type=DomainEventType.TICKET_CHECKED_IN.value,
        payload={"from_status": "issued"},
        actor=str(ACTOR),
        occurred_at=NOW,
    )
    session.add(record)
    await session.flush()
    return record


class TestPublish:
    @pytest.mark.asyncio
    async def test_versions_and_positions_increase(self, session) -> None:
        bus = DomainEventBus(session)
        ticket_id = uuid.uuid4()

        first = await _publish(bus, ticket_id, DomainEventType.TICKET_REGISTERED)
        second = await _publish(bus, ticket_id, DomainEventType.TICKET_ISSUED)

        assert (first.version, second.version) == (1, 2)
        assert second.position > first.position
        assert first.actor == "system:test"

    @pytest.mark.asyncio
    async def test_stream_is_per_aggregate(self, session) -> None:
        bus = DomainEventBus(session)
        a, b = uuid.uuid4(), uuid.uuid4()
        await _publish(bus, a, DomainEventType.TICKET_REGISTERED)
        await _publish(bus, b, DomainEventType.TICKET_REGISTERED)
        await _publish(bus, a, DomainEventType.TICKET_ISSUED)

        history = await bus.stream(AggregateType.TICKET, a)
        assert [e.type for e in history] == [
            DomainEventType.TICKET_REGISTERED,
            DomainEventType.TICKET_ISSUED,
        ]


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_filters_by_type_and_offset(self, session) -> None:
        bus = DomainEventBus(session)
        ticket_id = uuid.uuid4()
        await _publish(bus, ticket_id, DomainEventType.TICKET_REGISTERED)
        checked_in = await _publish(bus, ticket_id, DomainEventType.TICKET_CHECKED_IN)

        seen = [e async for e in bus.subscribe("c1", [DomainEventType.TICKET_CHECKED_IN])]
        assert [e.id for e in seen] == [checked_in.id]

        await bus.acknowledge("c1", checked_in)
        assert await bus.offset("c1") == checked_in.position
        assert [e async for e in bus.subscribe("c1", [DomainEventType.TICKET_CHECKED_IN])] == []

    @pytest.mark.asyncio
    async def test_acknowledge_never_moves_back(self, session) -> None:
        bus = DomainEventBus(session)
        ticket_id = uuid.uuid4()
        older = await _publish(bus, ticket_id, DomainEventType.TICKET_REGISTERED)
        newer = await _publish(bus, ticket_id, DomainEventType.TICKET_ISSUED)

        await bus.acknowledge("c1", newer)
        assert await bus.acknowledge("c1", older) == newer.position

    @pytest.mark.asyncio
    async def test_other_types_advance_offset(self, session) -> None:
        bus = DomainEventBus(session)
        registered = await _publish(bus, uuid.uuid4(), DomainEventType.TICKET_REGISTERED)

        assert [e async for e in bus.subscribe("c1", CHECKED_IN)] == []
        assert await bus.offset("c1") == registered.position

    @pytest.mark.asyncio
    async def test_unacknowledged_event_holds_offset(self, session) -> None:
        bus = DomainEventBus(session)
        ticket_id = uuid.uuid4()
        checked_in = await _publish(bus, ticket_id, DomainEventType.TICKET_CHECKED_IN)
        await _publish(bus, ticket_id, DomainEventType.TICKET_REVOKED)

        seen = [e async for e in bus.subscribe("c1", CHECKED_IN)]

        assert [e.id for e in seen] == [checked_in.id]
        assert await bus.offset("c1") == 0


class TestPositionGaps:
    @pytest.mark.asyncio
    async def test_stream_stops_at_recent_gap(self, session) -> None:
        bus = DomainEventBus(session)
        first = await _publish(bus, uuid.uuid4(), DomainEventType.TICKET_CHECKED_IN)
        await _commit_at(session, first.position + 2)

        seen = [e.position async for e in bus.subscribe("c1", CHECKED_IN)]

        assert seen == [first.position]

    @pytest.mark.asyncio
    async def test_filled_gap_is_delivered_in_order(self, session) -> None:
        bus = DomainEventBus(session)
        first = await _publish(bus, uuid.uuid4(), DomainEventType.TICKET_CHECKED_IN)
        await _commit_at(session, first.position + 2)
        consumer_events: list[int] = []

        async def handler(e) -> None:
            consumer_events.append(e.position)

        consumer = EventConsumer("escrow", bus, {DomainEventType.TICKET_CHECKED_IN: handler})
        assert await consumer.drain() == 1
        assert await bus.offset("escrow") == first.position

        await _commit_at(session, first.position + 1)
        assert await consumer.drain() == 2

        assert consumer_events == [first.position, first.position + 1, first.position + 2]
        assert await bus.offset("escrow") == first.position + 2

    @pytest.mark.asyncio
    async def test_gap_older_than_timeout_is_skipped(self, session) -> None:
        bus = DomainEventBus(
            session,
            gap_timeout=timedelta(seconds=30),
            clock=lambda: datetime.now(UTC) + timedelta(minutes=1),
        )
        first = await _publish(bus, uuid.uuid4(), DomainEventType.TICKET_CHECKED_IN)
        after_gap = await _commit_at(session, first.position + 2)

        seen = [e.position async for e in bus.subscribe("c1", CHECKED_IN)]

        assert seen == [first.position, after_gap.position]


class TestEventConsumer:
    @pytest.mark.asyncio
    async def test_failed_handler_is_redelivered(self, session) -> None:
        bus = DomainEventBus(session)
        event = await _publish(bus, uuid.uuid4(), DomainEventType.TICKET_CHECKED_IN)
        delivered: list[uuid.UUID] = []
        failures = {"left": 1}

        async def handler(e) -> None:
            if failures["left"]:
                failures["left"] -= 1
                raise RuntimeError("boom")
            delivered.append(e.id)

        consumer = EventConsumer("escrow", bus, {DomainEventType.TICKET_CHECKED_IN: handler})

        with pytest.raises(RuntimeError):
            await consumer.drain()
        assert await bus.offset("escrow") == 0

        assert await consumer.drain() == 1
        assert delivered == [event.id]
        assert await bus.offset("escrow") == event.position

    @pytest.mark.asyncio
    async def test_independent_offsets(self, session) -> None:
        bus = DomainEventBus(session)
        await _publish(bus, uuid.uuid4(), DomainEventType.TICKET_CHECKED_IN)

        async def noop(e) -> None:
            return None

        handlers = {DomainEventType.TICKET_CHECKED_IN: noop}
        assert await EventConsumer("a", bus, handlers).drain() == 1
        assert await EventConsumer("b", bus, handlers).drain() == 1
        assert await EventConsumer("a", bus, handlers).drain() == 0

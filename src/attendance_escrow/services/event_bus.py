"""Domain Event Bus — append-only log with pull-based consumers.

Publishing writes a row into ``domain_events`` inside the caller's session,
so a transition and the event announcing it commit (or roll back) together.
Consumers pull events past their own offset and acknowledge them one by one;
delivery is at-least-once, so every handler must be idempotent.

Ordering: ``position`` is global and monotonic, so events of one aggregate
are delivered in publish order. Consumers must not rely on cross-aggregate
order.

Gaps: positions come from a sequence, so a transaction holding position 10
can commit after one holding 11. A subscription stops at the first hole in
the sequence and only reads past it once the event after the hole has been
recorded for ``gap_timeout``; a hole that old is a rolled-back insert. The
timeout must exceed the longest transaction that publishes events.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError

from attendance_escrow.domain.enums import AggregateType, DomainEventType
from attendance_escrow.domain.exceptions import ConflictError
from attendance_escrow.domain.models import DomainEvent
from attendance_escrow.infrastructure.database.orm_models import DomainEventRecord
from attendance_escrow.infrastructure.database.repositories import (
    ConsumerOffsetRepository,
    DomainEventRepository,
)
from attendance_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping

    from sqlalchemy.ext.asyncio import AsyncSession

    from attendance_escrow.domain.models import Actor

    EventHandler = Callable[[DomainEvent], Awaitable[object]]

logger = get_logger(__name__)

DEFAULT_GAP_TIMEOUT = timedelta(seconds=30)


def to_domain_event(record: DomainEventRecord) -> DomainEvent:
    return DomainEvent(
        id=record.id,
        position=record.position,
        type=DomainEventType(record.event_type),
        aggregate_type=AggregateType(record.aggregate_type),
        aggregate_id=record.aggregate_id,
        version=record.version,
        payload=dict(record.payload or {}),
        actor=record.actor,
        occurred_at=record.occurred_at,
        correlation_id=record.correlation_id,
    )


class DomainEventBus:
    """Publishes to and reads from the domain event log."""

    def __init__(
        self,
        session: AsyncSession,
        gap_timeout: timedelta = DEFAULT_GAP_TIMEOUT,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session
        self._events = DomainEventRepository(session)
        self._offsets = ConsumerOffsetRepository(session)
        self._gap_timeout = gap_timeout
        self._clock = clock or (lambda: datetime.now(UTC))

    async def publish(
        self,
        event_type: DomainEventType,
        aggregate_type: AggregateType,
        aggregate_id: uuid.UUID,
        payload: dict,
        actor: Actor,
        occurred_at: datetime,
        correlation_id: str | None = None,
    ) -> DomainEvent:
        """Append one event in the current unit of work and return it."""
        if correlation_id is None:
            correlation_id = structlog.contextvars.get_contextvars().get("request_id")

        version = await self._events.next_version(aggregate_type.value, aggregate_id)
        record = DomainEventRecord(
            aggregate_type=aggregate_type.value,
            aggregate_id=aggregate_id,
            version=version,
            event_type=event_type.value,
            payload=payload,
            actor=str(actor),
            correlation_id=correlation_id,
            occurred_at=occurred_at,
        )
        try:
            record = await self._events.append(record)
        except IntegrityError as err:
            raise ConflictError(
                f"Concurrent publish on {aggregate_type.value} {aggregate_id} at version {version}"
            ) from err

        logger.debug(
            "domain_event.published",
            event_type=event_type.value,
            aggregate_id=str(aggregate_id),
            version=version,
            position=record.position,
        )
        return to_domain_event(record)

    async def subscribe(
        self,
        consumer_name: str,
        event_types: Iterable[DomainEventType],
        batch_size: int = 100,
    ) -> AsyncIterator[DomainEvent]:
        """Yield events of ``event_types`` that ``consumer_name`` has not acknowledged.

        The stream ends once the log is exhausted or at a position gap that is
        younger than ``gap_timeout``; call again to poll. Events of other types
        move the offset forward once everything yielded so far is acknowledged.
        """
        types = {t.value for t in event_types}
        position = await self._offsets.get_position(consumer_name)
        yielded_through = position
        while True:
            records = await self._events.list_after(position, limit=batch_size)
            if not records:
                return
            for record in records:
                if record.position != position + 1 and not self._gap_expired(position, record):
                    return
                position = record.position
                if record.event_type in types:
                    yielded_through = position
                    yield to_domain_event(record)
                elif await self._offsets.get_position(consumer_name) >= yielded_through:
                    await self._offsets.advance(consumer_name, position)

    def _gap_expired(self, position: int, record: DomainEventRecord) -> bool:
        waited = self._clock() - record.recorded_at
        if waited < self._gap_timeout:
            logger.debug(
                "domain_event.gap_held",
                after_position=position,
                next_position=record.position,
            )
            return False
        logger.warning(
            "domain_event.gap_skipped",
            missing_from=position + 1,
            missing_to=record.position - 1,
            waited_seconds=waited.total_seconds(),
        )
        return True

    async def acknowledge(self, consumer_name: str, event: DomainEvent) -> int:
        """Advance ``consumer_name`` past ``event``. Older positions are ignored."""
        return await self._offsets.advance(consumer_name, event.position)

    async def offset(self, consumer_name: str) -> int:
        return await self._offsets.get_position(consumer_name)

    async def stream(
        self, aggregate_type: AggregateType, aggregate_id: uuid.UUID
    ) -> list[DomainEvent]:
        """Full ordered history of one aggregate."""
        records = await self._events.list_for_aggregate(aggregate_type.value, aggregate_id)
        return [to_domain_event(r) for r in records]


class EventConsumer:
    """A named consumer with an explicit handler per domain event type."""

    def __init__(
        self,
        name: str,
        bus: DomainEventBus,
        handlers: Mapping[DomainEventType, EventHandler],
    ) -> None:
        self.name = name
        self._bus = bus
        self._handlers = dict(handlers)

    async def drain(self) -> int:
        """Deliver every pending event, acknowledging each after its handler returns.

        A handler that raises stops the drain before acknowledging, so the event
        is redelivered on the next drain.
        """
        delivered = 0
        log = logger.bind(consumer=self.name)
        async for event in self._bus.subscribe(self.name, self._handlers.keys()):
            handler = self._handlers[event.type]
            try:
                await handler(event)
            except Exception:
                log.exception(
                    "consumer.handler_failed",
                    event_id=str(event.id),
                    event_type=event.type.value,
                    position=event.position,
                )
                raise
            await self._bus.acknowledge(self.name, event)
            delivered += 1

        if delivered:
            log.info("consumer.drained", delivered=delivered)
        return delivered

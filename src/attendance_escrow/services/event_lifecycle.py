"""Event Lifecycle Engine — owns Event state and its scheduled transitions.

Manual moves (publish, revert, archive) are organizer-only. Time-driven
moves (published -> live -> ended) happen in ``sweep``, which is safe to run
concurrently: each move is a compare-and-set and a lost race is skipped.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from attendance_escrow.domain.enums import (
    AggregateType,
    DomainEventType,
    EventStatus,
    TicketStatus,
)
from attendance_escrow.domain.exceptions import (
    ConflictError,
    EventNotFoundError,
    InvalidScheduleError,
    InvalidTransitionError,
    UnauthorizedError,
)
from attendance_escrow.domain.models import (
    Actor,
    EventLifecycleMetadata,
    StatusInfo,
    SweepResult,
)
from attendance_escrow.domain.state_machine import (
    EVENT_STATUS_DESCRIPTIONS,
    EventLifecycleMachine,
    fire_transition,
)
from attendance_escrow.infrastructure.database.orm_models import Event
from attendance_escrow.infrastructure.database.repositories import (
    EventRepository,
    TicketRepository,
)
from attendance_escrow.logging_config import get_logger
from attendance_escrow.services.event_bus import DomainEventBus

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable
    from datetime import timedelta

    from sqlalchemy.ext.asyncio import AsyncSession

    from attendance_escrow.domain.models import DomainEvent, EventOptions, EventSchedule

logger = get_logger(__name__)

SWEEP_ACTOR = Actor.cron("event_sweep")
RETENTION_ACTOR = Actor.cron("event_retention")


class EventLifecycleEngine:
    """Manages the event lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or (lambda: datetime.now(UTC))
        self._event_repo = EventRepository(session)
        self._ticket_repo = TicketRepository(session)
        self._bus = DomainEventBus(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create(
        self,
        organizer_id: str,
        schedule: EventSchedule,
        options: EventOptions,
    ) -> Event:
        """Create a new event in ``draft``."""
        if schedule.starts_at.tzinfo is None or schedule.ends_at.tzinfo is None:
            raise InvalidScheduleError("Schedule times must be timezone-aware")
        if schedule.starts_at >= schedule.ends_at:
            raise InvalidScheduleError("scheduled_start_at must be before scheduled_end_at")
        if options.require_stake:
            if options.stake_amount is None or options.stake_amount <= 0:
                raise InvalidScheduleError("A stake event needs a positive stake_amount")
            if not options.organizer_wallet:
                raise InvalidScheduleError("A stake event needs an organizer_wallet")
        elif options.organizer_wallet or options.stake_amount is not None:
            raise InvalidScheduleError("Stake settings are only valid when require_stake is set")
        if options.capacity is not None and options.capacity <= 0:
            raise InvalidScheduleError("capacity must be positive")

        now = self._clock()
        event = Event(
            organizer_id=organizer_id,
            title=options.title,
            status=EventStatus.DRAFT.value,
            transitioned_at=now,
            scheduled_start_at=schedule.starts_at,
            scheduled_end_at=schedule.ends_at,
            require_approval=options.require_approval,
            require_stake=options.require_stake,
            stake_amount=options.stake_amount,
            stake_currency=options.stake_currency,
            organizer_wallet=options.organizer_wallet.lower() if options.organizer_wallet else None,
            capacity=options.capacity,
        )
        event = await self._event_repo.create(event)

        await self._bus.publish(
            DomainEventType.EVENT_CREATED,
            AggregateType.EVENT,
            event.id,
            payload={
                "to_status": EventStatus.DRAFT.value,
                "require_approval": options.require_approval,
                "require_stake": options.require_stake,
                "stake_amount": str(options.stake_amount) if options.stake_amount else None,
            },
            actor=Actor.user(organizer_id),
            occurred_at=now,
        )
        logger.info("event.created", event_id=str(event.id), require_stake=options.require_stake)
        return event

    # ------------------------------------------------------------------
    # Manual transitions (organizer)
    # ------------------------------------------------------------------

    async def publish(self, event_id: uuid.UUID, organizer_id: str) -> Event:
        """draft -> published."""
        event = await self._get_owned(event_id, organizer_id, "publish")
        await self._apply(
            event,
            "publish",
            DomainEventType.EVENT_PUBLISHED,
            Actor.user(organizer_id),
        )
        logger.info("event.published", event_id=str(event_id))
        return event

    async def revert_to_draft(self, event_id: uuid.UUID, organizer_id: str) -> Event:
        """published -> draft, only while nobody has checked in."""
        event = await self._get_owned(event_id, organizer_id, "revert to draft")
        fire_transition(EventLifecycleMachine, event.status, "revert_to_draft")

        checked_in = await self._ticket_repo.count_for_event(
            event.id, statuses=[TicketStatus.CHECKED_IN]
        )
        if checked_in:
            raise InvalidTransitionError(
                event.status,
                EventStatus.DRAFT.value,
                reason=f"{checked_in} ticket(s) already checked in",
            )

        await self._apply(
            event,
            "revert_to_draft",
            DomainEventType.EVENT_REVERTED_TO_DRAFT,
            Actor.user(organizer_id),
        )
        logger.info("event.reverted_to_draft", event_id=str(event_id))
        return event

    async def archive(self, event_id: uuid.UUID, organizer_id: str) -> Event:
        """ended -> archived."""
        event = await self._get_owned(event_id, organizer_id, "archive")
        await self._apply(event, "archive", DomainEventType.EVENT_ARCHIVED, Actor.user(organizer_id))
        logger.info("event.archived", event_id=str(event_id))
        return event

    # ------------------------------------------------------------------
    # Scheduled transitions
    # ------------------------------------------------------------------

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        """Move published events past their start to live, and live events past their end to ended."""
        now = now or self._clock()
        result = SweepResult()

        for event in await self._event_repo.list_due_to_go_live(now):
            if await self._apply_scheduled(
                event, "go_live", DomainEventType.EVENT_TRANSITIONED_LIVE, SWEEP_ACTOR, now
            ):
                result.went_live.append(event.id)
            else:
                result.skipped += 1

        for event in await self._event_repo.list_due_to_end(now):
            if await self._apply_scheduled(
                event, "finish", DomainEventType.EVENT_TRANSITIONED_ENDED, SWEEP_ACTOR, now
            ):
                result.ended.append(event.id)
            else:
                result.skipped += 1

        if result.transitions or result.skipped:
            logger.info(
                "event_sweep.completed",
                went_live=len(result.went_live),
                ended=len(result.ended),
                skipped=result.skipped,
            )
        return result

    async def apply_retention(self, retention: timedelta, now: datetime | None = None) -> SweepResult:
        """Archive events that ended more than ``retention`` ago."""
        now = now or self._clock()
        result = SweepResult()
        for event in await self._event_repo.list_ended_before(now - retention):
            if await self._apply_scheduled(
                event, "archive", DomainEventType.EVENT_ARCHIVED, RETENTION_ACTOR, now
            ):
                result.archived.append(event.id)
            else:
                result.skipped += 1

        if result.archived:
            logger.info("event_retention.completed", archived=len(result.archived))
        return result

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get(self, event_id: uuid.UUID) -> Event:
        event = await self._event_repo.get_by_id(event_id)
        if event is None:
            raise EventNotFoundError(str(event_id))
        return event

    async def status_info(self, event_id: uuid.UUID) -> StatusInfo:
        event = await self.get(event_id)
        sm = EventLifecycleMachine(current_status=event.status)
        return StatusInfo(
            status=event.status,
            description=EVENT_STATUS_DESCRIPTIONS[EventStatus(event.status)],
            allowed_transitions=sm.allowed_targets(),
            is_terminal=sm.current_state.final,
            lifecycle=lifecycle_metadata(event),
        )

    async def timeline(self, event_id: uuid.UUID) -> list[DomainEvent]:
        await self.get(event_id)
        return await self._bus.stream(AggregateType.EVENT, event_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_owned(self, event_id: uuid.UUID, organizer_id: str, operation: str) -> Event:
        event = await self.get(event_id)
        if event.organizer_id != organizer_id:
            raise UnauthorizedError(organizer_id, f"{operation} event {event_id}")
        return event

    async def _apply(
        self,
        event: Event,
        transition: str,
        event_type: DomainEventType,
        actor: Actor,
    ) -> None:
        """Fire ``transition`` and persist it; raise ConflictError on a lost race."""
        now = self._clock()
        if not await self._apply_scheduled(event, transition, event_type, actor, now):
            raise ConflictError(
                f"Event {event.id} changed concurrently (now {event.status})"
            )

    async def _apply_scheduled(
        self,
        event: Event,
        transition: str,
        event_type: DomainEventType,
        actor: Actor,
        now: datetime,
    ) -> bool:
        """Fire ``transition`` and compare-and-set it. False when another writer won."""
        from_status = EventStatus(event.status)
        to_status = EventStatus(fire_transition(EventLifecycleMachine, event.status, transition))

        applied = await self._event_repo.compare_and_set_status(event, from_status, to_status, now)
        if not applied:
            logger.debug(
                "event.transition_lost_race",
                event_id=str(event.id),
                expected=from_status.value,
                actual=event.status,
            )
            return False

        await self._bus.publish(
            event_type,
            AggregateType.EVENT,
            event.id,
            payload={"from_status": from_status.value, "to_status": to_status.value},
            actor=actor,
            occurred_at=now,
        )
        return True


def lifecycle_metadata(event: Event) -> EventLifecycleMetadata:
    return EventLifecycleMetadata(
        previous_status=event.previous_status,
        transitioned_at=event.transitioned_at,
    )

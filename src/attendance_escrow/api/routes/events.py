"""Event REST API routes.

Routes:
    POST   /api/v1/events                 — Create an event (draft)
    POST   /api/v1/events/{id}/publish    — draft -> published
    POST   /api/v1/events/{id}/revert     — published -> draft
    POST   /api/v1/events/{id}/archive    — ended -> archived
    GET    /api/v1/events/{id}            — Event details
    GET    /api/v1/events/{id}/status     — Status and allowed transitions
    GET    /api/v1/events/{id}/timeline   — Domain event history
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_escrow.api.deps import get_db_session
from attendance_escrow.domain.models import EventOptions, EventSchedule
from attendance_escrow.logging_config import get_logger
from attendance_escrow.schemas.events import (
    CreateEventRequest,
    DomainEventResponse,
    EventActionRequest,
    EventResponse,
    StatusResponse,
)
from attendance_escrow.services.event_lifecycle import EventLifecycleEngine

router = APIRouter(prefix="/api/v1/events", tags=["Events"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=EventResponse,
    status_code=201,
    summary="Create a new event",
)
async def create_event(
    request: CreateEventRequest,
    session: AsyncSession = Depends(get_db_session),
) -> EventResponse:
    """Create a new event in DRAFT state."""
    engine = EventLifecycleEngine(session)
    event = await engine.create(
        organizer_id=request.organizer_id,
        schedule=EventSchedule(
            starts_at=request.scheduled_start_at,
            ends_at=request.scheduled_end_at,
        ),
        options=EventOptions(
            title=request.title,
            require_approval=request.require_approval,
            require_stake=request.require_stake,
            stake_amount=request.stake_amount,
            stake_currency=request.stake_currency,
            organizer_wallet=request.organizer_wallet,
            capacity=request.capacity,
        ),
    )
    return EventResponse.model_validate(event)


# ---------------------------------------------------------------------------
# Organizer transitions
# ---------------------------------------------------------------------------


@router.post(
    "/{event_id}/publish",
    response_model=EventResponse,
    summary="Publish an event",
)
async def publish_event(
    event_id: uuid.UUID,
    request: EventActionRequest,
    session: AsyncSession = Depends(get_db_session),
) -> EventResponse:
    """Open registration. Transitions DRAFT -> PUBLISHED."""
    event = await EventLifecycleEngine(session).publish(event_id, request.organizer_id)
    return EventResponse.model_validate(event)


@router.post(
    "/{event_id}/revert",
    response_model=EventResponse,
    summary="Revert a published event to draft",
)
async def revert_event(
    event_id: uuid.UUID,
    request: EventActionRequest,
    session: AsyncSession = Depends(get_db_session),
) -> EventResponse:
    """Transitions PUBLISHED -> DRAFT while nobody has checked in."""
    event = await EventLifecycleEngine(session).revert_to_draft(event_id, request.organizer_id)
    return EventResponse.model_validate(event)


@router.post(
    "/{event_id}/archive",
    response_model=EventResponse,
    summary="Archive an ended event",
)
async def archive_event(
    event_id: uuid.UUID,
    request: EventActionRequest,
    session: AsyncSession = Depends(get_db_session),
) -> EventResponse:
    event = await EventLifecycleEngine(session).archive(event_id, request.organizer_id)
    return EventResponse.model_validate(event)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/{event_id}",
    response_model=EventResponse,
    summary="Get event details",
)
async def get_event(
    event_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> EventResponse:
    event = await EventLifecycleEngine(session).get(event_id)
    return EventResponse.model_validate(event)


@router.get(
    "/{event_id}/status",
    response_model=StatusResponse,
    summary="Get event status and allowed transitions",
)
async def get_event_status(
    event_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> StatusResponse:
    info = await EventLifecycleEngine(session).status_info(event_id)
    return StatusResponse.from_info(info)


@router.get(
    "/{event_id}/timeline",
    response_model=list[DomainEventResponse],
    summary="Get the event's domain event history",
)
async def get_event_timeline(
    event_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> list[DomainEventResponse]:
    """Return the event's history in publish order."""
    history = await EventLifecycleEngine(session).timeline(event_id)
    return [DomainEventResponse.model_validate(e) for e in history]

"""Ticket and check-in REST API routes.

Routes:
    POST   /api/v1/events/{id}/tickets    — Register for an event
    POST   /api/v1/tickets/{id}/approve   — Organizer approves
    POST   /api/v1/tickets/{id}/reject    — Organizer rejects
    POST   /api/v1/tickets/{id}/revoke    — Organizer revokes
    GET    /api/v1/tickets/{id}           — Ticket details
    GET    /api/v1/tickets/{id}/status    — Status and allowed transitions
    GET    /api/v1/tickets/{id}/history   — Domain event history
    POST   /api/v1/checkin                — QR scan at the door
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_escrow.api.deps import get_db_session
from attendance_escrow.logging_config import get_logger
from attendance_escrow.schemas.events import DomainEventResponse, StatusResponse
from attendance_escrow.schemas.tickets import (
    CheckInRequest,
    CheckInResponse,
    RegisterTicketRequest,
    TicketActionRequest,
    TicketResponse,
)
from attendance_escrow.services.ticket_lifecycle import TicketLifecycleEngine

router = APIRouter(prefix="/api/v1", tags=["Tickets"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post(
    "/events/{event_id}/tickets",
    response_model=TicketResponse,
    status_code=201,
    summary="Register for an event",
)
async def register_ticket(
    event_id: uuid.UUID,
    request: RegisterTicketRequest,
    session: AsyncSession = Depends(get_db_session),
) -> TicketResponse:
    """Create a ticket, routed to PENDING_APPROVAL, APPROVED (awaiting stake) or ISSUED."""
    ticket = await TicketLifecycleEngine(session).register(
        event_id=event_id,
        user_id=request.user_id,
        answers=request.answers,
        wallet_address=request.wallet_address,
    )
    return TicketResponse.model_validate(ticket)


# ---------------------------------------------------------------------------
# Organizer decisions
# ---------------------------------------------------------------------------


@router.post(
    "/tickets/{ticket_id}/approve",
    response_model=TicketResponse,
    summary="Approve a pending registration",
)
async def approve_ticket(
    ticket_id: uuid.UUID,
    request: TicketActionRequest,
    session: AsyncSession = Depends(get_db_session),
) -> TicketResponse:
    ticket = await TicketLifecycleEngine(session).approve(ticket_id, request.organizer_id)
    return TicketResponse.model_validate(ticket)


@router.post(
    "/tickets/{ticket_id}/reject",
    response_model=TicketResponse,
    summary="Reject a pending registration",
)
async def reject_ticket(
    ticket_id: uuid.UUID,
    request: TicketActionRequest,
    session: AsyncSession = Depends(get_db_session),
) -> TicketResponse:
    ticket = await TicketLifecycleEngine(session).reject(
        ticket_id, request.organizer_id, reason=request.reason
    )
    return TicketResponse.model_validate(ticket)


@router.post(
    "/tickets/{ticket_id}/revoke",
    response_model=TicketResponse,
    summary="Revoke a ticket",
)
async def revoke_ticket(
    ticket_id: uuid.UUID,
    request: TicketActionRequest,
    session: AsyncSession = Depends(get_db_session),
) -> TicketResponse:
    ticket = await TicketLifecycleEngine(session).revoke(
        ticket_id, request.organizer_id, reason=request.reason
    )
    return TicketResponse.model_validate(ticket)


# ---------------------------------------------------------------------------
# Check-in
# ---------------------------------------------------------------------------


@router.post(
    "/checkin",
    response_model=CheckInResponse,
    summary="Check in a ticket by QR token",
)
async def check_in(
    request: CheckInRequest,
    session: AsyncSession = Depends(get_db_session),
) -> CheckInResponse:
    """Scan a QR token. Re-scanning an already checked-in ticket succeeds again."""
    result = await TicketLifecycleEngine(session).check_in_by_qr(
        qr_token=request.qr_token,
        event_id=request.event_id,
        scanner_id=request.scanner_id,
    )
    return CheckInResponse.model_validate(result)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketResponse,
    summary="Get ticket details",
)
async def get_ticket(
    ticket_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> TicketResponse:
    ticket = await TicketLifecycleEngine(session).get(ticket_id)
    return TicketResponse.model_validate(ticket)


@router.get(
    "/tickets/{ticket_id}/status",
    response_model=StatusResponse,
    summary="Get ticket status and allowed transitions",
)
async def get_ticket_status(
    ticket_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> StatusResponse:
    info = await TicketLifecycleEngine(session).status_info(ticket_id)
    return StatusResponse.from_info(info)


@router.get(
    "/tickets/{ticket_id}/history",
    response_model=list[DomainEventResponse],
    summary="Get the ticket's domain event history",
)
async def get_ticket_history(
    ticket_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
) -> list[DomainEventResponse]:
    history = await TicketLifecycleEngine(session).history(ticket_id)
    return [DomainEventResponse.model_validate(e) for e in history]

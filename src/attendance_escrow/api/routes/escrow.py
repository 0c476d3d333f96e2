"""Escrow (stake) REST API routes.

These endpoints bridge tickets and the on-chain EventEscrow contract.
Release on check-in is not exposed here; the escrow consumer drives it
from TICKET_CHECKED_IN events.

Routes:
    POST   /api/v1/escrow/stake                  — Verify a stake deposit
    GET    /api/v1/escrow/stake                  — On-chain record for (event, wallet)
    POST   /api/v1/escrow/tickets/{id}/refund    — Attendee refund before the cutoff
    POST   /api/v1/escrow/tickets/{id}/forfeit   — Organizer forfeits a no-show
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from attendance_escrow.api.deps import get_coordinator
from attendance_escrow.ledger.encoding import from_wei
from attendance_escrow.logging_config import get_logger
from attendance_escrow.schemas.escrow import (
    ForfeitRequest,
    RefundRequest,
    StakeLookupResponse,
    StakeVerificationResponse,
    VerifyStakeRequest,
)
from attendance_escrow.schemas.tickets import TicketResponse
from attendance_escrow.services.escrow_coordinator import EscrowSettlementCoordinator

router = APIRouter(prefix="/api/v1/escrow", tags=["Escrow"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Stake
# ---------------------------------------------------------------------------


@router.post(
    "/stake",
    response_model=StakeVerificationResponse,
    summary="Verify an on-chain stake deposit",
    responses={202: {"description": "Deposit found, waiting for confirmations"}},
)
async def verify_stake(
    request: VerifyStakeRequest,
    coordinator: EscrowSettlementCoordinator = Depends(get_coordinator),
) -> StakeVerificationResponse:
    """Verify the deposit and move the ticket APPROVED -> STAKED.

    Answers 202 with ``verified=false`` while the deposit is below the
    required confirmation depth; the client polls again.
    """
    result = await coordinator.verify_stake(
        request.ticket_id,
        request.tx_ref,
        wallet_address=request.wallet_address,
        event_id=request.event_id,
    )
    return StakeVerificationResponse.model_validate(result)


@router.get(
    "/stake",
    response_model=StakeLookupResponse,
    summary="Look up the on-chain stake for a wallet",
)
async def get_stake(
    event_id: uuid.UUID = Query(...),
    wallet_address: str = Query(..., min_length=42, max_length=42),
    coordinator: EscrowSettlementCoordinator = Depends(get_coordinator),
) -> StakeLookupResponse:
    record = await coordinator.lookup_stake(event_id, wallet_address)
    return StakeLookupResponse(
        event_id=event_id,
        wallet_address=record.attendee,
        status=record.status.name,
        amount=from_wei(record.amount_wei),
        organizer=record.organizer,
    )


# ---------------------------------------------------------------------------
# Refund / forfeit
# ---------------------------------------------------------------------------


@router.post(
    "/tickets/{ticket_id}/refund",
    response_model=TicketResponse,
    summary="Refund a stake before the cutoff",
)
async def refund_stake(
    ticket_id: uuid.UUID,
    request: RefundRequest,
    coordinator: EscrowSettlementCoordinator = Depends(get_coordinator),
) -> TicketResponse:
    """Transitions STAKED -> REFUNDED while before ``start - refund_cutoff``."""
    ticket = await coordinator.refund(ticket_id, request.requester_id)
    return TicketResponse.model_validate(ticket)


@router.post(
    "/tickets/{ticket_id}/forfeit",
    response_model=TicketResponse,
    summary="Forfeit a no-show's stake",
)
async def forfeit_stake(
    ticket_id: uuid.UUID,
    request: ForfeitRequest,
    coordinator: EscrowSettlementCoordinator = Depends(get_coordinator),
) -> TicketResponse:
    """Transitions STAKED -> FORFEITED once the event has ended."""
    ticket = await coordinator.forfeit(ticket_id, request.organizer_id)
    return TicketResponse.model_validate(ticket)

"""Pydantic schemas for the Tickets and Check-in API."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class RegisterTicketRequest(BaseModel):
    """Request body for registering for an event."""

    user_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Identifier of the registering user",
        examples=["user_attendee_7"],
    )
    answers: dict | None = Field(
        default=None,
        description="Answers to the organizer's registration questions",
    )
    wallet_address: str | None = Field(
        default=None,
        min_length=42,
        max_length=42,
        description="Wallet the attendee will stake from (stake events only)",
        examples=["0x8ba1f109551bD432803012645Ac136ddd64DBA72"],
    )


class TicketActionRequest(BaseModel):
    """Body for organizer decisions on a ticket."""

    organizer_id: str = Field(..., min_length=1, max_length=64)
    reason: str | None = Field(default=None, max_length=2000)


class CheckInRequest(BaseModel):
    """A QR scan at the door."""

    qr_token: str = Field(..., min_length=1, max_length=64)
    event_id: uuid.UUID
    scanner_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Identifier of the scanning device or staff member",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TicketResponse(BaseModel):
    """Response schema for a ticket."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_id: uuid.UUID
    user_id: str
    qr_token: str
    status: str
    previous_status: str | None
    status_changed_at: datetime | None
    checked_in_at: datetime | None
    registration_answers: dict | None
    stake_amount: Decimal | None
    stake_currency: str | None
    stake_tx_hash: str | None
    stake_wallet_address: str | None
    refund_tx_hash: str | None
    refunded_at: datetime | None
    settlement_tx_hash: str | None
    escrow_settled_at: datetime | None
    forfeited_at: datetime | None
    created_at: datetime
    updated_at: datetime


class CheckInResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticket_id: uuid.UUID
    status: str
    already_checked_in: bool
    checked_in_at: datetime | None

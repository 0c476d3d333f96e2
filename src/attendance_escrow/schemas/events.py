"""Pydantic schemas for the Events API.

Request/response shapes only; the ORM rows in infrastructure/database are
converted with ``model_validate`` at the route boundary.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from attendance_escrow.domain.enums import AggregateType, DomainEventType
from attendance_escrow.domain.models import StatusInfo

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateEventRequest(BaseModel):
    """Request body for creating a new event in ``draft``."""

    organizer_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Identifier of the organizing user",
        examples=["user_organizer_42"],
    )
    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Human-readable event title",
        examples=["Python Meetup, October"],
    )
    scheduled_start_at: datetime = Field(
        ...,
        description="Start time (timezone-aware, ISO 8601)",
        examples=["2026-11-01T18:00:00Z"],
    )
    scheduled_end_at: datetime = Field(
        ...,
        description="End time (timezone-aware, ISO 8601); must be after the start",
        examples=["2026-11-01T21:00:00Z"],
    )
    require_approval: bool = Field(
        default=False,
        description="Registrations wait for the organizer's approval",
    )
    require_stake: bool = Field(
        default=False,
        description="Attendees deposit a refundable stake into the escrow contract",
    )
    stake_amount: Decimal | None = Field(
        default=None,
        gt=0,
        description="Stake per attendee, in ETH",
        examples=["0.01"],
    )
    stake_currency: str = Field(default="ETH", max_length=10)
    organizer_wallet: str | None = Field(
        default=None,
        min_length=42,
        max_length=42,
        description="Wallet that receives released and forfeited stakes",
        examples=["0x742d35Cc6634C0532925a3b844Bc9e7595f2bD18"],
    )
    capacity: int | None = Field(default=None, gt=0, description="Maximum active tickets")


class EventActionRequest(BaseModel):
    """Body for organizer-only event transitions."""

    organizer_id: str = Field(..., min_length=1, max_length=64)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class EventResponse(BaseModel):
    """Response schema for an event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organizer_id: str
    title: str
    status: str
    previous_status: str | None
    transitioned_at: datetime | None
    scheduled_start_at: datetime
    scheduled_end_at: datetime
    require_approval: bool
    require_stake: bool
    stake_amount: Decimal | None
    stake_currency: str
    organizer_wallet: str | None
    capacity: int | None
    created_at: datetime
    updated_at: datetime


class StatusResponse(BaseModel):
    """Current status plus the transitions it allows."""

    model_config = ConfigDict(from_attributes=True)

    status: str
    description: str
    allowed_transitions: list[str] = Field(
        description="Target statuses reachable from the current status"
    )
    is_terminal: bool
    lifecycle: dict

    @classmethod
    def from_info(cls, info: StatusInfo) -> StatusResponse:
        return cls(
            status=info.status,
            description=info.description,
            allowed_transitions=info.allowed_transitions,
            is_terminal=info.is_terminal,
            lifecycle=asdict(info.lifecycle),
        )


class DomainEventResponse(BaseModel):
    """One entry of an aggregate's history."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    position: int
    type: DomainEventType
    aggregate_type: AggregateType
    aggregate_id: uuid.UUID
    version: int
    payload: dict
    actor: str
    occurred_at: datetime
    correlation_id: str | None = None

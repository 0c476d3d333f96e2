"""Pydantic schemas for the Escrow (stake) API."""

from __future__ import annotations

import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class VerifyStakeRequest(BaseModel):
    """Request body for verifying an on-chain stake deposit."""

    event_id: uuid.UUID
    ticket_id: uuid.UUID
    wallet_address: str = Field(
        ...,
        min_length=42,
        max_length=42,
        description="Wallet the stake was sent from",
        examples=["0x8ba1f109551bD432803012645Ac136ddd64DBA72"],
    )
    tx_ref: str = Field(
        ...,
        min_length=66,
        max_length=66,
        description="Transaction hash of the stake deposit (0x-prefixed)",
    )


class RefundRequest(BaseModel):
    requester_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="The attendee who owns the ticket",
    )


class ForfeitRequest(BaseModel):
    organizer_id: str = Field(..., min_length=1, max_length=64)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class StakeVerificationResponse(BaseModel):
    """Result of a stake verification; ``verified=False`` while confirmations accrue."""

    model_config = ConfigDict(from_attributes=True)

    verified: bool
    ticket_id: uuid.UUID
    ticket_status: str
    tx_hash: str
    confirmations: int
    required_confirmations: int | None = None


class StakeLookupResponse(BaseModel):
    """Current on-chain stake record for (event, wallet)."""

    event_id: uuid.UUID
    wallet_address: str
    status: str
    amount: Decimal = Field(description="Escrowed amount in ETH")
    organizer: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    ledger: str = "unknown"

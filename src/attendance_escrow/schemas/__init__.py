"""Pydantic API schemas."""

from attendance_escrow.schemas.escrow import (
    ForfeitRequest,
    HealthResponse,
    RefundRequest,
    StakeLookupResponse,
    StakeVerificationResponse,
    VerifyStakeRequest,
)
from attendance_escrow.schemas.events import (
    CreateEventRequest,
    DomainEventResponse,
    EventActionRequest,
    EventResponse,
    StatusResponse,
)
from attendance_escrow.schemas.tickets import (
    CheckInRequest,
    CheckInResponse,
    RegisterTicketRequest,
    TicketActionRequest,
    TicketResponse,
)

__all__ = [
    "CheckInRequest",
    "CheckInResponse",
    "CreateEventRequest",
    "DomainEventResponse",
    "EventActionRequest",
    "EventResponse",
    "ForfeitRequest",
    "HealthResponse",
    "RefundRequest",
    "RegisterTicketRequest",
    "StakeLookupResponse",
    "StakeVerificationResponse",
    "StatusResponse",
    "TicketActionRequest",
    "TicketResponse",
    "VerifyStakeRequest",
]

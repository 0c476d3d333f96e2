"""Domain layer — pure business logic with zero framework dependencies."""

from attendance_escrow.domain.enums import (
    AggregateType,
    DomainEventType,
    EventStatus,
    StakeStatus,
    TicketStatus,
)
from attendance_escrow.domain.exceptions import (
    ConflictError,
    EscrowPlatformError,
    InvalidTransitionError,
    NotFoundError,
)
from attendance_escrow.domain.ledger_protocol import EscrowLedger
from attendance_escrow.domain.state_machine import (
    EventLifecycleMachine,
    TicketLifecycleMachine,
    fire_transition,
)

__all__ = [
    "AggregateType",
    "DomainEventType",
    "EventStatus",
    "StakeStatus",
    "TicketStatus",
    "ConflictError",
    "EscrowPlatformError",
    "InvalidTransitionError",
    "NotFoundError",
    "EscrowLedger",
    "EventLifecycleMachine",
    "TicketLifecycleMachine",
    "fire_transition",
]

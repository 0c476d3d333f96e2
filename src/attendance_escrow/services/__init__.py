"""Application services — lifecycle engines, event bus and escrow settlement."""

from attendance_escrow.services.confirmation_cache import (
    ConfirmationCache,
    InMemoryConfirmationCache,
    RedisConfirmationCache,
)
from attendance_escrow.services.escrow_coordinator import EscrowSettlementCoordinator
from attendance_escrow.services.event_bus import DomainEventBus, EventConsumer
from attendance_escrow.services.event_lifecycle import EventLifecycleEngine
from attendance_escrow.services.ticket_lifecycle import TicketLifecycleEngine

__all__ = [
    "ConfirmationCache",
    "DomainEventBus",
    "EscrowSettlementCoordinator",
    "EventConsumer",
    "EventLifecycleEngine",
    "InMemoryConfirmationCache",
    "RedisConfirmationCache",
    "TicketLifecycleEngine",
]

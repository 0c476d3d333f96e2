"""Database infrastructure — engine, ORM models, and repositories."""

from attendance_escrow.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
    session_scope,
)
from attendance_escrow.infrastructure.database.orm_models import (
    Base,
    ConsumerOffset,
    DomainEventRecord,
    Event,
    Ticket,
)
from attendance_escrow.infrastructure.database.repositories import (
    ConsumerOffsetRepository,
    DomainEventRepository,
    EventRepository,
    TicketRepository,
)

__all__ = [
    "Base",
    "ConsumerOffset",
    "DomainEventRecord",
    "Event",
    "Ticket",
    "ConsumerOffsetRepository",
    "DomainEventRepository",
    "EventRepository",
    "TicketRepository",
    "get_async_session",
    "session_scope",
    "init_db",
    "close_db",
]

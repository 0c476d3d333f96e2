"""SQLAlchemy 2.0 ORM models for the attendance escrow service.

Four tables:
    1. events            — Events being organized, with their schedule and stake policy.
    2. tickets           — One attendee's claim on one event (a.k.a. guest).
    3. domain_events     — Append-only log of every transition, read by consumers.
    4. consumer_offsets  — Last processed log position per consumer name.

Design decisions:
    - UUIDs as primary keys, except domain_events.position which is the
      monotonic log offset consumers page through.
    - Decimal for stake amounts, 18 places to hold native-token units exactly.
    - JSON columns (JSONB on PostgreSQL) for registration answers and payloads.
    - CHECK constraints on status so off-graph values never reach the table.
    - Every status change carries previous_status + a timestamp so the
      transition history can be reconstructed without the event log.
    - Tickets reference events without cascade delete: an event with tickets
      is archived, never deleted.
    - domain_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back in UTC.

    SQLite drops tzinfo on the way in; values are normalised to UTC before
    binding and re-tagged as UTC when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_qr_token() -> str:
    return secrets.token_urlsafe(24)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. events
# ---------------------------------------------------------------------------
class Event(Base):
    """One occurrence being organized."""

    __tablename__ = "events"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # --- Ownership ---
    organizer_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Platform user id of the organizer",
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="draft",
        comment="Current lifecycle state (guarded by EventLifecycleMachine)",
    )
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    transitioned_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="When the last status transition was applied",
    )

    # --- Schedule ---
    scheduled_start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    scheduled_end_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # --- Registration Policy ---
    require_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    require_stake: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stake_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(36, 18),
        nullable=True,
        comment="Minimum stake per attendee in native-token units",
    )
    stake_currency: Mapped[str] = mapped_column(String(10), nullable=False, default="ETH")
    organizer_wallet: Mapped[str | None] = mapped_column(
        String(42),
        nullable=True,
        comment="EVM address stakes are paid out to (set iff require_stake)",
    )
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'published', 'live', 'ended', 'archived')",
            name="ck_event_valid_status",
        ),
        CheckConstraint(
            "scheduled_start_at < scheduled_end_at",
            name="ck_event_schedule_order",
        ),
        CheckConstraint(
            "capacity IS NULL OR capacity > 0",
            name="ck_event_positive_capacity",
        ),
        Index("idx_event_status_start", "status", "scheduled_start_at"),
        Index("idx_event_status_end", "status", "scheduled_end_at"),
        Index("idx_event_organizer", "organizer_id"),
    )

    def __repr__(self) -> str:
        return f"<Event id={self.id} status={self.status} title={self.title!r}>"


# ---------------------------------------------------------------------------
# 2. tickets
# ---------------------------------------------------------------------------
class Ticket(Base):
    """One attendee's claim on one event."""

    __tablename__ = "tickets"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # --- Foreign Key ---
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("events.id", ondelete="RESTRICT"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Credential ---
    qr_token: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        default=_new_qr_token,
        comment="Opaque, unguessable check-in credential",
    )

    # --- Status (Enum-guarded) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="Current lifecycle state (guarded by TicketLifecycleMachine)",
    )
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status_changed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    checked_in_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    registration_answers: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        default=None,
    )

    # --- Stake Lifecycle ---
    stake_amount: Mapped[Decimal | None] = mapped_column(Numeric(36, 18), nullable=True)
    stake_currency: Mapped[str | None] = mapped_column(String(10), nullable=True)
    stake_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    stake_wallet_address: Mapped[str | None] = mapped_column(
        String(42),
        nullable=True,
        comment="Depositor address declared by the attendee",
    )
    refund_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    settlement_tx_hash: Mapped[str | None] = mapped_column(
        String(66),
        nullable=True,
        comment="Release or forfeit transaction paying the organizer",
    )
    escrow_settled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    forfeited_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_ticket_event_user"),
        CheckConstraint(
            "status IN ('pending', 'pending_approval', 'approved', 'rejected', "
            "'issued', 'staked', 'checked_in', 'refunded', 'forfeited', 'revoked')",
            name="ck_ticket_valid_status",
        ),
        Index("idx_ticket_event_status", "event_id", "status"),
        Index("idx_ticket_status_changed", "status", "status_changed_at"),
        Index("idx_ticket_wallet", "stake_wallet_address"),
    )

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} event={self.event_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 3. domain_events (Append-Only Log)
# ---------------------------------------------------------------------------
class DomainEventRecord(Base):
    """Immutable record of one domain event.

    This table is APPEND-ONLY. ``position`` is the global offset consumers
    track; ``version`` is the per-aggregate sequence and is unique per aggregate.
    """

    __tablename__ = "domain_events"

    # --- Primary Key ---
    position: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        unique=True,
        default=uuid.uuid4,
    )

    # --- Aggregate ---
    aggregate_type: Mapped[str] = mapped_column(String(20), nullable=False)
    aggregate_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Event Details ---
    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="DomainEventType value (e.g., TICKET_CHECKED_IN)",
    )
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    actor: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="system:unknown",
        comment="Who triggered this event, as <type>:<id>",
    )
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # --- Timestamps ---
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        comment="Wall-clock insert time; consumers use it to age out position gaps",
    )

    # --- Indexes ---
    __table_args__ = (
        UniqueConstraint(
            "aggregate_type", "aggregate_id", "version", name="uq_domain_event_aggregate_version"
        ),
        Index("idx_domain_event_type", "event_type"),
        Index("idx_domain_event_aggregate", "aggregate_type", "aggregate_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DomainEventRecord position={self.position} type={self.event_type} "
            f"{self.aggregate_type}:{self.aggregate_id} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# 4. consumer_offsets
# ---------------------------------------------------------------------------
class ConsumerOffset(Base):
    """Last acknowledged log position for a named consumer."""

    __tablename__ = "consumer_offsets"

    consumer_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_position: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<ConsumerOffset {self.consumer_name}@{self.last_position}>"

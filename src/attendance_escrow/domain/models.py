"""Domain value objects shared across engines, coordinator and API.

Plain dataclasses; persistence lives in infrastructure/database.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal

from attendance_escrow.domain.enums import (
    ActorType,
    AggregateType,
    DomainEventType,
    SettlementOutcome,
    StakeStatus,
)


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Actor:
    """Who triggered a transition: a user, or a named system component."""

    type: ActorType
    id: str

    @classmethod
    def user(cls, user_id: str) -> Actor:
        return cls(ActorType.USER, user_id)

    @classmethod
    def system(cls, component: str) -> Actor:
        return cls(ActorType.SYSTEM, component)

    @classmethod
    def cron(cls, job: str) -> Actor:
        return cls(ActorType.CRON, job)

    def __str__(self) -> str:
        return f"{self.type.value}:{self.id}"


# ---------------------------------------------------------------------------
# Domain events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DomainEvent:
    """An immutable fact read back from the event log.

    Attributes:
        position: Global, monotonic log offset used by consumers.
        version: Per-aggregate sequence number; same-aggregate order is publish order.
    """

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


# ---------------------------------------------------------------------------
# Event aggregate inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventSchedule:
    starts_at: datetime
    ends_at: datetime


@dataclass(frozen=True)
class EventOptions:
    title: str
    require_approval: bool = False
    require_stake: bool = False
    stake_amount: Decimal | None = None
    stake_currency: str = "ETH"
    organizer_wallet: str | None = None
    capacity: int | None = None


# ---------------------------------------------------------------------------
# Typed lifecycle metadata (owned by the engines)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventLifecycleMetadata:
    previous_status: str | None
    transitioned_at: datetime | None


@dataclass(frozen=True)
class TicketLifecycleMetadata:
    previous_status: str | None
    status_changed_at: datetime | None
    checked_in_at: datetime | None = None
    stake_amount: Decimal | None = None
    stake_currency: str | None = None
    stake_tx_hash: str | None = None
    stake_wallet_address: str | None = None
    refund_tx_hash: str | None = None
    refunded_at: datetime | None = None
    settlement_tx_hash: str | None = None
    escrow_settled_at: datetime | None = None
    forfeited_at: datetime | None = None


@dataclass(frozen=True)
class StatusInfo:
    """Current status plus what can happen next, for UIs and operators."""

    status: str
    description: str
    allowed_transitions: list[str]
    is_terminal: bool
    lifecycle: EventLifecycleMetadata | TicketLifecycleMetadata


# ---------------------------------------------------------------------------
# Ledger facts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StakeRecord:
    """Mirror of one (event, attendee) record held by the escrow ledger."""

    event_id_hash: str
    attendee: str
    organizer: str
    amount_wei: int
    status: StakeStatus
    staked_at: int = 0
    event_start_time: int = 0


@dataclass(frozen=True)
class StakeDeposit:
    """A ``stake`` transaction as observed on-chain, decoded."""

    tx_hash: str
    attendee: str
    organizer: str
    event_id_hash: str
    amount_wei: int
    block_number: int
    succeeded: bool
    event_start_time: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> StakeDeposit:
        return cls(**data)


@dataclass(frozen=True)
class LedgerReceipt:
    tx_hash: str
    block_number: int


@dataclass(frozen=True)
class StakeReceipt:
    """Verified stake facts handed to the ticket engine."""

    tx_hash: str | None
    wallet_address: str
    amount: Decimal
    currency: str = "ETH"


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckInResult:
    ticket_id: uuid.UUID
    status: str
    already_checked_in: bool
    checked_in_at: datetime | None


@dataclass
class SweepResult:
    went_live: list[uuid.UUID] = field(default_factory=list)
    ended: list[uuid.UUID] = field(default_factory=list)
    archived: list[uuid.UUID] = field(default_factory=list)
    skipped: int = 0

    @property
    def transitions(self) -> int:
        return len(self.went_live) + len(self.ended) + len(self.archived)


@dataclass(frozen=True)
class StakeVerification:
    verified: bool
    ticket_id: uuid.UUID
    ticket_status: str
    tx_hash: str
    confirmations: int


@dataclass(frozen=True)
class SettlementResult:
    ticket_id: uuid.UUID
    outcome: SettlementOutcome
    tx_hash: str | None = None


@dataclass
class BatchResult:
    succeeded: list[uuid.UUID] = field(default_factory=list)
    failed: list[uuid.UUID] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class ReconciliationReport:
    examined: int = 0
    repaired: list[uuid.UUID] = field(default_factory=list)
    deferred: list[uuid.UUID] = field(default_factory=list)
    drift: list[uuid.UUID] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

"""Domain enumerations for the attendance escrow service.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class EventStatus(enum.StrEnum):
    """Lifecycle states of an Event.

    Transitions are enforced by EventLifecycleMachine.
    See domain/state_machine.py for the transition table.
    """

    DRAFT = "draft"
    PUBLISHED = "published"
    LIVE = "live"
    ENDED = "ended"
    ARCHIVED = "archived"


class TicketStatus(enum.StrEnum):
    """Lifecycle states of a Ticket (a.k.a. Guest).

    An ``approved`` ticket on an event that requires a stake is the
    "awaiting stake" state: the attendee still has to deposit on-chain.
    """

    PENDING = "pending"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    ISSUED = "issued"
    STAKED = "staked"
    CHECKED_IN = "checked_in"
    REFUNDED = "refunded"
    FORFEITED = "forfeited"
    REVOKED = "revoked"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TICKET_STATUSES


TERMINAL_TICKET_STATUSES = frozenset(
    {
        TicketStatus.REJECTED,
        TicketStatus.CHECKED_IN,
        TicketStatus.REFUNDED,
        TicketStatus.FORFEITED,
        TicketStatus.REVOKED,
    }
)


class StakeStatus(enum.IntEnum):
    """Status of a stake record on the escrow ledger.

    Integer values match the ``uint8`` the EventEscrow contract returns.
    """

    NONE = 0
    STAKED = 1
    RELEASED = 2
    REFUNDED = 3
    FORFEITED = 4


class AggregateType(enum.StrEnum):
    """Aggregates that publish domain events."""

    EVENT = "event"
    TICKET = "ticket"


class ActorType(enum.StrEnum):
    """Who triggered a transition."""

    USER = "user"
    SYSTEM = "system"
    CRON = "cron"
    WEBHOOK = "webhook"


class DomainEventType(enum.StrEnum):
    """Closed set of domain event types published to the event bus.

    Every state transition MUST produce exactly one event. Consumers
    register handlers against these members, never against raw strings.
    """

    # Event aggregate
    EVENT_CREATED = "EVENT_CREATED"
    EVENT_PUBLISHED = "EVENT_PUBLISHED"
    EVENT_REVERTED_TO_DRAFT = "EVENT_REVERTED_TO_DRAFT"
    EVENT_TRANSITIONED_LIVE = "EVENT_TRANSITIONED_LIVE"
    EVENT_TRANSITIONED_ENDED = "EVENT_TRANSITIONED_ENDED"
    EVENT_ARCHIVED = "EVENT_ARCHIVED"

    # Ticket aggregate
    TICKET_REGISTERED = "TICKET_REGISTERED"
    TICKET_APPROVAL_REQUESTED = "TICKET_APPROVAL_REQUESTED"
    TICKET_APPROVED = "TICKET_APPROVED"
    TICKET_REJECTED = "TICKET_REJECTED"
    TICKET_ISSUED = "TICKET_ISSUED"
    TICKET_STAKED = "TICKET_STAKED"
    TICKET_CHECKED_IN = "TICKET_CHECKED_IN"
    TICKET_REVOKED = "TICKET_REVOKED"
    TICKET_REFUNDED = "TICKET_REFUNDED"
    TICKET_FORFEITED = "TICKET_FORFEITED"

    # Settlement
    ESCROW_RELEASED = "ESCROW_RELEASED"


class SettlementOutcome(enum.StrEnum):
    """Result of the coordinator driving a stake forward on the ledger."""

    RELEASED = "released"
    ALREADY_SETTLED = "already_settled"
    NOT_APPLICABLE = "not_applicable"
    DEFERRED = "deferred"
    REJECTED = "rejected"

"""Ticket Lifecycle Engine — owns Ticket state, approval, check-in and stake facts.

Every status change follows the same path:
    1. TicketLifecycleMachine validates the move (InvalidTransitionError).
    2. The repository compare-and-sets (ticket_id, expected_status).
    3. One domain event is published in the same unit of work.

The escrow coordinator never touches ticket columns itself; it calls
``mark_staked`` / ``mark_refunded`` / ``mark_forfeited`` / ``record_settlement``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError

from attendance_escrow.domain.enums import (
    AggregateType,
    DomainEventType,
    EventStatus,
    TicketStatus,
)
from attendance_escrow.domain.exceptions import (
    CapacityExceededError,
    ConflictError,
    EventNotFoundError,
    InvalidTransitionError,
    TicketNotFoundError,
    UnauthorizedError,
)
from attendance_escrow.domain.models import (
    Actor,
    CheckInResult,
    StatusInfo,
    TicketLifecycleMetadata,
)
from attendance_escrow.domain.state_machine import (
    TICKET_STATUS_DESCRIPTIONS,
    TicketLifecycleMachine,
    fire_transition,
)
from attendance_escrow.infrastructure.database.orm_models import Ticket
from attendance_escrow.infrastructure.database.repositories import (
    EventRepository,
    TicketRepository,
)
from attendance_escrow.logging_config import get_logger
from attendance_escrow.services.event_bus import DomainEventBus

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from attendance_escrow.domain.models import DomainEvent, StakeReceipt
    from attendance_escrow.infrastructure.database.orm_models import Event

logger = get_logger(__name__)

REGISTRATION_OPEN = frozenset({EventStatus.PUBLISHED, EventStatus.LIVE})

# Tickets that no longer hold a seat
RELEASED_SEATS = (TicketStatus.REJECTED, TicketStatus.REVOKED, TicketStatus.REFUNDED)

ESCROW_ACTOR = Actor.system("escrow_coordinator")


class TicketLifecycleEngine:
    """Manages the ticket lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or (lambda: datetime.now(UTC))
        self._ticket_repo = TicketRepository(session)
        self._event_repo = EventRepository(session)
        self._bus = DomainEventBus(session)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(
        self,
        event_id: uuid.UUID,
        user_id: str,
        answers: dict | None = None,
        wallet_address: str | None = None,
    ) -> Ticket:
        """Create a ticket and route it by the event's approval / stake policy."""
        event = await self._get_event(event_id)
        if EventStatus(event.status) not in REGISTRATION_OPEN:
            raise InvalidTransitionError(
                event.status, TicketStatus.PENDING.value, reason="registration is closed"
            )

        if await self._ticket_repo.get_by_event_and_user(event.id, user_id) is not None:
            raise ConflictError(
                f"User {user_id} already registered for event {event_id}",
                code="ALREADY_REGISTERED",
            )

        if event.capacity is not None:
            taken = await self._ticket_repo.count_for_event(event.id, exclude=RELEASED_SEATS)
            if taken >= event.capacity:
                raise CapacityExceededError(str(event_id), event.capacity)

        now = self._clock()
        ticket = Ticket(
            event_id=event.id,
            user_id=user_id,
            status=TicketStatus.PENDING.value,
            status_changed_at=now,
            registration_answers=answers,
            stake_wallet_address=wallet_address.lower() if wallet_address else None,
        )
        try:
            ticket = await self._ticket_repo.create(ticket)
        except IntegrityError as err:
            raise ConflictError(
                f"User {user_id} already registered for event {event_id}",
                code="ALREADY_REGISTERED",
            ) from err

        actor = Actor.user(user_id)
        await self._bus.publish(
            DomainEventType.TICKET_REGISTERED,
            AggregateType.TICKET,
            ticket.id,
            payload={"event_id": str(event.id), "to_status": TicketStatus.PENDING.value},
            actor=actor,
            occurred_at=now,
        )

        if event.require_approval:
            await self._apply(
                ticket, "request_approval", DomainEventType.TICKET_APPROVAL_REQUESTED, actor
            )
        elif event.require_stake:
            # Awaiting stake: the attendee deposits on-chain next
            await self._apply(ticket, "approve", DomainEventType.TICKET_APPROVED, actor)
        else:
            await self._apply(ticket, "issue", DomainEventType.TICKET_ISSUED, actor)

        logger.info(
            "ticket.registered",
            ticket_id=str(ticket.id),
            event_id=str(event.id),
            status=ticket.status,
        )
        return ticket

    # ------------------------------------------------------------------
    # Approval workflow (organizer)
    # ------------------------------------------------------------------

    async def approve(self, ticket_id: uuid.UUID, organizer_id: str) -> Ticket:
        """pending_approval -> approved (-> issued when no stake is required)."""
        ticket, event = await self._get_with_event(ticket_id)
        self._require_organizer(event, organizer_id, "approve tickets")

        if ticket.status == TicketStatus.APPROVED or (
            ticket.status == TicketStatus.ISSUED and ticket.previous_status == TicketStatus.APPROVED
        ):
            logger.info("ticket.approve_noop", ticket_id=str(ticket_id), status=ticket.status)
            return ticket
        if ticket.status != TicketStatus.PENDING_APPROVAL:
            raise InvalidTransitionError(ticket.status, TicketStatus.APPROVED.value)

        actor = Actor.user(organizer_id)
        await self._apply(ticket, "approve", DomainEventType.TICKET_APPROVED, actor)
        if not event.require_stake:
            await self._apply(ticket, "issue", DomainEventType.TICKET_ISSUED, actor)

        logger.info("ticket.approved", ticket_id=str(ticket_id), status=ticket.status)
        return ticket

    async def reject(
        self, ticket_id: uuid.UUID, organizer_id: str, reason: str | None = None
    ) -> Ticket:
        """pending_approval -> rejected."""
        ticket, event = await self._get_with_event(ticket_id)
        self._require_organizer(event, organizer_id, "reject tickets")

        if ticket.status == TicketStatus.REJECTED:
            return ticket
        if ticket.status != TicketStatus.PENDING_APPROVAL:
            raise InvalidTransitionError(ticket.status, TicketStatus.REJECTED.value)

        await self._apply(
            ticket,
            "reject",
            DomainEventType.TICKET_REJECTED,
            Actor.user(organizer_id),
            payload={"reason": reason},
        )
        logger.info("ticket.rejected", ticket_id=str(ticket_id))
        return ticket

    async def revoke(
        self, ticket_id: uuid.UUID, organizer_id: str, reason: str | None = None
    ) -> Ticket:
        """Organizer cancels a ticket that has not reached a terminal state."""
        ticket, event = await self._get_with_event(ticket_id)
        self._require_organizer(event, organizer_id, "revoke tickets")

        if ticket.status == TicketStatus.STAKED:
            raise InvalidTransitionError(
                ticket.status,
                TicketStatus.REVOKED.value,
                reason="a staked ticket settles through refund or forfeit",
            )

        await self._apply(
            ticket,
            "revoke",
            DomainEventType.TICKET_REVOKED,
            Actor.user(organizer_id),
            payload={"reason": reason},
        )
        logger.info("ticket.revoked", ticket_id=str(ticket_id))
        return ticket

    # ------------------------------------------------------------------
    # Check-in
    # ------------------------------------------------------------------

    async def check_in(self, ticket_id: uuid.UUID, scanner_id: str) -> CheckInResult:
        """issued | staked -> checked_in. Re-scanning a checked-in ticket is a success no-op."""
        ticket = await self._get_ticket(ticket_id)
        if ticket.status == TicketStatus.CHECKED_IN:
            logger.info("ticket.already_checked_in", ticket_id=str(ticket_id))
            return _check_in_result(ticket, already=True)

        now = self._clock()
        try:
            await self._apply(
                ticket,
                "check_in",
                DomainEventType.TICKET_CHECKED_IN,
                Actor.user(scanner_id),
                payload={
                    "event_id": str(ticket.event_id),
                    "scanner_id": scanner_id,
                    "stake_wallet_address": ticket.stake_wallet_address,
                },
                checked_in_at=now,
            )
        except ConflictError:
            # Another scanner won the race; same outcome for the attendee
            if ticket.status == TicketStatus.CHECKED_IN:
                return _check_in_result(ticket, already=True)
            raise

        logger.info(
            "ticket.checked_in",
            ticket_id=str(ticket_id),
            from_status=ticket.previous_status,
            scanner_id=scanner_id,
        )
        return _check_in_result(ticket, already=False)

    async def check_in_by_qr(
        self, qr_token: str, event_id: uuid.UUID, scanner_id: str
    ) -> CheckInResult:
        ticket = await self._ticket_repo.get_by_qr_token(qr_token, event_id)
        if ticket is None:
            raise TicketNotFoundError("qr token for event " + str(event_id))
        return await self.check_in(ticket.id, scanner_id)

    # ------------------------------------------------------------------
    # Stake facts (called by the escrow coordinator only)
    # ------------------------------------------------------------------

    async def mark_staked(
        self,
        ticket_id: uuid.UUID,
        receipt: StakeReceipt,
        actor: Actor = ESCROW_ACTOR,
    ) -> Ticket:
        """approved -> staked, recording the verified deposit."""
        ticket = await self._get_ticket(ticket_id)
        await self._apply(
            ticket,
            "stake",
            DomainEventType.TICKET_STAKED,
            actor,
            payload={
                "tx_hash": receipt.tx_hash,
                "wallet_address": receipt.wallet_address,
                "amount": str(receipt.amount),
                "currency": receipt.currency,
            },
            stake_amount=receipt.amount,
            stake_currency=receipt.currency,
            stake_tx_hash=receipt.tx_hash,
            stake_wallet_address=receipt.wallet_address.lower(),
        )
        logger.info("ticket.staked", ticket_id=str(ticket_id), tx_hash=receipt.tx_hash)
        return ticket

    async def mark_refunded(
        self,
        ticket_id: uuid.UUID,
        tx_hash: str | None,
        actor: Actor = ESCROW_ACTOR,
    ) -> Ticket:
        """staked -> refunded."""
        ticket = await self._get_ticket(ticket_id)
        now = self._clock()
        await self._apply(
            ticket,
            "refund",
            DomainEventType.TICKET_REFUNDED,
            actor,
            payload={"tx_hash": tx_hash},
            refund_tx_hash=tx_hash,
            refunded_at=now,
        )
        logger.info("ticket.refunded", ticket_id=str(ticket_id), tx_hash=tx_hash)
        return ticket

    async def mark_forfeited(
        self,
        ticket_id: uuid.UUID,
        tx_hash: str | None,
        actor: Actor = ESCROW_ACTOR,
    ) -> Ticket:
        """staked -> forfeited; the forfeit payout is the ticket's settlement."""
        ticket = await self._get_ticket(ticket_id)
        now = self._clock()
        await self._apply(
            ticket,
            "forfeit",
            DomainEventType.TICKET_FORFEITED,
            actor,
            payload={"tx_hash": tx_hash},
            settlement_tx_hash=tx_hash,
            escrow_settled_at=now,
            forfeited_at=now,
        )
        logger.info("ticket.forfeited", ticket_id=str(ticket_id), tx_hash=tx_hash)
        return ticket

    async def record_settlement(
        self,
        ticket_id: uuid.UUID,
        tx_hash: str | None,
        actor: Actor = ESCROW_ACTOR,
    ) -> bool:
        """Record the release payout of a checked-in ticket. False if already recorded."""
        ticket = await self._get_ticket(ticket_id)
        now = self._clock()
        if not await self._ticket_repo.mark_settled(ticket, tx_hash, now):
            return False

        await self._bus.publish(
            DomainEventType.ESCROW_RELEASED,
            AggregateType.TICKET,
            ticket.id,
            payload={"tx_hash": tx_hash, "status": ticket.status},
            actor=actor,
            occurred_at=now,
        )
        logger.info("escrow.released", ticket_id=str(ticket_id), tx_hash=tx_hash)
        return True

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get(self, ticket_id: uuid.UUID) -> Ticket:
        return await self._get_ticket(ticket_id)

    async def get_with_event(self, ticket_id: uuid.UUID) -> tuple[Ticket, Event]:
        return await self._get_with_event(ticket_id)

    async def status_info(self, ticket_id: uuid.UUID) -> StatusInfo:
        ticket = await self._get_ticket(ticket_id)
        sm = TicketLifecycleMachine(current_status=ticket.status)
        status = TicketStatus(ticket.status)
        return StatusInfo(
            status=ticket.status,
            description=TICKET_STATUS_DESCRIPTIONS[status],
            allowed_transitions=sm.allowed_targets(),
            is_terminal=status.is_terminal,
            lifecycle=lifecycle_metadata(ticket),
        )

    async def history(self, ticket_id: uuid.UUID) -> list[DomainEvent]:
        await self._get_ticket(ticket_id)
        return await self._bus.stream(AggregateType.TICKET, ticket_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_ticket(self, ticket_id: uuid.UUID) -> Ticket:
        ticket = await self._ticket_repo.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(str(ticket_id))
        return ticket

    async def _get_event(self, event_id: uuid.UUID) -> Event:
        event = await self._event_repo.get_by_id(event_id)
        if event is None:
            raise EventNotFoundError(str(event_id))
        return event

    async def _get_with_event(self, ticket_id: uuid.UUID) -> tuple[Ticket, Event]:
        ticket = await self._get_ticket(ticket_id)
        return ticket, await self._get_event(ticket.event_id)

    @staticmethod
    def _require_organizer(event: Event, organizer_id: str, operation: str) -> None:
        if event.organizer_id != organizer_id:
            raise UnauthorizedError(organizer_id, operation)

    async def _apply(
        self,
        ticket: Ticket,
        transition: str,
        event_type: DomainEventType,
        actor: Actor,
        payload: dict | None = None,
        **values: Any,
    ) -> None:
        """Validate, compare-and-set and publish one transition.

        Raises:
            InvalidTransitionError: The move is not in the transition table.
            ConflictError: Another writer changed the ticket first; ``ticket``
                is refreshed to the winner's state.
        """
        from_status = TicketStatus(ticket.status)
        to_status = TicketStatus(fire_transition(TicketLifecycleMachine, ticket.status, transition))
        now = self._clock()

        applied = await self._ticket_repo.compare_and_set_status(
            ticket, from_status, to_status, now, **values
        )
        if not applied:
            raise ConflictError(
                f"Ticket {ticket.id} changed concurrently "
                f"(expected {from_status.value}, found {ticket.status})"
            )

        await self._bus.publish(
            event_type,
            AggregateType.TICKET,
            ticket.id,
            payload={
                "from_status": from_status.value,
                "to_status": to_status.value,
                "event_id": str(ticket.event_id),
                **(payload or {}),
            },
            actor=actor,
            occurred_at=now,
        )


def _check_in_result(ticket: Ticket, already: bool) -> CheckInResult:
    return CheckInResult(
        ticket_id=ticket.id,
        status=ticket.status,
        already_checked_in=already,
        checked_in_at=ticket.checked_in_at,
    )


def lifecycle_metadata(ticket: Ticket) -> TicketLifecycleMetadata:
    return TicketLifecycleMetadata(
        previous_status=ticket.previous_status,
        status_changed_at=ticket.status_changed_at,
        checked_in_at=ticket.checked_in_at,
        stake_amount=ticket.stake_amount,
        stake_currency=ticket.stake_currency,
        stake_tx_hash=ticket.stake_tx_hash,
        stake_wallet_address=ticket.stake_wallet_address,
        refund_tx_hash=ticket.refund_tx_hash,
        refunded_at=ticket.refunded_at,
        settlement_tx_hash=ticket.settlement_tx_hash,
        escrow_settled_at=ticket.escrow_settled_at,
        forfeited_at=ticket.forfeited_at,
    )

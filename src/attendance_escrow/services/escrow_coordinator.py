"""Escrow Settlement Coordinator — bridges ticket state and the escrow ledger.

Two sources of truth meet here: the ticket table and the EventEscrow
contract. The ledger is authoritative for money; a ticket's stake status is
a projection of it and must always be reconcilable back to it.

Rules the coordinator keeps:
    - Ticket writes go through TicketLifecycleEngine only.
    - Every ledger call has a timeout. A timeout is an unknown outcome:
      retried with exponential backoff, then left for ``reconcile``.
    - A ledger rejection is followed by a read. If the record already shows
      the outcome we wanted, the call is treated as a success.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from attendance_escrow.domain.enums import (
    DomainEventType,
    EventStatus,
    SettlementOutcome,
    StakeStatus,
    TicketStatus,
)
from attendance_escrow.domain.exceptions import (
    EscrowPlatformError,
    EventNotFoundError,
    InvalidTransitionError,
    LedgerRevertError,
    LedgerTransportError,
    PendingConfirmationError,
    RefundWindowClosedError,
    StakeNotFoundError,
    TicketNotFoundError,
    UnauthorizedError,
    VerificationFailedError,
)
from attendance_escrow.domain.models import (
    Actor,
    BatchResult,
    ReconciliationReport,
    SettlementResult,
    StakeReceipt,
    StakeVerification,
)
from attendance_escrow.infrastructure.database.repositories import (
    EventRepository,
    TicketRepository,
)
from attendance_escrow.ledger.encoding import from_wei, hash_event_id, same_address, to_wei
from attendance_escrow.logging_config import get_logger
from attendance_escrow.services.ticket_lifecycle import TicketLifecycleEngine

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable, Mapping

    from sqlalchemy.ext.asyncio import AsyncSession

    from attendance_escrow.config import Settings
    from attendance_escrow.domain.ledger_protocol import EscrowLedger
    from attendance_escrow.domain.models import DomainEvent, StakeRecord
    from attendance_escrow.infrastructure.database.orm_models import Event, Ticket
    from attendance_escrow.services.confirmation_cache import ConfirmationCache

logger = get_logger(__name__)

COORDINATOR_ACTOR = Actor.system("escrow_coordinator")
NO_SHOW_ACTOR = Actor.cron("no_show_forfeit")
RECONCILE_ACTOR = Actor.cron("escrow_reconciliation")

FORFEITABLE_EVENT_STATUSES = frozenset({EventStatus.ENDED, EventStatus.ARCHIVED})


def _start_timestamp(event: Event) -> int:
    """Event start as the unix seconds the EventEscrow contract stores."""
    return int(event.scheduled_start_at.timestamp())


class EscrowSettlementCoordinator:
    """Verifies stakes and drives release / refund / forfeit on the ledger."""

    CONSUMER_NAME = "escrow_settlement"

    def __init__(
        self,
        session: AsyncSession,
        ledger: EscrowLedger,
        cache: ConfirmationCache,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session
        self._ledger = ledger
        self._cache = cache
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tickets = TicketLifecycleEngine(session, clock=self._clock)
        self._ticket_repo = TicketRepository(session)
        self._event_repo = EventRepository(session)

    @property
    def handlers(self) -> Mapping[DomainEventType, Callable[[DomainEvent], Awaitable[Any]]]:
        """Explicit handler map for the event bus consumer."""
        return {DomainEventType.TICKET_CHECKED_IN: self.on_checked_in}

    # ------------------------------------------------------------------
    # Stake verification
    # ------------------------------------------------------------------

    async def verify_stake(
        self,
        ticket_id: uuid.UUID,
        tx_ref: str,
        wallet_address: str | None = None,
        event_id: uuid.UUID | None = None,
    ) -> StakeVerification:
        """Check an on-chain deposit and move the ticket approved -> staked.

        Raises:
            PendingConfirmationError: Deposit found but not deep enough yet; poll again.
            VerificationFailedError: Missing transaction or any fact mismatch.
            InvalidTransitionError: Ticket is not awaiting a stake.
        """
        ticket, event = await self._tickets.get_with_event(ticket_id)
        log = logger.bind(ticket_id=str(ticket_id), tx_ref=tx_ref)
        if event_id is not None and event.id != event_id:
            raise TicketNotFoundError(f"{ticket_id} for event {event_id}")

        if ticket.status == TicketStatus.STAKED and ticket.stake_tx_hash:
            if ticket.stake_tx_hash.lower() == tx_ref.lower():
                log.info("escrow.verify_stake_noop")
                return StakeVerification(
                    verified=True,
                    ticket_id=ticket.id,
                    ticket_status=ticket.status,
                    tx_hash=ticket.stake_tx_hash,
                    confirmations=self._settings.min_confirmations,
                )
        if not event.require_stake or ticket.status != TicketStatus.APPROVED:
            raise InvalidTransitionError(
                ticket.status, TicketStatus.STAKED.value, reason="ticket is not awaiting a stake"
            )

        declared = wallet_address or ticket.stake_wallet_address
        if not declared:
            raise VerificationFailedError("no wallet address declared for this ticket", tx_ref)
        if ticket.stake_wallet_address and not same_address(declared, ticket.stake_wallet_address):
            raise VerificationFailedError("wallet does not match the registered wallet", tx_ref)

        deposit = await self._cache.get(tx_ref)
        confirmations = self._settings.min_confirmations
        if deposit is None:
            deposit = await self._call_ledger("get_stake_deposit", self._ledger.get_stake_deposit, tx_ref)
            if deposit is None:
                raise VerificationFailedError("no stake transaction with this reference", tx_ref)
            head = await self._call_ledger("block_number", self._ledger.block_number)
            confirmations = head - deposit.block_number + 1
            if confirmations < self._settings.min_confirmations:
                log.info(
                    "escrow.stake_pending_confirmation",
                    confirmations=confirmations,
                    required=self._settings.min_confirmations,
                )
                raise PendingConfirmationError(
                    tx_ref, confirmations, self._settings.min_confirmations
                )
            await self._cache.put(tx_ref, deposit)

        event_id_hash = hash_event_id(str(event.id))
        required_wei = to_wei(event.stake_amount)
        if not deposit.succeeded:
            raise VerificationFailedError("stake transaction reverted", tx_ref)
        if deposit.event_id_hash.lower() != event_id_hash.lower():
            raise VerificationFailedError("stake is for a different event", tx_ref)
        if not same_address(deposit.organizer, event.organizer_wallet):
            raise VerificationFailedError("stake names a different organizer", tx_ref)
        if deposit.event_start_time != _start_timestamp(event):
            # The ledger's refund and forfeit guards read this value
            raise VerificationFailedError("stake names a different event start time", tx_ref)
        if not same_address(deposit.attendee, declared):
            raise VerificationFailedError("depositor does not match the declared wallet", tx_ref)
        if deposit.amount_wei < required_wei:
            raise VerificationFailedError(
                f"deposited {from_wei(deposit.amount_wei)} < required {event.stake_amount}", tx_ref
            )

        record = await self._call_ledger(
            "get_stake", self._ledger.get_stake, event_id_hash, declared
        )
        if record.status != StakeStatus.STAKED:
            raise VerificationFailedError(
                f"ledger record is {record.status.name}, expected STAKED", tx_ref
            )

        await self._tickets.mark_staked(
            ticket.id,
            StakeReceipt(
                tx_hash=deposit.tx_hash,
                wallet_address=declared,
                amount=from_wei(deposit.amount_wei),
                currency=event.stake_currency,
            ),
        )
        log.info("escrow.stake_verified", confirmations=confirmations)
        return StakeVerification(
            verified=True,
            ticket_id=ticket.id,
            ticket_status=ticket.status,
            tx_hash=deposit.tx_hash,
            confirmations=confirmations,
        )

    async def lookup_stake(self, event_id: uuid.UUID, wallet_address: str) -> StakeRecord:
        """Current on-chain record for (event, wallet)."""
        event = await self._event_repo.get_by_id(event_id)
        if event is None:
            raise EventNotFoundError(str(event_id))
        record = await self._call_ledger(
            "get_stake", self._ledger.get_stake, hash_event_id(str(event.id)), wallet_address
        )
        if record.status == StakeStatus.NONE:
            raise StakeNotFoundError(str(event_id), wallet_address)
        return record

    # ------------------------------------------------------------------
    # Release on check-in (event bus handler)
    # ------------------------------------------------------------------

    async def on_checked_in(self, event: DomainEvent) -> SettlementResult:
        """Release the stake of a ticket that checked in from ``staked``.

        Safe under redelivery: the ledger rejects a second release, the
        follow-up read shows RELEASED and the outcome is ALREADY_SETTLED.
        """
        if event.payload.get("from_status") != TicketStatus.STAKED.value:
            return SettlementResult(event.aggregate_id, SettlementOutcome.NOT_APPLICABLE)

        ticket, ev = await self._tickets.get_with_event(event.aggregate_id)
        return await self._release(ticket, ev, COORDINATOR_ACTOR)

    async def _release(self, ticket: Ticket, event: Event, actor: Actor) -> SettlementResult:
        event_id_hash = hash_event_id(str(event.id))
        log = logger.bind(ticket_id=str(ticket.id))
        try:
            receipt = await self._call_ledger(
                "release",
                self._ledger.release,
                event_id_hash,
                ticket.stake_wallet_address,
                sender=self._settings.escrow_owner_address,
            )
            outcome, tx_hash = SettlementOutcome.RELEASED, receipt.tx_hash
        except LedgerRevertError as err:
            try:
                record = await self._call_ledger(
                    "get_stake", self._ledger.get_stake, event_id_hash, ticket.stake_wallet_address
                )
            except LedgerTransportError:
                log.warning("escrow.release_deferred", reason="record read failed after revert")
                return SettlementResult(ticket.id, SettlementOutcome.DEFERRED)
            if record.status != StakeStatus.RELEASED:
                log.error(
                    "escrow.release_rejected",
                    reason=err.reason,
                    ledger_status=record.status.name,
                )
                return SettlementResult(ticket.id, SettlementOutcome.REJECTED)
            log.info("escrow.release_already_settled")
            outcome, tx_hash = SettlementOutcome.ALREADY_SETTLED, None
        except LedgerTransportError as err:
            log.warning("escrow.release_deferred", error=err.message)
            return SettlementResult(ticket.id, SettlementOutcome.DEFERRED)

        if ticket.escrow_settled_at is None:
            await self._tickets.record_settlement(ticket.id, tx_hash, actor=actor)
        return SettlementResult(ticket.id, outcome, tx_hash)

    # ------------------------------------------------------------------
    # Refund (attendee) and forfeit (organizer)
    # ------------------------------------------------------------------

    async def refund(self, ticket_id: uuid.UUID, requester_id: str) -> Ticket:
        """Return the stake to the attendee while still before the refund cutoff.

        The window is open strictly before ``start - refund_cutoff``; a request
        at exactly that instant is rejected.
        """
        ticket, event = await self._tickets.get_with_event(ticket_id)
        if ticket.user_id != requester_id:
            raise UnauthorizedError(requester_id, f"refund ticket {ticket_id}")
        if ticket.status != TicketStatus.STAKED:
            raise InvalidTransitionError(ticket.status, TicketStatus.REFUNDED.value)

        cutoff_at = event.scheduled_start_at - self._settings.refund_cutoff
        if not self._clock() < cutoff_at:
            raise RefundWindowClosedError(str(ticket_id), cutoff_at.isoformat())

        event_id_hash = hash_event_id(str(event.id))
        tx_hash = await self._settle_or_confirm(
            "refund",
            StakeStatus.REFUNDED,
            ticket,
            event_id_hash,
            self._ledger.refund,
            event_id_hash,
            sender=ticket.stake_wallet_address,
        )
        return await self._tickets.mark_refunded(
            ticket.id, tx_hash, actor=Actor.user(requester_id)
        )

    async def forfeit(self, ticket_id: uuid.UUID, organizer_id: str) -> Ticket:
        """Forfeit a no-show's stake to the organizer once the event has ended."""
        ticket, event = await self._tickets.get_with_event(ticket_id)
        if event.organizer_id != organizer_id:
            raise UnauthorizedError(organizer_id, f"forfeit ticket {ticket_id}")
        return await self._forfeit(ticket, event, Actor.user(organizer_id))

    async def _forfeit(self, ticket: Ticket, event: Event, actor: Actor) -> Ticket:
        if ticket.status != TicketStatus.STAKED:
            raise InvalidTransitionError(ticket.status, TicketStatus.FORFEITED.value)
        if EventStatus(event.status) not in FORFEITABLE_EVENT_STATUSES:
            raise InvalidTransitionError(
                ticket.status,
                TicketStatus.FORFEITED.value,
                reason=f"event is {event.status}, not ended",
            )

        event_id_hash = hash_event_id(str(event.id))
        tx_hash = await self._settle_or_confirm(
            "forfeit",
            StakeStatus.FORFEITED,
            ticket,
            event_id_hash,
            self._ledger.forfeit,
            event_id_hash,
            ticket.stake_wallet_address,
            sender=self._settings.escrow_owner_address,
        )
        return await self._tickets.mark_forfeited(ticket.id, tx_hash, actor=actor)

    async def process_no_shows(self, now: datetime | None = None) -> BatchResult:
        """Forfeit every still-staked ticket of events that ended past the grace period."""
        now = now or self._clock()
        result = BatchResult()
        if not self._settings.auto_forfeit_no_shows:
            return result

        events = await self._event_repo.list_ended_before(now - self._settings.no_show_grace_period)
        by_id = {e.id: e for e in events}
        for ticket in await self._ticket_repo.list_staked_for_events(by_id):
            try:
                await self._forfeit(ticket, by_id[ticket.event_id], NO_SHOW_ACTOR)
                result.succeeded.append(ticket.id)
            except EscrowPlatformError as err:
                result.failed.append(ticket.id)
                result.errors.append(f"{ticket.id}: {err.message}")
                logger.warning("escrow.no_show_forfeit_failed", ticket_id=str(ticket.id), error=err.message)

        if result.succeeded or result.failed:
            logger.info(
                "escrow.no_shows_processed",
                succeeded=len(result.succeeded),
                failed=len(result.failed),
            )
        return result

    # ------------------------------------------------------------------
    # Reconciliation sweep
    # ------------------------------------------------------------------

    async def reconcile(self, now: datetime | None = None) -> ReconciliationReport:
        """Re-derive stuck tickets from the ledger's authoritative record."""
        now = now or self._clock()
        cutoff = now - self._settings.reconcile_after
        report = ReconciliationReport()

        for ticket in await self._ticket_repo.list_stuck(TicketStatus.APPROVED, cutoff):
            if not ticket.stake_wallet_address:
                continue
            await self._reconcile_one(ticket, report, self._reconcile_awaiting_stake)

        for ticket in await self._ticket_repo.list_stuck(TicketStatus.STAKED, cutoff):
            await self._reconcile_one(ticket, report, self._reconcile_staked)

        for ticket in await self._ticket_repo.list_unsettled_check_ins(cutoff):
            await self._reconcile_one(ticket, report, self._reconcile_checked_in)

        logger.info(
            "escrow.reconciliation_completed",
            examined=report.examined,
            repaired=len(report.repaired),
            deferred=len(report.deferred),
            drift=len(report.drift),
        )
        return report

    async def _reconcile_one(
        self,
        ticket: Ticket,
        report: ReconciliationReport,
        step: Callable[[Ticket, Event, StakeRecord, ReconciliationReport], Awaitable[None]],
    ) -> None:
        report.examined += 1
        try:
            event = await self._event_repo.get_by_id(ticket.event_id)
            record = await self._call_ledger(
                "get_stake",
                self._ledger.get_stake,
                hash_event_id(str(ticket.event_id)),
                ticket.stake_wallet_address,
            )
            await step(ticket, event, record, report)
        except LedgerTransportError as err:
            report.deferred.append(ticket.id)
            logger.warning("escrow.reconcile_deferred", ticket_id=str(ticket.id), error=err.message)
        except EscrowPlatformError as err:
            report.errors.append(f"{ticket.id}: {err.message}")
            logger.error("escrow.reconcile_failed", ticket_id=str(ticket.id), error=err.message)

    async def _reconcile_awaiting_stake(
        self, ticket: Ticket, event: Event, record: StakeRecord, report: ReconciliationReport
    ) -> None:
        if record.status == StakeStatus.NONE:
            return
        if (
            record.status == StakeStatus.STAKED
            and same_address(record.organizer, event.organizer_wallet)
            and record.amount_wei >= to_wei(event.stake_amount)
            and record.event_start_time == _start_timestamp(event)
        ):
            await self._tickets.mark_staked(
                ticket.id,
                StakeReceipt(
                    tx_hash=None,
                    wallet_address=ticket.stake_wallet_address,
                    amount=from_wei(record.amount_wei),
                    currency=event.stake_currency,
                ),
                actor=RECONCILE_ACTOR,
            )
            report.repaired.append(ticket.id)
            return
        self._note_drift(ticket, record, report)

    async def _reconcile_staked(
        self, ticket: Ticket, event: Event, record: StakeRecord, report: ReconciliationReport
    ) -> None:
        if record.status == StakeStatus.STAKED:
            return
        if record.status == StakeStatus.REFUNDED:
            await self._tickets.mark_refunded(ticket.id, None, actor=RECONCILE_ACTOR)
        elif record.status == StakeStatus.FORFEITED:
            await self._tickets.mark_forfeited(ticket.id, None, actor=RECONCILE_ACTOR)
        elif record.status == StakeStatus.RELEASED:
            # Released on-chain means the organizer confirmed attendance
            await self._tickets.check_in(ticket.id, scanner_id=str(RECONCILE_ACTOR))
            await self._tickets.record_settlement(ticket.id, None, actor=RECONCILE_ACTOR)
        else:
            self._note_drift(ticket, record, report)
            return
        report.repaired.append(ticket.id)

    async def _reconcile_checked_in(
        self, ticket: Ticket, event: Event, record: StakeRecord, report: ReconciliationReport
    ) -> None:
        if record.status == StakeStatus.STAKED:
            result = await self._release(ticket, event, RECONCILE_ACTOR)
            if result.outcome == SettlementOutcome.DEFERRED:
                report.deferred.append(ticket.id)
            elif result.outcome == SettlementOutcome.REJECTED:
                self._note_drift(ticket, record, report)
            else:
                report.repaired.append(ticket.id)
        elif record.status == StakeStatus.RELEASED:
            await self._tickets.record_settlement(ticket.id, None, actor=RECONCILE_ACTOR)
            report.repaired.append(ticket.id)
        else:
            self._note_drift(ticket, record, report)

    @staticmethod
    def _note_drift(ticket: Ticket, record: StakeRecord, report: ReconciliationReport) -> None:
        report.drift.append(ticket.id)
        logger.error(
            "escrow.reconcile_drift",
            ticket_id=str(ticket.id),
            ticket_status=ticket.status,
            ledger_status=record.status.name,
        )

    # ------------------------------------------------------------------
    # Ledger access
    # ------------------------------------------------------------------

    async def _settle_or_confirm(
        self,
        operation: str,
        expected: StakeStatus,
        ticket: Ticket,
        event_id_hash: str,
        call: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> str | None:
        """Run a settling ledger write; a revert whose record already shows ``expected`` counts as done."""
        try:
            receipt = await self._call_ledger(operation, call, *args, **kwargs)
            return receipt.tx_hash
        except LedgerRevertError:
            record = await self._call_ledger(
                "get_stake", self._ledger.get_stake, event_id_hash, ticket.stake_wallet_address
            )
            if record.status == expected:
                logger.info(
                    "escrow.already_settled_on_ledger",
                    operation=operation,
                    ticket_id=str(ticket.id),
                )
                return None
            raise

    async def _call_ledger(
        self,
        operation: str,
        call: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Call the ledger with a timeout, retrying transport failures with backoff."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._settings.ledger_max_attempts),
            wait=wait_exponential(
                min=self._settings.ledger_retry_min_wait_seconds,
                max=self._settings.ledger_retry_max_wait_seconds,
            ),
            retry=retry_if_exception_type(LedgerTransportError),
            reraise=True,
        ):
            with attempt:
                try:
                    return await asyncio.wait_for(
                        call(*args, **kwargs),
                        timeout=self._settings.ledger_timeout_seconds,
                    )
                except TimeoutError as err:
                    logger.warning(
                        "ledger.call_timeout",
                        operation=operation,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    raise LedgerTransportError(f"{operation} timed out") from err
        raise LedgerTransportError(f"{operation} exhausted retries")

"""Lifecycle State Machine Guards.

Uses python-statemachine to enforce legal transitions at the domain level.
No matter what a route, sweep or coordinator asks for, an illegal move
(e.g. issued -> refunded) raises before any row is touched.

A machine is instantiated per aggregate at its stored status and fired once;
the engines then persist the resulting status with a compare-and-set.

Event transition table:
    draft      -> published   (publish)
    published  -> draft       (revert_to_draft)
    published  -> live        (go_live)
    live       -> ended       (finish)
    ended      -> archived    (archive)

Ticket transition table:
    pending           -> pending_approval  (request_approval)
    pending           -> approved          (approve, stake events)
    pending           -> issued            (issue, free events)
    pending_approval  -> approved          (approve)
    pending_approval  -> rejected          (reject)
    approved          -> issued            (issue)
    approved          -> staked            (stake)
    issued, staked    -> checked_in        (check_in)
    staked            -> refunded          (refund)
    staked            -> forfeited         (forfeit)
    pending, pending_approval, approved, issued -> revoked  (revoke)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from attendance_escrow.domain.enums import EventStatus, TicketStatus
from attendance_escrow.domain.exceptions import InvalidTransitionError


class _LifecycleMachine(StateMachine):
    """Shared construction and introspection helpers."""

    def __init__(self, current_status: str) -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        return str(self.current_state.value)

    def allowed_targets(self) -> list[str]:
        """Statuses reachable in one step from the current state."""
        targets: list[str] = []
        for transition in self.current_state.transitions:
            value = str(transition.target.value)
            if value not in targets:
                targets.append(value)
        return targets


class EventLifecycleMachine(_LifecycleMachine):
    """Guards the Event aggregate lifecycle."""

    draft = State("Draft", initial=True)
    published = State("Published")
    live = State("Live")
    ended = State("Ended")
    archived = State("Archived", final=True)

    publish = draft.to(published)
    revert_to_draft = published.to(draft)
    go_live = published.to(live)
    finish = live.to(ended)
    archive = ended.to(archived)


class TicketLifecycleMachine(_LifecycleMachine):
    """Guards the Ticket aggregate lifecycle."""

    # --- States ---
    pending = State("Pending", initial=True)
    pending_approval = State("Pending approval")
    approved = State("Approved")
    issued = State("Issued")
    staked = State("Staked")
    rejected = State("Rejected", final=True)
    checked_in = State("Checked in", final=True)
    refunded = State("Refunded", final=True)
    forfeited = State("Forfeited", final=True)
    revoked = State("Revoked", final=True)

    # --- Events / Transitions ---

    # Registration routing
    request_approval = pending.to(pending_approval)
    approve = pending.to(approved) | pending_approval.to(approved)
    reject = pending_approval.to(rejected)
    issue = pending.to(issued) | approved.to(issued)

    # Stake path
    stake = approved.to(staked)
    refund = staked.to(refunded)
    forfeit = staked.to(forfeited)

    # Door
    check_in = issued.to(checked_in) | staked.to(checked_in)

    # Organizer cancellation; a staked ticket settles through refund or forfeit
    revoke = (
        pending.to(revoked)
        | pending_approval.to(revoked)
        | approved.to(revoked)
        | issued.to(revoked)
    )


EVENT_STATUS_DESCRIPTIONS: dict[EventStatus, str] = {
    EventStatus.DRAFT: "Event is being set up and is not visible to attendees",
    EventStatus.PUBLISHED: "Event is open for registration",
    EventStatus.LIVE: "Event is in progress; check-in is open",
    EventStatus.ENDED: "Event is over; no-show stakes may be forfeited",
    EventStatus.ARCHIVED: "Event is archived and read-only",
}

TICKET_STATUS_DESCRIPTIONS: dict[TicketStatus, str] = {
    TicketStatus.PENDING: "Registration received",
    TicketStatus.PENDING_APPROVAL: "Waiting for the organizer to approve",
    TicketStatus.APPROVED: "Approved; a stake deposit may still be required",
    TicketStatus.REJECTED: "Registration was declined by the organizer",
    TicketStatus.ISSUED: "Ticket issued and valid for check-in",
    TicketStatus.STAKED: "Stake verified on-chain; ticket valid for check-in",
    TicketStatus.CHECKED_IN: "Attendee checked in at the door",
    TicketStatus.REFUNDED: "Stake returned to the attendee before the cutoff",
    TicketStatus.FORFEITED: "Stake forfeited to the organizer for a no-show",
    TicketStatus.REVOKED: "Ticket cancelled by the organizer",
}


def fire_transition(
    machine_cls: type[_LifecycleMachine],
    current_status: str,
    event_name: str,
) -> str:
    """Fire ``event_name`` on a machine at ``current_status`` and return the new status.

    Raises:
        InvalidTransitionError: If the transition is illegal from ``current_status``.
        ValueError: If the status or event name is unknown.
    """
    sm = machine_cls(current_status=current_status)
    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(f"Unknown event '{event_name}' for {machine_cls.__name__}")
    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidTransitionError(current_status, event_name) from err
    return sm.status

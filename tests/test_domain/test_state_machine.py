"""Tests for the Event and Ticket lifecycle machines.

These tests verify that:
    1. Every ticket status is reachable from ``pending``.
    2. Terminal statuses reject every transition.
    3. fire_transition maps TransitionNotAllowed to InvalidTransitionError.
    4. The event lifecycle follows draft -> published -> live -> ended -> archived.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from attendance_escrow.domain.enums import TERMINAL_TICKET_STATUSES, EventStatus, TicketStatus
from attendance_escrow.domain.exceptions import InvalidTransitionError
from attendance_escrow.domain.state_machine import (
    EventLifecycleMachine,
    TicketLifecycleMachine,
    fire_transition,
)

TICKET_TRANSITIONS = [
    "request_approval",
    "approve",
    "reject",
    "issue",
    "stake",
    "refund",
    "forfeit",
    "check_in",
    "revoke",
]


class TestEventLifecycle:
    def test_full_lifecycle(self) -> None:
        sm = EventLifecycleMachine("draft")
        sm.publish()
        assert sm.status == "published"
        sm.go_live()
        assert sm.status == "live"
        sm.finish()
        assert sm.status == "ended"
        sm.archive()
        assert sm.status == "archived"

    def test_revert_only_from_published(self) -> None:
        assert fire_transition(EventLifecycleMachine, "published", "revert_to_draft") == "draft"
        with pytest.raises(InvalidTransitionError):
            fire_transition(EventLifecycleMachine, "live", "revert_to_draft")

    def test_cannot_skip_live(self) -> None:
        sm = EventLifecycleMachine("published")
        with pytest.raises(TransitionNotAllowed):
            sm.finish()

    def test_archived_is_final(self) -> None:
        sm = EventLifecycleMachine(EventStatus.ARCHIVED.value)
        assert sm.current_state.final
        assert sm.allowed_targets() == []


class TestTicketReachability:
    def test_every_status_reachable_from_pending(self) -> None:
        seen = {"pending"}
        frontier = ["pending"]
        while frontier:
            status = frontier.pop()
            for target in TicketLifecycleMachine(status).allowed_targets():
                if target not in seen:
                    seen.add(target)
                    frontier.append(target)
        assert seen == {s.value for s in TicketStatus}

    def test_registration_routes(self) -> None:
        assert fire_transition(TicketLifecycleMachine, "pending", "request_approval") == "pending_approval"
        assert fire_transition(TicketLifecycleMachine, "pending", "approve") == "approved"
        assert fire_transition(TicketLifecycleMachine, "pending", "issue") == "issued"

    def test_stake_requires_approved(self) -> None:
        assert fire_transition(TicketLifecycleMachine, "approved", "stake") == "staked"
        with pytest.raises(InvalidTransitionError):
            fire_transition(TicketLifecycleMachine, "issued", "stake")

    def test_check_in_from_issued_or_staked(self) -> None:
        assert fire_transition(TicketLifecycleMachine, "issued", "check_in") == "checked_in"
        assert fire_transition(TicketLifecycleMachine, "staked", "check_in") == "checked_in"

    def test_staked_cannot_be_revoked(self) -> None:
        with pytest.raises(InvalidTransitionError):
            fire_transition(TicketLifecycleMachine, "staked", "revoke")

    def test_forfeit_issued_ticket_rejected(self) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            fire_transition(TicketLifecycleMachine, "issued", "forfeit")
        assert exc_info.value.current_state == "issued"


class TestTerminalStatuses:
    @pytest.mark.parametrize("status", sorted(s.value for s in TERMINAL_TICKET_STATUSES))
    @pytest.mark.parametrize("transition", TICKET_TRANSITIONS)
    def test_terminal_rejects_everything(self, status: str, transition: str) -> None:
        with pytest.raises(InvalidTransitionError):
            fire_transition(TicketLifecycleMachine, status, transition)

    @pytest.mark.parametrize("status", sorted(s.value for s in TERMINAL_TICKET_STATUSES))
    def test_terminal_is_final(self, status: str) -> None:
        sm = TicketLifecycleMachine(status)
        assert sm.current_state.final
        assert sm.allowed_targets() == []


class TestValidation:
    def test_unknown_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            TicketLifecycleMachine("lost")

    def test_unknown_event(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            fire_transition(TicketLifecycleMachine, "pending", "teleport")

    def test_allowed_targets_from_approved(self) -> None:
        targets = set(TicketLifecycleMachine("approved").allowed_targets())
        assert targets == {"staked", "issued", "revoked"}

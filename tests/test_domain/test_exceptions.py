"""Tests for the domain exception hierarchy."""

from __future__ import annotations

from attendance_escrow.domain.exceptions import (
    CapacityExceededError,
    ConflictError,
    EscrowPlatformError,
    InvalidTransitionError,
    NotFoundError,
    PendingConfirmationError,
    RefundWindowClosedError,
    TicketNotFoundError,
)


class TestHierarchy:
    def test_refund_window_is_an_invalid_transition(self) -> None:
        err = RefundWindowClosedError("t-1", "2026-06-03T11:00:00+00:00")
        assert isinstance(err, InvalidTransitionError)
        assert err.code == "REFUND_WINDOW_CLOSED"
        assert "2026-06-03T11:00:00" in err.message

    def test_capacity_is_a_conflict(self) -> None:
        err = CapacityExceededError("e-1", 10)
        assert isinstance(err, ConflictError)
        assert err.code == "CAPACITY_EXCEEDED"

    def test_not_found_codes(self) -> None:
        err = TicketNotFoundError("abc")
        assert isinstance(err, NotFoundError)
        assert isinstance(err, EscrowPlatformError)
        assert err.code == "TICKET_NOT_FOUND"

    def test_pending_confirmation_carries_counts(self) -> None:
        err = PendingConfirmationError("0xabc", 1, 3)
        assert (err.confirmations, err.required) == (1, 3)
        assert "1 of 3" in err.message

    def test_invalid_transition_reason_in_message(self) -> None:
        err = InvalidTransitionError("staked", "revoked", reason="settle first")
        assert err.message == "Invalid transition: staked -> revoked (settle first)"

"""Domain exceptions for the attendance escrow service.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""


class EscrowPlatformError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ESCROW_PLATFORM_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- State Machine Errors ---


class InvalidTransitionError(EscrowPlatformError):
    """Raised when a requested move is not permitted from the current status.

    Always surfaced to the caller, never retried automatically.
    """

    def __init__(
        self,
        current_state: str,
        attempted: str,
        reason: str | None = None,
    ) -> None:
        message = f"Invalid transition: {current_state} -> {attempted}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message=message, code="INVALID_TRANSITION")
        self.current_state = current_state
        self.attempted = attempted


class RefundWindowClosedError(InvalidTransitionError):
    """Raised when a refund is requested at or after the refund cutoff."""

    def __init__(self, ticket_id: str, cutoff_at: str) -> None:
        super().__init__(
            current_state="staked",
            attempted="refunded",
            reason=f"refund window closed at {cutoff_at}",
        )
        self.code = "REFUND_WINDOW_CLOSED"
        self.ticket_id = ticket_id


# --- Lookup Errors ---


class NotFoundError(EscrowPlatformError):
    """Base exception for missing records."""


class EventNotFoundError(NotFoundError):
    def __init__(self, event_id: str) -> None:
        super().__init__(message=f"Event not found: {event_id}", code="EVENT_NOT_FOUND")
        self.event_id = event_id


class TicketNotFoundError(NotFoundError):
    def __init__(self, ticket_ref: str) -> None:
        super().__init__(message=f"Ticket not found: {ticket_ref}", code="TICKET_NOT_FOUND")
        self.ticket_ref = ticket_ref


class StakeNotFoundError(NotFoundError):
    def __init__(self, event_id: str, wallet_address: str) -> None:
        super().__init__(
            message=f"No stake for event {event_id} and wallet {wallet_address}",
            code="STAKE_NOT_FOUND",
        )


# --- Concurrency Errors ---


class ConflictError(EscrowPlatformError):
    """Raised when a concurrent transition already applied (lost compare-and-set).

    Callers should re-read state rather than blindly retry the same mutation.
    """

    def __init__(self, message: str, code: str = "CONFLICT") -> None:
        super().__init__(message=message, code=code)


class CapacityExceededError(ConflictError):
    def __init__(self, event_id: str, capacity: int) -> None:
        super().__init__(
            message=f"Event {event_id} is at capacity ({capacity})",
            code="CAPACITY_EXCEEDED",
        )


# --- Verification Errors ---


class VerificationFailedError(EscrowPlatformError):
    """On-chain fact does not match expectation. Terminal for this request."""

    def __init__(self, reason: str, tx_ref: str | None = None) -> None:
        super().__init__(
            message=f"Stake verification failed: {reason}",
            code="VERIFICATION_FAILED",
        )
        self.reason = reason
        self.tx_ref = tx_ref


class PendingConfirmationError(EscrowPlatformError):
    """On-chain fact exists but is not final yet. Retryable by polling."""

    def __init__(self, tx_ref: str, confirmations: int, required: int) -> None:
        super().__init__(
            message=(
                f"Transaction {tx_ref} has {confirmations} of {required} "
                "required confirmations"
            ),
            code="PENDING_CONFIRMATION",
        )
        self.tx_ref = tx_ref
        self.confirmations = confirmations
        self.required = required


# --- Ledger Errors ---


class LedgerTransportError(EscrowPlatformError):
    """RPC or network failure talking to the ledger. Outcome is unknown."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="LEDGER_TRANSPORT_ERROR")


class LedgerRevertError(EscrowPlatformError):
    """The ledger's own guard rejected the operation."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            message=f"Ledger rejected {operation}: {reason}",
            code="LEDGER_REVERT",
        )
        self.operation = operation
        self.reason = reason


# --- Access & Input Errors ---


class UnauthorizedError(EscrowPlatformError):
    """Caller lacks the role required for the operation."""

    def __init__(self, actor_id: str, operation: str) -> None:
        super().__init__(
            message=f"{actor_id} is not allowed to {operation}",
            code="UNAUTHORIZED",
        )


class InvalidScheduleError(EscrowPlatformError):
    """Raised when event options or schedule are inconsistent."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_SCHEDULE")

"""
Payments component models.

Data models for the payment lifecycle state machine.

State machine:
    created -> approval_requested -> approved -> completed
    any non-terminal -> cancelled | user_cancelled | failed
Terminal states are sticky.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

# --- State Machine ---


class PaymentState(Enum):
    """
    Payment lifecycle state.

    State transitions:
    - created → approval_requested (client asks the server to approve)
    - approval_requested → approved (network confirmed approval)
    - approved → completed (network verified the settlement transaction)
    - any non-terminal → cancelled / user_cancelled / failed
    """

    CREATED = "created"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    USER_CANCELLED = "user_cancelled"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: PaymentState | str) -> PaymentState:
        """
        Parse a state from its value or its CamelCase name.

        Accepts "completed", "COMPLETED", "Completed", "UserCancelled",
        "user_cancelled" and so on.
        """
        if isinstance(value, PaymentState):
            return value
        raw = value.strip()
        normalized = "".join(
            f"_{ch.lower()}" if ch.isupper() and i > 0 and raw[i - 1].islower() else ch.lower()
            for i, ch in enumerate(raw)
        )
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown payment state: {value!r}") from None


TERMINAL_STATES: frozenset[PaymentState] = frozenset(
    {
        PaymentState.COMPLETED,
        PaymentState.CANCELLED,
        PaymentState.USER_CANCELLED,
        PaymentState.FAILED,
    }
)

ABORTED_STATES: frozenset[PaymentState] = TERMINAL_STATES - {PaymentState.COMPLETED}

# Progress order, used so recovery never moves a record backwards
STATE_RANK: dict[PaymentState, int] = {
    PaymentState.CREATED: 0,
    PaymentState.APPROVAL_REQUESTED: 1,
    PaymentState.APPROVED: 2,
    PaymentState.COMPLETED: 3,
    PaymentState.CANCELLED: 3,
    PaymentState.USER_CANCELLED: 3,
    PaymentState.FAILED: 3,
}

_ABORTS = {PaymentState.CANCELLED, PaymentState.USER_CANCELLED, PaymentState.FAILED}

# Valid state transitions for live signals (recovery is checked separately)
VALID_TRANSITIONS: dict[PaymentState, set[PaymentState]] = {
    PaymentState.CREATED: {PaymentState.APPROVAL_REQUESTED} | _ABORTS,
    PaymentState.APPROVAL_REQUESTED: {
        PaymentState.APPROVAL_REQUESTED,
        PaymentState.APPROVED,
    }
    | _ABORTS,
    PaymentState.APPROVED: {PaymentState.COMPLETED} | _ABORTS,
    PaymentState.COMPLETED: set(),
    PaymentState.CANCELLED: set(),
    PaymentState.USER_CANCELLED: set(),
    PaymentState.FAILED: set(),
}


def can_transition(from_state: PaymentState, to_state: PaymentState) -> bool:
    """Check if a live-signal transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def is_terminal(state: PaymentState) -> bool:
    return state in TERMINAL_STATES


# --- Entity ---


@dataclass(frozen=True)
class PaymentRecord:
    """
    Payment lifecycle record, keyed by the network-issued payment id.

    user_id, content_id and amount may be None on a record synthesized from a
    signal that does not carry them; the first signal that does fills them in.
    Records are never deleted.
    """

    payment_id: str
    user_id: str | None = None
    content_id: str | None = None
    amount: Decimal | None = None
    memo: str = ""
    state: PaymentState = PaymentState.CREATED
    transaction_id: str | None = None  # Present only once verified
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def entitlement_key(self) -> tuple[str, str] | None:
        """(user_id, content_id) if both are known."""
        if self.user_id is None or self.content_id is None:
            return None
        return (self.user_id, self.content_id)


# --- Signals ---


@dataclass(frozen=True)
class RequestApproval:
    """Client asks the server to approve a newly created payment."""


@dataclass(frozen=True)
class ConfirmApproval:
    """Outcome of the network approval call."""

    approved: bool


@dataclass(frozen=True)
class ConfirmCompletion:
    """Outcome of the network completion call for a client-supplied transaction."""

    transaction_id: str
    verified: bool
    settlement_ref: str | None = None
    rejected: bool = False


@dataclass(frozen=True)
class Cancel:
    """The network or the user aborted the payment."""

    reason: str = "cancelled"
    user_cancelled: bool = False


@dataclass(frozen=True)
class RecoverIncomplete:
    """
    Re-entry after re-authentication with an unresolved payment.

    Carries the state the network reports, which wins over local
    non-terminal state.
    """

    reported_state: PaymentState
    transaction_id: str | None = None


Signal = RequestApproval | ConfirmApproval | ConfirmCompletion | Cancel | RecoverIncomplete


# --- Output Models ---


@dataclass(frozen=True)
class TransitionResult:
    """Output of applying one signal."""

    record: PaymentRecord
    changed: bool
    completed_now: bool = False  # Entered COMPLETED with this signal


# --- Errors ---


class PaymentError(Exception):
    """Base exception for payment reconciliation errors."""

    def __init__(self, message: str, payment_id: str | None = None) -> None:
        self.payment_id = payment_id
        super().__init__(message)


class InvalidTransitionError(PaymentError):
    """
    Signal disagrees in kind with a terminal state.

    Protocol bug on the caller's side: reported, not retried, no state change.
    """

    def __init__(
        self, payment_id: str, current: PaymentState, signal: str
    ) -> None:
        self.current = current
        self.signal = signal
        super().__init__(
            f"Cannot apply {signal} to payment {payment_id} in state {current.value}",
            payment_id,
        )


class CompletionRejectedError(PaymentError):
    """
    Completion attempt was not accepted (not yet approved, or transaction
    not verified). Retryable; the record is left unchanged.
    """

    def __init__(self, payment_id: str, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Completion rejected for {payment_id}: {reason}", payment_id)


class ExternalVerificationFailedError(PaymentError):
    """The network explicitly rejected the payment; the record is now FAILED."""

    def __init__(self, record: PaymentRecord, reason: str) -> None:
        self.record = record
        self.reason = reason
        super().__init__(
            f"Payment {record.payment_id} rejected by network: {reason}",
            record.payment_id,
        )


class PaymentOwnershipError(PaymentError):
    """A signal names a user other than the one the payment belongs to."""

    def __init__(self, payment_id: str) -> None:
        super().__init__(f"Payment {payment_id} belongs to another user", payment_id)

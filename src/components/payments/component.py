"""
Payments component.

Pure transition function for the payment lifecycle. No I/O: the caller
supplies the current record, the signal (including any verification outcome
already obtained from the network) and the clock reading, and persists the
returned record itself.

Key behaviors:
- Terminal states are sticky; later signals are no-ops
- Signals that disagree in kind with a terminal state raise InvalidTransitionError
- Completion that is not verified leaves the record unchanged (retryable)
- Recovery adopts the network-reported state but never moves backwards
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from src.components.payments.models import (
    ABORTED_STATES,
    STATE_RANK,
    Cancel,
    CompletionRejectedError,
    ConfirmApproval,
    ConfirmCompletion,
    InvalidTransitionError,
    PaymentOwnershipError,
    PaymentRecord,
    PaymentState,
    RecoverIncomplete,
    RequestApproval,
    Signal,
    TransitionResult,
    can_transition,
)
from src.core.ports.payment import ExternalPayment

# --- Helpers ---


def _unchanged(record: PaymentRecord) -> TransitionResult:
    return TransitionResult(record=record, changed=False)


def _move(
    record: PaymentRecord,
    new_state: PaymentState,
    now: datetime,
    transaction_id: str | None = None,
) -> TransitionResult:
    updates: dict[str, object] = {"state": new_state, "updated_at": now}
    if transaction_id is not None:
        updates["transaction_id"] = transaction_id
    return TransitionResult(
        record=replace(record, **updates),  # type: ignore[arg-type]
        changed=True,
        completed_now=new_state == PaymentState.COMPLETED,
    )


# --- Pure Functions ---


def new_payment_record(
    payment_id: str,
    now: datetime,
    user_id: str | None = None,
    content_id: str | None = None,
    amount: Decimal | None = None,
    memo: str = "",
    state: PaymentState = PaymentState.CREATED,
    transaction_id: str | None = None,
) -> PaymentRecord:
    """
    Build a record for a payment id seen for the first time.

    Live signals seed CREATED; recovery seeds the network-reported state.
    """
    if amount is not None and amount <= 0:
        raise ValueError(f"Payment amount must be positive, got {amount}")
    return PaymentRecord(
        payment_id=payment_id,
        user_id=user_id,
        content_id=content_id,
        amount=amount,
        memo=memo,
        state=state,
        transaction_id=transaction_id if state == PaymentState.COMPLETED else None,
        created_at=now,
        updated_at=now,
    )


def merge_details(
    record: PaymentRecord,
    now: datetime,
    user_id: str | None = None,
    content_id: str | None = None,
    amount: Decimal | None = None,
    memo: str | None = None,
) -> PaymentRecord:
    """
    Fill in details a synthesized record did not know yet.

    Known details are never overwritten. A different user_id on an owned
    record raises PaymentOwnershipError.
    """
    if user_id is not None and record.user_id is not None and record.user_id != user_id:
        raise PaymentOwnershipError(record.payment_id)

    updates: dict[str, object] = {}
    if record.user_id is None and user_id is not None:
        updates["user_id"] = user_id
    if record.content_id is None and content_id is not None:
        updates["content_id"] = content_id
    if record.amount is None and amount is not None:
        updates["amount"] = amount
    if not record.memo and memo:
        updates["memo"] = memo

    if not updates:
        return record
    updates["updated_at"] = now
    return replace(record, **updates)  # type: ignore[arg-type]


def reported_state_from_external(payment: ExternalPayment) -> PaymentState:
    """
    Map the network's status flags onto a lifecycle state.

    Cancellation flags win over progress flags.
    """
    status = payment.status
    if status.user_cancelled:
        return PaymentState.USER_CANCELLED
    if status.cancelled:
        return PaymentState.CANCELLED
    if status.developer_completed:
        return PaymentState.COMPLETED
    if status.developer_approved:
        return PaymentState.APPROVED
    return PaymentState.CREATED


def terms_mismatch(record: PaymentRecord, payment: ExternalPayment) -> str | None:
    """
    Compare what the network says was paid against what the record expects.

    Returns a reason string when the payment does not cover the record:
    content named in the payment metadata differs, the amount is missing,
    or the amount is below the record's amount. None when the terms hold.
    """
    expected_content = record.content_id
    paid_content = payment.content_id
    if expected_content is not None and paid_content not in (None, expected_content):
        return f"payment is for content {paid_content}, expected {expected_content}"
    if record.amount is None:
        return None
    if payment.amount is None:
        return "network did not report an amount"
    if payment.amount < record.amount:
        return f"paid {payment.amount}, expected {record.amount}"
    return None


def check_completion_allowed(record: PaymentRecord) -> None:
    """
    Raise unless a completion attempt may go to the network.

    COMPLETED passes (the attempt becomes a no-op).

    Raises:
        InvalidTransitionError: Record was aborted
        CompletionRejectedError: Record is not approved yet
    """
    if record.state in ABORTED_STATES:
        raise InvalidTransitionError(record.payment_id, record.state, "completion")
    if record.state not in (PaymentState.APPROVED, PaymentState.COMPLETED):
        raise CompletionRejectedError(record.payment_id, "payment not approved")


def apply_signal(
    record: PaymentRecord, signal: Signal, now: datetime
) -> TransitionResult:
    """
    Compute the next record for a signal.

    Args:
        record: Current record (synthesized CREATED for unseen ids)
        signal: Incoming signal
        now: Timestamp for updated_at

    Returns:
        TransitionResult with the new record and whether it changed

    Raises:
        InvalidTransitionError: Signal disagrees in kind with a terminal state
        CompletionRejectedError: Completion not accepted, record unchanged
    """
    state = record.state

    if isinstance(signal, RequestApproval):
        if state != PaymentState.CREATED:
            # Re-request, or a stale request after approval / a terminal outcome
            return _unchanged(record)
        return _move(record, PaymentState.APPROVAL_REQUESTED, now)

    if isinstance(signal, ConfirmApproval):
        if state != PaymentState.APPROVAL_REQUESTED:
            if state == PaymentState.CREATED:
                raise InvalidTransitionError(record.payment_id, state, "approval confirmation")
            return _unchanged(record)
        target = PaymentState.APPROVED if signal.approved else PaymentState.FAILED
        return _move(record, target, now)

    if isinstance(signal, ConfirmCompletion):
        check_completion_allowed(record)
        if state == PaymentState.COMPLETED:
            return _unchanged(record)
        if signal.rejected:
            return _move(record, PaymentState.FAILED, now)
        if not signal.verified:
            raise CompletionRejectedError(record.payment_id, "transaction not verified")
        return _move(
            record,
            PaymentState.COMPLETED,
            now,
            transaction_id=signal.settlement_ref or signal.transaction_id,
        )

    if isinstance(signal, Cancel):
        if state == PaymentState.COMPLETED:
            raise InvalidTransitionError(record.payment_id, state, "cancellation")
        if state in ABORTED_STATES:
            return _unchanged(record)
        target = PaymentState.USER_CANCELLED if signal.user_cancelled else PaymentState.CANCELLED
        if not can_transition(state, target):
            raise InvalidTransitionError(record.payment_id, state, "cancellation")
        return _move(record, target, now)

    if isinstance(signal, RecoverIncomplete):
        reported = signal.reported_state
        if record.is_terminal:
            return _unchanged(record)
        if STATE_RANK[reported] <= STATE_RANK[state]:
            return _unchanged(record)
        return _move(
            record,
            reported,
            now,
            transaction_id=signal.transaction_id if reported == PaymentState.COMPLETED else None,
        )

    raise TypeError(f"Unknown signal type: {type(signal)}")

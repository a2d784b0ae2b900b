"""
Reconciliation component.

Turns asynchronous, possibly duplicated, possibly reordered payment signals
from the client and the payment network into durable payment records and
entitlement grants.

Every operation:
1. holds the lock for its payment id (never a global lock)
2. loads the record, or synthesizes one for an unseen id
3. computes the next state with the pure state machine, asking the
   network for a verdict where the transition needs one
4. persists the record and, on entering COMPLETED, grants the entitlement
5. returns a ReconciliationOutcome

Key behaviors:
- Duplicate completions collapse into one grant; the rest see already_completed
- A network timeout leaves the record as it was before the network call
- A COMPLETED record whose grant was lost is repaired on the next observation
- A network payment that pays less than the record, or for other content, fails it
- Each persisted transition is a single atomic upsert; if the caller goes
  away mid-operation the worker thread still finishes or aborts the whole step
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal

from src.components.entitlements import grant_entitlement
from src.components.payments import (
    ABORTED_STATES,
    Cancel,
    ConfirmApproval,
    ConfirmCompletion,
    ExternalVerificationFailedError,
    PaymentRecord,
    PaymentState,
    RecoverIncomplete,
    RequestApproval,
    apply_signal,
    check_completion_allowed,
    merge_details,
    new_payment_record,
    terms_mismatch,
)
from src.core.ports.payment import ExternalPayment

from ._locks import KeyedLockTable
from .models import DEFAULT_CONFIG, ReconciliationConfig, ReconciliationOutcome
from .ports import (
    ClockPort,
    EntitlementRepoPort,
    PaymentRecordRepoPort,
    PaymentVerificationPort,
)

logger = logging.getLogger(__name__)


class ReconciliationCoordinator:
    """
    Sole writer of payment records and entitlement grants.

    Safe to share between request-handling threads.
    """

    def __init__(
        self,
        payments: PaymentRecordRepoPort,
        entitlements: EntitlementRepoPort,
        verifier: PaymentVerificationPort,
        clock: ClockPort | None = None,
        locks: KeyedLockTable | None = None,
        config: ReconciliationConfig | None = None,
    ) -> None:
        self._payments = payments
        self._entitlements = entitlements
        self._verifier = verifier
        self._clock = clock
        self._locks = locks if locks is not None else KeyedLockTable()
        self._config = config or DEFAULT_CONFIG

    # --- Internals ---

    def _now(self) -> datetime:
        if self._clock is not None:
            return self._clock.now_utc()
        return datetime.now(UTC)

    @contextmanager
    def _hold(self, payment_id: str) -> Iterator[None]:
        with self._locks.hold(payment_id, timeout=self._config.lock_timeout_seconds):
            yield

    def _load_or_create(
        self,
        payment_id: str,
        now: datetime,
        user_id: str | None = None,
        content_id: str | None = None,
        amount: Decimal | None = None,
        memo: str = "",
    ) -> PaymentRecord:
        """Load the record, filling in missing details, or create it as CREATED."""
        current = self._payments.get(payment_id)
        if current is None:
            record = new_payment_record(
                payment_id,
                now,
                user_id=user_id,
                content_id=content_id,
                amount=amount,
                memo=memo,
            )
            if self._payments.create_if_absent(record):
                logger.info("Payment %s first seen, recorded as created", payment_id)
                return record
            # Inserted by another writer since the read
            current = self._payments.get(payment_id) or record

        record = merge_details(
            current, now, user_id=user_id, content_id=content_id, amount=amount, memo=memo
        )
        if content_id is not None and record.content_id != content_id:
            logger.warning(
                "Payment %s signal names content %s, keeping stored content %s",
                payment_id,
                content_id,
                record.content_id,
            )
        if record is not current:
            self._payments.upsert(record)
        return record

    def _ensure_entitlement(self, record: PaymentRecord) -> bool:
        """Grant access for a COMPLETED record. True if this call created the grant."""
        if record.state != PaymentState.COMPLETED:
            return False
        key = record.entitlement_key
        if key is None:
            logger.error(
                "Payment %s is completed but has no user/content, cannot grant",
                record.payment_id,
            )
            return False
        user_id, content_id = key
        output = grant_entitlement(
            self._entitlements,
            user_id,
            content_id,
            source_payment_id=record.payment_id,
            now=self._now(),
        )
        return output.created

    def _observe_terminal(self, record: PaymentRecord) -> ReconciliationOutcome:
        """Outcome for a signal that arrived after the record became terminal."""
        logger.debug("Payment %s already %s, signal ignored", record.payment_id, record.state.value)
        if record.state != PaymentState.COMPLETED:
            return ReconciliationOutcome(record=record, changed=False)
        granted = self._ensure_entitlement(record)
        if granted:
            logger.warning("Payment %s: repaired missing entitlement", record.payment_id)
        return ReconciliationOutcome(
            record=record,
            changed=False,
            already_completed=True,
            entitlement_granted=granted,
        )

    def _recovery_mismatch(
        self,
        record: PaymentRecord,
        reported: PaymentState,
        payload: ExternalPayment | None,
    ) -> str | None:
        # Aborted payments unlock nothing, so their terms do not matter
        if payload is None or reported in ABORTED_STATES:
            return None
        mismatch = terms_mismatch(record, payload)
        if mismatch is not None:
            logger.warning("Payment %s recovery refused: %s", record.payment_id, mismatch)
        return mismatch

    def _log_transition(self, before: PaymentRecord, after: PaymentRecord) -> None:
        logger.info(
            "Payment %s: %s -> %s",
            after.payment_id,
            before.state.value,
            after.state.value,
        )

    # --- Operations ---

    def request_approval(
        self,
        payment_id: str,
        user_id: str,
        content_id: str,
        amount: Decimal,
        memo: str = "",
    ) -> ReconciliationOutcome:
        """
        Client asks the server to approve a newly created payment.

        The APPROVAL_REQUESTED step is stored before the network is asked, so
        a retry after a network timeout resumes from there. On a timeout only
        the confirm step is undone; the stored APPROVAL_REQUESTED stays.

        When the network reports the payment, its amount and content must
        cover the record; a payment that does not is treated as declined.

        Raises:
            ExternalVerificationUnavailableError: No verdict; record stays APPROVAL_REQUESTED
            ExternalVerificationFailedError: Network declined, or the payment does
                not cover the record; record is now FAILED
            PaymentOwnershipError: Payment belongs to another user
            StorageUnavailableError: Store unreachable
        """
        with self._hold(payment_id):
            now = self._now()
            record = self._load_or_create(
                payment_id, now, user_id=user_id, content_id=content_id, amount=amount, memo=memo
            )
            if record.is_terminal:
                return self._observe_terminal(record)

            step = apply_signal(record, RequestApproval(), now)
            if step.changed:
                self._payments.upsert(step.record)
                self._log_transition(record, step.record)
            record = step.record

            if record.state != PaymentState.APPROVAL_REQUESTED:
                # Already approved by an earlier request
                return ReconciliationOutcome(record=record, changed=False)

            verification = self._verifier.confirm_approval(payment_id)
            approved = verification.approved
            reason = "approval declined"
            if approved and verification.payment is not None:
                mismatch = terms_mismatch(record, verification.payment)
                if mismatch is not None:
                    logger.warning("Payment %s refused: %s", payment_id, mismatch)
                    approved, reason = False, mismatch

            step = apply_signal(record, ConfirmApproval(approved=approved), self._now())
            self._payments.upsert(step.record)
            self._log_transition(record, step.record)

            if step.record.state == PaymentState.FAILED:
                raise ExternalVerificationFailedError(step.record, reason)
            return ReconciliationOutcome(record=step.record, changed=True)

    def request_completion(
        self,
        payment_id: str,
        transaction_id: str,
        user_id: str | None = None,
        content_id: str | None = None,
    ) -> ReconciliationOutcome:
        """
        Client supplies the settlement transaction for an approved payment.

        Args:
            payment_id: Network payment id
            transaction_id: Settlement transaction id from the client
            user_id: Caller, checked against the record owner when given
            content_id: Content hint, only used for an unseen payment id

        Raises:
            CompletionRejectedError: Not approved yet, or transaction not verified
            InvalidTransitionError: Record was cancelled or failed
            ExternalVerificationUnavailableError: No verdict; record unchanged
            ExternalVerificationFailedError: Network reports the payment dead; now FAILED
            StorageUnavailableError: Store unreachable
        """
        with self._hold(payment_id):
            now = self._now()
            record = self._load_or_create(payment_id, now, user_id=user_id, content_id=content_id)
            if record.state == PaymentState.COMPLETED:
                return self._observe_terminal(record)

            check_completion_allowed(record)

            verification = self._verifier.confirm_completion(payment_id, transaction_id)
            rejected = verification.rejected
            reason = "payment cancelled by network"
            if not rejected and verification.payment is not None:
                mismatch = terms_mismatch(record, verification.payment)
                if mismatch is not None:
                    logger.warning("Payment %s completion refused: %s", payment_id, mismatch)
                    rejected, reason = True, mismatch

            step = apply_signal(
                record,
                ConfirmCompletion(
                    transaction_id=transaction_id,
                    verified=verification.verified,
                    settlement_ref=verification.settlement_ref,
                    rejected=rejected,
                ),
                self._now(),
            )
            self._payments.upsert(step.record)
            self._log_transition(record, step.record)

            if step.record.state == PaymentState.FAILED:
                raise ExternalVerificationFailedError(step.record, reason)

            granted = self._ensure_entitlement(step.record)
            return ReconciliationOutcome(
                record=step.record,
                changed=True,
                entitlement_granted=granted,
            )

    def cancel(
        self,
        payment_id: str,
        reason: str,
        user_id: str | None = None,
    ) -> ReconciliationOutcome:
        """
        The network or the payer aborted the payment.

        Reasons listed in config.user_cancel_reasons lead to USER_CANCELLED,
        anything else to CANCELLED.

        Raises:
            InvalidTransitionError: Record is already COMPLETED
            PaymentOwnershipError: Payment belongs to another user
            StorageUnavailableError: Store unreachable
        """
        with self._hold(payment_id):
            now = self._now()
            record = self._load_or_create(payment_id, now, user_id=user_id)
            if record.state == PaymentState.COMPLETED:
                # Still an observation of a completed payment
                self._ensure_entitlement(record)

            signal = Cancel(
                reason=reason,
                user_cancelled=reason in self._config.user_cancel_reasons,
            )
            step = apply_signal(record, signal, now)
            if not step.changed:
                return self._observe_terminal(step.record)

            self._payments.upsert(step.record)
            self._log_transition(record, step.record)
            logger.info("Payment %s cancelled: %s", payment_id, reason)
            return ReconciliationOutcome(record=step.record, changed=True)

    def recover_incomplete(
        self,
        payment_id: str,
        reported_state: PaymentState | str,
        payload: ExternalPayment | None = None,
        expected_amount: Decimal | None = None,
    ) -> ReconciliationOutcome:
        """
        Re-enter the state machine at the network-reported state.

        Used when a payer re-authenticates while a payment from an earlier
        session is unresolved. The reported state wins over local non-terminal
        state; a local terminal state is never overwritten. An unseen id is
        seeded directly in the reported state.

        A payload that does not cover the record (or, for an unseen id, the
        expected amount) moves a non-terminal record to FAILED instead.

        Args:
            payment_id: Network payment id
            reported_state: State the network reports
            payload: Network view of the payment (payer, content, amount, txid)
            expected_amount: Price of the content, checked for an unseen id

        Raises:
            ExternalVerificationFailedError: Payload does not cover the record; now FAILED
            PaymentOwnershipError: Payload names a different payer
            StorageUnavailableError: Store unreachable
        """
        reported = PaymentState.parse(reported_state)
        user_id = payload.user_uid if payload else None
        content_id = payload.content_id if payload else None
        amount = payload.amount if payload else None
        if expected_amount is not None:
            amount = expected_amount
        memo = payload.memo if payload else ""
        txid = payload.txid if payload else None

        with self._hold(payment_id):
            now = self._now()
            current = self._payments.get(payment_id)

            if current is None:
                record = new_payment_record(
                    payment_id,
                    now,
                    user_id=user_id,
                    content_id=content_id,
                    amount=amount,
                    memo=memo,
                )
                mismatch = self._recovery_mismatch(record, reported, payload)
                if mismatch is not None:
                    failed = replace(record, state=PaymentState.FAILED)
                    self._payments.upsert(failed)
                    raise ExternalVerificationFailedError(failed, mismatch)

                record = new_payment_record(
                    payment_id,
                    now,
                    user_id=user_id,
                    content_id=content_id,
                    amount=amount,
                    memo=memo,
                    state=reported,
                    transaction_id=txid,
                )
                self._payments.upsert(record)
                logger.info("Payment %s recovered as %s", payment_id, reported.value)
                granted = self._ensure_entitlement(record)
                return ReconciliationOutcome(record=record, changed=True, entitlement_granted=granted)

            record = merge_details(
                current, now, user_id=user_id, content_id=content_id, amount=amount, memo=memo
            )
            if record.is_terminal:
                if record.state != reported:
                    logger.warning(
                        "Payment %s: network reports %s, keeping local %s",
                        payment_id,
                        reported.value,
                        record.state.value,
                    )
                if record is not current:
                    self._payments.upsert(record)
                return self._observe_terminal(record)

            mismatch = self._recovery_mismatch(record, reported, payload)
            if mismatch is not None:
                step = apply_signal(record, RecoverIncomplete(PaymentState.FAILED), now)
                self._payments.upsert(step.record)
                self._log_transition(record, step.record)
                raise ExternalVerificationFailedError(step.record, mismatch)

            step = apply_signal(record, RecoverIncomplete(reported, txid), now)
            if step.changed or record is not current:
                self._payments.upsert(step.record)
            if step.changed:
                self._log_transition(record, step.record)

            granted = self._ensure_entitlement(step.record) if step.completed_now else False
            return ReconciliationOutcome(
                record=step.record,
                changed=step.changed,
                entitlement_granted=granted,
            )

    # --- Reads ---

    def get_payment(self, payment_id: str) -> PaymentRecord | None:
        """Current record for a payment id."""
        return self._payments.get(payment_id)

    def list_payments(self, user_id: str) -> list[PaymentRecord]:
        """A user's payment records."""
        return self._payments.list_for_user(user_id)

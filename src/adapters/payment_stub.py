"""
Payment verification stub adapter (dev/testing).

Stub implementation of PaymentVerificationPort that approves and verifies
everything unless told otherwise. Used in local development, where there is
no platform API key, and as the verifier in tests.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

from src.core.ports.payment import (
    ApprovalVerification,
    CompletionVerification,
    ExternalPayment,
    ExternalPaymentStatus,
    ExternalVerificationUnavailableError,
    PaymentVerificationPort,
)

logger = logging.getLogger(__name__)

# Most recent calls kept in the call log
CALL_LOG_SIZE = 1000


@dataclass
class StubVerificationAdapter:
    """
    Stub verifier with per-payment overrides.

    Outcomes per payment id, in priority order:
    - unavailable: raise ExternalVerificationUnavailableError
    - declined: approval is refused
    - rejected: completion reports the payment cancelled
    - unverified: completion is not verified
    - otherwise approve / verify, settlement_ref = the client's txid

    Registered `payments` are returned as the network view of approvals,
    completions and fetches.

    Every call is appended to `calls` as (method, payment_id); only the last
    CALL_LOG_SIZE calls are kept.
    """

    unavailable: set[str] = field(default_factory=set)
    declined: set[str] = field(default_factory=set)
    rejected: set[str] = field(default_factory=set)
    unverified: set[str] = field(default_factory=set)
    payments: dict[str, ExternalPayment] = field(default_factory=dict)
    calls: deque[tuple[str, str]] = field(
        default_factory=lambda: deque(maxlen=CALL_LOG_SIZE)
    )

    def _record(self, method: str, payment_id: str) -> None:
        self.calls.append((method, payment_id))
        logger.debug("StubVerificationAdapter.%s: payment_id=%s", method, payment_id)
        if payment_id in self.unavailable:
            raise ExternalVerificationUnavailableError("stub: network unavailable", payment_id)

    def confirm_approval(self, payment_id: str) -> ApprovalVerification:
        self._record("confirm_approval", payment_id)
        return ApprovalVerification(
            approved=payment_id not in self.declined,
            payment=self.payments.get(payment_id),
        )

    def confirm_completion(
        self, payment_id: str, transaction_id: str
    ) -> CompletionVerification:
        self._record("confirm_completion", payment_id)
        payment = self.payments.get(payment_id)
        if payment_id in self.rejected:
            return CompletionVerification(verified=False, rejected=True, payment=payment)
        if payment_id in self.unverified:
            return CompletionVerification(verified=False, payment=payment)
        return CompletionVerification(
            verified=True, settlement_ref=transaction_id, payment=payment
        )

    def fetch_payment(self, payment_id: str) -> ExternalPayment:
        self._record("fetch_payment", payment_id)
        if payment_id in self.payments:
            return self.payments[payment_id]
        return ExternalPayment(
            identifier=payment_id,
            status=ExternalPaymentStatus(developer_approved=True),
        )

    # --- Testing Helpers ---

    def count(self, method: str, payment_id: str | None = None) -> int:
        """Number of recorded calls to a method, optionally for one payment."""
        return sum(
            1
            for m, pid in self.calls
            if m == method and (payment_id is None or pid == payment_id)
        )

    def clear(self) -> None:
        self.unavailable.clear()
        self.declined.clear()
        self.rejected.clear()
        self.unverified.clear()
        self.payments.clear()
        self.calls.clear()


# Verify protocol compliance at module load time
def _verify_protocol_compliance() -> None:
    """Verify StubVerificationAdapter satisfies PaymentVerificationPort."""
    adapter: PaymentVerificationPort = StubVerificationAdapter()
    _ = adapter


_verify_protocol_compliance()

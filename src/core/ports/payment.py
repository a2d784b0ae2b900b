"""
Payment network port interface.

External interface to the payment network's server-side verification API.
The network settles funds on its own; the engine only asks it to confirm that
a payment is legitimately pending (approval) and that a client-supplied
transaction is bound to the payment and verified (completion).

Every call must be idempotent on the provider side. Implementations raise
ExternalVerificationUnavailableError for anything that is not a definitive
answer (timeouts, transport errors, non-200 responses, undecodable bodies).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

# --- Errors ---


class ExternalVerificationUnavailableError(Exception):
    """
    The payment network did not give a definitive answer.

    Transient: no state transition happens and the caller should retry
    with backoff. Never to be read as a rejection.
    """

    def __init__(self, message: str, payment_id: str | None = None) -> None:
        self.payment_id = payment_id
        super().__init__(message)


# --- Models ---


@dataclass(frozen=True)
class ExternalPaymentStatus:
    """Status flags as reported by the payment network."""

    developer_approved: bool = False
    transaction_verified: bool = False
    developer_completed: bool = False
    cancelled: bool = False
    user_cancelled: bool = False


@dataclass(frozen=True)
class ExternalPayment:
    """
    A payment as the network reports it.

    Attributes:
        identifier: Network-issued payment id
        user_uid: Network user id of the payer
        amount: Payment amount in the network's single unit
        memo: Free-text memo shown to the payer
        metadata: Developer metadata attached at creation (holds productId)
        status: Lifecycle flags
        txid: Settlement transaction id, if a transaction exists
    """

    identifier: str
    user_uid: str | None = None
    amount: Decimal | None = None
    memo: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    status: ExternalPaymentStatus = field(default_factory=ExternalPaymentStatus)
    txid: str | None = None

    @property
    def content_id(self) -> str | None:
        """Content the payment unlocks, from developer metadata."""
        value = self.metadata.get("productId") or self.metadata.get("content_id")
        return str(value) if value is not None else None


@dataclass(frozen=True)
class ApprovalVerification:
    """Result of asking the network to approve a pending payment."""

    approved: bool
    payment: ExternalPayment | None = None


@dataclass(frozen=True)
class CompletionVerification:
    """
    Result of asking the network to complete a payment with a transaction.

    Attributes:
        verified: Transaction is bound to this payment and verified
        settlement_ref: Settlement reference to store on the record
        rejected: The network reports the payment itself as dead
                  (cancelled), which is a terminal failure rather than
                  a retryable mismatch
    """

    verified: bool
    settlement_ref: str | None = None
    rejected: bool = False
    payment: ExternalPayment | None = None


# --- Port Interface ---


class PaymentVerificationPort(Protocol):
    """
    Port for server-side payment verification.

    Implementations:
    - PiPlatformAdapter: Pi Network platform API over httpx
    - StubVerificationAdapter: Configurable outcomes (dev/testing)
    """

    def confirm_approval(self, payment_id: str) -> ApprovalVerification:
        """
        Ask the network to approve a newly created payment.

        Raises:
            ExternalVerificationUnavailableError: No definitive answer
        """
        ...

    def confirm_completion(
        self, payment_id: str, transaction_id: str
    ) -> CompletionVerification:
        """
        Ask the network to complete a payment with a settlement transaction.

        Raises:
            ExternalVerificationUnavailableError: No definitive answer
        """
        ...

    def fetch_payment(self, payment_id: str) -> ExternalPayment:
        """
        Fetch the network's authoritative view of a payment.

        Raises:
            ExternalVerificationUnavailableError: No definitive answer
        """
        ...

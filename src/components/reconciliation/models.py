"""
Reconciliation component models.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.components.payments.models import PaymentRecord


@dataclass(frozen=True)
class ReconciliationConfig:
    """Coordinator configuration from rules."""

    # Cancel reasons that mean the payer aborted (user_cancelled state)
    user_cancel_reasons: tuple[str, ...] = ("user_cancelled", "user_cancel")

    # Seconds to wait for another signal on the same payment before giving up
    lock_timeout_seconds: float | None = 30.0


DEFAULT_CONFIG = ReconciliationConfig()


@dataclass(frozen=True)
class ReconciliationOutcome:
    """
    Result of one coordinator operation.

    Attributes:
        record: Record as stored after the operation
        changed: This call performed a state transition
        already_completed: The record was already COMPLETED when the call arrived
        entitlement_granted: This call created the entitlement grant
    """

    record: PaymentRecord
    changed: bool
    already_completed: bool = False
    entitlement_granted: bool = False

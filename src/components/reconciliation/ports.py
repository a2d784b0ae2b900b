"""
Reconciliation component ports.

The coordinator composes the payment record store, the entitlement store and
the payment network verification port; only the clock is defined here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from src.components.entitlements.ports import EntitlementRepoPort
from src.components.payments.ports import PaymentRecordRepoPort
from src.core.ports.payment import PaymentVerificationPort


class ClockPort(Protocol):
    """Time source (enables deterministic timestamps in tests)."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...


__all__ = [
    "ClockPort",
    "EntitlementRepoPort",
    "PaymentRecordRepoPort",
    "PaymentVerificationPort",
]

"""
Reconciliation component.

Public API for the payment reconciliation coordinator.
"""

from ._locks import KeyedLockTable, LockTimeoutError
from .component import ReconciliationCoordinator
from .models import DEFAULT_CONFIG, ReconciliationConfig, ReconciliationOutcome
from .ports import ClockPort

__all__ = [
    # Service
    "ReconciliationCoordinator",
    # Models
    "DEFAULT_CONFIG",
    "ReconciliationConfig",
    "ReconciliationOutcome",
    # Concurrency
    "KeyedLockTable",
    "LockTimeoutError",
    # Ports
    "ClockPort",
]

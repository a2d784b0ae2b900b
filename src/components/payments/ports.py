"""
Payments component ports.

Protocol interfaces for payment record persistence.
"""

from __future__ import annotations

from typing import Protocol

from src.components.payments.models import PaymentRecord


class PaymentRecordRepoPort(Protocol):
    """
    Payment record repository interface.

    Writes are whole-record atomic replaces; a reader never sees a partially
    written record. Storage failures raise StorageUnavailableError.
    """

    def get(self, payment_id: str) -> PaymentRecord | None:
        """Get record by payment id."""
        ...

    def upsert(self, record: PaymentRecord) -> PaymentRecord:
        """Insert or atomically replace the record."""
        ...

    def create_if_absent(self, record: PaymentRecord) -> bool:
        """Insert only if no record exists. True if created."""
        ...

    def list_for_user(self, user_id: str) -> list[PaymentRecord]:
        """List a user's payment records, newest first."""
        ...

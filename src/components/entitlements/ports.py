"""
Entitlements component ports.

Protocol interfaces for entitlement persistence.
"""

from __future__ import annotations

from typing import Protocol

from src.components.entitlements.models import EntitlementRecord


class EntitlementReaderPort(Protocol):
    """Read side, all the access authorizer needs."""

    def get(self, user_id: str, content_id: str) -> EntitlementRecord | None:
        """Get the grant for a (user, content) pair."""
        ...


class EntitlementRepoPort(EntitlementReaderPort, Protocol):
    """
    Entitlement repository interface.

    Grants are insert-only: never mutated or deleted.
    Storage failures raise StorageUnavailableError.
    """

    def create_if_absent(self, record: EntitlementRecord) -> bool:
        """Insert the grant unless the pair is already entitled. True if created."""
        ...

    def list_for_user(self, user_id: str) -> list[EntitlementRecord]:
        """List a user's grants, newest first."""
        ...

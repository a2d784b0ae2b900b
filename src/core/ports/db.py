"""
Database adapter interfaces.

Protocol-based interfaces shared by the SQLite adapters and the HTTP shell.
The payment and entitlement repositories live with their components
(components/payments/ports.py, components/entitlements/ports.py); this module
holds the content repository contract and the storage error every repository
raises.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from src.domain.entities import Post

# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class StorageUnavailableError(Exception):
    """
    Raised when the backing store cannot be reached or is locked.

    Transient: the caller may retry the whole operation. No partial write
    is ever committed when this is raised.
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)


# -----------------------------------------------------------------------------
# Content Repository
# -----------------------------------------------------------------------------


class PostRepoPort(Protocol):
    """
    Repository for creator posts.

    Only the reads needed to gate full content are part of the core contract;
    `save` exists for seeding and tests.
    """

    def get_by_id(self, post_id: str) -> Post | None:
        """Get post by ID."""
        ...

    def is_creator(self, user_id: str, post_id: str) -> bool:
        """True if the user published the post."""
        ...

    def get_price(self, post_id: str) -> Decimal | None:
        """Price of the post, or None if the post does not exist."""
        ...

    def save(self, post: Post) -> Post:
        """Save or update post (upsert)."""
        ...

    def list_recent(self, limit: int = 50) -> list[Post]:
        """Newest posts first."""
        ...

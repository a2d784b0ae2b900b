"""
Entitlements component models.

An entitlement is the durable grant that lets one user read one piece of
full content. Its existence (or creator identity) is the only thing that
unlocks full content; payment records are never consulted for gating.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

# --- Entity ---


@dataclass(frozen=True)
class EntitlementRecord:
    """
    Access grant keyed by (user_id, content_id).

    source_payment_id is None for creator-owned grants.
    """

    user_id: str
    content_id: str
    granted_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    source_payment_id: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.content_id)


# --- Output Models ---


@dataclass(frozen=True)
class AccessDecision:
    """Output from a full-content access check."""

    has_full_access: bool
    reason: str
    is_creator: bool = False
    granted_at: datetime | None = None


@dataclass(frozen=True)
class GrantOutput:
    """Output from an entitlement grant."""

    record: EntitlementRecord
    created: bool  # False when the pair was already entitled

"""
Entitlements component.

Access authorizer and idempotent grant helpers.

Key behaviors:
- Full access iff the caller is the creator or an entitlement exists
- The authorizer is a pure read: no locks, no payment state
- Granting an already-entitled pair is a no-op, not an error
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from .models import AccessDecision, EntitlementRecord, GrantOutput
from .ports import EntitlementReaderPort, EntitlementRepoPort

logger = logging.getLogger(__name__)


# --- Access Authorizer ---


def check_full_access(
    user_id: str | None,
    content_id: str,
    is_creator_of_content: bool,
    entitlements: EntitlementReaderPort,
) -> AccessDecision:
    """
    Decide whether the full content body may be released.

    Args:
        user_id: Authenticated user, None for anonymous visitors
        content_id: Content being requested
        is_creator_of_content: Supplied by the content repository
        entitlements: Entitlement store (read only)

    Returns:
        AccessDecision with the verdict and a reason
    """
    if is_creator_of_content:
        return AccessDecision(has_full_access=True, reason="creator", is_creator=True)

    if user_id is None:
        return AccessDecision(has_full_access=False, reason="anonymous")

    grant = entitlements.get(user_id, content_id)
    if grant is None:
        return AccessDecision(has_full_access=False, reason="not_entitled")

    return AccessDecision(
        has_full_access=True,
        reason="entitled",
        granted_at=grant.granted_at,
    )


def can_access_full(
    user_id: str | None,
    content_id: str,
    is_creator_of_content: bool,
    entitlements: EntitlementReaderPort,
) -> bool:
    """True iff the creator flag is set or an entitlement exists for the pair."""
    return check_full_access(
        user_id, content_id, is_creator_of_content, entitlements
    ).has_full_access


# --- Grants ---


def grant_entitlement(
    repo: EntitlementRepoPort,
    user_id: str,
    content_id: str,
    source_payment_id: str | None = None,
    now: datetime | None = None,
) -> GrantOutput:
    """
    Grant access to a (user, content) pair, idempotently.

    Returns the stored grant; `created` is False when the pair already
    had one (the existing grant, with its original source, is returned).
    """
    record = EntitlementRecord(
        user_id=user_id,
        content_id=content_id,
        granted_at=now or datetime.now(UTC),
        source_payment_id=source_payment_id,
    )
    created = repo.create_if_absent(record)
    if created:
        logger.info(
            "Entitlement granted: user=%s content=%s payment=%s",
            user_id,
            content_id,
            source_payment_id,
        )
        return GrantOutput(record=record, created=True)

    existing = repo.get(user_id, content_id)
    return GrantOutput(record=existing or record, created=False)


def list_entitlements(repo: EntitlementRepoPort, user_id: str) -> list[EntitlementRecord]:
    """List everything a user has been granted."""
    return repo.list_for_user(user_id)

"""
Entitlements component unit tests.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from src.components.entitlements import (
    EntitlementRecord,
    can_access_full,
    check_full_access,
    grant_entitlement,
    list_entitlements,
)

# --- Mock Repository ---


class MockEntitlementRepo:
    """In-memory entitlement repository for testing."""

    def __init__(self) -> None:
        self._grants: dict[tuple[str, str], EntitlementRecord] = {}

    def get(self, user_id: str, content_id: str) -> EntitlementRecord | None:
        return self._grants.get((user_id, content_id))

    def create_if_absent(self, record: EntitlementRecord) -> bool:
        if record.key in self._grants:
            return False
        self._grants[record.key] = record
        return True

    def list_for_user(self, user_id: str) -> list[EntitlementRecord]:
        return [g for (u, _), g in self._grants.items() if u == user_id]


@pytest.fixture
def repo() -> MockEntitlementRepo:
    return MockEntitlementRepo()


# --- Access Tests ---


class TestCheckFullAccess:
    def test_creator_bypasses_entitlements(self, repo: MockEntitlementRepo) -> None:
        decision = check_full_access("carol", "post-1", True, repo)

        assert decision.has_full_access is True
        assert decision.is_creator is True
        assert decision.reason == "creator"

    def test_anonymous_denied(self, repo: MockEntitlementRepo) -> None:
        decision = check_full_access(None, "post-1", False, repo)

        assert decision.has_full_access is False
        assert decision.reason == "anonymous"

    def test_not_entitled(self, repo: MockEntitlementRepo) -> None:
        assert can_access_full("alice", "post-1", False, repo) is False

    def test_entitled(self, repo: MockEntitlementRepo) -> None:
        granted_at = datetime(2026, 1, 1, tzinfo=UTC)
        grant_entitlement(repo, "alice", "post-1", source_payment_id="pay-1", now=granted_at)

        decision = check_full_access("alice", "post-1", False, repo)

        assert decision.has_full_access is True
        assert decision.reason == "entitled"
        assert decision.granted_at == granted_at

    def test_grant_is_per_content(self, repo: MockEntitlementRepo) -> None:
        grant_entitlement(repo, "alice", "post-1")

        assert can_access_full("alice", "post-2", False, repo) is False
        assert can_access_full("bob", "post-1", False, repo) is False


# --- Grant Tests ---


class TestGrantEntitlement:
    def test_first_grant_created(self, repo: MockEntitlementRepo) -> None:
        output = grant_entitlement(repo, "alice", "post-1", source_payment_id="pay-1")

        assert output.created is True
        assert output.record.source_payment_id == "pay-1"

    def test_second_grant_returns_original(self, repo: MockEntitlementRepo) -> None:
        grant_entitlement(repo, "alice", "post-1", source_payment_id="pay-1")

        output = grant_entitlement(repo, "alice", "post-1", source_payment_id="pay-2")

        assert output.created is False
        assert output.record.source_payment_id == "pay-1"
        assert len(list_entitlements(repo, "alice")) == 1

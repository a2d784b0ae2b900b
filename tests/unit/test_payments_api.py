"""
Tests for the payment API endpoints.

Runs the FastAPI app against a migrated temporary SQLite database and the
stub verifier.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from src.adapters.payment_stub import StubVerificationAdapter
from src.adapters.sqlite_db import (
    SQLiteEntitlementRepo,
    SQLitePaymentRecordRepo,
    SQLitePostRepo,
)
from src.api.auth_utils import create_access_token
from src.api.deps import get_coordinator, get_db_path, get_verifier
from src.api.main import app
from src.components.reconciliation import ReconciliationCoordinator
from src.core.ports.payment import ExternalPayment, ExternalPaymentStatus
from src.domain.entities import Post


def auth(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


ALICE = auth("alice")
BOB = auth("bob")


@pytest.fixture
def verifier() -> StubVerificationAdapter:
    return StubVerificationAdapter()


@pytest.fixture
def client(db_path: str, verifier: StubVerificationAdapter):
    SQLitePostRepo(db_path).save(
        Post(
            id="post-1",
            creator_id="carol",
            creator_name="Carol",
            title="Sunrise",
            description="Preview",
            price=Decimal("1.5"),
            full_content="The whole thing",
        )
    )
    coordinator = ReconciliationCoordinator(
        payments=SQLitePaymentRecordRepo(db_path),
        entitlements=SQLiteEntitlementRepo(db_path),
        verifier=verifier,
    )
    app.dependency_overrides[get_db_path] = lambda: db_path
    app.dependency_overrides[get_verifier] = lambda: verifier
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    yield TestClient(app)
    app.dependency_overrides.clear()


def approve(client: TestClient, payment_id: str = "pay-1", headers=ALICE):
    return client.post(
        "/api/payments/approve",
        json={"payment_id": payment_id, "content_id": "post-1"},
        headers=headers,
    )


def complete(client: TestClient, payment_id: str = "pay-1", txid: str = "tx-1", headers=ALICE):
    return client.post(
        "/api/payments/complete",
        json={"payment_id": payment_id, "txid": txid},
        headers=headers,
    )


class TestApprove:
    def test_requires_auth(self, client: TestClient) -> None:
        response = client.post(
            "/api/payments/approve", json={"payment_id": "pay-1", "content_id": "post-1"}
        )
        assert response.status_code == 401

    def test_unknown_post(self, client: TestClient) -> None:
        response = client.post(
            "/api/payments/approve",
            json={"payment_id": "pay-1", "content_id": "nope"},
            headers=ALICE,
        )
        assert response.status_code == 404

    def test_amount_comes_from_post(self, client: TestClient) -> None:
        response = approve(client)

        assert response.status_code == 200
        body = response.json()
        assert body["changed"] is True
        assert body["payment"]["state"] == "approved"
        assert Decimal(body["payment"]["amount"]) == Decimal("1.5")

    def test_declined_is_402(self, client: TestClient, verifier: StubVerificationAdapter) -> None:
        verifier.declined.add("pay-1")

        response = approve(client)

        assert response.status_code == 402
        assert response.json()["detail"]["state"] == "failed"

    def test_network_unavailable_is_503(
        self, client: TestClient, verifier: StubVerificationAdapter
    ) -> None:
        verifier.unavailable.add("pay-1")

        response = approve(client)

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "5"
        assert response.json()["detail"]["retryable"] is True

    def test_other_users_payment_is_403(self, client: TestClient) -> None:
        approve(client)

        assert approve(client, headers=BOB).status_code == 403

    def test_underpaid_payment_is_402(
        self, client: TestClient, verifier: StubVerificationAdapter
    ) -> None:
        verifier.payments["pay-1"] = ExternalPayment(
            identifier="pay-1",
            user_uid="alice",
            amount=Decimal("0.0001"),
            metadata={"productId": "post-1"},
        )

        response = approve(client)

        assert response.status_code == 402
        assert response.json()["detail"]["state"] == "failed"
        assert complete(client).status_code == 409
        assert client.get("/api/posts/post-1/full", headers=ALICE).status_code == 403


class TestComplete:
    def test_purchase_unlocks_content(self, client: TestClient) -> None:
        approve(client)

        response = complete(client)

        assert response.status_code == 200
        body = response.json()
        assert body["payment"]["state"] == "completed"
        assert body["entitlement_granted"] is True

        purchases = client.get("/api/payments/purchases", headers=ALICE).json()
        assert [p["content_id"] for p in purchases] == ["post-1"]
        assert purchases[0]["source_payment_id"] == "pay-1"

        full = client.get("/api/posts/post-1/full", headers=ALICE)
        assert full.status_code == 200
        assert full.json()["full_content"] == "The whole thing"

    def test_duplicate_complete_reports_already_completed(self, client: TestClient) -> None:
        approve(client)
        complete(client)

        body = complete(client).json()

        assert body["changed"] is False
        assert body["already_completed"] is True

    def test_complete_before_approve_is_retryable_409(self, client: TestClient) -> None:
        response = complete(client, payment_id="pay-new")

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "completion_rejected"
        assert response.json()["detail"]["retryable"] is True

    def test_complete_after_cancel_is_409(self, client: TestClient) -> None:
        approve(client)
        client.post(
            "/api/payments/cancel",
            json={"payment_id": "pay-1", "reason": "user_cancelled"},
            headers=ALICE,
        )

        response = complete(client)

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "invalid_transition"


class TestCancel:
    def test_user_cancel(self, client: TestClient) -> None:
        approve(client)

        response = client.post(
            "/api/payments/cancel",
            json={"payment_id": "pay-1", "reason": "user_cancelled"},
            headers=ALICE,
        )

        assert response.status_code == 200
        assert response.json()["payment"]["state"] == "user_cancelled"
        assert client.get("/api/posts/post-1/full", headers=ALICE).status_code == 403

    def test_cancel_completed_is_409(self, client: TestClient) -> None:
        approve(client)
        complete(client)

        response = client.post(
            "/api/payments/cancel", json={"payment_id": "pay-1"}, headers=ALICE
        )

        assert response.status_code == 409


class TestIncomplete:
    def incomplete(self, client: TestClient, payment_id: str = "pay-old", headers=ALICE):
        return client.post(
            "/api/payments/incomplete",
            json={
                "payment": {
                    "identifier": payment_id,
                    "metadata": {"productId": "post-1"},
                    # Client-reported flags are ignored
                    "status": {"developer_completed": True},
                }
            },
            headers=headers,
        )

    def test_recovers_completed_payment(
        self, client: TestClient, verifier: StubVerificationAdapter
    ) -> None:
        verifier.payments["pay-old"] = ExternalPayment(
            identifier="pay-old",
            user_uid="alice",
            amount=Decimal("1.5"),
            metadata={"productId": "post-1"},
            status=ExternalPaymentStatus(
                developer_approved=True, transaction_verified=True, developer_completed=True
            ),
            txid="tx-old",
        )

        response = self.incomplete(client)

        assert response.status_code == 200
        body = response.json()
        assert body["payment"]["state"] == "completed"
        assert body["entitlement_granted"] is True
        assert client.get("/api/posts/post-1/full", headers=ALICE).status_code == 200

    def test_approved_with_transaction_is_completed(
        self, client: TestClient, verifier: StubVerificationAdapter
    ) -> None:
        verifier.payments["pay-old"] = ExternalPayment(
            identifier="pay-old",
            user_uid="alice",
            amount=Decimal("1.5"),
            metadata={"productId": "post-1"},
            status=ExternalPaymentStatus(developer_approved=True, transaction_verified=True),
            txid="tx-old",
        )

        response = self.incomplete(client)

        assert response.status_code == 200
        assert response.json()["payment"]["state"] == "completed"
        assert verifier.count("confirm_completion", "pay-old") == 1

    def test_state_comes_from_network_not_client(self, client: TestClient) -> None:
        # Stub network reports a plain approved payment without a transaction
        response = self.incomplete(client)

        assert response.status_code == 200
        assert response.json()["payment"]["state"] == "approved"
        assert client.get("/api/posts/post-1/full", headers=ALICE).status_code == 403

    def test_other_payer_is_403(self, client: TestClient, verifier: StubVerificationAdapter) -> None:
        verifier.payments["pay-old"] = ExternalPayment(identifier="pay-old", user_uid="bob")

        assert self.incomplete(client).status_code == 403

    def test_underpaid_completed_payment_is_402(
        self, client: TestClient, verifier: StubVerificationAdapter
    ) -> None:
        verifier.payments["pay-old"] = ExternalPayment(
            identifier="pay-old",
            user_uid="alice",
            amount=Decimal("0.01"),
            metadata={"productId": "post-1"},
            status=ExternalPaymentStatus(
                developer_approved=True, transaction_verified=True, developer_completed=True
            ),
            txid="tx-old",
        )

        response = self.incomplete(client)

        assert response.status_code == 402
        assert response.json()["detail"]["state"] == "failed"
        assert client.get("/api/posts/post-1/full", headers=ALICE).status_code == 403

    def test_content_comes_from_network_not_client(
        self, client: TestClient, verifier: StubVerificationAdapter
    ) -> None:
        # Network metadata names no content; the client's productId is not used
        verifier.payments["pay-old"] = ExternalPayment(
            identifier="pay-old",
            user_uid="alice",
            amount=Decimal("1.5"),
            status=ExternalPaymentStatus(
                developer_approved=True, transaction_verified=True, developer_completed=True
            ),
            txid="tx-old",
        )

        response = self.incomplete(client)

        assert response.status_code == 200
        assert response.json()["entitlement_granted"] is False
        assert client.get("/api/posts/post-1/full", headers=ALICE).status_code == 403


class TestGetPayment:
    def test_owner_can_read(self, client: TestClient) -> None:
        approve(client)

        response = client.get("/api/payments/pay-1", headers=ALICE)

        assert response.status_code == 200
        assert response.json()["state"] == "approved"

    def test_other_user_sees_404(self, client: TestClient) -> None:
        approve(client)

        assert client.get("/api/payments/pay-1", headers=BOB).status_code == 404

    def test_purchases_empty(self, client: TestClient) -> None:
        assert client.get("/api/payments/purchases", headers=BOB).json() == []


def test_health(client: TestClient) -> None:
    assert client.get("/health").json()["status"] == "ok"

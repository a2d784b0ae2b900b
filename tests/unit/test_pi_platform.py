"""
Unit tests for the Pi platform verification adapter.

The platform API is replaced by an httpx.MockTransport.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from decimal import Decimal
from typing import Any

import httpx
import pytest

from src.adapters.pi_platform import PiPlatformAdapter, parse_payment_dto
from src.core.ports.payment import ExternalVerificationUnavailableError

BASE = "https://pi.test/v2"


def payment_dto(
    identifier: str = "pay-1",
    txid: str | None = None,
    **status: bool,
) -> dict[str, Any]:
    flags = {
        "developer_approved": False,
        "transaction_verified": False,
        "developer_completed": False,
        "cancelled": False,
        "user_cancelled": False,
    }
    flags.update(status)
    return {
        "identifier": identifier,
        "user_uid": "alice",
        "amount": 3.14,
        "memo": "Unlock: Sunrise",
        "metadata": {"productId": "post-1"},
        "status": flags,
        "transaction": {"txid": txid, "verified": True, "_link": "x"} if txid else None,
    }


def make_adapter(handler: Callable[[httpx.Request], httpx.Response]) -> PiPlatformAdapter:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return PiPlatformAdapter(api_key="secret", base_url=BASE, client=client)


class TestParsePaymentDto:
    def test_parses_fields(self) -> None:
        payment = parse_payment_dto(payment_dto(txid="tx-1", developer_approved=True))

        assert payment.identifier == "pay-1"
        assert payment.user_uid == "alice"
        assert payment.amount == Decimal("3.14")
        assert payment.content_id == "post-1"
        assert payment.txid == "tx-1"
        assert payment.status.developer_approved is True

    def test_missing_identifier(self) -> None:
        with pytest.raises(ValueError):
            parse_payment_dto({"status": {}})

    def test_not_an_object(self) -> None:
        with pytest.raises(ValueError):
            parse_payment_dto(["pay-1"])  # type: ignore[arg-type]


class TestConfirmApproval:
    def test_sends_key_and_approves(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=payment_dto(developer_approved=True))

        result = make_adapter(handler).confirm_approval("pay-1")

        assert result.approved is True
        assert seen[0].method == "POST"
        assert seen[0].url == httpx.URL(f"{BASE}/payments/pay-1/approve")
        assert seen[0].headers["Authorization"] == "Key secret"

    def test_cancelled_payment_not_approved(self) -> None:
        adapter = make_adapter(
            lambda r: httpx.Response(200, json=payment_dto(developer_approved=True, cancelled=True))
        )
        assert adapter.confirm_approval("pay-1").approved is False

    @pytest.mark.parametrize("status_code", [400, 404, 500, 502])
    def test_non_success_is_unavailable(self, status_code: int) -> None:
        adapter = make_adapter(lambda r: httpx.Response(status_code, json={"error": "x"}))

        with pytest.raises(ExternalVerificationUnavailableError) as exc:
            adapter.confirm_approval("pay-1")
        assert exc.value.payment_id == "pay-1"

    def test_timeout_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ExternalVerificationUnavailableError):
            make_adapter(handler).confirm_approval("pay-1")

    def test_connect_error_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ExternalVerificationUnavailableError):
            make_adapter(handler).confirm_approval("pay-1")

    def test_undecodable_body_is_unavailable(self) -> None:
        adapter = make_adapter(lambda r: httpx.Response(200, content=b"<html>oops</html>"))

        with pytest.raises(ExternalVerificationUnavailableError):
            adapter.confirm_approval("pay-1")


class TestConfirmCompletion:
    def test_posts_txid_and_verifies(self) -> None:
        bodies: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(
                200,
                json=payment_dto(
                    txid="tx-1",
                    developer_approved=True,
                    transaction_verified=True,
                    developer_completed=True,
                ),
            )

        result = make_adapter(handler).confirm_completion("pay-1", "tx-1")

        assert bodies == [{"txid": "tx-1"}]
        assert result.verified is True
        assert result.settlement_ref == "tx-1"
        assert result.rejected is False

    def test_txid_mismatch_not_verified(self) -> None:
        adapter = make_adapter(
            lambda r: httpx.Response(
                200,
                json=payment_dto(
                    txid="tx-other",
                    developer_approved=True,
                    transaction_verified=True,
                    developer_completed=True,
                ),
            )
        )

        result = adapter.confirm_completion("pay-1", "tx-1")

        assert result.verified is False
        assert result.rejected is False
        assert result.settlement_ref is None

    def test_cancelled_payment_rejected(self) -> None:
        adapter = make_adapter(
            lambda r: httpx.Response(200, json=payment_dto(txid="tx-1", user_cancelled=True))
        )

        result = adapter.confirm_completion("pay-1", "tx-1")

        assert result.rejected is True
        assert result.verified is False


def test_fetch_payment_uses_get() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=payment_dto(developer_approved=True))

    payment = make_adapter(handler).fetch_payment("pay-1")

    assert seen[0].method == "GET"
    assert seen[0].url.path == "/v2/payments/pay-1"
    assert payment.status.developer_approved is True

"""
Pi Network platform adapter.

Server-side payment verification against the Pi platform API using a sync
httpx client. Request handlers run in FastAPI's threadpool, so a blocking
client is the right fit here.

Anything short of a decodable 2xx answer is raised as
ExternalVerificationUnavailableError. A rejection is only ever derived from
the payment's own status flags.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from src.core.ports.payment import (
    ApprovalVerification,
    CompletionVerification,
    ExternalPayment,
    ExternalPaymentStatus,
    ExternalVerificationUnavailableError,
)

logger = logging.getLogger(__name__)

PI_API_BASE = "https://api.minepi.com/v2"


def parse_payment_dto(data: dict[str, Any]) -> ExternalPayment:
    """
    Build an ExternalPayment from a platform PaymentDTO.

    Raises:
        ValueError: Required fields missing or malformed
    """
    if not isinstance(data, dict):
        raise ValueError("payment DTO is not an object")
    identifier = data.get("identifier")
    if not identifier:
        raise ValueError("payment DTO has no identifier")

    raw_amount = data.get("amount")
    try:
        # str() first: floats from JSON must not leak binary noise into Decimal
        amount = Decimal(str(raw_amount)) if raw_amount is not None else None
    except InvalidOperation as e:
        raise ValueError(f"invalid amount: {raw_amount!r}") from e

    status = data.get("status") or {}
    transaction = data.get("transaction") or {}

    return ExternalPayment(
        identifier=str(identifier),
        user_uid=data.get("user_uid"),
        amount=amount,
        memo=data.get("memo") or "",
        metadata=dict(data.get("metadata") or {}),
        status=ExternalPaymentStatus(
            developer_approved=bool(status.get("developer_approved")),
            transaction_verified=bool(status.get("transaction_verified")),
            developer_completed=bool(status.get("developer_completed")),
            cancelled=bool(status.get("cancelled")),
            user_cancelled=bool(status.get("user_cancelled")),
        ),
        txid=transaction.get("txid"),
    )


class PiPlatformAdapter:
    """
    PaymentVerificationPort over the Pi platform REST API.

    Usage:
        verifier = PiPlatformAdapter(api_key=os.environ["PI_API_KEY"])
        verdict = verifier.confirm_approval(payment_id)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = PI_API_BASE,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _call(
        self,
        method: str,
        path: str,
        payment_id: str,
        json: dict[str, Any] | None = None,
    ) -> ExternalPayment:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Key {self._api_key}"}
        start = time.monotonic()
        try:
            resp = self.client.request(method, url, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Pi API timeout: %s %s", method, path)
            raise ExternalVerificationUnavailableError(
                f"payment network timed out on {path}", payment_id
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Pi API transport error: %s %s: %s", method, path, e)
            raise ExternalVerificationUnavailableError(
                f"payment network unreachable: {e}", payment_id
            ) from e

        elapsed = time.monotonic() - start
        logger.debug("Pi API %s %s -> %s in %.3fs", method, path, resp.status_code, elapsed)

        if not resp.is_success:
            logger.warning(
                "Pi API error: %s %s -> %s: %s", method, path, resp.status_code, resp.text[:200]
            )
            raise ExternalVerificationUnavailableError(
                f"payment network answered {resp.status_code} on {path}", payment_id
            )

        try:
            return parse_payment_dto(resp.json())
        except ValueError as e:
            # json.JSONDecodeError is a ValueError too
            logger.warning("Pi API undecodable body on %s: %s", path, e)
            raise ExternalVerificationUnavailableError(
                f"undecodable payment from network: {e}", payment_id
            ) from e

    # --- PaymentVerificationPort ---

    def confirm_approval(self, payment_id: str) -> ApprovalVerification:
        payment = self._call("POST", f"/payments/{payment_id}/approve", payment_id)
        status = payment.status
        approved = status.developer_approved and not (status.cancelled or status.user_cancelled)
        return ApprovalVerification(approved=approved, payment=payment)

    def confirm_completion(
        self, payment_id: str, transaction_id: str
    ) -> CompletionVerification:
        payment = self._call(
            "POST",
            f"/payments/{payment_id}/complete",
            payment_id,
            json={"txid": transaction_id},
        )
        status = payment.status
        if status.cancelled or status.user_cancelled:
            return CompletionVerification(verified=False, rejected=True, payment=payment)

        verified = (
            status.developer_completed
            and status.transaction_verified
            and payment.txid == transaction_id
        )
        if not verified:
            logger.warning(
                "Pi payment %s not verified for txid %s (network txid %s)",
                payment_id,
                transaction_id,
                payment.txid,
            )
        return CompletionVerification(
            verified=verified,
            settlement_ref=payment.txid if verified else None,
            payment=payment,
        )

    def fetch_payment(self, payment_id: str) -> ExternalPayment:
        return self._call("GET", f"/payments/{payment_id}", payment_id)

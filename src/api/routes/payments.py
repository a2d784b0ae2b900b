"""
Payment routes.

Thin HTTP layer over the reconciliation coordinator: every mutation goes
through it, and its exceptions are mapped onto status codes here.
"""

import logging
from dataclasses import replace

from fastapi import APIRouter, Depends, HTTPException

from src.api.deps import (
    get_coordinator,
    get_current_user_id,
    get_entitlement_repo,
    get_post_repo,
    get_rules,
    get_verifier,
)
from src.api.schemas import (
    ApproveRequest,
    CancelRequest,
    CompleteRequest,
    IncompleteRequest,
    OutcomeResponse,
    PaymentResponse,
    PurchaseResponse,
)
from src.components.entitlements import list_entitlements
from src.components.entitlements.ports import EntitlementRepoPort
from src.components.payments import (
    CompletionRejectedError,
    ExternalVerificationFailedError,
    InvalidTransitionError,
    PaymentError,
    PaymentOwnershipError,
    PaymentState,
    reported_state_from_external,
)
from src.components.reconciliation import LockTimeoutError, ReconciliationCoordinator
from src.core.ports.db import PostRepoPort, StorageUnavailableError
from src.core.ports.payment import (
    ExternalVerificationUnavailableError,
    PaymentVerificationPort,
)
from src.rules.models import Rules

logger = logging.getLogger(__name__)

router = APIRouter()

TRANSIENT_ERRORS = (
    ExternalVerificationUnavailableError,
    StorageUnavailableError,
    LockTimeoutError,
)


def to_http_error(exc: Exception, retry_after: int) -> HTTPException:
    """Map a coordinator or port exception onto an HTTPException."""
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(
            status_code=409,
            detail={
                "error": "invalid_transition",
                "message": str(exc),
                "state": exc.current.value,
            },
        )
    if isinstance(exc, CompletionRejectedError):
        return HTTPException(
            status_code=409,
            detail={"error": "completion_rejected", "message": exc.reason, "retryable": True},
        )
    if isinstance(exc, ExternalVerificationFailedError):
        return HTTPException(
            status_code=402,
            detail={
                "error": "verification_failed",
                "message": exc.reason,
                "state": exc.record.state.value,
            },
        )
    if isinstance(exc, PaymentOwnershipError):
        return HTTPException(status_code=403, detail="Payment belongs to another user")
    if isinstance(exc, TRANSIENT_ERRORS):
        logger.warning("Transient payment failure: %s", exc)
        return HTTPException(
            status_code=503,
            detail={"error": "unavailable", "message": str(exc), "retryable": True},
            headers={"Retry-After": str(retry_after)},
        )
    raise exc


@router.post("/approve", response_model=OutcomeResponse)
def approve_payment(
    body: ApproveRequest,
    user_id: str = Depends(get_current_user_id),
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
    posts: PostRepoPort = Depends(get_post_repo),
    rules: Rules = Depends(get_rules),
) -> OutcomeResponse:
    """Approve a newly created payment for a post. The price comes from the post."""
    retry_after = rules.payments.retry_after_seconds
    try:
        post = posts.get_by_id(body.content_id)
    except StorageUnavailableError as e:
        raise to_http_error(e, retry_after) from e
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")

    try:
        outcome = coordinator.request_approval(
            body.payment_id,
            user_id=user_id,
            content_id=post.id,
            amount=post.price,
            memo=f"Unlock: {post.title}",
        )
    except (PaymentError, *TRANSIENT_ERRORS) as e:
        raise to_http_error(e, retry_after) from e
    return OutcomeResponse.from_outcome(outcome)


@router.post("/complete", response_model=OutcomeResponse)
def complete_payment(
    body: CompleteRequest,
    user_id: str = Depends(get_current_user_id),
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
    rules: Rules = Depends(get_rules),
) -> OutcomeResponse:
    """Complete an approved payment with the client's settlement transaction."""
    try:
        outcome = coordinator.request_completion(body.payment_id, body.txid, user_id=user_id)
    except (PaymentError, *TRANSIENT_ERRORS) as e:
        raise to_http_error(e, rules.payments.retry_after_seconds) from e
    return OutcomeResponse.from_outcome(outcome)


@router.post("/cancel", response_model=OutcomeResponse)
def cancel_payment(
    body: CancelRequest,
    user_id: str = Depends(get_current_user_id),
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
    rules: Rules = Depends(get_rules),
) -> OutcomeResponse:
    """Record that the payer or the network aborted a payment."""
    try:
        outcome = coordinator.cancel(body.payment_id, body.reason, user_id=user_id)
    except (PaymentError, *TRANSIENT_ERRORS) as e:
        raise to_http_error(e, rules.payments.retry_after_seconds) from e
    return OutcomeResponse.from_outcome(outcome)


@router.post("/incomplete", response_model=OutcomeResponse)
def recover_incomplete_payment(
    body: IncompleteRequest,
    user_id: str = Depends(get_current_user_id),
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
    verifier: PaymentVerificationPort = Depends(get_verifier),
    posts: PostRepoPort = Depends(get_post_repo),
    rules: Rules = Depends(get_rules),
) -> OutcomeResponse:
    """
    Resume a payment left unresolved by an earlier session.

    The state and content are taken from the network, never from the client
    payload, and the paid amount is checked against the post price. When
    the network reports an approved payment that already carries a
    transaction, completion is driven right away.
    """
    retry_after = rules.payments.retry_after_seconds
    payment_id = body.payment.identifier

    try:
        external = verifier.fetch_payment(payment_id)
    except ExternalVerificationUnavailableError as e:
        raise to_http_error(e, retry_after) from e

    if external.user_uid is not None and external.user_uid != user_id:
        raise HTTPException(status_code=403, detail="Payment belongs to another user")
    external = replace(external, user_uid=user_id)

    try:
        price = posts.get_price(external.content_id) if external.content_id else None
        outcome = coordinator.recover_incomplete(
            payment_id,
            reported_state_from_external(external),
            payload=external,
            expected_amount=price,
        )
        if outcome.record.state == PaymentState.APPROVED and external.txid:
            outcome = coordinator.request_completion(payment_id, external.txid, user_id=user_id)
    except (PaymentError, *TRANSIENT_ERRORS) as e:
        raise to_http_error(e, retry_after) from e
    return OutcomeResponse.from_outcome(outcome)


@router.get("/purchases", response_model=list[PurchaseResponse])
def list_purchases(
    user_id: str = Depends(get_current_user_id),
    entitlements: EntitlementRepoPort = Depends(get_entitlement_repo),
    rules: Rules = Depends(get_rules),
) -> list[PurchaseResponse]:
    """Everything the caller has been granted."""
    try:
        grants = list_entitlements(entitlements, user_id)
    except StorageUnavailableError as e:
        raise to_http_error(e, rules.payments.retry_after_seconds) from e
    return [PurchaseResponse.from_record(g) for g in grants]


@router.get("/{payment_id}", response_model=PaymentResponse)
def get_payment(
    payment_id: str,
    user_id: str = Depends(get_current_user_id),
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
    rules: Rules = Depends(get_rules),
) -> PaymentResponse:
    """The caller's payment record."""
    try:
        record = coordinator.get_payment(payment_id)
    except StorageUnavailableError as e:
        raise to_http_error(e, rules.payments.retry_after_seconds) from e
    # Other users' payments are reported as missing
    if record is None or record.user_id != user_id:
        raise HTTPException(status_code=404, detail="Payment not found")
    return PaymentResponse.from_record(record)

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.components.entitlements import AccessDecision, EntitlementRecord
from src.components.payments import PaymentRecord
from src.components.reconciliation import ReconciliationOutcome


# --- Payment Requests ---
class ApproveRequest(BaseModel):
    payment_id: str = Field(min_length=1)
    content_id: str = Field(min_length=1)


class CompleteRequest(BaseModel):
    payment_id: str = Field(min_length=1)
    txid: str = Field(min_length=1)


class CancelRequest(BaseModel):
    payment_id: str = Field(min_length=1)
    reason: str = "cancelled"


class PaymentTransactionModel(BaseModel):
    txid: str
    verified: bool = False


class PaymentDTOModel(BaseModel):
    """Payment object as the client SDK hands it over. Only its id is trusted."""

    model_config = ConfigDict(extra="allow")

    identifier: str = Field(min_length=1)
    user_uid: str | None = None
    amount: Decimal | None = None
    memo: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: dict[str, bool] = Field(default_factory=dict)
    transaction: PaymentTransactionModel | None = None


class IncompleteRequest(BaseModel):
    payment: PaymentDTOModel


# --- Payment Responses ---
class PaymentResponse(BaseModel):
    payment_id: str
    state: str
    content_id: str | None = None
    amount: Decimal | None = None
    memo: str = ""
    transaction_id: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: PaymentRecord) -> "PaymentResponse":
        return cls(
            payment_id=record.payment_id,
            state=record.state.value,
            content_id=record.content_id,
            amount=record.amount,
            memo=record.memo,
            transaction_id=record.transaction_id,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class OutcomeResponse(BaseModel):
    payment: PaymentResponse
    changed: bool
    already_completed: bool = False
    entitlement_granted: bool = False

    @classmethod
    def from_outcome(cls, outcome: ReconciliationOutcome) -> "OutcomeResponse":
        return cls(
            payment=PaymentResponse.from_record(outcome.record),
            changed=outcome.changed,
            already_completed=outcome.already_completed,
            entitlement_granted=outcome.entitlement_granted,
        )


class PurchaseResponse(BaseModel):
    content_id: str
    granted_at: datetime
    source_payment_id: str | None = None

    @classmethod
    def from_record(cls, record: EntitlementRecord) -> "PurchaseResponse":
        return cls(
            content_id=record.content_id,
            granted_at=record.granted_at,
            source_payment_id=record.source_payment_id,
        )


# --- Posts ---
class PostPreviewResponse(BaseModel):
    id: str
    creator_id: str
    creator_name: str
    title: str
    description: str
    price: Decimal
    content_type: str
    thumbnail_url: str | None = None
    tags: list[str] = []
    created_at: datetime


class PostFullResponse(PostPreviewResponse):
    full_content: str
    full_content_url: str | None = None


class AccessResponse(BaseModel):
    post_id: str
    has_full_access: bool
    reason: str
    is_creator: bool = False
    granted_at: datetime | None = None

    @classmethod
    def from_decision(cls, post_id: str, decision: AccessDecision) -> "AccessResponse":
        return cls(
            post_id=post_id,
            has_full_access=decision.has_full_access,
            reason=decision.reason,
            is_creator=decision.is_creator,
            granted_at=decision.granted_at,
        )

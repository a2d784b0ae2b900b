# Ports (Protocol Interfaces)
# Abstract interfaces for adapters; no implementations here

from src.core.ports.db import PostRepoPort, StorageUnavailableError
from src.core.ports.payment import (
    ApprovalVerification,
    CompletionVerification,
    ExternalPayment,
    ExternalPaymentStatus,
    ExternalVerificationUnavailableError,
    PaymentVerificationPort,
)

__all__ = [
    # Storage
    "PostRepoPort",
    "StorageUnavailableError",
    # Payment network
    "ApprovalVerification",
    "CompletionVerification",
    "ExternalPayment",
    "ExternalPaymentStatus",
    "ExternalVerificationUnavailableError",
    "PaymentVerificationPort",
]

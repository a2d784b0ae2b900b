"""
Payments component.

Public API for the payment lifecycle state machine.
"""

from .component import (
    apply_signal,
    check_completion_allowed,
    merge_details,
    new_payment_record,
    reported_state_from_external,
    terms_mismatch,
)
from .models import (
    ABORTED_STATES,
    STATE_RANK,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    Cancel,
    CompletionRejectedError,
    ConfirmApproval,
    ConfirmCompletion,
    ExternalVerificationFailedError,
    InvalidTransitionError,
    PaymentError,
    PaymentOwnershipError,
    PaymentRecord,
    PaymentState,
    RecoverIncomplete,
    RequestApproval,
    Signal,
    TransitionResult,
    can_transition,
    is_terminal,
)
from .ports import PaymentRecordRepoPort

__all__ = [
    # Functions
    "apply_signal",
    "check_completion_allowed",
    "merge_details",
    "new_payment_record",
    "reported_state_from_external",
    "terms_mismatch",
    "can_transition",
    "is_terminal",
    # Models
    "PaymentRecord",
    "PaymentState",
    "TransitionResult",
    "ABORTED_STATES",
    "STATE_RANK",
    "TERMINAL_STATES",
    "VALID_TRANSITIONS",
    # Signals
    "Cancel",
    "ConfirmApproval",
    "ConfirmCompletion",
    "RecoverIncomplete",
    "RequestApproval",
    "Signal",
    # Errors
    "PaymentError",
    "CompletionRejectedError",
    "ExternalVerificationFailedError",
    "InvalidTransitionError",
    "PaymentOwnershipError",
    # Ports
    "PaymentRecordRepoPort",
]

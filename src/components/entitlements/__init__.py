"""
Entitlements component.

Public API for access grants and full-content gating.
"""

from .component import (
    can_access_full,
    check_full_access,
    grant_entitlement,
    list_entitlements,
)
from .models import AccessDecision, EntitlementRecord, GrantOutput
from .ports import EntitlementReaderPort, EntitlementRepoPort

__all__ = [
    # Functions
    "can_access_full",
    "check_full_access",
    "grant_entitlement",
    "list_entitlements",
    # Models
    "AccessDecision",
    "EntitlementRecord",
    "GrantOutput",
    # Ports
    "EntitlementReaderPort",
    "EntitlementRepoPort",
]

# permissions/roles.py

from __future__ import annotations

from typing import Optional

from rest_framework.permissions import BasePermission


# =========================================================
# ROLE CONSTANTS
# =========================================================
# Mirrors users.User.ROLE_CHOICES.
ROLE_ADMIN = "admin"
ROLE_FINANCE = "finance"
ROLE_STAFF = "staff"
ROLE_MEMBER = "member"

STAFF_ROLES = {
    ROLE_ADMIN,
    ROLE_FINANCE,
    ROLE_STAFF,
}


# =========================================================
# CAPABILITIES (THE REAL PERMISSION LANGUAGE)
# =========================================================
# Views protect capabilities, not raw roles.
CAP_REFUNDS_MANAGE = "refunds.manage"
CAP_REGISTRATIONS_MANAGE = "registrations.manage"

CAP_ACCOUNTING_SYNC = "accounting.sync"  # manual sync, accounts sync, retry
CAP_ACCOUNTING_VIEW = "accounting.view"

ALL_CAPABILITIES = {
    CAP_REFUNDS_MANAGE,
    CAP_REGISTRATIONS_MANAGE,
    CAP_ACCOUNTING_SYNC,
    CAP_ACCOUNTING_VIEW,
}


# =========================================================
# ROLE → CAPABILITY MAP
# =========================================================
ROLE_CAPABILITIES: dict[str, set[str]] = {
    ROLE_ADMIN: {
        *ALL_CAPABILITIES,
    },
    ROLE_FINANCE: {
        CAP_REFUNDS_MANAGE,
        CAP_ACCOUNTING_SYNC,
        CAP_ACCOUNTING_VIEW,
    },
    ROLE_STAFF: {
        CAP_REGISTRATIONS_MANAGE,
        CAP_ACCOUNTING_VIEW,
    },
    ROLE_MEMBER: set(),
}


# =========================================================
# Helpers
# =========================================================
def get_user_role(user) -> Optional[str]:
    return getattr(user, "role", None)


def effective_capabilities_for(request, user) -> set[str]:
    """
    Capabilities granted by the user's role. Superusers get everything.
    """
    if getattr(user, "is_superuser", False):
        return set(ALL_CAPABILITIES)

    role = get_user_role(user)
    return set(ROLE_CAPABILITIES.get(role, set()))


# =========================================================
# Capability Permission
# =========================================================
class HasCapability(BasePermission):
    """
    Require a specific capability.

    Usage:
        permission_classes = [IsAuthenticated, HasCapability]
        view.required_capability = CAP_REFUNDS_MANAGE
    """

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False

        required = getattr(view, "required_capability", None)
        if not required:
            # deny-by-default to avoid accidental open endpoints
            return False

        caps = effective_capabilities_for(request, user)
        return required in caps

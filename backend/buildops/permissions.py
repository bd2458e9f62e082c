"""
Role and permission definitions.

Role resolution is external: every request carries an opaque caller identity
and one of the roles below. Checks fail closed: an unknown role or an
unmapped permission is a denial.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .exceptions import ForbiddenError

logger = logging.getLogger(__name__)


# =============================================================================
# ROLES
# =============================================================================

ROLE_ADMIN = "admin"
ROLE_PM = "pm"
ROLE_CONTRACTOR = "contractor"
ROLE_VIEWER = "viewer"

ROLES = (ROLE_ADMIN, ROLE_PM, ROLE_CONTRACTOR, ROLE_VIEWER)


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, description)
PERMISSION_DEFINITIONS = [
    ("VIEW_PAYMENT_APPS", "View payment applications and their line-item progress"),
    ("VIEW_DECISION_QUEUE", "View the dashboard decision queue"),
    ("VIEW_BUDGET", "View budget roll-ups and export budget reports"),
    ("CREATE_PAYMENT_APPS", "Create payment applications manually or start SMS intake"),
    ("REVIEW_PAYMENT_APPS", "Open applications for review and verify line-item progress"),
    ("APPROVE_PAYMENT_APPS", "Approve or reject verified payment applications"),
    ("QUICK_APPROVE", "Approve any open application without verification"),
    ("DELETE_PAYMENT_APPS", "Delete payment applications that are not approved"),
    ("SUBMIT_PROGRESS", "Report line-item progress for an SMS intake"),
    ("RESUBMIT_PAYMENT_APPS", "Resubmit rejected payment applications"),
    ("MARK_CHECK_READY", "Mark approved applications as check ready"),
    ("SEND_FOR_SIGNATURE", "Send approved applications for e-signature"),
    ("CREATE_CHANGE_ORDERS", "Create change orders"),
    ("APPROVE_CHANGE_ORDERS", "Approve or reject change orders"),
    ("MANAGE_DAILY_LOGS", "Schedule and dispatch daily-log requests"),
]

PERMISSION_CODES = {code for code, _ in PERMISSION_DEFINITIONS}

_READ = ["VIEW_PAYMENT_APPS", "VIEW_DECISION_QUEUE", "VIEW_BUDGET"]

_PM = _READ + [
    "CREATE_PAYMENT_APPS",
    "REVIEW_PAYMENT_APPS",
    "APPROVE_PAYMENT_APPS",
    "DELETE_PAYMENT_APPS",
    "SUBMIT_PROGRESS",
    "RESUBMIT_PAYMENT_APPS",
    "MARK_CHECK_READY",
    "SEND_FOR_SIGNATURE",
    "CREATE_CHANGE_ORDERS",
    "MANAGE_DAILY_LOGS",
]

DEFAULT_ROLE_PERMISSIONS = {
    # Admin gets ALL permissions
    ROLE_ADMIN: [code for code, _ in PERMISSION_DEFINITIONS],
    ROLE_PM: _PM,
    ROLE_CONTRACTOR: _READ + ["SUBMIT_PROGRESS", "RESUBMIT_PAYMENT_APPS"],
    ROLE_VIEWER: _READ,
}


@dataclass(frozen=True)
class Caller:
    """Opaque identity of whoever issued the request."""
    user_id: int | None
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def has_permission(caller: Caller, permission_code: str) -> bool:
    return permission_code in DEFAULT_ROLE_PERMISSIONS.get(caller.role, ())


def require(caller: Caller, permission_code: str, *, resource: str | None = None) -> None:
    """Raise ForbiddenError unless the caller's role grants permission_code."""
    if permission_code not in PERMISSION_CODES:
        raise ValueError(f"Unknown permission code: {permission_code}")
    if has_permission(caller, permission_code):
        return
    logger.warning(
        "Permission denied: user=%s role=%s permission=%s resource=%s",
        caller.user_id, caller.role, permission_code, resource,
    )
    raise ForbiddenError(
        f"Role '{caller.role}' lacks permission {permission_code}",
        {"permission": permission_code, "role": caller.role, "resource": resource},
    )

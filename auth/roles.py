# Role-Based Access Control for the Creator Payouts Platform
# This module defines user roles and permissions for deliverable review and payouts

from enum import Enum
from typing import List, Set


class UserType(str, Enum):
    """User types in the marketplace."""
    BUSINESS = "business"
    CREATOR = "creator"
    ADMIN = "admin"


class Permission(str, Enum):
    """Fine-grained permissions for the platform."""

    # Business permissions
    VIEW_REVIEW_METRICS = "view_review_metrics"

    # Creator permissions
    MANAGE_PAYOUT_ACCOUNT = "manage_payout_account"

    # Common permissions
    RETRY_PAYOUTS = "retry_payouts"
    VIEW_NOTIFICATIONS = "view_notifications"


# Role to permissions mapping
ROLE_PERMISSIONS: dict[UserType, Set[Permission]] = {
    UserType.BUSINESS: {
        Permission.VIEW_REVIEW_METRICS,
        # Common
        Permission.RETRY_PAYOUTS,
        Permission.VIEW_NOTIFICATIONS,
    },

    UserType.CREATOR: {
        Permission.MANAGE_PAYOUT_ACCOUNT,
        # Common
        Permission.RETRY_PAYOUTS,
        Permission.VIEW_NOTIFICATIONS,
    },

    UserType.ADMIN: {
        # Admin has ALL permissions
        *Permission.__members__.values()
    },
}


def has_permission(user_type: UserType, permission: Permission) -> bool:
    """Check if a user type has a specific permission."""
    return permission in ROLE_PERMISSIONS.get(user_type, set())


def has_any_permission(user_type: UserType, permissions: List[Permission]) -> bool:
    """Check if a user type has any of the given permissions."""
    return any(has_permission(user_type, p) for p in permissions)

# Auth module for the Creator Payouts Platform
# Provides role-based access control and authentication dependencies

from auth.roles import (
    UserType,
    Permission,
    has_permission,
    has_any_permission,
)

from auth.decorators import (
    AuthError,
    require_user_type,
    require_permission,
    require_admin,
    get_user_type,
)

__all__ = [
    # Roles
    "UserType",
    "Permission",
    "has_permission",
    "has_any_permission",

    # Dependencies
    "AuthError",
    "require_user_type",
    "require_permission",
    "require_admin",
    "get_user_type",
]

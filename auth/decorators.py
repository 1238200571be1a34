# Authorization Dependencies for the Creator Payouts Platform
# Role checks layered on top of get_current_user

from fastapi import HTTPException, status, Depends

from database.models import User
from auth.roles import UserType, Permission, has_any_permission
from auth.dependencies import get_current_user


class AuthError(HTTPException):
    """403 raised when an authenticated user lacks the required role."""

    def __init__(self, detail: str, status_code: int = status.HTTP_403_FORBIDDEN):
        super().__init__(status_code=status_code, detail=detail)


def get_user_type(user: User) -> UserType:
    """Role of a user whether the column holds an enum member or a raw string."""
    raw = getattr(user.user_type, "value", user.user_type)
    try:
        return UserType(str(raw).lower())
    except ValueError:
        # Unknown or missing types get the least privileged role
        return UserType.CREATOR


def require_user_type(*allowed_types: UserType):
    """
    Dependency limiting an endpoint to creators, businesses or both.
    Admins always pass.

    Usage:
        @router.post("/deliverables/submit")
        async def submit(
            user: User = Depends(require_user_type(UserType.CREATOR))
        ):
            ...
    """
    async def check_user_type(current_user: User = Depends(get_current_user)) -> User:
        user_type = get_user_type(current_user)
        if user_type == UserType.ADMIN or user_type in allowed_types:
            return current_user

        roles = " or ".join(t.value for t in allowed_types)
        raise AuthError(detail=f"Only {roles} accounts can do this")

    return check_user_type


def require_permission(*permissions: Permission):
    """
    Dependency requiring at least one of the given permissions.

    Usage:
        @router.post("/payouts/{deliverable_id}/retry")
        async def retry(
            user: User = Depends(require_permission(Permission.RETRY_PAYOUTS))
        ):
            ...
    """
    async def check_permission(current_user: User = Depends(get_current_user)) -> User:
        if has_any_permission(get_user_type(current_user), list(permissions)):
            return current_user
        raise AuthError(detail="You don't have permission to perform this action")

    return check_permission


def require_admin():
    """Dependency for operator-only endpoints such as the sweep and reconciliation jobs."""
    async def check_admin(current_user: User = Depends(get_current_user)) -> User:
        if get_user_type(current_user) != UserType.ADMIN:
            raise AuthError(detail="Admin access required")
        return current_user

    return check_admin

"""
Security guards for role-based and ownership-based access control.
"""

from fastapi import Depends, HTTPException, status
from rideshare.app.models.enums import UserRole
from rideshare.app.core.dependencies import get_current_user
from rideshare.app.core.exceptions import InsufficientPermissionsError


def is_admin(current_user: dict) -> bool:
    return current_user.get("role") == UserRole.ADMIN.value


def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    """Dependency for admin-only endpoints."""
    if not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


class OwnershipGuard:
    """
    Ownership check for resources keyed by a user id (driver, passenger, creator).

    Usage:
        ownership_guard = OwnershipGuard()
        ownership_guard.enforce(trip.driver_id, current_user, "trip")
    """

    def __init__(self, allow_admin: bool = True):
        self.allow_admin = allow_admin

    def owns(self, resource_owner_id, current_user: dict) -> bool:
        if self.allow_admin and is_admin(current_user):
            return True
        return resource_owner_id is not None and resource_owner_id == current_user.get("user_id")

    def enforce(self, resource_owner_id, current_user: dict, resource_name: str = "resource") -> None:
        """
        Raises:
            InsufficientPermissionsError: Caller neither owns the resource nor is an allowed admin
        """
        if not self.owns(resource_owner_id, current_user):
            raise InsufficientPermissionsError(
                f"Access denied. You do not have permission to access this {resource_name}."
            )

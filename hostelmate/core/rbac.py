# hostelmate/core/rbac.py

from fastapi import Depends, HTTPException, status
from loguru import logger

from hostelmate.api.deps import get_current_user
from hostelmate.models.user import User, UserRole


def AllowRoles(*allowed_roles: UserRole):
    """
    Route guard for the given roles. Admin passes every guard.
    Roles stored as plain strings (older rows) are compared by value.
    """
    allowed = {UserRole(r).value for r in allowed_roles} | {UserRole.Admin.value}

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        role = current_user.role.value if isinstance(current_user.role, UserRole) else str(current_user.role)

        if role not in allowed:
            logger.warning(f"User {current_user.id} ({role}) denied; needs one of {sorted(allowed)}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied for role '{role}'"
            )

        return current_user

    return role_checker


# ------------------------------------------------------------
# Guards used by the leave routers
# ------------------------------------------------------------
require_student = AllowRoles(UserRole.Student)
require_leave_decider = AllowRoles(UserRole.Warden)
require_gate_staff = AllowRoles(UserRole.Warden, UserRole.Security)

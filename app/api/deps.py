from typing import Annotated
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.security import verify_access_token
from app.core.permissions import PermissionChecker
from app.models.user import AppRole, UserRole, ADMIN_ROLES


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> uuid.UUID:
    """
    Dependency to get the ID of the authenticated user.
    Validates the JWT token issued by the identity provider.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    user_id = verify_access_token(credentials.credentials)
    if user_id is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    try:
        return uuid.UUID(user_id)
    except ValueError:
        logger.warning(f"Invalid user_id in token: {user_id}")
        raise credentials_exception


async def get_permission_checker(
    user_id: Annotated[uuid.UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PermissionChecker:
    """
    Load the user's roles and wrap them in a PermissionChecker.
    A user without any role cannot use the API.
    """
    result = await db.execute(
        select(UserRole.role).where(UserRole.user_id == user_id)
    )
    roles = {row[0] for row in result.all()}

    if not roles:
        logger.warning(f"User {user_id} has no roles")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User has no roles assigned"
        )

    return PermissionChecker(user_id, roles)


def require_roles(*role_codes: str):
    """
    Dependency factory to require any of the given roles.
    Superadmin passes every check.

    Usage:
        @router.post("/", dependencies=[Depends(require_roles("admin"))])
        async def admin_endpoint():
            ...
    """
    async def role_dependency(
        permission_checker: Annotated[PermissionChecker, Depends(get_permission_checker)]
    ) -> PermissionChecker:
        if not permission_checker.has_any_role(role_codes):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied. Required any of: {', '.join(role_codes)}"
            )
        return permission_checker

    return role_dependency


def check_reference_access(permission_checker: PermissionChecker, material_type: str) -> None:
    """Raise 403 if the user's admin scope excludes the reference's material type."""
    if not permission_checker.can_access_reference(material_type):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission denied for {material_type} references"
        )


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
Permissions = Annotated[PermissionChecker, Depends(get_permission_checker)]
AnyAdmin = Annotated[PermissionChecker, Depends(require_roles(*ADMIN_ROLES))]
AdminOrSupervisor = Annotated[
    PermissionChecker, Depends(require_roles(*ADMIN_ROLES, AppRole.SUPERVISOR.value))
]
Superadmin = Annotated[PermissionChecker, Depends(require_roles(AppRole.SUPERADMIN.value))]

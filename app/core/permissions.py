from typing import Iterable, Set
import uuid

from app.models.inventory_audit import MaterialType
from app.models.user import AppRole, ADMIN_ROLES


# Admin roles restricted to one material type
MATERIAL_SCOPED_ROLES = {
    AppRole.ADMIN_MP.value: MaterialType.MP.value,
    AppRole.ADMIN_PP.value: MaterialType.PP.value,
}


class PermissionChecker:
    """
    Role checker for the audit API.

    Roles come from user_roles; a user may hold several.
    """

    def __init__(self, user_id: uuid.UUID, roles: Iterable[str]):
        """
        Initialize permission checker.

        Args:
            user_id: ID of the authenticated user
            roles: Role codes granted to the user
        """
        self.user_id = user_id
        self.roles: Set[str] = {str(role) for role in roles}

    def is_superadmin(self) -> bool:
        return AppRole.SUPERADMIN.value in self.roles

    def is_any_admin(self) -> bool:
        return bool(self.roles & set(ADMIN_ROLES))

    def has_role(self, role_code: str) -> bool:
        return role_code in self.roles

    def has_any_role(self, role_codes: Iterable[str]) -> bool:
        """
        Check if user has any of the specified roles.
        SUPERADMIN passes every role check.
        """
        if self.is_superadmin():
            return True
        return bool(self.roles & {str(code) for code in role_codes})

    def can_access_reference(self, material_type: str) -> bool:
        """
        Check whether the user may act on a reference of the given material type.

        Superadmin, admin and supervisor see every reference. admin_mp and
        admin_pp only see their own material type.
        """
        if self.is_superadmin() or AppRole.ADMIN.value in self.roles:
            return True
        if AppRole.SUPERVISOR.value in self.roles:
            return True

        allowed = {MATERIAL_SCOPED_ROLES[role] for role in self.roles if role in MATERIAL_SCOPED_ROLES}
        return material_type in allowed

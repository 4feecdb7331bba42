"""Role Definitions and Permission Mapping

Role resolution:
1. Supervisor: token claim `supervisor` is exactly True
2. Admin: app-scoped record role is `administrator`
3. User: everyone else who is authenticated

Supervisor is never derived from stored data.
"""

from enum import Enum
from typing import Optional

from toolbox.models.credits import AppRole


class Role(str, Enum):
    """Effective role of a caller within one app"""
    USER = "user"
    ADMIN = "admin"
    SUPERVISOR = "supervisor"


class Permission(str, Enum):
    CREDITS_VIEW_OWN = "credits:view_own"
    CREDITS_VIEW_ALL = "credits:view_all"
    CREDITS_MODIFY = "credits:modify"
    ROLES_ASSIGN = "roles:assign"


PERMISSIONS = {
    Permission.CREDITS_VIEW_OWN: {Role.USER, Role.ADMIN, Role.SUPERVISOR},
    Permission.CREDITS_VIEW_ALL: {Role.ADMIN, Role.SUPERVISOR},
    Permission.CREDITS_MODIFY: {Role.SUPERVISOR},
    Permission.ROLES_ASSIGN: {Role.SUPERVISOR},
}


def get_effective_role(is_supervisor_claim: bool, app_role: Optional[str] = None) -> Role:
    """Combine the supervisor claim with the app-scoped role."""
    if is_supervisor_claim is True:
        return Role.SUPERVISOR
    if app_role in (AppRole.ADMINISTRATOR.value, "admin"):
        return Role.ADMIN
    return Role.USER


def has_permission(role: Role, permission: Permission) -> bool:
    """Check if a role has a specific permission."""
    return role in PERMISSIONS.get(permission, set())

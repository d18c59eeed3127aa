"""
Permission Model
Role and capability based access control for courses, users, tools and calendars
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from lms_backend.core.exceptions import AuthorizationException, ValidationException
from lms_backend.core.logging import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    ADMIN = "ADMIN"
    INSTRUCTOR = "INSTRUCTOR"
    STUDENT = "STUDENT"
    GUEST = "GUEST"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class Capability(str, Enum):
    COURSE_CREATE = "COURSE_CREATE"
    COURSE_EDIT = "COURSE_EDIT"
    COURSE_DELETE = "COURSE_DELETE"
    COURSE_VIEW = "COURSE_VIEW"
    USER_CREATE = "USER_CREATE"
    USER_EDIT = "USER_EDIT"
    USER_DELETE = "USER_DELETE"
    USER_VIEW = "USER_VIEW"
    TOOL_ACCESS = "TOOL_ACCESS"
    TOOL_RESULTS_VIEW = "TOOL_RESULTS_VIEW"
    ADMIN_PANEL_ACCESS = "ADMIN_PANEL_ACCESS"
    SYSTEM_SETTINGS = "SYSTEM_SETTINGS"
    CALENDAR_VIEW = "CALENDAR_VIEW"
    CALENDAR_MANAGE = "CALENDAR_MANAGE"


CAPABILITY_DESCRIPTIONS: Dict[Capability, str] = {
    Capability.COURSE_CREATE: "Create new courses",
    Capability.COURSE_EDIT: "Edit existing courses",
    Capability.COURSE_DELETE: "Delete courses",
    Capability.COURSE_VIEW: "View courses",
    Capability.USER_CREATE: "Create new users",
    Capability.USER_EDIT: "Edit user accounts",
    Capability.USER_DELETE: "Delete user accounts",
    Capability.USER_VIEW: "View user accounts",
    Capability.TOOL_ACCESS: "Access learning tools",
    Capability.TOOL_RESULTS_VIEW: "View tool results",
    Capability.ADMIN_PANEL_ACCESS: "Access the admin panel",
    Capability.SYSTEM_SETTINGS: "Change system settings",
    Capability.CALENDAR_VIEW: "View calendar events",
    Capability.CALENDAR_MANAGE: "Create and manage calendar events",
}


DEFAULT_ROLE_PERMISSIONS: Dict[Role, FrozenSet[Capability]] = {
    Role.ADMIN: frozenset({
        Capability.COURSE_CREATE,
        Capability.COURSE_EDIT,
        Capability.COURSE_DELETE,
        Capability.COURSE_VIEW,
        Capability.USER_CREATE,
        Capability.USER_EDIT,
        Capability.USER_DELETE,
        Capability.USER_VIEW,
        Capability.TOOL_ACCESS,
        Capability.TOOL_RESULTS_VIEW,
        Capability.ADMIN_PANEL_ACCESS,
        Capability.SYSTEM_SETTINGS,
        Capability.CALENDAR_VIEW,
        Capability.CALENDAR_MANAGE,
    }),
    Role.INSTRUCTOR: frozenset({
        Capability.COURSE_CREATE,
        Capability.COURSE_EDIT,
        Capability.COURSE_VIEW,
        Capability.USER_VIEW,
        Capability.TOOL_ACCESS,
        Capability.TOOL_RESULTS_VIEW,
        Capability.CALENDAR_VIEW,
        Capability.CALENDAR_MANAGE,
    }),
    Role.STUDENT: frozenset({
        Capability.COURSE_VIEW,
        Capability.TOOL_ACCESS,
        Capability.CALENDAR_VIEW,
    }),
    Role.GUEST: frozenset({
        Capability.COURSE_VIEW,
    }),
}


# Route prefix -> capabilities required to enter it
ROUTE_PERMISSIONS: Dict[str, List[Capability]] = {
    "/admin": [Capability.ADMIN_PANEL_ACCESS],
    "/admin/users": [Capability.USER_VIEW, Capability.ADMIN_PANEL_ACCESS],
    "/admin/courses": [Capability.COURSE_VIEW, Capability.ADMIN_PANEL_ACCESS],
    "/admin/tools": [Capability.ADMIN_PANEL_ACCESS],
    "/instructor": [Capability.COURSE_CREATE, Capability.COURSE_EDIT],
    "/instructor/courses": [Capability.COURSE_CREATE, Capability.COURSE_EDIT],
    "/tools": [Capability.TOOL_ACCESS],
}


def parse_capability(name: str) -> Capability:
    """Resolve a capability name, rejecting anything outside the closed set"""
    try:
        return Capability(name)
    except ValueError:
        raise ValidationException(
            message="Unknown capability",
            details={"capability": name, "valid_capabilities": [c.value for c in Capability]},
        )


def parse_role(name: str) -> Role:
    try:
        return Role(name)
    except ValueError:
        raise ValidationException(
            message="Unknown role",
            details={"role": name, "valid_roles": [r.value for r in Role]},
        )


class Grant(BaseModel):
    """A (capability, granted, expiry) row for one principal"""

    capability: Capability
    granted: bool = True
    expires_at: Optional[datetime] = None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """A grant past its expiry counts as absent"""
        if self.expires_at is None:
            return True
        return self.expires_at > (now or datetime.utcnow())


class CourseGrant(BaseModel):
    course_id: uuid.UUID
    can_view: bool = True
    can_edit: bool = False


class ToolGrant(BaseModel):
    tool_name: str
    can_access: bool = True
    expires_at: Optional[datetime] = None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return self.expires_at > (now or datetime.utcnow())


class PermissionSet(BaseModel):
    """Everything the permission model needs to know about one principal"""

    user_id: uuid.UUID
    role: Role
    is_super_user: bool = False
    grants: List[Grant] = Field(default_factory=list)
    course_access: List[CourseGrant] = Field(default_factory=list)
    tool_access: List[ToolGrant] = Field(default_factory=list)

    def active_grant(
        self, capability: Capability, now: Optional[datetime] = None
    ) -> Optional[Grant]:
        for grant in self.grants:
            if grant.capability == capability and grant.is_active(now):
                return grant
        return None

    def capabilities(self, now: Optional[datetime] = None) -> List[Capability]:
        """Effective capabilities, sorted by name"""
        return sorted(
            (c for c in Capability if PermissionManager.is_capable(self, c, now)),
            key=lambda c: c.value,
        )


class PermissionManager:
    """
    Single evaluator for every authorization decision.

    Checks return booleans; only malformed input (an unknown capability name)
    raises.
    """

    @staticmethod
    def _coerce(capability) -> Capability:
        if isinstance(capability, Capability):
            return capability
        return parse_capability(capability)

    @staticmethod
    def has_permission(
        permissions: PermissionSet,
        capability,
        now: Optional[datetime] = None,
    ) -> bool:
        """True iff a non-expired explicit grant with granted=True exists"""
        capability = PermissionManager._coerce(capability)
        grant = permissions.active_grant(capability, now)
        return grant is not None and grant.granted

    @staticmethod
    def has_role_permission(role: Role, capability) -> bool:
        capability = PermissionManager._coerce(capability)
        return capability in DEFAULT_ROLE_PERMISSIONS.get(role, frozenset())

    @staticmethod
    def is_capable(
        permissions: PermissionSet,
        capability,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Effective check: an active explicit grant decides (including an
        explicit denial); otherwise the role default applies.
        """
        capability = PermissionManager._coerce(capability)
        grant = permissions.active_grant(capability, now)
        if grant is not None:
            return grant.granted
        return PermissionManager.has_role_permission(permissions.role, capability)

    @staticmethod
    def can_access_admin_panel(permissions: PermissionSet, now: Optional[datetime] = None) -> bool:
        if permissions.role == Role.ADMIN:
            return True
        return PermissionManager.has_permission(permissions, Capability.ADMIN_PANEL_ACCESS, now)

    @staticmethod
    def can_access_course(
        permissions: PermissionSet,
        course_id: uuid.UUID,
        mode: str = "view",
        author_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        if mode not in ("view", "edit"):
            raise ValidationException(
                message="Invalid course access mode",
                details={"mode": mode, "valid_modes": ["view", "edit"]},
            )

        # Admin and course author bypass
        if permissions.role == Role.ADMIN:
            return True
        if author_id is not None and author_id == permissions.user_id:
            return True

        for access in permissions.course_access:
            if access.course_id == course_id:
                if mode == "edit":
                    return access.can_edit
                return access.can_view or access.can_edit

        if mode == "view":
            return PermissionManager.is_capable(permissions, Capability.COURSE_VIEW, now)
        return PermissionManager.is_capable(permissions, Capability.COURSE_EDIT, now)

    @staticmethod
    def can_access_tool(
        permissions: PermissionSet,
        tool_name: str,
        now: Optional[datetime] = None,
    ) -> bool:
        if permissions.role == Role.ADMIN:
            return True

        for access in permissions.tool_access:
            if access.tool_name == tool_name and access.is_active(now):
                return access.can_access

        return PermissionManager.is_capable(permissions, Capability.TOOL_ACCESS, now)

    @staticmethod
    def can_view_tool_results(permissions: PermissionSet, now: Optional[datetime] = None) -> bool:
        return PermissionManager.is_capable(permissions, Capability.TOOL_RESULTS_VIEW, now)

    @staticmethod
    def can_manage_users(permissions: PermissionSet, now: Optional[datetime] = None) -> bool:
        if not PermissionManager.can_access_admin_panel(permissions, now):
            return False
        return any(
            PermissionManager.is_capable(permissions, capability, now)
            for capability in (Capability.USER_EDIT, Capability.USER_DELETE, Capability.USER_CREATE)
        )

    @staticmethod
    def can_view_calendar(permissions: PermissionSet, now: Optional[datetime] = None) -> bool:
        return PermissionManager.is_capable(
            permissions, Capability.CALENDAR_VIEW, now
        ) or PermissionManager.is_capable(permissions, Capability.CALENDAR_MANAGE, now)

    @staticmethod
    def can_manage_calendar(permissions: PermissionSet, now: Optional[datetime] = None) -> bool:
        return PermissionManager.is_capable(permissions, Capability.CALENDAR_MANAGE, now)

    @staticmethod
    def get_role_permissions(role: Role) -> List[Capability]:
        return sorted(DEFAULT_ROLE_PERMISSIONS.get(role, frozenset()), key=lambda c: c.value)


def get_required_permissions(route: str) -> List[Capability]:
    """Capabilities for the most specific matching route prefix"""
    for prefix in sorted(ROUTE_PERMISSIONS, key=len, reverse=True):
        if route.startswith(prefix):
            return ROUTE_PERMISSIONS[prefix]
    return []


# ============================================
# User management policy
# ============================================

class PrincipalRef(BaseModel):
    """Identity facts the user management policy needs"""

    id: uuid.UUID
    role: Role
    is_super_user: bool = False


def ensure_can_modify_user(
    actor: PrincipalRef,
    target: PrincipalRef,
    new_role: Optional[Role] = None,
    deactivate: bool = False,
) -> None:
    """
    Raise unless ``actor`` may apply a change (optionally a role change or a
    deactivation) to ``target``. Grants do not matter here; callers check
    those first.
    """
    if deactivate and actor.id == target.id:
        logger.warning(f"User {actor.id} denied deactivating own account")
        raise AuthorizationException(
            message="Cannot deactivate your own account",
            details={"user_id": str(target.id)},
        )

    if target.is_super_user and not actor.is_super_user:
        logger.warning(f"User {actor.id} denied modifying super user {target.id}")
        raise AuthorizationException(
            message="Cannot modify super user account",
            details={"user_id": str(target.id)},
        )

    if new_role is not None and new_role != target.role:
        if actor.id == target.id:
            logger.warning(f"User {actor.id} denied changing own role to {new_role.value}")
            raise AuthorizationException(
                message="Cannot change your own role",
                details={"user_id": str(target.id)},
            )
        if target.is_super_user and new_role != Role.ADMIN:
            raise ValidationException(
                message="Super user must remain an admin",
                details={"user_id": str(target.id), "role": new_role.value},
            )


def ensure_can_delete_user(actor: PrincipalRef, target: PrincipalRef) -> None:
    """Raise unless ``actor`` may soft-delete ``target``"""
    if actor.id == target.id:
        logger.warning(f"User {actor.id} denied deleting own account")
        raise AuthorizationException(
            message="Cannot delete your own account",
            details={"user_id": str(target.id)},
        )

    if target.is_super_user:
        logger.warning(f"User {actor.id} denied deleting super user {target.id}")
        raise AuthorizationException(
            message="Super user account cannot be deleted",
            details={"user_id": str(target.id)},
        )

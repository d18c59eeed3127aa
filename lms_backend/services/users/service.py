"""
User Management Service
Admin operations on user accounts and their grants

Every mutation is gated by the permission model, checked against the
self-modification and super-user policy guards, and audited.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from lms_backend.core.exceptions import AuthorizationException, NotFoundException, ValidationException
from lms_backend.core.logging import get_logger
from lms_backend.core.permissions import (
    CAPABILITY_DESCRIPTIONS,
    DEFAULT_ROLE_PERMISSIONS,
    Capability,
    PermissionManager,
    PermissionSet,
    PrincipalRef,
    Role,
    UserStatus,
    ensure_can_delete_user,
    ensure_can_modify_user,
    parse_capability,
)
from lms_backend.core.sessions import SessionStore, load_permissions
from lms_backend.db.models import Course, CourseAccess, PermissionGrant, ToolAccess, User
from lms_backend.services.audit import AuditSink
from lms_backend.services.users.models import (
    CapabilityInfo,
    CourseAccessItem,
    GrantDetails,
    ToolAccessItem,
    UserChanges,
    UserDetails,
    UserPermissions,
)

logger = get_logger(__name__)

ENTITY_TYPE = "USER"
MAX_PAGE_SIZE = 100


def _ref(permissions: PermissionSet) -> PrincipalRef:
    return PrincipalRef(
        id=permissions.user_id,
        role=permissions.role,
        is_super_user=permissions.is_super_user,
    )


def _target_ref(user: User) -> PrincipalRef:
    return PrincipalRef(id=user.id, role=Role(user.role), is_super_user=user.is_super_user)


class UserService:
    """
    Admin user management

    Example:
        ```python
        service = UserService(db, audit=audit_sink, sessions=session_store)
        await service.grant_permissions(actor, user_id, ["COURSE_EDIT"])
        ```
    """

    def __init__(
        self,
        db: AsyncSession,
        audit: Optional[AuditSink] = None,
        sessions: Optional[SessionStore] = None,
    ):
        self.db = db
        self.audit = audit
        self.sessions = sessions

    # ========================================================================
    # Guards
    # ========================================================================

    def _require_admin_capability(self, actor: PermissionSet, capability: Capability) -> None:
        if not PermissionManager.can_access_admin_panel(actor):
            logger.warning(f"User {actor.user_id} denied admin panel: missing ADMIN_PANEL_ACCESS")
            raise AuthorizationException(message="Admin panel access required")
        if not PermissionManager.is_capable(actor, capability):
            logger.warning(f"User {actor.user_id} denied: missing {capability.value}")
            raise AuthorizationException(
                message="Insufficient permissions",
                details={"required": capability.value},
            )

    def _require_user_manager(self, actor: PermissionSet) -> None:
        if not PermissionManager.can_manage_users(actor):
            logger.warning(f"User {actor.user_id} denied user management")
            raise AuthorizationException(message="Insufficient permissions to manage users")

    async def _get_user(self, user_id: uuid.UUID) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundException("User", details={"user_id": str(user_id)})
        return user

    async def _audit(self, actor: PermissionSet, action: str, user_id: uuid.UUID, metadata: dict) -> None:
        if self.audit is not None:
            await self.audit.record(actor.user_id, action, ENTITY_TYPE, str(user_id), metadata)

    # ========================================================================
    # Users
    # ========================================================================

    async def get_user(self, actor: PermissionSet, user_id: uuid.UUID) -> UserDetails:
        self._require_admin_capability(actor, Capability.USER_VIEW)
        return UserDetails.model_validate(await self._get_user(user_id))

    async def list_users(
        self,
        actor: PermissionSet,
        limit: int = 20,
        offset: int = 0,
        role: Optional[Role] = None,
        status: Optional[UserStatus] = None,
        search: Optional[str] = None,
    ) -> Tuple[int, List[UserDetails]]:
        """
        List users, newest first

        Returns:
            (total matching, page of users)
        """
        self._require_admin_capability(actor, Capability.USER_VIEW)

        if limit < 1 or offset < 0:
            raise ValidationException(
                message="Invalid pagination parameter",
                details={"limit": limit, "offset": offset},
            )
        limit = min(limit, MAX_PAGE_SIZE)

        stmt = select(User)
        if role is not None:
            stmt = stmt.where(User.role == role.value)
        if status is not None:
            stmt = stmt.where(User.status == status.value)
        if search:
            needle = search.strip().lower()
            stmt = stmt.where(
                or_(
                    func.lower(User.email).contains(needle, autoescape=True),
                    func.lower(User.name).contains(needle, autoescape=True),
                )
            )

        total = (await self.db.execute(select(func.count()).select_from(stmt.subquery()))).scalar()
        result = await self.db.execute(
            stmt.order_by(User.created_at.desc(), User.id).offset(offset).limit(limit)
        )
        return total, [UserDetails.model_validate(u) for u in result.scalars().all()]

    async def update_user(
        self, actor: PermissionSet, user_id: uuid.UUID, changes: UserChanges
    ) -> UserDetails:
        """
        Update name, role, status or active flag

        Raises:
            AuthorizationException: Missing USER_EDIT, self role change,
                self deactivation, or a non-super-user touching a super-user
            ValidationException: Moving a super-user off ADMIN
        """
        self._require_admin_capability(actor, Capability.USER_EDIT)

        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        if not fields:
            raise ValidationException(message="No changes supplied")

        user = await self._get_user(user_id)
        deactivate = fields.get("is_active") is False or (
            "status" in fields and fields["status"] != UserStatus.ACTIVE
        )
        ensure_can_modify_user(
            _ref(actor),
            _target_ref(user),
            new_role=fields.get("role"),
            deactivate=deactivate,
        )

        previous = {"role": user.role, "status": user.status, "is_active": user.is_active}
        for key, value in fields.items():
            setattr(user, key, value.value if isinstance(value, Enum) else value)
        await self.db.commit()

        if deactivate and self.sessions is not None:
            await self.sessions.delete_for_user(user.id)

        logger.info(f"User {actor.user_id} updated user {user_id}: {sorted(fields)}")
        await self._audit(
            actor,
            "UPDATE_USER",
            user_id,
            {"changes": changes.model_dump(mode="json", exclude_unset=True), "previous": previous},
        )
        return UserDetails.model_validate(user)

    async def delete_user(self, actor: PermissionSet, user_id: uuid.UUID) -> UserDetails:
        """Soft delete: the row stays, the account is deactivated"""
        self._require_admin_capability(actor, Capability.USER_DELETE)

        user = await self._get_user(user_id)
        ensure_can_delete_user(_ref(actor), _target_ref(user))

        user.is_active = False
        user.status = UserStatus.INACTIVE.value
        await self.db.commit()

        if self.sessions is not None:
            await self.sessions.delete_for_user(user.id)

        logger.info(f"User {actor.user_id} deactivated user {user_id}")
        await self._audit(actor, "DELETE_USER", user_id, {"email": user.email, "soft_delete": True})
        return UserDetails.model_validate(user)

    # ========================================================================
    # Grants
    # ========================================================================

    def list_capabilities(self, actor: PermissionSet) -> List[CapabilityInfo]:
        """Every capability that can be granted, with its description and default roles"""
        self._require_admin_capability(actor, Capability.USER_VIEW)
        return [
            CapabilityInfo(
                capability=capability,
                description=CAPABILITY_DESCRIPTIONS[capability],
                default_roles=[
                    role for role in Role if capability in DEFAULT_ROLE_PERMISSIONS.get(role, frozenset())
                ],
            )
            for capability in Capability
        ]

    async def get_permissions(self, actor: PermissionSet, user_id: uuid.UUID) -> UserPermissions:
        self._require_user_manager(actor)
        user = await self._get_user(user_id)

        grants = await self.db.execute(
            select(PermissionGrant)
            .where(PermissionGrant.user_id == user_id)
            .order_by(PermissionGrant.capability)
        )
        courses = await self.db.execute(select(CourseAccess).where(CourseAccess.user_id == user_id))
        tools = await self.db.execute(
            select(ToolAccess).where(ToolAccess.user_id == user_id).order_by(ToolAccess.tool_name)
        )
        effective = await load_permissions(self.db, user)

        return UserPermissions(
            user_id=user.id,
            role=Role(user.role),
            grants=[GrantDetails.model_validate(g) for g in grants.scalars().all()],
            course_access=[CourseAccessItem.model_validate(c) for c in courses.scalars().all()],
            tool_access=[ToolAccessItem.model_validate(t) for t in tools.scalars().all()],
            effective_capabilities=effective.capabilities(),
        )

    async def _set_grants(
        self,
        actor: PermissionSet,
        user_id: uuid.UUID,
        capabilities: Iterable[str],
        granted: bool,
        expires_at: Optional[datetime],
    ) -> List[Capability]:
        parsed = list(dict.fromkeys(parse_capability(c) for c in capabilities))
        if not parsed:
            raise ValidationException(message="No capabilities supplied")

        user = await self._get_user(user_id)
        if user.is_super_user and not actor.is_super_user:
            logger.warning(f"User {actor.user_id} denied changing grants of super user {user_id}")
            raise AuthorizationException(
                message="Cannot modify super user account",
                details={"user_id": str(user_id)},
            )

        result = await self.db.execute(
            select(PermissionGrant).where(
                PermissionGrant.user_id == user_id,
                PermissionGrant.capability.in_([c.value for c in parsed]),
            )
        )
        existing = {g.capability: g for g in result.scalars().all()}
        now = datetime.utcnow()

        try:
            for capability in parsed:
                grant = existing.get(capability.value)
                if grant is None:
                    # A revoke without a row records an explicit denial
                    grant = PermissionGrant(user_id=user_id, capability=capability.value)
                    self.db.add(grant)
                grant.granted = granted
                # A denial is permanent until re-granted
                grant.expires_at = expires_at if granted else None
                grant.granted_by = actor.user_id
                grant.granted_at = now
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return parsed

    async def grant_permissions(
        self,
        actor: PermissionSet,
        user_id: uuid.UUID,
        capabilities: Sequence[str],
        expires_at: Optional[datetime] = None,
    ) -> UserPermissions:
        """Grant capabilities; re-granting updates the existing row"""
        self._require_user_manager(actor)
        parsed = await self._set_grants(actor, user_id, capabilities, True, expires_at)

        logger.info(f"User {actor.user_id} granted {[c.value for c in parsed]} to {user_id}")
        await self._audit(
            actor,
            "GRANT_PERMISSIONS",
            user_id,
            {
                "capabilities": [c.value for c in parsed],
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
        )
        return await self.get_permissions(actor, user_id)

    async def revoke_permissions(
        self, actor: PermissionSet, user_id: uuid.UUID, capabilities: Sequence[str]
    ) -> UserPermissions:
        """Revoke capabilities by flipping their grant rows to granted=False"""
        self._require_user_manager(actor)
        parsed = await self._set_grants(actor, user_id, capabilities, False, None)

        logger.info(f"User {actor.user_id} revoked {[c.value for c in parsed]} from {user_id}")
        await self._audit(
            actor, "REVOKE_PERMISSIONS", user_id, {"capabilities": [c.value for c in parsed]}
        )
        return await self.get_permissions(actor, user_id)

    async def set_course_access(
        self, actor: PermissionSet, user_id: uuid.UUID, items: Sequence[CourseAccessItem]
    ) -> UserPermissions:
        """Replace a user's per-course grants"""
        self._require_user_manager(actor)
        await self._get_user(user_id)

        course_ids = list(dict.fromkeys(item.course_id for item in items))
        if len(course_ids) != len(items):
            raise ValidationException(message="Duplicate course in request")
        if course_ids:
            result = await self.db.execute(select(Course.id).where(Course.id.in_(course_ids)))
            missing = set(course_ids) - set(result.scalars().all())
            if missing:
                raise NotFoundException(
                    "Course", details={"course_ids": sorted(str(c) for c in missing)}
                )

        try:
            await self.db.execute(delete(CourseAccess).where(CourseAccess.user_id == user_id))
            self.db.add_all(
                CourseAccess(
                    user_id=user_id,
                    course_id=item.course_id,
                    can_view=item.can_view or item.can_edit,
                    can_edit=item.can_edit,
                    granted_by=actor.user_id,
                )
                for item in items
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self._audit(
            actor,
            "UPDATE_COURSE_ACCESS",
            user_id,
            {"courses": [item.model_dump(mode="json") for item in items]},
        )
        return await self.get_permissions(actor, user_id)

    async def set_tool_access(
        self, actor: PermissionSet, user_id: uuid.UUID, items: Sequence[ToolAccessItem]
    ) -> UserPermissions:
        """Replace a user's per-tool grants"""
        self._require_user_manager(actor)
        await self._get_user(user_id)

        if len({item.tool_name for item in items}) != len(items):
            raise ValidationException(message="Duplicate tool in request")

        try:
            await self.db.execute(delete(ToolAccess).where(ToolAccess.user_id == user_id))
            self.db.add_all(
                ToolAccess(
                    user_id=user_id,
                    tool_name=item.tool_name,
                    can_access=item.can_access,
                    expires_at=item.expires_at,
                    granted_by=actor.user_id,
                )
                for item in items
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self._audit(
            actor,
            "UPDATE_TOOL_ACCESS",
            user_id,
            {"tools": [item.model_dump(mode="json") for item in items]},
        )
        return await self.get_permissions(actor, user_id)

"""
Session / Identity Resolution
Resolves an opaque session token to a principal and its permission set
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_backend.core.config import settings
from lms_backend.core.exceptions import AuthenticationException
from lms_backend.core.logging import get_logger
from lms_backend.core.permissions import (
    CourseGrant,
    Grant,
    PermissionSet,
    Role,
    ToolGrant,
    UserStatus,
)
from lms_backend.core.security import (
    create_signed_session_token,
    decode_signed_session_token,
    generate_session_token,
    looks_like_signed_token,
    session_expiry,
    verify_password,
)
from lms_backend.db.models import (
    CourseAccess,
    PermissionGrant,
    ToolAccess,
    User,
    UserSession,
)

logger = get_logger(__name__)

# Callers must not be able to tell an expired token from a missing one
UNAUTHENTICATED_MESSAGE = "Authentication required"


class SessionRecord(BaseModel):
    token: str
    user_id: uuid.UUID
    expires_at: datetime


class SessionUser(BaseModel):
    id: uuid.UUID
    email: str
    name: Optional[str] = None
    role: Role
    status: UserStatus
    is_active: bool
    is_super_user: bool

    @classmethod
    def from_user_model(cls, user: User) -> "SessionUser":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=Role(user.role),
            status=UserStatus(user.status),
            is_active=user.is_active,
            is_super_user=user.is_super_user,
        )


class AuthSession(BaseModel):
    user: SessionUser
    permissions: PermissionSet
    expires_at: datetime


class SessionStore(ABC):
    """Storage for login sessions"""

    @abstractmethod
    async def create(self, user_id: uuid.UUID, expires_at: datetime) -> str:
        """Persist a new session and return its token"""

    @abstractmethod
    async def get(self, token: str) -> Optional[SessionRecord]:
        """Return the stored session, expired or not, or None"""

    @abstractmethod
    async def delete(self, token: str) -> None:
        """Remove a session; removing an unknown token is not an error"""

    @abstractmethod
    async def delete_for_user(self, user_id: uuid.UUID) -> int:
        """Remove every session of one user"""

    @abstractmethod
    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Remove expired sessions, returning how many were removed"""


class DatabaseSessionStore(SessionStore):
    """Session store backed by the ``sessions`` table"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, user_id: uuid.UUID, expires_at: datetime) -> str:
        token = generate_session_token()
        self.db.add(UserSession(token=token, user_id=user_id, expires_at=expires_at))
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        return token

    async def get(self, token: str) -> Optional[SessionRecord]:
        result = await self.db.execute(select(UserSession).where(UserSession.token == token))
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return SessionRecord(token=row.token, user_id=row.user_id, expires_at=row.expires_at)

    async def delete(self, token: str) -> None:
        await self.db.execute(delete(UserSession).where(UserSession.token == token))
        await self.db.commit()

    async def delete_for_user(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(delete(UserSession).where(UserSession.user_id == user_id))
        await self.db.commit()
        return result.rowcount or 0

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        result = await self.db.execute(delete(UserSession).where(UserSession.expires_at <= now))
        await self.db.commit()
        count = result.rowcount or 0
        if count:
            logger.info(f"Purged {count} expired sessions")
        return count


class SessionResolver:
    """
    Resolve tokens to principals.

    Every failure raises the same AuthenticationException; the specific
    reason only reaches the log.
    """

    def __init__(self, db: AsyncSession, store: SessionStore):
        self.db = db
        self.store = store

    def _reject(self, reason: str, token: Optional[str] = None) -> AuthenticationException:
        hint = f" (token {token[:6]}...)" if token else ""
        logger.info(f"Session rejected: {reason}{hint}")
        return AuthenticationException(message=UNAUTHENTICATED_MESSAGE)

    async def resolve(self, token: Optional[str], now: Optional[datetime] = None) -> AuthSession:
        now = now or datetime.utcnow()

        if not token:
            raise self._reject("missing")

        record = await self.store.get(token)

        if record is None:
            record = self._resolve_signed(token, now)
        elif record.expires_at <= now:
            await self.store.delete(token)
            raise self._reject("expired", token)

        result = await self.db.execute(select(User).where(User.id == record.user_id))
        user = result.scalar_one_or_none()

        if user is None:
            raise self._reject("principal_not_found", token)

        if not user.is_active or user.status != UserStatus.ACTIVE.value:
            await self.store.delete(token)
            raise self._reject("principal_inactive", token)

        permissions = await self.load_permissions(user, now)

        return AuthSession(
            user=SessionUser.from_user_model(user),
            permissions=permissions,
            expires_at=record.expires_at,
        )

    def _resolve_signed(self, token: str, now: datetime) -> SessionRecord:
        if not settings.SESSION_SIGNED_FALLBACK_ENABLED or not looks_like_signed_token(token):
            raise self._reject("unknown_token", token)

        try:
            payload = decode_signed_session_token(token)
        except AuthenticationException as e:
            raise self._reject(f"signed_token_invalid: {e.details.get('error', e.message)}", token)

        try:
            user_id = uuid.UUID(payload["sub"])
        except (KeyError, ValueError):
            raise self._reject("signed_token_malformed", token)

        expires_at = datetime.utcfromtimestamp(payload["exp"])
        if expires_at <= now:
            raise self._reject("expired", token)

        return SessionRecord(token=token, user_id=user_id, expires_at=expires_at)

    async def load_permissions(self, user: User, now: Optional[datetime] = None) -> PermissionSet:
        return await load_permissions(self.db, user, now)

    async def login(
        self, email: str, password: str, now: Optional[datetime] = None
    ) -> Tuple[str, AuthSession]:
        """
        Verify credentials and open a session

        When the session store cannot persist the session and
        SESSION_SIGNED_FALLBACK_ENABLED is set, a signed token is issued instead.

        Returns:
            (session token, resolved session)

        Raises:
            AuthenticationException: Bad credentials or a disabled account
        """
        now = now or datetime.utcnow()
        email = email.strip().lower()

        result = await self.db.execute(select(User).where(func.lower(User.email) == email))
        user = result.scalar_one_or_none()

        if user is None or not user.hashed_password or not verify_password(password, user.hashed_password):
            logger.info(f"Login failed for {email}: bad credentials")
            raise AuthenticationException(message="Invalid email or password")

        if not user.is_active or user.status != UserStatus.ACTIVE.value:
            logger.info(f"Login refused for {email}: account {user.status.lower()}")
            raise AuthenticationException(message="Account is disabled")

        user.last_login_at = now
        expires_at = session_expiry(now)
        session_user = SessionUser.from_user_model(user)
        permissions = await self.load_permissions(user, now)

        try:
            token = await self.store.create(user.id, expires_at)
        except Exception as e:
            if not settings.SESSION_SIGNED_FALLBACK_ENABLED:
                raise
            logger.warning(f"Session store unavailable, issuing signed token for {user.id}: {e}")
            token = create_signed_session_token(str(session_user.id), expires_at - now)

        logger.info(f"User logged in: {session_user.id}")
        return token, AuthSession(
            user=session_user,
            permissions=permissions,
            expires_at=expires_at,
        )

    async def logout(self, token: Optional[str]) -> None:
        """
        End a session; unknown or repeated tokens are fine

        Signed fallback tokens are never stored, so logging out with one is a
        no-op: it stays valid until its own expiry unless the account is
        deactivated.
        """
        if token:
            await self.store.delete(token)


async def load_permissions(
    db: AsyncSession, user: User, now: Optional[datetime] = None
) -> PermissionSet:
    """
    Build a user's permission set from the grant tables

    Expired grants are left out; explicit denials are kept so they can
    override role defaults.
    """
    now = now or datetime.utcnow()

    grants_result = await db.execute(
        select(PermissionGrant).where(
            PermissionGrant.user_id == user.id,
            or_(PermissionGrant.expires_at.is_(None), PermissionGrant.expires_at > now),
        )
    )
    course_result = await db.execute(
        select(CourseAccess).where(CourseAccess.user_id == user.id)
    )
    tool_result = await db.execute(
        select(ToolAccess).where(
            ToolAccess.user_id == user.id,
            or_(ToolAccess.expires_at.is_(None), ToolAccess.expires_at > now),
        )
    )

    return PermissionSet(
        user_id=user.id,
        role=Role(user.role),
        is_super_user=user.is_super_user,
        grants=[
            Grant(capability=g.capability, granted=g.granted, expires_at=g.expires_at)
            for g in grants_result.scalars().all()
        ],
        course_access=[
            CourseGrant(course_id=c.course_id, can_view=c.can_view, can_edit=c.can_edit)
            for c in course_result.scalars().all()
        ],
        tool_access=[
            ToolGrant(tool_name=t.tool_name, can_access=t.can_access, expires_at=t.expires_at)
            for t in tool_result.scalars().all()
        ],
    )

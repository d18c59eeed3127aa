"""
API Dependencies
Common dependencies for API routes
"""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from lms_backend.core.config import settings
from lms_backend.core.sessions import AuthSession, DatabaseSessionStore, SessionResolver, SessionStore
from lms_backend.db.session import get_db_session, get_session_maker
from lms_backend.services.audit import AuditSink, DatabaseAuditSink
from lms_backend.services.calendar import CalendarService
from lms_backend.services.calendar_sync import CalendarSyncService, get_sync_provider
from lms_backend.services.calendar_sync.service import ProviderFactory
from lms_backend.services.users import UserService
from lms_backend.services.video import VideoConferenceProvider, get_video_provider


def extract_session_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    """Bearer header first, then the session cookie"""
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
        if token:
            return token
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


async def get_session_store(db: AsyncSession = Depends(get_db_session)) -> SessionStore:
    return DatabaseSessionStore(db)


async def get_session_resolver(
    db: AsyncSession = Depends(get_db_session),
    store: SessionStore = Depends(get_session_store),
) -> SessionResolver:
    return SessionResolver(db, store)


async def get_current_session(
    request: Request,
    authorization: Optional[str] = Header(None),
    resolver: SessionResolver = Depends(get_session_resolver),
) -> AuthSession:
    """
    Dependency to resolve the caller's session

    Raises:
        AuthenticationException: Always with the same message, whatever the cause
    """
    return await resolver.resolve(extract_session_token(request, authorization))


def get_audit_sink() -> AuditSink:
    return DatabaseAuditSink(get_session_maker())


def get_video() -> Optional[VideoConferenceProvider]:
    return get_video_provider()


async def get_calendar_service(
    db: AsyncSession = Depends(get_db_session),
    video: Optional[VideoConferenceProvider] = Depends(get_video),
    audit: AuditSink = Depends(get_audit_sink),
) -> CalendarService:
    return CalendarService(db, video=video, audit=audit)


async def get_user_service(
    db: AsyncSession = Depends(get_db_session),
    audit: AuditSink = Depends(get_audit_sink),
    store: SessionStore = Depends(get_session_store),
) -> UserService:
    return UserService(db, audit=audit, sessions=store)


def get_sync_providers() -> ProviderFactory:
    return get_sync_provider


async def get_calendar_sync_service(
    db: AsyncSession = Depends(get_db_session),
    providers: ProviderFactory = Depends(get_sync_providers),
    audit: AuditSink = Depends(get_audit_sink),
) -> CalendarSyncService:
    return CalendarSyncService(db, providers=providers, audit=audit)

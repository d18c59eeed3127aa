"""
Pytest Configuration and Fixtures
Shared fixtures and configuration for all tests
"""

import asyncio
import os
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-the-lms-backend-suite")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from lms_backend.core.exceptions import VideoConferenceException
from lms_backend.core.permissions import PermissionSet, Role, UserStatus
from lms_backend.core.security import get_password_hash, session_expiry
from lms_backend.core.sessions import DatabaseSessionStore, load_permissions
from lms_backend.db.base import Base
from lms_backend.db import models  # noqa: F401
from lms_backend.db.models import Course, PermissionGrant, User
from lms_backend.services.audit import AuditSink
from lms_backend.services.calendar import SeriesLockManager
from lms_backend.services.video.base import MeetingDetails, VideoConferenceProvider

TEST_PASSWORD = "test_password_123"
_password_hash: Optional[str] = None


def hashed_test_password() -> str:
    """bcrypt is slow; hash the shared test password once"""
    global _password_hash
    if _password_hash is None:
        _password_hash = get_password_hash(TEST_PASSWORD)
    return _password_hash


# ============================================
# PYTEST CONFIGURATION
# ============================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (medium speed)"
    )


def pytest_collection_modifyitems(config, items):
    """Add default markers based on test file path"""
    for item in items:
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ============================================
# DATABASE
# ============================================

@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with the full schema"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncSession:
    async with session_maker() as session:
        yield session


# ============================================
# FACTORIES
# ============================================

@pytest.fixture
def make_user(db):
    """Create and commit a user"""

    async def _make_user(
        role: Role = Role.STUDENT,
        email: Optional[str] = None,
        name: Optional[str] = None,
        is_super_user: bool = False,
        is_active: bool = True,
        status: UserStatus = UserStatus.ACTIVE,
        with_password: bool = False,
    ) -> User:
        user = User(
            email=email or f"user_{uuid.uuid4().hex[:8]}@example.com",
            name=name or f"{role.value.title()} User",
            hashed_password=hashed_test_password() if with_password else None,
            role=role.value,
            status=status.value,
            is_active=is_active,
            is_super_user=is_super_user,
        )
        db.add(user)
        await db.commit()
        return user

    return _make_user


@pytest.fixture
def make_course(db):
    async def _make_course(instructor: User, title: str = "Algorithms") -> Course:
        course = Course(title=title, instructor_id=instructor.id, status="PUBLISHED")
        db.add(course)
        await db.commit()
        return course

    return _make_course


@pytest.fixture
def grant(db):
    """Insert an explicit capability grant (or denial)"""

    async def _grant(
        user: User,
        capability: str,
        granted: bool = True,
        expires_at: Optional[datetime] = None,
    ) -> PermissionGrant:
        row = PermissionGrant(
            user_id=user.id, capability=capability, granted=granted, expires_at=expires_at
        )
        db.add(row)
        await db.commit()
        return row

    return _grant


@pytest.fixture
def perms(db):
    """Load a user's permission set the way session resolution does"""

    async def _perms(user: User) -> PermissionSet:
        return await load_permissions(db, user)

    return _perms


# ============================================
# COMPANION SERVICES
# ============================================

class FakeVideoProvider(VideoConferenceProvider):
    """In-memory meeting provider; ``fail`` names operations that raise"""

    def __init__(self, fail: Optional[List[str]] = None, delay: float = 0.0):
        self.fail = set(fail or [])
        self.delay = delay
        self.created: List[Dict[str, Any]] = []
        self.updated: List[Dict[str, Any]] = []
        self.deleted: List[str] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    async def _maybe_fail(self, operation: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if operation in self.fail:
            raise VideoConferenceException(f"{operation} unavailable", provider=self.provider_name)

    async def create_meeting(self, start_time, end_time, title, description=None) -> MeetingDetails:
        await self._maybe_fail("create")
        meeting_id = str(90000 + len(self.created))
        self.created.append({"meeting_id": meeting_id, "title": title, "start_time": start_time})
        return MeetingDetails(
            meeting_id=meeting_id,
            join_url=f"https://zoom.example/j/{meeting_id}",
            start_url=f"https://zoom.example/s/{meeting_id}",
            password="secret",
        )

    async def update_meeting(self, meeting_id: str, fields: Dict[str, Any]) -> None:
        await self._maybe_fail("update")
        self.updated.append({"meeting_id": meeting_id, **fields})

    async def delete_meeting(self, meeting_id: str) -> None:
        await self._maybe_fail("delete")
        self.deleted.append(meeting_id)


@pytest.fixture
def video() -> FakeVideoProvider:
    return FakeVideoProvider()


@pytest.fixture
def failing_video():
    """Build a provider whose named operations raise"""

    def _failing_video(*operations: str, delay: float = 0.0) -> FakeVideoProvider:
        return FakeVideoProvider(fail=list(operations), delay=delay)

    return _failing_video


@pytest.fixture
def audit() -> AsyncMock:
    return AsyncMock(spec=AuditSink)


@pytest.fixture
def locks() -> SeriesLockManager:
    return SeriesLockManager()


# ============================================
# API
# ============================================

@pytest_asyncio.fixture
async def client(session_maker, audit, video) -> AsyncClient:
    """
    Test HTTP client using ASGI transport
    Database, audit sink and video provider are swapped for test doubles
    """
    from lms_backend.api.dependencies import get_audit_sink, get_video
    from lms_backend.db.session import get_db_session
    from lms_backend.main import app

    async def _get_db_session():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _get_db_session
    app.dependency_overrides[get_audit_sink] = lambda: audit
    app.dependency_overrides[get_video] = lambda: video

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(session_maker):
    """Open a session for a user directly in the store"""

    async def _auth_headers(user: User) -> Dict[str, str]:
        async with session_maker() as session:
            token = await DatabaseSessionStore(session).create(user.id, session_expiry())
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers

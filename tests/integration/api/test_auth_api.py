#!/usr/bin/env python3
"""
Integration Tests for Authentication API
Tests for lms_backend/api/v1/auth.py endpoints
"""

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

from lms_backend.core.sessions import DatabaseSessionStore

PASSWORD = "test_password_123"


@pytest.mark.integration
class TestRegistration:
    """Test user registration endpoint"""

    @pytest.mark.asyncio
    async def test_register_creates_student_and_logs_in(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "New.User@Example.com", "password": "SecurePassword123!", "name": "New"},
        )

        assert response.status_code == 201
        result = response.json()
        assert result["token"]
        assert result["token_type"] == "Bearer"
        assert result["user"]["email"] == "new.user@example.com"
        assert result["user"]["role"] == "STUDENT"
        assert "CALENDAR_VIEW" in result["capabilities"]
        assert result["can_access_admin_panel"] is False
        assert response.cookies.get("session-token") == result["token"]

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, client: AsyncClient, make_user):
        await make_user(email="taken@example.com")

        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "TAKEN@example.com", "password": "SecurePassword123!", "name": "Dup"},
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/auth/register",
            json={"email": "short@example.com", "password": "short", "name": "Short"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"


@pytest.mark.integration
class TestLogin:
    """Test login and logout endpoints"""

    @pytest.mark.asyncio
    async def test_login_success(self, client: AsyncClient, make_user):
        await make_user(email="ada@example.com", with_password=True)

        response = await client.post(
            "/api/v1/auth/login", json={"email": "ADA@example.com", "password": PASSWORD}
        )

        assert response.status_code == 200
        assert response.json()["user"]["email"] == "ada@example.com"

    @pytest.mark.asyncio
    async def test_wrong_password(self, client: AsyncClient, make_user):
        await make_user(email="ada@example.com", with_password=True)

        response = await client.post(
            "/api/v1/auth/login", json={"email": "ada@example.com", "password": "nope"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_disabled_account(self, client: AsyncClient, make_user):
        await make_user(email="ada@example.com", with_password=True, is_active=False)

        response = await client.post(
            "/api/v1/auth/login", json={"email": "ada@example.com", "password": PASSWORD}
        )

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Account is disabled"

    @pytest.mark.asyncio
    async def test_logout_ends_session(self, client: AsyncClient, make_user, auth_headers):
        user = await make_user()
        headers = await auth_headers(user)

        response = await client.post("/api/v1/auth/logout", headers=headers)
        assert response.status_code == 200

        response = await client.get("/api/v1/auth/session", headers=headers)
        assert response.status_code == 401

        response = await client.post("/api/v1/auth/logout", headers=headers)
        assert response.status_code == 200


@pytest.mark.integration
class TestSession:
    """Test session resolution endpoints"""

    @pytest.mark.asyncio
    async def test_session_with_bearer(self, client: AsyncClient, make_user, auth_headers):
        user = await make_user()
        response = await client.get("/api/v1/auth/session", headers=await auth_headers(user))

        assert response.status_code == 200
        result = response.json()
        assert result["user"]["id"] == str(user.id)
        assert result["capabilities"] == ["CALENDAR_VIEW", "COURSE_VIEW", "TOOL_ACCESS"]

    @pytest.mark.asyncio
    async def test_me_with_cookie(self, client: AsyncClient, make_user, session_maker):
        user = await make_user()
        async with session_maker() as session:
            token = await DatabaseSessionStore(session).create(
                user.id, datetime.utcnow() + timedelta(hours=1)
            )
        client.cookies.set("session-token", token)

        response = await client.get("/api/v1/auth/me")

        assert response.status_code == 200
        assert response.json()["email"] == user.email

    @pytest.mark.asyncio
    async def test_missing_and_expired_look_the_same(
        self, client: AsyncClient, make_user, session_maker
    ):
        user = await make_user()
        async with session_maker() as session:
            expired = await DatabaseSessionStore(session).create(
                user.id, datetime.utcnow() - timedelta(minutes=1)
            )

        missing = await client.get("/api/v1/auth/session")
        stale = await client.get(
            "/api/v1/auth/session", headers={"Authorization": f"Bearer {expired}"}
        )
        unknown = await client.get(
            "/api/v1/auth/session", headers={"Authorization": "Bearer not-a-token"}
        )

        assert {missing.status_code, stale.status_code, unknown.status_code} == {401}
        messages = {r.json()["error"]["message"] for r in (missing, stale, unknown)}
        assert messages == {"Authentication required"}

    @pytest.mark.asyncio
    async def test_suspended_user_rejected(self, client: AsyncClient, make_user, auth_headers, db):
        user = await make_user()
        headers = await auth_headers(user)
        user.status = "SUSPENDED"
        await db.commit()

        response = await client.get("/api/v1/auth/session", headers=headers)
        assert response.status_code == 401

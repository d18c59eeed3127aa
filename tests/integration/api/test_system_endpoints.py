#!/usr/bin/env python3
"""
Integration Tests for System Endpoints
Tests for root, health and error handling in lms_backend/main.py
"""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from lms_backend.core.config import settings


@pytest.mark.integration
class TestSystemEndpoints:
    """Test root and health endpoints"""

    @pytest.mark.asyncio
    async def test_root(self, client: AsyncClient):
        response = await client.get("/")

        assert response.status_code == 200
        result = response.json()
        assert result["name"] == settings.APP_NAME
        assert result["version"] == settings.APP_VERSION

    @pytest.mark.asyncio
    async def test_health_healthy(self, client: AsyncClient):
        with patch("lms_backend.main.check_database", AsyncMock(return_value=True)):
            response = await client.get("/health")

        assert response.status_code == 200
        result = response.json()
        assert result["status"] == "healthy"
        assert result["version"] == settings.APP_VERSION
        assert result["services"] == {"database": "healthy", "zoom": "disabled"}

    @pytest.mark.asyncio
    async def test_health_degraded(self, client: AsyncClient):
        with patch("lms_backend.main.check_database", AsyncMock(return_value=False)):
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["services"]["database"] == "unhealthy"


@pytest.mark.integration
class TestErrorShape:
    """Every error uses the same envelope"""

    @pytest.mark.asyncio
    async def test_unknown_route(self, client: AsyncClient):
        response = await client.get("/api/v1/nowhere")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_malformed_body(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/login", json={"email": "not-an-email"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["details"]["errors"]

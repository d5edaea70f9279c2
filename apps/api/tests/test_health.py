"""Tests for the health endpoint."""

import pytest
from httpx import AsyncClient

from app.core.config import settings


@pytest.mark.asyncio
async def test_health_reports_environment(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "env": "test", "version": settings.VERSION}


@pytest.mark.asyncio
async def test_health_is_public(client: AsyncClient):
    response = await client.get("/health", headers={"X-Requested-With": ""})
    assert response.status_code == 200

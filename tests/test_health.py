"""Tests for health endpoint."""

import pytest
from httpx import ASGITransport, AsyncClient

from catalog_sync.main import app


@pytest.fixture
async def client():
    """Create test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test health endpoint returns ok."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


@pytest.mark.asyncio
async def test_openapi_lists_admin_routes(client: AsyncClient):
    response = await client.get("/openapi.json")
    assert response.status_code == 200
    paths = response.json()["paths"]
    assert "/v1/admin/sync/{slug}" in paths
    assert "/v1/admin/records/{retail_vertical_id}/{natural_key}/lock" in paths

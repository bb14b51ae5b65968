"""Unit tests for health endpoints."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from campbook.main import create_app


@pytest_asyncio.fixture
async def app_client():
    """Client for the fully configured application, without lifespan."""
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_health_check(app_client):
    """Test the health check endpoint."""
    response = await app_client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "campbook-api"
    assert "version" in data


@pytest.mark.asyncio
async def test_ready_check(app_client):
    """Test the readiness check endpoint."""
    response = await app_client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["database"] == "ok"
    assert set(data["checks"]["workers"]) == {"hold_reaper", "completion_sweep", "refund_retry"}


@pytest.mark.asyncio
async def test_info_endpoint(app_client):
    """Test the service info endpoint."""
    response = await app_client.get("/info")
    assert response.status_code == 200
    data = response.json()
    assert data["currency"] == "eur"
    assert data["service_fee_percent"] == "10"
    assert data["endpoints"]["metrics"] == "/metrics"


@pytest.mark.asyncio
async def test_request_id_header(app_client):
    response = await app_client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["x-request-id"] == "req-123"

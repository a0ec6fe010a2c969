"""
Unit tests for health and metrics endpoints.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient, ASGITransport

from services.reading_indexer.app.main import app
from services.reading_indexer.app.routes import health


@pytest.fixture
def clean_state():
    """Reset route-visible app state after a test."""
    yield
    health.clear_health_checks()
    app.state.runner = None
    app.state.db_pool = None


@pytest.mark.asyncio
async def test_health_endpoint():
    """Test that health endpoint returns expected structure."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()

    assert "status" in data
    assert "service" in data
    assert "version" in data
    assert "environment" in data
    assert "timestamp" in data
    assert "components" in data

    assert data["service"] == "reading-indexer"


@pytest.mark.asyncio
async def test_health_reports_degraded_component(clean_state):
    """Test a degraded component degrades the overall status."""
    health.register_health_check("jobs", AsyncMock(return_value={"status": "degraded", "message": "Last run failed: x"}))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

    data = response.json()
    assert data["status"] == "degraded"
    assert data["components"]["jobs"]["message"] == "Last run failed: x"


@pytest.mark.asyncio
async def test_health_failing_check_is_unhealthy(clean_state):
    """Test a raising check marks its component unhealthy."""
    health.register_health_check("database", AsyncMock(side_effect=RuntimeError("pool gone")))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

    data = response.json()
    assert data["status"] == "unhealthy"
    assert data["components"]["database"]["message"] == "pool gone"


@pytest.mark.asyncio
async def test_liveness_endpoint():
    """Test that liveness probe returns ok."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health/live")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_readiness_before_startup():
    """Test that readiness fails until the job runner is started."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "starting"


@pytest.mark.asyncio
async def test_readiness_with_running_jobs(clean_state):
    """Test that readiness passes once job loops are running."""
    app.state.runner = MagicMock(is_running=True)
    app.state.db_pool = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


@pytest.mark.asyncio
async def test_readiness_with_unreachable_database(clean_state):
    """Test that readiness fails while the database is unreachable."""
    app.state.runner = MagicMock(is_running=True)
    app.state.db_pool = MagicMock(check_health=AsyncMock(return_value=False))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "unavailable"


@pytest.mark.asyncio
async def test_metrics_endpoint():
    """Test that metrics are exposed in Prometheus text format."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert "reading_indexer_service_info" in response.text


@pytest.mark.asyncio
async def test_root_endpoint():
    """Test that root endpoint returns service info."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/")

    assert response.status_code == 200
    data = response.json()

    assert data["service"] == "reading-indexer"
    assert "version" in data
    assert data["jobs"] == []
    assert "health" in data

"""
Health Check Endpoint

Provides service health status for container health checks and monitoring.
"""

from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional
from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel

from ..config import settings


router = APIRouter()


class ComponentHealth(BaseModel):
    """Health status of a component."""
    status: str  # "healthy", "degraded", "unhealthy"
    message: Optional[str] = None
    last_check: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str  # "healthy", "degraded", "unhealthy"
    service: str
    version: str
    environment: str
    timestamp: str
    components: dict[str, ComponentHealth]


HealthCheck = Callable[[], Awaitable[dict]]

# Component health checks, registered by the app at startup
_component_checks: dict[str, HealthCheck] = {}


def register_health_check(name: str, check_fn: HealthCheck) -> None:
    """Register a component health check function."""
    _component_checks[name] = check_fn


def clear_health_checks() -> None:
    """Drop all registered checks (app shutdown)."""
    _component_checks.clear()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Service health check endpoint.

    Returns overall health status and per-component breakdown.
    """
    now = datetime.now(timezone.utc).isoformat()
    components: dict[str, ComponentHealth] = {}

    overall_status = "healthy"

    for name, check_fn in _component_checks.items():
        try:
            result = await check_fn()
            components[name] = ComponentHealth(
                status=result.get("status", "healthy"),
                message=result.get("message"),
                last_check=now,
            )
            if result.get("status") == "unhealthy":
                overall_status = "unhealthy"
            elif result.get("status") == "degraded" and overall_status == "healthy":
                overall_status = "degraded"
        except Exception as e:
            components[name] = ComponentHealth(
                status="unhealthy",
                message=str(e),
                last_check=now,
            )
            overall_status = "unhealthy"

    return HealthResponse(
        status=overall_status,
        service=settings.service_name,
        version=settings.service_version,
        environment=settings.environment,
        timestamp=now,
        components=components,
    )


@router.get("/health/live")
async def liveness_check() -> dict:
    """
    Liveness probe.

    Simple check that the service is running.
    """
    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(request: Request, response: Response) -> dict:
    """
    Readiness probe.

    Ready once the job loops are running and, if a database is configured,
    the pool answers.
    """
    runner = getattr(request.app.state, "runner", None)
    if runner is None or not runner.is_running:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "starting", "reason": "job runner not started"}

    db_pool = getattr(request.app.state, "db_pool", None)
    if db_pool is not None and not await db_pool.check_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unavailable", "reason": "database unreachable"}

    return {"status": "ready"}

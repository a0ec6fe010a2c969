"""
Reading Indexer Service

Long-running service that schedules the aggregation, archive, persist and
cleanup jobs defined in the jobs file.

API Endpoints:
- GET /health - Service health check
- GET /health/live - Liveness probe
- GET /health/ready - Readiness probe
- GET /metrics - Prometheus metrics endpoint
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from .config import settings
from .jobs import JobFactory, JobFailure, JobsConfig, load_jobs
from .routes import health, metrics
from .runner import JobRunner
from ..core.errors import ConfigurationError
from ..persistence import DatabasePool

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global instances for app state
_db_pool: Optional[DatabasePool] = None
_runner: Optional[JobRunner] = None


async def _connect_database() -> Optional[DatabasePool]:
    """Connect the shared pool if a database is configured."""
    if not settings.database_url:
        logger.warning("No DATABASE_URL configured - persister jobs disabled")
        return None
    pool = DatabasePool()
    try:
        await pool.connect(settings.database_url)
    except Exception as e:
        logger.error(f"Failed to connect to database: {e}")
        return None
    logger.info("Database connection established")
    return pool


def _load_jobs_config() -> JobsConfig:
    try:
        return load_jobs(settings.jobs_file)
    except ConfigurationError as e:
        logger.error(f"No jobs loaded: {e}")
        return JobsConfig(failures=[JobFailure("*", str(settings.jobs_file), str(e))])


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown of:
    - Database connection pool
    - Job loops (one per enabled job)
    """
    global _db_pool, _runner

    logger.info(f"Starting {settings.service_name} v{settings.service_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Cache path: {settings.cache_path}")
    logger.info(f"Jobs file: {settings.jobs_file}")

    _db_pool = await _connect_database()

    jobs_config = _load_jobs_config()
    jobs, failures = JobFactory(settings, jobs_config, _db_pool).build_all()
    if failures:
        logger.warning(f"{len(failures)} jobs rejected: {', '.join(f.name for f in failures)}")

    _runner = JobRunner(jobs)
    _runner.start()

    health.register_health_check("jobs", _runner.health)
    if _db_pool is not None:
        health.register_health_check("database", _database_health)

    # Store references on app.state for route access
    app.state.db_pool = _db_pool
    app.state.runner = _runner
    app.state.job_failures = failures

    logger.info("Service startup complete")

    yield

    # Shutdown
    logger.info("Shutting down service...")

    if _runner:
        await _runner.stop()
        _runner = None

    if _db_pool:
        await _db_pool.close()
        _db_pool = None

    health.clear_health_checks()
    logger.info("Service shutdown complete")


async def _database_health() -> dict:
    if _db_pool is not None and await _db_pool.check_health():
        return {"status": "healthy"}
    return {"status": "unhealthy", "message": "Database unreachable"}


# Create FastAPI app
app = FastAPI(
    title="Reading Indexer",
    description="Time-indexed reading store with interval aggregation and resumable consumers",
    version=settings.service_version,
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(metrics.router, tags=["metrics"])


@app.get("/")
async def root() -> dict:
    """Root endpoint - service info."""
    runner = _runner
    return {
        "service": settings.service_name,
        "version": settings.service_version,
        "environment": settings.environment,
        "jobs": sorted(runner.statuses) if runner else [],
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.reading_indexer.app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "local",
    )

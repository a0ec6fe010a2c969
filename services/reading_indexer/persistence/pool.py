"""
Database Connection Pool

Manages async PostgreSQL connections using asyncpg.
"""

import logging
from typing import Optional

import asyncpg

logger = logging.getLogger(__name__)


class DatabasePool:
    """
    Async database connection pool shared by all database sinks.

    Usage:
        pool = DatabasePool()
        await pool.connect(database_url)
        async with pool.acquire() as conn:
            await conn.execute("INSERT INTO weather ...")
        await pool.close()
    """

    def __init__(self):
        self._pool: Optional[asyncpg.Pool] = None
        self._database_url: Optional[str] = None

    async def connect(
        self,
        database_url: str,
        min_size: int = 1,
        max_size: int = 5,
    ) -> None:
        """
        Create connection pool.

        Args:
            database_url: PostgreSQL connection string
            min_size: Minimum pool connections
            max_size: Maximum pool connections
        """
        if self._pool is not None:
            logger.warning("Pool already connected")
            return

        self._database_url = database_url
        self._pool = await asyncpg.create_pool(
            database_url,
            min_size=min_size,
            max_size=max_size,
        )
        logger.info(f"Database pool created (min={min_size}, max={max_size})")

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    def acquire(self):
        """Acquire a connection from the pool."""
        if not self._pool:
            raise RuntimeError("Database pool not connected")
        return self._pool.acquire()

    async def execute(self, query: str, *args) -> str:
        """Execute a query that doesn't return rows."""
        if not self._pool:
            raise RuntimeError("Database pool not connected")
        return await self._pool.execute(query, *args)

    async def fetchval(self, query: str, *args):
        """Execute a query and fetch a single value."""
        if not self._pool:
            raise RuntimeError("Database pool not connected")
        return await self._pool.fetchval(query, *args)

    @property
    def is_connected(self) -> bool:
        """Check if pool is connected."""
        return self._pool is not None

    async def check_health(self) -> bool:
        """Check database connectivity."""
        if not self._pool:
            return False
        try:
            await self._pool.fetchval("SELECT 1")
            return True
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"Database health check failed: {e}")
            return False

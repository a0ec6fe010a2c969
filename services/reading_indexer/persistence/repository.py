"""
Reading Repository

Writes persisted readings into per-collection PostgreSQL tables.

Table layout (created on demand):
    CREATE TABLE IF NOT EXISTS <collection> (
        "timestamp"   BIGINT NOT NULL,
        <column>      DOUBLE PRECISION | BIGINT | TEXT,
        ...
        record_hash   TEXT NOT NULL UNIQUE,
        created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );

`record_hash` is the content hash computed by the persister. Inserts use
ON CONFLICT (record_hash) DO NOTHING, so replaying a batch after a crash
between the database commit and the cursor save is harmless.
"""

import logging
import re
from typing import Any, Sequence

from ..core.constants import HASH_COLUMN, TIMESTAMP_KEY
from ..core.errors import ConfigurationError
from ..core.types import ValueType
from .pool import DatabasePool


logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

SQL_TYPES: dict[ValueType, str] = {
    ValueType.DECIMAL: "DOUBLE PRECISION",
    ValueType.INTEGER: "BIGINT",
    ValueType.STRING: "TEXT",
}


def quote_identifier(name: str) -> str:
    """Validate and double-quote a table/column name."""
    if not IDENTIFIER_PATTERN.match(name):
        raise ConfigurationError(f"invalid SQL identifier: {name!r}")
    return f'"{name}"'


class ReadingRepository:
    """
    Batch inserts of readings keyed by content hash.

    Usage:
        repo = ReadingRepository(pool)
        await repo.ensure_table("weather", {"temperature": ValueType.DECIMAL})
        inserted = await repo.insert_batch("weather", ["temperature"], rows)
    """

    def __init__(self, pool: DatabasePool):
        self.pool = pool

    async def ensure_table(self, collection: str, columns: dict[str, ValueType]) -> None:
        """Create the collection table if it does not exist."""
        column_sql = [f"{quote_identifier(TIMESTAMP_KEY)} BIGINT NOT NULL"]
        for name, value_type in columns.items():
            column_sql.append(f"{quote_identifier(name)} {SQL_TYPES[value_type]}")
        column_sql.append(f"{quote_identifier(HASH_COLUMN)} TEXT NOT NULL UNIQUE")
        column_sql.append("created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()")

        query = f"CREATE TABLE IF NOT EXISTS {quote_identifier(collection)} ({', '.join(column_sql)})"
        try:
            await self.pool.execute(query)
        except Exception as e:
            logger.error(f"Failed to create table {collection}: {e}")
            raise

    async def insert_batch(
        self,
        collection: str,
        columns: Sequence[str],
        rows: Sequence[tuple[int, Sequence[Any], str]],
    ) -> int:
        """
        Insert rows in a single transaction.

        Args:
            collection: Table name
            columns: Value column names, in the order of each row's values
            rows: (timestamp, values, content hash) tuples

        Returns:
            Number of rows actually inserted (hash conflicts are not counted)
        """
        if not rows:
            return 0

        names = [TIMESTAMP_KEY, *columns, HASH_COLUMN]
        placeholders = ", ".join(f"${i}" for i in range(1, len(names) + 1))
        query = (
            f"INSERT INTO {quote_identifier(collection)} "
            f"({', '.join(quote_identifier(n) for n in names)}) "
            f"VALUES ({placeholders}) "
            f"ON CONFLICT ({quote_identifier(HASH_COLUMN)}) DO NOTHING"
        )

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    inserted = 0
                    for timestamp, values, content_hash in rows:
                        result = await conn.execute(query, timestamp, *values, content_hash)
                        inserted += _affected_rows(result)

            logger.debug(f"Batch inserted {inserted}/{len(rows)} rows into {collection}")
            return inserted

        except Exception as e:
            logger.error(f"Failed to batch insert into {collection}: {e}")
            raise


def _affected_rows(status: str) -> int:
    """Row count from an asyncpg command status such as 'INSERT 0 1'."""
    if not status:
        return 0
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0

"""
Database Sink

Delivers persisted rows to a PostgreSQL collection through the
ReadingRepository. One transaction per batch.
"""

import logging
import time
from typing import Sequence

import asyncpg

from ..core.errors import SinkError
from ..core.metrics import record_db_write
from ..core.types import ValueType
from ..persistence.repository import ReadingRepository
from .base import PersistRow, Sink


logger = logging.getLogger(__name__)


class DatabaseSink(Sink[PersistRow]):
    """
    Inserts rows keyed by content hash.

    Rows whose hash already exists are silently ignored by the database, so
    a batch replayed after a crash is absorbed.
    """

    def __init__(
        self,
        name: str,
        repository: ReadingRepository,
        collection: str,
        columns: dict[str, ValueType],
        create_table: bool = True,
    ):
        super().__init__(name)
        self.repository = repository
        self.collection = collection
        self.columns = columns
        self.create_table = create_table
        self.inserted = 0
        self._table_ready = False

    async def open(self) -> None:
        if not self.repository.pool.is_connected:
            raise SinkError(f"[{self.name}] Database pool not connected")
        if self.create_table and not self._table_ready:
            try:
                await self.repository.ensure_table(self.collection, self.columns)
            except (asyncpg.PostgresError, OSError) as e:
                raise SinkError(f"[{self.name}] Cannot prepare table {self.collection}: {e}") from e
            self._table_ready = True

    async def write(self, batch: Sequence[PersistRow]) -> bool:
        if not batch:
            return True

        names = list(self.columns)
        rows = [
            (row.timestamp, [row.values.get(name) for name in names], row.content_hash)
            for row in batch
        ]

        started = time.perf_counter()
        try:
            inserted = await self.repository.insert_batch(self.collection, names, rows)
        except (asyncpg.PostgresError, OSError) as e:
            record_db_write(self.collection, success=False, latency_seconds=0.0)
            raise SinkError(f"[{self.name}] Insert into {self.collection} failed: {e}") from e

        record_db_write(self.collection, success=True, latency_seconds=time.perf_counter() - started)
        self.inserted += inserted
        if inserted < len(rows):
            logger.info(f"[{self.name}] {len(rows) - inserted} rows already present in {self.collection}")
        return True

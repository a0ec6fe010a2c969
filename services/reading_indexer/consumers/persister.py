"""
Record Persister

Incrementally copies records of a time-indexed tree (usually an aggregator's
output) into a database collection, resuming from the last emitted record.

Run protocol:
1. Load the last emitted record (absent = start from the beginning)
2. Read records with timestamp > cursor timestamp, in order
3. Drop records whose values equal the previous emitted record (unless
   duplicates are written)
4. Stop after `rows_per_run` rows
5. Write rows to the sink, then save the last record seen as the cursor

Every row carries a SHA-256 content hash over its timestamp and configured
columns, used by the database as a unique key. Replaying a record after a
crash collapses onto the existing row, while equal values at different
times stay distinct rows.
"""

import asyncio
import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.constants import TIMESTAMP_KEY
from ..core.errors import SinkError
from ..core.field_stats import coerce_number
from ..core.metrics import record_consumer_run
from ..core.types import ConsumerResult, DataRange, Record, RunStatus, Scalar, ValueType
from ..sinks.base import PersistRow, Sink
from ..store.time_indexed_store import TimeIndexedStore
from .cursor import RecordCursorStore


logger = logging.getLogger(__name__)


class ColumnDefinition(BaseModel):
    """A destination column and the record field feeding it."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    type: ValueType = ValueType.DECIMAL
    field: Optional[str] = Field(default=None, description="Source field, defaults to the column name")

    @property
    def source(self) -> str:
        return self.field or self.name


class PersisterConfig(BaseModel):
    """Configuration of one record persister."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    source_path: Path = Field(..., description="Root of the record tree to persist")
    status_path: Path = Field(..., description="Private directory holding the cursor")
    collection: str = Field(..., min_length=1, description="Destination table")
    columns: list[ColumnDefinition] = Field(..., min_length=1)
    write_duplicates: bool = False
    rows_per_run: int = Field(default=0, ge=0, description="0 = unlimited")

    @model_validator(mode="after")
    def _unique_columns(self) -> "PersisterConfig":
        names = [c.name for c in self.columns]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate column names in {names}")
        if TIMESTAMP_KEY in names:
            raise ValueError(f"'{TIMESTAMP_KEY}' is always persisted and cannot be a column")
        return self


def convert_value(value: Scalar, value_type: ValueType) -> Scalar:
    """Cast a raw reading to its column type; None if it has no such view."""
    if value is None:
        return None
    if value_type == ValueType.STRING:
        return str(value)
    number = coerce_number(value)
    if number is None:
        return None
    if value_type == ValueType.INTEGER:
        return int(round(number))
    return number


class RecordPersister:
    """
    Cursor-driven persister over a time-indexed tree.

    Usage:
        persister = RecordPersister(config, DatabaseSink(...))
        result = await persister.run()
    """

    def __init__(
        self,
        config: PersisterConfig,
        sink: Sink[PersistRow],
        store: Optional[TimeIndexedStore] = None,
        cursor_store: Optional[RecordCursorStore] = None,
    ):
        self.config = config
        self.sink = sink
        self.store = store or TimeIndexedStore(config.source_path)
        self.cursor_store = cursor_store or RecordCursorStore(config.status_path)

    @property
    def name(self) -> str:
        return self.config.name

    async def run(self) -> ConsumerResult:
        """Persist one batch. Never raises for sink or filesystem failures."""
        started = time.monotonic()
        result = ConsumerResult(name=self.name)

        cursor = self.cursor_store.load()
        if cursor is not None:
            result.cursor_timestamp = cursor.timestamp
        start = cursor.timestamp + 1 if cursor is not None else 0

        data_range = await asyncio.to_thread(self._refresh_range)
        if data_range.is_empty or start > data_range.end:
            return self._finish(result, started)

        records = await asyncio.to_thread(self.store.get_records, start, data_range.end)
        rows, last_seen, skipped = self.prepare_rows(records, cursor)
        result.items_skipped = skipped
        if last_seen is None:
            return self._finish(result, started)

        try:
            if rows:
                await self.sink.open()
                try:
                    if not await self.sink.write(rows):
                        raise SinkError(f"sink '{self.sink.name}' rejected {len(rows)} rows")
                finally:
                    await self.sink.close()
            self.cursor_store.save(last_seen)
        except (SinkError, OSError) as e:
            message = f"Persist run failed, cursor not advanced: {e}"
            logger.error(f"[{self.name}] {message}")
            result.status = RunStatus.FAILED
            result.errors.append(message)
            return self._finish(result, started)

        result.status = RunStatus.SUCCESS
        result.items_written = len(rows)
        result.cursor_timestamp = last_seen.timestamp
        logger.info(
            f"[{self.name}] Persisted {len(rows)} rows to {self.config.collection} "
            f"({skipped} duplicates dropped), cursor at {last_seen.timestamp}"
        )
        return self._finish(result, started)

    def _refresh_range(self) -> DataRange:
        self.store.build_index(refresh=True)
        return self.store.get_range()

    # =========================================================================
    # Row Preparation
    # =========================================================================

    def prepare_rows(
        self,
        records: dict[int, dict[str, Scalar]],
        cursor: Optional[Record],
    ) -> tuple[list[PersistRow], Optional[Record], int]:
        """
        Turn loaded records into rows.

        Returns:
            (rows to write, last record consumed, number of duplicates dropped)
            The last record consumed includes dropped duplicates, so the
            cursor moves past them.
        """
        rows: list[PersistRow] = []
        baseline = cursor
        last_seen: Optional[Record] = None
        skipped = 0
        limit = self.config.rows_per_run

        for timestamp, fields in records.items():
            record = Record(timestamp=timestamp, fields=fields)
            if self.is_duplicate(record, baseline):
                skipped += 1
                last_seen = record
                continue
            if limit and len(rows) >= limit:
                break
            rows.append(self.build_row(record))
            baseline = record
            last_seen = record

        return rows, last_seen, skipped

    def is_duplicate(self, record: Record, baseline: Optional[Record]) -> bool:
        """Same values as the previous emitted record, ignoring timestamps."""
        if self.config.write_duplicates or baseline is None:
            return False
        return record.fields == baseline.fields

    def build_row(self, record: Record) -> PersistRow:
        values = {
            column.name: convert_value(record.fields.get(column.source), column.type)
            for column in self.config.columns
        }
        return PersistRow(timestamp=record.timestamp, values=values, content_hash=self.content_hash(record.timestamp, values))

    def content_hash(self, timestamp: int, values: dict[str, Scalar]) -> str:
        """Row key over timestamp and values; a replayed record hashes the same."""
        payload = dict(values)
        payload[TIMESTAMP_KEY] = timestamp
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    def _finish(self, result: ConsumerResult, started: float) -> ConsumerResult:
        result.duration_seconds = time.monotonic() - started
        record_consumer_run(self.name, result.status.value, result.items_written, result.cursor_timestamp)
        return result

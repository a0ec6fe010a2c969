"""
Unit tests for the record persister.

Tests cover:
- Column conversion
- Consecutive duplicate suppression (within and across runs)
- Content hashes with and without write_duplicates
- rows_per_run limits and resume
- Sink failures leaving the cursor untouched
"""

import hashlib
import json
from pathlib import Path
from typing import Sequence

import pytest

from services.reading_indexer.consumers import (
    ColumnDefinition,
    PersisterConfig,
    RecordPersister,
    convert_value,
)
from services.reading_indexer.core.errors import SinkError
from services.reading_indexer.core.paths import path_for_timestamp
from services.reading_indexer.core.types import Record, RunStatus, ValueType
from services.reading_indexer.sinks import PersistRow, Sink


def write_raw(root: Path, timestamp: int, fields: dict) -> None:
    path = path_for_timestamp(root, timestamp)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"timestamp": timestamp, **fields}))


class RecordingSink(Sink[PersistRow]):
    """Sink that keeps every row, or fails on demand."""

    def __init__(self, result: bool = True, error: Exception = None):
        super().__init__("recording")
        self.result = result
        self.error = error
        self.rows: list[PersistRow] = []
        self.opened = 0

    async def open(self) -> None:
        self.opened += 1

    async def write(self, batch: Sequence[PersistRow]) -> bool:
        if self.error is not None:
            raise self.error
        self.rows.extend(batch)
        return self.result


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def source(tmp_path):
    """Aggregate tree where the record at 105 repeats the one at 100."""
    root = tmp_path / "data"
    write_raw(root, 100, {"temp": 1.5, "station": "north"})
    write_raw(root, 105, {"temp": 1.5, "station": "north"})
    write_raw(root, 110, {"temp": 2, "station": "north"})
    write_raw(root, 115, {"temp": 1.5, "station": "north"})
    return root


def make_persister(tmp_path, source, sink, **overrides) -> RecordPersister:
    config = PersisterConfig(
        name="weather-db",
        source_path=source,
        status_path=tmp_path / "status",
        collection="weather_5s",
        columns=[
            ColumnDefinition(name="temperature", type=ValueType.DECIMAL, field="temp"),
            ColumnDefinition(name="station", type=ValueType.STRING),
        ],
        **overrides,
    )
    return RecordPersister(config, sink)


def expected_hash(payload: dict) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


# =============================================================================
# Conversion Tests
# =============================================================================

class TestConvertValue:
    """Test column type conversion."""

    @pytest.mark.parametrize(
        "value, value_type, expected",
        [
            (1.5, ValueType.DECIMAL, 1.5),
            ("2.25", ValueType.DECIMAL, 2.25),
            ("3.7", ValueType.INTEGER, 4),
            (7, ValueType.INTEGER, 7),
            (2.5, ValueType.STRING, "2.5"),
            ("abc", ValueType.DECIMAL, None),
            (True, ValueType.DECIMAL, None),
            (None, ValueType.STRING, None),
        ],
    )
    def test_convert(self, value, value_type, expected):
        """Test each type's view of a reading."""
        assert convert_value(value, value_type) == expected


class TestPersisterConfig:
    """Test persister configuration validation."""

    def test_timestamp_column_rejected(self, tmp_path):
        """Test the timestamp cannot be configured as a column."""
        with pytest.raises(ValueError, match="timestamp"):
            PersisterConfig(
                name="p",
                source_path=tmp_path,
                status_path=tmp_path,
                collection="t",
                columns=[ColumnDefinition(name="timestamp")],
            )

    def test_duplicate_columns_rejected(self, tmp_path):
        """Test column names must be unique."""
        with pytest.raises(ValueError, match="duplicate"):
            PersisterConfig(
                name="p",
                source_path=tmp_path,
                status_path=tmp_path,
                collection="t",
                columns=[ColumnDefinition(name="a"), ColumnDefinition(name="a", field="b")],
            )

    def test_column_source_defaults_to_name(self):
        """Test a column without a field reads the field of the same name."""
        assert ColumnDefinition(name="temp").source == "temp"
        assert ColumnDefinition(name="temperature", field="temp").source == "temp"


# =============================================================================
# Run Tests
# =============================================================================

class TestPersisterRun:
    """Test persist runs."""

    @pytest.mark.asyncio
    async def test_consecutive_duplicates_dropped(self, tmp_path, source):
        """Test only the repeat of the previous row is dropped."""
        sink = RecordingSink()
        persister = make_persister(tmp_path, source, sink)

        result = await persister.run()

        assert result.status == RunStatus.SUCCESS
        assert [row.timestamp for row in sink.rows] == [100, 110, 115]
        assert result.items_written == 3
        assert result.items_skipped == 1
        assert result.cursor_timestamp == 115

    @pytest.mark.asyncio
    async def test_row_values(self, tmp_path, source):
        """Test rows carry converted column values and a content hash."""
        sink = RecordingSink()
        persister = make_persister(tmp_path, source, sink)

        await persister.run()

        first = sink.rows[0]
        assert first.values == {"temperature": 1.5, "station": "north"}
        assert first.content_hash == expected_hash({"temperature": 1.5, "station": "north", "timestamp": 100})

    @pytest.mark.asyncio
    async def test_write_duplicates(self, tmp_path, source):
        """Test write_duplicates keeps every record and hashes the timestamp."""
        sink = RecordingSink()
        persister = make_persister(tmp_path, source, sink, write_duplicates=True)

        result = await persister.run()

        assert [row.timestamp for row in sink.rows] == [100, 105, 110, 115]
        assert result.items_skipped == 0
        assert sink.rows[0].content_hash != sink.rows[1].content_hash
        assert sink.rows[1].content_hash == expected_hash(
            {"temperature": 1.5, "station": "north", "timestamp": 105}
        )

    @pytest.mark.asyncio
    async def test_non_consecutive_repeat_gets_its_own_row(self, tmp_path, source):
        """Test a value that returns after a change keeps a distinct unique key."""
        sink = RecordingSink()
        persister = make_persister(tmp_path, source, sink)

        await persister.run()

        hashes = [row.content_hash for row in sink.rows]
        assert [row.timestamp for row in sink.rows] == [100, 110, 115]
        assert len(set(hashes)) == 3
        assert sink.rows[0].values == sink.rows[2].values

    @pytest.mark.asyncio
    async def test_replayed_record_keeps_its_hash(self, tmp_path, source):
        """Test re-delivering a record after a lost cursor yields the same key."""
        first = RecordingSink()
        await make_persister(tmp_path, source, first).run()
        (tmp_path / "status" / "last_record").unlink()

        second = RecordingSink()
        await make_persister(tmp_path, source, second).run()

        assert [row.content_hash for row in second.rows] == [row.content_hash for row in first.rows]

    @pytest.mark.asyncio
    async def test_cursor_saved_as_last_record(self, tmp_path, source):
        """Test the cursor file holds the last record seen."""
        persister = make_persister(tmp_path, source, RecordingSink())

        await persister.run()

        assert persister.cursor_store.load() == Record(timestamp=115, fields={"temp": 1.5, "station": "north"})

    @pytest.mark.asyncio
    async def test_idle_when_caught_up(self, tmp_path, source):
        """Test a run with nothing after the cursor writes nothing."""
        sink = RecordingSink()
        persister = make_persister(tmp_path, source, sink)
        await persister.run()

        result = await persister.run()

        assert result.status == RunStatus.IDLE
        assert result.cursor_timestamp == 115
        assert sink.opened == 1

    @pytest.mark.asyncio
    async def test_idle_on_empty_source(self, tmp_path):
        """Test a missing source tree is not an error."""
        persister = make_persister(tmp_path, tmp_path / "missing", RecordingSink())

        result = await persister.run()

        assert result.status == RunStatus.IDLE
        assert result.ok

    @pytest.mark.asyncio
    async def test_rows_per_run(self, tmp_path, source):
        """Test the row limit splits the work and the next run resumes."""
        sink = RecordingSink()
        persister = make_persister(tmp_path, source, sink, rows_per_run=2)

        first = await persister.run()

        assert first.items_written == 2
        assert first.cursor_timestamp == 110

        second = await persister.run()

        assert second.items_written == 1
        assert [row.timestamp for row in sink.rows] == [100, 110, 115]

    @pytest.mark.asyncio
    async def test_duplicate_of_cursor_across_runs(self, tmp_path, source):
        """Test a new record repeating the last persisted one is dropped but consumed."""
        sink = RecordingSink()
        persister = make_persister(tmp_path, source, sink)
        await persister.run()
        write_raw(source, 120, {"temp": 1.5, "station": "north"})

        result = await persister.run()

        assert result.status == RunStatus.SUCCESS
        assert result.items_written == 0
        assert result.items_skipped == 1
        assert persister.cursor_store.load().timestamp == 120
        assert sink.opened == 1

    @pytest.mark.asyncio
    async def test_missing_field_persists_null(self, tmp_path):
        """Test a record without a column's field gets a null value."""
        root = tmp_path / "data"
        write_raw(root, 100, {"temp": 3})
        sink = RecordingSink()
        persister = make_persister(tmp_path, root, sink)

        await persister.run()

        assert sink.rows[0].values == {"temperature": 3.0, "station": None}


# =============================================================================
# Failure Tests
# =============================================================================

class TestPersisterFailures:
    """Test that failed deliveries never move the cursor."""

    @pytest.mark.asyncio
    async def test_sink_error(self, tmp_path, source):
        """Test a raising sink fails the run without saving a cursor."""
        persister = make_persister(tmp_path, source, RecordingSink(error=SinkError("connection lost")))

        result = await persister.run()

        assert result.status == RunStatus.FAILED
        assert "connection lost" in result.errors[0]
        assert persister.cursor_store.load() is None

    @pytest.mark.asyncio
    async def test_rejected_batch(self, tmp_path, source):
        """Test a sink returning False fails the run."""
        persister = make_persister(tmp_path, source, RecordingSink(result=False))

        result = await persister.run()

        assert result.status == RunStatus.FAILED
        assert persister.cursor_store.load() is None

    @pytest.mark.asyncio
    async def test_redelivered_after_failure(self, tmp_path, source):
        """Test the failed rows are delivered by the next successful run."""
        persister = make_persister(tmp_path, source, RecordingSink(error=SinkError("offline")))
        await persister.run()

        sink = RecordingSink()
        persister.sink = sink
        await persister.run()

        assert [row.timestamp for row in sink.rows] == [100, 110, 115]

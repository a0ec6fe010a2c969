"""
Unit tests for the file archiver.

Tests cover:
- Candidate collection (extension filter, empty and foreign files)
- Cursor ordering and resume
- Count and size quotas
- Sink failures leaving the cursor untouched
- Source removal after archiving
"""

import json
import os
import zipfile
from pathlib import Path
from typing import Sequence

import pytest

from services.reading_indexer.consumers import ArchiverConfig, FileArchiver
from services.reading_indexer.core.errors import SinkError
from services.reading_indexer.core.paths import path_for_timestamp
from services.reading_indexer.core.types import ArchiveCursor, RunStatus, TimestampSource
from services.reading_indexer.sinks import ArchiveItem, CopySink, Sink, ZipSink


def write_file(root: Path, timestamp: int, suffix: str = ".json", content: str = None) -> Path:
    path = path_for_timestamp(root, timestamp).with_suffix(suffix)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content if content is not None else json.dumps({"timestamp": timestamp, "v": 1}))
    return path


class RecordingSink(Sink[ArchiveItem]):
    """Sink that remembers every batch, or fails on demand."""

    def __init__(self, result: bool = True, error: Exception = None):
        super().__init__("recording")
        self.result = result
        self.error = error
        self.batches: list[list[ArchiveItem]] = []
        self.opened = 0
        self.closed = 0

    async def open(self) -> None:
        self.opened += 1

    async def write(self, batch: Sequence[ArchiveItem]) -> bool:
        if self.error is not None:
            raise self.error
        self.batches.append(list(batch))
        return self.result

    async def close(self) -> None:
        self.closed += 1


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def source(tmp_path):
    """Source tree with five records at 100..104."""
    root = tmp_path / "raw"
    for ts in range(100, 105):
        write_file(root, ts)
    return root


def make_archiver(tmp_path, source, sink, **overrides) -> FileArchiver:
    config = ArchiverConfig(
        name="weather-archive",
        source_path=source,
        status_path=tmp_path / "status",
        **overrides,
    )
    return FileArchiver(config, sink)


# =============================================================================
# Config Tests
# =============================================================================

class TestArchiverConfig:
    """Test archiver configuration."""

    def test_extensions_are_dotted(self, tmp_path):
        """Test bare extensions get a leading dot."""
        config = ArchiverConfig(name="a", source_path=tmp_path, status_path=tmp_path, extensions=("csv", ".json"))

        assert config.extensions == (".csv", ".json")

    def test_negative_quota_rejected(self, tmp_path):
        """Test quotas cannot be negative."""
        with pytest.raises(ValueError):
            ArchiverConfig(name="a", source_path=tmp_path, status_path=tmp_path, max_archive_files_count=-1)


# =============================================================================
# Collection Tests
# =============================================================================

class TestCollectCandidates:
    """Test candidate selection."""

    def test_sorted_by_timestamp(self, tmp_path, source):
        """Test every record is a candidate, oldest first."""
        archiver = make_archiver(tmp_path, source, RecordingSink())

        items = archiver.collect_candidates(ArchiveCursor())

        assert [item.timestamp for item in items] == [100, 101, 102, 103, 104]
        assert items[0].relative_path == Path("1970/1/1/0/1/40.json")
        assert items[0].path.is_absolute()

    def test_cursor_excludes_archived(self, tmp_path, source):
        """Test files at or before the cursor are not candidates."""
        archiver = make_archiver(tmp_path, source, RecordingSink())
        cursor = ArchiveCursor(timestamp=102, identity=str(archiver.source_root / "1970/1/1/0/1/42.json"))

        items = archiver.collect_candidates(cursor)

        assert [item.timestamp for item in items] == [103, 104]

    def test_filters(self, tmp_path, source):
        """Test other extensions, temp files, empty files and foreign paths are skipped."""
        write_file(source, 105, suffix=".csv")
        write_file(source, 106, content="")
        tmp_file = path_for_timestamp(source, 107)
        tmp_file.with_name(tmp_file.name + ".tmp").write_text("partial")
        (source / "readme.json").write_text("{}")
        archiver = make_archiver(tmp_path, source, RecordingSink())

        items = archiver.collect_candidates(ArchiveCursor())

        assert [item.timestamp for item in items] == [100, 101, 102, 103, 104]

    def test_custom_extensions(self, tmp_path, source):
        """Test non-record files are archived when their extension is allowed."""
        write_file(source, 105, suffix=".csv")
        archiver = make_archiver(tmp_path, source, RecordingSink(), extensions=("csv",))

        items = archiver.collect_candidates(ArchiveCursor())

        assert [(item.timestamp, item.path.suffix) for item in items] == [(105, ".csv")]

    def test_missing_source(self, tmp_path):
        """Test a missing source tree has no candidates."""
        archiver = make_archiver(tmp_path, tmp_path / "missing", RecordingSink())

        assert archiver.collect_candidates(ArchiveCursor()) == []


# =============================================================================
# Run Tests
# =============================================================================

class TestArchiverRun:
    """Test archive runs against a sink."""

    @pytest.mark.asyncio
    async def test_archives_everything(self, tmp_path, source):
        """Test one run forwards all files and saves the last as cursor."""
        sink = RecordingSink()
        archiver = make_archiver(tmp_path, source, sink)

        result = await archiver.run()

        assert result.status == RunStatus.SUCCESS
        assert result.items_written == 5
        assert result.bytes_written == sum(p.stat().st_size for p in source.rglob("*.json"))
        assert result.cursor_timestamp == 104
        assert archiver.cursor_store.load().timestamp == 104
        assert sink.opened == 1
        assert sink.closed == 1

    @pytest.mark.asyncio
    async def test_idle_when_nothing_new(self, tmp_path, source):
        """Test a second run without new files does nothing."""
        sink = RecordingSink()
        archiver = make_archiver(tmp_path, source, sink)
        await archiver.run()

        result = await archiver.run()

        assert result.status == RunStatus.IDLE
        assert result.items_written == 0
        assert result.cursor_timestamp == 104
        assert len(sink.batches) == 1

    @pytest.mark.asyncio
    async def test_count_quota(self, tmp_path, source):
        """Test a count quota of 2 splits five files over three runs."""
        sink = RecordingSink()
        archiver = make_archiver(tmp_path, source, sink, max_archive_files_count=2)

        first = await archiver.run()

        assert first.items_written == 2
        cursor = archiver.cursor_store.load()
        assert cursor.timestamp == 101
        assert cursor.identity == str(archiver.source_root / "1970/1/1/0/1/41.json")

        second = await archiver.run()
        third = await archiver.run()

        assert (second.items_written, third.items_written) == (2, 1)
        archived = [item.timestamp for batch in sink.batches for item in batch]
        assert archived == [100, 101, 102, 103, 104]

    @pytest.mark.asyncio
    async def test_lifted_quota_takes_remainder(self, tmp_path, source):
        """Test lifting the quota after a partial batch delivers all remaining files."""
        sink = RecordingSink()
        archiver = make_archiver(tmp_path, source, sink, max_archive_files_count=2)

        await archiver.run()
        archiver.config = archiver.config.model_copy(update={"max_archive_files_count": 0})
        second = await archiver.run()

        assert second.items_written == 3

    @pytest.mark.asyncio
    async def test_size_quota(self, tmp_path, source):
        """Test the batch stops before the file that would exceed the size quota."""
        size = path_for_timestamp(source, 100).stat().st_size
        sink = RecordingSink()
        archiver = make_archiver(tmp_path, source, sink, max_archive_size=2 * size + 1)

        result = await archiver.run()

        assert result.items_written == 2
        assert result.bytes_written == 2 * size

    @pytest.mark.asyncio
    async def test_oversized_first_file_is_taken(self, tmp_path, source):
        """Test a file larger than the size quota is archived on its own."""
        sink = RecordingSink()
        archiver = make_archiver(tmp_path, source, sink, max_archive_size=1)

        result = await archiver.run()

        assert result.items_written == 1
        assert result.cursor_timestamp == 100

    @pytest.mark.asyncio
    async def test_same_second_ordered_by_identity(self, tmp_path):
        """Test files sharing a second are archived one after the other."""
        root = tmp_path / "raw"
        write_file(root, 100, suffix=".csv")
        write_file(root, 100, suffix=".json")
        sink = RecordingSink()
        archiver = make_archiver(tmp_path, root, sink, extensions=(".json", ".csv"), max_archive_files_count=1)

        await archiver.run()
        await archiver.run()
        third = await archiver.run()

        assert [batch[0].path.suffix for batch in sink.batches] == [".csv", ".json"]
        assert third.status == RunStatus.IDLE

    @pytest.mark.asyncio
    async def test_new_files_after_cursor(self, tmp_path, source):
        """Test files arriving after a run are picked up by the next one."""
        sink = RecordingSink()
        archiver = make_archiver(tmp_path, source, sink)
        await archiver.run()
        write_file(source, 110)

        result = await archiver.run()

        assert result.items_written == 1
        assert result.cursor_timestamp == 110


# =============================================================================
# Failure Tests
# =============================================================================

class TestArchiverFailures:
    """Test that failed deliveries never move the cursor."""

    @pytest.mark.asyncio
    async def test_rejected_batch(self, tmp_path, source):
        """Test a sink returning False fails the run."""
        sink = RecordingSink(result=False)
        archiver = make_archiver(tmp_path, source, sink)

        result = await archiver.run()

        assert result.status == RunStatus.FAILED
        assert not result.ok
        assert archiver.cursor_store.load() is None
        assert sink.closed == 1

    @pytest.mark.asyncio
    async def test_sink_error_keeps_previous_cursor(self, tmp_path, source):
        """Test a raising sink leaves the last good cursor in place."""
        archiver = make_archiver(tmp_path, source, RecordingSink(), max_archive_files_count=2)
        await archiver.run()
        before = archiver.cursor_store.load()

        archiver.sink = RecordingSink(error=SinkError("disk full"))
        result = await archiver.run()

        assert result.status == RunStatus.FAILED
        assert "disk full" in result.errors[0]
        assert archiver.cursor_store.load() == before

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, tmp_path, source):
        """Test the batch that failed is delivered again once the sink recovers."""
        archiver = make_archiver(tmp_path, source, RecordingSink(error=SinkError("offline")))
        await archiver.run()

        sink = RecordingSink()
        archiver.sink = sink
        result = await archiver.run()

        assert result.items_written == 5

    @pytest.mark.asyncio
    async def test_sources_kept_on_failure(self, tmp_path, source):
        """Test source files are not removed when delivery failed."""
        archiver = make_archiver(
            tmp_path, source, RecordingSink(result=False), remove_source_after_archive=True
        )

        await archiver.run()

        assert len(list(source.rglob("*.json"))) == 5


# =============================================================================
# Source Removal Tests
# =============================================================================

class TestSourceRemoval:
    """Test remove_source_after_archive."""

    @pytest.mark.asyncio
    async def test_removes_archived_files_and_empty_dirs(self, tmp_path, source):
        """Test archived files and their emptied directories are removed."""
        write_file(source, 3600)
        sink = RecordingSink()
        archiver = make_archiver(
            tmp_path, source, sink, remove_source_after_archive=True, max_archive_files_count=5
        )

        await archiver.run()

        remaining = sorted(p.relative_to(source).as_posix() for p in source.rglob("*.json"))
        assert remaining == ["1970/1/1/1/0/0.json"]
        assert not (source / "1970" / "1" / "1" / "0").exists()
        assert source.is_dir()


# =============================================================================
# Sink Integration Tests
# =============================================================================

class TestArchiverWithSinks:
    """Test the archiver with the file sinks."""

    @pytest.mark.asyncio
    async def test_copy_sink_mirrors_tree(self, tmp_path, source):
        """Test a copy run reproduces the source layout."""
        destination = tmp_path / "mirror"
        archiver = make_archiver(tmp_path, source, CopySink("mirror", destination))

        result = await archiver.run()

        assert result.items_written == 5
        copied = sorted(p.relative_to(destination).as_posix() for p in destination.rglob("*.json"))
        assert copied == sorted(p.relative_to(source).as_posix() for p in source.rglob("*.json"))

    @pytest.mark.asyncio
    async def test_zip_sink_one_archive_per_run(self, tmp_path, source):
        """Test a zip run produces one archive holding the batch."""
        destination = tmp_path / "zips"
        sink = ZipSink("weather", destination)
        archiver = make_archiver(tmp_path, source, sink, max_archive_files_count=3)

        await archiver.run()

        with zipfile.ZipFile(sink.archive_path) as archive:
            assert archive.namelist() == [
                "1970/1/1/0/1/40.json",
                "1970/1/1/0/1/41.json",
                "1970/1/1/0/1/42.json",
            ]


# =============================================================================
# Timestamp Source Tests
# =============================================================================

class TestTimestampSource:
    """Test archiving trees by path timestamp or by modification time."""

    @pytest.fixture
    def logs(self, tmp_path):
        """Free-form log tree with modification times 300, 100 and 200."""
        root = tmp_path / "logs"
        (root / "2024" / "rotated").mkdir(parents=True)
        files = {
            root / "app.log": 300,
            root / "2024" / "rotated" / "app.1.log": 100,
            root / "2024" / "rotated" / "app.2.log": 200,
        }
        for path, mtime in files.items():
            path.write_text(f"log written at {mtime}")
            os.utime(path, (mtime, mtime))
        return root

    def test_path_mode_skips_free_form_tree(self, tmp_path, logs):
        """Test files outside the time-encoded layout have no path timestamp."""
        archiver = make_archiver(tmp_path, logs, RecordingSink(), extensions=("log",))

        assert archiver.collect_candidates(ArchiveCursor()) == []

    def test_mtime_mode_orders_by_modification_time(self, tmp_path, logs):
        """Test mtime mode archives any tree, oldest modification first."""
        archiver = make_archiver(
            tmp_path, logs, RecordingSink(), extensions=("log",), timestamp_source=TimestampSource.MTIME
        )

        items = archiver.collect_candidates(ArchiveCursor())

        assert [(item.timestamp, str(item.relative_path)) for item in items] == [
            (100, str(Path("2024/rotated/app.1.log"))),
            (200, str(Path("2024/rotated/app.2.log"))),
            (300, "app.log"),
        ]

    @pytest.mark.asyncio
    async def test_mtime_mode_resumes_from_cursor(self, tmp_path, logs):
        """Test the cursor keeps the mtime and absolute path of the last file."""
        sink = RecordingSink()
        archiver = make_archiver(
            tmp_path,
            logs,
            sink,
            extensions=("log",),
            timestamp_source=TimestampSource.MTIME,
            max_archive_files_count=2,
        )

        await archiver.run()
        cursor = archiver.cursor_store.load()
        second = await archiver.run()

        assert cursor.timestamp == 200
        assert cursor.identity == str(archiver.source_root / "2024" / "rotated" / "app.2.log")
        assert second.items_written == 1
        assert [item.relative_path.name for item in sink.batches[1]] == ["app.log"]

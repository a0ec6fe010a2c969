"""
File Archiver

Incrementally forwards files of a time-indexed tree to an archive sink
(copy, zip or FTP), resuming from a (timestamp, identity) cursor.

Run protocol:
1. Load the cursor (absent = start from the beginning)
2. Collect files newer than the cursor, sorted by (timestamp, path). The
   timestamp comes from the time-encoded path or, for arbitrary trees such
   as logs, from the file modification time
3. Cut the list at the first file exceeding the count or size quota
4. Write the batch to the sink
5. Only after the sink confirmed: save the cursor of the last file
6. Optionally delete the archived source files and empty directories
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.constants import DEFAULT_ARCHIVE_EXTENSIONS, TEMP_SUFFIX
from ..core.errors import SinkError
from ..core.metrics import record_consumer_run
from ..core.paths import file_timestamp, prune_empty_dirs
from ..core.types import ArchiveCursor, ConsumerResult, RunStatus, TimestampSource
from ..sinks.base import ArchiveItem, Sink
from .cursor import ArchiveCursorStore


logger = logging.getLogger(__name__)


class ArchiverConfig(BaseModel):
    """Configuration of one file archiver."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    source_path: Path = Field(..., description="Root of the tree to archive")
    status_path: Path = Field(..., description="Private directory holding the cursor")
    extensions: tuple[str, ...] = Field(default=DEFAULT_ARCHIVE_EXTENSIONS, description="File suffixes to archive")
    max_archive_files_count: int = Field(default=0, ge=0, description="Files per run, 0 = unlimited")
    max_archive_size: int = Field(default=0, ge=0, description="Bytes per run, 0 = unlimited")
    remove_source_after_archive: bool = False
    timestamp_source: TimestampSource = Field(
        default=TimestampSource.PATH,
        description="Take file timestamps from the time-encoded path or from the modification time",
    )

    @field_validator("extensions")
    @classmethod
    def _dotted(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(ext if ext.startswith(".") else f".{ext}" for ext in value)


class FileArchiver:
    """
    Cursor-driven archiver over a time-indexed tree.

    Usage:
        archiver = FileArchiver(config, ZipSink("weather", "/backups/weather"))
        result = await archiver.run()
    """

    def __init__(
        self,
        config: ArchiverConfig,
        sink: Sink[ArchiveItem],
        cursor_store: Optional[ArchiveCursorStore] = None,
    ):
        self.config = config
        self.sink = sink
        self.cursor_store = cursor_store or ArchiveCursorStore(config.status_path)
        self.source_root = Path(config.source_path).absolute()

    @property
    def name(self) -> str:
        return self.config.name

    async def run(self) -> ConsumerResult:
        """Archive one batch. Never raises for sink or filesystem failures."""
        started = time.monotonic()
        result = ConsumerResult(name=self.name)

        cursor = self.cursor_store.load()
        if cursor is not None:
            result.cursor_timestamp = cursor.timestamp

        try:
            candidates = await asyncio.to_thread(self.collect_candidates, cursor or ArchiveCursor())
        except OSError as e:
            return self._fail(result, started, f"Cannot scan {self.source_root}: {e}")

        batch = self.select_batch(candidates)
        if not batch:
            logger.debug(f"[{self.name}] Nothing to archive")
            return self._finish(result, started)

        try:
            await self.sink.open()
            if not await self.sink.write(batch):
                raise SinkError(f"sink '{self.sink.name}' rejected {len(batch)} files")
            last = batch[-1]
            self.cursor_store.save(ArchiveCursor(timestamp=last.timestamp, identity=last.identity))
        except (SinkError, OSError) as e:
            return self._fail(result, started, f"Archive run failed, cursor not advanced: {e}")
        finally:
            await self.sink.close()

        result.status = RunStatus.SUCCESS
        result.items_written = len(batch)
        result.bytes_written = sum(item.size for item in batch)
        result.cursor_timestamp = batch[-1].timestamp
        logger.info(
            f"[{self.name}] Archived {result.items_written} files ({result.bytes_written} bytes), "
            f"cursor at {batch[-1].timestamp} {batch[-1].identity}"
        )

        if self.config.remove_source_after_archive:
            await asyncio.to_thread(self.remove_sources, batch)

        return self._finish(result, started)

    # =========================================================================
    # Selection
    # =========================================================================

    def collect_candidates(self, cursor: ArchiveCursor) -> list[ArchiveItem]:
        """Files after `cursor`, sorted by (timestamp, identity)."""
        if not self.source_root.is_dir():
            return []

        items: list[ArchiveItem] = []
        for path in self.source_root.rglob("*"):
            if not path.is_file() or not self.accepts(path):
                continue
            size = path.stat().st_size
            if size == 0:
                continue

            relative = path.relative_to(self.source_root)
            timestamp = self._timestamp(path)
            if timestamp is None:
                continue

            item = ArchiveItem(path=path, relative_path=relative, timestamp=timestamp, size=size)
            if cursor.admits(item.timestamp, item.identity):
                items.append(item)

        items.sort(key=lambda item: (item.timestamp, item.identity))
        return items

    def accepts(self, path: Path) -> bool:
        """Filename filter: allowed extension and not a temporary file."""
        if path.name.endswith(TEMP_SUFFIX):
            return False
        return path.suffix in self.config.extensions

    def _timestamp(self, path: Path) -> Optional[int]:
        try:
            return file_timestamp(self.source_root, path, self.config.timestamp_source)
        except ValueError as e:
            logger.warning(f"[{self.name}] Skipping {path}: {e}")
            return None

    def select_batch(self, candidates: list[ArchiveItem]) -> list[ArchiveItem]:
        """
        Apply the per-run quotas in order.

        The batch ends before the first file that would exceed a quota. The
        first file is always taken, so a file larger than the size quota
        cannot stall the archiver.
        """
        max_count = self.config.max_archive_files_count
        max_size = self.config.max_archive_size

        batch: list[ArchiveItem] = []
        total_size = 0
        for item in candidates:
            if max_count and len(batch) >= max_count:
                break
            if max_size and batch and total_size + item.size > max_size:
                break
            batch.append(item)
            total_size += item.size
        return batch

    # =========================================================================
    # Post-processing
    # =========================================================================

    def remove_sources(self, batch: list[ArchiveItem]) -> None:
        removed = 0
        for item in batch:
            try:
                item.path.unlink(missing_ok=True)
                removed += 1
            except OSError as e:
                logger.warning(f"[{self.name}] Could not remove {item.path}: {e}")
        dirs = prune_empty_dirs(self.source_root)
        logger.info(f"[{self.name}] Removed {removed} archived source files and {dirs} empty directories")

    def _fail(self, result: ConsumerResult, started: float, message: str) -> ConsumerResult:
        logger.error(f"[{self.name}] {message}")
        result.status = RunStatus.FAILED
        result.errors.append(message)
        return self._finish(result, started)

    def _finish(self, result: ConsumerResult, started: float) -> ConsumerResult:
        result.duration_seconds = time.monotonic() - started
        record_consumer_run(self.name, result.status.value, result.items_written, result.cursor_timestamp)
        return result

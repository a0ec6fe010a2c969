"""
Retention Cleaner

Deletes files every consumer of a tree has already moved past.

The threshold is the smallest cursor timestamp among the registered
consumers; files strictly older are removed, followed by directories left
empty. If any consumer has not saved a cursor yet, nothing is removed.

Every regular file below the root is considered, whatever its extension, as
long as its timestamp resolves with the rule its consumers use (time-encoded
path or modification time). Files still being written (`.tmp`) are kept.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from ..core.constants import TEMP_SUFFIX
from ..core.paths import file_timestamp, prune_empty_dirs
from ..core.types import TimestampSource
from .cursor import CursorStore


logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    """Result of a cleanup run."""

    name: str
    threshold: Optional[int] = None
    files_removed: int = 0
    dirs_removed: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.errors


class RetentionCleaner:
    """
    Consumer-aware retention for a time-indexed tree.

    Usage:
        cleaner = RetentionCleaner("raw-weather", "/data/weather", [archive_cursor, persist_cursor])
        result = cleaner.run()
    """

    def __init__(
        self,
        name: str,
        source_path: str | Path,
        consumers: Sequence[CursorStore],
        timestamp_source: TimestampSource = TimestampSource.PATH,
    ):
        self.name = name
        self.root = Path(source_path).absolute()
        self.consumers = list(consumers)
        self.timestamp_source = timestamp_source

    def threshold(self) -> Optional[int]:
        """Minimum cursor timestamp over all consumers, or None if any is missing."""
        if not self.consumers:
            return None
        timestamps = []
        for consumer in self.consumers:
            cursor = consumer.load()
            if cursor is None:
                logger.info(f"[{self.name}] Consumer at {consumer.status_path} has no cursor yet, keeping all files")
                return None
            timestamps.append(cursor.timestamp)
        return min(timestamps)

    def expired_files(self, threshold: int) -> list[Path]:
        """Regular files below the root whose timestamp is before `threshold`."""
        if not self.root.is_dir():
            return []
        expired = []
        for path in sorted(self.root.rglob("*")):
            if not path.is_file() or path.name.endswith(TEMP_SUFFIX):
                continue
            try:
                timestamp = file_timestamp(self.root, path, self.timestamp_source)
            except (ValueError, OSError) as e:
                logger.debug(f"[{self.name}] Keeping {path}: {e}")
                continue
            if timestamp < threshold:
                expired.append(path)
        return expired

    def run(self) -> CleanupResult:
        started = time.monotonic()
        result = CleanupResult(name=self.name)

        threshold = self.threshold()
        result.threshold = threshold
        if threshold is None:
            result.duration_seconds = time.monotonic() - started
            return result

        for path in self.expired_files(threshold):
            try:
                path.unlink(missing_ok=True)
                result.files_removed += 1
            except OSError as e:
                logger.warning(f"[{self.name}] Could not remove {path}: {e}")
                result.errors.append(f"{path}: {e}")

        if result.files_removed:
            result.dirs_removed = prune_empty_dirs(self.root)

        result.duration_seconds = time.monotonic() - started
        logger.info(
            f"[{self.name}] Removed {result.files_removed} files older than {threshold} "
            f"and {result.dirs_removed} empty directories"
        )
        return result

"""
Time-Indexed Store

Presents a directory tree of per-second record files as a sorted,
range-queryable index:

    <root>/<year>/<month>/<day>/<hour>/<minute>/<second>.json

The index (timestamp -> path) is built by one full walk and cached. Record
contents are only read on demand, fanned out over a bounded thread pool.
"""

import bisect
import json
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Optional

from ..core.constants import (
    DEFAULT_STORE_WORKERS,
    PATH_DEPTH,
    RECORD_EXTENSION,
    TEMP_SUFFIX,
    TIMESTAMP_KEY,
)
from ..core.metrics import record_skipped, set_records_indexed
from ..core.paths import path_for_timestamp, timestamp_from_path
from ..core.types import DataRange, DataStats, Record, Scalar


logger = logging.getLogger(__name__)


class TimeIndexedStore:
    """
    Cached sorted index over a time-encoded directory tree.

    Usage:
        store = TimeIndexedStore("/var/lib/readings/weather")
        data_range = store.get_range()
        records = store.get_records(data_range.start, data_range.end)

    Timestamps are taken from file paths only. Two files that decode to the
    same second are not reconciled: the one walked last wins.
    """

    def __init__(self, root: str | Path, max_workers: int = DEFAULT_STORE_WORKERS):
        self.root = Path(root)
        self.max_workers = max(1, max_workers)

        # Internal state
        self._index: dict[int, Path] = {}
        self._keys: list[int] = []
        self._merge_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.build_index())

    # =========================================================================
    # Index
    # =========================================================================

    def build_index(self, refresh: bool = False) -> dict[int, Path]:
        """
        Walk the tree and cache a timestamp -> path index.

        An empty cache is treated as stale, so a tree that was empty (or did
        not exist yet) is walked again on the next access.

        Args:
            refresh: Force a new walk even if a cached index exists

        Returns:
            Index ordered by timestamp
        """
        if self._keys and not refresh:
            return self._index

        index: dict[int, Path] = {}
        if self.root.is_dir():
            for path in sorted(self.root.rglob(f"*{RECORD_EXTENSION}")):
                if not path.is_file():
                    continue
                timestamp = self._path_timestamp(path)
                if timestamp is not None:
                    index[timestamp] = path

        self._keys = sorted(index)
        self._index = {key: index[key] for key in self._keys}
        set_records_indexed(str(self.root), len(self._keys))
        logger.debug(f"Indexed {len(self._keys)} records under {self.root}")
        return self._index

    def _path_timestamp(self, path: Path) -> Optional[int]:
        relative = path.relative_to(self.root)
        if len(relative.parts) != PATH_DEPTH:
            logger.warning(f"Skipping {path}: not in <y>/<m>/<d>/<h>/<m>/<s>{RECORD_EXTENSION} layout")
            record_skipped("path")
            return None
        try:
            return timestamp_from_path(relative)
        except ValueError as e:
            logger.warning(f"Skipping {path}: {e}")
            record_skipped("path")
            return None

    def _snap(self, value: int, upward: bool) -> int:
        """
        Nearest indexed timestamp at or after (upward) / at or before `value`.

        When nothing lies on the requested side, the first (upward) or last
        key is returned instead. 0 for an empty index.
        """
        keys = self._keys
        if not keys:
            return 0
        if upward:
            i = bisect.bisect_left(keys, value)
            return keys[i] if i < len(keys) else keys[0]
        i = bisect.bisect_right(keys, value) - 1
        return keys[i] if i >= 0 else keys[-1]

    # =========================================================================
    # Queries
    # =========================================================================

    def get_range(self) -> DataRange:
        """Bounds of the indexed data; DataRange(0, 0) if there is none."""
        self.build_index()
        if not self._keys:
            return DataRange()
        return DataRange(start=self._keys[0], end=self._keys[-1])

    def get_data_in_range(self, start: int, end: int) -> dict[int, Path]:
        """Index entries with start <= timestamp <= end, in timestamp order."""
        self.build_index()
        if start > end:
            return {}
        lo = bisect.bisect_left(self._keys, start)
        hi = bisect.bisect_right(self._keys, end)
        return {key: self._index[key] for key in self._keys[lo:hi]}

    def get_stats(self, start: int, end: int, refresh: bool = False) -> DataStats:
        """
        Snapped bounds and entry count for a requested range.

        `range` holds the nearest existing entries to the requested bounds;
        `count` is the number of entries inside the requested bounds as given.
        """
        self.build_index(refresh=refresh)
        snapped = DataRange(start=self._snap(start, upward=True), end=self._snap(end, upward=False))
        return DataStats(range=snapped, count=len(self.get_data_in_range(start, end)))

    def get_records(self, start: int, end: int, refresh: bool = False) -> dict[int, dict[str, Scalar]]:
        """
        Load the records of a range.

        Files that are missing, empty, unparsable, not a JSON object or
        lacking a `timestamp` key are skipped with a warning. The returned
        field maps exclude `timestamp`.

        Returns:
            timestamp -> fields, ordered by timestamp
        """
        self.build_index(refresh=refresh)
        entries = self.get_data_in_range(start, end)
        if not entries:
            return {}

        loaded: dict[int, dict[str, Scalar]] = {}
        workers = min(self.max_workers, len(entries))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="store-load") as pool:
            futures = {pool.submit(load_record_file, path): timestamp for timestamp, path in entries.items()}
            for future in as_completed(futures):
                fields = future.result()
                if fields is None:
                    continue
                with self._merge_lock:
                    loaded[futures[future]] = fields

        return dict(sorted(loaded.items()))

    def get_record(self, timestamp: int) -> Optional[Record]:
        """Load the single record at `timestamp`, if indexed and readable."""
        path = self.build_index().get(timestamp)
        if path is None:
            return None
        fields = load_record_file(path)
        if fields is None:
            return None
        return Record(timestamp=timestamp, fields=fields)

    # =========================================================================
    # Writes
    # =========================================================================

    def path_for(self, timestamp: int) -> Path:
        """Location a record captured at `timestamp` belongs at."""
        return path_for_timestamp(self.root, timestamp)

    def write_record(self, record: Record) -> Path:
        """
        Write a record file atomically, replacing any existing one.

        The cached index is updated in place so readers in this process see
        the record without a re-walk.
        """
        path = self.path_for(record.timestamp)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = path.with_name(path.name + TEMP_SUFFIX)
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(record.to_document(), f, sort_keys=True)
        os.replace(tmp_path, path)

        with self._merge_lock:
            self.build_index()
            if record.timestamp not in self._index:
                bisect.insort(self._keys, record.timestamp)
                self._index = {key: self._index.get(key, path) for key in self._keys}
            self._index[record.timestamp] = path
        return path


def load_record_file(path: Path) -> Optional[dict[str, Scalar]]:
    """
    Read one record file.

    Returns:
        The record's fields without `timestamp`, or None if the file is
        missing, empty or corrupt
    """
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Skipping {path}: {e}")
        record_skipped("corrupt")
        return None

    if not content.strip():
        logger.warning(f"Skipping {path}: empty file")
        record_skipped("corrupt")
        return None

    try:
        document = json.loads(content)
    except ValueError as e:
        logger.warning(f"Skipping {path}: invalid JSON ({e})")
        record_skipped("corrupt")
        return None

    if not isinstance(document, dict) or TIMESTAMP_KEY not in document:
        logger.warning(f"Skipping {path}: not a record object with '{TIMESTAMP_KEY}'")
        record_skipped("corrupt")
        return None

    return {key: value for key, value in document.items() if key != TIMESTAMP_KEY}

"""
Reading Indexer Path Encoding

A record's capture time is encoded in its location:

    <root>/<year>/<month>/<day>/<hour>/<minute>/<second>.json

All components are plain UTC integers without zero padding. On the store
side this path is the only trusted source of a record's timestamp. Archivers
and cleaners over arbitrary trees (logs, exports) may use the file
modification time instead, see `file_timestamp`.
"""

from datetime import datetime, timezone
from pathlib import Path

from .constants import PATH_DEPTH, RECORD_EXTENSION
from .types import TimestampSource


def timestamp_from_path(path: Path) -> int:
    """
    Decode the capture time of a record file from its last six path segments.

    Raises:
        ValueError: path is not a `.json` file inside a 6-level integer tree,
            or the segments do not form a valid calendar date.
    """
    path = Path(path)
    if path.suffix != RECORD_EXTENSION:
        raise ValueError(f"not a record file: {path}")

    parts = path.parts
    if len(parts) < PATH_DEPTH:
        raise ValueError(f"path too shallow for record layout: {path}")

    segments = list(parts[-PATH_DEPTH:-1]) + [path.stem]
    if not all(s.isdigit() for s in segments):
        raise ValueError(f"non-integer path segment in {path}")

    year, month, day, hour, minute, second = (int(s) for s in segments)
    moment = datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    return int(moment.timestamp())


def file_timestamp(root: Path, path: Path, source: TimestampSource = TimestampSource.PATH) -> int:
    """
    Timestamp of any file below `root`.

    With `TimestampSource.PATH` the six segments below `root` are decoded
    whatever the file's extension; with `TimestampSource.MTIME` the
    modification time is used, truncated to seconds.

    Raises:
        ValueError: path mode and the file is not in the time-encoded layout
        OSError: mtime mode and the file cannot be stat'ed
    """
    path = Path(path)
    if source == TimestampSource.MTIME:
        return int(path.stat().st_mtime)
    relative = path.relative_to(root)
    if len(relative.parts) != PATH_DEPTH:
        raise ValueError(f"not in time-encoded layout: {relative}")
    return timestamp_from_path(relative.with_suffix(RECORD_EXTENSION))


def path_for_timestamp(root: Path, timestamp: int) -> Path:
    """Location of the record captured at `timestamp` inside `root`."""
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return (
        Path(root)
        / str(moment.year)
        / str(moment.month)
        / str(moment.day)
        / str(moment.hour)
        / str(moment.minute)
        / f"{moment.second}{RECORD_EXTENSION}"
    )


def align_timestamp(timestamp: int, period: int) -> int:
    """Floor a timestamp to the start of its aggregation interval."""
    return (timestamp // period) * period


def prune_empty_dirs(root: Path) -> int:
    """
    Remove empty directories below `root` (never `root` itself).

    Returns:
        Number of directories removed
    """
    root = Path(root)
    if not root.is_dir():
        return 0
    removed = 0
    # Deepest first so parents empty out before they are visited
    for directory in sorted((p for p in root.rglob("*") if p.is_dir()), key=lambda p: len(p.parts), reverse=True):
        try:
            directory.rmdir()
            removed += 1
        except OSError:
            continue
    return removed

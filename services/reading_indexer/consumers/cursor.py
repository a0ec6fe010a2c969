"""
Consumer Cursor Stores

Durable resume markers kept in a consumer's private status directory as
`<status>/last_record`.

Two shapes:
- ArchiveCursorStore: one text line "<timestamp> <identity>"
- RecordCursorStore: JSON document of the last emitted record

A cursor is only ever saved after its batch was confirmed by the sink, and
saves replace the file atomically so a crash never leaves a torn marker.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Generic, Optional, TypeVar

from ..core.constants import CURSOR_FILE_NAME, TEMP_SUFFIX, TIMESTAMP_KEY
from ..core.types import ArchiveCursor, Record


logger = logging.getLogger(__name__)

CursorT = TypeVar("CursorT")


class CursorStore(ABC, Generic[CursorT]):
    """Load/save of one consumer's cursor."""

    def __init__(self, status_path: str | Path):
        self.status_path = Path(status_path)

    @property
    def path(self) -> Path:
        return self.status_path / CURSOR_FILE_NAME

    def load(self) -> Optional[CursorT]:
        """
        Read the cursor.

        Returns:
            The cursor, or None if none was saved yet or the file is unreadable
            (logged; the consumer then starts from the beginning)
        """
        if not self.path.exists():
            return None
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.error(f"Could not read cursor {self.path}: {e}")
            return None
        if not content:
            return None
        try:
            return self.decode(content)
        except ValueError as e:
            logger.error(f"Could not parse cursor {self.path}: {e}")
            return None

    def save(self, cursor: CursorT) -> None:
        """Atomically replace the cursor file."""
        self.status_path.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(CURSOR_FILE_NAME + TEMP_SUFFIX)
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(self.encode(cursor))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)

    @abstractmethod
    def encode(self, cursor: CursorT) -> str:
        ...

    @abstractmethod
    def decode(self, content: str) -> CursorT:
        ...


class ArchiveCursorStore(CursorStore[ArchiveCursor]):
    """(timestamp, identity) cursor of a file archiver."""

    def encode(self, cursor: ArchiveCursor) -> str:
        return f"{cursor.timestamp} {cursor.identity}"

    def decode(self, content: str) -> ArchiveCursor:
        line = content.splitlines()[0]
        timestamp, _, identity = line.partition(" ")
        if not identity:
            raise ValueError(f"expected '<timestamp> <identity>', got {line!r}")
        return ArchiveCursor(timestamp=int(timestamp), identity=identity)


class RecordCursorStore(CursorStore[Record]):
    """Last-emitted-record cursor of a persister (also its dedup baseline)."""

    def encode(self, cursor: Record) -> str:
        return json.dumps(cursor.to_document(), sort_keys=True)

    def decode(self, content: str) -> Record:
        document = json.loads(content)
        if not isinstance(document, dict) or TIMESTAMP_KEY not in document:
            raise ValueError(f"cursor is not a record with '{TIMESTAMP_KEY}'")
        fields = {k: v for k, v in document.items() if k != TIMESTAMP_KEY}
        return Record(timestamp=int(document[TIMESTAMP_KEY]), fields=fields)

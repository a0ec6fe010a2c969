# Reading Indexer Consumers
"""
Incremental, cursor-driven consumers of time-indexed trees.

Components:
- FileArchiver: Forward files to copy/zip/FTP sinks
- RecordPersister: Forward records to a database sink with deduplication
- RetentionCleaner: Remove files every consumer has moved past
- ArchiveCursorStore / RecordCursorStore: Durable resume markers
"""

from .cursor import ArchiveCursorStore, CursorStore, RecordCursorStore
from .archiver import ArchiverConfig, FileArchiver
from .persister import ColumnDefinition, PersisterConfig, RecordPersister, convert_value
from .cleaner import CleanupResult, RetentionCleaner

__all__ = [
    "ArchiveCursorStore",
    "CursorStore",
    "RecordCursorStore",
    "ArchiverConfig",
    "FileArchiver",
    "ColumnDefinition",
    "PersisterConfig",
    "RecordPersister",
    "convert_value",
    "CleanupResult",
    "RetentionCleaner",
]

# Reading Indexer Store
"""
File-backed time-indexed record store.

Components:
- TimeIndexedStore: Cached timestamp -> path index with range queries
- load_record_file: Tolerant single-file record reader
"""

from .time_indexed_store import TimeIndexedStore, load_record_file

__all__ = [
    "TimeIndexedStore",
    "load_record_file",
]

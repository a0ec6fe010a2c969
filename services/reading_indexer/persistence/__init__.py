# Reading Indexer Persistence
# PostgreSQL storage for persisted readings

"""
Persistence module for storing readings in PostgreSQL.

Components:
- ReadingRepository: Table creation and hash-keyed batch inserts
- DatabasePool: Connection pool management
"""

from .repository import ReadingRepository, quote_identifier
from .pool import DatabasePool

__all__ = [
    "ReadingRepository",
    "quote_identifier",
    "DatabasePool",
]

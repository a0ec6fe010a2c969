# Reading Indexer Sinks
"""
Delivery targets for the cursor consumers.

Components:
- Sink: Abstract async open/write/close interface
- CopySink: Mirror files into a destination tree
- ZipSink: One zip archive per run
- ExtractSink: Unpack zip archives back into a tree
- FtpSink: Upload files to an FTP server
- DatabaseSink: Hash-keyed inserts into PostgreSQL
"""

from .base import ArchiveItem, PersistRow, Sink
from .copy import CopySink
from .database import DatabaseSink
from .extract import ExtractSink
from .ftp import FtpSink
from .zip import ZipSink

__all__ = [
    "ArchiveItem",
    "PersistRow",
    "Sink",
    "CopySink",
    "DatabaseSink",
    "ExtractSink",
    "FtpSink",
    "ZipSink",
]

"""
Extract Sink

Unpacks archived zip files back into a tree, the inverse of ZipSink. Run
by an archiver over a directory of zip archives, so every archive is
extracted exactly once and the cursor only moves after its entries are on
disk.
"""

import asyncio
import logging
import os
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import Optional, Sequence

from ..core.constants import TEMP_SUFFIX
from ..core.errors import SinkError
from .base import ArchiveItem, Sink


logger = logging.getLogger(__name__)


class ExtractSink(Sink[ArchiveItem]):
    """
    Extracts every zip in a batch into `destination`.

    Entries keep their archived relative path and replace existing files.
    Each entry is written under a temporary name and renamed when complete.
    Entries that would land outside the destination (absolute paths, `..`)
    are skipped with a warning.
    """

    def __init__(self, name: str, destination: str | Path):
        super().__init__(name)
        self.destination = Path(destination)
        self.extracted_files = 0

    async def open(self) -> None:
        self.extracted_files = 0
        try:
            await asyncio.to_thread(self.destination.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise SinkError(f"[{self.name}] Cannot create destination {self.destination}: {e}") from e

    async def write(self, batch: Sequence[ArchiveItem]) -> bool:
        try:
            for item in batch:
                count = await asyncio.to_thread(self._extract, item.path)
                self.extracted_files += count
                logger.debug(f"[{self.name}] Extracted {count} files from {item.relative_path}")
        except (OSError, zipfile.BadZipFile) as e:
            raise SinkError(f"[{self.name}] Extraction failed: {e}") from e
        logger.info(f"[{self.name}] Extracted {self.extracted_files} files from {len(batch)} archives")
        return True

    def target_for(self, entry_name: str) -> Optional[Path]:
        """Destination of a zip entry, or None if it would escape the destination."""
        entry = PurePosixPath(entry_name)
        if entry.is_absolute() or ".." in entry.parts or not entry.parts:
            return None
        return self.destination.joinpath(*entry.parts)

    def _extract(self, archive_path: Path) -> int:
        count = 0
        with zipfile.ZipFile(archive_path) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                target = self.target_for(info.filename)
                if target is None:
                    logger.warning(f"[{self.name}] Skipping unsafe entry {info.filename!r} in {archive_path}")
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                tmp_target = target.with_name(target.name + TEMP_SUFFIX)
                try:
                    with archive.open(info) as src, open(tmp_target, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                    os.replace(tmp_target, target)
                finally:
                    if tmp_target.exists():
                        tmp_target.unlink()
                count += 1
        return count

"""
Copy Sink

Mirrors archived files into a destination tree, keeping their paths
relative to the source root.
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Sequence

from ..core.constants import TEMP_SUFFIX
from ..core.errors import SinkError
from ..core.types import OverwriteRule
from .base import ArchiveItem, Sink


logger = logging.getLogger(__name__)


class CopySink(Sink[ArchiveItem]):
    """
    Copies each item to `<destination>/<relative path>`.

    Existing destination files are handled per OverwriteRule:
    - overwrite: always replace
    - overwrite_if_new: replace only if the source is newer (mtime)
    - skip: keep the existing file

    Each copy lands under a temporary name and is renamed into place, so a
    destination file is never observed half-written.
    """

    def __init__(self, name: str, destination: str | Path, overwrite: OverwriteRule = OverwriteRule.OVERWRITE_IF_NEW):
        super().__init__(name)
        self.destination = Path(destination)
        self.overwrite = overwrite
        self.copied = 0
        self.skipped = 0

    async def open(self) -> None:
        try:
            await asyncio.to_thread(self.destination.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise SinkError(f"[{self.name}] Cannot create destination {self.destination}: {e}") from e

    async def write(self, batch: Sequence[ArchiveItem]) -> bool:
        try:
            await asyncio.to_thread(self._copy_all, batch)
        except OSError as e:
            raise SinkError(f"[{self.name}] Copy failed: {e}") from e
        return True

    def _copy_all(self, batch: Sequence[ArchiveItem]) -> None:
        for item in batch:
            target = self.destination / item.relative_path
            if not self._should_write(item.path, target):
                self.skipped += 1
                logger.debug(f"[{self.name}] Keeping existing {target}")
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp_target = target.with_name(target.name + TEMP_SUFFIX)
            shutil.copy2(item.path, tmp_target)
            os.replace(tmp_target, target)
            self.copied += 1

    def _should_write(self, source: Path, target: Path) -> bool:
        if not target.exists():
            return True
        if self.overwrite == OverwriteRule.OVERWRITE:
            return True
        if self.overwrite == OverwriteRule.OVERWRITE_IF_NEW:
            return source.stat().st_mtime > target.stat().st_mtime
        return False

"""
Zip Sink

Packs each archiver run into a single zip file named after the archiver
and the run time.
"""

import asyncio
import logging
import os
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from ..core.constants import TEMP_SUFFIX
from ..core.errors import SinkError
from .base import ArchiveItem, Sink


logger = logging.getLogger(__name__)


class ZipSink(Sink[ArchiveItem]):
    """
    Writes one `<name>_<UTC time>.zip` per batch.

    Entries keep their path relative to the source root. The archive is
    built under a temporary name and only renamed once it is complete, so a
    partial archive never carries the final name.
    """

    def __init__(self, name: str, destination: str | Path, compression: int = zipfile.ZIP_DEFLATED):
        super().__init__(name)
        self.destination = Path(destination)
        self.compression = compression
        self.archive_path: Optional[Path] = None

    async def open(self) -> None:
        try:
            await asyncio.to_thread(self.destination.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise SinkError(f"[{self.name}] Cannot create destination {self.destination}: {e}") from e

    async def write(self, batch: Sequence[ArchiveItem]) -> bool:
        if not batch:
            return True
        try:
            self.archive_path = await asyncio.to_thread(self._build_archive, batch)
        except (OSError, zipfile.BadZipFile) as e:
            raise SinkError(f"[{self.name}] Zip failed: {e}") from e
        logger.info(f"[{self.name}] Wrote {len(batch)} files to {self.archive_path}")
        return True

    def archive_name(self, now: Optional[datetime] = None) -> str:
        moment = now or datetime.now(timezone.utc)
        return f"{self.name}_{moment.strftime('%Y-%m-%d_%H-%M-%S')}.zip"

    def _build_archive(self, batch: Sequence[ArchiveItem]) -> Path:
        base_name = self.archive_name()
        target = self.destination / base_name
        suffix = 1
        while target.exists():
            target = self.destination / f"{base_name[:-len('.zip')]}.{suffix}.zip"
            suffix += 1

        tmp_target = target.with_name(target.name + TEMP_SUFFIX)
        try:
            with zipfile.ZipFile(tmp_target, "w", compression=self.compression) as archive:
                for item in batch:
                    archive.write(item.path, arcname=item.relative_path.as_posix())
            os.replace(tmp_target, target)
        finally:
            if tmp_target.exists():
                tmp_target.unlink()
        return target

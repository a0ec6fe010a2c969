"""
FTP Sink

Uploads archived files to a remote FTP server, keeping their paths
relative to the source root below a configured remote directory.

ftplib is blocking, so every network call runs in a worker thread. The
first failure aborts the batch.
"""

import asyncio
import ftplib
import logging
from pathlib import PurePosixPath
from typing import Optional, Sequence

from ..core.constants import FTP_CONNECT_TIMEOUT, FTP_DEFAULT_PORT, FTP_SOCKET_TIMEOUT, TEMP_SUFFIX
from ..core.errors import SinkError
from .base import ArchiveItem, Sink


logger = logging.getLogger(__name__)


class FtpSink(Sink[ArchiveItem]):
    """
    Binary uploads over a single FTP session per run.

    Each file is stored under a temporary name and renamed once the upload
    completed, so the remote side never sees a truncated file under its
    final name.
    """

    def __init__(
        self,
        name: str,
        host: str,
        port: int = FTP_DEFAULT_PORT,
        username: str = "anonymous",
        password: str = "",
        root_path: str = "/",
        passive: bool = True,
        connect_timeout: float = FTP_CONNECT_TIMEOUT,
        socket_timeout: float = FTP_SOCKET_TIMEOUT,
    ):
        super().__init__(name)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.root_path = root_path
        self.passive = passive
        self.connect_timeout = connect_timeout
        self.socket_timeout = socket_timeout

        self._ftp: Optional[ftplib.FTP] = None
        self._created_dirs: set[str] = set()

    def _make_client(self) -> ftplib.FTP:
        return ftplib.FTP()

    async def open(self) -> None:
        try:
            await asyncio.to_thread(self._connect)
        except ftplib.all_errors as e:
            await self.close()
            raise SinkError(f"[{self.name}] FTP connection to {self.host}:{self.port} failed: {e}") from e
        logger.info(f"[{self.name}] Connected to ftp://{self.host}:{self.port}{self.root_path}")

    def _connect(self) -> None:
        ftp = self._make_client()
        self._ftp = ftp
        ftp.connect(self.host, self.port, timeout=self.connect_timeout)
        ftp.login(self.username, self.password)
        ftp.set_pasv(self.passive)
        if self.root_path not in ("", "/"):
            ftp.cwd(self.root_path)
        # Data connections pick up ftp.timeout; the control socket needs it set directly
        ftp.timeout = self.socket_timeout
        if ftp.sock is not None:
            ftp.sock.settimeout(self.socket_timeout)

    async def write(self, batch: Sequence[ArchiveItem]) -> bool:
        if self._ftp is None:
            raise SinkError(f"[{self.name}] FTP sink is not open")
        try:
            await asyncio.to_thread(self._upload_all, batch)
        except ftplib.all_errors as e:
            raise SinkError(f"[{self.name}] FTP upload failed: {e}") from e
        return True

    def _upload_all(self, batch: Sequence[ArchiveItem]) -> None:
        for item in batch:
            remote = PurePosixPath(item.relative_path.as_posix())
            self._ensure_dirs(remote.parent)
            tmp_remote = str(remote) + TEMP_SUFFIX
            with open(item.path, "rb") as f:
                self._ftp.storbinary(f"STOR {tmp_remote}", f)
            self._ftp.rename(tmp_remote, str(remote))
            logger.debug(f"[{self.name}] Uploaded {item.path} -> {remote}")

    def _ensure_dirs(self, directory: PurePosixPath) -> None:
        current = PurePosixPath()
        for part in directory.parts:
            current = current / part
            key = str(current)
            if key in self._created_dirs:
                continue
            try:
                self._ftp.mkd(key)
            except ftplib.error_perm:
                # Already exists
                pass
            self._created_dirs.add(key)

    async def close(self) -> None:
        ftp, self._ftp = self._ftp, None
        self._created_dirs.clear()
        if ftp is None:
            return
        try:
            await asyncio.to_thread(ftp.quit)
        except ftplib.all_errors as e:
            logger.debug(f"[{self.name}] FTP quit failed ({e}), closing socket")
            ftp.close()

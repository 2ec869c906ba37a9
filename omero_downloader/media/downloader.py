"""
Handles the transfer of single files from the server's file store to disk.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import aiofiles

from omero_downloader.api.protocols import FileStore
from omero_downloader.exceptions import (
    FileIntegrityError,
    LocalIOError,
    RemoteFileNotFoundError,
    TransientRemoteError,
)
from omero_downloader.models.operations import RemoteFileInfo
from omero_downloader.utils.path import create_dir

from .integrity import FileIntegrityChecker

log = logging.getLogger(__name__)


class TransferStatus(Enum):
    DOWNLOADED = "downloaded"
    ALREADY_PRESENT = "already_present"
    FAILED = "failed"


class FailureReason(Enum):
    NOT_FOUND = "not_found"
    INTEGRITY = "integrity"
    NETWORK = "network"


@dataclass(frozen=True)
class TransferResult:
    """What happened when a file was made local."""

    file_id: int
    status: TransferStatus
    path: Optional[Path] = None
    reason: Optional[FailureReason] = None
    detail: str = ""
    bytes_transferred: int = 0

    @property
    def ok(self) -> bool:
        return self.status is not TransferStatus.FAILED


class FileTransferManager:
    """
    Makes remote files present locally, transferring only what is missing.

    Bytes are streamed to a temporary file beside the destination, which is
    renamed into place only once the whole file has arrived and passed the
    integrity check. A failed integrity check is retried once.
    """

    CHUNK_SIZE = 1048576  # 1 MB

    def __init__(self, store: FileStore, max_attempts: int = 2):
        self.store = store
        self.max_attempts = max_attempts

    async def ensure_local(
        self,
        file_id: int,
        local_path: Path,
        info: Optional[RemoteFileInfo] = None,
        on_progress: Optional[Callable[[int, Optional[int]], None]] = None,
    ) -> TransferResult:
        """
        Ensures a valid copy of the remote file exists at ``local_path``.

        Args:
            file_id: The remote file.
            local_path: Where the file belongs locally.
            info: The server's record of the file, fetched if not given.
            on_progress: Called with (bytes so far, expected size) while streaming.

        Raises:
            LocalIOError: If the local filesystem cannot be written.
        """
        try:
            if info is None:
                info = await self.store.file_info(file_id)
        except RemoteFileNotFoundError as e:
            log.warning(f"[yellow]○ Skipping file {file_id}: {e}[/yellow]")
            return TransferResult(file_id, TransferStatus.FAILED, local_path, FailureReason.NOT_FOUND, str(e))

        is_valid = await asyncio.to_thread(
            FileIntegrityChecker.is_valid_copy, local_path, info
        )
        if is_valid:
            log.debug(f"File {file_id} already present at '{local_path}'.")
            return TransferResult(file_id, TransferStatus.ALREADY_PRESENT, local_path)

        try:
            create_dir(local_path.parent)
        except OSError as e:
            raise LocalIOError(f"Cannot create directory '{local_path.parent}': {e}") from e

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                size = await self._transfer(info, local_path, on_progress)
                return TransferResult(
                    file_id, TransferStatus.DOWNLOADED, local_path, bytes_transferred=size
                )
            except RemoteFileNotFoundError as e:
                log.warning(f"[yellow]○ Skipping file {file_id}: {e}[/yellow]")
                return TransferResult(file_id, TransferStatus.FAILED, local_path, FailureReason.NOT_FOUND, str(e))
            except (FileIntegrityError, TransientRemoteError) as e:
                last_error = e
                log.debug(
                    f"Transfer attempt {attempt}/{self.max_attempts} for "
                    f"'{local_path.name}' failed: {e}"
                )

        reason = (
            FailureReason.INTEGRITY
            if isinstance(last_error, FileIntegrityError)
            else FailureReason.NETWORK
        )
        log.error(f"[red]  ✗ Failed:[/] {local_path.name} ({last_error})")
        return TransferResult(
            file_id, TransferStatus.FAILED, local_path, reason, str(last_error)
        )

    async def _transfer(
        self,
        info: RemoteFileInfo,
        final_path: Path,
        on_progress: Optional[Callable[[int, Optional[int]], None]],
    ) -> int:
        """Streams one copy of the file into place and returns its size."""
        temp_path = final_path.with_name(f"{final_path.name}.{info.id}.tmp")
        hasher = FileIntegrityChecker.new_hasher(info)
        bytes_downloaded = 0
        try:
            try:
                async with aiofiles.open(temp_path, "wb") as f:
                    async for chunk in self.store.iter_content(
                        info.id, chunk_size=self.CHUNK_SIZE
                    ):
                        await f.write(chunk)
                        if hasher:
                            hasher.update(chunk)
                        bytes_downloaded += len(chunk)
                        if on_progress:
                            on_progress(bytes_downloaded, info.size)
            except OSError as e:
                raise LocalIOError(f"Cannot write '{temp_path}': {e}") from e

            if info.size is not None and bytes_downloaded != info.size:
                raise FileIntegrityError(
                    f"received {bytes_downloaded} bytes, expected {info.size}"
                )
            if hasher and not FileIntegrityChecker.digest_matches(info, hasher.hexdigest()):
                raise FileIntegrityError("checksum does not match the server's")

            try:
                os.replace(temp_path, final_path)
            except OSError as e:
                raise LocalIOError(f"Cannot move file into '{final_path}': {e}") from e
            return bytes_downloaded
        finally:
            if temp_path.exists():
                try:
                    os.remove(temp_path)
                except OSError as e:
                    log.debug(f"Could not remove temporary file '{temp_path}': {e}")

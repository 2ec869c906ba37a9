"""
Shared fixtures: an in-memory server standing in for ``RemoteSession``.
"""

import asyncio
import hashlib
import io
from typing import Any, Optional

import pytest
from rich.console import Console

from omero_downloader.exceptions import RemoteFileNotFoundError, TransientRemoteError
from omero_downloader.models.config import DownloadConfig
from omero_downloader.models.operations import (
    FindChildren,
    OperationDescriptor,
    RemoteFileInfo,
    RequestStatus,
)


class FakeRemote:
    """
    Query service, operation service and file store backed by dictionaries.

    Requests finish on their first poll.
    """

    def __init__(self) -> None:
        self.children: dict[str, list[int]] = {}
        self.fileset_rows: list[list[Any]] = []
        self.used_files: dict[int, dict[str, Any]] = {}
        self.files: dict[int, tuple[RemoteFileInfo, bytes]] = {}

        self.submitted: list[OperationDescriptor] = []
        self.queries: list[tuple[str, dict[str, Any]]] = []
        self.closed_requests: list[str] = []
        self.content_reads: list[int] = []
        self._responses: dict[str, dict[str, Any]] = {}

        # Seconds to wait before each chunk of content
        self.chunk_delay = 0.0
        # File id -> number of streams to break after their first chunk
        self.broken_streams: dict[int, int] = {}

    def add_fileset(self, fileset_id: int, image_ids: list[int]) -> None:
        self.fileset_rows.extend([fileset_id, i] for i in image_ids)

    def add_file(
        self,
        file_id: int,
        data: bytes,
        name: Optional[str] = None,
        path: str = "",
        checksum: bool = True,
    ) -> RemoteFileInfo:
        info = RemoteFileInfo(
            id=file_id,
            name=name or f"file{file_id}.bin",
            path=path,
            size=len(data),
            hash=hashlib.sha1(data).hexdigest() if checksum else None,
            hash_algorithm="SHA1-160" if checksum else None,
        )
        self.files[file_id] = (info, data)
        return info

    async def projection(self, query: str, params: dict[str, Any]) -> list[list[Any]]:
        self.queries.append((query, params))
        return [list(row) for row in self.fileset_rows]

    async def submit(self, descriptor: OperationDescriptor) -> str:
        handle = f"handle-{len(self.submitted)}"
        self.submitted.append(descriptor)
        if isinstance(descriptor, FindChildren):
            self._responses[handle] = {"type": "FoundChildren", "children": self.children}
        else:
            self._responses[handle] = self.used_files[descriptor.image_id]
        return handle

    async def poll(self, handle: str) -> RequestStatus:
        return RequestStatus(state="finished", response=self._responses[handle])

    async def close_request(self, handle: str) -> None:
        self.closed_requests.append(handle)

    async def file_info(self, file_id: int) -> RemoteFileInfo:
        if file_id not in self.files:
            raise RemoteFileNotFoundError(f"No file with id {file_id}.")
        return self.files[file_id][0]

    async def iter_content(self, file_id: int, offset: int = 0, chunk_size: int = 65536):
        self.content_reads.append(file_id)
        if file_id not in self.files:
            raise RemoteFileNotFoundError(f"No file with id {file_id}.")
        data = self.files[file_id][1][offset:]
        for start in range(0, len(data), 4):
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            if start and self.broken_streams.get(file_id, 0) > 0:
                self.broken_streams[file_id] -= 1
                raise TransientRemoteError(f"Connection reset reading file {file_id}.")
            yield data[start : start + 4]


def used_files(
    binary: list[int],
    companion: list[int] = (),
    other_binary: list[int] = (),
    other_companion: list[int] = (),
) -> dict[str, Any]:
    return {
        "type": "UsedFilesResponse",
        "binary_files_this_series": list(binary),
        "companion_files_this_series": list(companion),
        "binary_files_other_series": list(other_binary),
        "companion_files_other_series": list(other_companion),
    }


def used_files_pre_fs(archived: list[int], companion: list[int] = ()) -> dict[str, Any]:
    return {
        "type": "UsedFilesResponsePreFs",
        "archived_files": list(archived),
        "companion_files": list(companion),
    }


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def quiet_console() -> Console:
    return Console(file=io.StringIO(), width=120)


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides: Any) -> DownloadConfig:
        values: dict[str, Any] = {
            "user": "alice",
            "password": "secret",
            "base_dir": tmp_path / "download",
            "poll_interval": 0.001,
            "max_wait": 0.01,
        }
        values.update(overrides)
        return DownloadConfig(**values)

    return _make

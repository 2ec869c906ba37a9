"""
Contracts of the remote collaborators the download engine relies on.

``RemoteSession`` implements all three over HTTP; tests substitute fakes.
"""

from typing import Any, AsyncIterator, Protocol

from omero_downloader.models.operations import (
    OperationDescriptor,
    RemoteFileInfo,
    RequestStatus,
)


class QueryService(Protocol):
    async def projection(
        self, query: str, params: dict[str, Any]
    ) -> list[list[Any]]: ...


class OperationService(Protocol):
    async def submit(self, descriptor: OperationDescriptor) -> str: ...

    async def poll(self, handle: str) -> RequestStatus: ...

    async def close_request(self, handle: str) -> None: ...


class FileStore(Protocol):
    async def file_info(self, file_id: int) -> RemoteFileInfo: ...

    def iter_content(
        self, file_id: int, offset: int = 0, chunk_size: int = 65536
    ) -> AsyncIterator[bytes]: ...


class RemoteServices(QueryService, OperationService, FileStore, Protocol):
    """Everything a download run needs from one logged-in session."""

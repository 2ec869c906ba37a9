"""
Pydantic models for the asynchronous operations the server runs on our behalf.

Request descriptors are what the client submits; responses are what a finished
request carries. Responses are a tagged union discriminated by their ``type``
field, so each variant is selected explicitly rather than by inspecting the
payload's contents.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from omero_downloader.exceptions import ProtocolMismatchError


class FileRole(str, Enum):
    """The role an original file plays for the image that uses it."""

    BINARY = "binary"
    COMPANION = "companion"


class FileRoleFilter(str, Enum):
    """Which file roles the user asked to download."""

    ALL = "all"
    BINARY_ONLY = "binary"
    COMPANION_ONLY = "companion"

    @classmethod
    def from_flags(cls, only_binary: bool, only_companion: bool) -> "FileRoleFilter":
        if only_binary and only_companion:
            raise ValueError("cannot combine multiple 'only' options")
        if only_binary:
            return cls.BINARY_ONLY
        if only_companion:
            return cls.COMPANION_ONLY
        return cls.ALL

    def accepts(self, role: FileRole) -> bool:
        if self is FileRoleFilter.ALL:
            return True
        return role.value == self.value


# Request descriptors


class FindChildren(BaseModel):
    """Finds the images contained in, or containing, the given targets."""

    type: Literal["FindChildren"] = "FindChildren"
    targets: dict[str, list[int]]
    child_type: str = "Image"
    stop_before: list[str] = Field(default_factory=lambda: ["Roi"])


class UsedFilesRequest(BaseModel):
    """Lists the original files an image is read from."""

    type: Literal["UsedFilesRequest"] = "UsedFilesRequest"
    image_id: int


OperationDescriptor = Union[FindChildren, UsedFilesRequest]


# Responses


class FoundChildren(BaseModel):
    type: Literal["FoundChildren"]
    children: dict[str, list[int]] = Field(default_factory=dict)

    def ids_of(self, child_type: str) -> list[int]:
        return sorted(set(self.children.get(child_type, [])))


class UsedFilesResponse(BaseModel):
    """Files used by an image imported into a fileset (new layout)."""

    type: Literal["UsedFilesResponse"]
    binary_files_this_series: list[int] = Field(default_factory=list)
    binary_files_other_series: list[int] = Field(default_factory=list)
    companion_files_this_series: list[int] = Field(default_factory=list)
    companion_files_other_series: list[int] = Field(default_factory=list)

    def role_files(self, all_series: bool = False) -> list[tuple[int, FileRole]]:
        """
        Tags the image's files with their roles.

        Args:
            all_series: Also include the files of the fileset's other series,
                so that the whole fileset is kept together on disk.
        """
        binary = list(self.binary_files_this_series)
        companion = list(self.companion_files_this_series)
        if all_series:
            binary += self.binary_files_other_series
            companion += self.companion_files_other_series
        return [(f, FileRole.BINARY) for f in binary] + [
            (f, FileRole.COMPANION) for f in companion
        ]


class UsedFilesResponsePreFs(BaseModel):
    """Files used by an image imported before filesets existed (legacy layout)."""

    type: Literal["UsedFilesResponsePreFs"]
    archived_files: list[int] = Field(default_factory=list)
    companion_files: list[int] = Field(default_factory=list)

    def role_files(self, all_series: bool = False) -> list[tuple[int, FileRole]]:
        # Legacy images have no fileset, hence no other series
        return [(f, FileRole.BINARY) for f in self.archived_files] + [
            (f, FileRole.COMPANION) for f in self.companion_files
        ]


class ErrorResponse(BaseModel):
    type: Literal["ERR"]
    category: str = ""
    name: str = ""
    message: str = ""
    parameters: dict[str, str] = Field(default_factory=dict)

    def describe(self) -> str:
        parts = [p for p in (self.category, self.name) if p]
        prefix = "/".join(parts)
        detail = self.message or ", ".join(
            f"{k}={v}" for k, v in sorted(self.parameters.items())
        )
        return f"{prefix}: {detail}" if prefix else detail or "unknown error"


RemoteResponse = Annotated[
    Union[FoundChildren, UsedFilesResponse, UsedFilesResponsePreFs, ErrorResponse],
    Field(discriminator="type"),
]

_RESPONSE_ADAPTER: TypeAdapter[RemoteResponse] = TypeAdapter(RemoteResponse)


def parse_response(raw: Any) -> Union[
    FoundChildren, UsedFilesResponse, UsedFilesResponsePreFs, ErrorResponse
]:
    """
    Validates a raw response payload into one of the known response variants.

    Raises:
        ProtocolMismatchError: If the payload matches no known variant.
    """
    try:
        return _RESPONSE_ADAPTER.validate_python(raw)
    except ValidationError as e:
        raise ProtocolMismatchError(f"Malformed response from server: {e}") from e


class RequestStatus(BaseModel):
    """The state of a submitted request as reported by a poll."""

    state: Literal["pending", "running", "finished"]
    response: Optional[dict[str, Any]] = None

    @property
    def finished(self) -> bool:
        return self.state == "finished"


class RemoteFileInfo(BaseModel):
    """Metadata of an original file held by the server's file store."""

    id: int
    name: str = ""
    path: str = ""
    size: Optional[int] = None
    hash: Optional[str] = None
    hash_algorithm: Optional[str] = None

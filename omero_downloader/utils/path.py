"""
Utilities for laying out downloaded files beneath the base directory.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Tuple

from pathvalidate import sanitize_filename

from omero_downloader.exceptions import BaseDirectoryError, LocalIOError, ProtocolError

log = logging.getLogger(__name__)

DEFAULT_BASE_DIR = "download"
FILESET_DIR = "Fileset"
IMAGE_DIR = "Image"


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def _relative_parts(path: str) -> list[str]:
    """Splits a server-side relative path into safe components."""
    parts = [p for p in path.replace("\\", "/").split("/") if p not in ("", ".")]
    if ".." in parts:
        raise ProtocolError(f"Refusing file path that leaves its fileset: {path}")
    return [sanitize_filename(p, platform="auto") or "_" for p in parts]


class LocalPaths:
    """
    Maps images and their files onto the local directory tree.

    Files of an image in a fileset live under ``Fileset/<fileset id>/``, keeping
    their path within the fileset; files of an image with no fileset live under
    ``Image/<image id>/``. The mapping depends only on its inputs, so a re-run
    finds the files it wrote before.
    """

    def __init__(self, base_dir: Optional[Path | str] = None):
        """
        Args:
            base_dir: Where to download to; defaults to ./download.

        Raises:
            BaseDirectoryError: If the directory cannot be created or written.
        """
        self.base_dir = Path(base_dir or Path.cwd() / DEFAULT_BASE_DIR).expanduser()
        try:
            create_dir(self.base_dir)
        except OSError as e:
            raise BaseDirectoryError(
                f"Cannot create base download directory '{self.base_dir}': {e}"
            ) from e
        if not self.base_dir.is_dir() or not os.access(self.base_dir, os.W_OK | os.X_OK):
            raise BaseDirectoryError(
                f"Base download directory '{self.base_dir}' is not writable."
            )
        self.base_dir = self.base_dir.resolve()

    def fileset_dir(self, container_id: int) -> Path:
        return self.base_dir / FILESET_DIR / str(container_id)

    def image_dir(self, entity_id: int) -> Path:
        return self.base_dir / IMAGE_DIR / str(entity_id)

    def resolve(
        self,
        entity_id: int,
        file_id: int,
        *,
        container_id: Optional[int] = None,
        name: Optional[str] = None,
        path: str = "",
    ) -> Path:
        """
        Returns where the given file of the given image is stored.

        Args:
            entity_id: The image the file belongs to.
            file_id: The file's id, used for the name when none is known.
            container_id: The image's fileset, if it has one.
            name: The file's name on the server.
            path: The file's directory relative to its fileset.
        """
        file_name = sanitize_filename(name or "", platform="auto")
        if file_name in ("", ".", ".."):
            file_name = f"File-{file_id}"
        if container_id is None:
            return self.image_dir(entity_id) / file_name
        return self.fileset_dir(container_id).joinpath(*_relative_parts(path), file_name)

    def ensure_entity_links(self, entity_containers: Iterable[Tuple[int, int]]) -> int:
        """
        Links ``Image/<image id>`` to the directory of the image's fileset.

        Returns:
            The number of links created.

        Raises:
            LocalIOError: If the directories for a link cannot be created.
        """
        created = 0
        for entity_id, container_id in entity_containers:
            link = self.image_dir(entity_id)
            target = Path("..") / FILESET_DIR / str(container_id)
            if link.is_symlink():
                if Path(os.readlink(link)) == target:
                    continue
                link.unlink()
            elif link.exists():
                log.warning(
                    f"[yellow]Not linking image {entity_id}: "
                    f"'{link}' already exists.[/yellow]"
                )
                continue
            try:
                create_dir(link.parent)
                create_dir(self.fileset_dir(container_id))
            except OSError as e:
                raise LocalIOError(
                    f"Cannot create directories to link image {entity_id}: {e}"
                ) from e
            try:
                link.symlink_to(target, target_is_directory=True)
                created += 1
            except OSError as e:
                log.warning(f"[yellow]Cannot link image {entity_id} to its fileset: {e}[/yellow]")
        return created

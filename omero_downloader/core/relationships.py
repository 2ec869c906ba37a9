"""
In-memory bookkeeping of which images, filesets and files a run wants.

Every mutation asserts a fact and only ever moves the graph forward, so
asserting the same fact twice is harmless. Whole-fileset expansion is not
applied when it is asserted: the set of wanted images is derived when it is
read, from the explicitly wanted images and the filesets wanted whole, so the
result does not depend on the order in which memberships arrive.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from omero_downloader.exceptions import RelationshipError
from omero_downloader.models.operations import FileRole

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class WantedFile:
    """A file to download, with the wanted images that own it."""

    file_id: int
    role: FileRole
    owners: tuple[int, ...]


class RelationshipGraph:
    """Tracks targets, filesets, images and the files backing them."""

    def __init__(self) -> None:
        self._explicit: set[int] = set()
        # Image -> fileset id, or None for images with no fileset (legacy layout)
        self._container_of: dict[int, Optional[int]] = {}
        self._members: dict[int, set[int]] = {}
        self._wanted_whole: set[int] = set()
        self._files_of: dict[int, set[int]] = {}
        self._roles: dict[int, FileRole] = {}
        self._fetched: set[int] = set()
        self._sealed = False

    def _check_open(self) -> None:
        if self._sealed:
            raise RelationshipError(
                "The graph is sealed for download; no new relationships can be added."
            )

    def _check_registered(self, entity_id: int) -> None:
        if entity_id not in self._explicit and entity_id not in self._container_of:
            raise RelationshipError(f"Image {entity_id} was never registered.")

    # Mutations

    def assert_wanted_targets(self, ids: Iterable[int]) -> None:
        """Marks the given images as explicitly requested."""
        self._check_open()
        self._explicit.update(ids)

    def assert_container_membership(self, container_id: int, entity_id: int) -> None:
        """Records that the image belongs to the fileset."""
        self._check_open()
        if entity_id in self._container_of and (
            (current := self._container_of[entity_id]) != container_id
        ):
            where = "no fileset" if current is None else f"fileset {current}"
            raise RelationshipError(
                f"Image {entity_id} is already known to belong to {where}, "
                f"not fileset {container_id}."
            )
        self._container_of[entity_id] = container_id
        self._members.setdefault(container_id, set()).add(entity_id)

    def assert_legacy_entity(self, entity_id: int) -> None:
        """Records that the image has no fileset and uses the legacy layout."""
        self._check_open()
        self._check_registered(entity_id)
        if self._container_of.get(entity_id) is not None:
            raise RelationshipError(
                f"Image {entity_id} belongs to fileset {self._container_of[entity_id]}."
            )
        self._container_of[entity_id] = None

    def assert_wanted_container_member(self, entity_id: int) -> None:
        """Wants every image that shares a fileset with the given image."""
        self._check_open()
        if entity_id not in self._container_of:
            raise RelationshipError(
                f"The fileset of image {entity_id} must be known before the whole "
                "fileset can be wanted."
            )
        container_id = self._container_of[entity_id]
        if container_id is None:
            self._explicit.add(entity_id)
        else:
            self._wanted_whole.add(container_id)

    def assert_file_ownership(
        self,
        entity_id: int,
        file_ids: Iterable[int],
        role: FileRole = FileRole.BINARY,
    ) -> None:
        """Records that the image is read from the given files."""
        self._check_open()
        self._check_registered(entity_id)
        owned = self._files_of.setdefault(entity_id, set())
        for file_id in file_ids:
            known_role = self._roles.setdefault(file_id, role)
            if known_role is not role:
                log.debug(
                    f"File {file_id} is {known_role.value} for one image and "
                    f"{role.value} for image {entity_id}; keeping {known_role.value}."
                )
            owned.add(file_id)

    def mark_fetched(self, file_id: int) -> bool:
        """
        Records that the file is present locally.

        Returns:
            True the first time the file is marked, False afterwards.
        """
        if file_id not in self._roles:
            raise RelationshipError(f"File {file_id} is not owned by any image.")
        if file_id in self._fetched:
            return False
        self._fetched.add(file_id)
        return True

    def seal(self) -> None:
        """Forbids further structural changes; the download phase only reads."""
        self._sealed = True

    # Queries

    @property
    def sealed(self) -> bool:
        return self._sealed

    def _wanted(self) -> set[int]:
        wanted = set(self._explicit)
        for container_id in self._wanted_whole:
            wanted.update(self._members.get(container_id, ()))
        return wanted

    def list_wanted_entities(self) -> list[int]:
        """Returns the ids of all wanted images, ascending."""
        return sorted(self._wanted())

    def list_unresolved_entities(self) -> list[int]:
        """Returns wanted images whose fileset membership is not yet known."""
        return sorted(e for e in self._wanted() if e not in self._container_of)

    def list_wanted_files(self) -> list[WantedFile]:
        """
        Returns every file owned by a wanted image, ascending by id, once each.

        Raises:
            RelationshipError: If any wanted image's membership is still unknown.
        """
        unresolved = self.list_unresolved_entities()
        if unresolved:
            raise RelationshipError(
                "Fileset membership is unknown for images "
                + ", ".join(map(str, unresolved))
            )
        owners: dict[int, set[int]] = {}
        for entity_id in self._wanted():
            for file_id in self._files_of.get(entity_id, ()):
                owners.setdefault(file_id, set()).add(entity_id)
        return [
            WantedFile(file_id, self._roles[file_id], tuple(sorted(owners[file_id])))
            for file_id in sorted(owners)
        ]

    def container_of(self, entity_id: int) -> Optional[int]:
        if entity_id not in self._container_of:
            raise RelationshipError(f"Fileset membership of image {entity_id} is unknown.")
        return self._container_of[entity_id]

    def is_using_new_layout(self, entity_id: int) -> bool:
        """Reports whether the image was imported into a fileset."""
        return self.container_of(entity_id) is not None

    def is_required(self, file_id: int) -> bool:
        """Reports whether an explicitly requested image owns the file."""
        return any(
            file_id in self._files_of.get(entity_id, ()) for entity_id in self._explicit
        )

    def is_fetched(self, file_id: int) -> bool:
        return file_id in self._fetched

"""
The main orchestrator: resolves targets to images, maps their filesets and
files, then downloads every wanted file.
"""

import asyncio
import logging
from typing import Any, List, Optional, Union

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)

from omero_downloader.api.protocols import RemoteServices
from omero_downloader.exceptions import (
    ProtocolError,
    RemoteFileNotFoundError,
    TransientRemoteError,
    UsageError,
)
from omero_downloader.media.downloader import (
    FailureReason,
    FileTransferManager,
    TransferResult,
    TransferStatus,
)
from omero_downloader.models.config import DownloadConfig
from omero_downloader.models.operations import (
    FileRoleFilter,
    FindChildren,
    FoundChildren,
    UsedFilesRequest,
    UsedFilesResponse,
    UsedFilesResponsePreFs,
)
from omero_downloader.models.stats import DownloadStats
from omero_downloader.models.targets import Target, group_target_ids
from omero_downloader.utils.formatting import format_ids
from omero_downloader.utils.path import LocalPaths

from .relationships import RelationshipGraph, WantedFile
from .requests import RequestExecutor

log = logging.getLogger(__name__)

FILESET_QUERY = (
    "SELECT fileset.id, id FROM Image WHERE fileset IN "
    "(SELECT fileset FROM Image WHERE id IN (:ids))"
)


def _id_pair(row: List[Any]) -> tuple[int, int]:
    if len(row) != 2 or not all(
        isinstance(v, int) and not isinstance(v, bool) for v in row
    ):
        raise ProtocolError(f"Expected a (fileset id, image id) row, got {row!r}.")
    return row[0], row[1]


class DownloadManager:
    """Orchestrates the entire download process for one session."""

    def __init__(
        self,
        config: DownloadConfig,
        session: RemoteServices,
        paths: LocalPaths,
        console: Optional[Console] = None,
    ):
        """
        Args:
            config: The validated run configuration.
            session: Query service, operation service and file store in one,
                normally a logged-in ``RemoteSession``.
            paths: Layout of the local download directory.
            console: Where progress is displayed.
        """
        self.config = config
        self.session = session
        self.paths = paths
        self.console = console or Console()
        self.graph = RelationshipGraph()
        self.requests = RequestExecutor(session, config.poll_interval, config.max_wait)
        self.transfers = FileTransferManager(session)
        self.stats = DownloadStats()

    async def execute(self, targets: List[Target]) -> DownloadStats:
        """Runs every phase for the given targets and returns the statistics."""
        image_ids = await self.find_target_images(targets)
        await self.map_filesets(image_ids)
        await self.map_files()

        self.graph.seal()
        self.stats.images_wanted = len(self.graph.list_wanted_entities())
        self.paths.ensure_entity_links(
            (image_id, fileset_id)
            for image_id in self.graph.list_wanted_entities()
            if (fileset_id := self.graph.container_of(image_id)) is not None
        )
        await self.download_files()
        return self.stats

    async def find_target_images(self, targets: List[Target]) -> List[int]:
        """Asks the server which images the targets contain."""
        descriptor = FindChildren(targets=group_target_ids(targets))
        with self.console.status("finding target images..."):
            found = await self.requests.execute(
                "finding target images", descriptor, FoundChildren
            )
        image_ids = found.ids_of(descriptor.child_type)
        if not image_ids:
            raise UsageError("no images found")
        log.info(f"Found {len(image_ids)} target images.")
        return image_ids

    async def map_filesets(self, image_ids: List[int]) -> None:
        """Records the fileset of each target image and the images sharing it."""
        self.graph.assert_wanted_targets(image_ids)
        with self.console.status(f"mapping fileset of images {format_ids(image_ids)}..."):
            rows = await self.session.projection(FILESET_QUERY, {"ids": image_ids})
        for row in rows:
            fileset_id, image_id = _id_pair(row)
            self.graph.assert_container_membership(fileset_id, image_id)

        for image_id in self.graph.list_unresolved_entities():
            log.debug(f"Image {image_id} has no fileset.")
            self.graph.assert_legacy_entity(image_id)

        if self.config.whole_fileset:
            for image_id in image_ids:
                self.graph.assert_wanted_container_member(image_id)

        wanted = self.graph.list_wanted_entities()
        if len(wanted) > len(image_ids):
            log.info(
                f"Whole filesets add {len(wanted) - len(image_ids)} further images."
            )

    async def map_files(self) -> None:
        """Records the files each wanted image is read from."""
        role_filter = self.config.role_filter
        # Without a role filter every file of the fileset is kept, all series
        all_series = role_filter is FileRoleFilter.ALL
        for image_id in self.graph.list_wanted_entities():
            description = f"determining files used by image {image_id}"
            request = UsedFilesRequest(image_id=image_id)
            response: Union[UsedFilesResponse, UsedFilesResponsePreFs]
            with self.console.status(f"{description}..."):
                if self.graph.is_using_new_layout(image_id):
                    response = await self.requests.execute(
                        description, request, UsedFilesResponse
                    )
                else:
                    response = await self.requests.execute(
                        description, request, UsedFilesResponsePreFs
                    )

            by_role: dict = {}
            for file_id, role in response.role_files(all_series=all_series):
                if role_filter.accepts(role):
                    by_role.setdefault(role, []).append(file_id)
            for role, file_ids in by_role.items():
                self.graph.assert_file_ownership(image_id, file_ids, role)

    async def download_files(self) -> None:
        """Makes every wanted file present locally."""
        wanted = self.graph.list_wanted_files()
        if not wanted:
            log.warning("[yellow]No files to download.[/yellow]")
            return
        log.info(
            f"Downloading {len(wanted)} files to [dim]{self.paths.base_dir}[/dim]"
        )

        progress = Progress(
            TextColumn("{task.description}", style="cyan"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            console=self.console,
            transient=True,
        )
        with progress:
            if self.config.workers == 1:
                for wanted_file in wanted:
                    await self._download_one(wanted_file, progress)
                return

            semaphore = asyncio.Semaphore(self.config.workers)

            async def bounded(wanted_file: WantedFile) -> None:
                async with semaphore:
                    await self._download_one(wanted_file, progress)

            tasks = [asyncio.ensure_future(bounded(w)) for w in wanted]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

    async def _download_one(self, wanted_file: WantedFile, progress: Progress) -> None:
        file_id = wanted_file.file_id
        if self.graph.is_fetched(file_id):
            return

        owner = wanted_file.owners[0]
        try:
            info = await self.session.file_info(file_id)
        except RemoteFileNotFoundError as e:
            log.warning(f"[yellow]○ Skipping file {file_id}: {e}[/yellow]")
            self._record(wanted_file, TransferResult(
                file_id, TransferStatus.FAILED, reason=FailureReason.NOT_FOUND, detail=str(e)
            ))
            return
        except TransientRemoteError as e:
            log.error(f"[red]  ✗ Cannot look up file {file_id}: {e}[/red]")
            self._record(wanted_file, TransferResult(
                file_id, TransferStatus.FAILED, reason=FailureReason.NETWORK, detail=str(e)
            ))
            return

        local_path = self.paths.resolve(
            owner,
            file_id,
            container_id=self.graph.container_of(owner),
            name=info.name,
            path=info.path,
        )
        task_id = progress.add_task(local_path.name, total=info.size)
        try:
            result = await self.transfers.ensure_local(
                file_id,
                local_path,
                info,
                on_progress=lambda done, _total: progress.update(task_id, completed=done),
            )
        finally:
            progress.remove_task(task_id)
        self._record(wanted_file, result)

    def _record(self, wanted_file: WantedFile, result: TransferResult) -> None:
        if not result.ok:
            self.stats.files_failed += 1
            self.stats.failed_file_ids.append(result.file_id)
            if self.graph.is_required(result.file_id):
                self.stats.required_failures.append(result.file_id)
            return

        self.graph.mark_fetched(result.file_id)
        if result.status is TransferStatus.DOWNLOADED:
            self.stats.files_downloaded += 1
            self.stats.total_size_downloaded += result.bytes_transferred
            log.info(f"  [green]✓[/green] {result.path}")
        else:
            self.stats.files_present += 1
            log.debug(f"  ○ {result.path} (already present)")

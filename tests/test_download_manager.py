"""
End-to-end tests of the download phases against an in-memory server.
"""

import pytest

from omero_downloader.core.download_manager import DownloadManager
from omero_downloader.exceptions import ProtocolError, ProtocolMismatchError, UsageError
from omero_downloader.models.operations import FindChildren, UsedFilesRequest
from omero_downloader.models.targets import parse_targets
from omero_downloader.utils.path import LocalPaths

from .conftest import used_files, used_files_pre_fs


def _manager(remote, config, console):
    return DownloadManager(config, remote, LocalPaths(config.base_dir), console)


@pytest.fixture
def fileset_remote(remote):
    """Fileset 10 holds images 1, 2 and 3; images 1 and 2 share file 42."""
    remote.children = {"Image": [2, 1]}
    remote.add_fileset(10, [1, 2, 3])
    remote.used_files = {
        1: used_files([42], [43]),
        2: used_files([42]),
        3: used_files([44]),
    }
    remote.add_file(42, b"binary shared by 1 and 2", name="plate.tif", path="alice/run1")
    remote.add_file(43, b"companion of 1", name="plate.xml", path="alice/run1")
    remote.add_file(44, b"binary of 3", name="other.tif", path="alice/run1")
    return remote


class TestDownloadManager:
    """Tests for DownloadManager.execute."""

    @pytest.mark.asyncio
    async def test_downloads_files_of_target_images(
        self, fileset_remote, make_config, quiet_console
    ):
        config = make_config()
        manager = _manager(fileset_remote, config, quiet_console)

        stats = await manager.execute(parse_targets(["Image:1,2"]))

        fileset_dir = manager.paths.fileset_dir(10) / "alice" / "run1"
        assert sorted(p.name for p in fileset_dir.iterdir()) == ["plate.tif", "plate.xml"]
        assert stats.images_wanted == 2
        assert stats.files_downloaded == 2
        assert stats.succeeded
        assert sorted(fileset_remote.content_reads) == [42, 43]
        assert manager.paths.image_dir(1).is_symlink()
        assert manager.graph.sealed

    @pytest.mark.asyncio
    async def test_submits_find_children_for_targets(
        self, fileset_remote, make_config, quiet_console
    ):
        manager = _manager(fileset_remote, make_config(), quiet_console)

        await manager.execute(parse_targets(["Image:2", "Image:1"]))

        first = fileset_remote.submitted[0]
        assert isinstance(first, FindChildren)
        assert first.targets == {"Image": [1, 2]}
        assert first.stop_before == ["Roi"]
        used = [d.image_id for d in fileset_remote.submitted if isinstance(d, UsedFilesRequest)]
        assert used == [1, 2]
        assert len(fileset_remote.closed_requests) == len(fileset_remote.submitted)

    @pytest.mark.asyncio
    async def test_whole_fileset_adds_fileset_mates(
        self, fileset_remote, make_config, quiet_console
    ):
        manager = _manager(fileset_remote, make_config(whole_fileset=True), quiet_console)

        stats = await manager.execute(parse_targets(["Image:1"]))

        assert stats.images_wanted == 3
        assert sorted(fileset_remote.content_reads) == [42, 43, 44]

    @pytest.mark.asyncio
    async def test_only_binary_skips_companions(
        self, fileset_remote, make_config, quiet_console
    ):
        manager = _manager(fileset_remote, make_config(only_binary=True), quiet_console)

        await manager.execute(parse_targets(["Image:1"]))

        assert fileset_remote.content_reads == [42]

    @pytest.mark.asyncio
    async def test_unfiltered_download_keeps_other_series_files(
        self, remote, make_config, quiet_console
    ):
        remote.children = {"Image": [1]}
        remote.add_fileset(10, [1])
        remote.used_files = {
            1: used_files([100], [300], other_binary=[200], other_companion=[400])
        }
        for file_id in (100, 200, 300, 400):
            remote.add_file(file_id, b"series data %d" % file_id, path="alice/run2")
        manager = _manager(remote, make_config(), quiet_console)

        stats = await manager.execute(parse_targets(["Image:1"]))

        assert sorted(remote.content_reads) == [100, 200, 300, 400]
        assert stats.files_downloaded == 4

    @pytest.mark.asyncio
    async def test_role_filter_keeps_only_this_series(
        self, remote, make_config, quiet_console
    ):
        remote.children = {"Image": [1]}
        remote.add_fileset(10, [1])
        remote.used_files = {
            1: used_files([100], [300], other_binary=[200], other_companion=[400])
        }
        for file_id in (100, 200, 300, 400):
            remote.add_file(file_id, b"series data %d" % file_id, path="alice/run2")
        manager = _manager(remote, make_config(only_binary=True), quiet_console)

        await manager.execute(parse_targets(["Image:1"]))

        assert remote.content_reads == [100]

    @pytest.mark.asyncio
    async def test_rerun_transfers_nothing(self, fileset_remote, make_config, quiet_console):
        config = make_config()
        await _manager(fileset_remote, config, quiet_console).execute(
            parse_targets(["Image:1,2"])
        )
        fileset_remote.content_reads.clear()

        stats = await _manager(fileset_remote, config, quiet_console).execute(
            parse_targets(["Image:1,2"])
        )

        assert fileset_remote.content_reads == []
        assert stats.files_present == 2
        assert stats.files_downloaded == 0

    @pytest.mark.asyncio
    async def test_parallel_workers(self, fileset_remote, make_config, quiet_console):
        manager = _manager(
            fileset_remote, make_config(workers=4, whole_fileset=True), quiet_console
        )

        stats = await manager.execute(parse_targets(["Image:1"]))

        assert stats.files_downloaded == 3

    @pytest.mark.asyncio
    async def test_legacy_image_goes_under_image_dir(
        self, remote, make_config, quiet_console
    ):
        remote.children = {"Image": [7]}
        remote.used_files = {7: used_files_pre_fs([70], [71])}
        remote.add_file(70, b"archived", name="old.dv")
        remote.add_file(71, b"log", name="old.log")
        manager = _manager(remote, make_config(), quiet_console)

        stats = await manager.execute(parse_targets(["Dataset:5"]))

        image_dir = manager.paths.image_dir(7)
        assert sorted(p.name for p in image_dir.iterdir()) == ["old.dv", "old.log"]
        assert stats.files_downloaded == 2

    @pytest.mark.asyncio
    async def test_legacy_response_for_fileset_image_is_mismatch(
        self, remote, make_config, quiet_console
    ):
        remote.children = {"Image": [5]}
        remote.add_fileset(50, [5])
        remote.used_files = {5: used_files_pre_fs([1])}
        manager = _manager(remote, make_config(), quiet_console)

        with pytest.raises(ProtocolMismatchError):
            await manager.execute(parse_targets(["Image:5"]))
        assert remote.content_reads == []

    @pytest.mark.asyncio
    async def test_no_images_found(self, remote, make_config, quiet_console):
        remote.children = {}
        manager = _manager(remote, make_config(), quiet_console)

        with pytest.raises(UsageError, match="no images found"):
            await manager.execute(parse_targets(["Project:1"]))

    @pytest.mark.asyncio
    async def test_missing_file_of_target_fails_run(
        self, remote, make_config, quiet_console
    ):
        remote.children = {"Image": [7]}
        remote.used_files = {7: used_files_pre_fs([70, 71])}
        remote.add_file(70, b"archived", name="old.dv")
        manager = _manager(remote, make_config(), quiet_console)

        stats = await manager.execute(parse_targets(["Image:7"]))

        assert stats.files_downloaded == 1
        assert stats.failed_file_ids == [71]
        assert stats.required_failures == [71]
        assert not stats.succeeded

    @pytest.mark.asyncio
    async def test_malformed_fileset_row(self, remote, make_config, quiet_console):
        remote.children = {"Image": [5]}
        remote.fileset_rows = [["ten", 5]]
        manager = _manager(remote, make_config(), quiet_console)

        with pytest.raises(ProtocolError):
            await manager.execute(parse_targets(["Image:5"]))

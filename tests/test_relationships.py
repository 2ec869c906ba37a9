"""
Tests for the relationship graph of images, filesets and files.
"""

import random

import pytest

from omero_downloader.core.relationships import RelationshipGraph
from omero_downloader.exceptions import RelationshipError
from omero_downloader.models.operations import FileRole


def _fileset_graph(whole: bool) -> RelationshipGraph:
    """Images 1 and 2 requested; fileset 10 holds images 1, 2 and 3."""
    graph = RelationshipGraph()
    graph.assert_wanted_targets([1, 2])
    for image_id in (1, 2, 3):
        graph.assert_container_membership(10, image_id)
    if whole:
        graph.assert_wanted_container_member(1)
    return graph


class TestWantedEntities:
    """Tests for which images end up wanted."""

    def test_targets_are_deduplicated_and_sorted(self):
        graph = RelationshipGraph()
        graph.assert_wanted_targets([5, 3, 5])
        graph.assert_wanted_targets([1, 3])
        assert graph.list_wanted_entities() == [1, 3, 5]

    def test_fileset_mates_not_wanted_without_whole_fileset(self):
        graph = _fileset_graph(whole=False)
        assert graph.list_wanted_entities() == [1, 2]

    def test_whole_fileset_adds_fileset_mates(self):
        graph = _fileset_graph(whole=True)
        assert graph.list_wanted_entities() == [1, 2, 3]

    def test_whole_fileset_is_independent_of_assertion_order(self):
        graph = RelationshipGraph()
        graph.assert_wanted_targets([1])
        graph.assert_container_membership(10, 1)
        graph.assert_wanted_container_member(1)
        # Membership learned after the fileset was wanted whole still counts
        graph.assert_container_membership(10, 4)
        assert graph.list_wanted_entities() == [1, 4]

    def test_legacy_image_wanted_whole_is_just_itself(self):
        graph = RelationshipGraph()
        graph.assert_wanted_targets([7])
        graph.assert_legacy_entity(7)
        graph.assert_wanted_container_member(7)
        assert graph.list_wanted_entities() == [7]
        assert graph.is_using_new_layout(7) is False

    def test_repeated_assertions_change_nothing(self):
        graph = _fileset_graph(whole=True)
        graph.assert_file_ownership(1, [42])
        before = (graph.list_wanted_entities(), graph.list_wanted_files())

        graph.assert_wanted_targets([1, 2])
        graph.assert_container_membership(10, 3)
        graph.assert_wanted_container_member(1)
        graph.assert_file_ownership(1, [42])

        assert (graph.list_wanted_entities(), graph.list_wanted_files()) == before

    def test_wanted_set_is_targets_plus_whole_filesets(self):
        rng = random.Random(1234)
        for _ in range(50):
            filesets = {
                fs: rng.sample(range(1, 30), rng.randint(1, 4)) for fs in (100, 200, 300)
            }
            membership = {}
            for fs, images in filesets.items():
                for image_id in images:
                    membership.setdefault(image_id, fs)
            targets = rng.sample(sorted(membership), rng.randint(1, len(membership)))
            whole = rng.sample(targets, rng.randint(0, len(targets)))

            graph = RelationshipGraph()
            graph.assert_wanted_targets(targets)
            for image_id, fs in membership.items():
                graph.assert_container_membership(fs, image_id)
            for image_id in whole:
                graph.assert_wanted_container_member(image_id)

            expected = set(targets)
            for image_id in whole:
                fs = membership[image_id]
                expected.update(i for i, f in membership.items() if f == fs)
            assert graph.list_wanted_entities() == sorted(expected)


class TestWantedFiles:
    """Tests for listing the files to download."""

    def test_shared_file_listed_once_with_all_owners(self):
        graph = _fileset_graph(whole=False)
        graph.assert_file_ownership(1, [42, 43])
        graph.assert_file_ownership(2, [42])

        wanted = graph.list_wanted_files()

        assert [w.file_id for w in wanted] == [42, 43]
        assert wanted[0].owners == (1, 2)
        assert wanted[1].owners == (1,)

    def test_files_of_unwanted_images_are_not_listed(self):
        graph = _fileset_graph(whole=False)
        graph.assert_file_ownership(1, [42])
        graph.assert_file_ownership(3, [99])
        assert [w.file_id for w in graph.list_wanted_files()] == [42]

    def test_first_role_seen_is_kept(self):
        graph = _fileset_graph(whole=False)
        graph.assert_file_ownership(1, [42], FileRole.COMPANION)
        graph.assert_file_ownership(2, [42], FileRole.BINARY)
        assert graph.list_wanted_files()[0].role is FileRole.COMPANION

    def test_unresolved_wanted_image_blocks_listing(self):
        graph = RelationshipGraph()
        graph.assert_wanted_targets([1, 2])
        graph.assert_container_membership(10, 1)

        assert graph.list_unresolved_entities() == [2]
        with pytest.raises(RelationshipError, match="2"):
            graph.list_wanted_files()

    def test_required_only_for_explicit_targets(self):
        graph = _fileset_graph(whole=True)
        graph.assert_file_ownership(1, [42])
        graph.assert_file_ownership(3, [99])
        assert graph.is_required(42) is True
        assert graph.is_required(99) is False


class TestFailFast:
    """Tests that out-of-order updates are refused."""

    def test_whole_fileset_needs_known_membership(self):
        graph = RelationshipGraph()
        graph.assert_wanted_targets([1])
        with pytest.raises(RelationshipError):
            graph.assert_wanted_container_member(1)

    def test_file_ownership_needs_registered_image(self):
        graph = RelationshipGraph()
        with pytest.raises(RelationshipError):
            graph.assert_file_ownership(8, [1])

    def test_legacy_needs_registered_image(self):
        graph = RelationshipGraph()
        with pytest.raises(RelationshipError):
            graph.assert_legacy_entity(8)

    def test_conflicting_membership_is_refused(self):
        graph = RelationshipGraph()
        graph.assert_container_membership(10, 1)
        with pytest.raises(RelationshipError, match="fileset 10"):
            graph.assert_container_membership(11, 1)

    def test_image_in_fileset_cannot_become_legacy(self):
        graph = _fileset_graph(whole=False)
        with pytest.raises(RelationshipError):
            graph.assert_legacy_entity(1)

    def test_layout_of_unknown_image_is_an_error(self):
        graph = RelationshipGraph()
        with pytest.raises(RelationshipError):
            graph.is_using_new_layout(1)


class TestSealAndFetch:
    """Tests for the download phase of the graph."""

    def test_sealed_graph_refuses_structural_changes(self):
        graph = _fileset_graph(whole=False)
        graph.seal()
        assert graph.sealed
        with pytest.raises(RelationshipError):
            graph.assert_wanted_targets([4])
        with pytest.raises(RelationshipError):
            graph.assert_container_membership(10, 4)
        with pytest.raises(RelationshipError):
            graph.assert_file_ownership(1, [42])

    def test_mark_fetched_reports_first_time_only(self):
        graph = _fileset_graph(whole=False)
        graph.assert_file_ownership(1, [42])
        graph.seal()

        assert graph.mark_fetched(42) is True
        assert graph.mark_fetched(42) is False
        assert graph.is_fetched(42)

    def test_mark_fetched_unknown_file(self):
        graph = RelationshipGraph()
        with pytest.raises(RelationshipError):
            graph.mark_fetched(42)

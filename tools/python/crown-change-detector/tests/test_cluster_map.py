"""
Tests — Cluster Map
====================
Unit tests for :class:`~crown_change_detector.cluster_map.ClusterMap`.

Test classes:
    TestPoint                    Identity semantics of grid points.
    TestClusterMapCreation       Index allocation and point assignment.
    TestClusterMapQueries        Lookups, centers and growth frontier.
    TestClusterMapMerging        Size-based merge rule.
    TestClusterMapRemoval        Removal, pruning and index non-reuse.
"""

from __future__ import annotations

import pytest

from crown_change_detector.cluster_map import ClusterMap, Point
from shared.python.exceptions import (
    AlreadyAssignedError,
    ClusterNotFoundError,
    PointNotFoundError,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _add_row_cluster(clusters: ClusterMap, size: int, row: int) -> int:
    """Create a cluster of *size* points along *row* starting at column 0."""
    index = clusters.create_cluster(0, row)
    for x in range(1, size):
        clusters.add_point(index, x, row)
    return index


def _assert_partition(clusters: ClusterMap) -> None:
    """Every member point maps back to its own cluster, exactly once."""
    seen: set[tuple[int, int]] = set()
    for index in clusters.cluster_indexes():
        for p in clusters.points(index):
            assert p.key not in seen
            seen.add(p.key)
            assert clusters.cluster_index(p.x, p.y) == index


# ---------------------------------------------------------------------------
# Point
# ---------------------------------------------------------------------------


class TestPoint:
    def test_equality_ignores_elevation(self) -> None:
        assert Point(3, 4, 10.0) == Point(3, 4, 25.0)
        assert hash(Point(3, 4, 10.0)) == hash(Point(3, 4))

    def test_set_deduplicates_by_coordinates(self) -> None:
        assert len({Point(1, 1, 2.0), Point(1, 1, 5.0), Point(1, 2)}) == 2

    def test_distance(self) -> None:
        assert Point(0, 0).distance(Point(3, 4)) == pytest.approx(5.0)


# ---------------------------------------------------------------------------
# Creation and assignment
# ---------------------------------------------------------------------------


class TestClusterMapCreation:
    def test_indexes_are_sequential(self) -> None:
        clusters = ClusterMap()
        assert clusters.create_cluster(0, 0) == 0
        assert clusters.create_cluster(5, 5) == 1
        assert clusters.cluster_indexes() == {0, 1}

    def test_create_on_assigned_point_raises(self) -> None:
        clusters = ClusterMap()
        clusters.create_cluster(2, 2)
        with pytest.raises(AlreadyAssignedError):
            clusters.create_cluster(2, 2)
        assert len(clusters) == 1

    def test_seed_point_keeps_elevation(self) -> None:
        clusters = ClusterMap()
        index = clusters.create_cluster(4, 7, 18.5)
        assert clusters.seed_point(index) == Point(4, 7)
        assert clusters.seed_point(index).z == 18.5

    def test_add_point_appends_in_order(self) -> None:
        clusters = ClusterMap()
        index = clusters.create_cluster(0, 0)
        clusters.add_point(index, 1, 0, 3.0)
        clusters.add_point(index, 0, 1)
        assert clusters.points(index) == (Point(0, 0), Point(1, 0), Point(0, 1))
        assert clusters.points(index)[1].z == 3.0

    def test_add_point_to_unknown_cluster_raises(self) -> None:
        clusters = ClusterMap()
        with pytest.raises(ClusterNotFoundError):
            clusters.add_point(3, 0, 0)
        assert not clusters.is_assigned(0, 0)

    def test_add_point_twice_to_same_cluster_raises(self) -> None:
        clusters = ClusterMap()
        index = clusters.create_cluster(0, 0)
        clusters.add_point(index, 1, 0)
        with pytest.raises(AlreadyAssignedError):
            clusters.add_point(index, 1, 0)
        assert clusters.size(index) == 2

    def test_add_point_owned_by_other_cluster_raises(self) -> None:
        clusters = ClusterMap()
        first = clusters.create_cluster(0, 0)
        second = clusters.create_cluster(5, 5)
        with pytest.raises(AlreadyAssignedError) as excinfo:
            clusters.add_point(second, 0, 0)
        assert excinfo.value.cluster_index == first
        assert clusters.size(second) == 1


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestClusterMapQueries:
    def test_cluster_index_of_unassigned_point_raises(self) -> None:
        clusters = ClusterMap()
        with pytest.raises(PointNotFoundError):
            clusters.cluster_index(9, 9)

    def test_not_found_errors_are_lookup_errors(self) -> None:
        clusters = ClusterMap()
        with pytest.raises(LookupError):
            clusters.points(0)

    def test_center_truncates(self) -> None:
        clusters = ClusterMap()
        index = clusters.create_cluster(0, 0)
        clusters.add_point(index, 1, 0)
        clusters.add_point(index, 1, 3)
        # mean x = 2/3, mean y = 1
        assert clusters.center(index) == Point(0, 1)
        assert clusters.center(index).z is None

    def test_center_truncates_toward_zero_for_negative_coordinates(self) -> None:
        clusters = ClusterMap()
        index = clusters.create_cluster(-1, 0)
        clusters.add_point(index, 0, 0)
        assert clusters.center(index) == Point(0, 0)

    def test_neighbors_of_single_point(self) -> None:
        clusters = ClusterMap()
        index = clusters.create_cluster(5, 5)
        frontier = clusters.neighbors(index)
        assert len(frontier) == 8
        assert Point(5, 5) not in frontier

    def test_neighbors_are_unique(self) -> None:
        clusters = ClusterMap()
        index = clusters.create_cluster(0, 0)
        clusters.add_point(index, 1, 0)
        # 4x3 box around the two points, minus the points themselves
        assert len(clusters.neighbors(index)) == 10

    def test_neighbors_skip_points_of_other_clusters(self) -> None:
        clusters = ClusterMap()
        index = clusters.create_cluster(0, 0)
        clusters.add_point(index, 1, 0)
        clusters.create_cluster(2, 0)
        frontier = clusters.neighbors(index)
        assert len(frontier) == 9
        assert all(not clusters.is_assigned(p.x, p.y) for p in frontier)


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


class TestClusterMapMerging:
    def test_smaller_cluster_is_absorbed(self) -> None:
        clusters = ClusterMap()
        small = _add_row_cluster(clusters, 1, row=0)
        large = _add_row_cluster(clusters, 3, row=2)
        survivor = clusters.merge_clusters(small, large)
        assert survivor == large
        assert clusters.cluster_indexes() == {large}
        assert clusters.size(large) == 4
        assert clusters.cluster_index(0, 0) == large
        _assert_partition(clusters)

    def test_equal_sizes_merge_second_into_first(self) -> None:
        clusters = ClusterMap()
        a = _add_row_cluster(clusters, 2, row=0)
        b = _add_row_cluster(clusters, 2, row=1)
        assert clusters.merge_clusters(a, b) == a
        assert b not in clusters
        assert clusters.seed_point(a) == Point(0, 0)

    def test_merge_preserves_total_points(self) -> None:
        clusters = ClusterMap()
        a = _add_row_cluster(clusters, 4, row=0)
        b = _add_row_cluster(clusters, 3, row=1)
        survivor = clusters.merge_clusters(a, b)
        assert clusters.size(survivor) == 7
        assert clusters.points(survivor)[4:] == (Point(0, 1), Point(1, 1), Point(2, 1))

    def test_merge_with_itself_is_noop(self) -> None:
        clusters = ClusterMap()
        a = _add_row_cluster(clusters, 2, row=0)
        assert clusters.merge_clusters(a, a) == a
        assert clusters.size(a) == 2

    def test_merge_unknown_cluster_raises(self) -> None:
        clusters = ClusterMap()
        a = clusters.create_cluster(0, 0)
        with pytest.raises(ClusterNotFoundError):
            clusters.merge_clusters(a, 42)
        assert clusters.cluster_indexes() == {a}


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------


class TestClusterMapRemoval:
    def test_remove_cluster_frees_points(self) -> None:
        clusters = ClusterMap()
        index = _add_row_cluster(clusters, 3, row=0)
        clusters.remove_cluster(index)
        assert len(clusters) == 0
        assert not clusters.is_assigned(1, 0)
        # freed points can be claimed again
        clusters.create_cluster(1, 0)

    def test_remove_unknown_cluster_raises(self) -> None:
        with pytest.raises(ClusterNotFoundError):
            ClusterMap().remove_cluster(0)

    def test_indexes_are_never_reused(self) -> None:
        clusters = ClusterMap()
        first = clusters.create_cluster(0, 0)
        clusters.remove_cluster(first)
        assert clusters.create_cluster(0, 0) != first

    def test_remove_small_clusters(self) -> None:
        clusters = ClusterMap()
        sizes = {
            _add_row_cluster(clusters, size, row=row * 2): size
            for row, size in enumerate([1, 2, 3, 4])
        }
        assert clusters.remove_small_clusters(3) == 2
        assert sorted(clusters.size(i) for i in clusters.cluster_indexes()) == [3, 4]
        assert {sizes[i] for i in clusters.cluster_indexes()} == {3, 4}
        _assert_partition(clusters)

    def test_remove_small_clusters_on_empty_map(self) -> None:
        assert ClusterMap().remove_small_clusters(5) == 0

    def test_partition_holds_after_mixed_operations(self) -> None:
        clusters = ClusterMap()
        a = _add_row_cluster(clusters, 3, row=0)
        b = _add_row_cluster(clusters, 2, row=1)
        c = _add_row_cluster(clusters, 5, row=2)
        clusters.merge_clusters(a, b)
        clusters.remove_cluster(c)
        d = clusters.create_cluster(9, 9)
        clusters.add_point(d, 0, 2)
        _assert_partition(clusters)
        assert sum(clusters.size(i) for i in clusters.cluster_indexes()) == 7

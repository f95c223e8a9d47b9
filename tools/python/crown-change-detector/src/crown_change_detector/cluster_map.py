"""
Crown Change Detector — Cluster Map
=====================================
A mutable partition of raster grid points into numbered clusters.

Every grid point belongs to at most one cluster.  Clusters are created from
a single seed point, grown with :meth:`ClusterMap.add_point`, combined with
:meth:`ClusterMap.merge_clusters` and pruned with
:meth:`ClusterMap.remove_cluster` / :meth:`ClusterMap.remove_small_clusters`.

Internally the map keeps two indexes:

- an owner map keyed by the integer ``(x, y)`` coordinate pair, giving the
  owning cluster of every assigned point;
- an ordered point list per cluster index.

Cluster indices are handed out from a counter and never reused, so an index
captured before a removal can never alias a cluster created afterwards.

Classes:
    Point       Integer grid coordinate with an optional elevation payload.
    ClusterMap  The partition structure.

Usage::

    from crown_change_detector.cluster_map import ClusterMap

    clusters = ClusterMap()
    tree = clusters.create_cluster(10, 12, 18.4)
    clusters.add_point(tree, 11, 12, 18.1)
    clusters.center(tree)         # Point(x=10, y=12, z=None)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

from shared.python.exceptions import (
    AlreadyAssignedError,
    ClusterNotFoundError,
    DegenerateClusterError,
    PointNotFoundError,
)

logger = logging.getLogger("canopydiff.crown_change_detector.cluster_map")

# 8-connected neighbourhood offsets
_NEIGHBOUR_OFFSETS: tuple[tuple[int, int], ...] = tuple(
    (dx, dy)
    for dy in (-1, 0, 1)
    for dx in (-1, 0, 1)
    if dx != 0 or dy != 0
)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Point:
    """Integer grid coordinate, optionally carrying an elevation.

    Equality and hashing use ``(x, y)`` only; ``z`` is payload, so two
    points at the same cell compare equal whatever their elevation.

    Attributes:
        x: Column index.
        y: Row index.
        z: Elevation at the cell, or ``None`` when not known.
    """

    x: int
    y: int
    z: Optional[float] = field(default=None, compare=False)

    @property
    def key(self) -> tuple[int, int]:
        """The ``(x, y)`` identity tuple."""
        return (self.x, self.y)

    def distance(self, other: Point) -> float:
        """Euclidean distance to *other* in the ``(x, y)`` plane."""
        return float(((self.x - other.x) ** 2 + (self.y - other.y) ** 2) ** 0.5)


def _truncated_mean(total: int, count: int) -> int:
    """Integer mean rounded toward zero."""
    quotient = abs(total) // count
    return quotient if total >= 0 else -quotient


# ---------------------------------------------------------------------------
# Cluster map
# ---------------------------------------------------------------------------


class ClusterMap:
    """Partition of grid points into clusters with unique, never-reused indices.

    All mutating operations validate their arguments first, so a rejected
    call leaves the map unchanged.

    Not safe for concurrent mutation; independent instances may be used from
    different threads.
    """

    def __init__(self) -> None:
        self._members: dict[int, list[Point]] = {}
        self._owners: dict[tuple[int, int], int] = {}
        self._seeds: dict[int, Point] = {}
        self._next_index: int = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def cluster_index(self, x: int, y: int) -> int:
        """Return the index of the cluster owning ``(x, y)``.

        Raises:
            PointNotFoundError: If the point is not assigned.
        """
        try:
            return self._owners[(x, y)]
        except KeyError:
            raise PointNotFoundError(x, y) from None

    def is_assigned(self, x: int, y: int) -> bool:
        """``True`` when ``(x, y)`` belongs to some cluster."""
        return (x, y) in self._owners

    def cluster_indexes(self) -> set[int]:
        """Set of live cluster indices."""
        return set(self._members)

    def points(self, cluster_index: int) -> tuple[Point, ...]:
        """Member points of a cluster in insertion order.

        Raises:
            ClusterNotFoundError: If *cluster_index* is not live.
        """
        return tuple(self._cluster(cluster_index))

    def size(self, cluster_index: int) -> int:
        """Number of points in a cluster."""
        return len(self._cluster(cluster_index))

    def seed_point(self, cluster_index: int) -> Point:
        """The point the cluster was created from.

        The seed of a merged cluster is the seed of the surviving index.
        """
        self._cluster(cluster_index)
        return self._seeds[cluster_index]

    def center(self, cluster_index: int) -> Point:
        """2-D center of mass of a cluster (integer truncation, ``z=None``).

        Raises:
            ClusterNotFoundError: If *cluster_index* is not live.
            DegenerateClusterError: If the cluster holds no points.
        """
        members = self._cluster(cluster_index)
        if not members:
            raise DegenerateClusterError(cluster_index)
        count = len(members)
        return Point(
            _truncated_mean(sum(p.x for p in members), count),
            _truncated_mean(sum(p.y for p in members), count),
        )

    def neighbors(self, cluster_index: int) -> set[Point]:
        """Unassigned 8-connected neighbours of a cluster's points.

        These are the candidate growth frontier; points owned by any cluster,
        this one included, are never returned.
        """
        frontier: set[Point] = set()
        for p in self._cluster(cluster_index):
            for dx, dy in _NEIGHBOUR_OFFSETS:
                key = (p.x + dx, p.y + dy)
                if key not in self._owners:
                    frontier.add(Point(*key))
        return frontier

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_cluster(self, x: int, y: int, z: Optional[float] = None) -> int:
        """Start a new cluster seeded at ``(x, y)`` and return its index.

        Raises:
            AlreadyAssignedError: If the point already belongs to a cluster.
        """
        self._assert_unassigned(x, y)
        index = self._next_index
        self._next_index += 1

        seed = Point(x, y, z)
        self._members[index] = [seed]
        self._owners[seed.key] = index
        self._seeds[index] = seed
        return index

    def add_point(self, cluster_index: int, x: int, y: int, z: Optional[float] = None) -> None:
        """Append ``(x, y)`` to an existing cluster.

        Raises:
            ClusterNotFoundError: If *cluster_index* is not live.
            AlreadyAssignedError: If the point already belongs to any cluster.
        """
        members = self._cluster(cluster_index)
        self._assert_unassigned(x, y)
        members.append(Point(x, y, z))
        self._owners[(x, y)] = cluster_index

    def merge_clusters(self, cluster_a: int, cluster_b: int) -> int:
        """Merge two clusters and return the surviving index.

        The smaller cluster is folded into the larger one.  On equal size
        *cluster_b* is folded into *cluster_a*.  Merging a cluster with
        itself is a no-op.

        Raises:
            ClusterNotFoundError: If either index is not live.
        """
        members_a = self._cluster(cluster_a)
        members_b = self._cluster(cluster_b)
        if cluster_a == cluster_b:
            return cluster_a

        source, target = cluster_b, cluster_a
        if len(members_b) > len(members_a):
            source, target = cluster_a, cluster_b

        moved = self._members.pop(source)
        for p in moved:
            self._owners[p.key] = target
        self._members[target].extend(moved)
        del self._seeds[source]

        logger.debug("Merged cluster %d into %d (%d points).", source, target, len(moved))
        return target

    def remove_cluster(self, cluster_index: int) -> None:
        """Delete a cluster together with all of its point assignments.

        Raises:
            ClusterNotFoundError: If *cluster_index* is not live.
        """
        members = self._cluster(cluster_index)
        for p in members:
            del self._owners[p.key]
        del self._members[cluster_index]
        del self._seeds[cluster_index]

    def remove_small_clusters(self, min_size: int) -> int:
        """Remove every cluster with fewer than *min_size* points.

        Returns:
            The number of clusters removed.
        """
        small = [index for index, members in self._members.items() if len(members) < min_size]
        for index in small:
            self.remove_cluster(index)
        if small:
            logger.debug("Removed %d cluster(s) smaller than %d point(s).", len(small), min_size)
        return len(small)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _cluster(self, cluster_index: int) -> list[Point]:
        try:
            return self._members[cluster_index]
        except KeyError:
            raise ClusterNotFoundError(cluster_index) from None

    def _assert_unassigned(self, x: int, y: int) -> None:
        owner = self._owners.get((x, y))
        if owner is not None:
            raise AlreadyAssignedError(x, y, owner)

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, cluster_index: object) -> bool:
        return cluster_index in self._members

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._members))

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"clusters={len(self._members)}, points={len(self._owners)})"
        )

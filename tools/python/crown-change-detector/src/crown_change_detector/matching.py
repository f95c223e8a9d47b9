"""
Crown Change Detector — Hausdorff Cluster Matching
====================================================
Pairs up the crowns of two independently segmented epochs.

For every cluster ``a`` of map A and ``b`` of map B whose 2-D centers are
closer than ``maximum_distance``, the directed Hausdorff distance

    d(a→b) = max over p in a of (min over q in b of |p - q|)

is computed in both directions.  The two directions generally differ: a
crown that grew between the epochs is far from the old crown in the new→old
direction but close in the old→new one.

Correspondences are then chosen greedily.  Candidate pairs are visited in
ascending ``(max(d(a→b), d(b→a)), a, b)`` order and a pair is accepted when
both directed distances exist and neither cluster was claimed by an earlier
pair, so the closest mutual pairs win and every cluster is matched at most
once.  Clusters left without a partner are *lonely*.

The matcher only reads the two maps.

Usage::

    from crown_change_detector.matching import HausdorffMatcher

    matcher = HausdorffMatcher(clusters_2010, clusters_2019, maximum_distance=9.0)
    matcher.execute()
    for (old, new), distance in matcher.closest().items():
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import numpy.typing as npt
from scipy.spatial.distance import directed_hausdorff

from shared.python.base_tool import ProgressCallback, report_progress
from shared.python.exceptions import DistanceNotFoundError

from crown_change_detector.cluster_map import ClusterMap, Point

logger = logging.getLogger("canopydiff.crown_change_detector.matching")

IndexPair = tuple[int, int]


@dataclass(frozen=True)
class Correspondence:
    """One matched crown across the two epochs.

    Attributes:
        index_a: Cluster index in map A.
        index_b: Cluster index in map B.
        distance: Directed Hausdorff distance ``d(a→b)`` in grid cells.
        reverse_distance: Directed Hausdorff distance ``d(b→a)``.
    """

    index_a: int
    index_b: int
    distance: float
    reverse_distance: float

    @property
    def symmetric_distance(self) -> float:
        """The undirected Hausdorff distance."""
        return max(self.distance, self.reverse_distance)


def _coordinates(points: tuple[Point, ...]) -> npt.NDArray[np.float64]:
    return np.array([(p.x, p.y) for p in points], dtype=np.float64)


class HausdorffMatcher:
    """Match the clusters of two maps by directed Hausdorff distance.

    Args:
        map_a: Clusters of the first epoch.
        map_b: Clusters of the second epoch.
        maximum_distance: Center-to-center cut-off in grid cells; pairs at or
            beyond it are never compared.
        progress: Optional progress hook.
    """

    def __init__(
        self,
        map_a: ClusterMap,
        map_b: ClusterMap,
        maximum_distance: float = 9.0,
        *,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.map_a = map_a
        self.map_b = map_b
        self.maximum_distance = maximum_distance
        self.progress = progress

        self._forward: dict[IndexPair, float] = {}
        self._backward: dict[IndexPair, float] = {}
        self._matches: list[Correspondence] = []
        self._lonely_a: list[int] = []
        self._lonely_b: list[int] = []

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self) -> None:
        """Compute all distances, the correspondences and the lonely sets."""
        indexes_a = sorted(self.map_a.cluster_indexes())
        indexes_b = sorted(self.map_b.cluster_indexes())
        centers_a = {i: self.map_a.center(i) for i in indexes_a}
        centers_b = {j: self.map_b.center(j) for j in indexes_b}
        coords_a = {i: _coordinates(self.map_a.points(i)) for i in indexes_a}
        coords_b = {j: _coordinates(self.map_b.points(j)) for j in indexes_b}

        self._forward.clear()
        self._backward.clear()
        for n, i in enumerate(indexes_a, start=1):
            for j in indexes_b:
                if centers_a[i].distance(centers_b[j]) >= self.maximum_distance:
                    continue
                self._forward[(i, j)] = float(directed_hausdorff(coords_a[i], coords_b[j])[0])
                self._backward[(i, j)] = float(directed_hausdorff(coords_b[j], coords_a[i])[0])
            report_progress(self.progress, n / len(indexes_a), "Hausdorff distances")

        self._matches = self._select_matches()
        matched_a = {m.index_a for m in self._matches}
        matched_b = {m.index_b for m in self._matches}
        self._lonely_a = [i for i in indexes_a if i not in matched_a]
        self._lonely_b = [j for j in indexes_b if j not in matched_b]

        logger.info(
            "Compared %d cluster pair(s): %d match(es), %d lonely in A, %d lonely in B.",
            len(self._forward), len(self._matches), len(self._lonely_a), len(self._lonely_b),
        )

    def _select_matches(self) -> list[Correspondence]:
        """Greedy one-to-one matching.

        Pairs with both directed distances are visited in ascending
        ``(max(d(a→b), d(b→a)), a, b)`` order; a pair is accepted unless its
        A cluster or its B cluster was already claimed by an earlier pair.
        """
        candidates = sorted(
            (
                (max(distance, self._backward[pair]), pair)
                for pair, distance in self._forward.items()
                if pair in self._backward
            ),
        )
        claimed_a: set[int] = set()
        claimed_b: set[int] = set()
        matches: list[Correspondence] = []
        for _, (i, j) in candidates:
            if i in claimed_a or j in claimed_b:
                continue
            claimed_a.add(i)
            claimed_b.add(j)
            matches.append(Correspondence(i, j, self._forward[(i, j)], self._backward[(i, j)]))
        matches.sort(key=lambda m: (m.index_a, m.index_b))
        return matches

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def cluster_distance(self, index_a: int, index_b: int) -> float:
        """Directed distance ``d(a→b)``.

        Raises:
            DistanceNotFoundError: If the pair was not compared.
        """
        try:
            return self._forward[(index_a, index_b)]
        except KeyError:
            raise DistanceNotFoundError(index_a, index_b) from None

    def reverse_distance(self, index_a: int, index_b: int) -> float:
        """Directed distance ``d(b→a)``, keyed by the same ``(a, b)`` pair.

        Raises:
            DistanceNotFoundError: If the pair was not compared.
        """
        try:
            return self._backward[(index_a, index_b)]
        except KeyError:
            raise DistanceNotFoundError(index_a, index_b) from None

    def closest_cluster(self, index_a: int) -> int:
        """The B cluster with the smallest ``d(a→b)``; ties go to the lower index.

        Raises:
            DistanceNotFoundError: If *index_a* has no recorded distances.
        """
        options = [(d, j) for (i, j), d in self._forward.items() if i == index_a]
        if not options:
            raise DistanceNotFoundError(index_a)
        return min(options)[1]

    def distances(self) -> dict[IndexPair, float]:
        """All directed A→B distances, keyed by ``(a, b)``."""
        return dict(sorted(self._forward.items()))

    def reverse_distances(self) -> dict[IndexPair, float]:
        """All directed B→A distances, keyed by ``(a, b)``."""
        return dict(sorted(self._backward.items()))

    def closest(self) -> dict[IndexPair, float]:
        """Accepted correspondences mapped to their ``d(a→b)``."""
        return {(m.index_a, m.index_b): m.distance for m in self._matches}

    @property
    def correspondences(self) -> list[Correspondence]:
        """Accepted correspondences ordered by ``(a, b)``."""
        return list(self._matches)

    def lonely_a(self) -> list[int]:
        """Indices of map A without a correspondence."""
        return list(self._lonely_a)

    def lonely_b(self) -> list[int]:
        """Indices of map B without a correspondence."""
        return list(self._lonely_b)

"""
Crown Change Detector — Tree Crown Segmentation
=================================================
Region-growing segmentation of a canopy height grid into tree crowns.

One cluster is created per seed point (a local maximum of the canopy).  Each
round then:

1. computes every cluster's *expansion set*: unassigned 8-connected
   neighbours that hold elevation data, lie within
   ``max_horizontal_distance`` of the cluster's 2-D center, and differ from
   the seed elevation by at most the current vertical tolerance;
2. schedules a merge for each pair of clusters whose expansion sets share a
   point low enough relative to both seeds (see :func:`seed_height_ratio`),
   with every cluster taking part in at most one merge per round;
3. applies the merges;
4. hands each expansion point to its (possibly merged) cluster, unless an
   earlier cluster in ascending index order already claimed it.

The vertical tolerance starts at ``initial_vertical_distance`` and grows by
``increase_vertical_distance`` per round up to ``max_vertical_distance``.  The
run stops after a round at the ceiling tolerance that added no points.

Classes:
    SegmentationConfig   Tolerances and the round cap.
    CrownSegmentation    The segmentation engine.

Usage::

    from crown_change_detector.grid import ArrayElevationGrid
    from crown_change_detector.segmentation import CrownSegmentation

    segmentation = CrownSegmentation(ArrayElevationGrid(chm), seeds)
    clusters = segmentation.execute()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from shared.python.base_tool import ProgressCallback, report_progress
from shared.python.exceptions import (
    NonConvergenceError,
    SeedPointError,
    SegmentationConfigError,
)

from crown_change_detector.cluster_map import ClusterMap, Point
from crown_change_detector.grid import ElevationGrid

logger = logging.getLogger("canopydiff.crown_change_detector.segmentation")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class SegmentationConfig:
    """Configuration for :class:`CrownSegmentation`.

    Attributes:
        initial_vertical_distance: Vertical tolerance of the first round,
            in elevation units.
        max_vertical_distance: Ceiling of the vertical tolerance.
        increase_vertical_distance: Tolerance step added after every round.
        max_horizontal_distance: Hard radius, in cells, around a cluster's
            center beyond which it never grows.
        max_rounds: Rounds allowed before :class:`NonConvergenceError`.
    """

    initial_vertical_distance: float = 0.5
    max_vertical_distance: float = 14.0
    increase_vertical_distance: float = 0.5
    max_horizontal_distance: float = 12.0
    max_rounds: int = 1000

    def validate(self) -> None:
        """Check the settings can produce a terminating run.

        Raises:
            SegmentationConfigError: On negative distances, an initial
                tolerance above the ceiling, a non-positive step that could
                never reach the ceiling, or a round cap below 1.
        """
        for name in (
            "initial_vertical_distance",
            "max_vertical_distance",
            "increase_vertical_distance",
            "max_horizontal_distance",
        ):
            if getattr(self, name) < 0:
                raise SegmentationConfigError(
                    f"Setting '{name}' must not be negative (got {getattr(self, name)})."
                )
        if self.initial_vertical_distance > self.max_vertical_distance:
            raise SegmentationConfigError(
                "initial_vertical_distance "
                f"({self.initial_vertical_distance}) exceeds max_vertical_distance "
                f"({self.max_vertical_distance})."
            )
        if (
            self.increase_vertical_distance <= 0
            and self.initial_vertical_distance < self.max_vertical_distance
        ):
            raise SegmentationConfigError(
                "increase_vertical_distance must be positive while the initial "
                "tolerance is below the ceiling."
            )
        if self.max_rounds < 1:
            raise SegmentationConfigError(f"max_rounds must be at least 1 (got {self.max_rounds}).")


# ---------------------------------------------------------------------------
# Merge criterion
# ---------------------------------------------------------------------------


def seed_height_ratio(seed_a: float, seed_b: float, point: float) -> Optional[float]:
    """Normalised depth of *point* below two seeds.

    ``((seed_a - point) + (seed_b - point)) / min(seed_a, seed_b)``.  Two
    crowns sharing a frontier point whose ratio is below 1.0 are treated as
    one tree.  Returns ``None`` when the lower seed is exactly zero; negative
    seeds (surfaces below sea level) use the formula as is.
    """
    lower = min(seed_a, seed_b)
    if lower == 0:
        return None
    return ((seed_a - point) + (seed_b - point)) / lower


# ---------------------------------------------------------------------------
# Segmentation engine
# ---------------------------------------------------------------------------


class CrownSegmentation:
    """Grow one cluster per seed point over an elevation grid.

    The engine owns the resulting :class:`ClusterMap`; callers borrow it
    through :attr:`cluster_map`.

    Args:
        grid: Elevation accessor, normally a canopy height model.
        seed_points: Local maxima to grow from.  A seed's ``z`` is replaced
            by the grid value at its cell.
        config: Tolerances and the round cap.
        progress: Optional progress hook, called once per round.

    Raises:
        SeedPointError: If a seed has no elevation data at its own cell.
        SegmentationConfigError: If *config* is inconsistent.
    """

    def __init__(
        self,
        grid: ElevationGrid,
        seed_points: Iterable[Point],
        config: SegmentationConfig | None = None,
        *,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.grid = grid
        self.config = config or SegmentationConfig()
        self.config.validate()
        self.progress = progress

        self._seeds: list[Point] = []
        for seed in seed_points:
            if not grid.has_data(seed.x, seed.y):
                raise SeedPointError(seed.x, seed.y)
            self._seeds.append(Point(seed.x, seed.y, grid.data(seed.x, seed.y)))

        self._clusters = ClusterMap()
        self._rounds = 0
        self._executed = False

    @property
    def cluster_map(self) -> ClusterMap:
        """The clusters produced by :meth:`execute` (empty before)."""
        return self._clusters

    @property
    def rounds(self) -> int:
        """Number of growth rounds the last run needed."""
        return self._rounds

    @property
    def seed_points(self) -> list[Point]:
        """The seeds with their grid elevation filled in."""
        return list(self._seeds)

    def execute(self) -> ClusterMap:
        """Run the segmentation to its fixed point and return the cluster map.

        Calling it again returns the existing result.  A failed run leaves
        an empty cluster map and zero rounds behind, so it can be retried.

        Raises:
            NonConvergenceError: If ``max_rounds`` rounds pass without
                reaching the fixed point.
        """
        if self._executed:
            return self._clusters

        self._clusters = ClusterMap()
        self._rounds = 0

        for seed in self._seeds:
            if self._clusters.is_assigned(seed.x, seed.y):
                logger.warning("Duplicate seed at (%d, %d) ignored.", seed.x, seed.y)
                continue
            self._clusters.create_cluster(seed.x, seed.y, seed.z)

        cfg = self.config
        tolerance = cfg.initial_vertical_distance
        while True:
            if self._rounds >= cfg.max_rounds:
                rounds = self._rounds
                self._clusters = ClusterMap()
                self._rounds = 0
                raise NonConvergenceError(rounds)
            self._rounds += 1

            added = self._grow_round(tolerance)
            logger.debug(
                "Round %d: tolerance=%.2f, added=%d, clusters=%d",
                self._rounds, tolerance, added, len(self._clusters),
            )
            report_progress(
                self.progress,
                tolerance / cfg.max_vertical_distance if cfg.max_vertical_distance else 1.0,
                f"Crown segmentation round {self._rounds}",
            )

            if added == 0 and tolerance >= cfg.max_vertical_distance:
                break
            tolerance = min(tolerance + cfg.increase_vertical_distance, cfg.max_vertical_distance)

        self._executed = True
        logger.info(
            "Crown segmentation finished after %d round(s): %d cluster(s) from %d seed(s).",
            self._rounds, len(self._clusters), len(self._seeds),
        )
        return self._clusters

    # ------------------------------------------------------------------
    # Round steps
    # ------------------------------------------------------------------

    def expansion_set(self, cluster_index: int, vertical_tolerance: float) -> dict[tuple[int, int], Point]:
        """Candidate growth points of one cluster, keyed and sorted by ``(x, y)``.

        Read-only against the grid and the cluster map.
        """
        clusters = self._clusters
        center = clusters.center(cluster_index)
        seed_z = clusters.seed_point(cluster_index).z
        limit = self.config.max_horizontal_distance

        expansion: dict[tuple[int, int], Point] = {}
        for p in sorted(clusters.neighbors(cluster_index), key=lambda q: q.key):
            if not self.grid.has_data(p.x, p.y):
                continue
            if center.distance(p) > limit:
                continue
            z = self.grid.data(p.x, p.y)
            if abs(z - seed_z) <= vertical_tolerance:
                expansion[p.key] = Point(p.x, p.y, z)
        return expansion

    def _grow_round(self, tolerance: float) -> int:
        """Run one expand / merge / grow round; return the number of points added."""
        clusters = self._clusters
        indexes = sorted(clusters.cluster_indexes())
        expansions = {index: self.expansion_set(index, tolerance) for index in indexes}

        merge_pairs = self._schedule_merges(indexes, expansions)

        redirect: dict[int, int] = {}
        for index_a, index_b in merge_pairs:
            survivor = clusters.merge_clusters(index_a, index_b)
            redirect[index_a] = redirect[index_b] = survivor

        added = 0
        for index in indexes:
            target = redirect.get(index, index)
            for key, p in expansions[index].items():
                if clusters.is_assigned(*key):
                    continue
                clusters.add_point(target, p.x, p.y, p.z)
                added += 1
        return added

    def _schedule_merges(
        self,
        indexes: Sequence[int],
        expansions: dict[int, dict[tuple[int, int], Point]],
    ) -> list[tuple[int, int]]:
        """Pick cluster pairs to merge this round, first match wins."""
        clusters = self._clusters
        scheduled: set[int] = set()
        pairs: list[tuple[int, int]] = []

        for i, index_a in enumerate(indexes):
            if index_a in scheduled:
                continue
            seed_a = clusters.seed_point(index_a).z
            for index_b in indexes[i + 1:]:
                if index_b in scheduled:
                    continue
                shared = expansions[index_a].keys() & expansions[index_b].keys()
                if not shared:
                    continue
                seed_b = clusters.seed_point(index_b).z
                for key in sorted(shared):
                    ratio = seed_height_ratio(seed_a, seed_b, expansions[index_a][key].z)
                    if ratio is not None and ratio < 1.0:
                        pairs.append((index_a, index_b))
                        scheduled.update((index_a, index_b))
                        break
                if index_a in scheduled:
                    break
        return pairs

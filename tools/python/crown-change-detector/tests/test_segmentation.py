"""
Tests — Tree Crown Segmentation
================================
Unit tests for :class:`~crown_change_detector.segmentation.CrownSegmentation`
on small synthetic elevation grids.
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from crown_change_detector.cluster_map import Point
from crown_change_detector.grid import ArrayElevationGrid
from crown_change_detector.segmentation import (
    CrownSegmentation,
    SegmentationConfig,
    seed_height_ratio,
)
from shared.python.exceptions import (
    NonConvergenceError,
    SeedPointError,
    SegmentationConfigError,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _flat_grid(size: int = 5, value: float = 10.0) -> ArrayElevationGrid:
    return ArrayElevationGrid(np.full((size, size), value))


def _config(**overrides: float) -> SegmentationConfig:
    settings = dict(
        initial_vertical_distance=0.5,
        max_vertical_distance=1.0,
        increase_vertical_distance=0.5,
        max_horizontal_distance=2.0,
    )
    settings.update(overrides)
    return SegmentationConfig(**settings)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestSegmentationConfig:
    def test_defaults_are_valid(self) -> None:
        SegmentationConfig().validate()

    def test_initial_above_ceiling_raises(self) -> None:
        with pytest.raises(SegmentationConfigError):
            _config(initial_vertical_distance=5.0).validate()

    def test_zero_step_below_ceiling_raises(self) -> None:
        with pytest.raises(SegmentationConfigError):
            _config(increase_vertical_distance=0.0).validate()

    def test_zero_step_at_ceiling_is_allowed(self) -> None:
        _config(initial_vertical_distance=1.0, increase_vertical_distance=0.0).validate()

    def test_negative_horizontal_distance_raises(self) -> None:
        with pytest.raises(SegmentationConfigError):
            _config(max_horizontal_distance=-1.0).validate()

    def test_round_cap_below_one_raises(self) -> None:
        with pytest.raises(SegmentationConfigError):
            SegmentationConfig(max_rounds=0).validate()


class TestSeedHeightRatio:
    def test_equal_heights(self) -> None:
        assert seed_height_ratio(10.0, 10.0, 10.0) == pytest.approx(0.0)

    def test_deep_valley(self) -> None:
        assert seed_height_ratio(10.0, 10.0, 2.0) == pytest.approx(1.6)

    def test_uses_lower_seed(self) -> None:
        assert seed_height_ratio(20.0, 10.0, 8.0) == pytest.approx(1.4)

    def test_zero_seed_has_no_ratio(self) -> None:
        assert seed_height_ratio(0.0, 10.0, -1.0) is None

    def test_negative_seeds_use_formula(self) -> None:
        assert seed_height_ratio(-2.0, -2.0, -2.0) == pytest.approx(0.0)
        assert seed_height_ratio(-2.0, -1.0, -3.0) == pytest.approx(-1.5)


# ---------------------------------------------------------------------------
# Growth
# ---------------------------------------------------------------------------


class TestCrownSegmentationGrowth:
    def test_flat_grid_grows_to_horizontal_cap(self) -> None:
        segmentation = CrownSegmentation(_flat_grid(), [Point(2, 2)], _config())
        clusters = segmentation.execute()

        assert clusters.cluster_indexes() == {0}
        members = set(clusters.points(0))
        expected = {
            Point(x, y)
            for x in range(5)
            for y in range(5)
            if math.hypot(x - 2, y - 2) <= 2.0
        }
        assert members == expected
        assert len(members) == 13
        assert segmentation.rounds == 3

    def test_flat_grid_covers_everything_with_wide_cap(self) -> None:
        clusters = CrownSegmentation(
            _flat_grid(), [Point(2, 2)], _config(max_horizontal_distance=3.0)
        ).execute()
        assert clusters.size(0) == 25

    def test_growth_respects_vertical_tolerance(self) -> None:
        values = np.full((1, 5), 10.0)
        values[0, 3:] = 4.0
        clusters = CrownSegmentation(
            ArrayElevationGrid(values), [Point(0, 0)], _config(max_horizontal_distance=10.0)
        ).execute()
        assert {p.x for p in clusters.points(0)} == {0, 1, 2}

    def test_growth_stops_at_nodata(self) -> None:
        values = np.full((1, 5), 10.0)
        values[0, 2] = np.nan
        clusters = CrownSegmentation(
            ArrayElevationGrid(values), [Point(0, 0)], _config(max_horizontal_distance=10.0)
        ).execute()
        assert clusters.size(0) == 2

    def test_grown_points_carry_grid_elevation(self) -> None:
        values = np.array([[10.0, 9.8, 9.6]])
        clusters = CrownSegmentation(
            ArrayElevationGrid(values), [Point(0, 0)], _config(max_horizontal_distance=10.0)
        ).execute()
        assert [p.z for p in clusters.points(0)] == pytest.approx([10.0, 9.8, 9.6])

    def test_seed_elevation_comes_from_grid(self) -> None:
        segmentation = CrownSegmentation(_flat_grid(value=7.5), [Point(1, 1, 99.0)], _config())
        assert segmentation.seed_points[0].z == 7.5
        assert segmentation.execute().seed_point(0).z == 7.5

    def test_execute_twice_returns_same_map(self) -> None:
        segmentation = CrownSegmentation(_flat_grid(), [Point(2, 2)], _config())
        first = segmentation.execute()
        assert segmentation.execute() is first
        assert segmentation.cluster_map is first

    def test_duplicate_seed_is_ignored(self) -> None:
        clusters = CrownSegmentation(
            _flat_grid(), [Point(2, 2), Point(2, 2)], _config()
        ).execute()
        assert len(clusters) == 1

    def test_progress_called_once_per_round(self) -> None:
        calls: list[tuple[float, str]] = []
        segmentation = CrownSegmentation(
            _flat_grid(), [Point(2, 2)], _config(),
            progress=lambda fraction, message: calls.append((fraction, message)) or True,
        )
        segmentation.execute()
        assert len(calls) == segmentation.rounds
        assert all(0.0 <= fraction <= 1.0 for fraction, _ in calls)


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


class TestCrownSegmentationMerging:
    def test_clusters_on_one_plateau_merge(self) -> None:
        grid = ArrayElevationGrid(np.full((1, 5), 10.0))
        clusters = CrownSegmentation(
            grid, [Point(0, 0), Point(4, 0)], _config(max_horizontal_distance=10.0)
        ).execute()
        assert clusters.cluster_indexes() == {0}
        assert clusters.size(0) == 5
        assert clusters.seed_point(0) == Point(0, 0)

    def test_clusters_on_plateau_below_zero_merge(self) -> None:
        grid = ArrayElevationGrid(np.full((1, 5), -2.0))
        clusters = CrownSegmentation(
            grid, [Point(0, 0), Point(4, 0)], _config(max_horizontal_distance=10.0)
        ).execute()
        assert clusters.cluster_indexes() == {0}
        assert clusters.size(0) == 5

    def test_clusters_split_by_valley_stay_apart(self) -> None:
        grid = ArrayElevationGrid(np.array([[10.0, 9.0, 2.0, 9.0, 10.0]]))
        clusters = CrownSegmentation(
            grid,
            [Point(0, 0), Point(4, 0)],
            _config(max_vertical_distance=8.0, max_horizontal_distance=10.0),
        ).execute()
        assert clusters.cluster_indexes() == {0, 1}
        # the shared valley cell goes to the lower cluster index
        assert clusters.cluster_index(2, 0) == 0
        assert clusters.size(0) == 3
        assert clusters.size(1) == 2

    def test_cluster_merges_at_most_once_per_round(self) -> None:
        grid = ArrayElevationGrid(np.full((1, 5), 10.0))
        clusters = CrownSegmentation(
            grid,
            [Point(0, 0), Point(2, 0), Point(4, 0)],
            _config(initial_vertical_distance=1.0, max_horizontal_distance=10.0),
        ).execute()
        assert clusters.cluster_indexes() == {0, 2}
        assert clusters.size(0) == 4
        assert clusters.size(2) == 1


# ---------------------------------------------------------------------------
# Failure modes
# ---------------------------------------------------------------------------


class TestCrownSegmentationErrors:
    def test_seed_on_nodata_raises(self) -> None:
        values = np.full((3, 3), 10.0)
        values[1, 1] = np.nan
        with pytest.raises(SeedPointError):
            CrownSegmentation(ArrayElevationGrid(values), [Point(1, 1)], _config())

    def test_seed_outside_grid_raises(self) -> None:
        with pytest.raises(SeedPointError):
            CrownSegmentation(_flat_grid(), [Point(7, -1)], _config())

    def test_invalid_config_raises_on_construction(self) -> None:
        with pytest.raises(SegmentationConfigError):
            CrownSegmentation(_flat_grid(), [Point(2, 2)], _config(initial_vertical_distance=3.0))

    def test_round_cap_raises_non_convergence(self) -> None:
        segmentation = CrownSegmentation(
            _flat_grid(), [Point(2, 2)],
            _config(initial_vertical_distance=1.0, max_rounds=1),
        )
        with pytest.raises(NonConvergenceError) as excinfo:
            segmentation.execute()
        assert excinfo.value.rounds == 1

    def test_failed_run_leaves_empty_map_and_can_retry(self) -> None:
        segmentation = CrownSegmentation(
            _flat_grid(), [Point(2, 2)],
            _config(initial_vertical_distance=1.0, max_rounds=1),
        )
        with pytest.raises(NonConvergenceError):
            segmentation.execute()
        assert len(segmentation.cluster_map) == 0
        assert segmentation.rounds == 0

        with pytest.raises(NonConvergenceError) as excinfo:
            segmentation.execute()
        assert excinfo.value.rounds == 1

        segmentation.config = _config(initial_vertical_distance=1.0)
        clusters = segmentation.execute()
        assert clusters.size(0) == 13
        assert segmentation.rounds == 3

    def test_no_seeds_yields_empty_map(self) -> None:
        segmentation = CrownSegmentation(_flat_grid(), [], _config())
        assert len(segmentation.execute()) == 0

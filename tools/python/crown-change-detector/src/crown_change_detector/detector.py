"""
Crown Change Detector — Core Tool
===================================
Compares two epochs of terrain/surface rasters of the same area, segments the
tree crowns of each epoch and matches them to report per-tree change.

Pipeline per epoch:
    surface + terrain → canopy height model → dilation/erosion →
    seed points → crown segmentation → small-cluster pruning

Then both cluster maps go through Hausdorff matching.  Matched crowns become
:class:`CrownChange` records (shift and height change); crowns only present
in epoch A are *lost*, crowns only present in epoch B are *new*.

Classes:
    EpochRasters         The four input raster paths.
    CrownChangeConfig    Configuration bundle for the tool.
    CrownChange          One matched tree.
    LonelyCrown          One tree without a counterpart.
    EpochResult          Intermediate products of one epoch.
    CrownChangeDetector  Primary tool class (inherits GeoTool).

Usage::

    from pathlib import Path
    from crown_change_detector.detector import (
        CrownChangeDetector, CrownChangeConfig, EpochRasters,
    )

    tool = CrownChangeDetector(
        rasters=EpochRasters(
            terrain_a=Path("data/ahn2_dtm.tif"),
            surface_a=Path("data/ahn2_dsm.tif"),
            terrain_b=Path("data/ahn3_dtm.tif"),
            surface_b=Path("data/ahn3_dsm.tif"),
        ),
        output_path=Path("output/crown_changes.json"),
        config=CrownChangeConfig(output_format="json"),
    )
    tool.run()

    for change in tool.changes:
        print(change)
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Literal, Optional

import numpy as np
import numpy.typing as npt
import pandas as pd

from shared.python.base_tool import GeoTool, ProgressCallback, report_progress
from shared.python.exceptions import InputValidationError, OutputWriteError
from shared.python.validators import Validators

from crown_change_detector.cluster_map import ClusterMap, Point
from crown_change_detector.grid import ArrayElevationGrid, RasterGrid, RasterGridReader
from crown_change_detector.matching import HausdorffMatcher
from crown_change_detector.preprocessing import (
    canopy_height_model,
    find_seed_points,
    morphology_filter,
)
from crown_change_detector.segmentation import CrownSegmentation, SegmentationConfig

logger = logging.getLogger("canopydiff.crown_change_detector")

REPORT_COLUMNS = [
    "status", "index_a", "index_b", "center_x", "center_y", "world_x", "world_y",
    "hausdorff_distance", "reverse_distance", "shift",
    "height_a", "height_b", "height_change", "size_a", "size_b",
]


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EpochRasters:
    """Input rasters of both epochs.  All four must share one grid.

    Attributes:
        terrain_a: Terrain model (DTM) of the earlier epoch.
        surface_a: Surface model (DSM) of the earlier epoch.
        terrain_b: Terrain model of the later epoch.
        surface_b: Surface model of the later epoch.
    """

    terrain_a: Path
    surface_a: Path
    terrain_b: Path
    surface_b: Path

    def as_dict(self) -> dict[str, Path]:
        return {
            "terrain_a": Path(self.terrain_a),
            "surface_a": Path(self.surface_a),
            "terrain_b": Path(self.terrain_b),
            "surface_b": Path(self.surface_b),
        }


@dataclass
class CrownChangeConfig:
    """Configuration for :class:`CrownChangeDetector`.

    Attributes:
        min_height: Lowest canopy height kept in the height model.
        max_height: Highest canopy height kept in the height model.
        dilation_passes: 3×3 dilation passes applied to the height model.
        erosion_passes: 3×3 erosion passes applied after dilation.
        seed_window: Odd window size of the local-maximum search.
        min_cluster_size: Crowns with fewer cells are discarded.
        maximum_distance: Center cut-off of the Hausdorff matching, in cells.
        segmentation: Tolerances of the crown segmentation.
        output_format: ``"json"`` or ``"csv"``.
        parallel: Process both epochs concurrently.
    """

    min_height: float = 1.5
    max_height: float = 50.0
    dilation_passes: int = 1
    erosion_passes: int = 1
    seed_window: int = 5
    min_cluster_size: int = 16
    maximum_distance: float = 9.0
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    output_format: Literal["json", "csv"] = "json"
    parallel: bool = True

    def validate(self) -> None:
        """Raise :class:`InputValidationError` for out-of-range settings."""
        Validators.assert_non_negative(self.min_height, "min_height")
        Validators.assert_non_negative(self.dilation_passes, "dilation_passes")
        Validators.assert_non_negative(self.erosion_passes, "erosion_passes")
        Validators.assert_non_negative(self.min_cluster_size, "min_cluster_size")
        Validators.assert_non_negative(self.maximum_distance, "maximum_distance")
        if self.min_height > self.max_height:
            raise InputValidationError(
                f"min_height ({self.min_height}) exceeds max_height ({self.max_height})."
            )
        Validators.assert_odd_window(self.seed_window, "seed_window")
        if self.output_format not in ("json", "csv"):
            raise InputValidationError(
                f"Unsupported output format '{self.output_format}'. Use 'json' or 'csv'."
            )
        self.segmentation.validate()


@dataclass(frozen=True)
class CrownChange:
    """A tree crown found in both epochs.

    Attributes:
        index_a: Cluster index in epoch A.
        index_b: Cluster index in epoch B.
        hausdorff_distance: Directed distance A→B in cells.
        reverse_distance: Directed distance B→A in cells.
        center_a: ``(x, y)`` crown center in epoch A.
        center_b: ``(x, y)`` crown center in epoch B.
        shift: Center displacement in cells.
        height_a: Treetop height in epoch A.
        height_b: Treetop height in epoch B.
        size_a: Crown area in cells, epoch A.
        size_b: Crown area in cells, epoch B.
    """

    index_a: int
    index_b: int
    hausdorff_distance: float
    reverse_distance: float
    center_a: tuple[int, int]
    center_b: tuple[int, int]
    shift: float
    height_a: float
    height_b: float
    size_a: int
    size_b: int

    @property
    def height_change(self) -> float:
        """Treetop growth (positive) or loss (negative)."""
        return self.height_b - self.height_a

    @property
    def size_change(self) -> int:
        return self.size_b - self.size_a

    def __str__(self) -> str:
        return (
            f"Crown {self.index_a}→{self.index_b}: "
            f"shift={self.shift:.2f} hausdorff={self.hausdorff_distance:.2f} "
            f"height {self.height_a:.2f}→{self.height_b:.2f} ({self.height_change:+.2f})"
        )


@dataclass(frozen=True)
class LonelyCrown:
    """A crown present in only one epoch.

    Attributes:
        epoch: ``"A"`` (lost tree) or ``"B"`` (new tree).
        index: Cluster index within its epoch.
        center: ``(x, y)`` crown center.
        height: Treetop height.
        size: Crown area in cells.
    """

    epoch: Literal["A", "B"]
    index: int
    center: tuple[int, int]
    height: float
    size: int


@dataclass
class EpochResult:
    """Intermediate products of one epoch."""

    label: str
    chm: npt.NDArray[np.float64] = field(repr=False)
    seeds: list[Point]
    clusters: ClusterMap
    rounds: int
    removed: int


# ---------------------------------------------------------------------------
# Main tool class
# ---------------------------------------------------------------------------


class CrownChangeDetector(GeoTool):
    """Detect tree crown changes between two elevation surveys.

    Inherits the Template Method pipeline from :class:`~shared.python.GeoTool`.

    Args:
        rasters: The four input rasters.
        output_path: Path of the JSON or CSV change report.
        config: A :class:`CrownChangeConfig` instance.
        verbose: Enable DEBUG-level logging.
        progress: Optional progress hook.

    Note:
        The ``input_path`` inherited from ``GeoTool`` is the epoch A surface
        raster; it is used for logging and ``repr`` only.
    """

    SUPPORTED_EXTENSIONS = RasterGridReader.SUPPORTED_EXTENSIONS

    def __init__(
        self,
        rasters: EpochRasters,
        output_path: Path,
        config: CrownChangeConfig | None = None,
        *,
        verbose: bool = False,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        super().__init__(Path(rasters.surface_a), output_path, verbose=verbose, progress=progress)
        self.rasters = rasters
        self.config = config or CrownChangeConfig()
        self._epochs: dict[str, EpochResult] = {}
        self._changes: list[CrownChange] = []
        self._lonely: list[LonelyCrown] = []
        self._reference: RasterGrid | None = None

    # ------------------------------------------------------------------
    # GeoTool abstract method implementations
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        """Validate raster paths, raster shapes and settings.

        Raises:
            InputValidationError: If a file is missing, has an unsupported
                extension, the rasters disagree in shape or a setting is
                out of range.
            OutputWriteError: If the output directory cannot be created.
        """
        paths = self.rasters.as_dict()
        for path in paths.values():
            Validators.assert_file_exists(path)
            Validators.assert_supported_extension(path, self.SUPPORTED_EXTENSIONS)
        Validators.assert_output_dir_writable(self.output_path)
        self.config.validate()

        shapes = {name: RasterGridReader(path).shape() for name, path in paths.items()}
        reference_name, reference_shape = next(iter(shapes.items()))
        for name, shape in shapes.items():
            Validators.assert_raster_shapes_match(reference_shape, shape, reference_name, name)

        logger.debug("Inputs validated: 4 raster(s) of shape %s.", reference_shape)

    def process(self) -> None:
        """Segment both epochs, match their crowns and write the report.

        Raises:
            RasterError: If a raster cannot be read.
            NonConvergenceError: If a segmentation does not converge.
            OutputWriteError: If writing the report fails.
        """
        jobs = {
            "A": (self.rasters.surface_a, self.rasters.terrain_a),
            "B": (self.rasters.surface_b, self.rasters.terrain_b),
        }
        if self.config.parallel:
            with ThreadPoolExecutor(max_workers=2) as pool:
                futures = {
                    label: pool.submit(self._process_epoch, label, surface, terrain)
                    for label, (surface, terrain) in jobs.items()
                }
                self._epochs = {label: future.result() for label, future in futures.items()}
        else:
            self._epochs = {
                label: self._process_epoch(label, surface, terrain)
                for label, (surface, terrain) in jobs.items()
            }
        report_progress(self.progress, 0.8, "Matching crowns")

        matcher = HausdorffMatcher(
            self._epochs["A"].clusters,
            self._epochs["B"].clusters,
            maximum_distance=self.config.maximum_distance,
        )
        matcher.execute()
        self._changes, self._lonely = self._summarise(matcher)
        logger.info(
            "%d matched crown(s), %d lost, %d new.",
            len(self._changes), len(self.lost_crowns), len(self.new_crowns),
        )

        try:
            if self.config.output_format == "csv":
                self._write_csv()
            else:
                self._write_json()
        except OSError as exc:
            raise OutputWriteError(str(self.output_path), str(exc)) from exc

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _process_epoch(self, label: str, surface_path: Path, terrain_path: Path) -> EpochResult:
        """Run the per-epoch pipeline up to a pruned cluster map."""
        cfg = self.config
        surface = RasterGridReader(surface_path).read()
        terrain = RasterGridReader(terrain_path).read()
        if label == "A":
            self._reference = surface

        chm = canopy_height_model(surface.grid, terrain.grid, cfg.min_height, cfg.max_height)
        for _ in range(cfg.dilation_passes):
            chm = morphology_filter(chm, "dilation")
        for _ in range(cfg.erosion_passes):
            chm = morphology_filter(chm, "erosion")

        seeds = find_seed_points(chm, window=cfg.seed_window, min_height=cfg.min_height)
        logger.info("Epoch %s: %d seed point(s).", label, len(seeds))

        segmentation = CrownSegmentation(ArrayElevationGrid(chm), seeds, cfg.segmentation)
        clusters = segmentation.execute()
        removed = clusters.remove_small_clusters(cfg.min_cluster_size)
        logger.info(
            "Epoch %s: %d crown(s) kept, %d removed as smaller than %d cell(s).",
            label, len(clusters), removed, cfg.min_cluster_size,
        )
        return EpochResult(
            label=label,
            chm=chm,
            seeds=seeds,
            clusters=clusters,
            rounds=segmentation.rounds,
            removed=removed,
        )

    @staticmethod
    def _summarise(matcher: HausdorffMatcher) -> tuple[list[CrownChange], list[LonelyCrown]]:
        map_a, map_b = matcher.map_a, matcher.map_b
        changes: list[CrownChange] = []
        for match in matcher.correspondences:
            center_a = map_a.center(match.index_a)
            center_b = map_b.center(match.index_b)
            changes.append(CrownChange(
                index_a=match.index_a,
                index_b=match.index_b,
                hausdorff_distance=match.distance,
                reverse_distance=match.reverse_distance,
                center_a=center_a.key,
                center_b=center_b.key,
                shift=center_a.distance(center_b),
                height_a=float(map_a.seed_point(match.index_a).z),
                height_b=float(map_b.seed_point(match.index_b).z),
                size_a=map_a.size(match.index_a),
                size_b=map_b.size(match.index_b),
            ))

        lonely: list[LonelyCrown] = []
        for epoch, clusters, indexes in (
            ("A", map_a, matcher.lonely_a()),
            ("B", map_b, matcher.lonely_b()),
        ):
            for index in indexes:
                lonely.append(LonelyCrown(
                    epoch=epoch,
                    index=index,
                    center=clusters.center(index).key,
                    height=float(clusters.seed_point(index).z),
                    size=clusters.size(index),
                ))
        return changes, lonely

    def _records(self) -> list[dict]:
        """Flat report rows: matched crowns first, then lost and new ones."""
        rows: list[dict] = []
        for c in self._changes:
            world_x, world_y = self._world(c.center_b)
            rows.append({
                "status": "matched",
                "index_a": c.index_a,
                "index_b": c.index_b,
                "center_x": c.center_b[0],
                "center_y": c.center_b[1],
                "world_x": world_x,
                "world_y": world_y,
                "hausdorff_distance": c.hausdorff_distance,
                "reverse_distance": c.reverse_distance,
                "shift": c.shift,
                "height_a": c.height_a,
                "height_b": c.height_b,
                "height_change": c.height_change,
                "size_a": c.size_a,
                "size_b": c.size_b,
            })
        for crown in self._lonely:
            world_x, world_y = self._world(crown.center)
            in_a = crown.epoch == "A"
            rows.append({
                "status": "lost" if in_a else "new",
                "index_a": crown.index if in_a else None,
                "index_b": None if in_a else crown.index,
                "center_x": crown.center[0],
                "center_y": crown.center[1],
                "world_x": world_x,
                "world_y": world_y,
                "hausdorff_distance": None,
                "reverse_distance": None,
                "shift": None,
                "height_a": crown.height if in_a else None,
                "height_b": None if in_a else crown.height,
                "height_change": None,
                "size_a": crown.size if in_a else None,
                "size_b": None if in_a else crown.size,
            })
        return rows

    def _world(self, center: tuple[int, int]) -> tuple[float | None, float | None]:
        if self._reference is None:
            return None, None
        return self._reference.to_world(*center)

    def _write_json(self) -> None:
        """Serialise the report to JSON."""
        output = {
            "rasters": {name: str(path) for name, path in self.rasters.as_dict().items()},
            "crs": self._reference.crs_wkt if self._reference else "",
            "epochs": {
                label: {
                    "seeds": len(epoch.seeds),
                    "crowns": len(epoch.clusters),
                    "removed": epoch.removed,
                    "rounds": epoch.rounds,
                }
                for label, epoch in self._epochs.items()
            },
            "changes": self._records(),
            "settings": asdict(self.config),
        }
        with open(self.output_path, "w", encoding="utf-8") as fh:
            json.dump(output, fh, indent=2, default=str)

    def _write_csv(self) -> None:
        """Serialise the report rows to CSV."""
        pd.DataFrame.from_records(self._records(), columns=REPORT_COLUMNS).to_csv(self.output_path, index=False)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def changes(self) -> list[CrownChange]:
        """Matched crowns from the last run, or ``[]``."""
        return list(self._changes)

    @property
    def lost_crowns(self) -> list[LonelyCrown]:
        """Crowns of epoch A without a counterpart in epoch B."""
        return [c for c in self._lonely if c.epoch == "A"]

    @property
    def new_crowns(self) -> list[LonelyCrown]:
        """Crowns of epoch B without a counterpart in epoch A."""
        return [c for c in self._lonely if c.epoch == "B"]

    @property
    def epochs(self) -> dict[str, EpochResult]:
        """Per-epoch intermediate products of the last run."""
        return dict(self._epochs)

    def to_dataframe(self) -> pd.DataFrame:
        """The report rows as a :class:`pandas.DataFrame`."""
        return pd.DataFrame.from_records(self._records(), columns=REPORT_COLUMNS)

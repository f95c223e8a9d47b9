"""
Crown Change Detector
======================
Segment tree crowns in two elevation surveys of the same terrain and match
them to measure per-tree shift, growth and loss.

Submodules
----------
cluster_map    -- Partition of grid points into numbered clusters
segmentation   -- Region-growing tree crown segmentation
matching       -- Hausdorff-distance crown matching across two surveys
grid           -- Elevation grid accessors (numpy / rasterio)
preprocessing  -- Canopy height model, morphology filter, seed points
detector       -- End-to-end tool (inherits GeoTool)
"""

from crown_change_detector.cluster_map import ClusterMap, Point
from crown_change_detector.detector import (
    CrownChange,
    CrownChangeConfig,
    CrownChangeDetector,
    EpochRasters,
    LonelyCrown,
)
from crown_change_detector.grid import ArrayElevationGrid, ElevationGrid, RasterGridReader
from crown_change_detector.matching import Correspondence, HausdorffMatcher
from crown_change_detector.segmentation import CrownSegmentation, SegmentationConfig

__version__ = "1.0.0"
__all__ = [
    "Point",
    "ClusterMap",
    "CrownSegmentation",
    "SegmentationConfig",
    "HausdorffMatcher",
    "Correspondence",
    "ElevationGrid",
    "ArrayElevationGrid",
    "RasterGridReader",
    "CrownChangeDetector",
    "CrownChangeConfig",
    "CrownChange",
    "LonelyCrown",
    "EpochRasters",
]

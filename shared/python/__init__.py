"""
CanopyDiff — Shared Python Package
===================================
Re-exports the shared base class, exception hierarchy, and validator
utilities so individual tools can import from a single location::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import ClusterNotFoundError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    AlreadyAssignedError,
    BandIndexError,
    CanopyDiffError,
    ClusterError,
    ClusterNotFoundError,
    DegenerateClusterError,
    DistanceNotFoundError,
    InputValidationError,
    NonConvergenceError,
    OutOfRangeError,
    OutputWriteError,
    PointNotFoundError,
    RasterError,
    SeedPointError,
    SegmentationConfigError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "CanopyDiffError",
    "InputValidationError",
    "SeedPointError",
    "SegmentationConfigError",
    "RasterError",
    "BandIndexError",
    "ClusterError",
    "OutOfRangeError",
    "ClusterNotFoundError",
    "PointNotFoundError",
    "DistanceNotFoundError",
    "AlreadyAssignedError",
    "DegenerateClusterError",
    "NonConvergenceError",
    "OutputWriteError",
]

"""
CanopyDiff — Custom Exception Hierarchy
========================================
All CanopyDiff tools raise exceptions from this module so callers can
catch them at the right level of granularity.

Hierarchy::

    CanopyDiffError                      ← catch-all base
    ├── InputValidationError             ← bad files, bad settings, etc.
    │   ├── SeedPointError               ← seed without elevation data
    │   └── SegmentationConfigError      ← inconsistent tolerances
    ├── RasterError                      ← rasterio / numpy raster issues
    │   └── BandIndexError               ← requested band does not exist
    ├── ClusterError                     ← cluster engine failures
    │   ├── OutOfRangeError              ← unknown cluster / point / pair
    │   │   ├── ClusterNotFoundError
    │   │   ├── PointNotFoundError
    │   │   └── DistanceNotFoundError
    │   ├── AlreadyAssignedError         ← point already owned by a cluster
    │   ├── DegenerateClusterError       ← cluster without points
    │   └── NonConvergenceError          ← segmentation round cap exceeded
    └── OutputWriteError                 ← cannot write to output path

Usage::

    from shared.python.exceptions import ClusterNotFoundError

    raise ClusterNotFoundError(42)
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class CanopyDiffError(Exception):
    """Base exception for all CanopyDiff tools.

    Catch this to handle any tool-specific error without caring about
    the exact subtype.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(CanopyDiffError):
    """Raised when a tool's inputs fail pre-processing validation.

    This is the parent class for more specific input problems.
    """


class SeedPointError(InputValidationError):
    """Raised when a seed point has no valid elevation at its own cell.

    Args:
        x: Column of the seed point.
        y: Row of the seed point.

    Example::

        raise SeedPointError(12, 40)
    """

    def __init__(self, x: int, y: int) -> None:
        super().__init__(
            f"Seed point ({x}, {y}) has no elevation data. "
            "Seeds must lie on valid cells of the elevation grid."
        )
        self.x: int = x
        self.y: int = y


class SegmentationConfigError(InputValidationError):
    """Raised when segmentation tolerances cannot produce a terminating run."""


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(CanopyDiffError):
    """Raised for general raster processing failures (rasterio / numpy).

    Subclass this for more specific raster errors.
    """


class BandIndexError(RasterError):
    """Raised when a requested raster band index does not exist.

    Args:
        band_index: The 1-based band number that was requested.
        total_bands: Total number of bands in the raster file.

    Example::

        raise BandIndexError(band_index=5, total_bands=4)
    """

    def __init__(self, band_index: int, total_bands: int) -> None:
        super().__init__(
            f"Band {band_index} does not exist. "
            f"This raster has {total_bands} band(s) (1-indexed)."
        )
        self.band_index: int = band_index
        self.total_bands: int = total_bands


# ---------------------------------------------------------------------------
# Cluster engine
# ---------------------------------------------------------------------------


class ClusterError(CanopyDiffError):
    """Base class for failures raised by the cluster map, the crown
    segmentation and the cluster matcher.
    """


class OutOfRangeError(ClusterError, LookupError):
    """Raised when an operation references a cluster, point or distance
    entry that is not present.
    """


class ClusterNotFoundError(OutOfRangeError):
    """Raised when a cluster index is not live in a cluster map.

    Args:
        cluster_index: The unknown cluster index.
    """

    def __init__(self, cluster_index: int) -> None:
        super().__init__(f"Cluster {cluster_index} does not exist.")
        self.cluster_index: int = cluster_index


class PointNotFoundError(OutOfRangeError):
    """Raised when a grid point is not assigned to any cluster.

    Args:
        x: Column of the point.
        y: Row of the point.
    """

    def __init__(self, x: int, y: int) -> None:
        super().__init__(f"Point ({x}, {y}) is not assigned to any cluster.")
        self.x: int = x
        self.y: int = y


class DistanceNotFoundError(OutOfRangeError):
    """Raised when no distance was recorded for a pair of clusters.

    Args:
        index_a: Cluster index in the first map.
        index_b: Cluster index in the second map, or ``None`` when no
                 outgoing distance exists for *index_a* at all.
    """

    def __init__(self, index_a: int, index_b: int | None = None) -> None:
        if index_b is None:
            message = f"No distances were recorded for cluster {index_a}."
        else:
            message = (
                f"No distance was recorded for cluster pair ({index_a}, {index_b}). "
                "Their centers may lie beyond the maximum distance."
            )
        super().__init__(message)
        self.index_a: int = index_a
        self.index_b: int | None = index_b


class AlreadyAssignedError(ClusterError):
    """Raised when a point is added to a cluster map a second time.

    Args:
        x: Column of the point.
        y: Row of the point.
        cluster_index: The cluster that already owns the point.

    Example::

        raise AlreadyAssignedError(3, 4, cluster_index=7)
    """

    def __init__(self, x: int, y: int, cluster_index: int) -> None:
        super().__init__(
            f"Point ({x}, {y}) is already assigned to cluster {cluster_index}."
        )
        self.x: int = x
        self.y: int = y
        self.cluster_index: int = cluster_index


class DegenerateClusterError(ClusterError):
    """Raised when a cluster holds no points.

    Args:
        cluster_index: The empty cluster.
    """

    def __init__(self, cluster_index: int) -> None:
        super().__init__(f"Cluster {cluster_index} has no points.")
        self.cluster_index: int = cluster_index


class NonConvergenceError(ClusterError):
    """Raised when crown segmentation hits its round cap before reaching
    a fixed point.

    Args:
        rounds: Number of rounds executed before giving up.
    """

    def __init__(self, rounds: int) -> None:
        super().__init__(
            f"Crown segmentation did not converge within {rounds} round(s). "
            "Increase max_rounds or check the vertical distance settings."
        )
        self.rounds: int = rounds


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(CanopyDiffError):
    """Raised when the tool cannot write its output to disk.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.

    Example::

        raise OutputWriteError("/read-only/dir/changes.json", "Permission denied")
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to write output to '{output_path}': {reason}"
        )
        self.output_path: str = output_path
        self.reason: str = reason

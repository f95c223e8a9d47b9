"""
Crown Change Detector — Elevation Grid Access
===============================================
Read-only accessors the segmentation engine uses to query elevation values.

Classes:
    ElevationGrid       Protocol: ``has_data(x, y)`` / ``data(x, y)``.
    ArrayElevationGrid  numpy-backed implementation with nodata handling.
    RasterGrid          An ``ArrayElevationGrid`` plus georeferencing.
    RasterGridReader    Loads one band of a raster file through rasterio.

``x`` is always the column and ``y`` the row.  Queries outside the raster
report "no data" instead of raising.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import numpy as np
import numpy.typing as npt
import rasterio
from rasterio.transform import Affine

from shared.python.exceptions import RasterError
from shared.python.validators import Validators

logger = logging.getLogger("canopydiff.crown_change_detector.grid")


@runtime_checkable
class ElevationGrid(Protocol):
    """Side-effect-free elevation lookup safe for any integer coordinate."""

    def has_data(self, x: int, y: int) -> bool:
        """``True`` when ``(x, y)`` is inside the grid and holds a value."""

    def data(self, x: int, y: int) -> float:
        """Elevation at ``(x, y)``; ``nan`` where :meth:`has_data` is ``False``."""


class ArrayElevationGrid:
    """Elevation grid backed by a 2-D numpy array.

    Cells equal to *nodata* (when given) and NaN cells count as missing.

    Args:
        array: 2-D array indexed ``[row, column]``.
        nodata: Optional sentinel value marking missing cells.
    """

    def __init__(self, array: npt.ArrayLike, nodata: Optional[float] = None) -> None:
        values = np.asarray(array, dtype=np.float64)
        if values.ndim != 2:
            raise RasterError(f"Elevation grid must be 2-D (got {values.ndim} dimension(s)).")
        self._array: npt.NDArray[np.float64] = values
        self._valid: npt.NDArray[np.bool_] = ~np.isnan(values)
        if nodata is not None and not np.isnan(nodata):
            self._valid &= values != nodata
        self.nodata: Optional[float] = nodata

    @property
    def array(self) -> npt.NDArray[np.float64]:
        """Underlying values; missing cells keep their original content."""
        return self._array

    @property
    def height(self) -> int:
        return int(self._array.shape[0])

    @property
    def width(self) -> int:
        return int(self._array.shape[1])

    def valid_mask(self) -> npt.NDArray[np.bool_]:
        """Boolean mask of cells holding data."""
        return self._valid.copy()

    def masked(self) -> npt.NDArray[np.float64]:
        """Copy of the values with missing cells set to NaN."""
        return np.where(self._valid, self._array, np.nan)

    def has_data(self, x: int, y: int) -> bool:
        if x < 0 or y < 0 or y >= self._array.shape[0] or x >= self._array.shape[1]:
            return False
        return bool(self._valid[y, x])

    def data(self, x: int, y: int) -> float:
        if not self.has_data(x, y):
            return float("nan")
        return float(self._array[y, x])

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(width={self.width}, height={self.height})"


@dataclass
class RasterGrid:
    """An elevation grid read from disk, with the metadata needed to map
    cluster coordinates back to the source raster.

    Attributes:
        grid: The elevation values.
        transform: Affine pixel-to-world transform.
        crs_wkt: Coordinate reference system as WKT (``""`` if undefined).
        path: The source file.
    """

    grid: ArrayElevationGrid
    transform: Affine = field(repr=False)
    crs_wkt: str = field(default="", repr=False)
    path: Optional[Path] = None

    @property
    def shape(self) -> tuple[int, int]:
        return (self.grid.height, self.grid.width)

    def to_world(self, x: float, y: float) -> tuple[float, float]:
        """World coordinates of the center of pixel ``(x, y)``."""
        wx, wy = self.transform * (x + 0.5, y + 0.5)
        return float(wx), float(wy)


class RasterGridReader:
    """Load a single raster band as a :class:`RasterGrid`.

    GDAL's projection lookup is not thread-safe, so the reader serialises it
    behind a lock owned by this class.  Everything else runs unguarded, so
    two epochs can be read concurrently.

    Args:
        path: Raster file (GeoTIFF recommended).
        band: 1-based band index.
    """

    SUPPORTED_EXTENSIONS = [".tif", ".tiff", ".img", ".vrt"]

    _projection_lock = threading.Lock()

    def __init__(self, path: Path, band: int = 1) -> None:
        self.path: Path = Path(path)
        self.band: int = band

    def shape(self) -> tuple[int, int]:
        """``(rows, cols)`` of the raster without reading its pixels."""
        try:
            with rasterio.open(self.path) as src:
                return (src.height, src.width)
        except rasterio.errors.RasterioIOError as exc:
            raise RasterError(f"Could not open raster '{self.path}': {exc}") from exc

    def read(self) -> RasterGrid:
        """Read the configured band.

        Raises:
            BandIndexError: If the band does not exist.
            RasterError: If rasterio cannot open the file.
        """
        try:
            with rasterio.open(self.path) as src:
                Validators.assert_band_index_valid(self.band, src.count)
                values = src.read(self.band)
                nodata = src.nodatavals[self.band - 1]
                transform = src.transform
                with self._projection_lock:
                    crs_wkt = src.crs.to_wkt() if src.crs else ""
        except rasterio.errors.RasterioIOError as exc:
            raise RasterError(f"Could not open raster '{self.path}': {exc}") from exc

        logger.debug(
            "Read band %d of %s (%dx%d, nodata=%s).",
            self.band, self.path.name, values.shape[1], values.shape[0], nodata,
        )
        return RasterGrid(
            grid=ArrayElevationGrid(values, nodata=nodata),
            transform=transform,
            crs_wkt=crs_wkt,
            path=self.path,
        )

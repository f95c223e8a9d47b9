"""
Crown Change Detector — Raster Preparation
============================================
Turns a terrain/surface raster pair into the inputs of crown segmentation:

  1.  Canopy height model   (surface - terrain, clipped to a height band)
  2.  Morphology filter     (3×3 dilation fills gaps, erosion drops fringes)
  3.  Seed points           (local maxima of the filtered canopy)

All functions operate on plain numpy arrays where NaN marks missing data.
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

import numpy as np
import numpy.typing as npt
from scipy import ndimage

from shared.python.exceptions import InputValidationError
from shared.python.validators import Validators

from crown_change_detector.cluster_map import Point
from crown_change_detector.grid import ArrayElevationGrid

logger = logging.getLogger("canopydiff.crown_change_detector.preprocessing")

_WINDOW_3X3 = np.ones((3, 3), dtype=np.float64)


def canopy_height_model(
    surface: ArrayElevationGrid,
    terrain: ArrayElevationGrid,
    min_height: float = 1.5,
    max_height: float = 50.0,
) -> npt.NDArray[np.float64]:
    """Per-pixel vegetation height ``surface - terrain``.

    Differences outside ``[min_height, max_height]`` or where either input
    lacks data are set to NaN.

    Raises:
        InputValidationError: If the grids differ in shape or the height
            band is empty.
    """
    Validators.assert_raster_shapes_match(
        surface.array.shape, terrain.array.shape, "Surface", "Terrain"
    )
    if min_height > max_height:
        raise InputValidationError(
            f"min_height ({min_height}) exceeds max_height ({max_height})."
        )

    with np.errstate(invalid="ignore"):
        height = surface.masked() - terrain.masked()
        keep = (height >= min_height) & (height <= max_height)
    chm = np.where(keep, height, np.nan)
    logger.debug("Canopy height model: %d of %d cell(s) kept.", int(keep.sum()), keep.size)
    return chm


def morphology_filter(
    array: npt.NDArray[np.float64],
    method: Literal["dilation", "erosion"] = "dilation",
    threshold: Optional[int] = None,
) -> npt.NDArray[np.float64]:
    """One 3×3 morphology pass over a NaN-masked grid.

    ``dilation`` fills a missing cell with the mean of its 3×3 window when
    more than *threshold* (default 0) cells of the window hold data.
    ``erosion`` clears a cell when fewer than *threshold* (default 9) cells
    of its window hold data.

    Raises:
        InputValidationError: For an unknown *method*.
    """
    if method not in ("dilation", "erosion"):
        raise InputValidationError(
            f"Unknown morphology method '{method}'. Use 'dilation' or 'erosion'."
        )
    if threshold is None:
        threshold = 0 if method == "dilation" else 9

    valid = ~np.isnan(array)
    counts = ndimage.convolve(valid.astype(np.float64), _WINDOW_3X3, mode="constant", cval=0.0)
    if method == "dilation":
        sums = ndimage.convolve(np.where(valid, array, 0.0), _WINDOW_3X3, mode="constant", cval=0.0)
        fill = ~valid & (counts > threshold)
        with np.errstate(invalid="ignore", divide="ignore"):
            return np.where(fill, sums / counts, array)
    return np.where(valid & (counts < threshold), np.nan, array)


def find_seed_points(
    chm: npt.NDArray[np.float64],
    window: int = 5,
    min_height: float = 0.0,
) -> list[Point]:
    """Local maxima of a canopy height model, one per plateau.

    A cell is a maximum when no cell of the ``window × window`` square
    centred on it is higher.  Adjacent maxima of equal height form a plateau
    that yields a single seed, its first cell in row-major order.

    Returns:
        Seed points with their height as ``z``, sorted by ``(y, x)``.
    """
    Validators.assert_odd_window(window, "seed_window")

    valid = ~np.isnan(chm)
    filled = np.where(valid, chm, -np.inf)
    peaks = valid & (filled >= min_height)
    peaks &= filled == ndimage.maximum_filter(filled, size=window, mode="constant", cval=-np.inf)

    labels, count = ndimage.label(peaks, structure=np.ones((3, 3), dtype=bool))
    if count == 0:
        return []
    rows, cols = np.nonzero(labels)
    _, first = np.unique(labels[rows, cols], return_index=True)
    picked = sorted(zip(rows[first].tolist(), cols[first].tolist()))

    logger.debug("Found %d seed point(s) in a %dx%d window.", len(picked), window, window)
    return [Point(int(c), int(r), float(chm[r, c])) for r, c in picked]

"""
CanopyDiff — Shared Input Validators
=====================================
Precondition checks run by the tools before any raster is read.

Each check either returns ``None`` or raises one of the exceptions from
:mod:`shared.python.exceptions`, so a ``validate_inputs`` implementation
is a flat list of calls::

    class MyTool(GeoTool):
        def validate_inputs(self) -> None:
            Validators.assert_file_exists(self.input_path)
            Validators.assert_supported_extension(self.input_path, [".tif"])
            Validators.assert_non_negative(self.config.min_height, "min_height")
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from shared.python.exceptions import (
    BandIndexError,
    InputValidationError,
    OutputWriteError,
)


class Validators:
    """Namespace of static precondition checks; never instantiated."""

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Assert that *path* is an existing file (not a directory).

        Raises:
            InputValidationError: If the path is missing or a directory.

        Example::

            Validators.assert_file_exists(Path("data/ahn3_dsm.tif"))
        """
        path = Path(path)
        if not path.exists():
            raise InputValidationError(f"Raster not found: '{path}'.")
        if path.is_dir():
            raise InputValidationError(f"Expected a raster file, got a directory: '{path}'.")

    @staticmethod
    def assert_output_dir_writable(output_path: Path) -> None:
        """Create the report's parent directory if needed.

        Raises:
            OutputWriteError: If the directory cannot be created.
        """
        parent = Path(output_path).parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_path), str(exc)) from exc

    @staticmethod
    def assert_supported_extension(path: Path, extensions: Sequence[str]) -> None:
        """Assert that *path* ends in one of *extensions* (case-insensitive).

        Args:
            path: File path to check.
            extensions: Allowed suffixes including the dot, e.g. ``[".tif", ".img"]``.

        Raises:
            InputValidationError: If the suffix is not allowed.
        """
        path = Path(path)
        suffix = path.suffix.lower()
        allowed = [ext.lower() for ext in extensions]
        if suffix not in allowed:
            raise InputValidationError(
                f"Unsupported raster format '{suffix}' for '{path.name}'. "
                f"Use one of: {', '.join(allowed)}"
            )

    # ------------------------------------------------------------------
    # Numeric settings
    # ------------------------------------------------------------------

    @staticmethod
    def assert_non_negative(value: float, name: str) -> None:
        """Assert that the setting *name* is zero or positive.

        Raises:
            InputValidationError: If *value* is negative.
        """
        if value < 0:
            raise InputValidationError(
                f"Setting '{name}' must not be negative (got {value})."
            )

    @staticmethod
    def assert_odd_window(size: int, name: str = "window") -> None:
        """Assert that a square window size is a positive odd number.

        Raises:
            InputValidationError: If *size* is even or below 1.
        """
        if size < 1 or size % 2 == 0:
            raise InputValidationError(
                f"Setting '{name}' must be a positive odd number (got {size})."
            )

    # ------------------------------------------------------------------
    # Raster checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_band_index_valid(band_index: int, total_bands: int) -> None:
        """Assert that the 1-based *band_index* exists in a raster.

        Raises:
            BandIndexError: If it is below 1 or above *total_bands*.
        """
        if band_index < 1 or band_index > total_bands:
            raise BandIndexError(band_index, total_bands)

    @staticmethod
    def assert_raster_shapes_match(
        shape_a: tuple[int, int],
        shape_b: tuple[int, int],
        label_a: str = "Raster A",
        label_b: str = "Raster B",
    ) -> None:
        """Assert that two rasters share one ``(rows, cols)`` grid.

        Every pixel-wise step (surface minus terrain, cross-epoch matching)
        relies on this.

        Args:
            shape_a: ``(rows, cols)`` of the first raster.
            shape_b: ``(rows, cols)`` of the second raster.
            label_a: Name of the first raster in the error message.
            label_b: Name of the second raster in the error message.

        Raises:
            InputValidationError: If the shapes differ.

        Example::

            Validators.assert_raster_shapes_match(
                dsm.shape, dtm.shape, "Surface", "Terrain"
            )
        """
        if tuple(shape_a) != tuple(shape_b):
            raise InputValidationError(
                f"Raster shape mismatch: {label_a} is {tuple(shape_a)} but "
                f"{label_b} is {tuple(shape_b)}. Both surveys must share one grid."
            )

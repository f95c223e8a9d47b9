"""
CanopyDiff — Shared Base Tool
==============================
Abstract base class for the CanopyDiff raster tools.

Design Pattern:
    Template Method.  :meth:`GeoTool.run` fixes the order
    validate → process → report; a tool only fills in
    :meth:`GeoTool.validate_inputs` and :meth:`GeoTool.process`::

        from shared.python.base_tool import GeoTool

        class MyTool(GeoTool):
            def validate_inputs(self) -> None:
                ...
            def process(self) -> None:
                ...

The module also defines the optional progress hook shared by the
long-running engines (segmentation rounds, distance matrices).
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

# Root project logger; modules log through children such as
# "canopydiff.crown_change_detector.segmentation".
logger = logging.getLogger("canopydiff")

#: Optional progress hook: ``(fraction_complete, message) -> keep_going``.
#: The return value is advisory; tools never cancel on it.
ProgressCallback = Callable[[float, str], bool]


def report_progress(
    progress: Optional[ProgressCallback],
    fraction: float,
    message: str,
) -> None:
    """Call *progress* with *fraction* clamped to [0, 1]; no-op for ``None``."""
    if progress is None:
        return
    progress(min(max(fraction, 0.0), 1.0), message)


class GeoTool(ABC):
    """Base class of every CanopyDiff tool.

    Attributes:
        input_path: Primary input raster, used for logging and ``repr``.
        output_path: Where the tool writes its report.
        verbose: Log at DEBUG instead of INFO.
        progress: Optional :data:`ProgressCallback`.  Results are the same
            with or without it.

    Example::

        tool = CrownChangeDetector(
            rasters=EpochRasters(...),
            output_path=Path("output/changes.json"),
        )
        tool.run()
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        *,
        verbose: bool = False,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.input_path: Path = Path(input_path)
        self.output_path: Path = Path(output_path)
        self.verbose: bool = verbose
        self.progress: Optional[ProgressCallback] = progress

        self._configure_logging()

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_inputs(self) -> None:
        """Check every precondition before any heavy work starts.

        Raises:
            InputValidationError: If an input file, raster grid or setting
                is unusable.
        """

    @abstractmethod
    def process(self) -> None:
        """Do the tool's work and write its output.

        Only called after :meth:`validate_inputs` succeeded.  Exceptions
        propagate through :meth:`run` unchanged.
        """

    # ------------------------------------------------------------------
    # Template method
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Validate, process, then log the elapsed time.

        Raises:
            CanopyDiffError: Whatever ``validate_inputs`` or ``process``
                raised; nothing is caught here.
        """
        logger.info("Starting %s", self.__class__.__name__)
        start = time.perf_counter()

        self.validate_inputs()
        self.process()

        self._report_success(time.perf_counter() - start)

    # ------------------------------------------------------------------
    # Protected helpers
    # ------------------------------------------------------------------

    def _report_success(self, elapsed: float) -> None:
        report_progress(self.progress, 1.0, "Done")
        logger.info(
            "%s completed in %.2fs → %s",
            self.__class__.__name__,
            elapsed,
            self.output_path,
        )

    def _configure_logging(self) -> None:
        """Attach one console handler to the ``canopydiff`` logger.

        The handler is added once per process; the level follows the most
        recently constructed tool's ``verbose`` flag.
        """
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter(
                    fmt="[%(asctime)s] %(levelname)-8s %(name)s — %(message)s",
                    datefmt="%H:%M:%S",
                )
            )
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"input_path={self.input_path!r}, "
            f"output_path={self.output_path!r})"
        )

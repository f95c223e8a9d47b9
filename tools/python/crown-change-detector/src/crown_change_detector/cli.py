"""
Crown Change Detector — CLI Entry Point
=========================================
Installed as the ``geo-crown-change`` command via ``pyproject.toml``.

Usage::

    geo-crown-change \\
        --terrain-a ahn2_dtm.tif --surface-a ahn2_dsm.tif \\
        --terrain-b ahn3_dtm.tif --surface-b ahn3_dsm.tif \\
        --output output/crown_changes.json

Run ``geo-crown-change --help`` for the full option list.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from shared.python.exceptions import CanopyDiffError

from crown_change_detector.detector import CrownChangeConfig, CrownChangeDetector, EpochRasters
from crown_change_detector.segmentation import SegmentationConfig

_RASTER = click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path)


def _echo_progress(fraction: float, message: str) -> bool:
    click.echo(f"\r[{fraction:6.1%}] {message:<40}", nl=False, err=True)
    return True


@click.command(
    name="geo-crown-change",
    help="Segment tree crowns in two elevation surveys and report per-tree change.",
)
@click.option("--terrain-a", "terrain_a", required=True, type=_RASTER,
              help="Terrain model (DTM) of the earlier survey.")
@click.option("--surface-a", "surface_a", required=True, type=_RASTER,
              help="Surface model (DSM) of the earlier survey.")
@click.option("--terrain-b", "terrain_b", required=True, type=_RASTER,
              help="Terrain model (DTM) of the later survey.")
@click.option("--surface-b", "surface_b", required=True, type=_RASTER,
              help="Surface model (DSM) of the later survey.")
@click.option(
    "--output", "-o", "output_path",
    required=True,
    type=click.Path(file_okay=True, dir_okay=False, path_type=Path),
    help="Path for the change report.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "csv"], case_sensitive=False),
    default="json",
    show_default=True,
    help="Report file format.",
)
@click.option("--min-height", type=float, default=1.5, show_default=True,
              help="Lowest canopy height treated as vegetation.")
@click.option("--max-height", type=float, default=50.0, show_default=True,
              help="Highest canopy height treated as vegetation.")
@click.option("--seed-window", type=int, default=5, show_default=True,
              help="Odd window size of the treetop (local maximum) search.")
@click.option("--min-cluster-size", type=int, default=16, show_default=True,
              help="Crowns with fewer cells are discarded.")
@click.option("--max-distance", "maximum_distance", type=float, default=9.0, show_default=True,
              help="Center cut-off, in cells, when matching crowns across surveys.")
@click.option("--initial-vertical", type=float, default=0.5, show_default=True,
              help="Vertical tolerance of the first growth round.")
@click.option("--max-vertical", type=float, default=14.0, show_default=True,
              help="Ceiling of the vertical tolerance.")
@click.option("--vertical-step", type=float, default=0.5, show_default=True,
              help="Vertical tolerance increase per round.")
@click.option("--max-horizontal", type=float, default=12.0, show_default=True,
              help="Maximum crown radius, in cells.")
@click.option("--max-rounds", type=int, default=1000, show_default=True,
              help="Growth rounds allowed before giving up.")
@click.option("--sequential", is_flag=True, default=False,
              help="Process the two surveys one after the other.")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.option("--quiet", "-q", is_flag=True, default=False, help="Suppress progress output.")
def main(
    terrain_a: Path,
    surface_a: Path,
    terrain_b: Path,
    surface_b: Path,
    output_path: Path,
    output_format: str,
    min_height: float,
    max_height: float,
    seed_window: int,
    min_cluster_size: int,
    maximum_distance: float,
    initial_vertical: float,
    max_vertical: float,
    vertical_step: float,
    max_horizontal: float,
    max_rounds: int,
    sequential: bool,
    verbose: bool,
    quiet: bool,
) -> None:
    """CLI entry point — wires Click options into CrownChangeDetector."""
    config = CrownChangeConfig(
        min_height=min_height,
        max_height=max_height,
        seed_window=seed_window,
        min_cluster_size=min_cluster_size,
        maximum_distance=maximum_distance,
        segmentation=SegmentationConfig(
            initial_vertical_distance=initial_vertical,
            max_vertical_distance=max_vertical,
            increase_vertical_distance=vertical_step,
            max_horizontal_distance=max_horizontal,
            max_rounds=max_rounds,
        ),
        output_format=output_format.lower(),  # type: ignore[arg-type]
        parallel=not sequential,
    )
    rasters = EpochRasters(
        terrain_a=terrain_a,
        surface_a=surface_a,
        terrain_b=terrain_b,
        surface_b=surface_b,
    )

    tool = CrownChangeDetector(
        rasters,
        output_path,
        config,
        verbose=verbose,
        progress=None if quiet or verbose else _echo_progress,
    )

    try:
        tool.run()
        click.echo(f"\nReport written to: {output_path}")
        click.echo(
            f"  {len(tool.changes)} matched, "
            f"{len(tool.lost_crowns)} lost, {len(tool.new_crowns)} new crown(s)"
        )
        for change in tool.changes:
            click.echo(f"  {change}")
    except CanopyDiffError as exc:
        click.echo(f"\nError: {exc.message}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

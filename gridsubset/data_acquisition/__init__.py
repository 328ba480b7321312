"""
Data acquisition module for kpoints site selection.

This module turns gridded matching variables into the target cell table and
persists solver outputs:
- One single-band raster per matching variable (same grid for all)
- Target table columns: cell, x, y, then one column per variable
- Subset cells saved as cell/x/y CSV for downstream interpolation

Data flow:
1. Load matching-variable rasters (GeoTIFF) with rasterio
2. Drop cells with nodata in any variable
3. Hand the table and its raster template to the solver
4. Save the selected subset and diagnostics
"""

import logging
import rasterio
import numpy as np
import pandas as pd
from pathlib import Path
from rasterio.transform import xy
from typing import Dict, Tuple

from gridsubset.area_accounting import RasterTemplate
from gridsubset.kpoints import SolverResult

logger = logging.getLogger(__name__)


def load_matching_rasters(
    paths: Dict[str, Path]
) -> Tuple[pd.DataFrame, RasterTemplate]:
    """
    Load matching-variable rasters into a target cell table.

    Cell ids are the 1-based flat (row-major) cell index of the grid, so they
    stay stable across runs on the same template.

    Args:
        paths: Mapping variable name -> raster path, in criteria order

    Returns:
        Tuple of (target table DataFrame, RasterTemplate)
    """
    if not paths:
        raise ValueError("No matching-variable rasters given")

    layers = {}
    profile = None

    for name, filepath in paths.items():
        filepath = Path(filepath)
        logger.info(f"Loading matching variable '{name}': {filepath}")

        if not filepath.exists():
            raise FileNotFoundError(f"File not found: {filepath}")

        with rasterio.open(filepath) as src:
            band = src.read(1, masked=True)

            if profile is None:
                profile = src.profile
            elif (src.width, src.height) != (profile["width"], profile["height"]) \
                    or src.transform != profile["transform"]:
                raise ValueError(
                    f"Raster '{name}' does not share the grid of the first raster"
                )

            logger.info(f"  Shape: {band.shape} pixels, nodata: {int(np.ma.count_masked(band))}")

        layers[name] = band.astype(float).filled(np.nan)

    height, width = profile["height"], profile["width"]
    rows, cols = np.meshgrid(np.arange(height), np.arange(width), indexing="ij")
    xs, ys = xy(profile["transform"], rows.ravel(), cols.ravel(), offset="center")

    df = pd.DataFrame({
        "cell": np.arange(1, height * width + 1),
        "x": np.asarray(xs, dtype=float),
        "y": np.asarray(ys, dtype=float),
    })
    for name, band in layers.items():
        df[name] = band.ravel()

    valid = df[list(layers)].notna().all(axis=1)
    n_dropped = int((~valid).sum())
    df = df[valid].reset_index(drop=True)

    template = RasterTemplate.from_profile(profile)

    logger.info(f"✓ Target table: {len(df)} cells, {len(layers)} variables ({n_dropped} nodata cells dropped)")
    return df, template


def load_target_table(filepath: Path) -> pd.DataFrame:
    """
    Load a prepared target cell table from CSV.

    Args:
        filepath: CSV with columns cell, x, y and the matching variables

    Returns:
        DataFrame
    """
    filepath = Path(filepath)
    logger.info(f"Loading target table: {filepath}")

    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")

    df = pd.read_csv(filepath)
    logger.info(f"  {len(df)} cells, columns: {list(df.columns)}")
    return df


def save_subset(result: SolverResult, output_path: Path) -> Path:
    """
    Save subset cells as cell/x/y CSV.

    Args:
        result: Solver result
        output_path: Output CSV path

    Returns:
        The written path
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    result.to_frame().to_csv(output_path, index=False)
    logger.info(f"✓ Saved: {output_path}")
    return output_path


def save_trace(result: SolverResult, output_path: Path) -> Path:
    """
    Save the per-restart, per-iteration coverage trace.

    Only available when the solver ran with verify_stop enabled.
    """
    if result.trace is None:
        raise ValueError("Result has no trace; run the solver with verify_stop=True")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    result.trace.to_csv(output_path, index=False)
    logger.info(f"✓ Saved: {output_path}")
    return output_path

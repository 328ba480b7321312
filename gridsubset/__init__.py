"""
Grid Subset Selection Package

A Python package for selecting a small set of representative sample sites
("subset cells") out of a gridded study area ("target cells"), so that
simulation or field effort spent on the subset can be generalized back to the
whole area by nearest-neighbour matching.

Core modules:
- distance: Criteria standardization and standardized Euclidean distance
- assignment: Nearest-subset-cell assignment of target cells
- area_accounting: Raster template, cell areas and represented area
- kpoints: Iterative kpoints solver with random restarts
- criteria_comparison: Solver runs across criteria vectors or k values
- data_acquisition: Raster to target-table conversion and CSV outputs
- visualization: Coverage and stopping-criteria figures
- utils: Validation and error types

Usage:
    from gridsubset.data_acquisition import load_matching_rasters
    from gridsubset.kpoints import KpointsConfig, TargetCells, solve

    df, template = load_matching_rasters({"tmean": "tmean.tif", "prec": "prec.tif"})
    cells = TargetCells.from_dataframe(df, variables=["tmean", "prec"])

    config = KpointsConfig(criteria=[1.5, 200], klist=[10, 20, 40], n_starts=20)
    results = solve(cells, config, template)
"""

__version__ = "1.0.0"

import logging

# Configure package-level logger
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = [
    "distance",
    "assignment",
    "area_accounting",
    "kpoints",
    "criteria_comparison",
    "data_acquisition",
    "visualization",
    "utils",
]

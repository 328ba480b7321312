"""
Shared fixtures for the gridsubset test suite.

Run with: python -m pytest tests -v
"""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from gridsubset.area_accounting import RasterTemplate
from gridsubset.kpoints import KpointsConfig, TargetCells


@pytest.fixture
def km_template() -> RasterTemplate:
    """Projected template in km units: every cell is 1 km²."""
    return RasterTemplate(res=(1.0, 1.0), extent=(-0.5, -0.5, 1.5, 1.5), linear_unit_m=1000.0)


@pytest.fixture
def four_cells_df() -> pd.DataFrame:
    """Four cells on a 2x2 grid, one matching variable with two well-separated groups."""
    return pd.DataFrame({
        "cell": [0, 1, 2, 3],
        "x": [0.0, 1.0, 0.0, 1.0],
        "y": [0.0, 0.0, 1.0, 1.0],
        "value": [0.0, 1.0, 10.0, 11.0],
    })


@pytest.fixture
def four_cells(four_cells_df) -> TargetCells:
    return TargetCells.from_dataframe(four_cells_df)


@pytest.fixture
def random_cells() -> TargetCells:
    """300 cells on a 15x20 grid with two uniformly distributed variables."""
    rng = np.random.default_rng(12345)
    rows, cols = np.meshgrid(np.arange(15), np.arange(20), indexing="ij")
    n = rows.size
    return TargetCells(
        cell_ids=np.arange(1, n + 1),
        x=cols.ravel().astype(float),
        y=rows.ravel().astype(float),
        values=rng.uniform(0, 10, size=(n, 2)),
        variables=["tmean", "prec"],
    )


@pytest.fixture
def base_config() -> KpointsConfig:
    return KpointsConfig(criteria=[1.0], klist=2, n_starts=10, min_area=0.0, max_iter=30, seed=7)

"""
Smoke tests for figure generation.
"""

import matplotlib.pyplot as plt
import pandas as pd
import pytest

from gridsubset.criteria_comparison import compare_criteria, compare_k
from gridsubset.kpoints import KpointsConfig, run_kpoints
from gridsubset.visualization import (
    plot_coverage_by_k,
    plot_criteria_comparison,
    plot_stopping_trace,
    plot_subset_map,
)

OPTIONS = dict(n_starts=10, min_area=0.0, max_iter=10, seed=8)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


def test_coverage_by_k_saves_figure(tmp_path, four_cells, km_template):
    comparison = compare_k(four_cells, [1.0], [1, 2, 3], km_template, **OPTIONS)
    out = tmp_path / "figures" / "coverage.png"

    fig = plot_coverage_by_k(comparison.table, out, dpi=50)

    assert isinstance(fig, plt.Figure)
    assert out.exists()


def test_criteria_comparison_figure(four_cells, km_template):
    comparison = compare_criteria(four_cells, [[1.0], [0.1]], 2, km_template, **OPTIONS)
    fig = plot_criteria_comparison(comparison.table)
    assert len(fig.axes[0].patches) == 2


def test_stopping_trace_figure(random_cells, km_template):
    config = KpointsConfig(criteria=[1, 1], klist=4, verify_stop=True, **OPTIONS)
    result = run_kpoints(random_cells, config, km_template)

    fig = plot_stopping_trace(result.trace)
    assert len(fig.axes[0].lines) == result.trace["restart"].nunique()


def test_stopping_trace_requires_trace():
    with pytest.raises(ValueError):
        plot_stopping_trace(pd.DataFrame())


def test_subset_map(tmp_path, random_cells, km_template):
    config = KpointsConfig(criteria=[1, 1], klist=6, **OPTIONS)
    result = run_kpoints(random_cells, config, km_template)

    out = tmp_path / "map.png"
    plot_subset_map(random_cells, result, out, dpi=50)
    assert out.exists()

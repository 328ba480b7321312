"""
Visualization module for kpoints site selection.

This module generates figures for solver results:
- Coverage vs number of subset cells (k)
- Criteria comparison bar charts
- Stopping-criteria traces (verify_stop diagnostics)
- Subset cell maps over the target grid
"""

import logging
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from pathlib import Path
from typing import Optional

from gridsubset.assignment import assign_to_nearest
from gridsubset.distance import standardize
from gridsubset.kpoints import SolverResult, TargetCells

logger = logging.getLogger(__name__)


def _save(fig: plt.Figure, output_path: Optional[Path], dpi: int):
    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=dpi, bbox_inches='tight')
        logger.info(f"✓ Saved: {output_path}")


def plot_coverage_by_k(
    comparison_table: pd.DataFrame,
    output_path: Optional[Path] = None,
    dpi: int = 300
) -> plt.Figure:
    """
    Plot represented area against the number of subset cells.

    Args:
        comparison_table: Table from compare_k() with columns [k, represented_pct, represented_area_km2]
        output_path: Path to save figure
        dpi: Figure resolution

    Returns:
        matplotlib Figure object
    """
    logger.info("Creating coverage-by-k plot")

    df = comparison_table.sort_values("k")
    fig, ax = plt.subplots(figsize=(10, 6), dpi=100)

    ax.plot(df["k"], df["represented_pct"], marker='o', linewidth=2, markersize=8, color='#2166ac')
    ax.fill_between(df["k"], df["represented_pct"], alpha=0.3, color='#2166ac')

    for k, pct, area in zip(df["k"], df["represented_pct"], df["represented_area_km2"]):
        ax.annotate(f"{area:,.0f} km²", (k, pct), textcoords="offset points",
                    xytext=(0, 8), ha='center', fontsize=9)

    ax.set_xlabel('Number of subset cells (k)', fontsize=12, fontweight='bold')
    ax.set_ylabel('Represented area (%)', fontsize=12, fontweight='bold')
    ax.set_title('Coverage by Number of Subset Cells', fontsize=14, fontweight='bold')
    ax.set_ylim([0, 105])
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    _save(fig, output_path, dpi)
    return fig


def plot_criteria_comparison(
    comparison_table: pd.DataFrame,
    output_path: Optional[Path] = None,
    dpi: int = 300
) -> plt.Figure:
    """
    Bar chart of represented area for each candidate criteria vector.

    Args:
        comparison_table: Table from compare_criteria() with columns [criteria, represented_pct]
        output_path: Path to save figure
        dpi: Figure resolution

    Returns:
        matplotlib Figure object
    """
    logger.info("Creating criteria comparison plot")

    fig, ax = plt.subplots(figsize=(10, 6), dpi=100)
    x = np.arange(len(comparison_table))

    ax.bar(x, comparison_table["represented_pct"], color='#a6d96a', edgecolor='black', linewidth=1.5)
    ax.set_xticks(x)
    ax.set_xticklabels(comparison_table["criteria"], rotation=30, ha='right')
    ax.set_xlabel('Matching criteria', fontsize=12, fontweight='bold')
    ax.set_ylabel('Represented area (%)', fontsize=12, fontweight='bold')
    k_values = sorted(set(comparison_table["k"]))
    ax.set_title(f'Criteria Comparison (k={", ".join(map(str, k_values))})', fontsize=14, fontweight='bold')
    ax.set_ylim([0, 105])
    ax.grid(True, alpha=0.3, axis='y')

    plt.tight_layout()
    _save(fig, output_path, dpi)
    return fig


def plot_stopping_trace(
    trace: pd.DataFrame,
    output_path: Optional[Path] = None,
    dpi: int = 300
) -> plt.Figure:
    """
    Plot represented area per iteration for every restart.

    Lets the user check whether `iter` and `min_area` let restarts stabilize.

    Args:
        trace: SolverResult.trace (requires verify_stop=True)
        output_path: Path to save figure
        dpi: Figure resolution

    Returns:
        matplotlib Figure object
    """
    if trace is None or trace.empty:
        raise ValueError("Empty trace; run the solver with verify_stop=True")

    logger.info(f"Creating stopping trace plot for {trace['restart'].nunique()} restarts")

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(14, 5), dpi=100)

    for restart, df in trace.groupby("restart"):
        style = '-' if (df["stop_reason"] == "converged").all() else '--'
        ax1.plot(df["iteration"], df["represented_area_km2"], style, linewidth=1.5, alpha=0.7)
        ax2.plot(df["iteration"].iloc[1:], np.diff(df["represented_area_km2"]),
                 style, linewidth=1.5, alpha=0.7)

    ax1.set_xlabel('Iteration', fontsize=12, fontweight='bold')
    ax1.set_ylabel('Represented area (km²)', fontsize=12, fontweight='bold')
    ax1.set_title('Represented Area per Restart', fontsize=12, fontweight='bold')
    ax1.grid(True, alpha=0.3)

    ax2.axhline(0, color='black', linewidth=1)
    ax2.set_xlabel('Iteration', fontsize=12, fontweight='bold')
    ax2.set_ylabel('Change in represented area (km²)', fontsize=12, fontweight='bold')
    ax2.set_title('Area Gain per Iteration (dashed = hit iter cap)', fontsize=12, fontweight='bold')
    ax2.grid(True, alpha=0.3)

    plt.tight_layout()
    _save(fig, output_path, dpi)
    return fig


def plot_subset_map(
    cells: TargetCells,
    result: SolverResult,
    output_path: Optional[Path] = None,
    dpi: int = 300
) -> plt.Figure:
    """
    Map target cells coloured by distance to their subset cell.

    Cells with distance <= 1 are represented; subset cells are drawn on top.

    Args:
        cells: Target cell table used for the run
        result: Solver result
        output_path: Path to save figure
        dpi: Figure resolution

    Returns:
        matplotlib Figure object
    """
    logger.info(f"Creating subset map for k={result.k}")

    targets_std = standardize(cells.values, result.config.criteria)
    assignment = assign_to_nearest(targets_std, cells.positions_of(result.subset),
                                   result.config.chunk_size)

    fig, ax = plt.subplots(figsize=(12, 10), dpi=100)

    sc = ax.scatter(cells.x, cells.y, c=np.minimum(assignment.distance, 2.0), cmap='RdYlGn_r',
                    vmin=0, vmax=2, s=4, marker='s', linewidths=0)
    ax.scatter(result.x, result.y, c='black', s=40, marker='^', label='Subset cells')

    cbar = fig.colorbar(sc, ax=ax, pad=0.02)
    cbar.set_label('Standardized distance to subset cell (capped at 2)', rotation=270, labelpad=20, fontsize=12)

    stats_text = (f"k = {result.k} | Represented: {result.represented_area_km2:,.0f} of "
                  f"{result.total_area_km2:,.0f} km² ({result.represented_pct:.1f}%)")
    ax.text(0.5, -0.05, stats_text, transform=ax.transAxes,
            ha='center', fontsize=11, bbox=dict(boxstyle='round', facecolor='wheat', alpha=0.5))

    ax.set_title('Subset Cells and Representation', fontsize=14, fontweight='bold', pad=20)
    ax.set_aspect('equal')
    ax.legend(loc='upper right')

    plt.tight_layout()
    _save(fig, output_path, dpi)
    return fig

"""
Criteria comparison driver.

Runs the kpoints solver once per candidate criteria vector (fixed k) or once
per k (fixed criteria) and tabulates the represented area of each run, so the
trade-off between strictness of matching and number of sites can be compared.
"""

import logging
import pandas as pd
from dataclasses import dataclass, field
from typing import List, Sequence, Union

from gridsubset.area_accounting import RasterTemplate
from gridsubset.kpoints import (
    KpointsConfig,
    SolverResult,
    TargetCells,
    run_kpoints,
    validate_config,
)
from gridsubset.utils import format_criteria, normalize_klist

logger = logging.getLogger(__name__)


@dataclass
class ComparisonResult:
    """Represented area per configuration, with the shared total area"""
    table: pd.DataFrame
    total_area_km2: float
    results: List[SolverResult] = field(default_factory=list)


def _summarize(label, result: SolverResult) -> dict:
    return {
        "label": label,
        "k": result.k,
        "criteria": format_criteria(result.config.criteria),
        "represented_area_km2": result.represented_area_km2,
        "total_area_km2": result.total_area_km2,
        "represented_pct": result.represented_pct,
    }


def _as_cells(cells: Union[TargetCells, pd.DataFrame]) -> TargetCells:
    if isinstance(cells, pd.DataFrame):
        return TargetCells.from_dataframe(cells)
    return cells


def compare_criteria(
    cells: Union[TargetCells, pd.DataFrame],
    criteria_list: Sequence[Sequence[float]],
    k: int,
    template: RasterTemplate,
    config: KpointsConfig = None,
    **options
) -> ComparisonResult:
    """
    Solve once per candidate criteria vector at a fixed k.

    Args:
        cells: Target cell table
        criteria_list: Candidate criteria vectors to compare
        k: Number of subset cells for every run
        template: Raster template of the target grid
        config: Base configuration (criteria and klist are overridden per run)
        **options: Extra KpointsConfig options (n_starts, min_area, max_iter, ...)

    Returns:
        ComparisonResult with one row per criteria vector
    """
    cells = _as_cells(cells)
    if not criteria_list:
        raise ValueError("criteria_list is empty")

    base = config if config is not None else KpointsConfig(criteria=criteria_list[0])
    if options:
        base = base.replace(**options)

    configs = [base.replace(criteria=list(c), klist=k) for c in criteria_list]
    # Validate every configuration before the first run starts
    for c in configs:
        validate_config(c, len(cells), cells.n_variables)

    logger.info(f"Comparing {len(configs)} criteria vectors at k={k}")

    rows, results = [], []
    for c in configs:
        label = format_criteria(c.criteria)
        result = run_kpoints(cells, c, template, k=k)
        results.append(result)
        rows.append(_summarize(label, result))
        logger.info(f"  criteria {label}: {result.represented_pct:.1f}% represented")

    table = pd.DataFrame(rows)
    return ComparisonResult(
        table=table,
        total_area_km2=float(table["total_area_km2"].iloc[0]),
        results=results,
    )


def compare_k(
    cells: Union[TargetCells, pd.DataFrame],
    criteria: Sequence[float],
    klist: Union[int, Sequence[int]],
    template: RasterTemplate,
    config: KpointsConfig = None,
    **options
) -> ComparisonResult:
    """
    Solve once per k at a fixed criteria vector.

    Args:
        cells: Target cell table
        criteria: Matching criteria used for every run
        klist: k values to compare, in order
        template: Raster template of the target grid
        config: Base configuration (criteria and klist are overridden)
        **options: Extra KpointsConfig options (n_starts, min_area, max_iter, ...)

    Returns:
        ComparisonResult with one row per k
    """
    cells = _as_cells(cells)
    ks = normalize_klist(klist)

    base = config if config is not None else KpointsConfig(criteria=criteria)
    if options:
        base = base.replace(**options)
    base = base.replace(criteria=list(criteria), klist=ks)

    validate_config(base, len(cells), cells.n_variables)
    logger.info(f"Comparing k values {ks} at criteria {format_criteria(criteria)}")

    rows, results = [], []
    for k in ks:
        result = run_kpoints(cells, base, template, k=k)
        results.append(result)
        rows.append(_summarize(k, result))
        logger.info(f"  k={k}: {result.represented_pct:.1f}% represented")

    table = pd.DataFrame(rows)
    return ComparisonResult(
        table=table,
        total_area_km2=float(table["total_area_km2"].iloc[0]),
        results=results,
    )

"""
Kpoints iterative solver.

Selects k representative subset cells out of the target cells with a
k-means-like procedure in criteria-standardized space:

1. Draw k distinct target cells at random
2. Assign every target cell to its nearest subset cell
3. Record the represented area of that assignment
4. Move each subset cell to the member of its cluster nearest to the
   cluster mean (always a real target cell, never a synthetic point)
5. Repeat until the represented area has changed by no more than
   `min_area` km² for 5 consecutive iterations, or `max_iter` is reached

The best iteration of each restart is kept, and the best restart overall
becomes the SolverResult. Restarts are independent and run through joblib.

Usage:
    cells = TargetCells.from_dataframe(df, variables=["tmean", "prec"])
    config = KpointsConfig(criteria=[1.5, 200], klist=[10, 20], n_starts=20)
    results = solve(cells, config, template)
"""

import dataclasses
import logging
import numpy as np
import pandas as pd
import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
from joblib import Parallel, delayed

from gridsubset.area_accounting import (
    AreaSummary,
    RasterTemplate,
    cell_areas_km2,
    summarize_coverage,
)
from gridsubset.assignment import Assignment, assign_to_nearest
from gridsubset.distance import DEFAULT_CHUNK_SIZE, standardize
from gridsubset.utils import (
    ConfigurationError,
    KpointsError,
    normalize_klist,
    validate_criteria,
    validate_k,
    validate_n_starts,
)

logger = logging.getLogger(__name__)

# Number of consecutive small area changes required to stop a restart
STABILITY_WINDOW = 5

STOP_CONVERGED = "converged"
STOP_MAX_ITER = "max_iter"
STOP_FAILED = "failed"


@dataclass
class TargetCells:
    """Target cell table: ids, centroids and matching variables"""
    cell_ids: np.ndarray      # Unique integer id per cell
    x: np.ndarray             # Cell-centre x
    y: np.ndarray             # Cell-centre y
    values: np.ndarray        # (n_cells, n_variables) matching variables
    variables: List[str]      # Column names, in criteria order

    def __post_init__(self):
        self.cell_ids = np.array(self.cell_ids, dtype=np.int64)
        self.x = np.array(self.x, dtype=float)
        self.y = np.array(self.y, dtype=float)
        self.values = np.array(self.values, dtype=float)
        if self.values.ndim == 1:
            self.values = self.values.reshape(-1, 1)

        n = self.cell_ids.size
        if not (self.x.size == self.y.size == self.values.shape[0] == n):
            raise ConfigurationError("cell_ids, x, y and values must have the same number of rows")

        if len(self.variables) != self.values.shape[1]:
            raise ConfigurationError(
                f"{len(self.variables)} variable names for {self.values.shape[1]} value columns"
            )

        if np.unique(self.cell_ids).size != n:
            raise ConfigurationError("Cell ids must be unique")

        if not np.all(np.isfinite(self.values)):
            raise ConfigurationError("Matching variables contain missing or non-finite values")

        for arr in (self.cell_ids, self.x, self.y, self.values):
            arr.setflags(write=False)

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        variables: Optional[Sequence[str]] = None,
        id_col: str = "cell",
        x_col: str = "x",
        y_col: str = "y"
    ) -> "TargetCells":
        """
        Build the target table from a DataFrame.

        Args:
            df: One row per cell with id, x, y and matching-variable columns
            variables: Matching-variable columns in criteria order.
                Defaults to every column other than id, x and y.
            id_col: Cell id column
            x_col: Cell-centre x column
            y_col: Cell-centre y column

        Returns:
            TargetCells
        """
        missing = [c for c in (id_col, x_col, y_col) if c not in df.columns]
        if missing:
            raise ConfigurationError(f"Target table is missing columns: {missing}")

        if variables is None:
            variables = [c for c in df.columns if c not in (id_col, x_col, y_col)]
        variables = list(variables)

        absent = [v for v in variables if v not in df.columns]
        if absent:
            raise ConfigurationError(f"Matching variables not in target table: {absent}")

        if not variables:
            raise ConfigurationError("Target table has no matching-variable columns")

        return cls(
            cell_ids=df[id_col].to_numpy(),
            x=df[x_col].to_numpy(),
            y=df[y_col].to_numpy(),
            values=df[variables].to_numpy(dtype=float),
            variables=variables,
        )

    def __len__(self) -> int:
        return int(self.cell_ids.size)

    @property
    def n_variables(self) -> int:
        return int(self.values.shape[1])

    def positions_of(self, cell_ids: Sequence[int]) -> np.ndarray:
        """Row positions of the given cell ids"""
        lookup = pd.Index(self.cell_ids)
        pos = lookup.get_indexer(np.asarray(cell_ids))
        if np.any(pos < 0):
            unknown = np.asarray(cell_ids)[pos < 0]
            raise ConfigurationError(f"Cell ids not in target table: {unknown.tolist()}")
        return pos.astype(np.intp)

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame({"cell": self.cell_ids, "x": self.x, "y": self.y})
        for i, name in enumerate(self.variables):
            df[name] = self.values[:, i]
        return df


@dataclass
class KpointsConfig:
    """Run configuration for the kpoints solver"""
    criteria: Sequence[float]
    klist: Union[int, Sequence[int]] = 10
    n_starts: int = 10
    min_area: float = 100.0         # km²
    max_iter: int = 50              # "iter" in config files
    subset_in_target: bool = True
    verify_stop: bool = False
    n_jobs: int = 1
    chunk_size: int = DEFAULT_CHUNK_SIZE
    seed: Optional[int] = None

    @classmethod
    def from_dict(cls, options: Dict) -> "KpointsConfig":
        """
        Build a config from a plain dictionary (e.g. a YAML section).

        Accepts `iter` as an alias of `max_iter`.
        """
        options = dict(options)
        if "iter" in options:
            options["max_iter"] = options.pop("iter")

        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigurationError(f"Unknown kpoints options: {unknown}")

        if "criteria" not in options:
            raise ConfigurationError("kpoints configuration requires 'criteria'")

        return cls(**options)

    @property
    def ks(self) -> List[int]:
        return normalize_klist(self.klist)

    def replace(self, **changes) -> "KpointsConfig":
        return dataclasses.replace(self, **changes)

    def describe(self) -> Dict:
        return {
            "criteria": [float(c) for c in np.asarray(self.criteria, dtype=float).ravel()],
            "klist": self.ks,
            "n_starts": self.n_starts,
            "min_area": self.min_area,
            "iter": self.max_iter,
            "subset_in_target": self.subset_in_target,
            "verify_stop": self.verify_stop,
        }


def load_config(config_path: Path) -> KpointsConfig:
    """
    Load a KpointsConfig from YAML.

    The file may hold the options at top level or under a `kpoints` section.
    """
    with open(config_path) as f:
        config = yaml.safe_load(f)

    section = config.get("kpoints", config)
    logger.info(f"Kpoints configuration loaded from {config_path}")
    return KpointsConfig.from_dict(section)


@dataclass(frozen=True)
class IterationRecord:
    """Snapshot of one assign-then-relocate cycle"""
    iteration: int
    restart: int
    subset: np.ndarray               # Cell ids that produced this assignment
    represented_area_km2: float
    total_area_km2: float

    @property
    def represented_fraction(self) -> float:
        if self.total_area_km2 <= 0:
            return 0.0
        return self.represented_area_km2 / self.total_area_km2


@dataclass(frozen=True)
class RestartResult:
    """Outcome of one random restart"""
    restart: int
    best: Optional[IterationRecord]
    records: Tuple[IterationRecord, ...] = ()     # Dropped by the solver unless verify_stop
    areas: Tuple[float, ...] = ()                 # Represented area per iteration
    stop_reason: str = STOP_CONVERGED
    error: Optional[str] = None
    progress: Tuple[str, ...] = ()                # Progress lines from a worker

    @property
    def n_iterations(self) -> int:
        return len(self.areas)


@dataclass(frozen=True)
class SolverResult:
    """Best subset found for one (k, criteria) configuration"""
    subset: np.ndarray
    x: np.ndarray
    y: np.ndarray
    represented_area_km2: float
    total_area_km2: float
    k: int
    config: KpointsConfig
    best_restart: int
    best_iteration: int
    restart_summary: pd.DataFrame
    failed_restarts: List[str] = field(default_factory=list)
    trace: Optional[pd.DataFrame] = None

    @property
    def represented_fraction(self) -> float:
        if self.total_area_km2 <= 0:
            return 0.0
        return self.represented_area_km2 / self.total_area_km2

    @property
    def represented_pct(self) -> float:
        return 100 * self.represented_fraction

    def to_frame(self) -> pd.DataFrame:
        """Subset cells as a cell/x/y table for downstream interpolation"""
        return pd.DataFrame({"cell": self.subset, "x": self.x, "y": self.y})


def validate_config(
    config: KpointsConfig,
    n_targets: int,
    n_variables: int,
    ks: Optional[Sequence[int]] = None
) -> np.ndarray:
    """
    Check every option before any clustering work starts.

    Args:
        config: Run configuration
        n_targets: Number of target cells
        n_variables: Number of matching variables
        ks: k values to check (defaults to config.ks)

    Returns:
        Validated criteria array
    """
    if not config.subset_in_target:
        raise ConfigurationError(
            "subset_in_target=False is not supported: subset cells must be drawn from the target cells"
        )

    criteria = validate_criteria(config.criteria, n_variables)

    for k in (ks if ks is not None else config.ks):
        validate_k(k, n_targets)

    if config.max_iter < 1:
        raise ConfigurationError(f"iter must be at least 1, got {config.max_iter}")

    if config.min_area < 0:
        raise ConfigurationError(f"min_area must be non-negative, got {config.min_area}")

    if config.chunk_size < 1:
        raise ConfigurationError(f"chunk_size must be positive, got {config.chunk_size}")

    validate_n_starts(config.n_starts)
    return criteria


def check_stopping(
    areas: Sequence[float],
    min_area: float,
    max_iter: int,
    window: int = STABILITY_WINDOW
) -> Optional[str]:
    """
    Dual stopping rule for one restart.

    Converged when each of the last `window` changes in represented area
    (iteration i minus iteration i-1) is at most min_area in magnitude.
    Otherwise stop at max_iter.

    Args:
        areas: Represented area (km²) of every iteration so far
        min_area: Largest change still counted as stable (km²)
        max_iter: Iteration cap
        window: Number of consecutive stable changes required

    Returns:
        STOP_CONVERGED, STOP_MAX_ITER, or None to continue
    """
    n = len(areas)

    if n > window:
        changes = np.abs(np.diff(np.asarray(areas[-(window + 1):], dtype=float)))
        if np.all(changes <= min_area):
            return STOP_CONVERGED

    if n >= max_iter:
        return STOP_MAX_ITER

    return None


def relocate(targets_std: np.ndarray, assignment: Assignment, k: int) -> np.ndarray:
    """
    Move each subset cell to the cluster member closest to the cluster mean.

    Ties go to the member that comes first in the target table.

    Args:
        targets_std: Standardized matching variables (n_targets, n_variables)
        assignment: Current assignment of targets to subset cells
        k: Number of subset cells

    Returns:
        New subset cell positions, one per cluster, in cluster order
    """
    labels = assignment.nearest
    counts = np.bincount(labels, minlength=k)
    if np.any(counts == 0):
        raise ArithmeticError(f"Empty cluster(s): {np.flatnonzero(counts == 0).tolist()}")

    centroids = np.zeros((k, targets_std.shape[1]), dtype=float)
    np.add.at(centroids, labels, targets_std)
    centroids /= counts[:, None]

    d = np.sqrt(np.sum((targets_std - centroids[labels]) ** 2, axis=1))
    if not np.all(np.isfinite(d)):
        raise FloatingPointError("Non-finite distance to cluster centroid")

    nearest_member = pd.Series(d).groupby(labels).idxmin()
    return nearest_member.to_numpy(dtype=np.intp)


def select_best_iteration(records: Sequence[IterationRecord]) -> IterationRecord:
    """Record with the largest represented area (earliest on ties)."""
    if not records:
        raise ValueError("No iteration records to select from")
    return max(records, key=lambda r: r.represented_area_km2)


def select_best_restart(results: Sequence[RestartResult]) -> RestartResult:
    """Restart whose best record has the largest represented area (earliest on ties)."""
    usable = [r for r in results if r.best is not None]
    if not usable:
        raise KpointsError("All restarts failed; no subset available")
    return max(usable, key=lambda r: r.best.represented_area_km2)


def restart_seeds(seed: Optional[int], k: int, n_starts: int) -> List[np.random.SeedSequence]:
    """Independent random streams, one per restart, reproducible for a given seed and k."""
    return np.random.SeedSequence(entropy=seed, spawn_key=(k,)).spawn(n_starts)


def run_restart(
    targets_std: np.ndarray,
    cell_areas: np.ndarray,
    cell_ids: np.ndarray,
    k: int,
    config: KpointsConfig,
    rng: np.random.Generator,
    restart: int = 1,
    progress: Optional[Callable[[str], None]] = None
) -> RestartResult:
    """
    One random initialization iterated until the stopping rule fires.

    Args:
        targets_std: Standardized matching variables (n_targets, n_variables)
        cell_areas: Area of each target cell (km²)
        cell_ids: Cell id of each target row
        k: Number of subset cells
        config: Run configuration (n_starts, min_area, max_iter, chunk_size)
        rng: Random source for the initial subset
        restart: 1-based restart index, used in records and progress messages
        progress: Receives each progress message (defaults to logger.info)

    Returns:
        RestartResult with every iteration record and the best one
    """
    progress = progress or logger.info
    n = targets_std.shape[0]
    subset = rng.choice(n, size=k, replace=False)

    records: List[IterationRecord] = []
    areas: List[float] = []
    stop_reason = None
    iteration = 0

    with np.errstate(invalid="raise", divide="raise"):
        while stop_reason is None:
            iteration += 1
            progress(
                f"{pd.Timestamp.now():%Y-%m-%d %H:%M:%S} | iteration {iteration}/{config.max_iter} | "
                f"k={k} | restart {restart}/{config.n_starts}"
            )

            assignment = assign_to_nearest(targets_std, subset, config.chunk_size)
            summary = summarize_coverage(assignment.distance, cell_areas)

            records.append(IterationRecord(
                iteration=iteration,
                restart=restart,
                subset=cell_ids[subset].copy(),
                represented_area_km2=summary.represented_area_km2,
                total_area_km2=summary.total_area_km2,
            ))
            areas.append(summary.represented_area_km2)

            progress(
                f"  iteration {iteration} | restart {restart}/{config.n_starts} | k={k} | "
                f"represented {summary.represented_area_km2:.1f} km² ({summary.represented_pct:.1f}%)"
            )

            stop_reason = check_stopping(areas, config.min_area, config.max_iter)
            if stop_reason is None:
                subset = relocate(targets_std, assignment, k)

    best = select_best_iteration(records)
    logger.debug(
        f"Restart {restart} stopped ({stop_reason}) after {iteration} iterations; "
        f"best iteration {best.iteration} with {best.represented_area_km2:.1f} km²"
    )

    return RestartResult(
        restart=restart,
        best=best,
        records=tuple(records),
        areas=tuple(areas),
        stop_reason=stop_reason,
    )


def _run_restart_safely(
    targets_std: np.ndarray,
    cell_areas: np.ndarray,
    cell_ids: np.ndarray,
    k: int,
    config: KpointsConfig,
    seed: np.random.SeedSequence,
    restart: int
) -> RestartResult:
    """
    Run one restart inside a joblib worker.

    Progress lines are returned with the result and logged by the parent
    process. Numerical failures only drop this restart. Iteration records are only
    sent back when verify_stop is set.
    """
    rng = np.random.default_rng(seed)
    messages: List[str] = []
    try:
        result = run_restart(targets_std, cell_areas, cell_ids, k, config, rng, restart,
                             progress=messages.append)
    except ArithmeticError as e:
        return RestartResult(
            restart=restart,
            best=None,
            stop_reason=STOP_FAILED,
            error=f"restart {restart}: {type(e).__name__}: {e}",
            progress=tuple(messages),
        )

    records = result.records if config.verify_stop else ()
    return dataclasses.replace(result, records=records, progress=tuple(messages))


def _restart_summary(results: Sequence[RestartResult]) -> pd.DataFrame:
    rows = []
    for r in results:
        rows.append({
            "restart": r.restart,
            "stop_reason": r.stop_reason,
            "n_iterations": r.n_iterations,
            "best_iteration": r.best.iteration if r.best else np.nan,
            "represented_area_km2": r.best.represented_area_km2 if r.best else np.nan,
            "represented_pct": 100 * r.best.represented_fraction if r.best else np.nan,
        })
    return pd.DataFrame(rows)


def _trace(results: Sequence[RestartResult]) -> pd.DataFrame:
    rows = []
    for r in results:
        for rec in r.records:
            rows.append({
                "restart": rec.restart,
                "iteration": rec.iteration,
                "represented_area_km2": rec.represented_area_km2,
                "total_area_km2": rec.total_area_km2,
                "represented_pct": 100 * rec.represented_fraction,
                "stop_reason": r.stop_reason,
            })
    return pd.DataFrame(rows)


def _solve_k(
    cells: TargetCells,
    targets_std: np.ndarray,
    cell_areas: np.ndarray,
    k: int,
    config: KpointsConfig
) -> SolverResult:
    logger.info(f"Running kpoints: k={k}, n_starts={config.n_starts}, iter={config.max_iter}, "
                f"min_area={config.min_area} km²")

    seeds = restart_seeds(config.seed, k, config.n_starts)
    results = Parallel(n_jobs=config.n_jobs)(
        delayed(_run_restart_safely)(
            targets_std, cell_areas, cells.cell_ids, k, config, seed, restart
        )
        for restart, seed in enumerate(seeds, start=1)
    )

    for r in results:
        for message in r.progress:
            logger.info(message)
        if r.error:
            logger.error(f"Restart failed (k={k}) {r.error}")

    best_restart = select_best_restart(results)
    best = best_restart.best
    failed = [r.error for r in results if r.stop_reason == STOP_FAILED]

    n_max_iter = sum(r.stop_reason == STOP_MAX_ITER for r in results)
    if n_max_iter > (len(results) - len(failed)) / 2:
        logger.warning(
            f"{n_max_iter}/{len(results)} restarts reached iter={config.max_iter} without "
            f"stabilizing; consider raising iter or min_area"
        )

    pos = cells.positions_of(best.subset)
    result = SolverResult(
        subset=best.subset,
        x=cells.x[pos],
        y=cells.y[pos],
        represented_area_km2=best.represented_area_km2,
        total_area_km2=best.total_area_km2,
        k=k,
        config=config,
        best_restart=best.restart,
        best_iteration=best.iteration,
        restart_summary=_restart_summary(results),
        failed_restarts=failed,
        trace=_trace(results) if config.verify_stop else None,
    )

    logger.info(
        f"✓ k={k}: best restart {result.best_restart} (iteration {result.best_iteration}) "
        f"represents {result.represented_area_km2:.1f} of {result.total_area_km2:.1f} km² "
        f"({result.represented_pct:.1f}%)"
    )
    return result


def _prepare(
    cells: Union[TargetCells, pd.DataFrame],
    config: KpointsConfig,
    template: RasterTemplate,
    ks: Sequence[int]
) -> Tuple[TargetCells, np.ndarray, np.ndarray]:
    if isinstance(cells, pd.DataFrame):
        cells = TargetCells.from_dataframe(cells)

    if template is None:
        raise ConfigurationError("A raster template is required for area accounting")

    criteria = validate_config(config, len(cells), cells.n_variables, ks)
    targets_std = standardize(cells.values, criteria)
    cell_areas = cell_areas_km2(template, cells.y)
    return cells, targets_std, cell_areas


def run_kpoints(
    cells: Union[TargetCells, pd.DataFrame],
    config: KpointsConfig,
    template: RasterTemplate,
    k: Optional[int] = None
) -> SolverResult:
    """
    Best subset of k cells across all restarts.

    Args:
        cells: Target cell table
        config: Run configuration
        template: Raster template of the target grid
        k: Number of subset cells (defaults to the first value of config.klist)

    Returns:
        SolverResult for k
    """
    k = int(k) if k is not None else config.ks[0]
    cells, targets_std, cell_areas = _prepare(cells, config, template, [k])
    return _solve_k(cells, targets_std, cell_areas, k, config)


def solve(
    cells: Union[TargetCells, pd.DataFrame],
    config: KpointsConfig,
    template: RasterTemplate
) -> List[SolverResult]:
    """
    Run the solver for every k in config.klist.

    All k values are validated before the first restart starts.

    Returns:
        One SolverResult per k, in klist order
    """
    ks = config.ks
    cells, targets_std, cell_areas = _prepare(cells, config, template, ks)

    results = []
    for k in ks:
        results.append(_solve_k(cells, targets_std, cell_areas, k, config))
    return results


def evaluate_subset(
    cells: Union[TargetCells, pd.DataFrame],
    subset_ids: Sequence[int],
    criteria: Sequence[float],
    template: RasterTemplate,
    chunk_size: int = DEFAULT_CHUNK_SIZE
) -> AreaSummary:
    """
    Represented area of an arbitrary set of subset cells.

    Useful for scoring an existing site network against a kpoints result.

    Args:
        cells: Target cell table
        subset_ids: Cell ids of the subset cells
        criteria: Matching criteria
        template: Raster template of the target grid
        chunk_size: Number of target rows per distance block

    Returns:
        AreaSummary
    """
    if isinstance(cells, pd.DataFrame):
        cells = TargetCells.from_dataframe(cells)

    pos = cells.positions_of(subset_ids)
    if np.unique(pos).size != pos.size:
        raise ConfigurationError("Subset cell ids must be distinct")

    targets_std = standardize(cells.values, criteria)
    assignment = assign_to_nearest(targets_std, pos, chunk_size)
    return summarize_coverage(assignment.distance, cell_areas_km2(template, cells.y))

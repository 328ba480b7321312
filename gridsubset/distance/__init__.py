"""
Distance and standardization engine.

Matching variables are standardized by dividing each column by its matching
criterion. In that space a distance of 1 means "just within the allowable
difference" for a single variable, and the Euclidean norm combines all of them.

The target-by-subset distance matrix is the dominant cost of the solver, so
it is evaluated with scipy's cdist in row chunks to bound memory on large grids.
"""

import logging
import numpy as np
from typing import Iterator, Sequence, Tuple
from scipy.spatial.distance import cdist

from gridsubset.utils import ConfigurationError, validate_criteria

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100_000

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "validate_criteria",
    "standardize",
    "standardized_distance",
    "iter_chunks",
    "pairwise_distances",
]


def standardize(values: np.ndarray, criteria: Sequence[float]) -> np.ndarray:
    """
    Divide every matching variable by its criterion.

    Args:
        values: Array (n_cells, n_variables) of matching-variable values
        criteria: One positive divisor per variable

    Returns:
        Standardized float array with the same shape as values
    """
    values = np.asarray(values, dtype=float)
    if values.ndim == 1:
        values = values.reshape(-1, 1)

    crit = validate_criteria(criteria, values.shape[1])
    return values / crit


def standardized_distance(
    v1: Sequence[float],
    v2: Sequence[float],
    criteria: Sequence[float]
) -> float:
    """
    Euclidean distance between two cells in criteria-standardized space.

    distance = sqrt(sum(((v1_i - v2_i) / C_i)^2))

    Args:
        v1: Matching-variable values of the first cell
        v2: Matching-variable values of the second cell
        criteria: Matching criteria, same length as v1 and v2

    Returns:
        Standardized distance (0 = identical, <= 1 = analogous)
    """
    a = np.asarray(v1, dtype=float).ravel()
    b = np.asarray(v2, dtype=float).ravel()

    if a.size != b.size:
        raise ConfigurationError(
            f"Variable vectors differ in length: {a.size} vs {b.size}"
        )

    crit = validate_criteria(criteria, a.size)
    return float(np.sqrt(np.sum(((a - b) / crit) ** 2)))


def iter_chunks(n_rows: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[Tuple[int, int]]:
    """Yield (start, stop) row ranges covering n_rows."""
    if chunk_size < 1:
        raise ConfigurationError(f"chunk_size must be positive, got {chunk_size}")

    for start in range(0, n_rows, chunk_size):
        yield start, min(start + chunk_size, n_rows)


def pairwise_distances(
    targets_std: np.ndarray,
    subset_std: np.ndarray,
    chunk_size: int = DEFAULT_CHUNK_SIZE
) -> np.ndarray:
    """
    Distance from every target cell to every subset cell.

    Both inputs must already be standardized (see standardize()).

    Args:
        targets_std: Array (n_targets, n_variables)
        subset_std: Array (k, n_variables)
        chunk_size: Number of target rows per cdist call

    Returns:
        Array (n_targets, k) of standardized distances
    """
    targets_std = np.atleast_2d(targets_std)
    subset_std = np.atleast_2d(subset_std)

    if targets_std.shape[1] != subset_std.shape[1]:
        raise ConfigurationError(
            f"Targets have {targets_std.shape[1]} variables but subset has {subset_std.shape[1]}"
        )

    out = np.empty((targets_std.shape[0], subset_std.shape[0]), dtype=float)
    for start, stop in iter_chunks(targets_std.shape[0], chunk_size):
        out[start:stop] = cdist(targets_std[start:stop], subset_std, metric="euclidean")

    return out

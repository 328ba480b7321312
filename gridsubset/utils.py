"""
Utility functions for input validation and error types.
"""

import numpy as np
import logging
from typing import Iterable, List, Sequence, Union

logger = logging.getLogger(__name__)

# Below this many restarts the global optimum is poorly approximated
RECOMMENDED_MIN_STARTS = 10


class ConfigurationError(ValueError):
    """Invalid run configuration; raised before any clustering work starts."""


class KpointsError(RuntimeError):
    """Raised when no restart of the solver produced a usable result."""


def validate_criteria(criteria: Sequence[float], n_variables: int) -> np.ndarray:
    """
    Validate a matching-criteria vector against the matching variables.

    Args:
        criteria: One positive divisor per matching variable
        n_variables: Number of matching-variable columns in the target table

    Returns:
        Criteria as a 1D float array
    """
    crit = np.asarray(criteria, dtype=float).ravel()

    if crit.size != n_variables:
        raise ConfigurationError(
            f"Criteria vector has {crit.size} entries but there are {n_variables} matching variables"
        )

    if not np.all(np.isfinite(crit)):
        raise ConfigurationError(f"Criteria must be finite, got {crit.tolist()}")

    if np.any(crit <= 0):
        raise ConfigurationError(f"All criteria must be > 0, got {crit.tolist()}")

    return crit


def normalize_klist(klist: Union[int, Iterable[int]]) -> List[int]:
    """
    Turn a scalar k or an ordered collection of k values into a list.

    Args:
        klist: Single k or ordered k values

    Returns:
        List of k values in the given order
    """
    if isinstance(klist, (int, np.integer)):
        return [int(klist)]

    ks = [int(k) for k in klist]
    if not ks:
        raise ConfigurationError("klist is empty")
    return ks


def validate_k(k: int, n_targets: int) -> int:
    """
    Check that k selects a proper, non-empty subset of the target cells.

    Args:
        k: Number of subset cells
        n_targets: Number of target cells

    Returns:
        k as int
    """
    if k < 1:
        raise ConfigurationError(f"k must be at least 1, got {k}")

    if k >= n_targets:
        raise ConfigurationError(
            f"k ({k}) must be smaller than the number of target cells ({n_targets})"
        )

    return int(k)


def validate_n_starts(n_starts: int) -> int:
    """
    Check the number of random restarts.

    Fewer than RECOMMENDED_MIN_STARTS restarts is allowed but logged as a warning.

    Args:
        n_starts: Number of random restarts

    Returns:
        n_starts as int
    """
    if n_starts < 1:
        raise ConfigurationError(f"n_starts must be at least 1, got {n_starts}")

    if n_starts < RECOMMENDED_MIN_STARTS:
        logger.warning(
            f"n_starts={n_starts} is below the recommended {RECOMMENDED_MIN_STARTS}; "
            f"the best subset may be far from the global optimum"
        )

    return int(n_starts)


def format_criteria(criteria: Sequence[float]) -> str:
    """Short label for a criteria vector, e.g. '1|0.5|200'."""
    return "|".join(f"{c:g}" for c in np.asarray(criteria, dtype=float).ravel())

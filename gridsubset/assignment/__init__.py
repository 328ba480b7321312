"""
Assignment engine.

Assigns every target cell to its nearest subset cell (1-nearest-neighbour in
standardized space) and keeps the distance to it.
"""

import logging
import numpy as np
from dataclasses import dataclass

from gridsubset.distance import DEFAULT_CHUNK_SIZE, iter_chunks, pairwise_distances

logger = logging.getLogger(__name__)


@dataclass
class Assignment:
    """Nearest subset cell for each target cell"""
    nearest: np.ndarray   # Position in the subset cell set (0..k-1), per target
    distance: np.ndarray  # Standardized distance to that subset cell, per target


def assign_to_nearest(
    targets_std: np.ndarray,
    subset_idx: np.ndarray,
    chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Assignment:
    """
    Assign each target cell to the closest subset cell.

    Exact ties go to the subset cell that comes first in subset_idx.
    Subset cells are always assigned to themselves with distance 0, even when
    another subset cell carries identical values, so no cluster is empty.

    Args:
        targets_std: Standardized matching variables (n_targets, n_variables)
        subset_idx: Row positions of the k subset cells in targets_std
        chunk_size: Number of target rows evaluated per block

    Returns:
        Assignment with nearest subset position and distance per target
    """
    subset_idx = np.asarray(subset_idx, dtype=np.intp)
    n = targets_std.shape[0]
    subset_std = targets_std[subset_idx]

    nearest = np.empty(n, dtype=np.intp)
    distance = np.empty(n, dtype=float)

    for start, stop in iter_chunks(n, chunk_size):
        d = pairwise_distances(targets_std[start:stop], subset_std, chunk_size=stop - start)
        # argmin returns the first minimum, which gives the subset-order tie-break
        idx = np.argmin(d, axis=1)
        nearest[start:stop] = idx
        distance[start:stop] = d[np.arange(stop - start), idx]

    nearest[subset_idx] = np.arange(subset_idx.size)
    distance[subset_idx] = 0.0

    return Assignment(nearest=nearest, distance=distance)

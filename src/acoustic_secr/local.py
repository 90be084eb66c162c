"""Restricting spatial integration to grid points near the firing detectors.

The integrand for a detection is negligible at grid points far from the
detectors that detected it, so the sum over the grid can be restricted to
points within the mask buffer of *all* firing detectors. This is an
approximation: a buffer that is too small relative to the detection range
biases the likelihood.
"""

from dataclasses import dataclass
from logging import getLogger

import numpy as np

from acoustic_secr.exceptions import DataError

logger = getLogger(__name__)


@dataclass(frozen=True)
class LocalIntegrationSet:
    """Grid indices to integrate over for each unique detection pattern.

    Attributes
    ----------
    indices : tuple[np.ndarray, ...]
        One sorted, non-empty integer array per unique pattern.
    is_local : bool
        False if every pattern uses the full grid.
    """

    indices: tuple[np.ndarray, ...]
    is_local: bool

    @property
    def n_points(self) -> np.ndarray:
        """Number of grid points in each pattern's integration set."""
        return np.array([ind.size for ind in self.indices])

    def padded(self) -> tuple[np.ndarray, np.ndarray]:
        """Rectangular form of the index sets.

        Returns
        -------
        point_index : np.ndarray, shape (n_unique, max_n_points)
            Grid indices, padded by repeating each row's first index.
        is_valid : np.ndarray, shape (n_unique, max_n_points)
            False for padding entries.
        """
        max_n_points = int(self.n_points.max())
        point_index = np.zeros((len(self.indices), max_n_points), dtype=int)
        is_valid = np.zeros((len(self.indices), max_n_points), dtype=bool)
        for row, ind in enumerate(self.indices):
            point_index[row] = ind[0]
            point_index[row, : ind.size] = ind
            is_valid[row, : ind.size] = True
        return point_index, is_valid


def find_local(
    patterns: np.ndarray,
    dists: np.ndarray,
    buffer: float,
    local: bool = True,
) -> LocalIntegrationSet:
    """Grid points within `buffer` of every detector that fired.

    Parameters
    ----------
    patterns : np.ndarray, shape (n_unique, n_detectors)
        Binary detection patterns.
    dists : np.ndarray, shape (n_detectors, n_points)
        Detector-to-grid distances.
    buffer : float
    local : bool, optional
        If False, every pattern integrates over the full grid.

    Returns
    -------
    local_set : LocalIntegrationSet

    Raises
    ------
    DataError
        If a pattern has no firing detector.
    """
    n_points = dists.shape[1]
    no_detections = np.flatnonzero(patterns.sum(axis=1) == 0)
    if no_detections.size > 0:
        raise DataError(
            f"Detection patterns {no_detections.tolist()} have no firing detector",
            data_name="binary",
        )

    if not local:
        full = np.arange(n_points)
        full.setflags(write=False)
        return LocalIntegrationSet(
            indices=tuple(full for _ in range(patterns.shape[0])), is_local=False
        )

    logger.info("Finding local integration points...")
    indices = []
    for pattern_ind, pattern in enumerate(patterns):
        fired_dists = dists[pattern == 1]
        ind = np.flatnonzero(np.all(fired_dists <= buffer, axis=0))
        if ind.size == 0:
            # nearest point in the minimax sense
            ind = np.array([np.argmin(fired_dists.max(axis=0))])
            logger.warning(
                f"No grid point lies within the buffer ({buffer}) of all detectors "
                f"in pattern {pattern_ind}; integrating over grid point {ind[0]} only. "
                "Consider a larger mask buffer."
            )
        ind.setflags(write=False)
        indices.append(ind)
    return LocalIntegrationSet(indices=tuple(indices), is_local=True)

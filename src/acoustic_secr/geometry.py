"""Distances, bearings and time-of-arrival statistics between detectors and
grid points.

Everything here is computed once per fit and shared, read-only, by every
likelihood evaluation.
"""

from dataclasses import dataclass
from logging import getLogger

import numpy as np
from scipy.spatial.distance import cdist  # type: ignore[import-untyped]

from acoustic_secr._validation import ensure_coordinates
from acoustic_secr.exceptions import ValidationError

logger = getLogger(__name__)


def distances(from_points: np.ndarray, to_points: np.ndarray) -> np.ndarray:
    """Euclidean distances between two sets of points.

    Parameters
    ----------
    from_points : np.ndarray, shape (n_from, 2)
    to_points : np.ndarray, shape (n_to, 2)

    Returns
    -------
    distance : np.ndarray, shape (n_from, n_to)
    """
    from_points = ensure_coordinates(from_points, "from_points")
    to_points = ensure_coordinates(to_points, "to_points")
    return cdist(from_points, to_points, metric="euclidean")


def bearings(from_points: np.ndarray, to_points: np.ndarray) -> np.ndarray:
    """Compass bearings, clockwise from north, in [0, 2π).

    Parameters
    ----------
    from_points : np.ndarray, shape (n_from, 2)
    to_points : np.ndarray, shape (n_to, 2)

    Returns
    -------
    bearing : np.ndarray, shape (n_from, n_to)
        Bearing of each `to_point` as seen from each `from_point`.
    """
    from_points = ensure_coordinates(from_points, "from_points")
    to_points = ensure_coordinates(to_points, "to_points")
    dx = to_points[np.newaxis, :, 0] - from_points[:, np.newaxis, 0]
    dy = to_points[np.newaxis, :, 1] - from_points[:, np.newaxis, 1]
    return np.mod(np.arctan2(dx, dy), 2.0 * np.pi)


def same_locations(detectors: np.ndarray) -> bool:
    """True if every detector sits at the same location."""
    return bool(np.all(distances(detectors, detectors) == 0.0))


def toa_ssq(
    binary: np.ndarray,
    toa: np.ndarray,
    dists: np.ndarray,
    sound_speed: float,
) -> np.ndarray:
    """Sum of squared time-of-arrival residuals for each detection.

    For detection `i` and grid point `m`, the emission times implied by the
    firing detectors are ``toa[i, j] - dists[j, m] / sound_speed``. The
    statistic is the sum of squared deviations of these emission times from
    their mean, which is sufficient for a Gaussian arrival-time error model.

    Parameters
    ----------
    binary : np.ndarray, shape (n_detections, n_detectors)
    toa : np.ndarray, shape (n_detections, n_detectors)
        Recorded arrival times, in seconds.
    dists : np.ndarray, shape (n_detectors, n_points)
    sound_speed : float

    Returns
    -------
    ssq : np.ndarray, shape (n_detections, n_points)
        Zero for detections with fewer than two firing detectors.
    """
    if binary.shape != toa.shape:
        raise ValidationError(
            "binary and time-of-arrival capture histories must have the same shape",
            expected=f"shape {binary.shape}",
            got=f"shape {toa.shape}",
        )
    if dists.shape[0] != binary.shape[1]:
        raise ValidationError(
            "Distance matrix must have one row per detector",
            expected=f"{binary.shape[1]} rows",
            got=f"{dists.shape[0]} rows",
        )
    logger.info("Computing time-of-arrival residuals...")
    travel_time = dists / sound_speed
    ssq = np.zeros((binary.shape[0], dists.shape[1]))
    for detection_ind, (detected, arrival) in enumerate(zip(binary, toa)):
        fired = detected == 1
        if fired.sum() < 2:
            continue
        emission_time = arrival[fired, np.newaxis] - travel_time[fired]
        residual = emission_time - emission_time.mean(axis=0, keepdims=True)
        ssq[detection_ind] = np.sum(residual**2, axis=0)
    return ssq


@dataclass(frozen=True)
class Geometry:
    """Precomputed detector-to-grid geometry.

    Attributes
    ----------
    distances : np.ndarray, shape (n_detectors, n_points)
    bearings : np.ndarray or None, shape (n_detectors, n_points)
        Only computed when a bearing or directional model needs them.
    same_locations : bool
        True if all detectors share a single location.
    """

    distances: np.ndarray
    bearings: np.ndarray | None
    same_locations: bool

    @classmethod
    def from_points(
        cls, detectors: np.ndarray, points: np.ndarray, with_bearings: bool = False
    ) -> "Geometry":
        logger.info("Computing geometry...")
        dists = distances(detectors, points)
        dists.setflags(write=False)
        angles = None
        if with_bearings:
            angles = bearings(detectors, points)
            angles.setflags(write=False)
        return cls(
            distances=dists,
            bearings=angles,
            same_locations=same_locations(detectors),
        )

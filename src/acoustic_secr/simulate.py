"""Simulate capture histories from a homogeneous Poisson process of calls."""

from collections.abc import Mapping, Sequence
from logging import getLogger

import numpy as np

from acoustic_secr._validation import ensure_coordinates, ensure_positive_scalar
from acoustic_secr.capture import CaptureHistory, InfoType
from acoustic_secr.detection_functions import (
    DetectionFunction,
    detection_probability,
    expected_signal_strength,
)
from acoustic_secr.exceptions import ConfigurationError
from acoustic_secr.geometry import bearings, distances
from acoustic_secr.mask import Mask

logger = getLogger(__name__)


def simulate_locations(
    mask: Mask, density: float, rng: np.random.Generator
) -> np.ndarray:
    """Call locations from a Poisson process over the mask.

    Each call falls in a uniformly chosen mask cell and uniformly within the
    square cell around that grid point.
    """
    n_calls = rng.poisson(density * mask.total_area)
    cell_ind = rng.integers(0, mask.n_points, size=n_calls)
    side = np.sqrt(mask.area)
    return mask.points[cell_ind] + rng.uniform(-side / 2, side / 2, size=(n_calls, 2))


def simulate_capture_history(
    detectors: np.ndarray,
    mask: Mask,
    density: float,
    detection_function: DetectionFunction | str,
    parameters: Mapping[str, float],
    info_types: Sequence[InfoType | str] = (),
    cutoff: float | None = None,
    ss_link: str = "identity",
    sound_speed: float = 330.0,
    seed: int | None = 0,
) -> CaptureHistory:
    """Simulate a survey.

    Parameters
    ----------
    detectors : np.ndarray, shape (n_detectors, 2)
    mask : Mask
        Region over which calls are generated.
    density : float
        Calls per unit area.
    detection_function : DetectionFunction or str
    parameters : mapping of parameter name to value
        Detection function parameters plus ``kappa``, ``alpha`` or
        ``sigma_toa`` for the requested information types.
    info_types : sequence of InfoType or str, optional
        Auxiliary information to record: "bearing", "distance",
        "time-of-arrival", "known-distance". Signal strengths are always
        recorded for signal-strength detection.
    cutoff : float, optional
        Required for signal-strength detection.
    ss_link : {"identity", "log", "spherical"}
    sound_speed : float, default=330.0
    seed : int, optional
        Seed for the random number generator.

    Returns
    -------
    capture : CaptureHistory
        Only calls detected at least once are included.
    """
    detectors = ensure_coordinates(detectors, "detectors")
    ensure_positive_scalar(density, "density")
    ensure_positive_scalar(sound_speed, "sound_speed")
    detection_function = DetectionFunction(detection_function)
    info_types = [InfoType(info_type) for info_type in info_types]
    rng = np.random.default_rng(seed)

    locations = simulate_locations(mask, density, rng)
    logger.info(f"Simulated {locations.shape[0]} calls")
    if locations.shape[0] > 0:
        true_distances = distances(locations, detectors)
    else:
        true_distances = np.empty((0, detectors.shape[0]))

    components = {}
    if detection_function is DetectionFunction.SIGNAL_STRENGTH:
        if cutoff is None:
            raise ConfigurationError(
                "Simulating signal strengths requires a cutoff",
                hint="Pass cutoff=...",
            )
        expected = np.asarray(
            expected_signal_strength(
                true_distances, parameters["b0_ss"], parameters["b1_ss"], ss_link
            )
        )
        signal = expected + rng.normal(0.0, parameters["sigma_ss"], expected.shape)
        detected = signal >= cutoff
        components[InfoType.SIGNAL_STRENGTH] = np.where(detected, signal, 0.0)
    else:
        prob = np.asarray(
            detection_probability(detection_function, true_distances, parameters)
        )
        detected = rng.random(prob.shape) < prob
    components[InfoType.BINARY] = detected.astype(float)

    if InfoType.BEARING in info_types:
        if locations.shape[0] > 0:
            true_bearings = bearings(detectors, locations).T
        else:
            true_bearings = np.empty(detected.shape)
        observed = np.mod(
            rng.vonmises(true_bearings, parameters["kappa"]), 2.0 * np.pi
        )
        components[InfoType.BEARING] = np.where(detected, observed, 0.0)
    if InfoType.DISTANCE in info_types:
        alpha = parameters["alpha"]
        observed = rng.gamma(alpha, np.maximum(true_distances, 1e-12) / alpha)
        components[InfoType.DISTANCE] = np.where(detected, observed, 0.0)
    if InfoType.TIME_OF_ARRIVAL in info_types:
        observed = true_distances / sound_speed + rng.normal(
            0.0, parameters["sigma_toa"], true_distances.shape
        )
        components[InfoType.TIME_OF_ARRIVAL] = np.where(detected, observed, 0.0)
    if InfoType.KNOWN_DISTANCE in info_types:
        components[InfoType.KNOWN_DISTANCE] = true_distances

    is_detected = detected.any(axis=1)
    logger.info(f"{int(is_detected.sum())} calls detected")
    return CaptureHistory(
        {info_type: values[is_detected] for info_type, values in components.items()}
    )

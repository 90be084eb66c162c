"""Log-densities of capture histories and auxiliary measurements given an
animal location.

Each summed density takes per-detection observations of shape
``(n_detections, n_detectors)`` and per-detector expectations of shape
``(..., n_detectors, n_points)`` and returns the log of the product over
firing detectors, shape ``(..., n_detections, n_points)``. Sums over
detectors are written as matrix products so that no
``(n_detections, n_detectors, n_points)`` array is ever built.

The linear-scale wrappers (`bearing_density`, ...) exponentiate the log
versions and exist for plotting and checks.
"""

import jax.numpy as jnp
import numpy as np
from jax.scipy.special import gammaln, i0e

from acoustic_secr.detection_functions import EPS

LOG_2PI = float(np.log(2.0 * np.pi))


def von_mises_log_pdf(x, mu, kappa):
    """Log-density of a von Mises distribution."""
    return kappa * jnp.cos(x - mu) - LOG_2PI - jnp.log(i0e(kappa)) - kappa


def gamma_log_pdf(x, shape, mean):
    """Log-density of a gamma distribution parameterised by shape and mean."""
    rate = shape / mean
    return shape * jnp.log(rate) - gammaln(shape) + (shape - 1.0) * jnp.log(x) - rate * x


def normal_log_pdf(x, mean, sd):
    return -0.5 * LOG_2PI - jnp.log(sd) - (x - mean) ** 2 / (2.0 * sd**2)


def capture_log_density(
    binary: jnp.ndarray, log_p: jnp.ndarray, log_q: jnp.ndarray
) -> jnp.ndarray:
    """Log-probability of binary capture histories.

    Parameters
    ----------
    binary : jnp.ndarray, shape (n_rows, n_detectors)
    log_p, log_q : jnp.ndarray, shape (..., n_detectors, n_points)
        Log detection and non-detection probabilities.

    Returns
    -------
    log_density : jnp.ndarray, shape (..., n_rows, n_points)
    """
    return binary @ log_p + (1.0 - binary) @ log_q


def bearing_log_density(
    observed: jnp.ndarray,
    fired: jnp.ndarray,
    expected: jnp.ndarray,
    kappa: jnp.ndarray,
) -> jnp.ndarray:
    """von Mises log-density of recorded bearings.

    Parameters
    ----------
    observed : jnp.ndarray, shape (n_detections, n_detectors)
        Recorded bearings, in radians.
    fired : jnp.ndarray, shape (n_detections, n_detectors)
        Binary capture history. Only firing detectors contribute.
    expected : jnp.ndarray, shape (n_detectors, n_points)
        Bearings from each detector to each grid point.
    kappa : jnp.ndarray
        Concentration.

    Returns
    -------
    log_density : jnp.ndarray, shape (n_detections, n_points)
    """
    cos_term = (fired * jnp.cos(observed)) @ jnp.cos(expected)
    sin_term = (fired * jnp.sin(observed)) @ jnp.sin(expected)
    n_fired = fired.sum(axis=1, keepdims=True)
    log_normalizer = -LOG_2PI - jnp.log(i0e(kappa)) - kappa
    return kappa * (cos_term + sin_term) + n_fired * log_normalizer


def distance_log_density(
    observed: jnp.ndarray,
    fired: jnp.ndarray,
    expected: jnp.ndarray,
    alpha: jnp.ndarray,
) -> jnp.ndarray:
    """Gamma log-density of recorded distances, with mean equal to the true
    distance and shape `alpha`.

    Parameters
    ----------
    observed : jnp.ndarray, shape (n_detections, n_detectors)
    fired : jnp.ndarray, shape (n_detections, n_detectors)
    expected : jnp.ndarray, shape (n_detectors, n_points)
        Distances from each detector to each grid point.
    alpha : jnp.ndarray
        Shape parameter.

    Returns
    -------
    log_density : jnp.ndarray, shape (n_detections, n_points)
    """
    observed = jnp.where(fired == 1, observed, 1.0)
    expected = jnp.maximum(expected, EPS)
    n_fired = fired.sum(axis=1, keepdims=True)
    log_observed = (fired * jnp.log(observed)).sum(axis=1, keepdims=True)
    return (
        n_fired * (alpha * jnp.log(alpha) - gammaln(alpha))
        - alpha * (fired @ jnp.log(expected))
        + (alpha - 1.0) * log_observed
        - alpha * ((fired * observed) @ (1.0 / expected))
    )


def signal_strength_log_density(
    observed: jnp.ndarray,
    fired: jnp.ndarray,
    expected: jnp.ndarray,
    log_q: jnp.ndarray,
    sigma_ss: jnp.ndarray,
) -> jnp.ndarray:
    """Log-density of received signal strengths over all detectors.

    Firing detectors contribute the normal density of the recorded signal
    strength around its expectation; the others contribute the probability
    that the signal strength fell below the cutoff.

    Parameters
    ----------
    observed : jnp.ndarray, shape (n_detections, n_detectors)
    fired : jnp.ndarray, shape (n_detections, n_detectors)
    expected : jnp.ndarray, shape (..., n_detectors, n_points)
        Expected signal strengths, optionally per quadrature node.
    log_q : jnp.ndarray, shape (..., n_detectors, n_points)
        Log-probability of non-detection.
    sigma_ss : jnp.ndarray

    Returns
    -------
    log_density : jnp.ndarray, shape (..., n_detections, n_points)
    """
    observed = fired * observed
    n_fired = fired.sum(axis=1, keepdims=True)
    sum_of_squares = (
        (observed**2).sum(axis=1, keepdims=True)
        - 2.0 * (observed @ expected)
        + fired @ expected**2
    )
    return (
        -0.5 * n_fired * (LOG_2PI + 2.0 * jnp.log(sigma_ss))
        - sum_of_squares / (2.0 * sigma_ss**2)
        + (1.0 - fired) @ log_q
    )


def toa_log_density(
    ssq: jnp.ndarray, n_fired: jnp.ndarray, sigma_toa: jnp.ndarray
) -> jnp.ndarray:
    """Log-density of arrival times given the residual sum of squares.

    Parameters
    ----------
    ssq : jnp.ndarray, shape (n_detections, n_points)
        Sum of squared deviations of implied emission times.
    n_fired : jnp.ndarray, shape (n_detections,)
        Number of firing detectors. Detections heard at fewer than two
        detectors carry no arrival-time information and contribute zero.
    sigma_toa : jnp.ndarray
        Standard deviation of arrival-time measurement error.

    Returns
    -------
    log_density : jnp.ndarray, shape (n_detections, n_points)
    """
    n_fired = jnp.asarray(n_fired)[:, None]
    log_density = (1.0 - n_fired) / 2.0 * (LOG_2PI + 2.0 * jnp.log(sigma_toa)) - ssq / (
        2.0 * sigma_toa**2
    )
    return jnp.where(n_fired >= 2, log_density, 0.0)


def bearing_density(observed, fired, expected, kappa):
    return jnp.exp(bearing_log_density(observed, fired, expected, kappa))


def distance_density(observed, fired, expected, alpha):
    return jnp.exp(distance_log_density(observed, fired, expected, alpha))


def signal_strength_density(observed, fired, expected, log_q, sigma_ss):
    return jnp.exp(signal_strength_log_density(observed, fired, expected, log_q, sigma_ss))


def toa_density(ssq, n_fired, sigma_toa):
    return jnp.exp(toa_log_density(ssq, n_fired, sigma_toa))

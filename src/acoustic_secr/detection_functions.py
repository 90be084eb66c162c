"""Detection functions: probability of detection as a function of distance.

All functions are written with `jax.numpy` so the likelihood can be
differentiated with respect to their parameters. Probabilities are
returned in log space, floored at ``log(PROB_FLOOR)``, because the likelihood
only ever uses ``log p`` and ``log(1 - p)``.

Signal-strength detection is handled by `SignalStrengthModel`, which also
integrates over call direction (directional calling) or source strength
(heterogeneous source strength) with a fixed quadrature. Other detection
functions are treated as a single-node quadrature so that downstream code
has one shape to deal with: ``(n_nodes, n_detectors, n_points)``.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum

import jax.numpy as jnp
import numpy as np
from jax.scipy.special import erf, log_ndtr, ndtr

PROB_FLOOR = 1e-150
LOG_PROB_FLOOR = float(np.log(PROB_FLOOR))
EPS = 1e-15


def _safe_log(x: jnp.ndarray) -> jnp.ndarray:
    return jnp.log(jnp.maximum(x, PROB_FLOOR))


class DetectionFunction(str, Enum):
    """Available detection functions."""

    HALF_NORMAL = "hn"
    HAZARD_RATE = "hr"
    THRESHOLD = "th"
    LOG_THRESHOLD = "lth"
    SIGNAL_STRENGTH = "ss"

    @property
    def parameter_names(self) -> tuple[str, ...]:
        return _PARAMETER_NAMES[self]


_PARAMETER_NAMES = {
    DetectionFunction.HALF_NORMAL: ("g0", "sigma"),
    DetectionFunction.HAZARD_RATE: ("g0", "sigma", "z"),
    DetectionFunction.THRESHOLD: ("shape", "scale"),
    DetectionFunction.LOG_THRESHOLD: ("shape1", "shape2", "scale"),
    DetectionFunction.SIGNAL_STRENGTH: (
        "b0_ss",
        "b1_ss",
        "b2_ss",
        "sigma_b0_ss",
        "sigma_ss",
    ),
}


def half_normal(dists: jnp.ndarray, params: Mapping[str, jnp.ndarray]) -> jnp.ndarray:
    """g0 * exp(-d^2 / (2 sigma^2))"""
    return params["g0"] * jnp.exp(-(dists**2) / (2.0 * params["sigma"] ** 2))


def hazard_rate(dists: jnp.ndarray, params: Mapping[str, jnp.ndarray]) -> jnp.ndarray:
    """g0 * (1 - exp(-(d / sigma)^-z))

    The power is evaluated in log space and clipped so that detectors sitting
    on a grid point give g0 rather than NaN.
    """
    log_ratio = jnp.log(jnp.maximum(dists, EPS) / params["sigma"])
    power = jnp.exp(jnp.minimum(-params["z"] * log_ratio, 700.0))
    return params["g0"] * -jnp.expm1(-power)


def threshold(dists: jnp.ndarray, params: Mapping[str, jnp.ndarray]) -> jnp.ndarray:
    """0.5 - 0.5 * erf(d / scale - shape)"""
    return 0.5 - 0.5 * erf(dists / params["scale"] - params["shape"])


def log_threshold(
    dists: jnp.ndarray, params: Mapping[str, jnp.ndarray]
) -> jnp.ndarray:
    """0.5 - 0.5 * erf(shape1 - exp(shape2 - scale * d))"""
    return 0.5 - 0.5 * erf(
        params["shape1"] - jnp.exp(params["shape2"] - params["scale"] * dists)
    )


def expected_signal_strength(
    dists: jnp.ndarray, b0: jnp.ndarray, slope: jnp.ndarray, link: str = "identity"
) -> jnp.ndarray:
    """Expected received signal strength at distance `dists`.

    Parameters
    ----------
    dists : jnp.ndarray
    b0 : jnp.ndarray
        Source strength.
    slope : jnp.ndarray
        Loss of signal strength per unit distance.
    link : {"identity", "log", "spherical"}

    Returns
    -------
    expected : jnp.ndarray
    """
    if link == "identity":
        return b0 - slope * dists
    if link == "log":
        return jnp.exp(b0 - slope * dists)
    if link == "spherical":
        dists = jnp.maximum(dists, EPS)
        return b0 - 10.0 * jnp.log10(dists**2) - slope * (dists - 1.0)
    raise ValueError(f"Unknown signal strength link {link!r}")


def signal_strength(
    dists: jnp.ndarray,
    params: Mapping[str, jnp.ndarray],
    cutoff: float,
    link: str = "identity",
) -> jnp.ndarray:
    """Probability that the received signal strength exceeds `cutoff`.

    Non-directional, homogeneous source strength form.
    """
    expected = expected_signal_strength(dists, params["b0_ss"], params["b1_ss"], link)
    return ndtr((expected - cutoff) / params["sigma_ss"])


DETECTION_FUNCTIONS: dict[DetectionFunction, Callable[..., jnp.ndarray]] = {
    DetectionFunction.HALF_NORMAL: half_normal,
    DetectionFunction.HAZARD_RATE: hazard_rate,
    DetectionFunction.THRESHOLD: threshold,
    DetectionFunction.LOG_THRESHOLD: log_threshold,
    DetectionFunction.SIGNAL_STRENGTH: signal_strength,
}


def detection_probability(
    detection_function: DetectionFunction | str,
    dists: jnp.ndarray,
    params: Mapping[str, jnp.ndarray],
    **kwargs,
) -> jnp.ndarray:
    """Evaluate a detection function by name.

    Examples
    --------
    >>> float(detection_probability("hn", 0.0, {"g0": 0.9, "sigma": 5.0}))
    0.9
    """
    return DETECTION_FUNCTIONS[DetectionFunction(detection_function)](
        dists, params, **kwargs
    )


@dataclass(frozen=True)
class SignalStrengthModel:
    """Signal-strength detection with optional quadrature over nuisance
    variables.

    Attributes
    ----------
    cutoff : float
        Minimum received signal strength for a detection.
    link : {"identity", "log", "spherical"}
        Relationship between distance and expected signal strength.
    directional : bool
        Calls are directional: the loss of signal strength increases with
        the angle between the call direction and the detector. Integrated
        over `n_dir_quadpoints` equally spaced call directions.
    het_source : bool
        Source strength varies between calls as N(b0_ss, sigma_b0_ss).
    het_source_method : {"GH", "rect"}
        Gauss-Hermite or rectangle-rule quadrature over source strength.
    n_dir_quadpoints, n_het_source_quadpoints : int
    """

    cutoff: float
    link: str = "identity"
    directional: bool = False
    het_source: bool = False
    het_source_method: str = "GH"
    n_dir_quadpoints: int = 8
    n_het_source_quadpoints: int = 15

    @property
    def n_nodes(self) -> int:
        if self.directional:
            return self.n_dir_quadpoints
        if self.het_source:
            return self.n_het_source_quadpoints
        return 1

    @property
    def needs_bearings(self) -> bool:
        return self.directional

    def call_directions(self) -> np.ndarray:
        """Equally spaced call directions in [0, 2π)."""
        return 2.0 * np.pi * np.arange(self.n_dir_quadpoints) / self.n_dir_quadpoints

    def source_strength_nodes(self) -> tuple[np.ndarray, np.ndarray]:
        """Standardised source-strength nodes and normalised weights."""
        n_nodes = self.n_het_source_quadpoints
        if self.het_source_method == "GH":
            nodes, weights = np.polynomial.hermite.hermgauss(n_nodes)
            return np.sqrt(2.0) * nodes, weights / np.sqrt(np.pi)
        nodes = np.linspace(-5.0, 5.0, n_nodes) if n_nodes > 1 else np.zeros(1)
        weights = np.exp(-(nodes**2) / 2.0)
        return nodes, weights / weights.sum()

    def expected(
        self,
        dists: jnp.ndarray,
        params: Mapping[str, jnp.ndarray],
        bearings: jnp.ndarray | None = None,
    ) -> tuple[jnp.ndarray, jnp.ndarray]:
        """Expected signal strength at each quadrature node.

        Parameters
        ----------
        dists : jnp.ndarray, shape (n_detectors, n_points)
        params : mapping of parameter name to value
        bearings : jnp.ndarray, shape (n_detectors, n_points), optional
            Bearings from detectors to points. Required if directional.

        Returns
        -------
        expected : jnp.ndarray, shape (n_nodes, n_detectors, n_points)
        log_weights : jnp.ndarray, shape (n_nodes,)
        """
        b0, b1 = params["b0_ss"], params["b1_ss"]
        if self.directional:
            if bearings is None:
                raise ValueError("Directional signal strength models need bearings")
            directions = jnp.asarray(self.call_directions())[:, None, None]
            # angle between call direction and direction from animal to detector
            cos_theta = jnp.cos(directions - (bearings[None] + jnp.pi))
            slope = b1 - params["b2_ss"] * (cos_theta - 1.0)
            expected = expected_signal_strength(dists[None], b0, slope, self.link)
            log_weights = jnp.full(self.n_dir_quadpoints, -np.log(self.n_dir_quadpoints))
            return expected, log_weights
        if self.het_source:
            nodes, weights = self.source_strength_nodes()
            b0_nodes = b0 + params["sigma_b0_ss"] * jnp.asarray(nodes)
            expected = expected_signal_strength(
                dists[None], b0_nodes[:, None, None], b1, self.link
            )
            return expected, jnp.log(jnp.asarray(weights))
        expected = expected_signal_strength(dists, b0, b1, self.link)
        return expected[None], jnp.zeros(1)

    def log_detection_probabilities(
        self, expected: jnp.ndarray, sigma_ss: jnp.ndarray
    ) -> tuple[jnp.ndarray, jnp.ndarray]:
        """log P(SS > cutoff) and log P(SS <= cutoff) given expected strengths."""
        standardized = (expected - self.cutoff) / sigma_ss
        log_p = jnp.maximum(log_ndtr(standardized), LOG_PROB_FLOOR)
        log_q = jnp.maximum(log_ndtr(-standardized), LOG_PROB_FLOOR)
        return log_p, log_q


def log_detection_probabilities(
    detection_function: DetectionFunction,
    dists: jnp.ndarray,
    params: Mapping[str, jnp.ndarray],
    ss_model: SignalStrengthModel | None = None,
    bearings: jnp.ndarray | None = None,
) -> tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """Log detection and non-detection probabilities at every node.

    Parameters
    ----------
    detection_function : DetectionFunction
    dists : jnp.ndarray, shape (n_detectors, n_points)
    params : mapping of parameter name to value
    ss_model : SignalStrengthModel, optional
        Required for signal-strength detection.
    bearings : jnp.ndarray, shape (n_detectors, n_points), optional

    Returns
    -------
    log_p : jnp.ndarray, shape (n_nodes, n_detectors, n_points)
    log_q : jnp.ndarray, shape (n_nodes, n_detectors, n_points)
    log_weights : jnp.ndarray, shape (n_nodes,)
    """
    if detection_function is DetectionFunction.SIGNAL_STRENGTH:
        if ss_model is None:
            raise ValueError("Signal strength detection needs a SignalStrengthModel")
        expected, log_weights = ss_model.expected(dists, params, bearings)
        log_p, log_q = ss_model.log_detection_probabilities(
            expected, params["sigma_ss"]
        )
        return log_p, log_q, log_weights
    prob = DETECTION_FUNCTIONS[detection_function](dists, params)
    return (
        _safe_log(prob)[None],
        _safe_log(1.0 - prob)[None],
        jnp.zeros(1),
    )

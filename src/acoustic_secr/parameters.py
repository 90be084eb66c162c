"""Parameter links, bounds, start values and scale factors.

Every model parameter is described by a `ParameterSpec`. The optimizer
works on the *scaled link scale*: the link-transformed value multiplied by
the parameter's scale factor. Fixed parameters (``phase == FIXED_PHASE``)
are held at their start value on the natural scale and never transformed.
"""

from __future__ import annotations

import warnings
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from logging import getLogger

import jax
import jax.numpy as jnp
import numpy as np
from scipy.spatial.distance import pdist  # type: ignore[import-untyped]

from acoustic_secr.capture import CaptureHistory, InfoType
from acoustic_secr.exceptions import ConfigurationError, DomainError

logger = getLogger(__name__)

FIXED_PHASE = -1
DEFAULT_PHASE = 1

DETECTION_PARAMETERS = (
    "g0",
    "sigma",
    "z",
    "shape",
    "shape1",
    "shape2",
    "scale",
    "b0_ss",
    "b1_ss",
    "b2_ss",
    "sigma_b0_ss",
    "sigma_ss",
)
AUXILIARY_PARAMETERS = {
    InfoType.BEARING: "kappa",
    InfoType.DISTANCE: "alpha",
    InfoType.TIME_OF_ARRIVAL: "sigma_toa",
}
PARAMETER_NAMES = ("D", *DETECTION_PARAMETERS, *AUXILIARY_PARAMETERS.values())


class Link(str, Enum):
    """Transformation from a parameter's natural scale to the optimizer scale."""

    IDENTITY = "identity"
    LOG = "log"
    LOGIT = "logit"

    def to_link(self, value):
        """Natural scale to link scale.

        Raises
        ------
        DomainError
            If `value` is at or beyond the boundary of the link's domain.
        """
        value = np.asarray(value, dtype=float)
        if self is Link.LOG:
            if np.any(value <= 0):
                raise DomainError(
                    "Log link is only defined for positive values",
                    expected="value > 0",
                    got=f"value = {value}",
                )
            return np.log(value)
        if self is Link.LOGIT:
            if np.any((value <= 0) | (value >= 1)):
                raise DomainError(
                    "Logit link is only defined on the open unit interval",
                    expected="0 < value < 1",
                    got=f"value = {value}",
                )
            return np.log(value / (1.0 - value))
        return value

    def from_link(self, value):
        """Link scale to natural scale. Differentiable with JAX."""
        if self is Link.LOG:
            return jnp.exp(value)
        if self is Link.LOGIT:
            return jax.nn.sigmoid(value)
        return value

    def bound_to_link(self, value: float) -> float:
        """Transform a bound, mapping domain boundaries to infinities."""
        if self is Link.LOG and value <= 0:
            return -np.inf
        if self is Link.LOGIT:
            if value <= 0:
                return -np.inf
            if value >= 1:
                return np.inf
        if np.isinf(value):
            return float(value)
        return float(self.to_link(value))


DEFAULT_LINKS = {
    "D": Link.LOG,
    "g0": Link.LOGIT,
    "sigma": Link.LOG,
    "z": Link.LOG,
    "shape": Link.IDENTITY,
    "shape1": Link.LOG,
    "shape2": Link.IDENTITY,
    "scale": Link.LOG,
    "b0_ss": Link.LOG,
    "b1_ss": Link.LOG,
    "b2_ss": Link.LOG,
    "sigma_b0_ss": Link.LOG,
    "sigma_ss": Link.LOG,
    "kappa": Link.LOG,
    "alpha": Link.LOG,
    "sigma_toa": Link.LOG,
}

_DEFAULT_BOUNDS = {
    "g0": (0.0, 1.0),
    "sigma": (0.0, 1e8),
    "z": (0.0, 200.0),
    "shape": (-100.0, 100.0),
    "shape1": (0.0, 1e8),
    "shape2": (-100.0, 100.0),
    "scale": (0.0, 1e8),
    "b0_ss": (0.0, 1e8),
    "b1_ss": (0.0, 1e8),
    "b2_ss": (0.0, 1e8),
    "sigma_b0_ss": (0.0, 1e8),
    "sigma_ss": (0.0, 1e8),
    "kappa": (0.0, 700.0),
    "alpha": (0.0, 1e8),
    "sigma_toa": (0.0, 1e8),
}


def default_bounds(name: str, n_detections: int, total_area: float) -> tuple[float, float]:
    """Default natural-scale bounds for a parameter.

    The lower bound for density corresponds to every animal in the survey
    region having been detected.
    """
    if name == "D":
        return (n_detections / total_area, 1e8)
    return _DEFAULT_BOUNDS[name]


@dataclass(frozen=True)
class ParameterSpec:
    """One model parameter.

    Attributes
    ----------
    name : str
    link : Link
    lower, upper : float
        Natural-scale bounds.
    phase : int
        Optimization phase, or FIXED_PHASE.
    scale_factor : float
        Multiplier applied on the link scale before optimization.
    start : float
        Natural-scale start value (the fixed value for fixed parameters).
    """

    name: str
    link: Link
    lower: float
    upper: float
    phase: int
    scale_factor: float
    start: float

    @property
    def is_fixed(self) -> bool:
        return self.phase == FIXED_PHASE

    @property
    def link_start(self) -> float:
        return float(self.link.to_link(self.start))

    @property
    def link_bounds(self) -> tuple[float, float]:
        return (self.link.bound_to_link(self.lower), self.link.bound_to_link(self.upper))

    def in_bounds(self, value: float) -> bool:
        return bool(self.lower <= value <= self.upper)


def _drop_unused(
    overrides: Mapping[str, object] | None, names: Sequence[str], label: str
) -> dict:
    if overrides is None:
        return {}
    unused = [key for key in overrides if key not in names]
    if unused:
        warnings.warn(
            f"Some parameters listed in '{label}' are not being used and are "
            f"being removed: {unused}",
            UserWarning,
            stacklevel=3,
        )
    return {key: value for key, value in overrides.items() if key in names}


def _mean_spacing_of_joint_detections(
    capture: CaptureHistory, detectors: np.ndarray
) -> float:
    """Mean distance between detectors that detected the same call."""
    spacings = [
        pdist(detectors[row == 1])
        for row in capture.binary
        if np.sum(row) > 1
    ]
    spacings = np.concatenate(spacings) if spacings else np.array([])
    spacings = spacings[spacings > 0]
    return float(np.mean(spacings)) if spacings.size > 0 else np.nan


def auto_sigma(capture: CaptureHistory, detectors: np.ndarray) -> float:
    """Start value for a detection-range scale parameter.

    Uses the mean spacing between detectors that detected the same call. If
    every detector shares one location, the mean observed distance is used
    instead. Otherwise falls back to half the smallest detector spacing.
    """
    sigma = _mean_spacing_of_joint_detections(capture, detectors)
    if np.isfinite(sigma):
        return sigma

    binary = capture.binary == 1
    for info_type in (InfoType.DISTANCE, InfoType.KNOWN_DISTANCE):
        if info_type in capture:
            observed = capture[info_type][binary]
            observed = observed[observed > 0]
            if observed.size > 0:
                return float(np.mean(observed))

    spacing = pdist(detectors) if detectors.shape[0] > 1 else np.array([])
    spacing = spacing[spacing > 0]
    if spacing.size > 0:
        return float(np.min(spacing) / 2)

    raise ConfigurationError(
        "Cannot derive a start value for 'sigma'",
        hint="Provide start values for the detection function parameters",
    )


def auto_start_values(
    names: Sequence[str],
    capture: CaptureHistory,
    detectors: np.ndarray,
    cutoff: float | None = None,
    ss_link: str = "identity",
    given: Mapping[str, float] | None = None,
) -> dict[str, float]:
    """Automatic start values for every parameter except density.

    Threshold and log-threshold defaults put 50% detection at two sigma.
    When some parameters of a detection function are already known, the
    others are derived from them so that this still holds.

    Parameters
    ----------
    names : sequence of str
        Parameters to generate start values for. "D" is ignored.
    capture : CaptureHistory
    detectors : np.ndarray, shape (n_detectors, 2)
    cutoff : float, optional
        Signal strength cutoff, required for signal-strength parameters.
    ss_link : {"identity", "log", "spherical"}
    given : mapping, optional
        Start values already chosen by the user.

    Returns
    -------
    start_values : dict[str, float]
    """
    given = dict(given or {})
    names = [name for name in names if name != "D"]
    start = {"g0": 0.95, "z": 1.0, "kappa": 10.0, "alpha": 2.0, "sigma_toa": 0.0025}
    start.update(given)

    sigma = np.nan
    needs_sigma = bool({"sigma", "scale", "b1_ss"} & set(names)) or (
        "scale" in given and bool({"shape", "shape2"} & set(names))
    )
    if needs_sigma:
        sigma = given.get("sigma", np.nan)
        if not np.isfinite(sigma):
            sigma = auto_sigma(capture, detectors)
    if "sigma" in names:
        start["sigma"] = sigma

    if "shape1" in names or "shape1" in given:
        # log-threshold: shape1 = exp(shape2 - 2 sigma scale)
        shape1 = start.setdefault("shape1", 2.0)
        log_shape1 = np.log(shape1) if shape1 > 0 else np.log(2.0)
        if "shape2" not in start:
            if "scale" in start:
                start["shape2"] = log_shape1 + 2.0 * sigma * start["scale"]
            else:
                start["shape2"] = 3.0
        if "scale" not in start:
            start["scale"] = (start["shape2"] - log_shape1) / (2.0 * sigma)
    elif {"shape", "scale"} & (set(names) | set(given)):
        # threshold: 2 sigma / scale = shape
        if "shape" not in start:
            scale = start.get("scale", 0.0)
            start["shape"] = 2.0 * sigma / scale if scale > 0 else 2.0
        if "scale" not in start:
            shape = start["shape"]
            start["scale"] = 2.0 * sigma / shape if shape > 0 else sigma

    ss_names = {"b0_ss", "b1_ss", "b2_ss", "sigma_b0_ss", "sigma_ss"}
    if ss_names & set(names):
        fired = capture.binary == 1
        observed = capture[InfoType.SIGNAL_STRENGTH][fired]
        if "b0_ss" not in start:
            b0 = float(np.max(observed))
            if ss_link == "log":
                b0 = np.log(b0) if b0 > 0 else 1.0
            start["b0_ss"] = b0
        if "b1_ss" not in start:
            cutoff_scale = cutoff
            if ss_link == "log":
                cutoff_scale = np.log(cutoff) if cutoff is not None and cutoff > 0 else 0.0
            b1 = (
                (start["b0_ss"] - cutoff_scale) / (2.0 * sigma)
                if cutoff is not None
                else np.nan
            )
            start["b1_ss"] = b1 if np.isfinite(b1) and b1 > 0 else 0.1
        if "sigma_ss" not in start:
            observed_scale = (
                np.log(observed[observed > 0]) if ss_link == "log" else observed
            )
            sigma_ss = (
                float(np.std(observed_scale, ddof=1)) if observed_scale.size > 1 else 0.0
            )
            start["sigma_ss"] = sigma_ss if np.isfinite(sigma_ss) and sigma_ss > 0 else 1.0
        start.setdefault("b2_ss", 0.1)
        start.setdefault("sigma_b0_ss", start["sigma_ss"] / 2)

    return {name: float(start[name]) for name in names}


def compute_scale_factors(link_starts: Mapping[str, float]) -> dict[str, float]:
    """Scale factors bringing link-scale start values to a common magnitude.

    Each factor is ``max|s| / |s_i|``; non-finite factors (zero start values)
    become 1.
    """
    if not link_starts:
        return {}
    largest = max(abs(value) for value in link_starts.values())
    scale_factors = {}
    for name, value in link_starts.items():
        with np.errstate(divide="ignore", invalid="ignore"):
            factor = np.float64(largest) / np.abs(value)
        scale_factors[name] = float(factor) if np.isfinite(factor) and factor > 0 else 1.0
    return scale_factors


def resolve_parameters(
    names: Sequence[str],
    capture: CaptureHistory,
    detectors: np.ndarray,
    total_area: float,
    esa: Callable[[Mapping[str, float]], float],
    start_values: Mapping[str, float] | None = None,
    bounds: Mapping[str, tuple[float, float]] | None = None,
    phases: Mapping[str, int] | None = None,
    scale_factors: Mapping[str, float] | None = None,
    fix: Mapping[str, float] | None = None,
    cutoff: float | None = None,
    ss_link: str = "identity",
) -> tuple[ParameterSpec, ...]:
    """Combine user overrides with defaults into a full parameter table.

    Precedence is ``fix`` > user overrides > automatic defaults. Names not
    in `names` are dropped with a warning.

    Parameters
    ----------
    names : sequence of str
        Model parameters, in order. Must start with "D".
    capture : CaptureHistory
    detectors : np.ndarray, shape (n_detectors, 2)
    total_area : float
        Area covered by the mask.
    esa : callable
        Maps natural-scale detection parameters to the effective sampled
        area. Used for the automatic density start value.
    start_values, bounds, phases, scale_factors, fix : mapping, optional
    cutoff : float, optional
    ss_link : str

    Returns
    -------
    parameters : tuple[ParameterSpec, ...]

    Raises
    ------
    ConfigurationError
        If bounds are malformed or a start value lies outside its bounds.
    """
    start_values = _drop_unused(start_values, names, "start_values")
    bounds = _drop_unused(bounds, names, "bounds")
    phases = _drop_unused(phases, names, "phases")
    scale_factors = _drop_unused(scale_factors, names, "scale_factors")
    fix = _drop_unused(fix, names, "fix")

    starts = {**start_values, **fix}
    missing = [name for name in names if name not in starts and name != "D"]
    if missing:
        auto = auto_start_values(
            missing, capture, detectors, cutoff, ss_link, given=starts
        )
        starts.update({name: auto[name] for name in missing})
    if "D" not in starts:
        area = esa(starts)
        if not np.isfinite(area) or area <= 0:
            raise ConfigurationError(
                f"Cannot derive a start value for 'D': effective sampled area is {area}",
                hint="Provide a start value for D or for the detection function",
            )
        starts["D"] = capture.n_detections / area

    resolved_bounds = {}
    for name in names:
        lower, upper = bounds.get(
            name, default_bounds(name, capture.n_detections, total_area)
        )
        if not lower < upper:
            raise ConfigurationError(
                f"Bounds for '{name}' must satisfy lower < upper, got ({lower}, {upper})"
            )
        resolved_bounds[name] = (float(lower), float(upper))
        if name not in fix and not lower <= starts[name] <= upper:
            raise ConfigurationError(
                f"Start value for '{name}' ({starts[name]}) is outside its bounds "
                f"({lower}, {upper})",
                hint="Change the start value or the bounds",
            )

    resolved_phases = {
        name: FIXED_PHASE if name in fix else int(phases.get(name, DEFAULT_PHASE))
        for name in names
    }
    link_starts = {}
    for name in names:
        if resolved_phases[name] == FIXED_PHASE:
            continue
        try:
            link_starts[name] = float(DEFAULT_LINKS[name].to_link(starts[name]))
        except DomainError as error:
            raise ConfigurationError(
                f"Start value for '{name}' ({starts[name]}) is on the boundary of "
                f"its {DEFAULT_LINKS[name].value} link",
                hint="Move the start value inside the parameter's domain",
            ) from error
    auto_factors = compute_scale_factors(link_starts)

    parameters = tuple(
        ParameterSpec(
            name=name,
            link=DEFAULT_LINKS[name],
            lower=resolved_bounds[name][0],
            upper=resolved_bounds[name][1],
            phase=resolved_phases[name],
            scale_factor=float(scale_factors.get(name, auto_factors.get(name, 1.0))),
            start=float(starts[name]),
        )
        for name in names
    )
    for parameter in parameters:
        logger.debug(
            f"{parameter.name}: start={parameter.start:.4g}, phase={parameter.phase}, "
            f"scale_factor={parameter.scale_factor:.4g}"
        )
    return parameters

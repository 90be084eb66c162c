"""Assembling the full SECR log-likelihood.

The log-likelihood for ``n`` detections is

    log L = n log D + sum_i log(area * sum_{m in local(i)} f(capt_i | x_m)) - D * esa

where ``esa = area * sum_m p.(x_m)`` is the effective sampled area and
``p.(x) = 1 - prod_j (1 - p_j(x))`` is the probability of a call at ``x``
being detected at all. This is the usual conditional-likelihood form,
``n log(D esa) - D esa + sum_i log(sum_m f(capt_i | x_m) area / esa)``,
with the ``esa`` terms cancelled.

Models with only binary detections are evaluated once per unique detection
pattern and weighted by pattern frequency. Any per-detection measurement
(bearings, distances, signal strengths, times of arrival) requires the sum
to run over detections. Known-distance (mark-recapture distance sampling)
models replace the spatial integral with the capture probability at the
known distances.

Everything that does not depend on the parameters is precomputed once in an
immutable `FitContext`. The parameter-dependent part is a pure JAX function
so that gradients and Hessians are available by automatic differentiation.
"""

from __future__ import annotations

import warnings
from collections.abc import Mapping
from dataclasses import dataclass
from functools import cached_property, partial
from logging import getLogger

import jax
import jax.numpy as jnp
import numpy as np
from jax.nn import logsumexp

from acoustic_secr._validation import ensure_coordinates
from acoustic_secr.capture import (
    CaptureHistory,
    InfoType,
    UniquePatternTable,
    apply_signal_strength_cutoff,
    compress_capture_history,
    validate_capture_history,
)
from acoustic_secr.config import ModelConfig, ResolvedModel, resolve_model
from acoustic_secr.densities import (
    bearing_log_density,
    capture_log_density,
    distance_log_density,
    signal_strength_log_density,
    toa_log_density,
)
from acoustic_secr.detection_functions import PROB_FLOOR, log_detection_probabilities
from acoustic_secr.exceptions import DataError, NumericalWarning
from acoustic_secr.geometry import Geometry, bearings, distances, toa_ssq
from acoustic_secr.local import LocalIntegrationSet, find_local
from acoustic_secr.mask import Mask
from acoustic_secr.parameters import ParameterSpec, resolve_parameters

logger = getLogger(__name__)

CAPTURE = "capture"


def _mix(log_terms: jnp.ndarray, log_weights: jnp.ndarray) -> jnp.ndarray:
    """Combine per-node log terms over the leading quadrature axis."""
    return logsumexp(log_terms + log_weights[:, None, None], axis=0)


def _log_p_dot(log_q: jnp.ndarray, log_weights: jnp.ndarray) -> jnp.ndarray:
    """Probability of detection by at least one detector, shape (n_points,)."""
    p_dot_per_node = -jnp.expm1(log_q.sum(axis=1))
    return jnp.exp(log_weights) @ p_dot_per_node


def effective_sampled_area(
    params: Mapping[str, jnp.ndarray],
    model: ResolvedModel,
    grid: Mapping[str, jnp.ndarray],
    area: float,
) -> jnp.ndarray:
    """Effective sampled area for detection parameters `params`."""
    _, log_q, log_weights = log_detection_probabilities(
        model.detection_function,
        grid["dists"],
        params,
        model.ss_model,
        grid.get("bearings"),
    )
    return area * _log_p_dot(log_q, log_weights).sum()


def log_density_components(
    params: Mapping[str, jnp.ndarray],
    model: ResolvedModel,
    grid: Mapping[str, jnp.ndarray],
    observed: Mapping[str, jnp.ndarray],
) -> tuple[dict[str, jnp.ndarray], jnp.ndarray]:
    """Per-detection log-densities of each information type at each point.

    Parameters
    ----------
    params : mapping of parameter name to natural-scale value
    model : ResolvedModel
    grid : mapping
        ``"dists"`` and optionally ``"bearings"``, shape
        (n_detectors, n_points), and ``"toa_ssq"``, shape
        (n_rows, n_points).
    observed : mapping
        ``"binary"`` and any auxiliary measurements, each shape
        (n_rows, n_detectors). If ``"patterns"`` (unique binary rows) and
        ``"detection_index"`` (pattern of each row) are given, the capture
        term is evaluated once per pattern.

    Returns
    -------
    components : dict[str, jnp.ndarray]
        ``"capture"`` (binary capture history) and one entry per recorded
        information type, each shape (n_rows, n_points). For
        signal-strength models the ``"signal-strength"`` entry is the full
        density of the capture history including received strengths.
    log_p_dot : jnp.ndarray, shape (n_points,)
    """
    dists = grid["dists"]
    point_bearings = grid.get("bearings")
    log_p, log_q, log_weights = log_detection_probabilities(
        model.detection_function, dists, params, model.ss_model, point_bearings
    )
    binary = observed["binary"]
    if "patterns" in observed:
        # one capture term per unique pattern, shared by its detections
        log_capture = _mix(
            capture_log_density(observed["patterns"], log_p, log_q), log_weights
        )
        log_capture = jnp.take(log_capture, observed["detection_index"], axis=0)
    else:
        log_capture = _mix(capture_log_density(binary, log_p, log_q), log_weights)
    components = {CAPTURE: log_capture}

    if model.ss_model is not None:
        expected, _ = model.ss_model.expected(dists, params, point_bearings)
        components[InfoType.SIGNAL_STRENGTH.value] = _mix(
            signal_strength_log_density(
                observed[InfoType.SIGNAL_STRENGTH.value],
                binary,
                expected,
                log_q,
                params["sigma_ss"],
            ),
            log_weights,
        )
    if InfoType.BEARING in model.info_types:
        components[InfoType.BEARING.value] = bearing_log_density(
            observed[InfoType.BEARING.value], binary, point_bearings, params["kappa"]
        )
    if InfoType.DISTANCE in model.info_types:
        components[InfoType.DISTANCE.value] = distance_log_density(
            observed[InfoType.DISTANCE.value], binary, dists, params["alpha"]
        )
    if InfoType.TIME_OF_ARRIVAL in model.info_types:
        components[InfoType.TIME_OF_ARRIVAL.value] = toa_log_density(
            grid["toa_ssq"], binary.sum(axis=1), params["sigma_toa"]
        )

    log_p_dot = jnp.log(jnp.maximum(_log_p_dot(log_q, log_weights), PROB_FLOOR))
    return components, log_p_dot


def _combined_log_integrand(components: Mapping[str, jnp.ndarray]) -> jnp.ndarray:
    """Sum of log-densities of everything recorded about each detection."""
    if InfoType.SIGNAL_STRENGTH.value in components:
        # the signal strength density already accounts for the capture history
        terms = [value for key, value in components.items() if key != CAPTURE]
    else:
        terms = list(components.values())
    return sum(terms[1:], terms[0])


def _log_likelihood(
    params: Mapping[str, jnp.ndarray],
    data: Mapping[str, jnp.ndarray],
    model: ResolvedModel,
    area: float,
) -> tuple[jnp.ndarray, jnp.ndarray]:
    """Log-likelihood and effective sampled area."""
    grid = {key: data[key] for key in ("dists", "bearings", "toa_ssq") if key in data}
    esa = effective_sampled_area(params, model, grid, area)
    density = params["D"]
    n_detections = data["n_detections"]

    if model.is_known_distance:
        log_p, log_q, log_weights = log_detection_probabilities(
            model.detection_function, data["known_distances"].T, params, model.ss_model
        )
        binary = data["binary"].T
        log_capture = (binary * log_p + (1.0 - binary) * log_q).sum(axis=1)
        log_capture = logsumexp(log_capture + log_weights[:, None], axis=0)
        return (
            n_detections * jnp.log(density) - density * esa + log_capture.sum(),
            esa,
        )

    if model.is_binary_only:
        log_p, log_q, log_weights = log_detection_probabilities(
            model.detection_function, data["dists"], params
        )
        log_integrand = _mix(
            capture_log_density(data["patterns"], log_p, log_q), log_weights
        )
        weights = data["frequencies"]
    else:
        observed = {
            key: data[key]
            for key in (
                "binary",
                "patterns",
                "detection_index",
                InfoType.BEARING.value,
                InfoType.DISTANCE.value,
                InfoType.SIGNAL_STRENGTH.value,
            )
            if key in data
        }
        components, _ = log_density_components(params, model, grid, observed)
        log_integrand = _combined_log_integrand(components)
        weights = jnp.ones(log_integrand.shape[0])

    local_log_integrand = jnp.take_along_axis(log_integrand, data["point_index"], axis=1)
    log_row_likelihood = logsumexp(
        local_log_integrand, axis=1, b=data["is_valid"]
    ) + jnp.log(area)

    log_likelihood = (
        n_detections * jnp.log(density) + weights @ log_row_likelihood - density * esa
    )
    return log_likelihood, esa


def grid_arrays(
    model: ResolvedModel,
    detectors: np.ndarray,
    capture: CaptureHistory,
    points: np.ndarray,
) -> dict[str, np.ndarray]:
    """Parameter-independent arrays describing a grid of points."""
    grid = {"dists": distances(detectors, points)}
    if model.needs_bearings:
        grid["bearings"] = bearings(detectors, points)
    if model.uses_time_of_arrival:
        grid["toa_ssq"] = toa_ssq(
            capture.binary,
            capture[InfoType.TIME_OF_ARRIVAL],
            grid["dists"],
            model.sound_speed,
        )
    return grid


def observed_arrays(capture: CaptureHistory) -> dict[str, np.ndarray]:
    """Capture-history components keyed by information type value."""
    return {info_type.value: np.asarray(values) for info_type, values in capture.items()}


@dataclass(frozen=True)
class FitContext:
    """Everything about a fit that does not change during optimization.

    Attributes
    ----------
    detectors : np.ndarray, shape (n_detectors, 2)
    mask : Mask
    capture : CaptureHistory
        After any signal strength cutoff has been applied.
    model : ResolvedModel
    geometry : Geometry
    patterns : UniquePatternTable
    local_set : LocalIntegrationSet
    parameters : tuple[ParameterSpec, ...]
    call_frequencies : np.ndarray
        Calls per animal, used to convert call density to animal density.
    toa_ssq : np.ndarray or None, shape (n_detections, n_points)
    """

    detectors: np.ndarray
    mask: Mask
    capture: CaptureHistory
    model: ResolvedModel
    geometry: Geometry
    patterns: UniquePatternTable
    local_set: LocalIntegrationSet
    parameters: tuple[ParameterSpec, ...]
    call_frequencies: np.ndarray
    toa_ssq: np.ndarray | None = None

    @property
    def n_detections(self) -> int:
        return self.capture.n_detections

    @property
    def parameter_names(self) -> tuple[str, ...]:
        return tuple(parameter.name for parameter in self.parameters)

    @property
    def estimated_parameters(self) -> tuple[ParameterSpec, ...]:
        return tuple(parameter for parameter in self.parameters if not parameter.is_fixed)

    @property
    def start_values(self) -> dict[str, float]:
        return {parameter.name: parameter.start for parameter in self.parameters}

    def parameter(self, name: str) -> ParameterSpec:
        for parameter in self.parameters:
            if parameter.name == name:
                return parameter
        raise KeyError(name)

    def complete(self, params: Mapping[str, float]) -> dict[str, float]:
        """Fill in parameters missing from `params` with their start values."""
        unknown = set(params) - set(self.parameter_names)
        if unknown:
            raise KeyError(f"Unknown parameters {sorted(unknown)}")
        return {**self.start_values, **{key: float(value) for key, value in params.items()}}

    @cached_property
    def data(self) -> dict[str, jnp.ndarray]:
        """Device arrays consumed by the log-likelihood."""
        data = {
            "dists": self.geometry.distances,
            "n_detections": float(self.n_detections),
        }
        if self.geometry.bearings is not None:
            data["bearings"] = self.geometry.bearings
        if self.toa_ssq is not None:
            data["toa_ssq"] = self.toa_ssq

        point_index, is_valid = self.local_set.padded()
        if self.model.is_known_distance:
            data["binary"] = self.capture.binary
            data["known_distances"] = self.capture[InfoType.KNOWN_DISTANCE]
        elif self.model.is_binary_only:
            data["patterns"] = self.patterns.patterns.astype(float)
            data["frequencies"] = self.patterns.frequencies.astype(float)
            data["point_index"] = point_index
            data["is_valid"] = is_valid.astype(float)
        else:
            data.update(observed_arrays(self.capture))
            data.pop(InfoType.TIME_OF_ARRIVAL.value, None)
            detection_index = self.patterns.detection_index
            data["patterns"] = self.patterns.patterns.astype(float)
            data["detection_index"] = detection_index
            data["point_index"] = point_index[detection_index]
            data["is_valid"] = is_valid[detection_index].astype(float)
        return {key: jnp.asarray(value) for key, value in data.items()}

    @cached_property
    def log_likelihood_function(self):
        """Jitted ``(params, data) -> (log_likelihood, esa)``."""
        return jax.jit(partial(_log_likelihood, model=self.model, area=self.mask.area))

    @cached_property
    def esa_function(self):
        """Jitted ``params -> esa``."""
        grid = {key: self.data[key] for key in ("dists", "bearings") if key in self.data}
        return jax.jit(
            partial(effective_sampled_area, model=self.model, grid=grid, area=self.mask.area)
        )

    @property
    def objective(self):
        """Negative log-likelihood as a differentiable function of the
        natural-scale parameter mapping."""
        data = self.data
        log_likelihood = self.log_likelihood_function

        def negative_log_likelihood(params):
            return -log_likelihood(params, data)[0]

        return negative_log_likelihood


def build_context(
    capture: CaptureHistory | Mapping[str, np.ndarray],
    detectors: np.ndarray,
    mask: Mask,
    config: ModelConfig | None = None,
    start_values: Mapping[str, float] | None = None,
    bounds: Mapping[str, tuple[float, float]] | None = None,
    phases: Mapping[str, int] | None = None,
    scale_factors: Mapping[str, float] | None = None,
    fix: Mapping[str, float] | None = None,
    call_frequencies: np.ndarray | None = None,
) -> FitContext:
    """Validate inputs and precompute everything needed for a fit.

    Parameters
    ----------
    capture : CaptureHistory or mapping
        Capture history components keyed by information type.
    detectors : np.ndarray, shape (n_detectors, 2)
    mask : Mask
    config : ModelConfig, optional
    start_values, bounds, phases, scale_factors, fix : mapping, optional
        Per-parameter overrides. Fixed parameters are held at the given
        value.
    call_frequencies : np.ndarray, optional
        Observed numbers of calls per animal. Defaults to one call each.

    Returns
    -------
    context : FitContext

    Raises
    ------
    ValidationError
        If detector coordinates are malformed.
    DataError
        If the capture history is malformed.
    ConfigurationError
        If the configuration contradicts itself or the data.
    """
    detectors = ensure_coordinates(detectors, "detectors")
    detectors.setflags(write=False)
    if not isinstance(capture, CaptureHistory):
        capture = CaptureHistory(capture)
    validate_capture_history(capture, detectors.shape[0])
    config = config if config is not None else ModelConfig()
    model = resolve_model(config, capture, start_values, fix)

    if model.ss_model is not None:
        capture = apply_signal_strength_cutoff(capture, model.ss_model.cutoff)
        if capture.n_detections == 0:
            raise DataError(
                "No detections have a signal strength above the cutoff",
                data_name=InfoType.SIGNAL_STRENGTH.value,
            )

    if call_frequencies is None:
        call_frequencies = np.ones(1)
    call_frequencies = np.asarray(call_frequencies, dtype=float).reshape(-1)
    if call_frequencies.size == 0 or np.any(call_frequencies <= 0):
        raise DataError(
            "Call frequencies must be positive", data_name="call_frequencies"
        )

    geometry = Geometry.from_points(
        detectors, mask.points, with_bearings=model.needs_bearings
    )
    patterns = compress_capture_history(capture.binary)
    local_set = find_local(
        patterns.patterns, geometry.distances, mask.buffer, local=model.local
    )
    ssq = None
    if model.uses_time_of_arrival:
        ssq = toa_ssq(
            capture.binary,
            capture[InfoType.TIME_OF_ARRIVAL],
            geometry.distances,
            model.sound_speed,
        )
        ssq.setflags(write=False)

    esa_grid = {"dists": jnp.asarray(geometry.distances)}
    if geometry.bearings is not None:
        esa_grid["bearings"] = jnp.asarray(geometry.bearings)

    def start_esa(params: Mapping[str, float]) -> float:
        return float(effective_sampled_area(params, model, esa_grid, mask.area))

    ss_model = model.ss_model
    parameters = resolve_parameters(
        model.parameter_names,
        capture,
        detectors,
        mask.total_area,
        start_esa,
        start_values=model.start_values,
        bounds=bounds,
        phases=phases,
        scale_factors=scale_factors,
        fix=model.fix,
        cutoff=ss_model.cutoff if ss_model is not None else None,
        ss_link=ss_model.link if ss_model is not None else "identity",
    )
    logger.info(
        f"Built fit context: {capture.n_detections} detections, "
        f"{patterns.n_unique} unique patterns, {detectors.shape[0]} detectors, "
        f"{mask.n_points} grid points"
    )
    return FitContext(
        detectors=detectors,
        mask=mask,
        capture=capture,
        model=model,
        geometry=geometry,
        patterns=patterns,
        local_set=local_set,
        parameters=parameters,
        call_frequencies=call_frequencies,
        toa_ssq=ssq,
    )


def evaluate(
    context: FitContext, params: Mapping[str, float]
) -> tuple[float, float]:
    """Negative log-likelihood and effective sampled area.

    Parameters
    ----------
    context : FitContext
    params : mapping of parameter name to natural-scale value
        Missing parameters take their start (or fixed) values.

    Returns
    -------
    negative_log_likelihood : float
        ``inf`` if the log-likelihood is not finite.
    esa : float
    """
    params = context.complete(params)
    for parameter in context.parameters:
        if not parameter.in_bounds(params[parameter.name]):
            warnings.warn(
                f"Parameter {parameter.name} = {params[parameter.name]} is outside "
                f"its bounds ({parameter.lower}, {parameter.upper})",
                NumericalWarning,
                stacklevel=2,
            )
    log_likelihood, esa = context.log_likelihood_function(
        {key: jnp.asarray(value) for key, value in params.items()}, context.data
    )
    log_likelihood, esa = float(log_likelihood), float(esa)
    if not np.isfinite(log_likelihood):
        warnings.warn(
            f"Log-likelihood is not finite at {params}",
            NumericalWarning,
            stacklevel=2,
        )
        return np.inf, esa
    return -log_likelihood, esa


def detection_log_densities(
    context: FitContext,
    params: Mapping[str, float] | None = None,
    points: np.ndarray | None = None,
) -> dict[str, np.ndarray]:
    """Log-densities of every information type for every detection.

    Parameters
    ----------
    context : FitContext
    params : mapping, optional
        Natural-scale parameters. Defaults to the start values.
    points : np.ndarray, shape (n_points, 2), optional
        Evaluate on these points instead of the fit mask.

    Returns
    -------
    log_densities : dict[str, np.ndarray]
        ``"capture"`` and each recorded information type, shape
        (n_detections, n_points), plus ``"log_p_dot"``, shape (n_points,).
    """
    if context.model.is_known_distance:
        raise DataError(
            "Known-distance models have no location-dependent densities",
            data_name=InfoType.KNOWN_DISTANCE.value,
        )
    params = context.complete(params or {})
    if points is None:
        grid = {key: context.data[key] for key in ("dists", "bearings") if key in context.data}
        if context.toa_ssq is not None:
            grid["toa_ssq"] = context.data["toa_ssq"]
    else:
        grid = grid_arrays(context.model, context.detectors, context.capture, points)
    observed = {
        key: jnp.asarray(value)
        for key, value in observed_arrays(context.capture).items()
        if key != InfoType.TIME_OF_ARRIVAL.value
    }
    components, log_p_dot = log_density_components(
        {key: jnp.asarray(value) for key, value in params.items()},
        context.model,
        {key: jnp.asarray(value) for key, value in grid.items()},
        observed,
    )
    log_densities = {key: np.asarray(value) for key, value in components.items()}
    log_densities["log_p_dot"] = np.asarray(log_p_dot)
    return log_densities

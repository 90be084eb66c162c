"""Posterior distributions of call locations.

For a detection with capture history ``capt`` the posterior density of the
call location is

    f(x | capt) ∝ f(x) f(capt | x),   f(x) = p.(x) / (area * sum_m p.(x_m))

Each information type gives its own surface by replacing ``f(capt | x)``
with the density of that information alone; the combined surface uses
everything recorded about the detection. Surfaces are normalised so that
``sum(surface) * area == 1`` over the grid.
"""

from __future__ import annotations

import warnings
from collections.abc import Sequence
from logging import getLogger

import numpy as np
import xarray as xr
from scipy.special import logsumexp
from tqdm.autonotebook import tqdm

from acoustic_secr.capture import InfoType
from acoustic_secr.exceptions import ValidationError
from acoustic_secr.fit import FitResult
from acoustic_secr.likelihood import CAPTURE, detection_log_densities
from acoustic_secr.mask import Mask

logger = getLogger(__name__)

COMBINED = "combined"
SURFACE_TYPES = (
    CAPTURE,
    InfoType.BEARING.value,
    InfoType.DISTANCE.value,
    InfoType.SIGNAL_STRENGTH.value,
    InfoType.TIME_OF_ARRIVAL.value,
    COMBINED,
)


def available_surface_types(fit: FitResult) -> tuple[str, ...]:
    """Surface types that can be computed for a fitted model."""
    model = fit.context.model
    recorded = {info_type.value for info_type in model.info_types}
    if model.has_signal_strength:
        recorded.add(InfoType.SIGNAL_STRENGTH.value)
    return tuple(
        surface_type
        for surface_type in SURFACE_TYPES
        if surface_type in (CAPTURE, COMBINED) or surface_type in recorded
    )


def _check_request(fit: FitResult, info_type: str, detection_ids: np.ndarray) -> None:
    if fit.context.model.is_known_distance:
        raise ValidationError(
            "Location surfaces are not available for known-distance models",
            hint="Known distances already fix each call's distance to the detectors",
        )
    available = available_surface_types(fit)
    if info_type not in available:
        raise ValidationError(
            f"Information type {info_type!r} was not used in this fit",
            expected=f"one of {list(available)}",
            got=repr(info_type),
        )
    n_detections = fit.context.n_detections
    if np.any((detection_ids < 0) | (detection_ids >= n_detections)):
        raise ValidationError(
            "Detection ids out of range",
            expected=f"0 <= id < {n_detections}",
            got=f"{detection_ids.tolist()}",
        )


def _log_surface_terms(
    log_densities: dict[str, np.ndarray], info_type: str, n_fired: np.ndarray
) -> np.ndarray:
    """Location-dependent log-density for one information type."""
    ss_key = InfoType.SIGNAL_STRENGTH.value
    toa_key = InfoType.TIME_OF_ARRIVAL.value
    if info_type == ss_key:
        with np.errstate(invalid="ignore"):
            log_ratio = log_densities[ss_key] - log_densities[CAPTURE]
        return np.where(np.isfinite(log_ratio), log_ratio, -np.inf)
    if info_type == toa_key and np.any(n_fired < 2):
        warnings.warn(
            "Some detections were heard by fewer than two detectors; their "
            "time-of-arrival surfaces carry no information beyond the prior",
            UserWarning,
            stacklevel=4,
        )
    if info_type == COMBINED:
        keys = [key for key in log_densities if key != "log_p_dot"]
        if ss_key in keys:
            keys.remove(CAPTURE)
        return sum(log_densities[key] for key in keys)
    return log_densities[info_type]


def _normalize(log_surface: np.ndarray, area: float) -> np.ndarray:
    log_norm = logsumexp(log_surface, axis=1, keepdims=True)
    return np.exp(log_surface - log_norm) / area


def posterior_surface(
    fit: FitResult,
    detection_ids: Sequence[int] | int,
    info_type: str = COMBINED,
    mask: Mask | None = None,
) -> xr.DataArray:
    """Posterior density of call locations given recorded information.

    Parameters
    ----------
    fit : FitResult
    detection_ids : int or sequence of int
        Rows of the fitted capture history.
    info_type : str, default="combined"
        One of "capture", "bearing", "distance", "signal-strength",
        "time-of-arrival" or "combined". The "signal-strength" surface uses
        the signal strengths only, dividing out the binary capture history.
    mask : Mask, optional
        Grid to evaluate on. Defaults to the fitted mask; a finer mask gives
        smoother surfaces.

    Returns
    -------
    surface : xr.DataArray, shape (n_requested, n_points)
        Dimensions ``("detection", "grid_point")`` with coordinates ``x`` and
        ``y`` on ``grid_point``.

    Raises
    ------
    ValidationError
        If the information type was not used in the fit, the model is a
        known-distance model, or an id is out of range.
    """
    return posterior_surfaces(fit, detection_ids, [info_type], mask)[info_type]


def posterior_surfaces(
    fit: FitResult,
    detection_ids: Sequence[int] | int,
    info_types: Sequence[str] | str = "all",
    mask: Mask | None = None,
    disable_progress_bar: bool = True,
) -> dict[str, xr.DataArray]:
    """Posterior surfaces for several information types at once.

    Parameters
    ----------
    fit : FitResult
    detection_ids : int or sequence of int
    info_types : sequence of str or "all", default="all"
        "all" gives every type available for the fit.
    mask : Mask, optional
    disable_progress_bar : bool, default=True

    Returns
    -------
    surfaces : dict[str, xr.DataArray]
    """
    detection_ids = np.atleast_1d(np.asarray(detection_ids, dtype=int))
    if isinstance(info_types, str):
        info_types = (
            available_surface_types(fit) if info_types == "all" else [info_types]
        )
    for info_type in info_types:
        _check_request(fit, info_type, detection_ids)

    context = fit.context
    mask = mask if mask is not None else context.mask
    points = None if mask is context.mask else mask.points
    logger.info(f"Computing location surfaces on {mask.n_points} grid points...")
    log_densities = detection_log_densities(context, fit.estimates, points)
    log_densities = {
        key: value if key == "log_p_dot" else value[detection_ids]
        for key, value in log_densities.items()
    }
    log_p_dot = log_densities["log_p_dot"]
    log_prior = log_p_dot - logsumexp(log_p_dot) - np.log(mask.area)
    n_fired = context.capture.binary[detection_ids].sum(axis=1)

    coords = {
        "detection": detection_ids,
        "x": ("grid_point", mask.points[:, 0]),
        "y": ("grid_point", mask.points[:, 1]),
    }
    surfaces = {}
    for info_type in tqdm(info_types, desc="Surfaces", disable=disable_progress_bar):
        log_surface = log_prior + _log_surface_terms(log_densities, info_type, n_fired)
        surfaces[info_type] = xr.DataArray(
            _normalize(log_surface, mask.area),
            dims=("detection", "grid_point"),
            coords=coords,
            name=info_type,
            attrs={"area": mask.area},
        )
    return surfaces


def contained_probability_levels(
    surface: xr.DataArray, probabilities: Sequence[float] = (0.5, 0.9, 0.95)
) -> xr.DataArray:
    """Density thresholds of the smallest regions containing each probability.

    The region ``surface >= level`` is the highest posterior density region
    with at least the requested probability.

    Parameters
    ----------
    surface : xr.DataArray, shape (n_detections, n_points)
        Output of `posterior_surface`.
    probabilities : sequence of float

    Returns
    -------
    levels : xr.DataArray, shape (n_detections, n_probabilities)
    """
    probabilities = np.asarray(probabilities, dtype=float)
    if np.any((probabilities <= 0) | (probabilities > 1)):
        raise ValidationError(
            "Probabilities must be in (0, 1]",
            got=f"{probabilities.tolist()}",
        )
    values = np.asarray(surface)
    const = values.sum(axis=1, keepdims=True)
    sorted_values = np.sort(values, axis=1)[:, ::-1]
    cumulative = np.cumsum(sorted_values / const, axis=1)

    levels = np.empty((values.shape[0], probabilities.size))
    for ind, probability in enumerate(probabilities):
        # tolerance for cumulative rounding error
        is_covered = cumulative >= probability - 1e-12
        crit_ind = np.argmax(is_covered, axis=1)
        crit_ind[~is_covered.any(axis=1)] = values.shape[1] - 1
        levels[:, ind] = sorted_values[np.arange(values.shape[0]), crit_ind]

    return xr.DataArray(
        levels,
        dims=("detection", "probability"),
        coords={"detection": surface.detection.values, "probability": probabilities},
    )


def estimated_location(surface: xr.DataArray) -> np.ndarray:
    """Posterior mode of each detection's location.

    Parameters
    ----------
    surface : xr.DataArray, shape (n_detections, n_points)

    Returns
    -------
    locations : np.ndarray, shape (n_detections, 2)
    """
    mode_ind = np.asarray(surface.argmax("grid_point"))
    return np.column_stack(
        [surface.x.values[mode_ind], surface.y.values[mode_ind]]
    )

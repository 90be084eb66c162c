"""Maximum likelihood fitting.

Parameters are optimized on the scaled link scale with L-BFGS-B, using JAX
for exact gradients. Parameters are introduced phase by phase: in phase
``k`` every parameter with phase ``<= k`` is estimated, starting from the
estimates of the previous phase, while the rest stay at their start values.
Standard errors come from the inverse Hessian of the negative
log-likelihood on the link scale, carried to the natural scale with the
delta method.
"""

from __future__ import annotations

import warnings
from collections.abc import Mapping
from dataclasses import dataclass
from logging import getLogger

import jax
import jax.numpy as jnp
import numpy as np
import pandas as pd
from scipy.optimize import minimize
from scipy.stats import norm
from tqdm.autonotebook import tqdm

from acoustic_secr.exceptions import FittingError
from acoustic_secr.likelihood import FitContext, effective_sampled_area
from acoustic_secr.parameters import ParameterSpec

logger = getLogger(__name__)

MAX_GRADIENT_TOLERANCE = 0.01


def _to_natural(
    link_values: jnp.ndarray,
    estimated: tuple[ParameterSpec, ...],
    fixed_values: Mapping[str, float],
) -> dict[str, jnp.ndarray]:
    params = {name: jnp.asarray(value) for name, value in fixed_values.items()}
    for ind, parameter in enumerate(estimated):
        params[parameter.name] = parameter.link.from_link(link_values[ind])
    return params


def _make_scaled_objective(
    context: FitContext,
    estimated: tuple[ParameterSpec, ...],
    fixed_values: Mapping[str, float],
):
    """Jitted value and gradient of the negative log-likelihood on the scaled
    link scale."""
    scale_factors = jnp.asarray([parameter.scale_factor for parameter in estimated])
    log_likelihood = context.log_likelihood_function

    def scaled_negative_log_likelihood(scaled_values, data):
        params = _to_natural(scaled_values / scale_factors, estimated, fixed_values)
        return -log_likelihood(params, data)[0]

    value_and_grad = jax.jit(jax.value_and_grad(scaled_negative_log_likelihood))
    data = context.data

    def objective(scaled_values: np.ndarray) -> tuple[float, np.ndarray]:
        value, grad = value_and_grad(jnp.asarray(scaled_values), data)
        value = float(value)
        if not np.isfinite(value):
            return np.inf, np.zeros_like(scaled_values)
        return value, np.asarray(grad, dtype=float)

    return objective


@dataclass(frozen=True)
class FitResult:
    """Estimates and their uncertainty.

    Attributes
    ----------
    context : FitContext
    estimates : dict[str, float]
        Natural-scale values of every parameter, fixed ones included.
    link_estimates : dict[str, float]
        Link-scale values of the estimated parameters.
    std_errors : dict[str, float]
        Natural-scale standard errors of the estimated parameters, ``esa``
        and ``Da``. NaN when the Hessian was not computed or is singular.
    vcov : pd.DataFrame
        Link-scale variance-covariance matrix of the estimated parameters.
    esa : float
        Effective sampled area at the estimates.
    log_likelihood : float
    max_gradient : float
        Largest absolute gradient component on the scaled link scale.
    """

    context: FitContext
    estimates: dict
    link_estimates: dict
    std_errors: dict
    vcov: pd.DataFrame
    esa: float
    log_likelihood: float
    max_gradient: float

    @property
    def mu_freqs(self) -> float:
        """Mean number of calls per animal."""
        return float(np.mean(self.context.call_frequencies))

    @property
    def Da(self) -> float:
        """Animal density: call density divided by the mean call frequency."""
        return self.estimates["D"] / self.mu_freqs

    @property
    def coefficients(self) -> pd.DataFrame:
        """Estimates and standard errors of estimated and derived quantities."""
        names = [parameter.name for parameter in self.context.estimated_parameters]
        estimates = [self.estimates[name] for name in names] + [self.esa, self.Da]
        names = names + ["esa", "Da"]
        return pd.DataFrame(
            {
                "estimate": estimates,
                "std_error": [self.std_errors.get(name, np.nan) for name in names],
            },
            index=pd.Index(names, name="parameter"),
        )

    def confint(self, level: float = 0.95) -> pd.DataFrame:
        """Wald confidence intervals on the natural scale.

        Parameters
        ----------
        level : float, default=0.95

        Returns
        -------
        intervals : pd.DataFrame
            Columns ``lower`` and ``upper``.
        """
        if not 0 < level < 1:
            raise ValueError(f"level must be between 0 and 1, got {level}")
        coefficients = self.coefficients
        half_width = norm.ppf(0.5 + level / 2) * coefficients["std_error"]
        return pd.DataFrame(
            {
                "lower": coefficients["estimate"] - half_width,
                "upper": coefficients["estimate"] + half_width,
            }
        )

    @classmethod
    def at(
        cls, context: FitContext, params: Mapping[str, float], hessian: bool = True
    ) -> FitResult:
        """Result at fixed parameter values, without optimizing.

        Parameters
        ----------
        context : FitContext
        params : mapping of parameter name to natural-scale value
            Missing parameters take their start values.
        hessian : bool, default=True
            Compute standard errors.
        """
        return _summarize(context, context.complete(params), hessian)


def _summarize(
    context: FitContext, natural: Mapping[str, float], hessian: bool
) -> FitResult:
    estimated = context.estimated_parameters
    names = [parameter.name for parameter in estimated]
    fixed_values = {
        name: value for name, value in natural.items() if name not in names
    }
    link_values = jnp.asarray(
        [float(parameter.link.to_link(natural[parameter.name])) for parameter in estimated]
    )
    data = context.data
    log_likelihood_function = context.log_likelihood_function

    def negative_log_likelihood(values):
        return -log_likelihood_function(
            _to_natural(values, estimated, fixed_values), data
        )[0]

    def esa(values):
        grid = {key: data[key] for key in ("dists", "bearings") if key in data}
        return effective_sampled_area(
            _to_natural(values, estimated, fixed_values),
            context.model,
            grid,
            context.mask.area,
        )

    value, grad = jax.value_and_grad(negative_log_likelihood)(link_values)
    esa_value = float(esa(link_values))
    scale_factors = np.asarray([parameter.scale_factor for parameter in estimated])
    max_gradient = (
        float(np.max(np.abs(np.asarray(grad) / scale_factors))) if names else 0.0
    )

    n_estimated = len(names)
    vcov = np.full((n_estimated, n_estimated), np.nan)
    std_errors = {name: np.nan for name in names + ["esa", "Da"]}
    if hessian and n_estimated > 0:
        hess = np.asarray(jax.hessian(negative_log_likelihood)(link_values))
        try:
            vcov = np.linalg.inv(hess)
        except np.linalg.LinAlgError:
            logger.warning("Hessian is singular; standard errors are not available.")
        else:
            if not np.all(np.isfinite(vcov)) or np.any(np.diag(vcov) < 0):
                logger.warning(
                    "Hessian is not positive definite; standard errors may be invalid."
                )
            natural_jacobian = np.asarray(
                jax.jacobian(
                    lambda values: jnp.stack(
                        [
                            parameter.link.from_link(values[ind])
                            for ind, parameter in enumerate(estimated)
                        ]
                    )
                )(link_values)
            )
            natural_vcov = natural_jacobian @ vcov @ natural_jacobian.T
            with np.errstate(invalid="ignore"):
                natural_se = np.sqrt(np.diag(natural_vcov))
                esa_grad = np.asarray(jax.grad(esa)(link_values))
                esa_se = float(np.sqrt(esa_grad @ vcov @ esa_grad))
            std_errors = dict(zip(names, natural_se.tolist()))
            std_errors["esa"] = esa_se
            std_errors["Da"] = std_errors.get("D", np.nan) / float(
                np.mean(context.call_frequencies)
            )

    estimates = {name: float(value_) for name, value_ in natural.items()}
    return FitResult(
        context=context,
        estimates={name: estimates[name] for name in context.parameter_names},
        link_estimates=dict(zip(names, np.asarray(link_values).tolist())),
        std_errors=std_errors,
        vcov=pd.DataFrame(vcov, index=names, columns=names),
        esa=esa_value,
        log_likelihood=-float(value),
        max_gradient=max_gradient,
    )


def fit(
    context: FitContext,
    hessian: bool | None = None,
    disable_progress_bar: bool = False,
    options: Mapping[str, object] | None = None,
) -> FitResult:
    """Find maximum likelihood estimates.

    Parameters
    ----------
    context : FitContext
    hessian : bool, optional
        Compute standard errors. Defaults to True unless some animals made
        more than one call, in which case detections are not independent
        and Hessian-based standard errors are not valid.
    disable_progress_bar : bool, default=False
    options : mapping, optional
        Passed to `scipy.optimize.minimize`.

    Returns
    -------
    result : FitResult

    Raises
    ------
    FittingError
        If the optimizer ends at non-finite estimates or log-likelihood.
    """
    if hessian is None:
        hessian = not np.any(context.call_frequencies > 1)
    current = context.start_values
    estimated_parameters = context.estimated_parameters
    phases = sorted({parameter.phase for parameter in estimated_parameters})

    for phase in tqdm(phases, desc="Phases", disable=disable_progress_bar):
        estimated = tuple(p for p in estimated_parameters if p.phase <= phase)
        names = [parameter.name for parameter in estimated]
        logger.info(f"Fitting phase {phase}: {names}")
        fixed_values = {
            name: value for name, value in current.items() if name not in names
        }
        x0 = np.asarray(
            [
                float(p.link.to_link(current[p.name])) * p.scale_factor
                for p in estimated
            ]
        )
        bounds = [
            tuple(bound * p.scale_factor for bound in p.link_bounds) for p in estimated
        ]
        res = minimize(
            _make_scaled_objective(context, estimated, fixed_values),
            x0=x0,
            method="L-BFGS-B",
            jac=True,
            bounds=bounds,
            options=dict(options or {}),
        )
        if not res.success:
            logger.warning(f"Optimizer did not converge in phase {phase}: {res.message}")
        for p, value in zip(estimated, res.x):
            current[p.name] = float(p.link.from_link(value / p.scale_factor))

    result = _summarize(context, current, hessian)
    if not np.isfinite(result.log_likelihood) or not all(
        np.isfinite(value) for value in result.estimates.values()
    ):
        raise FittingError(
            "Optimization ended at non-finite estimates",
            hint="Try different start values or bounds",
        )
    if result.max_gradient > MAX_GRADIENT_TOLERANCE:
        message = (
            f"Maximum gradient component is large ({result.max_gradient:.4g}); "
            "the optimizer may not have converged"
        )
        logger.warning(message)
        warnings.warn(message, UserWarning, stacklevel=2)
    logger.info(f"Finished fitting: log-likelihood {result.log_likelihood:.4f}")
    return result

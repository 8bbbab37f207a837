"""Nuisance parameter estimation.

Plug-in estimates of the quantities each influence function formula
needs (mean, sd, quantile, density at the quantile, tail expectations,
partial moments, robust location), plus per-key merging of caller
overrides.

Conventions used by every formula:

- sd is the population standard deviation (denominator n).
- Quantiles interpolate linearly between order statistics.
- The density at the quantile is a Gaussian KDE with Silverman's bandwidth.
- ES is a positive loss: es = -mean(r[r <= quantile]).
- Partial moments use the full-sample denominator n.
"""
from __future__ import annotations

import logging
from typing import Mapping

import numpy as np
from scipy import integrate
from scipy import stats as scipy_stats

from .errors import InputValidationError, InsufficientDataError
from .formulas import get_formula
from .robust import (
    DEFAULT_MAX_ITER,
    DEFAULT_TOL,
    expected_psi_prime,
    psi_prime,
    robust_location_scale,
    tuning_constant,
)
from .types import Estimator, EstimatorSpec, ReturnSeries

logger = logging.getLogger(__name__)

NUISANCE_KEYS = (
    "mean",
    "sd",
    "quantile",
    "density",
    "es",
    "upper_quantile",
    "etr",
    "lpm",
    "lpm_lower",
    "semisd",
    "lpm1",
    "upm1",
    "prob_below",
    "location",
    "scale",
    "psi_slope",
)

_QUANTILE_DENSITY = {Estimator.VAR, Estimator.VAR_RATIO}
_LOWER_TAIL = {Estimator.ES, Estimator.ES_RATIO, Estimator.RACHEV_RATIO}
_SEMI_DEVIATION = {Estimator.SEMI_SD, Estimator.SOR, Estimator.DSR}


def empirical_quantile(values: np.ndarray, prob: float) -> float:
    """Quantile by linear interpolation between order statistics."""
    return float(np.quantile(np.asarray(values, dtype=np.float64), prob))


def kernel_density_at(values: np.ndarray, point: float) -> float:
    """
    Gaussian kernel density estimate at a single point.

    Parameters
    ----------
    values : np.ndarray
        Sample.
    point : float
        Evaluation point.

    Returns
    -------
    float
        Density estimate with Silverman's bandwidth.
    """
    kde = scipy_stats.gaussian_kde(np.asarray(values, dtype=np.float64), bw_method="silverman")
    return float(kde(point)[0])


def lower_partial_moment(values: np.ndarray, threshold: float, order: int) -> float:
    """
    Lower partial moment mean((t - r)^k * 1{r <= t}).

    Order 0 gives the fraction of observations at or below the threshold.
    """
    x = np.asarray(values, dtype=np.float64)
    below = x <= threshold
    if order == 0:
        return float(below.mean())
    return float(np.mean(np.where(below, (threshold - x) ** order, 0.0)))


def upper_partial_moment(values: np.ndarray, threshold: float) -> float:
    """First upper partial moment mean((r - t) * 1{r > t})."""
    x = np.asarray(values, dtype=np.float64)
    return float(np.mean(np.maximum(x - threshold, 0.0)))


def threshold_value(spec: EstimatorSpec, mean: float) -> float:
    """Partial-moment threshold: the mean or the constant."""
    return mean if spec.mean_threshold else spec.const


def required_nuisance(spec: EstimatorSpec) -> tuple[str, ...]:
    """Nuisance keys the estimator's formula needs."""
    return get_formula(spec.estimator).required(spec)


def estimate_nuisance(
    returns: ReturnSeries,
    spec: EstimatorSpec,
    tol: float = DEFAULT_TOL,
    max_iter: int = DEFAULT_MAX_ITER,
) -> dict[str, float]:
    """
    Plug-in nuisance parameters from a return sample.

    Parameters
    ----------
    returns : ReturnSeries
        Return sample (at least 2 observations).
    spec : EstimatorSpec
        Estimator and its configuration.
    tol, max_iter
        Fixed-point settings for the robMean M-estimator.

    Returns
    -------
    dict[str, float]
        Always contains ``mean`` and ``sd``, plus the keys the
        estimator's formula requires.

    Raises
    ------
    InsufficientDataError
        Fewer than 2 observations.
    """
    x = returns.values
    if len(x) < 2:
        raise InsufficientDataError(
            f"nuisance estimation needs at least 2 observations, got {len(x)}",
            estimator=spec.estimator.value,
        )

    mean = float(x.mean())
    params: dict[str, float] = {"mean": mean, "sd": float(x.std(ddof=0))}
    estimator = spec.estimator
    t = threshold_value(spec, mean)

    if estimator in _QUANTILE_DENSITY:
        q = empirical_quantile(x, spec.alpha)
        params["quantile"] = q
        params["density"] = kernel_density_at(x, q)

    if estimator in _LOWER_TAIL:
        q = empirical_quantile(x, spec.alpha)
        params["quantile"] = q
        params["es"] = float(-x[x <= q].mean())

    if estimator is Estimator.RACHEV_RATIO:
        q_up = empirical_quantile(x, 1.0 - spec.beta)
        params["upper_quantile"] = q_up
        params["etr"] = float(x[x >= q_up].mean())

    if estimator is Estimator.LPM:
        params["lpm"] = lower_partial_moment(x, t, spec.moment)
        params["lpm_lower"] = lower_partial_moment(x, t, spec.moment - 1)

    if estimator in _SEMI_DEVIATION:
        params["semisd"] = float(np.sqrt(lower_partial_moment(x, t, 2)))
        params["lpm1"] = lower_partial_moment(x, t, 1)

    if estimator is Estimator.OMEGA:
        params["upm1"] = upper_partial_moment(x, t)
        params["lpm1"] = lower_partial_moment(x, t, 1)
        params["prob_below"] = lower_partial_moment(x, t, 0)

    if estimator is Estimator.ROB_MEAN:
        location, scale = robust_location_scale(
            x, spec.family, spec.eff, tol=tol, max_iter=max_iter
        )
        c = tuning_constant(spec.family, spec.eff)
        params["location"] = location
        params["scale"] = scale
        params["psi_slope"] = float(np.mean(psi_prime((x - location) / scale, spec.family, c)))

    logger.debug("estimated nuisance for %s from n=%d: %s", estimator.value, len(x), params)
    return params


def merge_nuisance(
    user: Mapping[str, float] | None,
    estimated: Mapping[str, float],
) -> dict[str, float]:
    """
    Merge caller overrides into estimated parameters.

    Any key supplied by the caller replaces the estimated value; all
    other estimated keys are kept.
    """
    merged = dict(estimated)
    if user:
        merged.update({k: float(v) for k, v in user.items()})
    return merged


def resolve_nuisance(
    returns: ReturnSeries | None,
    spec: EstimatorSpec,
    user: Mapping[str, float] | None = None,
    tol: float = DEFAULT_TOL,
    max_iter: int = DEFAULT_MAX_ITER,
) -> dict[str, float]:
    """
    Estimate (when a series is available) and merge caller overrides.

    Parameters
    ----------
    returns : ReturnSeries | None
        Return sample, or None for purely user-specified parameters.
    spec : EstimatorSpec
        Estimator and configuration.
    user : Mapping[str, float] | None
        Per-key overrides.
    tol, max_iter
        Fixed-point settings for the robMean M-estimator.

    Returns
    -------
    dict[str, float]
        Complete nuisance parameters for the estimator's formula.

    Raises
    ------
    InsufficientDataError
        A required key is neither supplied nor estimable.
    """
    user = dict(user or {})
    required = required_nuisance(spec)

    estimated: dict[str, float] = {}
    if returns is not None:
        if len(returns) >= 2:
            estimated = estimate_nuisance(returns, spec, tol=tol, max_iter=max_iter)
        elif all(key in user for key in required):
            logger.warning(
                "resolve_nuisance: %d observation(s) cannot be used for estimation; "
                "using supplied nuisance parameters only", len(returns),
            )
        else:
            raise InsufficientDataError(
                f"nuisance estimation needs at least 2 observations, got {len(returns)}",
                estimator=spec.estimator.value,
            )

    merged = merge_nuisance(user, estimated)

    if (
        spec.estimator is Estimator.ROB_MEAN
        and "psi_slope" not in merged
        and "location" in merged
        and "scale" in merged
    ):
        c = tuning_constant(spec.family, spec.eff)
        merged["psi_slope"] = expected_psi_prime(spec.family, c)
        logger.debug("psi_slope for %s taken under the normal model", spec.family.value)

    missing = [key for key in required if key not in merged]
    if missing:
        raise InsufficientDataError(
            "required nuisance parameters are neither supplied nor estimable "
            "(provide returns or nuisance_pars)",
            estimator=spec.estimator.value,
            missing=missing,
        )
    return merged


def _normal_lpm(mean: float, sd: float, threshold: float, order: int) -> float:
    d = (threshold - mean) / sd
    if order == 0:
        return float(scipy_stats.norm.cdf(d))
    value, _ = integrate.quad(
        lambda z: (d - z) ** order * scipy_stats.norm.pdf(z), -np.inf, d
    )
    return float(sd**order * value)


def normal_nuisance(spec: EstimatorSpec, mean: float, sd: float) -> dict[str, float]:
    """
    Nuisance parameters implied by a normal return distribution.

    Lets the IF shape be drawn without data. This is never applied
    implicitly; pass the result as ``nuisance_pars``.

    Parameters
    ----------
    spec : EstimatorSpec
        Estimator and configuration.
    mean : float
        Mean of the normal model.
    sd : float
        Standard deviation of the normal model (> 0).

    Returns
    -------
    dict[str, float]
        ``mean``, ``sd`` and every key the estimator's formula requires.
    """
    if not sd > 0:
        raise InputValidationError(f"sd must be positive, got {sd}")

    norm = scipy_stats.norm
    params: dict[str, float] = {"mean": float(mean), "sd": float(sd)}
    estimator = spec.estimator
    t = threshold_value(spec, mean)
    d = (t - mean) / sd

    z = norm.ppf(spec.alpha)
    if estimator in _QUANTILE_DENSITY:
        params["quantile"] = float(mean + sd * z)
        params["density"] = float(norm.pdf(z) / sd)

    if estimator in _LOWER_TAIL:
        params["quantile"] = float(mean + sd * z)
        params["es"] = float(sd * norm.pdf(z) / spec.alpha - mean)

    if estimator is Estimator.RACHEV_RATIO:
        z_up = norm.ppf(1.0 - spec.beta)
        params["upper_quantile"] = float(mean + sd * z_up)
        params["etr"] = float(mean + sd * norm.pdf(z_up) / spec.beta)

    if estimator is Estimator.LPM:
        params["lpm"] = _normal_lpm(mean, sd, t, spec.moment)
        params["lpm_lower"] = _normal_lpm(mean, sd, t, spec.moment - 1)

    if estimator in _SEMI_DEVIATION:
        params["semisd"] = float(np.sqrt(_normal_lpm(mean, sd, t, 2)))
        params["lpm1"] = _normal_lpm(mean, sd, t, 1)

    if estimator is Estimator.OMEGA:
        params["upm1"] = float(sd * (norm.pdf(d) - d * norm.sf(d)))
        params["lpm1"] = _normal_lpm(mean, sd, t, 1)
        params["prob_below"] = float(norm.cdf(d))

    if estimator is Estimator.ROB_MEAN:
        c = tuning_constant(spec.family, spec.eff)
        params["location"] = float(mean)
        params["scale"] = float(sd)
        params["psi_slope"] = expected_psi_prime(spec.family, c)

    return params

"""Influence function formulas for the supported estimators.

Each estimator is a ``Formula``: either a single ``Component`` or the
ratio of two components combined with the quotient rule

    IF(g/h) = (IF(g) * h - g * IF(h)) / h²

Components know their own value and IF given nuisance parameters, so
the same formula serves grid evaluation and series transformation.

Notation: μ mean, σ sd, q the α-quantile, f(q) the density at q,
t the partial-moment threshold (the mean or a constant).

| Component       | value   | IF(x)                                          |
|-----------------|---------|------------------------------------------------|
| mean            | μ       | x - μ                                          |
| excess mean     | μ - rf  | x - μ                                          |
| sd              | σ       | ((x - μ)² - σ²) / (2σ)                         |
| quantile        | q       | (α - 1{x <= q}) / f(q)                         |
| VaR loss        | -q      | (1{x <= q} - α) / f(q)                         |
| ES loss         | es      | 1{x <= q} (q - x) / α - q - es                 |
| upper tail mean | etr     | 1{x >= q_u} (x - q_u) / β + q_u - etr          |
| LPM_k(t)        | lpm     | (t - x)^k 1{x <= t} - lpm [+ k LPM_{k-1} (x-μ)] |
| semisd          | s       | IF(LPM_2) / (2 s)                              |
| UPM_1(t)        | upm1    | (x - t)⁺ - upm1 [- (1 - P(X <= t)) (x - μ)]    |
| robMean         | loc     | scale ψ((x - loc)/scale) / E[ψ']               |

Bracketed terms apply only when t is the mean.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping

import numpy as np

from .errors import DegenerateRatioError, MissingNuisanceParameterError
from .robust import psi, tuning_constant
from .types import Estimator, EstimatorSpec

Nuisance = Mapping[str, float]
SQRT_2 = np.sqrt(2.0)


def quotient_rule(
    if_g: np.ndarray | float,
    g: float,
    if_h: np.ndarray | float,
    h: float,
) -> np.ndarray:
    """
    Influence function of the ratio g/h.

    Parameters
    ----------
    if_g, if_h : np.ndarray | float
        IF values of numerator and denominator at the same points.
    g, h : float
        Numerator and denominator values.

    Returns
    -------
    np.ndarray
        (IF(g) * h - g * IF(h)) / h².

    Raises
    ------
    DegenerateRatioError
        If ``h`` is zero.
    """
    if h == 0:
        raise DegenerateRatioError("ratio denominator is zero")
    return (np.asarray(if_g) * h - g * np.asarray(if_h)) / h**2


def _nonzero(value: float, what: str, spec: EstimatorSpec) -> float:
    if value == 0:
        raise DegenerateRatioError(f"{what} is zero", estimator=spec.estimator.value)
    return value


def _threshold(n: Nuisance, spec: EstimatorSpec) -> float:
    return n["mean"] if spec.mean_threshold else spec.const


def _lpm_influence(
    x: np.ndarray,
    n: Nuisance,
    spec: EstimatorSpec,
    order: int,
    value: float,
    lower: str,
) -> np.ndarray:
    """IF of LPM_order(t); ``lower`` names the LPM_{order-1} key."""
    t = _threshold(n, spec)
    out = np.where(x <= t, (t - x) ** order, 0.0) - value
    if spec.mean_threshold:
        out = out + order * n[lower] * (x - n["mean"])
    return out


def _fixed_keys(*keys: str) -> Callable[[EstimatorSpec], tuple[str, ...]]:
    def keys_for(spec: EstimatorSpec) -> tuple[str, ...]:
        return keys
    return keys_for


def _partial_keys(own: str, lower: str) -> Callable[[EstimatorSpec], tuple[str, ...]]:
    def keys_for(spec: EstimatorSpec) -> tuple[str, ...]:
        if spec.mean_threshold:
            return (own, "mean", lower)
        return (own,)
    return keys_for


@dataclass(frozen=True)
class Component:
    """One estimator building block: its value and its IF.

    Attributes
    ----------
    name : str
        Short name used in error messages.
    keys : Callable[[EstimatorSpec], tuple[str, ...]]
        Nuisance keys needed for the given configuration.
    value : Callable[[Nuisance, EstimatorSpec], float]
        Estimator value.
    influence : Callable[[np.ndarray, Nuisance, EstimatorSpec], np.ndarray]
        IF evaluated at ``x``.
    """

    name: str
    keys: Callable[[EstimatorSpec], tuple[str, ...]]
    value: Callable[[Nuisance, EstimatorSpec], float]
    influence: Callable[[np.ndarray, Nuisance, EstimatorSpec], np.ndarray]


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------

MEAN = Component(
    name="mean",
    keys=_fixed_keys("mean"),
    value=lambda n, s: n["mean"],
    influence=lambda x, n, s: x - n["mean"],
)

EXCESS_MEAN = Component(
    name="excess mean",
    keys=_fixed_keys("mean"),
    value=lambda n, s: n["mean"] - s.risk_free,
    influence=lambda x, n, s: x - n["mean"],
)


def _sd_influence(x: np.ndarray, n: Nuisance, s: EstimatorSpec) -> np.ndarray:
    sd = _nonzero(n["sd"], "sd", s)
    return ((x - n["mean"]) ** 2 - sd**2) / (2.0 * sd)


SD = Component(
    name="sd",
    keys=_fixed_keys("mean", "sd"),
    value=lambda n, s: n["sd"],
    influence=_sd_influence,
)


def _quantile_influence(x: np.ndarray, n: Nuisance, s: EstimatorSpec) -> np.ndarray:
    density = _nonzero(n["density"], "density at the quantile", s)
    return (s.alpha - (x <= n["quantile"]).astype(np.float64)) / density


QUANTILE = Component(
    name="quantile",
    keys=_fixed_keys("quantile", "density"),
    value=lambda n, s: n["quantile"],
    influence=_quantile_influence,
)

VAR_LOSS = Component(
    name="VaR",
    keys=_fixed_keys("quantile", "density"),
    value=lambda n, s: -n["quantile"],
    influence=lambda x, n, s: -_quantile_influence(x, n, s),
)


def _es_influence(x: np.ndarray, n: Nuisance, s: EstimatorSpec) -> np.ndarray:
    q = n["quantile"]
    return np.where(x <= q, (q - x) / s.alpha, 0.0) - q - n["es"]


ES_LOSS = Component(
    name="ES",
    keys=_fixed_keys("quantile", "es"),
    value=lambda n, s: n["es"],
    influence=_es_influence,
)


def _upper_tail_influence(x: np.ndarray, n: Nuisance, s: EstimatorSpec) -> np.ndarray:
    q_up = n["upper_quantile"]
    return np.where(x >= q_up, (x - q_up) / s.beta, 0.0) + q_up - n["etr"]


UPPER_TAIL = Component(
    name="upper tail mean",
    keys=_fixed_keys("upper_quantile", "etr"),
    value=lambda n, s: n["etr"],
    influence=_upper_tail_influence,
)

LPM = Component(
    name="LPM",
    keys=_partial_keys("lpm", "lpm_lower"),
    value=lambda n, s: n["lpm"],
    influence=lambda x, n, s: _lpm_influence(x, n, s, s.moment, n["lpm"], "lpm_lower"),
)


def _semisd_influence(x: np.ndarray, n: Nuisance, s: EstimatorSpec) -> np.ndarray:
    semisd = _nonzero(n["semisd"], "semi-deviation", s)
    return _lpm_influence(x, n, s, 2, semisd**2, "lpm1") / (2.0 * semisd)


SEMI_SD = Component(
    name="semi-deviation",
    keys=_partial_keys("semisd", "lpm1"),
    value=lambda n, s: n["semisd"],
    influence=_semisd_influence,
)

DOWNSIDE_SD = Component(
    name="downside deviation",
    keys=_partial_keys("semisd", "lpm1"),
    value=lambda n, s: SQRT_2 * n["semisd"],
    influence=lambda x, n, s: SQRT_2 * _semisd_influence(x, n, s),
)

LPM1 = Component(
    name="LPM1",
    keys=_partial_keys("lpm1", "prob_below"),
    value=lambda n, s: n["lpm1"],
    influence=lambda x, n, s: _lpm_influence(x, n, s, 1, n["lpm1"], "prob_below"),
)


def _upm1_influence(x: np.ndarray, n: Nuisance, s: EstimatorSpec) -> np.ndarray:
    t = _threshold(n, s)
    out = np.maximum(x - t, 0.0) - n["upm1"]
    if s.mean_threshold:
        out = out - (1.0 - n["prob_below"]) * (x - n["mean"])
    return out


UPM1 = Component(
    name="UPM1",
    keys=_partial_keys("upm1", "prob_below"),
    value=lambda n, s: n["upm1"],
    influence=_upm1_influence,
)


def _rob_mean_influence(x: np.ndarray, n: Nuisance, s: EstimatorSpec) -> np.ndarray:
    scale = _nonzero(n["scale"], "robust scale", s)
    slope = _nonzero(n["psi_slope"], "E[psi']", s)
    c = tuning_constant(s.family, s.eff)
    return scale * psi((x - n["location"]) / scale, s.family, c) / slope


ROB_MEAN = Component(
    name="robust mean",
    keys=_fixed_keys("location", "scale", "psi_slope"),
    value=lambda n, s: n["location"],
    influence=_rob_mean_influence,
)


# ---------------------------------------------------------------------------
# Formulas
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Formula:
    """Influence function of one estimator.

    A single component, or the ratio numerator/denominator.

    Examples
    --------
    >>> spec = EstimatorSpec(Estimator.MEAN)
    >>> get_formula("Mean")(np.array([0.0, 0.01]), {"mean": 0.005}, spec)
    array([-0.005,  0.005])
    """

    estimator: Estimator
    numerator: Component
    denominator: Component | None = None

    @property
    def is_ratio(self) -> bool:
        return self.denominator is not None

    def required(self, spec: EstimatorSpec) -> tuple[str, ...]:
        """Nuisance keys needed under ``spec`` (ordered, unique)."""
        keys = list(self.numerator.keys(spec))
        if self.denominator is not None:
            keys.extend(self.denominator.keys(spec))
        return tuple(dict.fromkeys(keys))

    def check(self, nuisance: Nuisance, spec: EstimatorSpec) -> None:
        """Raise MissingNuisanceParameterError for the first absent key."""
        for key in self.required(spec):
            if key not in nuisance:
                raise MissingNuisanceParameterError(
                    f"missing nuisance parameter '{key}'",
                    estimator=self.estimator.value,
                    key=key,
                )

    def value(self, nuisance: Nuisance, spec: EstimatorSpec) -> float:
        """Estimator value implied by the nuisance parameters."""
        self.check(nuisance, spec)
        g = self.numerator.value(nuisance, spec)
        if self.denominator is None:
            return float(g)
        h = self.denominator.value(nuisance, spec)
        return float(g / _nonzero(h, f"{self.denominator.name} (ratio denominator)", spec))

    def __call__(
        self,
        x: np.ndarray | float,
        nuisance: Nuisance,
        spec: EstimatorSpec,
    ) -> np.ndarray:
        """
        Evaluate the IF at ``x``.

        Parameters
        ----------
        x : np.ndarray | float
            Grid points or observed returns.
        nuisance : Mapping[str, float]
            Nuisance parameters (see ``required``).
        spec : EstimatorSpec
            Estimator configuration.

        Returns
        -------
        np.ndarray
            IF values, same shape as ``x``.
        """
        self.check(nuisance, spec)
        x = np.asarray(x, dtype=np.float64)
        if_g = self.numerator.influence(x, nuisance, spec)
        if self.denominator is None:
            return np.asarray(if_g, dtype=np.float64)

        g = self.numerator.value(nuisance, spec)
        h = _nonzero(
            self.denominator.value(nuisance, spec),
            f"{self.denominator.name} (ratio denominator)",
            spec,
        )
        if_h = self.denominator.influence(x, nuisance, spec)
        return quotient_rule(if_g, g, if_h, h)


FORMULAS: Mapping[Estimator, Formula] = MappingProxyType({
    Estimator.MEAN:         Formula(Estimator.MEAN, MEAN),
    Estimator.SD:           Formula(Estimator.SD, SD),
    Estimator.VAR:          Formula(Estimator.VAR, QUANTILE),
    Estimator.ES:           Formula(Estimator.ES, ES_LOSS),
    Estimator.SR:           Formula(Estimator.SR, EXCESS_MEAN, SD),
    Estimator.SOR:          Formula(Estimator.SOR, EXCESS_MEAN, SEMI_SD),
    Estimator.DSR:          Formula(Estimator.DSR, EXCESS_MEAN, DOWNSIDE_SD),
    Estimator.ES_RATIO:     Formula(Estimator.ES_RATIO, EXCESS_MEAN, ES_LOSS),
    Estimator.VAR_RATIO:    Formula(Estimator.VAR_RATIO, EXCESS_MEAN, VAR_LOSS),
    Estimator.RACHEV_RATIO: Formula(Estimator.RACHEV_RATIO, UPPER_TAIL, ES_LOSS),
    Estimator.ROB_MEAN:     Formula(Estimator.ROB_MEAN, ROB_MEAN),
    Estimator.LPM:          Formula(Estimator.LPM, LPM),
    Estimator.OMEGA:        Formula(Estimator.OMEGA, UPM1, LPM1),
    Estimator.SEMI_SD:      Formula(Estimator.SEMI_SD, SEMI_SD),
})


def get_formula(estimator: Estimator | str) -> Formula:
    """Look up the formula for an estimator."""
    return FORMULAS[Estimator(estimator)]

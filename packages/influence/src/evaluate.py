"""Shape evaluation and series transformation.

Both modes drive the same ``Formula``:

- shape mode maps the formula over a grid of hypothetical returns;
- series mode maps it over observed returns, with the nuisance
  parameters estimated once from the whole series.
"""
from __future__ import annotations

import logging
from typing import Mapping

import numpy as np

from .formulas import Formula
from .types import EstimatorSpec, IFResult, ReturnSeries

logger = logging.getLogger(__name__)

DEFAULT_GRID_POINTS = 1000
DEFAULT_K = 4.0
DEFAULT_SD = 1.0


def default_grid(
    nuisance: Mapping[str, float],
    k: float = DEFAULT_K,
    n_points: int = DEFAULT_GRID_POINTS,
    default_sd: float = DEFAULT_SD,
) -> np.ndarray:
    """
    Evenly spaced grid of k standard deviations around the mean.

    Parameters
    ----------
    nuisance : Mapping[str, float]
        Nuisance parameters. The centre is ``mean`` (else ``location``,
        else 0.0) and the half-width is k times ``sd`` (else ``scale``,
        else ``default_sd``).
    k : float, default 4.0
        Half-width in standard deviations.
    n_points : int, default 1000
        Number of grid points.
    default_sd : float, default 1.0
        Width fallback when no sd or scale is available.

    Returns
    -------
    np.ndarray
        Grid from centre - k*sd to centre + k*sd inclusive.

    Examples
    --------
    >>> grid = default_grid({"mean": 0.0, "sd": 0.01}, k=4, n_points=5)
    >>> grid
    array([-0.04, -0.02,  0.  ,  0.02,  0.04])
    """
    if "mean" in nuisance:
        centre = float(nuisance["mean"])
    elif "location" in nuisance:
        centre = float(nuisance["location"])
    else:
        centre = 0.0
        logger.warning("default_grid: no mean available, centring grid at 0.0")

    if "sd" in nuisance:
        width = float(nuisance["sd"])
    elif "scale" in nuisance:
        width = float(nuisance["scale"])
    else:
        width = default_sd
        logger.warning("default_grid: no sd available, using fallback sd=%s", default_sd)

    return np.linspace(centre - k * width, centre + k * width, n_points)


def evaluate_shape(
    formula: Formula,
    grid: np.ndarray,
    nuisance: Mapping[str, float],
    spec: EstimatorSpec,
) -> IFResult:
    """
    Evaluate the IF over a grid of hypothetical returns.

    Parameters
    ----------
    formula : Formula
        Estimator formula.
    grid : np.ndarray
        Evaluation points, in the order they should be returned.
    nuisance : Mapping[str, float]
        Nuisance parameters.
    spec : EstimatorSpec
        Estimator configuration.

    Returns
    -------
    IFResult
        Shape result with ``x`` equal to the grid.
    """
    grid = np.asarray(grid, dtype=np.float64)
    values = formula(grid, nuisance, spec)
    return IFResult(
        estimator=spec.estimator,
        mode="shape",
        x=grid,
        values=values,
        nuisance=dict(nuisance),
    )


def transform_series(
    formula: Formula,
    returns: ReturnSeries,
    nuisance: Mapping[str, float],
    spec: EstimatorSpec,
) -> IFResult:
    """
    Transform observed returns into their IF values.

    The nuisance parameters are fixed for every observation (no
    rolling re-estimation). Output order and labels follow the input.

    Parameters
    ----------
    formula : Formula
        Estimator formula.
    returns : ReturnSeries
        Observed returns.
    nuisance : Mapping[str, float]
        Nuisance parameters, normally estimated from ``returns``.
    spec : EstimatorSpec
        Estimator configuration.

    Returns
    -------
    IFResult
        Series result, one IF value per observation.
    """
    values = formula(returns.values, nuisance, spec)
    return IFResult(
        estimator=spec.estimator,
        mode="series",
        x=returns.values.copy(),
        values=values,
        nuisance=dict(nuisance),
        labels=returns.labels,
    )

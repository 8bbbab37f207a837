"""Influence function engine.

Composes the pieces of one influence function request:

    validate -> clean -> resolve nuisance -> shape | series
             -> prewhiten (series only) -> plot -> return

Each call walks the state machine

    INIT -> NUISANCE_RESOLVED -> SHAPE_COMPUTED | SERIES_COMPUTED
         -> [PREWHITENED] -> DONE

Shape evaluation never reaches PREWHITENED. Any error aborts the call;
no partial result is returned.
"""
from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .errors import InfluenceFunctionError, InsufficientDataError
from .evaluate import default_grid, evaluate_shape, transform_series
from .formulas import get_formula
from .nuisance import resolve_nuisance
from .plotting import plot_influence
from .prewhiten import prewhiten as ar_residuals
from .robust import robust_clean
from .types import Estimator, EstimatorSpec, IFConfig, IFResult, ReturnSeries, as_float_array
from .validation import resolve_estimator, validate_inputs

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    """Stages of one engine call."""
    INIT              = "init"
    NUISANCE_RESOLVED = "nuisance_resolved"
    SHAPE_COMPUTED    = "shape_computed"
    SERIES_COMPUTED   = "series_computed"
    PREWHITENED       = "prewhitened"
    DONE              = "done"


TRANSITIONS: Mapping[EngineState, frozenset[EngineState]] = MappingProxyType({
    EngineState.INIT:              frozenset({EngineState.NUISANCE_RESOLVED}),
    EngineState.NUISANCE_RESOLVED: frozenset({EngineState.SHAPE_COMPUTED, EngineState.SERIES_COMPUTED}),
    EngineState.SHAPE_COMPUTED:    frozenset({EngineState.DONE}),
    EngineState.SERIES_COMPUTED:   frozenset({EngineState.PREWHITENED, EngineState.DONE}),
    EngineState.PREWHITENED:       frozenset({EngineState.DONE}),
    EngineState.DONE:              frozenset(),
})


def _drop_leading(result: IFResult, values: np.ndarray, order: int) -> IFResult:
    """Series result holding AR residuals, first ``order`` observations dropped."""
    labels = result.labels[order:] if result.labels is not None else None
    return IFResult(
        estimator=result.estimator,
        mode=result.mode,
        x=result.x[order:],
        values=values,
        nuisance=result.nuisance,
        labels=labels,
        prewhitened=True,
    )


def _advance(trace: list[EngineState], target: EngineState) -> None:
    current = trace[-1]
    if target not in TRANSITIONS[current]:
        raise InfluenceFunctionError(
            f"invalid engine transition {current.value} -> {target.value}"
        )
    logger.debug("engine: %s -> %s", current.value, target.value)
    trace.append(target)


class IFEngine:
    """
    Orchestrates influence function evaluation.

    Parameters
    ----------
    config : IFConfig | None
        Defaults for any keyword of ``run`` left as None.

    Examples
    --------
    >>> engine = IFEngine()
    >>> result = engine.run("Mean", eval_shape=True, nuisance_pars={"mean": 0.005})
    >>> result.mode, len(result)
    ('shape', 1000)
    """

    def __init__(self, config: IFConfig | None = None) -> None:
        self.config = config if config is not None else IFConfig()

    def run(
        self,
        estimator: Estimator | str,
        returns: pd.Series | np.ndarray | Sequence[float] | None = None,
        *,
        eval_shape: bool = False,
        ret_vals: np.ndarray | Sequence[float] | None = None,
        nuisance_pars: Mapping[str, float] | None = None,
        k: float | None = None,
        tail_probability: float | None = None,
        upper_tail_probability: float | None = None,
        threshold: str | None = None,
        const: float | None = None,
        risk_free: float | None = None,
        moment: int | None = None,
        prewhiten: bool = False,
        ar_order: int | None = None,
        clean_outliers: bool = False,
        clean_method: str | None = None,
        family: str | None = None,
        eff: float | None = None,
        grid_points: int | None = None,
        plot: bool = False,
        plot_path: str | Path | None = None,
        return_result: bool = True,
        labels: Sequence[Any] | pd.Index | None = None,
    ) -> IFResult | None:
        """
        Compute the influence function of one estimator.

        Parameters
        ----------
        estimator : Estimator | str
            One of the 14 estimator identifiers, e.g. "SR" or "robMean".
        returns : pd.Series | np.ndarray | Sequence[float] | None
            Observed returns. Required in series mode; optional in shape
            mode when ``nuisance_pars`` covers every required parameter.
        eval_shape : bool, default False
            True evaluates the IF over a grid, False transforms ``returns``.
        ret_vals : array-like | None
            Grid override for shape mode.
        nuisance_pars : Mapping[str, float] | None
            Per-key overrides of the estimated nuisance parameters.
        k : float | None
            Default grid half-width in standard deviations.
        tail_probability, upper_tail_probability : float | None
            Lower tail probability (VaR/ES family) and upper tail
            probability (RachevRatio).
        threshold : {"mean", "const"} | None
            Partial-moment threshold. None uses the estimator default.
        const, risk_free : float | None
            Constant threshold and risk-free rate.
        moment : int | None
            LPM order.
        prewhiten : bool, default False
            Replace the IF series by AR residuals (series mode only).
        ar_order : int | None
            AR order for prewhitening.
        clean_outliers : bool, default False
            Winsorize ``returns`` robustly before estimation.
        clean_method, family, eff
            Cleaning method, robust score family and normal efficiency.
        grid_points : int | None
            Number of points in the default grid.
        plot : bool, default False
            Draw the result with ``plot_influence``. The Axes are kept on
            ``IFResult.axes``; with ``return_result=False`` the figure is
            closed once drawn (and saved, when ``plot_path`` is given).
        plot_path : str | Path | None
            Where to save the plot (only used when ``plot`` is True).
        return_result : bool, default True
            False performs only the plotting side effect and returns None.
        labels : Sequence | pd.Index | None
            Time labels for ``returns``; overrides a Series index.

        Returns
        -------
        IFResult | None
            The result, or None when ``return_result`` is False.

        Raises
        ------
        InputValidationError
            Unknown estimator or bad arguments.
        InsufficientDataError
            Required nuisance parameters can be neither estimated nor
            found in ``nuisance_pars``.
        MissingNuisanceParameterError, DegenerateRatioError, NonConvergenceError
            Formula, robust estimation or AR fitting failures.
        """
        cfg = self.config
        estimator = resolve_estimator(estimator)
        k = cfg.k if k is None else k
        tail_probability = cfg.tail_probability if tail_probability is None else tail_probability
        upper_tail_probability = (
            cfg.upper_tail_probability if upper_tail_probability is None else upper_tail_probability
        )
        const = cfg.const if const is None else const
        risk_free = cfg.risk_free if risk_free is None else risk_free
        moment = cfg.moment if moment is None else moment
        ar_order = cfg.ar_order if ar_order is None else ar_order
        clean_method = cfg.clean_method if clean_method is None else clean_method
        family = cfg.family if family is None else family
        eff = cfg.eff if eff is None else eff
        grid_points = cfg.grid_points if grid_points is None else grid_points

        mode = "shape" if eval_shape else "series"
        trace = [EngineState.INIT]

        try:
            validate_inputs(
                estimator=estimator,
                returns=returns,
                eval_shape=eval_shape,
                ret_vals=ret_vals,
                nuisance_pars=nuisance_pars,
                k=k,
                grid_points=grid_points,
                tail_probability=tail_probability,
                upper_tail_probability=upper_tail_probability,
                threshold=threshold,
                const=const,
                risk_free=risk_free,
                moment=moment,
                prewhiten=prewhiten,
                ar_order=ar_order,
                clean_outliers=clean_outliers,
                clean_method=clean_method,
                family=family,
                eff=eff,
                plot=plot,
                return_result=return_result,
            )
            spec = EstimatorSpec(
                estimator=estimator,
                alpha=float(tail_probability),
                beta=float(upper_tail_probability),
                threshold=threshold,
                const=float(const),
                risk_free=float(risk_free),
                moment=int(moment),
                family=family,
                eff=float(eff),
            )

            series = None
            if returns is not None:
                series = ReturnSeries.from_input(returns, labels=labels)
                if clean_outliers:
                    series = robust_clean(
                        series, clean_method, spec.family, spec.eff,
                        tol=cfg.tol, max_iter=cfg.max_iter,
                    )

            nuisance = resolve_nuisance(
                series, spec, nuisance_pars, tol=cfg.tol, max_iter=cfg.max_iter
            )
            _advance(trace, EngineState.NUISANCE_RESOLVED)
            formula = get_formula(estimator)

            if eval_shape:
                if ret_vals is not None:
                    grid = as_float_array(ret_vals, "ret_vals")
                else:
                    grid = default_grid(nuisance, k, grid_points, cfg.default_sd)
                result = evaluate_shape(formula, grid, nuisance, spec)
                _advance(trace, EngineState.SHAPE_COMPUTED)
            else:
                if len(series) < 2:
                    raise InsufficientDataError(
                        f"series mode needs at least 2 observations, got {len(series)}"
                    )
                result = transform_series(formula, series, nuisance, spec)
                _advance(trace, EngineState.SERIES_COMPUTED)
                if prewhiten:
                    residuals = ar_residuals(result.values, ar_order)
                    result = _drop_leading(result, residuals, ar_order)
                    _advance(trace, EngineState.PREWHITENED)
        except InfluenceFunctionError as exc:
            exc.context.setdefault("estimator", estimator.value)
            exc.context.setdefault("mode", mode)
            raise

        _advance(trace, EngineState.DONE)
        result.trace = tuple(trace)
        logger.info(
            "IF %s: mode=%s n=%d prewhitened=%s",
            estimator.value, result.mode, len(result), result.prewhitened,
        )

        if plot:
            ax = plot_influence(result, path=plot_path)
            if return_result:
                result.axes = ax
            else:
                plt.close(ax.figure)
        return result if return_result else None


def influence_function(
    estimator: Estimator | str,
    returns: pd.Series | np.ndarray | Sequence[float] | None = None,
    config: IFConfig | None = None,
    **options: Any,
) -> IFResult | None:
    """
    Compute the influence function of an estimator.

    Convenience wrapper around ``IFEngine(config).run``; see
    ``IFEngine.run`` for the options.

    Examples
    --------
    >>> r = pd.Series([0.01, -0.02, 0.015, 0.003], index=pd.date_range("2024-01-01", periods=4))
    >>> influence_function("SD", r).to_series().index[0]
    Timestamp('2024-01-01 00:00:00')
    """
    return IFEngine(config).run(estimator, returns, **options)

"""Core types for influence function evaluation.

Enumerations for the closed set of estimators and their options,
the immutable estimator specification, the return series and result
containers, and the per-call configuration defaults.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

import numpy as np
import pandas as pd

from .errors import InputValidationError


class Estimator(str, Enum):
    """The 14 supported risk and performance estimators."""
    MEAN          = "Mean"
    SD            = "SD"
    VAR           = "VaR"
    ES            = "ES"
    SR            = "SR"
    SOR           = "SoR"
    DSR           = "DSR"
    ES_RATIO      = "ESratio"
    VAR_RATIO     = "VaRratio"
    RACHEV_RATIO  = "RachevRatio"
    ROB_MEAN      = "robMean"
    LPM           = "LPM"
    OMEGA         = "Omega"
    SEMI_SD       = "SemiSD"


class Threshold(str, Enum):
    """Threshold for partial moments: the sample mean or a constant."""
    MEAN  = "mean"
    CONST = "const"


class RobustFamily(str, Enum):
    """Score function family for robust M-estimation of location."""
    MOPT     = "mopt"
    OPT      = "opt"
    BISQUARE = "bisquare"


def as_float_array(values: Any, name: str = "returns") -> np.ndarray:
    """Convert to a float64 array, raising InputValidationError on non-numeric input."""
    try:
        return np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise InputValidationError(f"{name} must be numeric: {exc}") from None


# Estimators whose partial moments default to the mean threshold
_MEAN_THRESHOLD_DEFAULT = {Estimator.SEMI_SD, Estimator.DSR}


def _coerce_enum(enum_cls: type[Enum], value: Any, name: str) -> Any:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [m.value for m in enum_cls]
        raise InputValidationError(
            f"{name} must be one of {allowed}, got {value!r}"
        ) from None


@dataclass(frozen=True)
class EstimatorSpec:
    """Estimator identity plus its estimator-specific configuration.

    Parameters
    ----------
    estimator : Estimator
        Which measure.
    alpha : float, default 0.05
        Tail probability for VaR, ES, VaRratio, ESratio and the lower
        tail of RachevRatio.
    beta : float, default 0.1
        Upper tail probability for RachevRatio.
    threshold : Threshold | None
        Partial-moment threshold. None resolves to MEAN for SemiSD and
        DSR and CONST otherwise. DSR always uses MEAN.
    const : float, default 0.0
        Threshold value when ``threshold`` is CONST.
    risk_free : float, default 0.0
        Risk-free rate subtracted in ratio numerators.
    moment : int, default 1
        Order of the lower partial moment (LPM only).
    family : RobustFamily, default MOPT
        Score function for robMean.
    eff : float, default 0.99
        Normal efficiency of the robMean score function.
    """

    estimator: Estimator
    alpha: float = 0.05
    beta: float = 0.1
    threshold: Threshold | None = None
    const: float = 0.0
    risk_free: float = 0.0
    moment: int = 1
    family: RobustFamily = RobustFamily.MOPT
    eff: float = 0.99

    def __post_init__(self) -> None:
        object.__setattr__(self, "estimator", _coerce_enum(Estimator, self.estimator, "estimator"))
        object.__setattr__(self, "family", _coerce_enum(RobustFamily, self.family, "family"))
        if self.estimator is Estimator.DSR:
            threshold = Threshold.MEAN
        elif self.threshold is None:
            threshold = Threshold.MEAN if self.estimator in _MEAN_THRESHOLD_DEFAULT else Threshold.CONST
        else:
            threshold = _coerce_enum(Threshold, self.threshold, "threshold")
        object.__setattr__(self, "threshold", threshold)

    @property
    def mean_threshold(self) -> bool:
        """True when partial moments are taken around the mean."""
        return self.threshold is Threshold.MEAN


@dataclass
class ReturnSeries:
    """Ordered return observations with optional time labels.

    Attributes
    ----------
    values : np.ndarray
        Float observations, 1-D.
    labels : pd.Index | None
        Time labels aligned 1:1 with ``values``. None means positional
        order is the only ordering.
    """

    values: np.ndarray
    labels: pd.Index | None = None

    def __post_init__(self) -> None:
        self.values = as_float_array(self.values)
        if self.values.ndim != 1:
            raise InputValidationError(
                f"returns must be one-dimensional, got shape {self.values.shape}"
            )
        if not np.all(np.isfinite(self.values)):
            raise InputValidationError("returns contain NaN or infinite values")
        if self.labels is not None and len(self.labels) != len(self.values):
            raise InputValidationError(
                f"labels length {len(self.labels)} does not match returns length {len(self.values)}"
            )

    def __len__(self) -> int:
        return len(self.values)

    @classmethod
    def from_input(
        cls,
        returns: pd.Series | np.ndarray | Sequence[float],
        labels: Sequence[Any] | pd.Index | None = None,
    ) -> ReturnSeries:
        """Build a ReturnSeries from a pandas Series, array or sequence.

        A pandas Series contributes its index as labels unless the index
        is a default RangeIndex. Explicit ``labels`` always win.
        """
        if isinstance(returns, pd.DataFrame):
            if returns.shape[1] != 1:
                raise InputValidationError(
                    f"returns DataFrame must have exactly one column, got {returns.shape[1]}"
                )
            returns = returns.iloc[:, 0]

        index = None
        if isinstance(returns, pd.Series):
            if not isinstance(returns.index, pd.RangeIndex):
                index = returns.index
            values = as_float_array(returns.to_numpy())
        else:
            values = as_float_array(returns)

        if labels is not None:
            index = pd.Index(labels)
        return cls(values=values, labels=index)

    def with_values(self, values: np.ndarray) -> ReturnSeries:
        """Copy with new values and the same labels."""
        return ReturnSeries(values=values, labels=self.labels)

    def to_series(self) -> pd.Series:
        """Return as a pandas Series (labels as index when present)."""
        return pd.Series(self.values, index=self.labels, name="returns")


@dataclass
class IFResult:
    """Influence function output.

    Attributes
    ----------
    estimator : Estimator
        Measure the IF belongs to.
    mode : str
        "shape" (grid evaluation) or "series" (transformed returns).
    x : np.ndarray
        Grid values (shape) or the observations the IF was evaluated at.
    values : np.ndarray
        IF values aligned with ``x``.
    nuisance : dict[str, float]
        Nuisance parameters used.
    labels : pd.Index | None
        Time labels (series mode only, when the input carried them).
    prewhitened : bool
        True when ``values`` are AR residuals.
    trace : tuple
        Engine states visited while producing the result.
    axes : Any
        Matplotlib Axes when the engine was asked to plot, else None.
    """

    estimator: Estimator
    mode: str
    x: np.ndarray
    values: np.ndarray
    nuisance: dict[str, float] = field(default_factory=dict)
    labels: pd.Index | None = None
    prewhitened: bool = False
    trace: tuple = ()
    axes: Any = field(default=None, repr=False, compare=False)

    def __len__(self) -> int:
        return len(self.values)

    def to_series(self) -> pd.Series:
        """IF values as a Series.

        Indexed by the grid in shape mode, by the labels in series mode
        (positions when the input had no labels).
        """
        if self.mode == "shape":
            index = pd.Index(self.x, name="x")
        else:
            index = self.labels
        return pd.Series(self.values, index=index, name=f"IF_{self.estimator.value}")

    def to_frame(self) -> pd.DataFrame:
        """Frame with columns ``x`` and ``IF``."""
        return pd.DataFrame({"x": self.x, "IF": self.values}, index=self.labels)


@dataclass
class IFConfig:
    """Per-call defaults for the engine.

    Parameters
    ----------
    k : float, default 4.0
        Default grid half-width in standard deviations.
    grid_points : int, default 1000
        Number of points in the default grid.
    tail_probability : float, default 0.05
        Tail probability for VaR/ES-family estimators.
    upper_tail_probability : float, default 0.1
        Upper tail probability for RachevRatio.
    const : float, default 0.0
        Constant threshold for partial moments.
    risk_free : float, default 0.0
        Risk-free rate per period.
    moment : int, default 1
        LPM order.
    ar_order : int, default 1
        AR order for prewhitening.
    clean_method : str, default "locScaleRob"
        Outlier cleaning method.
    family : str, default "mopt"
        Robust score function family.
    eff : float, default 0.99
        Normal efficiency for robust methods.
    tol : float, default 1e-9
        Relative tolerance for the M-estimator fixed point.
    max_iter : int, default 200
        Iteration cap for the M-estimator fixed point.
    default_sd : float, default 1.0
        Grid width fallback when no sd is available.
    """

    k: float = 4.0
    grid_points: int = 1000
    tail_probability: float = 0.05
    upper_tail_probability: float = 0.1
    const: float = 0.0
    risk_free: float = 0.0
    moment: int = 1
    ar_order: int = 1
    clean_method: str = "locScaleRob"
    family: str = "mopt"
    eff: float = 0.99
    tol: float = 1e-9
    max_iter: int = 200
    default_sd: float = 1.0

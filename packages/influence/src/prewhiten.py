"""Autoregressive prewhitening of IF time series.

Fits y_t = c + φ_1 y_{t-1} + ... + φ_p y_{t-p} + e_t by least squares
and replaces the series with the residuals e_t.

Length convention: the first ``order`` observations have no complete
lag vector, so the residual series has ``len(y) - order`` values,
aligned with y[order:].
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .errors import InputValidationError, InsufficientDataError, NonConvergenceError

logger = logging.getLogger(__name__)


@dataclass
class ARFit:
    """Result of an AR(p) fit with intercept.

    Attributes
    ----------
    order : int
        AR order p.
    intercept : float
        Fitted constant c.
    coefficients : np.ndarray
        φ_1..φ_p.
    residuals : np.ndarray
        e_t for t = p..n-1 (length n - p).
    """

    order: int
    intercept: float
    coefficients: np.ndarray
    residuals: np.ndarray

    @property
    def is_stationary(self) -> bool:
        """True when all roots of the AR polynomial lie outside the unit circle."""
        if self.order == 0:
            return True
        # Roots of z^p - φ_1 z^{p-1} - ... - φ_p are the inverse AR roots
        inverse_roots = np.roots(np.concatenate([[1.0], -self.coefficients]))
        return bool(np.all(np.abs(inverse_roots) < 1.0))


def _check_order(order: int) -> None:
    if isinstance(order, bool) or not isinstance(order, (int, np.integer)) or order < 1:
        raise InputValidationError(f"ar_order must be a positive integer, got {order!r}")


def fit_ar(values: np.ndarray, order: int = 1) -> ARFit:
    """
    Fit an AR(order) model with intercept by ordinary least squares.

    Parameters
    ----------
    values : np.ndarray
        Series to fit.
    order : int, default 1
        AR order.

    Returns
    -------
    ARFit
        Coefficients and residuals.

    Raises
    ------
    InputValidationError
        ``order`` is not a positive integer.
    InsufficientDataError
        Fewer than ``2 * order + 2`` observations.
    NonConvergenceError
        Rank-deficient design, non-finite coefficients, or a
        non-stationary fitted model.
    """
    _check_order(order)
    y = np.asarray(values, dtype=np.float64)
    n = len(y)
    n_eff = n - order
    if n_eff <= order + 1:
        raise InsufficientDataError(
            f"AR({order}) fit needs at least {2 * order + 2} observations, got {n}"
        )

    lags = [y[order - i:n - i] for i in range(1, order + 1)]
    design = np.column_stack([np.ones(n_eff)] + lags)
    target = y[order:]

    coeffs, _, rank, _ = np.linalg.lstsq(design, target, rcond=None)
    if rank < order + 1:
        raise NonConvergenceError(
            f"AR({order}) design matrix is rank deficient (rank {rank})", order=order
        )
    if not np.all(np.isfinite(coeffs)):
        raise NonConvergenceError(f"AR({order}) fit produced non-finite coefficients", order=order)

    fit = ARFit(
        order=order,
        intercept=float(coeffs[0]),
        coefficients=coeffs[1:],
        residuals=target - design @ coeffs,
    )
    if not fit.is_stationary:
        raise NonConvergenceError(
            f"fitted AR({order}) model is non-stationary",
            order=order,
            coefficients=np.round(fit.coefficients, 6).tolist(),
        )

    logger.debug(
        "AR(%d) fit: intercept=%.6g coefficients=%s", order, fit.intercept, fit.coefficients
    )
    return fit


def prewhiten(values: np.ndarray, order: int = 1) -> np.ndarray:
    """
    AR residuals of a series.

    Parameters
    ----------
    values : np.ndarray
        IF time series.
    order : int, default 1
        AR order.

    Returns
    -------
    np.ndarray
        Residuals, length ``len(values) - order``, aligned with
        ``values[order:]``.
    """
    return fit_ar(values, order).residuals

"""Error taxonomy for influence function computations.

Every failure aborts the call. Errors carry a ``context`` dict
(estimator, mode, missing key, ...) that is rendered into the message
so the caller can tell which estimator and mode failed.
"""
from __future__ import annotations

from typing import Any


class InfluenceFunctionError(Exception):
    """Base class for all influence function errors.

    Parameters
    ----------
    message : str
        Human-readable description.
    **context : Any
        Diagnostic fields, e.g. ``estimator="SR"``, ``mode="shape"``.
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class InputValidationError(InfluenceFunctionError, ValueError):
    """Bad argument type or range, or unknown estimator name."""


class InsufficientDataError(InfluenceFunctionError):
    """Neither a usable return series nor the required nuisance parameters."""


class MissingNuisanceParameterError(InfluenceFunctionError):
    """A formula was evaluated without one of its nuisance parameters."""


class DegenerateRatioError(InfluenceFunctionError, ZeroDivisionError):
    """Denominator of a ratio estimator is zero."""


class NonConvergenceError(InfluenceFunctionError, RuntimeError):
    """Robust M-estimator or AR fit did not converge."""

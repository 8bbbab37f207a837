"""Input validation for influence function requests.

Checks flag types, numeric ranges and required argument combinations
before the engine runs, and maps estimator names onto the closed
``Estimator`` enumeration.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping

import numpy as np
import pandas as pd

from .errors import InputValidationError
from .nuisance import NUISANCE_KEYS
from .robust import CLEAN_METHODS
from .types import Estimator, RobustFamily, Threshold, as_float_array

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a validation check."""

    is_valid: bool
    errors: list[str]
    warnings: list[str] = field(default_factory=list)


def resolve_estimator(name: Estimator | str) -> Estimator:
    """
    Map an estimator identifier onto ``Estimator``.

    Parameters
    ----------
    name : Estimator | str
        One of "Mean", "SD", "VaR", "ES", "SR", "SoR", "DSR", "ESratio",
        "VaRratio", "RachevRatio", "robMean", "LPM", "Omega", "SemiSD".

    Returns
    -------
    Estimator

    Raises
    ------
    InputValidationError
        Unknown estimator name.
    """
    if isinstance(name, Estimator):
        return name
    try:
        return Estimator(name)
    except ValueError:
        available = [e.value for e in Estimator]
        raise InputValidationError(
            f"The specified estimator is not available: {name!r}. Available: {available}"
        ) from None


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float, np.integer, np.floating))
        and not isinstance(value, bool)
        and math.isfinite(float(value))
    )


def _is_int(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def _check_open_unit(name: str, value: Any, errors: list[str]) -> None:
    if not _is_number(value) or not 0.0 < float(value) < 1.0:
        errors.append(f"{name} must be a number in (0, 1), got {value!r}")


def _check_enum(name: str, value: Any, enum_cls: type, errors: list[str]) -> None:
    allowed = [m.value for m in enum_cls]
    if value not in allowed and not isinstance(value, enum_cls):
        errors.append(f"{name} must be one of {allowed}, got {value!r}")


def _check_sequence(name: str, values: Any, errors: list[str]) -> None:
    if isinstance(values, pd.DataFrame) and values.shape[1] == 1:
        values = values.iloc[:, 0]
    try:
        data = as_float_array(values, name)
    except InputValidationError as exc:
        errors.append(exc.message)
        return
    if data.ndim != 1 or data.size == 0:
        errors.append(f"{name} must be a non-empty one-dimensional sequence")
    elif not np.all(np.isfinite(data)):
        errors.append(f"{name} contain NaN or infinite values")


def check_inputs(
    *,
    estimator: Any = None,
    returns: Any = None,
    eval_shape: Any = False,
    ret_vals: Any = None,
    nuisance_pars: Mapping[str, Any] | None = None,
    k: Any = 4.0,
    grid_points: Any = 1000,
    tail_probability: Any = 0.05,
    upper_tail_probability: Any = 0.1,
    threshold: Any = None,
    const: Any = 0.0,
    risk_free: Any = 0.0,
    moment: Any = 1,
    prewhiten: Any = False,
    ar_order: Any = 1,
    clean_outliers: Any = False,
    clean_method: Any = "locScaleRob",
    family: Any = "mopt",
    eff: Any = 0.99,
    plot: Any = False,
    return_result: Any = True,
) -> ValidationResult:
    """
    Validate the configuration of one influence function request.

    Returns
    -------
    ValidationResult
        ``errors`` lists every problem found; ``warnings`` lists
        combinations that are legal but have no effect.
    """
    errors: list[str] = []
    warnings: list[str] = []

    flags = {
        "eval_shape": eval_shape,
        "prewhiten": prewhiten,
        "clean_outliers": clean_outliers,
        "plot": plot,
        "return_result": return_result,
    }
    for name, value in flags.items():
        if not isinstance(value, (bool, np.bool_)):
            errors.append(f"{name} must be a boolean, got {value!r}")

    _check_open_unit("tail_probability", tail_probability, errors)
    _check_open_unit("upper_tail_probability", upper_tail_probability, errors)
    _check_open_unit("eff", eff, errors)

    if not _is_number(k) or float(k) <= 0:
        errors.append(f"k must be a positive number, got {k!r}")
    if not _is_int(grid_points) or grid_points < 2:
        errors.append(f"grid_points must be an integer >= 2, got {grid_points!r}")
    if not _is_int(ar_order) or ar_order < 1:
        errors.append(f"ar_order must be an integer >= 1, got {ar_order!r}")
    if not _is_int(moment) or moment < 1:
        errors.append(f"moment must be an integer >= 1, got {moment!r}")
    for name, value in (("const", const), ("risk_free", risk_free)):
        if not _is_number(value):
            errors.append(f"{name} must be a finite number, got {value!r}")

    if threshold is not None:
        _check_enum("threshold", threshold, Threshold, errors)
    _check_enum("family", family, RobustFamily, errors)
    if clean_method not in CLEAN_METHODS:
        errors.append(f"clean_method must be one of {list(CLEAN_METHODS)}, got {clean_method!r}")

    if nuisance_pars is not None:
        if not isinstance(nuisance_pars, Mapping):
            errors.append(f"nuisance_pars must be a mapping, got {type(nuisance_pars).__name__}")
        else:
            unknown = sorted(set(nuisance_pars) - set(NUISANCE_KEYS))
            if unknown:
                errors.append(f"Unknown nuisance parameters: {unknown}")
            bad = sorted(key for key, v in nuisance_pars.items() if not _is_number(v))
            if bad:
                errors.append(f"nuisance parameters must be finite numbers: {bad}")

    if returns is not None:
        _check_sequence("returns", returns, errors)
    if ret_vals is not None:
        _check_sequence("ret_vals", ret_vals, errors)

    if returns is None and not nuisance_pars:
        errors.append("Either returns or nuisance_pars must be provided")
    if returns is None and eval_shape is False:
        errors.append("returns are required when eval_shape is False")

    if estimator == Estimator.DSR and threshold == Threshold.CONST:
        warnings.append("DSR always uses the mean threshold; threshold='const' is ignored")
    if eval_shape is True and prewhiten is True:
        warnings.append("prewhiten has no effect when eval_shape is True")
    if eval_shape is False and ret_vals is not None:
        warnings.append("ret_vals has no effect when eval_shape is False")
    if plot is False and return_result is False:
        warnings.append("plot and return_result are both False; nothing is produced")

    return ValidationResult(is_valid=len(errors) == 0, errors=errors, warnings=warnings)


def validate_inputs(**kwargs: Any) -> None:
    """
    Validate a request and raise on the first failing check set.

    Accepts the keyword arguments of ``check_inputs``.

    Raises
    ------
    InputValidationError
        Listing every problem found.
    """
    result = check_inputs(**kwargs)
    for message in result.warnings:
        logger.warning("validate_inputs: %s", message)
    if not result.is_valid:
        raise InputValidationError("Invalid input: " + "; ".join(result.errors))

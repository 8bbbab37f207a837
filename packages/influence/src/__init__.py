"""FlowCode Influence Package - Influence functions of risk and performance estimators.

Computes the influence function (IF) of 14 estimators (Mean, SD, VaR,
ES, SR, SoR, DSR, ESratio, VaRratio, RachevRatio, robMean, LPM, Omega,
SemiSD), either as a shape over a grid of hypothetical returns or as a
transform of an observed return series.

Public API:
- influence_function, IFEngine, EngineState: Orchestration
- Estimator, EstimatorSpec, IFResult, IFConfig, ReturnSeries: Types
- FORMULAS, get_formula, quotient_rule: Estimator formulas
- estimate_nuisance, resolve_nuisance, normal_nuisance: Nuisance parameters
- robust_clean, robust_location_scale: Robust cleaning
- prewhiten, fit_ar: AR prewhitening
- plot_influence: Plotting
- config_from_yaml: YAML configuration
"""

from .config import config_from_yaml
from .engine import EngineState, IFEngine, influence_function
from .errors import (
    DegenerateRatioError,
    InfluenceFunctionError,
    InputValidationError,
    InsufficientDataError,
    MissingNuisanceParameterError,
    NonConvergenceError,
)
from .formulas import FORMULAS, get_formula, quotient_rule
from .nuisance import estimate_nuisance, normal_nuisance, resolve_nuisance
from .plotting import plot_influence
from .prewhiten import fit_ar, prewhiten
from .robust import robust_clean, robust_location_scale
from .types import Estimator, EstimatorSpec, IFConfig, IFResult, ReturnSeries

__all__ = [
    "influence_function",
    "IFEngine",
    "EngineState",
    "Estimator",
    "EstimatorSpec",
    "IFResult",
    "IFConfig",
    "ReturnSeries",
    "FORMULAS",
    "get_formula",
    "quotient_rule",
    "estimate_nuisance",
    "resolve_nuisance",
    "normal_nuisance",
    "robust_clean",
    "robust_location_scale",
    "prewhiten",
    "fit_ar",
    "plot_influence",
    "config_from_yaml",
    "InfluenceFunctionError",
    "InputValidationError",
    "InsufficientDataError",
    "MissingNuisanceParameterError",
    "DegenerateRatioError",
    "NonConvergenceError",
]

"""
Bayesian modelling components for shot-attempt rates.
"""

from shot_rates.model.errors import ShotRatesError, DataError, ConfigError, InferenceError
from shot_rates.model.data import (
    RawEvent,
    RawMatch,
    ResolvedObservation,
    ResolvedDataset,
    ResolverConfig,
    TeamCode,
    resolve,
    resolve_dataset,
    observations_to_data,
    dispersion_summary,
)
from shot_rates.model.spec import (
    ModelKind,
    ModelSpec,
    PooledPoissonPriors,
    RegressionPriors,
    NegativeBinomialPriors,
    pooled_poisson,
    poisson_regression,
    negative_binomial_regression,
    build_spec,
)
from shot_rates.model.engine import InferenceEngine, PyMCEngine
from shot_rates.model.inference import (
    PosteriorSample,
    ModelFitter,
    InferenceConfig,
    run,
    to_inference_data,
    from_inference_data,
)
from shot_rates.model.diagnostics import (
    DiagnosticReport,
    DICSummary,
    diagnose,
    summarize_posterior,
    compare_models,
)
from shot_rates.model.predictions import PosteriorPredictor, PredictiveSummary, predict

__all__ = [
    "ShotRatesError",
    "DataError",
    "ConfigError",
    "InferenceError",
    "RawEvent",
    "RawMatch",
    "ResolvedObservation",
    "ResolvedDataset",
    "ResolverConfig",
    "TeamCode",
    "resolve",
    "resolve_dataset",
    "observations_to_data",
    "dispersion_summary",
    "ModelKind",
    "ModelSpec",
    "PooledPoissonPriors",
    "RegressionPriors",
    "NegativeBinomialPriors",
    "pooled_poisson",
    "poisson_regression",
    "negative_binomial_regression",
    "build_spec",
    "InferenceEngine",
    "PyMCEngine",
    "PosteriorSample",
    "ModelFitter",
    "InferenceConfig",
    "run",
    "to_inference_data",
    "from_inference_data",
    "DiagnosticReport",
    "DICSummary",
    "diagnose",
    "summarize_posterior",
    "compare_models",
    "PosteriorPredictor",
    "PredictiveSummary",
    "predict",
]

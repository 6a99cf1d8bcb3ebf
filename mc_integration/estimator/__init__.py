from __future__ import annotations

import logging

from .domain import Domain, as_domain
from .monte_carlo import MonteCarloEstimator, estimate, validate_sample_size
from .numerics import (
    DEFAULT_CONFIDENCE_LEVEL,
    DEFAULT_ESTIMATOR_CONFIG,
    DEFAULT_SAMPLE_SIZES,
    DEFAULT_SWEEP_CONFIG,
    EstimatorConfig,
    SweepConfig,
)
from .results import ConvergenceResult, SampleRun
from .statistics import RunningMoments
from .sweep import ConvergenceSweep, sweep

__all__ = [
    "Domain",
    "as_domain",
    "MonteCarloEstimator",
    "estimate",
    "validate_sample_size",
    "EstimatorConfig",
    "SweepConfig",
    "DEFAULT_CONFIDENCE_LEVEL",
    "DEFAULT_ESTIMATOR_CONFIG",
    "DEFAULT_SAMPLE_SIZES",
    "DEFAULT_SWEEP_CONFIG",
    "ConvergenceResult",
    "SampleRun",
    "RunningMoments",
    "ConvergenceSweep",
    "sweep",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())

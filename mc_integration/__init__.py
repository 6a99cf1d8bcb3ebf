from __future__ import annotations

import logging

from .errors import (
    DegenerateInputError,
    DomainError,
    ErrorKind,
    EvaluationError,
    ParseError,
    SweepCancelled,
    UnsafeExpressionError,
)
from .estimator import (
    DEFAULT_SAMPLE_SIZES,
    ConvergenceResult,
    ConvergenceSweep,
    Domain,
    EstimatorConfig,
    MonteCarloEstimator,
    SampleRun,
    SweepConfig,
    estimate,
    sweep,
)
from .expression import CompiledExpression, as_integrand, compile_expression

__all__ = [
    "compile_expression",
    "as_integrand",
    "CompiledExpression",
    "estimate",
    "sweep",
    "MonteCarloEstimator",
    "ConvergenceSweep",
    "Domain",
    "SampleRun",
    "ConvergenceResult",
    "EstimatorConfig",
    "SweepConfig",
    "DEFAULT_SAMPLE_SIZES",
    "ErrorKind",
    "EvaluationError",
    "ParseError",
    "UnsafeExpressionError",
    "DomainError",
    "DegenerateInputError",
    "SweepCancelled",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())

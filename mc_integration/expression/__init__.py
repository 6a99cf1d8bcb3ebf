from __future__ import annotations

from .compiler import (
    CompiledExpression,
    ExpressionCompiler,
    Integrand,
    ScalarFunctionIntegrand,
    as_integrand,
    compile_expression,
)
from .functions import CONSTANTS, DEFAULT_VARIABLES, FUNCTIONS

__all__ = [
    "CompiledExpression",
    "ExpressionCompiler",
    "Integrand",
    "ScalarFunctionIntegrand",
    "as_integrand",
    "compile_expression",
    "CONSTANTS",
    "DEFAULT_VARIABLES",
    "FUNCTIONS",
]

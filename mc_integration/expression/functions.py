from __future__ import annotations

"""
Whitelisted names for the expression language:
  - elementary / transcendental functions with a fixed arity
  - named constants

Every function maps float arrays to float arrays (numpy ufuncs), so a compiled
expression evaluates a whole batch of sample points in one call.
"""

import math
from dataclasses import dataclass
from typing import Callable, Dict, Mapping

import numpy as np

__all__ = [
    "FunctionSpec",
    "FUNCTIONS",
    "CONSTANTS",
    "RESERVED_NAMES",
    "DEFAULT_VARIABLES",
]

DEFAULT_VARIABLES = ("x", "y")


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    func: Callable[..., np.ndarray]
    arity: int


def _spec_table(entries: Mapping[str, tuple]) -> Dict[str, FunctionSpec]:
    return {name: FunctionSpec(name=name, func=func, arity=arity) for name, (func, arity) in entries.items()}


FUNCTIONS: Dict[str, FunctionSpec] = _spec_table(
    {
        "sin": (np.sin, 1),
        "cos": (np.cos, 1),
        "tan": (np.tan, 1),
        "asin": (np.arcsin, 1),
        "acos": (np.arccos, 1),
        "atan": (np.arctan, 1),
        "arcsin": (np.arcsin, 1),
        "arccos": (np.arccos, 1),
        "arctan": (np.arctan, 1),
        "atan2": (np.arctan2, 2),
        "sinh": (np.sinh, 1),
        "cosh": (np.cosh, 1),
        "tanh": (np.tanh, 1),
        "asinh": (np.arcsinh, 1),
        "acosh": (np.arccosh, 1),
        "atanh": (np.arctanh, 1),
        "exp": (np.exp, 1),
        "expm1": (np.expm1, 1),
        "log": (np.log, 1),
        "ln": (np.log, 1),
        "log10": (np.log10, 1),
        "log2": (np.log2, 1),
        "log1p": (np.log1p, 1),
        "sqrt": (np.sqrt, 1),
        "cbrt": (np.cbrt, 1),
        "abs": (np.abs, 1),
        "floor": (np.floor, 1),
        "ceil": (np.ceil, 1),
        "sign": (np.sign, 1),
        "hypot": (np.hypot, 2),
        "pow": (np.power, 2),
        "min": (np.minimum, 2),
        "max": (np.maximum, 2),
    }
)

CONSTANTS: Dict[str, float] = {
    "pi": math.pi,
    "e": math.e,
    "tau": math.tau,
}

RESERVED_NAMES = frozenset(FUNCTIONS) | frozenset(CONSTANTS)

# mc_integration/expression/compiler.py
from __future__ import annotations

import ast
import builtins
import io
import tokenize
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import numpy as np

from mc_integration.errors import (
    DomainError,
    ErrorKind,
    EvaluationError,
    ParseError,
    UnsafeExpressionError,
)
from mc_integration.expression.functions import CONSTANTS, DEFAULT_VARIABLES, FUNCTIONS, RESERVED_NAMES


__all__ = [
    "Integrand",
    "ExpressionCompiler",
    "CompiledExpression",
    "ScalarFunctionIntegrand",
    "compile_expression",
    "as_integrand",
]


Integrand = Callable[[Any, Any], Any]
Program = Callable[[Tuple[np.ndarray, ...]], Any]


_BINARY_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: np.add,
    ast.Sub: np.subtract,
    ast.Mult: np.multiply,
    ast.Div: np.true_divide,
    ast.FloorDiv: np.floor_divide,
    ast.Mod: np.mod,
    ast.Pow: np.power,
}

_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: np.positive,
    ast.USub: np.negative,
}

_STRUCTURAL_NODES = (ast.Expression, ast.Constant, ast.Name, ast.Load, ast.BinOp, ast.UnaryOp, ast.Call)

_BUILTIN_NAMES = frozenset(dir(builtins))


def _caret_to_power(source: str) -> str:
    """
    Rewrite every '^' operator token as '**' so that 'x^2' binds like 'x**2'.

    Text that cannot be tokenized is returned unchanged; 'ast.parse' reports the error.
    """
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(source).readline))
    except (tokenize.TokenError, SyntaxError):
        return source

    carets = [tok.start for tok in tokens if tok.type == tokenize.OP and tok.string == "^"]
    if not carets:
        return source

    line_starts = [0]
    for line in io.StringIO(source).readlines():
        line_starts.append(line_starts[-1] + len(line))

    out = source
    for row, col in reversed(carets):
        offset = line_starts[row - 1] + col
        out = out[:offset] + "**" + out[offset + 1 :]
    return out


class ExpressionCompiler:
    """
    Restricted-grammar compiler from expression text to a vectorised numpy closure.

    Compilation runs in two passes over the syntax tree produced by 'ast.parse':
      1) a safety pass rejecting every construct outside the arithmetic grammar
         (attribute access, subscripts, lambdas, keyword arguments, dunder names, ...);
      2) a build pass resolving names against the variables and the whitelist,
         checking function arities, and producing nested closures.

    The text is never handed to 'eval' or 'exec'.
    """

    def __init__(self, variables: Sequence[str] = DEFAULT_VARIABLES) -> None:
        names = tuple(str(v) for v in variables)
        if len(names) != 2:
            raise ValueError(f"Exactly two variable names are required, got {len(names)}.")
        if names[0] == names[1]:
            raise ValueError(f"Variable names must be distinct, got {names!r}.")
        for name in names:
            if not name.isidentifier() or name.startswith("_"):
                raise ValueError(f"Invalid variable name: {name!r}.")
            if name in RESERVED_NAMES:
                raise ValueError(f"Variable name {name!r} clashes with a built-in function or constant.")

        self.variables: Tuple[str, ...] = names
        self._slots: Dict[str, int] = {name: i for i, name in enumerate(names)}

    def compile(self, text: str) -> "CompiledExpression":
        """
        Compile 'text' into a CompiledExpression.

        Raises:
            ParseError: if the text is empty, syntactically invalid, or references unknown names.
            UnsafeExpressionError: if the text uses constructs outside the arithmetic grammar.
        """
        source = self._normalize(text)
        tree = self._parse(_caret_to_power(source), source)
        self._check_safety(tree, source)
        try:
            program = self._build(tree.body, source)
        except RecursionError as exc:
            raise ParseError("Expression is nested too deeply.", expression=source) from exc
        return CompiledExpression(source=source, variables=self.variables, program=program)

    @staticmethod
    def _normalize(text: str) -> str:
        if not isinstance(text, str):
            raise ParseError(f"Expression must be a string, got {type(text).__name__}.")
        source = text.strip()
        if not source:
            raise ParseError("Expression is empty.", expression=text)
        return source

    @staticmethod
    def _parse(text: str, source: str) -> ast.Expression:
        try:
            return ast.parse(text, mode="eval")
        except SyntaxError as exc:
            detail = exc.msg if exc.msg else "invalid syntax"
            raise ParseError(f"Invalid syntax: {detail}.", expression=source) from exc
        except (ValueError, RecursionError, MemoryError) as exc:
            raise ParseError(f"Expression could not be parsed: {exc}.", expression=source) from exc

    def _check_safety(self, tree: ast.AST, source: str) -> None:
        for node in ast.walk(tree):
            if isinstance(node, (ast.operator, ast.unaryop)):
                if type(node) not in _BINARY_OPS and type(node) not in _UNARY_OPS:
                    self._unsafe(f"operator '{type(node).__name__}' is not allowed", source)
                continue

            if not isinstance(node, _STRUCTURAL_NODES):
                self._unsafe(f"'{type(node).__name__}' constructs are not allowed", source)

            if isinstance(node, ast.Constant):
                value = node.value
                if isinstance(value, bool) or not isinstance(value, (int, float, complex)):
                    self._unsafe(f"literal {value!r} is not a number", source)

            elif isinstance(node, ast.Name):
                self._check_name(node.id, source)

            elif isinstance(node, ast.Call):
                if not isinstance(node.func, ast.Name):
                    self._unsafe("only whitelisted functions may be called by name", source)
                if node.keywords:
                    self._unsafe("keyword arguments are not allowed", source)

    def _check_name(self, name: str, source: str) -> None:
        if name in self._slots or name in RESERVED_NAMES:
            return
        if name.startswith("__"):
            self._unsafe(f"name {name!r} is not allowed", source)
        if name in _BUILTIN_NAMES:
            self._unsafe(f"built-in {name!r} is not allowed", source)

    @staticmethod
    def _unsafe(message: str, source: str) -> None:
        raise UnsafeExpressionError(f"Unsafe expression: {message}.", expression=source)

    def _build(self, node: ast.AST, source: str) -> Program:
        if isinstance(node, ast.Constant):
            return self._build_constant(node.value, source)

        if isinstance(node, ast.Name):
            return self._build_name(node.id, source)

        if isinstance(node, ast.UnaryOp):
            op = _UNARY_OPS[type(node.op)]
            operand = self._build(node.operand, source)
            return lambda args: op(operand(args))

        if isinstance(node, ast.BinOp):
            op = _BINARY_OPS[type(node.op)]
            left = self._build(node.left, source)
            right = self._build(node.right, source)
            return lambda args: op(left(args), right(args))

        if isinstance(node, ast.Call):
            return self._build_call(node, source)

        raise UnsafeExpressionError(f"Unsafe expression: unexpected node '{type(node).__name__}'.", expression=source)

    @staticmethod
    def _build_constant(value: Any, source: str) -> Program:
        if isinstance(value, complex):
            raise ParseError(f"Complex literal {value!r} is not supported.", expression=source)
        try:
            constant = float(value)
        except OverflowError as exc:
            raise ParseError(f"Numeric literal is too large: {value}.", expression=source) from exc
        return lambda args: constant

    def _build_name(self, name: str, source: str) -> Program:
        if name in self._slots:
            slot = self._slots[name]
            return lambda args: args[slot]
        if name in CONSTANTS:
            constant = float(CONSTANTS[name])
            return lambda args: constant
        if name in FUNCTIONS:
            raise ParseError(f"Function {name!r} must be called with arguments.", expression=source)
        expected = ", ".join(self.variables)
        raise ParseError(f"Unknown name {name!r}; the free variables are {expected}.", expression=source)

    def _build_call(self, node: ast.Call, source: str) -> Program:
        name = node.func.id  # type: ignore[attr-defined]
        spec = FUNCTIONS.get(name)
        if spec is None:
            if name in self._slots or name in CONSTANTS:
                raise ParseError(f"{name!r} is not a function.", expression=source)
            raise ParseError(f"Unknown function {name!r}.", expression=source)

        if len(node.args) != spec.arity:
            raise ParseError(
                f"Function {name!r} takes {spec.arity} argument(s), got {len(node.args)}.",
                expression=source,
            )

        func = spec.func
        operands = [self._build(arg, source) for arg in node.args]
        if spec.arity == 1:
            (operand,) = operands
            return lambda args: func(operand(args))
        return lambda args: func(*(operand(args) for operand in operands))


class CompiledExpression:
    """
    Integrand compiled from expression text.

    Calling the object with scalars returns a float; calling it with arrays returns an
    array of the broadcast shape. Non-finite values raise DomainError. The estimator uses
    'evaluate', which returns the raw values and leaves the non-finite policy to the caller.
    """

    def __init__(self, *, source: str, variables: Tuple[str, ...], program: Program) -> None:
        self._source = source
        self._variables = tuple(variables)
        self._program = program

    @property
    def source(self) -> str:
        return self._source

    @property
    def variables(self) -> Tuple[str, ...]:
        return self._variables

    def evaluate(self, x: Any, y: Any) -> np.ndarray:
        xs, ys = np.broadcast_arrays(np.asarray(x, dtype=float), np.asarray(y, dtype=float))

        with np.errstate(all="ignore"):
            try:
                raw = self._program((xs, ys))
                values = np.asarray(raw, dtype=float)
            except EvaluationError:
                raise
            except Exception as exc:
                raise EvaluationError(
                    f"Evaluation failed: {type(exc).__name__}: {exc}",
                    kind=ErrorKind.RUNTIME_ERROR,
                    expression=self._source,
                ) from exc

        if values.shape != xs.shape:
            values = np.array(np.broadcast_to(values, xs.shape), dtype=float)
        return values

    def __call__(self, x: Any, y: Any) -> Union[float, np.ndarray]:
        values = self.evaluate(x, y)
        bad = ~np.isfinite(values)
        if np.any(bad):
            xs, ys = np.broadcast_arrays(np.asarray(x, dtype=float), np.asarray(y, dtype=float))
            idx = int(np.flatnonzero(bad.reshape(-1))[0])
            point = (float(xs.reshape(-1)[idx]), float(ys.reshape(-1)[idx]))
            raise DomainError(
                f"Expression is undefined (value {values.reshape(-1)[idx]}).",
                expression=self._source,
                point=point,
            )
        if values.ndim == 0:
            return float(values)
        return values

    def __getstate__(self) -> Dict[str, Any]:
        return {"source": self._source, "variables": self._variables}

    def __setstate__(self, state: Dict[str, Any]) -> None:
        compiled = ExpressionCompiler(variables=state["variables"]).compile(state["source"])
        self._source = compiled._source
        self._variables = compiled._variables
        self._program = compiled._program

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._source!r}, variables={self._variables!r})"


class ScalarFunctionIntegrand:
    """
    Adapter evaluating a scalar-only Python callable point by point over arrays.

    Arithmetic and math-domain failures are reported as DomainError at the offending point.
    """

    def __init__(self, func: Callable[[float, float], float]) -> None:
        if not callable(func):
            raise ValueError("func must be callable.")
        self.func = func

    def __call__(self, x: Any, y: Any) -> np.ndarray:
        xs, ys = np.broadcast_arrays(np.asarray(x, dtype=float), np.asarray(y, dtype=float))
        out = np.empty(xs.shape, dtype=float)
        flat_out = out.reshape(-1)
        for i, (xv, yv) in enumerate(zip(xs.reshape(-1), ys.reshape(-1))):
            flat_out[i] = self._evaluate_point(float(xv), float(yv))
        return out

    def _evaluate_point(self, x: float, y: float) -> float:
        try:
            return float(self.func(x, y))
        except ArithmeticError as exc:
            raise DomainError(f"{type(exc).__name__}: {exc}", point=(x, y)) from exc
        except ValueError as exc:
            if "domain" in str(exc):
                raise DomainError(f"{type(exc).__name__}: {exc}", point=(x, y)) from exc
            raise


def compile_expression(text: str, variables: Sequence[str] = DEFAULT_VARIABLES) -> CompiledExpression:
    """
    Compile expression text in two free variables into a reusable integrand.
    """
    return ExpressionCompiler(variables=variables).compile(text)


def as_integrand(
    func: Union[str, Integrand],
    *,
    vectorized: bool = True,
    variables: Optional[Sequence[str]] = None,
) -> Integrand:
    """
    Normalize expression text or a callable into an integrand accepting numpy arrays.

    Text is compiled once. A callable is used as-is when 'vectorized' is True; otherwise it
    is wrapped so it is evaluated one point at a time.
    """
    if isinstance(func, str):
        return compile_expression(func, variables=variables or DEFAULT_VARIABLES)
    if isinstance(func, (CompiledExpression, ScalarFunctionIntegrand)):
        return func
    if not callable(func):
        raise ValueError(f"Integrand must be expression text or a callable, got {type(func).__name__}.")
    if vectorized:
        return func
    return ScalarFunctionIntegrand(func)

# mc_integration/errors.py
from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple

__all__ = [
    "ErrorKind",
    "EvaluationError",
    "ParseError",
    "UnsafeExpressionError",
    "DomainError",
    "DegenerateInputError",
    "SweepCancelled",
]


class ErrorKind(str, Enum):
    PARSE_ERROR = "ParseError"
    UNSAFE_EXPRESSION = "UnsafeExpression"
    DOMAIN_ERROR = "DomainError"
    RUNTIME_ERROR = "RuntimeError"
    DEGENERATE_INPUT = "DegenerateInput"


class EvaluationError(ValueError):
    """
    Structured failure raised while compiling an expression or estimating an integral.

    Attributes:
        kind: Category of the failure (see ErrorKind).
        message: Human readable description without context.
        expression: Offending expression text, when known.
        at_sample_size: Sample size of the run that failed, when raised inside a sweep.
        point: The (x, y) coordinate that produced the failure, when known.
    """

    default_kind: ErrorKind = ErrorKind.RUNTIME_ERROR

    def __init__(
        self,
        message: str,
        *,
        kind: Optional[ErrorKind] = None,
        expression: Optional[str] = None,
        at_sample_size: Optional[int] = None,
        point: Optional[Tuple[float, float]] = None,
    ) -> None:
        self.kind = ErrorKind(kind) if kind is not None else self.default_kind
        self.message = str(message)
        self.expression = expression
        self.at_sample_size = None if at_sample_size is None else int(at_sample_size)
        self.point = None if point is None else (float(point[0]), float(point[1]))
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [f"{self.kind.value}: {self.message}"]
        if self.expression is not None:
            parts.append(f"expression={self.expression!r}")
        if self.at_sample_size is not None:
            parts.append(f"n_samples={self.at_sample_size:,}")
        if self.point is not None:
            parts.append(f"at (x={self.point[0]:.6g}, y={self.point[1]:.6g})")
        return " | ".join(parts)

    def __reduce__(self):
        return (
            _rebuild_error,
            (type(self), self.message, self.kind, self.expression, self.at_sample_size, self.point),
        )

    def with_context(
        self,
        *,
        expression: Optional[str] = None,
        at_sample_size: Optional[int] = None,
        point: Optional[Tuple[float, float]] = None,
    ) -> "EvaluationError":
        """
        Return a copy of this error with missing context filled in.

        Context already present on the error is never overwritten.
        """
        return type(self)(
            self.message,
            kind=self.kind,
            expression=self.expression if self.expression is not None else expression,
            at_sample_size=self.at_sample_size if self.at_sample_size is not None else at_sample_size,
            point=self.point if self.point is not None else point,
        )


def _rebuild_error(cls, message, kind, expression, at_sample_size, point) -> EvaluationError:
    return cls(message, kind=kind, expression=expression, at_sample_size=at_sample_size, point=point)


class ParseError(EvaluationError):
    default_kind = ErrorKind.PARSE_ERROR


class UnsafeExpressionError(EvaluationError):
    default_kind = ErrorKind.UNSAFE_EXPRESSION


class DomainError(EvaluationError):
    default_kind = ErrorKind.DOMAIN_ERROR


class DegenerateInputError(EvaluationError):
    default_kind = ErrorKind.DEGENERATE_INPUT


class SweepCancelled(RuntimeError):
    """Raised when a cooperative cancellation request stops a run or sweep."""

    def __init__(self, message: str = "Sweep cancelled.", *, at_sample_size: Optional[int] = None) -> None:
        self.at_sample_size = None if at_sample_size is None else int(at_sample_size)
        super().__init__(message)

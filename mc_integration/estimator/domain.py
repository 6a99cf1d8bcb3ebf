from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Sequence, Tuple, Union

from mc_integration.errors import DegenerateInputError

__all__ = ["Domain", "DomainLike", "as_domain"]


@dataclass(frozen=True)
class Domain:
    """
    Rectangular integration domain [x_min, x_max) x [y_min, y_max).

    Bounds must be finite and each extent strictly positive; anything else is rejected
    with DegenerateInputError at construction.
    """

    x_min: float
    x_max: float
    y_min: float
    y_max: float

    def __post_init__(self) -> None:
        for name in ("x_min", "x_max", "y_min", "y_max"):
            value = getattr(self, name)
            if isinstance(value, bool):
                raise DegenerateInputError(f"{name} must be a real number, got {value!r}.")
            try:
                number = float(value)
            except (TypeError, ValueError) as exc:
                raise DegenerateInputError(f"{name} must be a real number, got {value!r}.") from exc
            if not math.isfinite(number):
                raise DegenerateInputError(f"{name} must be finite, got {number}.")
            object.__setattr__(self, name, number)

        if not self.x_max > self.x_min:
            raise DegenerateInputError(f"x_max ({self.x_max}) must be greater than x_min ({self.x_min}).")
        if not self.y_max > self.y_min:
            raise DegenerateInputError(f"y_max ({self.y_max}) must be greater than y_min ({self.y_min}).")
        if not math.isfinite(self.area):
            raise DegenerateInputError("Domain area overflows to a non-finite value.")

    @classmethod
    def from_bounds(cls, x_bounds: Sequence[float], y_bounds: Sequence[float]) -> "Domain":
        (x_min, x_max), (y_min, y_max) = tuple(x_bounds), tuple(y_bounds)
        return cls(x_min=x_min, x_max=x_max, y_min=y_min, y_max=y_max)

    @property
    def x_extent(self) -> float:
        return self.x_max - self.x_min

    @property
    def y_extent(self) -> float:
        return self.y_max - self.y_min

    @property
    def area(self) -> float:
        return self.x_extent * self.y_extent

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x_min, self.x_max, self.y_min, self.y_max)


DomainLike = Union[Domain, Mapping[str, Any], Sequence[float]]


def as_domain(value: DomainLike) -> Domain:
    """
    Accept a Domain, a mapping with x_min/x_max/y_min/y_max keys, or a 4-tuple.
    """
    if isinstance(value, Domain):
        return value
    if isinstance(value, Mapping):
        missing = [k for k in ("x_min", "x_max", "y_min", "y_max") if k not in value]
        if missing:
            raise DegenerateInputError(f"Domain mapping is missing keys: {missing}.")
        return Domain(x_min=value["x_min"], x_max=value["x_max"], y_min=value["y_min"], y_max=value["y_max"])

    bounds = tuple(value)
    if len(bounds) != 4:
        raise DegenerateInputError(f"Domain needs 4 bounds (x_min, x_max, y_min, y_max), got {len(bounds)}.")
    return Domain(*bounds)

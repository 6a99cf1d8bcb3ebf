from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

__all__ = ["RunningMoments"]


@dataclass(frozen=True)
class RunningMoments:
    """
    Count, mean and sum of squared deviations (M2) of a stream of samples.

    Batches are reduced with numpy and merged with the pairwise update of
    Chan, Golub and LeVeque, which keeps the variance accurate over many batches.
    """

    count: int = 0
    mean: float = 0.0
    m2: float = 0.0

    @classmethod
    def from_values(cls, values: np.ndarray) -> "RunningMoments":
        arr = np.asarray(values, dtype=float).reshape(-1)
        if arr.size == 0:
            return cls()
        mean = float(np.mean(arr))
        m2 = float(np.sum((arr - mean) ** 2))
        return cls(count=int(arr.size), mean=mean, m2=m2)

    def merge(self, other: "RunningMoments") -> "RunningMoments":
        if other.count == 0:
            return self
        if self.count == 0:
            return other

        n = self.count + other.count
        delta = other.mean - self.mean
        mean = self.mean + delta * (other.count / n)
        m2 = self.m2 + other.m2 + delta * delta * (self.count * other.count / n)
        return RunningMoments(count=n, mean=float(mean), m2=float(m2))

    def sample_variance(self) -> float:
        """Bessel-corrected variance; NaN with fewer than two samples."""
        if self.count < 2:
            return float("nan")
        return max(self.m2, 0.0) / (self.count - 1)

    def sample_std(self) -> float:
        return math.sqrt(self.sample_variance())

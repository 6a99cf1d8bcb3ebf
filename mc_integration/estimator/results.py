# mc_integration/estimator/results.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence, Tuple, overload

import numpy as np
import pandas as pd
from scipy import stats

from .numerics import DEFAULT_CONFIDENCE_LEVEL

__all__ = ["SampleRun", "ConvergenceResult", "relative_error"]

RESULT_COLUMNS = ["n_samples", "estimate", "standard_error", "relative_error"]


def relative_error(standard_error: float, estimate: float) -> float:
    """
    standard_error / |estimate|, or NaN when the estimate is exactly zero.
    """
    if estimate == 0.0:
        return float("nan")
    return float(standard_error) / abs(float(estimate))


@dataclass(frozen=True)
class SampleRun:
    """
    Outcome of one Monte Carlo run.

    Attributes:
        n_samples: Number of points requested.
        estimate: area * mean of the sampled function values.
        standard_error: area * s / sqrt(n_used), s being the Bessel-corrected std.
        relative_error: standard_error / |estimate|; NaN when estimate == 0.
        n_excluded: Points dropped because the integrand was undefined there
                    (only non-zero under the "omit" policy).
    """

    n_samples: int
    estimate: float
    standard_error: float
    relative_error: float
    n_excluded: int = 0

    @property
    def n_used(self) -> int:
        return int(self.n_samples) - int(self.n_excluded)

    def absolute_error(self, exact_value: float) -> float:
        return abs(float(exact_value) - float(self.estimate))

    def confidence_interval(self, level: float = DEFAULT_CONFIDENCE_LEVEL) -> Tuple[float, float]:
        """
        Normal-approximation confidence interval estimate +/- z * standard_error.
        """
        level = float(level)
        if not 0.0 < level < 1.0:
            raise ValueError("level must lie strictly between 0 and 1.")
        z = float(stats.norm.ppf(0.5 + 0.5 * level))
        half_width = z * float(self.standard_error)
        return (float(self.estimate) - half_width, float(self.estimate) + half_width)


class ConvergenceResult(Sequence[SampleRun]):
    """
    Ordered, immutable collection of SampleRun, one per requested sample size,
    in the order the sizes were requested.
    """

    def __init__(self, runs: Sequence[SampleRun]) -> None:
        self._runs: Tuple[SampleRun, ...] = tuple(runs)

    @overload
    def __getitem__(self, index: int) -> SampleRun: ...

    @overload
    def __getitem__(self, index: slice) -> "ConvergenceResult": ...

    def __getitem__(self, index):
        if isinstance(index, slice):
            return ConvergenceResult(self._runs[index])
        return self._runs[index]

    def __len__(self) -> int:
        return len(self._runs)

    def __iter__(self) -> Iterator[SampleRun]:
        return iter(self._runs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConvergenceResult):
            return NotImplemented
        return self._runs == other._runs

    def __hash__(self) -> int:
        return hash(self._runs)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({list(self._runs)!r})"

    @property
    def runs(self) -> Tuple[SampleRun, ...]:
        return self._runs

    @property
    def sample_sizes(self) -> np.ndarray:
        return np.asarray([r.n_samples for r in self._runs], dtype=int)

    @property
    def estimates(self) -> np.ndarray:
        return np.asarray([r.estimate for r in self._runs], dtype=float)

    @property
    def standard_errors(self) -> np.ndarray:
        return np.asarray([r.standard_error for r in self._runs], dtype=float)

    def to_frame(self, exact_value: Optional[float] = None) -> pd.DataFrame:
        """
        Tabulate the runs, one row per requested sample size.

        An 'absolute_error' column is appended when an exact value is supplied, and an
        'n_excluded' column when any run dropped points.
        """
        df = pd.DataFrame(
            [[r.n_samples, r.estimate, r.standard_error, r.relative_error] for r in self._runs],
            columns=RESULT_COLUMNS,
        )
        df["n_samples"] = df["n_samples"].astype("int64")

        if exact_value is not None:
            df["absolute_error"] = [r.absolute_error(exact_value) for r in self._runs]
        if any(r.n_excluded for r in self._runs):
            df["n_excluded"] = [int(r.n_excluded) for r in self._runs]
        return df

    def convergence_order(self) -> float:
        """
        Slope of log(standard_error) against log(n_used), fitted by least squares.

        A Monte Carlo estimator converges like n^(-1/2), so the slope should be close to -0.5.
        Runs with a zero or non-finite standard error carry no information and are skipped.

        Raises:
            ValueError: if fewer than two distinct sample sizes have a usable standard error.
        """
        n = np.asarray([r.n_used for r in self._runs], dtype=float)
        se = self.standard_errors

        mask = np.isfinite(se) & (se > 0.0) & (n > 0.0)
        if np.unique(n[mask]).size < 2:
            raise ValueError("At least two distinct sample sizes with a positive standard error are required.")

        fit = stats.linregress(np.log(n[mask]), np.log(se[mask]))
        slope = float(fit.slope)
        if not math.isfinite(slope):
            raise ValueError("Convergence order fit returned a non-finite slope.")
        return slope

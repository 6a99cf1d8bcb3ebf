# mc_integration/estimator/monte_carlo.py
from __future__ import annotations

import logging
import math
import operator
from typing import Any, Callable, Optional, Union

import numpy as np

from mc_integration.errors import (
    DegenerateInputError,
    DomainError,
    ErrorKind,
    EvaluationError,
    SweepCancelled,
)
from mc_integration.expression.compiler import CompiledExpression, Integrand, as_integrand
from .domain import Domain, DomainLike, as_domain
from .numerics import DEFAULT_ESTIMATOR_CONFIG, EstimatorConfig
from .results import SampleRun, relative_error
from .statistics import RunningMoments

__all__ = ["MonteCarloEstimator", "estimate", "validate_sample_size"]


SeedLike = Union[None, int, np.random.SeedSequence]


def validate_sample_size(n_samples: Any, *, max_samples: int = DEFAULT_ESTIMATOR_CONFIG.max_samples) -> int:
    """
    Return 'n_samples' as an int, checking 2 <= n_samples <= max_samples.

    Raises:
        DegenerateInputError: for non-integers, booleans, and out-of-range counts.
    """
    if isinstance(n_samples, bool):
        raise DegenerateInputError(f"Sample size must be an integer, got {n_samples!r}.")
    try:
        n = operator.index(n_samples)
    except TypeError as exc:
        raise DegenerateInputError(f"Sample size must be an integer, got {n_samples!r}.") from exc

    if n < 2:
        raise DegenerateInputError(
            f"Sample size must be at least 2 to estimate a standard error, got {n}.",
            at_sample_size=n,
        )
    if n > int(max_samples):
        raise DegenerateInputError(
            f"Sample size {n:,} exceeds the configured maximum of {int(max_samples):,}.",
            at_sample_size=n,
        )
    return int(n)


class MonteCarloEstimator:
    """
    Plain Monte Carlo estimator of a double integral over a rectangle.

    For n uniform points (x_i, y_i) in the domain and values f_i = f(x_i, y_i):
        estimate       = area * mean(f_i)
        standard_error = area * std(f_i, ddof=1) / sqrt(n)
        relative_error = standard_error / |estimate|   (NaN if estimate == 0)

    Points are processed in batches of config.batch_size. The estimator holds no state
    between runs; all randomness comes from the generator passed to 'run'.
    """

    def __init__(self, config: Optional[EstimatorConfig] = None, logger: Optional[logging.Logger] = None) -> None:
        self.config: EstimatorConfig = config or DEFAULT_ESTIMATOR_CONFIG
        self.logger = logger or logging.getLogger(self.__class__.__name__)

    def run(
        self,
        integrand: Union[str, Integrand],
        domain: DomainLike,
        n_samples: int,
        *,
        rng: Optional[np.random.Generator] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        vectorized: bool = True,
    ) -> SampleRun:
        """
        Estimate the integral of 'integrand' over 'domain' with 'n_samples' random points.

        A callable integrand receives whole batches as arrays; pass vectorized=False for a
        callable that only accepts two floats.

        Raises:
            DegenerateInputError: invalid sample size or domain.
            DomainError: the integrand is undefined at a sampled point ("raise" policy), or
                         fewer than two usable points remain ("omit" policy).
            EvaluationError: the integrand failed for another reason (kind RUNTIME_ERROR).
            SweepCancelled: 'should_stop' returned True between batches.
        """
        n = validate_sample_size(n_samples, max_samples=self.config.max_samples)
        dom = as_domain(domain)
        f = as_integrand(integrand, vectorized=vectorized)
        generator = rng if rng is not None else np.random.default_rng()

        batch_size = int(self.config.batch_size)
        omit = self.config.nonfinite_policy == "omit"

        moments = RunningMoments()
        excluded = 0

        for start in range(0, n, batch_size):
            if should_stop is not None and should_stop():
                raise SweepCancelled(f"Run cancelled after {start:,} of {n:,} samples.", at_sample_size=n)

            size = min(batch_size, n - start)
            xs = generator.uniform(dom.x_min, dom.x_max, size)
            ys = generator.uniform(dom.y_min, dom.y_max, size)
            values = self._evaluate_batch(f, xs, ys, n_samples=n)

            finite = np.isfinite(values)
            if not bool(np.all(finite)):
                if not omit:
                    idx = int(np.flatnonzero(~finite)[0])
                    raise DomainError(
                        f"Integrand is undefined at a sampled point (value {values[idx]}).",
                        expression=_source_of(f),
                        at_sample_size=n,
                        point=(float(xs[idx]), float(ys[idx])),
                    )
                excluded += int(size - np.count_nonzero(finite))
                values = values[finite]

            moments = moments.merge(RunningMoments.from_values(values))

        if moments.count < 2:
            raise DomainError(
                f"Only {moments.count} of {n:,} sampled points gave a finite value.",
                expression=_source_of(f),
                at_sample_size=n,
            )
        if excluded:
            self.logger.warning(
                "Excluded %d of %d samples where the integrand is undefined (n_samples=%d).", excluded, n, n
            )

        return self._summarize(moments=moments, domain=dom, n_samples=n, n_excluded=excluded, integrand=f)

    def _evaluate_batch(self, f: Integrand, xs: np.ndarray, ys: np.ndarray, *, n_samples: int) -> np.ndarray:
        """
        Evaluate the integrand on one batch, returning raw float values (non-finite preserved).
        """
        try:
            with np.errstate(all="ignore"):
                if isinstance(f, CompiledExpression):
                    raw = f.evaluate(xs, ys)
                else:
                    raw = f(xs, ys)
                values = np.asarray(raw, dtype=float)
                if values.shape != xs.shape:
                    values = np.array(np.broadcast_to(values, xs.shape), dtype=float)
        except EvaluationError as exc:
            raise exc.with_context(expression=_source_of(f), at_sample_size=n_samples) from exc
        except ArithmeticError as exc:
            raise DomainError(
                f"{type(exc).__name__}: {exc}",
                expression=_source_of(f),
                at_sample_size=n_samples,
            ) from exc
        except Exception as exc:
            raise EvaluationError(
                f"Integrand evaluation failed: {type(exc).__name__}: {exc}",
                kind=ErrorKind.RUNTIME_ERROR,
                expression=_source_of(f),
                at_sample_size=n_samples,
            ) from exc
        return values.reshape(-1)

    @staticmethod
    def _summarize(
        *,
        moments: RunningMoments,
        domain: Domain,
        n_samples: int,
        n_excluded: int,
        integrand: Integrand,
    ) -> SampleRun:
        area = float(domain.area)

        est = area * float(moments.mean)
        std = moments.sample_std()
        se = area * std / math.sqrt(moments.count)

        if not (math.isfinite(est) and math.isfinite(se)):
            raise DomainError(
                "Sample statistics overflowed to a non-finite value.",
                expression=_source_of(integrand),
                at_sample_size=n_samples,
            )

        return SampleRun(
            n_samples=int(n_samples),
            estimate=float(est),
            standard_error=float(se),
            relative_error=relative_error(se, est),
            n_excluded=int(n_excluded),
        )


def _source_of(f: Any) -> Optional[str]:
    return getattr(f, "source", None)


def estimate(
    integrand: Union[str, Integrand],
    domain: DomainLike,
    n_samples: int,
    *,
    seed: SeedLike = None,
    rng: Optional[np.random.Generator] = None,
    config: Optional[EstimatorConfig] = None,
    should_stop: Optional[Callable[[], bool]] = None,
    vectorized: bool = True,
) -> SampleRun:
    """
    One Monte Carlo estimate. Pass 'seed' (or a ready 'rng') for reproducible results.
    """
    if rng is not None and seed is not None:
        raise ValueError("Pass either seed or rng, not both.")
    generator = rng if rng is not None else np.random.default_rng(seed)
    return MonteCarloEstimator(config=config).run(
        integrand,
        domain,
        n_samples,
        rng=generator,
        should_stop=should_stop,
        vectorized=vectorized,
    )

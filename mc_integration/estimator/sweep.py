# mc_integration/estimator/sweep.py
from __future__ import annotations

import logging
import sys
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np

from mc_integration.errors import DegenerateInputError, EvaluationError, SweepCancelled
from mc_integration.expression.compiler import Integrand, as_integrand
from .domain import Domain, DomainLike, as_domain
from .monte_carlo import MonteCarloEstimator, SeedLike, validate_sample_size
from .numerics import (
    DEFAULT_ESTIMATOR_CONFIG,
    DEFAULT_SAMPLE_SIZES,
    DEFAULT_SWEEP_CONFIG,
    EstimatorConfig,
    SweepConfig,
)
from .results import ConvergenceResult, SampleRun

__all__ = ["ConvergenceSweep", "SampleSizeWorker", "sweep"]


StopCheck = Callable[[], bool]
StopSignal = Union[StopCheck, threading.Event]


class SampleSizeWorker:
    """
    Picklable worker running one estimator call for one (sample size, seed) pair.
    """

    def __init__(
        self,
        *,
        integrand: Integrand,
        domain: Domain,
        estimator_config: EstimatorConfig,
        should_stop: Optional[StopCheck] = None,
    ) -> None:
        self.integrand = integrand
        self.domain = domain
        self.estimator_config = estimator_config
        self.should_stop = should_stop

        self._estimator: Optional[MonteCarloEstimator] = None

    def __getstate__(self) -> Dict[str, Any]:
        state = dict(self.__dict__)
        state["_estimator"] = None
        state["should_stop"] = None
        return state

    def _get_estimator(self) -> MonteCarloEstimator:
        if self._estimator is None:
            self._estimator = MonteCarloEstimator(config=self.estimator_config)
        return self._estimator

    def __call__(self, n_samples: int, seed: np.random.SeedSequence) -> SampleRun:
        return self._get_estimator().run(
            self.integrand,
            self.domain,
            n_samples,
            rng=np.random.default_rng(seed),
            should_stop=self.should_stop,
        )


class ConvergenceSweep:
    """
    Run the Monte Carlo estimator once per requested sample size.

    Workflow:
      1) Compile the integrand (once) and validate domain and sample sizes up front.
      2) Derive one independent random stream per entry from a single seed.
      3) Run each entry, serially or on a thread/process pool.
      4) Return the runs in request order, or raise the first failure in request order.

    The same seed yields the same ConvergenceResult in serial and parallel mode.
    """

    def __init__(
        self,
        estimator_config: Optional[EstimatorConfig] = None,
        config: Optional[SweepConfig] = None,
    ) -> None:
        self.estimator_config: EstimatorConfig = estimator_config or DEFAULT_ESTIMATOR_CONFIG
        self.config: SweepConfig = config or DEFAULT_SWEEP_CONFIG

        self.logger = logging.getLogger(self.__class__.__name__)
        self._configure_logger()

    def _configure_logger(self) -> None:
        """
        Attach a StreamHandler to stdout when verbose output is requested and no handler is configured.
        """
        if int(self.config.verbose) <= 0 or self.logger.handlers:
            return

        handler = logging.StreamHandler(stream=sys.stdout)
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        handler.setFormatter(formatter)
        self.logger.addHandler(handler)
        self.logger.propagate = False
        self.logger.setLevel(logging.INFO)

    def _log(self, message: str, *, min_verbose: int = 1) -> None:
        if int(self.config.verbose) >= int(min_verbose):
            self.logger.info(message)

    def run(
        self,
        integrand: Union[str, Integrand],
        domain: DomainLike,
        sample_sizes: Iterable[int] = DEFAULT_SAMPLE_SIZES,
        *,
        seed: SeedLike = None,
        should_stop: Optional[StopSignal] = None,
        vectorized: bool = True,
    ) -> ConvergenceResult:
        """
        Estimate the integral for every entry of 'sample_sizes'.

        'should_stop' may be a zero-argument callable or a threading.Event; it is checked
        before each entry (and between batches when running in-process).
        Pass vectorized=False for a callable that only accepts two floats.

        Raises:
            ParseError / UnsafeExpressionError: 'integrand' is invalid expression text.
            DegenerateInputError: invalid domain or sample size list.
            DomainError / EvaluationError: the first failing entry, with 'at_sample_size' set.
            SweepCancelled: cancellation was requested.
        """
        f = as_integrand(integrand, vectorized=vectorized)
        dom = as_domain(domain)
        sizes = self._validate_sample_sizes(sample_sizes)
        stop = _as_stop_check(should_stop)
        seeds = _spawn_seeds(seed, len(sizes))

        self._log(
            f"Sweep started | integrand={getattr(f, 'source', f)!r} | area={dom.area} | sample_sizes={sizes}"
        )

        if bool(self.config.use_parallel) and len(sizes) > 1:
            runs = self._run_parallel(f=f, domain=dom, sizes=sizes, seeds=seeds, stop=stop)
        else:
            runs = self._run_serial(f=f, domain=dom, sizes=sizes, seeds=seeds, stop=stop)

        self._log(f"Sweep completed | runs={len(runs)}")
        return ConvergenceResult(runs)

    def _validate_sample_sizes(self, sample_sizes: Iterable[int]) -> List[int]:
        if isinstance(sample_sizes, (str, bytes)):
            raise DegenerateInputError("sample_sizes must be a sequence of integers.")
        try:
            raw = list(sample_sizes)
        except TypeError as exc:
            raise DegenerateInputError("sample_sizes must be a sequence of integers.") from exc
        if not raw:
            raise DegenerateInputError("sample_sizes must not be empty.")
        return [validate_sample_size(n, max_samples=self.estimator_config.max_samples) for n in raw]

    def _build_worker(self, *, f: Integrand, domain: Domain, stop: Optional[StopCheck]) -> SampleSizeWorker:
        return SampleSizeWorker(
            integrand=f,
            domain=domain,
            estimator_config=self.estimator_config,
            should_stop=stop,
        )

    def _run_serial(
        self,
        *,
        f: Integrand,
        domain: Domain,
        sizes: Sequence[int],
        seeds: Sequence[np.random.SeedSequence],
        stop: Optional[StopCheck],
    ) -> List[SampleRun]:
        worker = self._build_worker(f=f, domain=domain, stop=stop)
        runs: List[SampleRun] = []
        for n, ss in zip(sizes, seeds):
            _checkpoint(stop, n)
            runs.append(self._record(_with_sample_size(worker, n, ss)))
        return runs

    def _run_parallel(
        self,
        *,
        f: Integrand,
        domain: Domain,
        sizes: Sequence[int],
        seeds: Sequence[np.random.SeedSequence],
        stop: Optional[StopCheck],
    ) -> List[SampleRun]:
        kind = str(self.config.executor_kind).lower()
        try:
            if kind == "thread":
                worker = self._build_worker(f=f, domain=domain, stop=stop)
                return self._collect(self.config.thread_executor_factory, worker, sizes, seeds, stop)
            if kind == "process":
                worker = self._build_worker(f=f, domain=domain, stop=None)
                return self._collect(self.config.executor_factory, worker, sizes, seeds, stop)
            raise ValueError(f"Invalid executor_kind: {self.config.executor_kind}")
        except (EvaluationError, SweepCancelled):
            raise
        except Exception as exc:
            self.logger.warning("Parallel sweep failed (%s). Falling back to serial.", exc)
            return self._run_serial(f=f, domain=domain, sizes=sizes, seeds=seeds, stop=stop)

    def _collect(
        self,
        factory: Callable[..., Any],
        worker: SampleSizeWorker,
        sizes: Sequence[int],
        seeds: Sequence[np.random.SeedSequence],
        stop: Optional[StopCheck],
    ) -> List[SampleRun]:
        runs: List[SampleRun] = []
        with factory(max_workers=self.config.max_workers) as ex:
            futures = [ex.submit(worker, n, ss) for n, ss in zip(sizes, seeds)]
            try:
                for n, fut in zip(sizes, futures):
                    _checkpoint(stop, n)
                    try:
                        run = fut.result()
                    except EvaluationError as exc:
                        raise exc.with_context(at_sample_size=n) from exc
                    runs.append(self._record(run))
            except BaseException:
                for fut in futures:
                    fut.cancel()
                raise
        return runs

    def _record(self, run: SampleRun) -> SampleRun:
        self._log(
            f"n_samples={run.n_samples:,} | estimate={run.estimate:.6g} | "
            f"standard_error={run.standard_error:.3g} | relative_error={run.relative_error:.3g}"
        )
        return run


def _with_sample_size(worker: SampleSizeWorker, n: int, seed: np.random.SeedSequence) -> SampleRun:
    try:
        return worker(n, seed)
    except EvaluationError as exc:
        raise exc.with_context(at_sample_size=n) from exc


def _checkpoint(stop: Optional[StopCheck], n: int) -> None:
    if stop is not None and stop():
        raise SweepCancelled(f"Sweep cancelled before n_samples={n:,}.", at_sample_size=n)


def _as_stop_check(should_stop: Optional[StopSignal]) -> Optional[StopCheck]:
    if should_stop is None:
        return None
    is_set = getattr(should_stop, "is_set", None)
    if callable(is_set):
        return is_set
    if callable(should_stop):
        return should_stop
    raise ValueError("should_stop must be a callable or an object with an is_set() method.")


def _spawn_seeds(seed: SeedLike, count: int) -> List[np.random.SeedSequence]:
    root = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    return list(root.spawn(int(count)))


def sweep(
    integrand: Union[str, Integrand],
    domain: DomainLike,
    sample_sizes: Iterable[int] = DEFAULT_SAMPLE_SIZES,
    *,
    seed: SeedLike = None,
    config: Optional[SweepConfig] = None,
    estimator_config: Optional[EstimatorConfig] = None,
    should_stop: Optional[StopSignal] = None,
    vectorized: bool = True,
) -> ConvergenceResult:
    """
    Convergence sweep: one SampleRun per sample size, in the order requested.
    """
    return ConvergenceSweep(estimator_config=estimator_config, config=config).run(
        integrand,
        domain,
        sample_sizes,
        seed=seed,
        should_stop=should_stop,
        vectorized=vectorized,
    )

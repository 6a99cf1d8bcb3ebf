from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

NONFINITE_POLICIES = ("raise", "omit")
EXECUTOR_KINDS = ("thread", "process")

DEFAULT_SAMPLE_SIZES: Tuple[int, ...] = (1_000, 10_000, 100_000, 1_000_000)
DEFAULT_CONFIDENCE_LEVEL = 0.95


@dataclass(frozen=True)
class EstimatorConfig:
    """
    Numerical settings for a single Monte Carlo run.

    Points are drawn and evaluated in batches of 'batch_size' so memory stays bounded
    for large sample counts. 'max_samples' caps a single run. 'nonfinite_policy' decides
    what happens when the integrand is undefined at a sampled point:
      - "raise": abort the run with DomainError at the first such point;
      - "omit": drop the point, count it in SampleRun.n_excluded and continue.
    """

    batch_size: int = 100_000
    max_samples: int = 10_000_000
    nonfinite_policy: str = "raise"

    def __post_init__(self) -> None:
        if int(self.batch_size) < 1:
            raise ValueError("batch_size must be >= 1.")
        if int(self.max_samples) < 2:
            raise ValueError("max_samples must be >= 2.")
        if self.nonfinite_policy not in NONFINITE_POLICIES:
            raise ValueError(f"nonfinite_policy must be one of: {', '.join(NONFINITE_POLICIES)}.")


@dataclass(frozen=True)
class SweepConfig:
    """
    Execution settings for a convergence sweep.

    Runs execute serially by default. With 'use_parallel' each sample size is submitted
    to a thread or process pool; results are still returned in request order.
    """

    use_parallel: bool = False
    executor_kind: str = "thread"  # "thread", "process"
    max_workers: Optional[int] = None

    executor_factory: Callable[..., ProcessPoolExecutor] = ProcessPoolExecutor
    thread_executor_factory: Callable[..., ThreadPoolExecutor] = ThreadPoolExecutor

    verbose: int = 0

    def __post_init__(self) -> None:
        if str(self.executor_kind).lower() not in EXECUTOR_KINDS:
            raise ValueError(f"executor_kind must be one of: {', '.join(EXECUTOR_KINDS)}.")
        if self.max_workers is not None and int(self.max_workers) < 1:
            raise ValueError("max_workers must be >= 1 when provided.")


DEFAULT_ESTIMATOR_CONFIG = EstimatorConfig()
DEFAULT_SWEEP_CONFIG = SweepConfig()

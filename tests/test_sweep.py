# tests/test_sweep.py
from __future__ import annotations

import logging
import math
import threading

import numpy as np
import pytest

from mc_integration import compile_expression
from mc_integration.errors import DegenerateInputError, DomainError, ParseError, SweepCancelled
from mc_integration.estimator import (
    DEFAULT_SAMPLE_SIZES,
    ConvergenceResult,
    ConvergenceSweep,
    Domain,
    EstimatorConfig,
    SweepConfig,
    sweep,
)


UNIT_SQUARE = Domain(0.0, 1.0, 0.0, 1.0)


class CountingIntegrand:
    """Vectorised x*y that records the batch sizes it was called with."""

    def __init__(self) -> None:
        self.calls = []

    def __call__(self, xs, ys):
        self.calls.append(int(np.size(xs)))
        return xs * ys


def test_constant_integrand_end_to_end():
    result = sweep("1", UNIT_SQUARE, [1_000, 10_000], seed=0)

    assert isinstance(result, ConvergenceResult)
    assert [r.n_samples for r in result] == [1_000, 10_000]
    for run in result:
        assert run.estimate == pytest.approx(1.0, rel=1e-12)
        assert run.standard_error == pytest.approx(0.0, abs=1e-12)


def test_linear_integrand_end_to_end():
    result = sweep("x + y", {"x_min": 0, "x_max": 1, "y_min": 0, "y_max": 1}, [100_000], seed=42)

    (run,) = result
    assert run.estimate == pytest.approx(1.0, abs=0.01)
    assert 0.0 < run.standard_error < 0.002


def test_request_order_is_preserved():
    sizes = [10_000, 1_000, 50_000, 1_000, 2]
    result = sweep("x * y", UNIT_SQUARE, sizes, seed=3)

    assert list(result.sample_sizes) == sizes
    assert len(result) == len(sizes)


def test_duplicate_sizes_use_independent_streams():
    result = sweep("x * y", UNIT_SQUARE, [1_000, 1_000], seed=3)

    assert result[0].estimate != result[1].estimate


def test_same_seed_gives_identical_results():
    first = sweep("sin(x) * cos(y)", UNIT_SQUARE, [1_000, 20_000], seed=17)
    second = sweep("sin(x) * cos(y)", UNIT_SQUARE, [1_000, 20_000], seed=17)

    assert first == second


def test_standard_error_shrinks_across_sweep():
    result = sweep("exp(x + y)", UNIT_SQUARE, [1_000, 10_000, 100_000, 1_000_000], seed=11)

    errors = result.standard_errors
    assert np.all(np.diff(errors) < 0.0)
    assert result.convergence_order() == pytest.approx(-0.5, abs=0.05)

    exact = (math.e - 1.0) ** 2
    assert result[-1].estimate == pytest.approx(exact, abs=5.0 * result[-1].standard_error)


def test_default_sample_sizes_are_used():
    result = sweep("1", UNIT_SQUARE, seed=1)

    assert tuple(result.sample_sizes) == DEFAULT_SAMPLE_SIZES


def test_expression_is_compiled_once_and_reused():
    expr = compile_expression("x * y")

    from_expr = sweep(expr, UNIT_SQUARE, [500, 700], seed=9)
    from_text = sweep("x * y", UNIT_SQUARE, [500, 700], seed=9)

    assert from_expr == from_text


def test_parse_error_propagates_before_sampling():
    with pytest.raises(ParseError):
        sweep("(x + y", UNIT_SQUARE, [1_000], seed=1)


def test_first_failure_aborts_sweep_with_sample_size():
    def fails_on_large_batches(xs, ys):
        if np.size(xs) > 5_000:
            return np.log(xs - 2.0)
        return xs + ys

    with pytest.raises(DomainError) as excinfo:
        sweep(fails_on_large_batches, UNIT_SQUARE, [1_000, 10_000, 2_000, 20_000], seed=1)

    assert excinfo.value.at_sample_size == 10_000


def test_domain_error_from_expression_reports_first_size():
    with pytest.raises(DomainError) as excinfo:
        sweep("log(x)", Domain(-1.0, 1.0, 0.0, 1.0), [300, 100], seed=1)

    assert excinfo.value.at_sample_size == 300
    assert excinfo.value.expression == "log(x)"


def test_omit_policy_flows_through_sweep():
    result = sweep(
        "sqrt(x)",
        Domain(-1.0, 1.0, 0.0, 1.0),
        [2_000, 4_000],
        seed=5,
        estimator_config=EstimatorConfig(nonfinite_policy="omit"),
    )

    assert all(run.n_excluded > 0 for run in result)
    assert "n_excluded" in result.to_frame().columns


@pytest.mark.parametrize("sizes", [[], [1_000, 1], [1_000, 2.5], "1000"])
def test_invalid_sample_sizes_are_rejected_before_any_run(sizes):
    integrand = CountingIntegrand()

    with pytest.raises(DegenerateInputError):
        sweep(integrand, UNIT_SQUARE, sizes, seed=1)

    assert integrand.calls == []


def test_sample_size_cap_comes_from_estimator_config():
    with pytest.raises(DegenerateInputError):
        sweep("x", UNIT_SQUARE, [10, 1_000], seed=1, estimator_config=EstimatorConfig(max_samples=500))


def test_degenerate_domain_is_rejected():
    with pytest.raises(DegenerateInputError):
        sweep("x", (1.0, 1.0, 0.0, 1.0), [100], seed=1)


def test_preset_event_cancels_sweep():
    event = threading.Event()
    event.set()
    integrand = CountingIntegrand()

    with pytest.raises(SweepCancelled):
        sweep(integrand, UNIT_SQUARE, [100, 200], seed=1, should_stop=event)

    assert integrand.calls == []


def test_cancellation_between_sample_sizes():
    integrand = CountingIntegrand()

    def stop_once_first_size_done():
        return len(integrand.calls) >= 1

    with pytest.raises(SweepCancelled) as excinfo:
        sweep(integrand, UNIT_SQUARE, [100, 200, 300], seed=1, should_stop=stop_once_first_size_done)

    assert integrand.calls == [100]
    assert excinfo.value.at_sample_size == 200


def test_invalid_stop_check_is_rejected():
    with pytest.raises(ValueError):
        sweep("x", UNIT_SQUARE, [100], seed=1, should_stop=42)


def test_thread_parallel_matches_serial():
    sizes = [1_000, 5_000, 2_000, 10_000]
    serial = sweep("x^2 * exp(-y)", UNIT_SQUARE, sizes, seed=21)
    parallel = sweep(
        "x^2 * exp(-y)",
        UNIT_SQUARE,
        sizes,
        seed=21,
        config=SweepConfig(use_parallel=True, executor_kind="thread", max_workers=2),
    )

    assert parallel == serial


def test_process_parallel_matches_serial():
    sizes = [1_000, 3_000, 2_000]
    serial = sweep("cos(x * y)", UNIT_SQUARE, sizes, seed=8)
    parallel = sweep(
        "cos(x * y)",
        UNIT_SQUARE,
        sizes,
        seed=8,
        config=SweepConfig(use_parallel=True, executor_kind="process", max_workers=2),
    )

    assert parallel == serial


def test_parallel_failure_reports_first_failing_size():
    def fails_on_large_batches(xs, ys):
        if np.size(xs) > 5_000:
            return np.log(xs - 2.0)
        return xs + ys

    with pytest.raises(DomainError) as excinfo:
        sweep(
            fails_on_large_batches,
            UNIT_SQUARE,
            [1_000, 10_000, 20_000],
            seed=1,
            config=SweepConfig(use_parallel=True, executor_kind="thread", max_workers=3),
        )

    assert excinfo.value.at_sample_size == 10_000


def test_unpicklable_integrand_falls_back_to_serial(caplog):
    sizes = [500, 1_000]
    serial = sweep(lambda xs, ys: xs + ys, UNIT_SQUARE, sizes, seed=2)

    with caplog.at_level(logging.WARNING):
        fallback = sweep(
            lambda xs, ys: xs + ys,
            UNIT_SQUARE,
            sizes,
            seed=2,
            config=SweepConfig(use_parallel=True, executor_kind="process", max_workers=1),
        )

    assert fallback == serial
    assert "Falling back to serial" in caplog.text


def test_sweep_object_is_reusable():
    runner = ConvergenceSweep(estimator_config=EstimatorConfig(batch_size=256))

    first = runner.run("x + y", UNIT_SQUARE, [1_000], seed=4)
    second = runner.run("x + y", UNIT_SQUARE, [1_000], seed=4)

    assert first == second


@pytest.mark.parametrize("kwargs", [{"executor_kind": "fiber"}, {"max_workers": 0}])
def test_invalid_sweep_config(kwargs):
    with pytest.raises(ValueError):
        SweepConfig(**kwargs)


def test_caret_expression_sweep_matches_exact_value():
    result = sweep("x^2 + y^2", UNIT_SQUARE, [100_000], seed=13)

    (run,) = result
    assert run.estimate == pytest.approx(2.0 / 3.0, abs=5.0 * run.standard_error)
    assert run.estimate == pytest.approx(2.0 / 3.0, abs=0.01)


def test_scalar_callable_sweep_with_vectorized_false():
    result = sweep(lambda x, y: math.sin(x) + y, UNIT_SQUARE, [1_000, 4_000], seed=7, vectorized=False)

    exact = (1.0 - math.cos(1.0)) + 0.5
    assert list(result.sample_sizes) == [1_000, 4_000]
    for run in result:
        assert run.estimate == pytest.approx(exact, abs=5.0 * run.standard_error)


def test_scalar_callable_sweep_matches_vectorized_equivalent():
    sizes = [500, 1_500]
    scalar = sweep(lambda x, y: math.exp(x) * y, UNIT_SQUARE, sizes, seed=19, vectorized=False)
    vector = sweep(lambda xs, ys: np.exp(xs) * ys, UNIT_SQUARE, sizes, seed=19)

    np.testing.assert_allclose(scalar.estimates, vector.estimates, rtol=1e-12)
    np.testing.assert_allclose(scalar.standard_errors, vector.standard_errors, rtol=1e-12)

"""
Run Controller — wires sink, executor, scheduler and evaluator together.

Lifecycle of :meth:`RunController.run`:

1. Register the built-in metrics plus every counter the scenario's
   steps report into (done in ``__init__`` so registration errors
   surface before anything else).
2. Parse and validate thresholds against the registered metrics.
3. Start the scheduler; every virtual user runs the scenario's steps in
   order, recording each :class:`~loadgen.executor.Outcome`.
4. Wait for the duration / iteration budget, drain in-flight requests.
   No request starts after the deadline, so the run ends within
   ``duration + request_timeout``.
5. Snapshot the sink, evaluate thresholds, return a :class:`RunReport`.

Built-in metrics:

===================  =======  =============================================
Name                 Type     Meaning
===================  =======  =============================================
http_reqs            counter  Requests issued
http_req_failed      rate     Requests outside ``200 <= status < 400``
http_req_duration    trend    Request latency in milliseconds
iterations           counter  Iterations that completed without raising
iteration_failures   counter  Iterations whose body raised
error_rate           rate     Requests the step classifies as errors
===================  =======  =============================================

Key Concepts Demonstrated:
- Setup errors raised eagerly, before any thread starts
- Three-state exit codes so CI can tell "thresholds breached" from
  "the run itself broke"
- Plain-text summary table for CI logs, JSON export for tooling
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Any

from loadgen.config import RunConfig
from loadgen.executor import RequestExecutor, classify
from loadgen.metrics import (
    CounterSnapshot,
    MetricSink,
    MetricSnapshot,
    RateSnapshot,
    TrendSnapshot,
)
from loadgen.scheduler import VirtualUserScheduler
from loadgen.steps import Scenario, get_scenario, scenario_from_config
from loadgen.thresholds import (
    EvaluationResult,
    ThresholdExpr,
    evaluate,
    parse_thresholds,
    validate_thresholds,
)

logger = logging.getLogger(__name__)

# Three-state exit codes so CI can tell "test failed" from "script crashed".
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2

HTTP_REQS = "http_reqs"
HTTP_REQ_FAILED = "http_req_failed"
HTTP_REQ_DURATION = "http_req_duration"
ITERATIONS = "iterations"
ITERATION_FAILURES = "iteration_failures"
ERROR_RATE = "error_rate"


@dataclass(frozen=True)
class RunReport:
    """Everything known about a finished run."""

    scenario: str
    base_url: str
    vus: int
    elapsed: float
    snapshot: dict[str, MetricSnapshot]
    evaluation: EvaluationResult

    @property
    def passed(self) -> bool:
        return self.evaluation.passed

    @property
    def exit_code(self) -> int:
        return EXIT_PASS if self.passed else EXIT_THRESHOLD_BREACH

    def to_dict(self) -> dict[str, Any]:
        """JSON-serialisable summary."""
        return {
            "scenario": self.scenario,
            "base_url": self.base_url,
            "vus": self.vus,
            "elapsed_seconds": round(self.elapsed, 3),
            "metrics": {name: snap.to_dict() for name, snap in self.snapshot.items()},
            "thresholds": [
                {
                    "metric": result.expr.metric,
                    "expression": str(result.expr),
                    "actual": result.actual,
                    "passed": result.passed,
                }
                for result in self.evaluation.results
            ],
            "passed": self.passed,
        }


def resolve_scenario(run_config: RunConfig) -> Scenario:
    """
    Pick the scenario a run config describes.

    Custom ``steps`` win over the named built-in scenario.  An explicit
    ``iteration_sleep`` overrides the scenario's own pause either way.
    """
    if run_config.steps:
        return scenario_from_config(
            "custom",
            run_config.steps,
            iteration_sleep=run_config.iteration_sleep or 0.0,
        )
    scenario = get_scenario(run_config.scenario)
    if run_config.iteration_sleep is not None:
        scenario = Scenario(
            name=scenario.name,
            steps=scenario.steps,
            iteration_sleep=run_config.iteration_sleep,
            description=scenario.description,
        )
    return scenario


class RunController:
    """
    Orchestrates a single load run.

    Args:
        run_config: Validated run settings.
        scenario: Steps to execute; resolved from *run_config* when omitted.
        executor: Request executor; defaults to one built with the run's
            request timeout.
        sink: Metric sink; a fresh one is created when omitted.
        seed: Seed for path-placeholder randomness (e.g. payment amounts).

    Raises:
        DuplicateMetricError: If *sink* already holds a built-in name.
        ThresholdParseError: If a threshold expression is malformed.
        UnknownMetricError: If a threshold names an unknown metric.
    """

    def __init__(
        self,
        run_config: RunConfig,
        scenario: Scenario | None = None,
        *,
        executor: RequestExecutor | None = None,
        sink: MetricSink | None = None,
        seed: int | None = None,
    ):
        self.run_config = run_config
        self.scenario = scenario or resolve_scenario(run_config)
        self.executor = executor or RequestExecutor(timeout=run_config.request_timeout)
        self.sink = sink if sink is not None else MetricSink()
        self._seed = seed
        self._rngs = threading.local()
        self._scheduler: VirtualUserScheduler | None = None

        self._http_reqs = self.sink.register_counter(HTTP_REQS)
        self._http_req_failed = self.sink.register_rate(HTTP_REQ_FAILED)
        self._http_req_duration = self.sink.register_trend(HTTP_REQ_DURATION)
        self._iterations = self.sink.register_counter(ITERATIONS)
        self._iteration_failures = self.sink.register_counter(ITERATION_FAILURES)
        self._error_rate = self.sink.register_rate(ERROR_RATE)
        self._step_counters = {
            name: self.sink.register_counter(name) for name in self.scenario.counter_names()
        }

        self.thresholds: list[ThresholdExpr] = parse_thresholds(run_config.thresholds)
        validate_thresholds(self.thresholds, self.sink)

    def _rng(self, vu_id: int) -> random.Random:
        rng = getattr(self._rngs, "rng", None)
        if rng is None:
            seed = None if self._seed is None else self._seed * 1_000_003 + vu_id
            rng = random.Random(seed)
            self._rngs.rng = rng
        return rng

    def run_iteration(self, vu_id: int, iteration_number: int) -> None:
        """
        Execute every scenario step once, in order, recording outcomes.

        Once the run is stopped or past its deadline no further step is
        started; the cut-short iteration is not counted in ``iterations``.
        """
        rng = self._rng(vu_id)
        for index, step in enumerate(self.scenario.steps):
            if index and self._scheduler is not None and not self._scheduler.should_continue():
                logger.debug("VU %d iteration %d interrupted before %s", vu_id, iteration_number, step.name)
                return
            outcome = self.executor.execute(step, self.run_config.base_url, rng=rng)

            self._http_reqs.add(1)
            self._http_req_duration.add(outcome.latency_ms)
            self._http_req_failed.add(not classify(outcome.status))
            self._error_rate.add(step.is_error(outcome.status))

            expected = step.is_expected(outcome.status)
            counter_name = step.success_counter if expected else step.failure_counter
            if counter_name:
                self._step_counters[counter_name].add(1)

            if outcome.error is not None:
                logger.debug("VU %d %s: %s", vu_id, step.name, outcome.error)
        self._iterations.add(1)

    def _on_iteration_error(self, vu_id: int, exc: BaseException) -> None:
        self._iteration_failures.add(1)

    def run(self) -> RunReport:
        """
        Execute the run to completion and evaluate thresholds.

        Returns:
            The final :class:`RunReport`.
        """
        config = self.run_config
        scheduler = VirtualUserScheduler(
            self.run_iteration,
            vus=config.vus,
            duration=config.duration,
            max_iterations=config.max_iterations,
            iteration_sleep=self.scenario.iteration_sleep,
            graceful_stop=config.graceful_stop,
            on_iteration_error=self._on_iteration_error,
        )
        self._scheduler = scheduler
        logger.info(
            "Running scenario %r against %s with %d threshold(s)",
            self.scenario.name,
            config.base_url,
            len(self.thresholds),
        )

        handle = scheduler.start()
        try:
            handle.wait()
        finally:
            handle.stop()
            self.executor.close()

        snapshot = self.sink.snapshot()
        evaluation = evaluate(snapshot, self.thresholds)
        for violation in evaluation.violations:
            logger.warning("Threshold violated: %s", violation)
        logger.info("Thresholds %s", "passed" if evaluation.passed else "FAILED")

        return RunReport(
            scenario=self.scenario.name,
            base_url=config.base_url,
            vus=config.vus,
            elapsed=handle.elapsed,
            snapshot=snapshot,
            evaluation=evaluation,
        )


# =====================================================================
# Report rendering
# =====================================================================


def _describe(snapshot: MetricSnapshot) -> str:
    if isinstance(snapshot, CounterSnapshot):
        return f"{snapshot.value}"
    if isinstance(snapshot, RateSnapshot):
        return f"{snapshot.rate * 100:.2f}% ({snapshot.passes}/{snapshot.total})"
    if isinstance(snapshot, TrendSnapshot):
        return (
            f"avg={snapshot.avg:.2f}ms min={snapshot.min:.2f}ms med={snapshot.med:.2f}ms "
            f"max={snapshot.max:.2f}ms p(90)={snapshot.percentile(90):.2f}ms "
            f"p(95)={snapshot.percentile(95):.2f}ms"
        )
    return repr(snapshot)


def render_report(report: RunReport) -> str:
    """Render a human-readable summary table for CI logs."""
    lines = [
        f"Load Test Summary: scenario={report.scenario} vus={report.vus} "
        f"elapsed={report.elapsed:.2f}s target={report.base_url}",
        "-" * 72,
        f"{'Metric':<22}{'Type':<9}Value",
        "-" * 72,
    ]
    for name, snapshot in report.snapshot.items():
        lines.append(f"{name:<22}{snapshot.metric_type.value:<9}{_describe(snapshot)}")

    if report.evaluation.results:
        lines.extend(
            [
                "-" * 72,
                f"{'Threshold':<44}{'Actual':>14}{'Status':>14}",
                "-" * 72,
            ]
        )
        for result in report.evaluation.results:
            actual = "n/a" if result.actual is None else f"{result.actual:.4g}"
            status = "PASS" if result.passed else "FAIL"
            lines.append(f"{str(result.expr):<44}{actual:>14}{status:>14}")

    lines.append("-" * 72)
    lines.append(f"Overall: {'PASS' if report.passed else 'FAIL'}")
    return "\n".join(lines)

"""
Unit tests for the virtual-user scheduler.

The iteration bodies here are plain Python callables, so the tests
exercise real threads and real timing without any HTTP.  Timing
assertions use generous slack to stay stable on loaded CI machines.

Key SDET Concepts Demonstrated:
- Probing concurrency limits with an instrumented workload
- Deadline assertions on recorded start timestamps
- Fault injection to prove per-thread error isolation
"""

from __future__ import annotations

import threading
import time

import pytest

from loadgen.errors import ConfigError
from loadgen.scheduler import VirtualUserScheduler

pytestmark = pytest.mark.unit

SLACK = 0.5


class _Recorder:
    """Thread-safe iteration body that records starts and concurrency."""

    def __init__(self, work_seconds: float = 0.0, fail_vu: int | None = None):
        self.work_seconds = work_seconds
        self.fail_vu = fail_vu
        self.starts: list[tuple[int, int, float]] = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, vu_id: int, iteration_number: int) -> None:
        with self._lock:
            self.starts.append((vu_id, iteration_number, time.monotonic()))
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.work_seconds:
                time.sleep(self.work_seconds)
            if vu_id == self.fail_vu:
                raise RuntimeError(f"VU {vu_id} blew up")
        finally:
            with self._lock:
                self.active -= 1


class TestValidation:
    """Tests for constructor validation."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"vus": 0, "duration": 1.0},
            {"vus": True, "duration": 1.0},
            {"vus": 1, "duration": 0},
            {"vus": 1, "duration": None},
            {"vus": 1, "duration": 1.0, "max_iterations": 0},
            {"vus": 1, "duration": 1.0, "iteration_sleep": -1},
            {"vus": 1, "duration": 1.0, "graceful_stop": -1},
            {"vus": 1, "duration": float("nan")},
            {"vus": 1, "duration": float("inf")},
            {"vus": 1, "duration": 1.0, "iteration_sleep": float("nan")},
            {"vus": 1, "duration": 1.0, "graceful_stop": float("nan")},
        ],
    )
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ConfigError):
            VirtualUserScheduler(lambda *_: None, **kwargs)

    def test_start_twice_raises(self):
        scheduler = VirtualUserScheduler(lambda *_: None, vus=1, duration=0.1)
        handle = scheduler.start()
        try:
            with pytest.raises(RuntimeError):
                scheduler.start()
        finally:
            handle.stop()

    def test_stop_before_start_raises(self):
        scheduler = VirtualUserScheduler(lambda *_: None, vus=1, duration=0.1)

        with pytest.raises(RuntimeError):
            scheduler.stop()

    def test_should_continue_follows_run_lifecycle(self):
        # Arrange
        scheduler = VirtualUserScheduler(lambda *_: None, vus=1, duration=10.0, iteration_sleep=10.0)
        assert scheduler.should_continue() is True

        # Act
        handle = scheduler.start()
        running = scheduler.should_continue()
        handle.stop()

        # Assert
        assert running is True
        assert scheduler.should_continue() is False


class TestDurationRuns:
    """Tests for constant-VU, fixed-duration runs."""

    def test_every_vu_runs(self):
        # Arrange
        body = _Recorder(work_seconds=0.01)
        scheduler = VirtualUserScheduler(body, vus=4, duration=0.3)

        # Act
        handle = scheduler.run()

        # Assert
        assert {vu for vu, _, _ in body.starts} == {1, 2, 3, 4}
        assert handle.completed_iterations == len(body.starts)
        assert handle.failed_iterations == 0
        assert not handle.is_running

    def test_never_more_than_vus_iterations_in_flight(self):
        # Arrange
        body = _Recorder(work_seconds=0.02)
        scheduler = VirtualUserScheduler(body, vus=3, duration=0.4)

        # Act
        handle = scheduler.run()

        # Assert
        assert body.peak <= 3
        assert handle.peak_in_flight <= 3
        assert handle.in_flight == 0

    def test_no_iteration_starts_after_deadline(self):
        # Arrange
        body = _Recorder(work_seconds=0.05)
        scheduler = VirtualUserScheduler(body, vus=3, duration=0.5)

        # Act
        handle = scheduler.run()

        # Assert: the body records its start a few microseconds after the
        # scheduler's deadline check
        assert body.starts
        assert all(started < handle.deadline + 0.01 for _, _, started in body.starts)

    def test_total_wall_clock_is_bounded_by_one_request(self):
        # Arrange: five 0.3s "requests" per iteration, checking in between
        holder: dict[str, VirtualUserScheduler] = {}
        requests_made = []

        def _body(vu_id: int, iteration_number: int) -> None:
            for _ in range(5):
                if not holder["scheduler"].should_continue():
                    return
                time.sleep(0.3)
                requests_made.append(vu_id)

        scheduler = VirtualUserScheduler(_body, vus=2, duration=0.5, graceful_stop=10.0)
        holder["scheduler"] = scheduler

        # Act
        started = time.monotonic()
        scheduler.run()
        wall = time.monotonic() - started

        # Assert: duration + one in-flight request, not five
        assert wall <= 0.5 + 0.3 + SLACK
        assert len(requests_made) <= 2 * 2

    def test_iterations_within_a_vu_are_sequential(self):
        body = _Recorder(work_seconds=0.01)
        scheduler = VirtualUserScheduler(body, vus=2, duration=0.3)

        scheduler.run()

        for vu in (1, 2):
            numbers = [n for v, n, _ in body.starts if v == vu]
            assert numbers == list(range(len(numbers)))

    def test_iteration_sleep_paces_each_vu(self):
        # Arrange
        body = _Recorder()
        scheduler = VirtualUserScheduler(body, vus=1, duration=0.55, iteration_sleep=0.2)

        # Act
        scheduler.run()

        # Assert: iterations at ~0.0, ~0.2, ~0.4
        assert 2 <= len(body.starts) <= 3

    def test_sleep_is_interrupted_by_stop(self):
        # Arrange
        scheduler = VirtualUserScheduler(lambda *_: None, vus=2, duration=10.0, iteration_sleep=10.0)
        handle = scheduler.start()

        # Act
        started = time.monotonic()
        handle.stop()
        stop_time = time.monotonic() - started

        # Assert
        assert stop_time < 1.0
        assert not handle.is_running
        assert handle.stop_requested


class TestIterationBudget:
    """Tests for shared max_iterations runs."""

    def test_exact_iteration_count_across_vus(self):
        # Arrange
        body = _Recorder(work_seconds=0.005)
        scheduler = VirtualUserScheduler(body, vus=4, duration=None, max_iterations=25)

        # Act
        handle = scheduler.run()

        # Assert
        assert len(body.starts) == 25
        assert handle.completed_iterations == 25

    def test_budget_exhaustion_ends_run_before_duration(self):
        scheduler = VirtualUserScheduler(lambda *_: None, vus=2, duration=30.0, max_iterations=4)

        started = time.monotonic()
        handle = scheduler.run()

        assert time.monotonic() - started < 5.0
        assert handle.completed_iterations == 4


class TestFailureIsolation:
    """Tests for per-VU error handling."""

    def test_failing_vu_does_not_stop_others(self, caplog):
        # Arrange
        body = _Recorder(work_seconds=0.01, fail_vu=2)
        errors: list[tuple[int, str]] = []
        scheduler = VirtualUserScheduler(
            body,
            vus=3,
            duration=0.3,
            on_iteration_error=lambda vu, exc: errors.append((vu, str(exc))),
        )

        # Act
        with caplog.at_level("ERROR", logger="loadgen.scheduler"):
            handle = scheduler.run()

        # Assert
        vu2_iterations = sum(1 for vu, _, _ in body.starts if vu == 2)
        assert handle.failed_iterations == vu2_iterations
        assert vu2_iterations > 1
        assert handle.completed_iterations == len(body.starts) - vu2_iterations
        assert {vu for vu, _ in errors} == {2}
        assert any("VU 2 iteration" in record.getMessage() for record in caplog.records)

    def test_stop_is_idempotent(self):
        scheduler = VirtualUserScheduler(lambda *_: None, vus=1, duration=0.1)
        handle = scheduler.start()

        handle.stop()
        elapsed = handle.elapsed
        handle.stop()

        assert handle.elapsed == elapsed

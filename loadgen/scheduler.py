"""
Virtual-User Scheduler — constant concurrency for a fixed duration.

Runs ``vus`` independent virtual users, one OS thread each.  Every
virtual user is a blocking sequential loop::

    while not stopped and before deadline:
        run iteration body
        sleep(iteration_sleep)      # interruptible by stop()

The only suspension points are the HTTP calls inside the body (bounded
by the executor's timeout) and the inter-iteration sleep, so plain
threads are enough; no event loop is needed.

Stop semantics:

- The deadline is checked at the top of every iteration, so no new
  iteration starts at or after ``start + duration``.  Iteration bodies
  call :meth:`VirtualUserScheduler.should_continue` between requests,
  so no new request starts after the deadline either.
- Cancellation is cooperative.  An iteration already running when the
  stop signal arrives finishes its current request (bounded by the
  request timeout) and skips the rest, so a run ends within
  ``duration + request timeout``.
- ``stop()`` joins every thread for at most ``graceful_stop`` seconds
  in total and logs any stragglers.  Threads are daemons, so a
  straggler cannot keep the process alive.

An exception escaping the iteration body is logged and counted as a
failed iteration; the virtual user keeps looping and the run continues.

Key Concepts Demonstrated:
- ``threading.Event`` as both cancellation flag and interruptible sleep
- Shared iteration budget claimed under a lock (``max_iterations``)
- Per-thread fault isolation with ``logger.exception``
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable

from loadgen.errors import ConfigError

logger = logging.getLogger(__name__)

IterationBody = Callable[[int, int], None]
IterationErrorHook = Callable[[int, BaseException], None]


class RunHandle:
    """
    Live view of a started run.

    Created by :meth:`VirtualUserScheduler.start`; use :meth:`wait` to
    block until the stop condition fires, or :meth:`stop` to cancel early.
    """

    def __init__(self, scheduler: VirtualUserScheduler):
        self._scheduler = scheduler
        self._stop_event = threading.Event()
        self._all_exited = threading.Event()
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._active_vus = 0
        self._claimed = 0
        self._in_flight = 0
        self._stopped = False

        self.completed_iterations = 0
        self.failed_iterations = 0
        self.peak_in_flight = 0
        self.started_at = 0.0
        self.deadline: float | None = None
        self.finished_at: float | None = None

    # -----------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    @property
    def elapsed(self) -> float:
        """Seconds since start, frozen once the run has been stopped."""
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # -----------------------------------------------------------------
    # Control
    # -----------------------------------------------------------------

    def wait(self) -> None:
        """
        Block until the duration elapses or the iteration budget runs out,
        then stop and drain every virtual user.
        """
        timeout = None
        if self.deadline is not None:
            timeout = max(0.0, self.deadline - time.monotonic())
        self._all_exited.wait(timeout=timeout)
        self.stop()

    def stop(self) -> None:
        """
        Cancel all virtual users and wait for in-flight iterations to drain.

        Safe to call more than once; only the first call joins threads.
        """
        self._stop_event.set()
        with self._lock:
            if self._stopped:
                return
            self._stopped = True

        join_deadline = time.monotonic() + self._scheduler.graceful_stop
        for thread in self._threads:
            thread.join(timeout=max(0.0, join_deadline - time.monotonic()))

        stragglers = [thread.name for thread in self._threads if thread.is_alive()]
        if stragglers:
            logger.warning(
                "%d virtual user(s) still running after %.1fs graceful stop: %s",
                len(stragglers),
                self._scheduler.graceful_stop,
                ", ".join(stragglers),
            )
        self.finished_at = time.monotonic()
        logger.info(
            "Run stopped after %.2fs: %d iteration(s) completed, %d failed",
            self.elapsed,
            self.completed_iterations,
            self.failed_iterations,
        )

    # -----------------------------------------------------------------
    # Virtual-user loop
    # -----------------------------------------------------------------

    def should_continue(self) -> bool:
        """``False`` once stop was requested or the deadline has passed."""
        if self._stop_event.is_set():
            return False
        return self.deadline is None or time.monotonic() < self.deadline

    def _claim_iteration(self) -> bool:
        limit = self._scheduler.max_iterations
        with self._lock:
            if limit is not None and self._claimed >= limit:
                return False
            self._claimed += 1
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            return True

    def _finish_iteration(self, failed: bool) -> None:
        with self._lock:
            self._in_flight -= 1
            if failed:
                self.failed_iterations += 1
            else:
                self.completed_iterations += 1

    def _sleep(self, seconds: float) -> None:
        if seconds <= 0:
            return
        if self.deadline is not None:
            seconds = min(seconds, max(0.0, self.deadline - time.monotonic()))
        self._stop_event.wait(timeout=seconds)

    def _run_vu(self, vu_id: int) -> None:
        scheduler = self._scheduler
        iteration_number = 0
        try:
            while self.should_continue() and self._claim_iteration():
                failed = False
                try:
                    scheduler.iteration(vu_id, iteration_number)
                except Exception as exc:
                    failed = True
                    logger.exception("VU %d iteration %d failed", vu_id, iteration_number)
                    if scheduler.on_iteration_error is not None:
                        scheduler.on_iteration_error(vu_id, exc)
                finally:
                    self._finish_iteration(failed)
                iteration_number += 1
                self._sleep(scheduler.iteration_sleep)
        except Exception:
            logger.exception("VU %d stopped unexpectedly", vu_id)
        finally:
            with self._lock:
                self._active_vus -= 1
                last = self._active_vus == 0
            if last:
                self._all_exited.set()

    def _start(self) -> None:
        scheduler = self._scheduler
        self.started_at = time.monotonic()
        if scheduler.duration is not None:
            self.deadline = self.started_at + scheduler.duration
        self._active_vus = scheduler.vus
        for vu_id in range(1, scheduler.vus + 1):
            thread = threading.Thread(
                target=self._run_vu,
                args=(vu_id,),
                name=f"vu-{vu_id}",
                daemon=True,
            )
            self._threads.append(thread)
        for thread in self._threads:
            thread.start()


class VirtualUserScheduler:
    """
    Runs an iteration body on ``vus`` concurrent virtual users.

    Args:
        iteration: Called as ``iteration(vu_id, iteration_number)``;
            ``vu_id`` is 1-based, ``iteration_number`` counts per VU
            from 0.
        vus: Number of concurrent virtual users.
        duration: Seconds after start when no new iteration may begin.
            May be ``None`` only when ``max_iterations`` is set.
        max_iterations: Total iterations shared across all virtual users.
        iteration_sleep: Seconds each virtual user pauses between iterations.
        graceful_stop: Maximum seconds :meth:`RunHandle.stop` waits for
            in-flight iterations.
        on_iteration_error: Optional hook called with ``(vu_id, exc)``
            after an iteration raised.

    Raises:
        ConfigError: For non-positive ``vus``/``duration``/``max_iterations``
            or negative sleeps.
    """

    def __init__(
        self,
        iteration: IterationBody,
        *,
        vus: int,
        duration: float | None,
        max_iterations: int | None = None,
        iteration_sleep: float = 0.0,
        graceful_stop: float = 30.0,
        on_iteration_error: IterationErrorHook | None = None,
    ):
        if not isinstance(vus, int) or isinstance(vus, bool) or vus < 1:
            raise ConfigError(f"vus must be a positive integer, got {vus!r}")
        if duration is None and max_iterations is None:
            raise ConfigError("Either duration or max_iterations is required")
        for name, seconds in (
            ("duration", duration),
            ("iteration_sleep", iteration_sleep),
            ("graceful_stop", graceful_stop),
        ):
            if seconds is not None and not math.isfinite(seconds):
                raise ConfigError(f"{name} must be finite, got {seconds!r}")
        if duration is not None and duration <= 0:
            raise ConfigError(f"duration must be > 0, got {duration!r}")
        if max_iterations is not None and max_iterations < 1:
            raise ConfigError(f"max_iterations must be >= 1, got {max_iterations!r}")
        if iteration_sleep < 0:
            raise ConfigError(f"iteration_sleep must be >= 0, got {iteration_sleep!r}")
        if graceful_stop < 0:
            raise ConfigError(f"graceful_stop must be >= 0, got {graceful_stop!r}")

        self.iteration = iteration
        self.vus = vus
        self.duration = duration
        self.max_iterations = max_iterations
        self.iteration_sleep = iteration_sleep
        self.graceful_stop = graceful_stop
        self.on_iteration_error = on_iteration_error
        self._handle: RunHandle | None = None

    def start(self) -> RunHandle:
        """
        Spawn the virtual users and return immediately.

        Raises:
            RuntimeError: If this scheduler was already started.
        """
        if self._handle is not None:
            raise RuntimeError("Scheduler has already been started")
        logger.info(
            "Starting %d VU(s): duration=%s max_iterations=%s sleep=%.2fs",
            self.vus,
            f"{self.duration:.2f}s" if self.duration is not None else "none",
            self.max_iterations if self.max_iterations is not None else "none",
            self.iteration_sleep,
        )
        self._handle = RunHandle(self)
        self._handle._start()
        return self._handle

    def should_continue(self) -> bool:
        """
        Whether a running iteration may issue its next request.

        ``True`` before :meth:`start` so an iteration body can also be
        called on its own.
        """
        return self._handle is None or self._handle.should_continue()

    def stop(self, handle: RunHandle | None = None) -> None:
        """Cancel a started run; defaults to this scheduler's own handle."""
        handle = handle or self._handle
        if handle is None:
            raise RuntimeError("Scheduler has not been started")
        handle.stop()

    def run(self) -> RunHandle:
        """Start, wait for the stop condition, drain, and return the handle."""
        handle = self.start()
        try:
            handle.wait()
        finally:
            handle.stop()
        return handle

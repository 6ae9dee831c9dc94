"""
Shared pytest fixtures for the load generator test suite.

No test in the unit suite touches the network.  Outbound HTTP is
replaced by :class:`FakeSession`, a minimal stand-in for
``requests.Session`` whose behaviour is driven by a *responder*
callable: given ``(method, url)`` it returns a status code or raises a
``requests`` exception.

Key SDET Concepts Demonstrated:
- Lightweight stub objects that satisfy the interface contract
- Factory fixtures for configurable fakes
- Environment variable overrides set before the package is imported
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable

import pytest

os.environ["LOADGEN_ENV"] = "testing"

from loadgen.config import RunConfig
from loadgen.executor import RequestExecutor
from loadgen.metrics import MetricSink

Responder = Callable[[str, str], int]


class FakeResponse:
    """Minimal stand-in for ``requests.Response`` as used by the executor."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """
    Thread-safe stand-in for ``requests.Session``.

    Every call is recorded in :attr:`calls` as the keyword arguments
    passed to ``request``.
    """

    def __init__(self, responder: Responder, calls: list[dict], lock: threading.Lock):
        self._responder = responder
        self.calls = calls
        self._lock = lock
        self.closed = False

    def request(self, **kwargs) -> FakeResponse:
        with self._lock:
            self.calls.append(kwargs)
        return FakeResponse(self._responder(kwargs["method"], kwargs["url"]))

    def close(self) -> None:
        self.closed = True


class FakeSessionFactory:
    """Creates :class:`FakeSession` objects sharing one call log."""

    def __init__(self, responder: Responder):
        self.responder = responder
        self.calls: list[dict] = []
        self.sessions: list[FakeSession] = []
        self._lock = threading.Lock()

    def __call__(self) -> FakeSession:
        session = FakeSession(self.responder, self.calls, self._lock)
        with self._lock:
            self.sessions.append(session)
        return session


@pytest.fixture
def sink() -> MetricSink:
    """Provide a fresh, empty metric sink."""
    return MetricSink()


@pytest.fixture
def session_factory():
    """
    Factory fixture building a :class:`FakeSessionFactory`.

    Accepts either a fixed status code or a responder callable.

    Example:
        def test_something(session_factory):
            factory = session_factory(500)
    """

    def _create(behaviour: int | Responder = 200) -> FakeSessionFactory:
        if callable(behaviour):
            return FakeSessionFactory(behaviour)
        return FakeSessionFactory(lambda _method, _url: behaviour)

    return _create


@pytest.fixture
def fake_executor(session_factory):
    """Factory fixture returning a ``RequestExecutor`` wired to fake sessions."""

    def _create(behaviour: int | Responder = 200, timeout: float = 1.0):
        factory = session_factory(behaviour)
        return RequestExecutor(timeout=timeout, session_factory=factory), factory

    return _create


@pytest.fixture
def fast_run_config() -> RunConfig:
    """A short run with no sleep and no thresholds beyond the defaults."""
    return RunConfig(
        base_url="http://target.test",
        vus=2,
        duration=0.3,
        iteration_sleep=0.0,
        request_timeout=1.0,
        graceful_stop=2.0,
    )

"""
Unit tests for the request executor.

Each test swaps the ``requests.Session`` for a fake (see
``tests/conftest.py``) so no real HTTP traffic is generated.  Failure
modes are simulated by responders that raise ``requests`` exceptions.

Key SDET Concepts Demonstrated:
- Simulating network-level errors with raised exceptions
- Verifying outbound call arguments on a recorded call log
- Asserting errors become values rather than propagating
"""

from __future__ import annotations

import threading

import pytest
import requests

from loadgen.errors import NetworkError
from loadgen.executor import Outcome, RequestExecutor, build_url, classify
from loadgen.steps import EndpointStep

pytestmark = pytest.mark.unit


def _raise(exc: Exception):
    def _responder(_method: str, _url: str) -> int:
        raise exc

    return _responder


@pytest.mark.parametrize(
    "status, expected",
    [(0, False), (200, True), (204, True), (399, True), (400, False), (500, False)],
)
def test_classify(status, expected):
    assert classify(status) is expected


@pytest.mark.parametrize(
    "base_url, path, expected",
    [
        ("http://host:8080", "/io_task", "http://host:8080/io_task"),
        ("http://host:8080/", "/io_task", "http://host:8080/io_task"),
        ("http://host:8080/", "/", "http://host:8080/"),
        ("http://host/api", "/tasks?x=1", "http://host/api/tasks?x=1"),
    ],
)
def test_build_url(base_url, path, expected):
    assert build_url(base_url, path) == expected


def test_execute_issues_exactly_one_request(fake_executor):
    # Arrange
    executor, factory = fake_executor(200, timeout=2.5)
    step = EndpointStep("GET", "/cpu_task")

    # Act
    outcome = executor.execute(step, "http://target.test")

    # Assert
    assert outcome.status == 200
    assert outcome.error is None
    assert outcome.ok and outcome.succeeded
    assert outcome.latency_ms >= 0
    assert factory.calls == [
        {
            "method": "GET",
            "url": "http://target.test/cpu_task",
            "allow_redirects": False,
            "timeout": 2.5,
        }
    ]


def test_post_renders_query_parameters(fake_executor):
    executor, factory = fake_executor(200)
    step = EndpointStep("POST", "/payment?amount={amount}")

    executor.execute(step, "http://target.test")

    (call,) = factory.calls
    assert call["method"] == "POST"
    assert call["url"].startswith("http://target.test/payment?amount=")
    assert "data" not in call and "json" not in call


def test_server_error_is_returned_not_raised(fake_executor):
    executor, _ = fake_executor(500)

    outcome = executor.execute(EndpointStep("GET", "/"), "http://target.test")

    assert outcome.status == 500
    assert outcome.error is None
    assert not outcome.succeeded


@pytest.mark.parametrize(
    "exc, kind",
    [
        (requests.Timeout("read timed out"), "timeout"),
        (requests.ConnectTimeout("connect timed out"), "timeout"),
        (requests.ConnectionError("connection refused"), "connection"),
        (requests.TooManyRedirects("loop"), "request"),
    ],
)
def test_network_failures_become_status_zero(fake_executor, exc, kind):
    # Arrange
    executor, _ = fake_executor(_raise(exc))

    # Act
    outcome = executor.execute(EndpointStep("GET", "/"), "http://target.test")

    # Assert
    assert outcome.status == 0
    assert isinstance(outcome.error, NetworkError)
    assert outcome.error.kind == kind
    assert not outcome.ok
    assert not outcome.succeeded


def test_non_requests_exceptions_propagate(fake_executor):
    """Bugs are not network errors and must not be silently swallowed."""
    executor, _ = fake_executor(_raise(RuntimeError("boom")))

    with pytest.raises(RuntimeError):
        executor.execute(EndpointStep("GET", "/"), "http://target.test")


def test_one_session_per_thread(fake_executor):
    # Arrange
    executor, factory = fake_executor(200)
    step = EndpointStep("GET", "/")

    def _work() -> None:
        for _ in range(3):
            executor.execute(step, "http://target.test")

    # Act
    threads = [threading.Thread(target=_work) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    # Assert
    assert len(factory.sessions) == 4
    assert len(factory.calls) == 12


def test_close_closes_every_session(fake_executor):
    executor, factory = fake_executor(200)
    executor.execute(EndpointStep("GET", "/"), "http://target.test")

    executor.close()

    assert all(session.closed for session in factory.sessions)


def test_default_session_factory_is_requests_session(monkeypatch):
    created = []

    class _Session:
        def __init__(self):
            created.append(self)

    monkeypatch.setattr("loadgen.executor.requests.Session", _Session)

    executor = RequestExecutor(timeout=1.0)
    executor._session()

    assert len(created) == 1


def test_timeout_must_be_positive():
    with pytest.raises(ValueError):
        RequestExecutor(timeout=0)


def test_network_error_rejects_unknown_kind():
    with pytest.raises(ValueError):
        NetworkError("dns", "lookup failed")


def test_outcome_is_value_object():
    assert Outcome(status=200, latency_ms=1.0) == Outcome(status=200, latency_ms=1.0)

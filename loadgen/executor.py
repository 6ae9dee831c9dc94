"""
Request Executor — issues exactly one HTTP request per scripted step.

The executor has no side effects apart from the network
call itself: it never touches the metric sink.  It measures latency,
captures the status code, and turns transport failures into values
instead of exceptions so a virtual user loop can record them uniformly
alongside 5xx responses.

Failure mapping:

- ``requests.Timeout``          → ``NetworkError(kind="timeout")``
- ``requests.ConnectionError``  → ``NetworkError(kind="connection")``
  (refused, reset, DNS failure)
- other ``RequestException``    → ``NetworkError(kind="request")``

All three are returned as ``Outcome(status=0, ...)``.

Key Concepts Demonstrated:
- Bounded timeouts on every outbound call so no caller can hang forever
- One ``requests.Session`` per thread for connection reuse without
  sharing a session across threads
- Monotonic clock latency measurement
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urljoin

import requests

from loadgen.errors import NetworkError
from loadgen.steps import EndpointStep, render_path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def classify(status: int) -> bool:
    """Return ``True`` when *status* is a generic success (``200 <= status < 400``)."""
    return 200 <= status < 400


def build_url(base_url: str, path: str) -> str:
    """Join *base_url* and *path* without doubling or dropping slashes."""
    return urljoin(base_url.rstrip("/") + "/", path.lstrip("/"))


@dataclass(frozen=True)
class Outcome:
    """
    Result of one executed step.

    Attributes:
        status: HTTP status code, or ``0`` when no response was received.
        latency_ms: Wall-clock duration of the call in milliseconds.
        error: The transport failure, if any.
    """

    status: int
    latency_ms: float
    error: NetworkError | None = None

    @property
    def ok(self) -> bool:
        """``True`` when a response (of any status) was received."""
        return self.error is None

    @property
    def succeeded(self) -> bool:
        return classify(self.status)


class RequestExecutor:
    """
    Executes endpoint steps against a base URL.

    Args:
        timeout: Seconds before a request is abandoned.  This also bounds
            how long a virtual user can delay a graceful stop.
        session_factory: Callable returning a ``requests.Session``-like
            object, called once per thread that uses the executor.
            Defaults to ``requests.Session``.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        session_factory: Callable[[], requests.Session] | None = None,
    ):
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.timeout = timeout
        self._session_factory = session_factory or requests.Session
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def execute(
        self,
        step: EndpointStep,
        base_url: str,
        rng: random.Random | None = None,
    ) -> Outcome:
        """
        Issue the single HTTP request described by *step*.

        Never raises for transport problems; see the module docstring
        for how they are mapped.  POST bodies are always empty: request
        parameters travel in the query string.

        Args:
            step: The step to execute.
            base_url: Scheme and host of the system under test.
            rng: Random source for path placeholders.

        Returns:
            The :class:`Outcome` of the call.
        """
        url = build_url(base_url, render_path(step, rng))
        session = self._session()

        started = time.perf_counter()
        try:
            response = session.request(
                method=step.method,
                url=url,
                allow_redirects=False,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            outcome = Outcome(status=0, latency_ms=_elapsed_ms(started), error=NetworkError("timeout", str(exc)))
        except requests.ConnectionError as exc:
            outcome = Outcome(status=0, latency_ms=_elapsed_ms(started), error=NetworkError("connection", str(exc)))
        except requests.RequestException as exc:
            outcome = Outcome(status=0, latency_ms=_elapsed_ms(started), error=NetworkError("request", str(exc)))
        else:
            outcome = Outcome(status=response.status_code, latency_ms=_elapsed_ms(started))
            response.close()

        logger.debug("%s %s -> %s in %.1fms", step.method, url, outcome.status, outcome.latency_ms)
        return outcome

    def close(self) -> None:
        """Close every session created by this executor."""
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0

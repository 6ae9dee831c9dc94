"""
Exception hierarchy for the load generator.

Errors fall into two families that the run controller treats very
differently:

- **Setup errors** (:class:`SetupError` and subclasses) describe a
  broken run definition: a duplicated metric, a malformed threshold, a
  negative sleep.  They are raised before any virtual user starts and
  abort the run with exit code ``2``.
- **Network errors** (:class:`NetworkError`) describe a single failed
  HTTP call.  They are never raised out of the request executor;
  instead they are attached to the returned ``Outcome`` and counted as
  failed requests.

Key Concepts Demonstrated:
- A single ``LoadgenError`` root so callers can catch "anything we raised"
- Errors as values for expected runtime failures, exceptions for bugs
"""

from __future__ import annotations


class LoadgenError(Exception):
    """Base class for every error raised by the load generator."""


class SetupError(LoadgenError):
    """A run definition problem detected before the scheduler starts."""


class DuplicateMetricError(SetupError):
    """Raised when a metric name is registered twice on the same sink."""

    def __init__(self, name: str):
        super().__init__(f"Metric already registered: {name!r}")
        self.name = name


class ThresholdParseError(SetupError):
    """Raised when a threshold expression cannot be parsed."""

    def __init__(self, expression: str, reason: str):
        super().__init__(f"Invalid threshold {expression!r}: {reason}")
        self.expression = expression
        self.reason = reason


class UnknownMetricError(SetupError):
    """
    Raised when a threshold cannot be checked against the registered metrics.

    Either the metric it names was never registered, or the aggregation
    it asks for (e.g. ``p(95)``) does not apply to the metric's type.
    """


class ConfigError(SetupError):
    """Raised for invalid run configuration values or config files."""


class NetworkError(LoadgenError):
    """
    A transport-level failure for a single request.

    Attributes:
        kind: ``"timeout"``, ``"connection"`` (refused, reset, DNS
            failure) or ``"request"`` for any other client-side failure.
    """

    KINDS = ("timeout", "connection", "request")

    def __init__(self, kind: str, message: str):
        if kind not in self.KINDS:
            raise ValueError(f"Unknown network error kind: {kind!r}")
        super().__init__(message)
        self.kind = kind

    def __repr__(self) -> str:
        return f"NetworkError(kind={self.kind!r}, message={str(self)!r})"

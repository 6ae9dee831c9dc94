"""
vu-loadgen — a small virtual-user load generator.

Public entry points:

- :class:`~loadgen.controller.RunController` runs a scenario and returns
  a :class:`~loadgen.controller.RunReport`.
- :class:`~loadgen.metrics.MetricSink`, :class:`~loadgen.scheduler.VirtualUserScheduler`,
  :class:`~loadgen.executor.RequestExecutor` and
  :func:`~loadgen.thresholds.evaluate` are usable on their own.
"""

from loadgen.config import RunConfig, get_config, load_run_config
from loadgen.controller import RunController, RunReport, render_report
from loadgen.errors import (
    ConfigError,
    DuplicateMetricError,
    LoadgenError,
    NetworkError,
    SetupError,
    ThresholdParseError,
    UnknownMetricError,
)
from loadgen.executor import Outcome, RequestExecutor
from loadgen.metrics import MetricSink
from loadgen.scheduler import RunHandle, VirtualUserScheduler
from loadgen.steps import EndpointStep, Scenario, get_scenario
from loadgen.thresholds import evaluate, parse_threshold, parse_thresholds

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "DuplicateMetricError",
    "EndpointStep",
    "LoadgenError",
    "MetricSink",
    "NetworkError",
    "Outcome",
    "RequestExecutor",
    "RunConfig",
    "RunController",
    "RunHandle",
    "RunReport",
    "Scenario",
    "SetupError",
    "ThresholdParseError",
    "UnknownMetricError",
    "VirtualUserScheduler",
    "evaluate",
    "get_config",
    "get_scenario",
    "load_run_config",
    "parse_threshold",
    "parse_thresholds",
    "render_report",
]

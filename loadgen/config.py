"""
Load generator configuration.

Two layers, mirroring how the service configs in this codebase work:

1. **Config classes** (:class:`Config` and its environment-specific
   subclasses) capture defaults, each overridable by an environment
   variable.  :func:`get_config` picks one based on ``LOADGEN_ENV``.
2. **RunConfig** is the immutable, validated value the run controller
   actually consumes.  It is built from a config class, optionally
   overlaid with a YAML file and then with explicit (CLI) overrides.

Durations may be given as plain numbers (seconds) or as strings such
as ``"500ms"``, ``"30s"``, ``"2m"`` or ``"1m30s"``.

Key Concepts Demonstrated:
- Class-based configuration with inheritance for DRY defaults
- Environment-variable overrides for 12-factor style deployability
- YAML run files merged over defaults, validated once up front
"""

from __future__ import annotations

import dataclasses
import logging
import math
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from loadgen.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080"

DEFAULT_THRESHOLDS: dict[str, list[str]] = {
    "http_req_duration": ["p(95)<2000"],
    "error_rate": ["rate<0.5"],
}

_DURATION_PART_RE = re.compile(r"(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """
    Convert a duration value to seconds.

    Args:
        value: A number of seconds, a numeric string, or a string made
            of ``<number><unit>`` parts with units ``ms``, ``s``, ``m``
            or ``h`` (e.g. ``"1m30s"``).

    Returns:
        The duration in seconds as a float.

    Raises:
        ConfigError: If the value cannot be interpreted.
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return _finite(float(value), value)
    if not isinstance(value, str):
        raise ConfigError(f"Invalid duration: {value!r}")

    text = value.strip().lower()
    try:
        return _finite(float(text), value)
    except ValueError:
        pass

    position = 0
    total = 0.0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != position:
            break
        total += float(match.group("value")) * _DURATION_UNITS[match.group("unit")]
        position = match.end()
    if position == 0 or position != len(text):
        raise ConfigError(f"Invalid duration: {value!r} (use e.g. '500ms', '30s', '1m30s')")
    return total


def _finite(seconds: float, original: Any) -> float:
    if not math.isfinite(seconds):
        raise ConfigError(f"Invalid duration: {original!r} (must be a finite number)")
    return seconds


def parse_count(name: str, value: Any) -> int | None:
    """
    Convert an integer setting (possibly an env-var string) to ``int``.

    Empty strings and ``None`` mean "not set" and return ``None``.

    Raises:
        ConfigError: If the value is not a whole number.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def _env_duration(name: str, default: str) -> str:
    return os.environ.get(name, default)


class Config:
    """
    Base (shared) configuration for load runs.

    Every attribute can be overridden through the environment variable
    named in its comment.
    """

    # BASE_URL: system under test.
    BASE_URL: str = os.environ.get("BASE_URL", DEFAULT_BASE_URL)

    # LOADGEN_VUS: number of concurrent virtual users.  Env values stay
    # strings here and are converted by RunConfig.from_config.
    VUS: int | str = os.environ.get("LOADGEN_VUS", "5")

    # LOADGEN_DURATION: how long new iterations may start.
    DURATION: str = _env_duration("LOADGEN_DURATION", "30s")

    # LOADGEN_ITERATIONS: optional total iteration budget shared by all VUs.
    ITERATIONS: int | str | None = os.environ.get("LOADGEN_ITERATIONS")

    # LOADGEN_ITERATION_SLEEP: pause between iterations; unset means
    # "use the scenario's own default".
    ITERATION_SLEEP: str | None = os.environ.get("LOADGEN_ITERATION_SLEEP")

    # LOADGEN_REQUEST_TIMEOUT: per-request timeout, also the worst-case drain time.
    REQUEST_TIMEOUT: str = _env_duration("LOADGEN_REQUEST_TIMEOUT", "30s")

    # LOADGEN_GRACEFUL_STOP: how long stop() waits for in-flight iterations.
    GRACEFUL_STOP: str = _env_duration("LOADGEN_GRACEFUL_STOP", "30s")

    # LOADGEN_SCENARIO: built-in scenario name.
    SCENARIO: str = os.environ.get("LOADGEN_SCENARIO", "default")

    THRESHOLDS: dict[str, list[str]] = DEFAULT_THRESHOLDS

    # Refuse to run without at least one threshold.
    REQUIRE_THRESHOLDS: bool = False


class DevelopmentConfig(Config):
    """Local runs against a developer machine; defaults are fine as-is."""


class TestingConfig(Config):
    """
    Test-suite overrides.

    Short runs and a one-second request timeout keep the suite fast even
    when a test simulates an unresponsive target.  The base URL points
    at a non-routable host so nothing leaks to a real service.
    """

    BASE_URL: str = os.environ.get("TEST_BASE_URL", "http://target.test")
    VUS: int = 2
    DURATION: str = "1s"
    ITERATION_SLEEP: str | None = "0"
    REQUEST_TIMEOUT: str = "1s"
    GRACEFUL_STOP: str = "2s"


class CIConfig(Config):
    """
    Pipeline gate: stricter latency budget and thresholds are mandatory.
    """

    THRESHOLDS: dict[str, list[str]] = {
        "http_req_duration": ["p(95)<1500"],
        "http_req_failed": ["rate<0.1"],
        "error_rate": ["rate<0.5"],
    }
    REQUIRE_THRESHOLDS: bool = True


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "ci": CIConfig,
    "default": DevelopmentConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the configuration class for the given environment.

    Args:
        env: ``"development"``, ``"testing"`` or ``"ci"``.  When *None*,
            ``LOADGEN_ENV`` is consulted, falling back to
            ``"development"``.

    Returns:
        The matching ``Config`` subclass, or ``DevelopmentConfig`` if the
        key is unrecognised.
    """
    if env is None:
        env = os.environ.get("LOADGEN_ENV", "development")
    return config.get(env, config["default"])


@dataclass(frozen=True)
class RunConfig:
    """
    Validated, immutable settings for a single run.

    Attributes:
        base_url: Scheme and host of the system under test.
        vus: Concurrent virtual users.
        duration: Seconds during which new iterations may start, or
            ``None`` for an iteration-bounded run.
        max_iterations: Optional total iterations shared by all VUs.
        iteration_sleep: Seconds between iterations; ``None`` means use
            the scenario default.
        request_timeout: Per-request timeout in seconds.
        graceful_stop: Seconds to wait for in-flight iterations on stop.
        scenario: Built-in scenario name (ignored when ``steps`` is set).
        thresholds: Threshold expressions: list of prefixed strings or a
            mapping of metric name to expressions.
        steps: Optional custom step definitions from a config file.
        require_thresholds: Reject a run with no thresholds.
    """

    base_url: str = DEFAULT_BASE_URL
    vus: int = 5
    duration: float | None = 30.0
    max_iterations: int | None = None
    iteration_sleep: float | None = None
    request_timeout: float = 30.0
    graceful_stop: float = 30.0
    scenario: str = "default"
    thresholds: Any = dataclasses.field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))
    steps: tuple[Mapping[str, Any], ...] | None = None
    require_thresholds: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.base_url, str) or not self.base_url.startswith(("http://", "https://")):
            raise ConfigError(f"base_url must be an http(s) URL, got {self.base_url!r}")
        if isinstance(self.vus, bool) or not isinstance(self.vus, int) or self.vus < 1:
            raise ConfigError(f"vus must be a positive integer, got {self.vus!r}")
        for name in ("duration", "iteration_sleep", "request_timeout", "graceful_stop"):
            seconds = getattr(self, name)
            if seconds is None:
                continue
            if isinstance(seconds, bool) or not isinstance(seconds, (int, float)) or not math.isfinite(seconds):
                raise ConfigError(f"{name} must be a finite number of seconds, got {seconds!r}")
        if self.duration is None and self.max_iterations is None:
            raise ConfigError("Either duration or iterations must be set")
        if self.duration is not None and self.duration <= 0:
            raise ConfigError(f"duration must be > 0, got {self.duration!r}")
        if self.max_iterations is not None and (
            isinstance(self.max_iterations, bool)
            or not isinstance(self.max_iterations, int)
            or self.max_iterations < 1
        ):
            raise ConfigError(f"iterations must be a positive integer, got {self.max_iterations!r}")
        if self.iteration_sleep is not None and self.iteration_sleep < 0:
            raise ConfigError(f"iteration_sleep must be >= 0, got {self.iteration_sleep!r}")
        if self.request_timeout <= 0:
            raise ConfigError(f"request_timeout must be > 0, got {self.request_timeout!r}")
        if self.graceful_stop < 0:
            raise ConfigError(f"graceful_stop must be >= 0, got {self.graceful_stop!r}")
        if self.require_thresholds and not self.thresholds:
            raise ConfigError("This environment requires at least one threshold")

    @classmethod
    def from_config(cls, config_class: type[Config] | None = None, **overrides: Any) -> RunConfig:
        """
        Build a run config from a config class plus explicit overrides.

        ``None`` overrides are ignored so CLI flags that were not given
        fall through to the class defaults.
        """
        config_class = config_class or get_config()
        sleep = config_class.ITERATION_SLEEP
        values: dict[str, Any] = {
            "base_url": config_class.BASE_URL,
            "vus": parse_count("LOADGEN_VUS", config_class.VUS),
            "duration": parse_duration(config_class.DURATION),
            "max_iterations": parse_count("LOADGEN_ITERATIONS", config_class.ITERATIONS),
            "iteration_sleep": parse_duration(sleep) if sleep not in (None, "") else None,
            "request_timeout": parse_duration(config_class.REQUEST_TIMEOUT),
            "graceful_stop": parse_duration(config_class.GRACEFUL_STOP),
            "scenario": config_class.SCENARIO,
            "thresholds": config_class.THRESHOLDS,
            "require_thresholds": config_class.REQUIRE_THRESHOLDS,
        }
        values.update(_normalise(overrides))
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> RunConfig:
        """Return a copy with every non-``None`` override applied."""
        return dataclasses.replace(self, **_normalise(overrides))

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        if self.steps is not None:
            data["steps"] = [dict(step) for step in self.steps]
        return data


def _normalise(overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Drop ``None`` values and coerce duration-like fields to seconds."""
    values = {key: value for key, value in overrides.items() if value is not None}
    for key in ("duration", "iteration_sleep", "request_timeout", "graceful_stop"):
        if key in values:
            values[key] = parse_duration(values[key])
    if "steps" in values:
        values["steps"] = tuple(values["steps"])
    return values


# Keys accepted in a YAML run file, mapped to RunConfig fields.
_FILE_KEYS = {
    "base_url": "base_url",
    "vus": "vus",
    "duration": "duration",
    "iterations": "max_iterations",
    "iteration_sleep": "iteration_sleep",
    "request_timeout": "request_timeout",
    "graceful_stop": "graceful_stop",
    "scenario": "scenario",
    "thresholds": "thresholds",
    "steps": "steps",
}


def load_run_config(
    path: str | Path,
    config_class: type[Config] | None = None,
    **overrides: Any,
) -> RunConfig:
    """
    Load a YAML run file and merge it over the config class defaults.

    Precedence, lowest to highest: config class, file, *overrides*.

    Raises:
        ConfigError: If the file is missing, is not valid YAML, is not a
            mapping, or contains unknown keys or invalid values.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")

    unknown = sorted(set(data) - set(_FILE_KEYS))
    if unknown:
        raise ConfigError(f"Unknown key(s) in {path}: {unknown}")

    file_values = {_FILE_KEYS[key]: value for key, value in data.items()}
    if "steps" in file_values and not isinstance(file_values["steps"], list):
        raise ConfigError("'steps' must be a list of step definitions")

    logger.info("Loaded run config from %s", path)
    merged = {**file_values, **{k: v for k, v in overrides.items() if v is not None}}
    return RunConfig.from_config(config_class, **merged)

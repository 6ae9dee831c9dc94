"""
Endpoint steps and the built-in scenarios that sequence them.

An :class:`EndpointStep` is an immutable description of one request in
an iteration: method, path template, and the status predicates that
decide whether the response counts as a success.  Steps are built once
at configuration time and shared read-only by every virtual user.

Success is a per-step decision.  Most endpoints use the generic
``200 <= status < 400`` rule, but some have other "expected" outcomes;
the payment endpoint, for instance, legitimately answers ``400`` for
invalid data and ``402`` for a declined card.  Each step therefore
carries two predicates:

- ``expect`` — did the endpoint behave as expected (feeds the step's
  success/failure counters)?
- ``error_when`` — should this response count toward ``error_rate``?
  Defaults to ``not expect(status)``.

Key Concepts Demonstrated:
- Frozen dataclasses as value objects shared across threads
- Predicate factories instead of hard-coded status ranges
- Path templates rendered per request from a seeded RNG
"""

from __future__ import annotations

import random
import string
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from loadgen.errors import ConfigError

StatusPredicate = Callable[[int], bool]

ALLOWED_METHODS = ("GET", "POST")


# =====================================================================
# Status predicates
# =====================================================================


class status_in_range:
    """Predicate: ``low <= status < high``."""

    def __init__(self, low: int, high: int):
        self.low = low
        self.high = high

    def __call__(self, status: int) -> bool:
        return self.low <= status < self.high

    def __repr__(self) -> str:
        return f"status_in_range({self.low}, {self.high})"


class status_in:
    """Predicate: status is one of an explicit set of codes."""

    def __init__(self, *codes: int):
        if not codes:
            raise ValueError("status_in() needs at least one status code")
        self.codes = frozenset(codes)

    def __call__(self, status: int) -> bool:
        return status in self.codes

    def __repr__(self) -> str:
        return f"status_in({', '.join(str(c) for c in sorted(self.codes))})"


class status_at_least:
    """Predicate: ``status >= code``, or the request never got a status."""

    def __init__(self, code: int):
        self.code = code

    def __call__(self, status: int) -> bool:
        return status == 0 or status >= self.code

    def __repr__(self) -> str:
        return f"status_at_least({self.code})"


DEFAULT_EXPECT = status_in_range(200, 400)


# =====================================================================
# Path templates
# =====================================================================


def _random_amount(rng: random.Random) -> int:
    return rng.randrange(0, 1000)


PLACEHOLDERS: dict[str, Callable[[random.Random], Any]] = {
    "amount": _random_amount,
}


def template_fields(path: str) -> list[str]:
    """Return the ``{placeholder}`` names used in a path template."""
    return [name for _, name, _, _ in string.Formatter().parse(path) if name]


# =====================================================================
# Steps
# =====================================================================


@dataclass(frozen=True)
class EndpointStep:
    """
    One request in an iteration.

    Attributes:
        method: ``"GET"`` or ``"POST"``.
        path: Path template, e.g. ``"/payment?amount={amount}"``.
        name: Label used in logs; defaults to ``"<METHOD> <path>"``.
        expect: Predicate deciding whether the status is an expected outcome.
        error_when: Predicate deciding whether the status counts toward
            ``error_rate``.  ``None`` means ``not expect(status)``.
        success_counter: Counter incremented when ``expect`` holds.
        failure_counter: Counter incremented when ``expect`` fails.
    """

    method: str
    path: str
    name: str = ""
    expect: StatusPredicate = DEFAULT_EXPECT
    error_when: StatusPredicate | None = None
    success_counter: str | None = None
    failure_counter: str | None = None

    def __post_init__(self) -> None:
        method = str(self.method).upper()
        if method not in ALLOWED_METHODS:
            raise ConfigError(f"Unsupported HTTP method {self.method!r}; use one of {ALLOWED_METHODS}")
        if not isinstance(self.path, str) or not self.path.startswith("/"):
            raise ConfigError(f"Step path must start with '/': {self.path!r}")
        unknown = [name for name in template_fields(self.path) if name not in PLACEHOLDERS]
        if unknown:
            raise ConfigError(f"Unknown path placeholder(s) {unknown} in {self.path!r}")
        # Frozen dataclass: normalise through object.__setattr__.
        object.__setattr__(self, "method", method)
        if not self.name:
            object.__setattr__(self, "name", f"{method} {self.path}")

    def is_expected(self, status: int) -> bool:
        return bool(self.expect(status))

    def is_error(self, status: int) -> bool:
        if self.error_when is None:
            return not self.is_expected(status)
        return bool(self.error_when(status))

    def counter_names(self) -> list[str]:
        return [name for name in (self.success_counter, self.failure_counter) if name]


def render_path(step: EndpointStep, rng: random.Random | None = None) -> str:
    """Fill the step's path placeholders with freshly generated values."""
    names = template_fields(step.path)
    if not names:
        return step.path
    rng = rng or random.Random()
    values = {name: PLACEHOLDERS[name](rng) for name in names}
    return step.path.format(**values)


@dataclass(frozen=True)
class Scenario:
    """
    A named, ordered sequence of steps plus the pause between iterations.

    Attributes:
        name: Identifier used on the command line and in config files.
        steps: Steps executed strictly in order on every iteration.
        iteration_sleep: Seconds a virtual user pauses after each iteration.
        description: Short human-readable summary.
    """

    name: str
    steps: tuple[EndpointStep, ...]
    iteration_sleep: float = 0.0
    description: str = ""

    def __post_init__(self) -> None:
        if not self.steps:
            raise ConfigError(f"Scenario {self.name!r} has no steps")
        if self.iteration_sleep < 0:
            raise ConfigError("iteration_sleep must be >= 0")

    def counter_names(self) -> list[str]:
        """Step counters in first-seen order, without duplicates."""
        seen: dict[str, None] = {}
        for step in self.steps:
            for name in step.counter_names():
                seen.setdefault(name, None)
        return list(seen)


# =====================================================================
# Built-in scenarios
# =====================================================================

_PAYMENT_PATH = "/payment?amount={amount}"

DEFAULT_SCENARIO = Scenario(
    name="default",
    description="Walk every demo endpoint once, then POST a payment",
    iteration_sleep=0.5,
    steps=(
        EndpointStep("GET", "/"),
        EndpointStep("GET", "/io_task"),
        EndpointStep("GET", "/cpu_task"),
        EndpointStep("GET", "/random_sleep"),
        EndpointStep("GET", "/random_status"),
        EndpointStep("GET", "/chain"),
        EndpointStep(
            "POST",
            _PAYMENT_PATH,
            name="POST /payment",
            success_counter="payment_success",
            failure_counter="payment_failure",
        ),
    ),
)

# Declines (402) and validation failures (400) are business outcomes
# for the payment endpoint, not service errors; only 5xx and transport
# failures count toward error_rate.
PAYMENT_SCENARIO = Scenario(
    name="payment",
    description="Hammer the payment endpoint; 400/402 are accepted outcomes",
    iteration_sleep=0.1,
    steps=(
        EndpointStep(
            "POST",
            _PAYMENT_PATH,
            name="POST /payment",
            expect=status_in(200, 400, 402),
            error_when=status_at_least(500),
            success_counter="payment_processed",
            failure_counter="payment_unprocessed",
        ),
    ),
)

SCENARIOS: dict[str, Scenario] = {
    DEFAULT_SCENARIO.name: DEFAULT_SCENARIO,
    PAYMENT_SCENARIO.name: PAYMENT_SCENARIO,
}


def get_scenario(name: str) -> Scenario:
    """
    Look up a built-in scenario by name.

    Raises:
        ConfigError: If no scenario has that name.
    """
    try:
        return SCENARIOS[name]
    except KeyError:
        raise ConfigError(
            f"Unknown scenario {name!r}; available: {sorted(SCENARIOS)}"
        ) from None


def step_from_dict(data: Mapping[str, Any]) -> EndpointStep:
    """
    Build a step from a config-file mapping.

    Recognised keys: ``method``, ``path``, ``name``, ``expect_status``
    (list of accepted codes), ``error_min_status`` (responses at or
    above this code, or without a status, count as errors), and
    ``counters`` (mapping with optional ``success`` / ``failure``).

    Raises:
        ConfigError: If required keys are missing or values are malformed.
    """
    if not isinstance(data, Mapping):
        raise ConfigError(f"Step definition must be a mapping, got {type(data).__name__}")
    try:
        method = data["method"]
        path = data["path"]
    except KeyError as exc:
        raise ConfigError(f"Step definition missing key: {exc.args[0]}") from None

    kwargs: dict[str, Any] = {"method": method, "path": path, "name": data.get("name", "")}

    expect_status = data.get("expect_status")
    if expect_status is not None:
        if not isinstance(expect_status, list) or not all(isinstance(c, int) for c in expect_status):
            raise ConfigError("expect_status must be a list of integer status codes")
        if not expect_status:
            raise ConfigError("expect_status must not be empty")
        kwargs["expect"] = status_in(*expect_status)

    error_min_status = data.get("error_min_status")
    if error_min_status is not None:
        if not isinstance(error_min_status, int):
            raise ConfigError("error_min_status must be an integer status code")
        kwargs["error_when"] = status_at_least(error_min_status)

    counters = data.get("counters") or {}
    if not isinstance(counters, Mapping):
        raise ConfigError("counters must be a mapping with 'success' and/or 'failure'")
    kwargs["success_counter"] = counters.get("success")
    kwargs["failure_counter"] = counters.get("failure")

    return EndpointStep(**kwargs)


def scenario_from_config(
    name: str,
    steps: Iterable[Mapping[str, Any]],
    iteration_sleep: float = 0.0,
) -> Scenario:
    """Build a custom :class:`Scenario` from config-file step mappings."""
    return Scenario(
        name=name,
        steps=tuple(step_from_dict(step) for step in steps),
        iteration_sleep=iteration_sleep,
        description="Defined in config file",
    )

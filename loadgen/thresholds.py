"""
Threshold Evaluator — pass/fail conditions over a metric snapshot.

Threshold expressions follow the familiar load-testing shape::

    http_req_duration: p(95) < 2000ms
    error_rate: rate<0.5
    payment_failure: count <= 10

The metric prefix is optional when the metric is supplied separately
(e.g. a YAML mapping of ``metric -> [expressions]``).

Supported aggregations per metric type:

==========  ================================================
Type        Aggregations
==========  ================================================
counter     ``count``, ``value``
rate        ``rate``
trend       ``avg``, ``min``, ``max``, ``med``, ``p(N)``/``pN``
==========  ================================================

Units (``ms`` or ``s``) are accepted on trend bounds only and normalised
to milliseconds, the unit every trend sample is recorded in.

:func:`evaluate` is a pure function: it checks every expression
independently and never short-circuits, so a failing run reports all
of its violations at once.

Key Concepts Demonstrated:
- Small regex grammar with precise, user-facing parse errors
- Setup-time validation against the registered metric types
- Non-short-circuit evaluation for complete reporting
"""

from __future__ import annotations

import math
import operator
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

from loadgen.errors import ThresholdParseError, UnknownMetricError
from loadgen.metrics import (
    CounterSnapshot,
    MetricSink,
    MetricSnapshot,
    MetricType,
    RateSnapshot,
    TrendSnapshot,
)

OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

# Which aggregations make sense for which metric type.
AGGREGATIONS: dict[MetricType, frozenset[str]] = {
    MetricType.COUNTER: frozenset({"count", "value"}),
    MetricType.RATE: frozenset({"rate"}),
    MetricType.TREND: frozenset({"avg", "min", "max", "med", "p"}),
}

UNIT_FACTORS = {"": 1.0, "ms": 1.0, "s": 1000.0}

_METRIC_NAME = r"[A-Za-z_][A-Za-z0-9_.\-]*"

_EXPRESSION_RE = re.compile(
    r"""
    ^\s*
    (?:(?P<metric>""" + _METRIC_NAME + r""")\s*:\s*)?
    (?P<aggregation>count|value|rate|avg|min|max|med|p\(\s*[0-9.]+\s*\)|p[0-9.]+)
    \s*(?P<operator><=|>=|==|!=|<|>)\s*
    (?P<bound>[-+]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][-+]?[0-9]+)?)
    \s*(?P<unit>ms|s)?
    \s*$
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class ThresholdExpr:
    """
    A parsed threshold expression.

    Attributes:
        metric: Metric name the expression applies to.
        aggregation: ``count``, ``value``, ``rate``, ``avg``, ``min``,
            ``max``, ``med`` or ``p`` (percentile).
        operator: One of :data:`OPERATORS`.
        bound: Numeric bound; trend bounds are in milliseconds.
        percentile: Percentile for ``p`` aggregations, else ``None``.
        source: The expression as written, used for reporting.
    """

    metric: str
    aggregation: str
    operator: str
    bound: float
    percentile: float | None = None
    source: str = ""

    @property
    def aggregation_label(self) -> str:
        if self.aggregation == "p":
            return f"p({_format_number(self.percentile)})"
        return self.aggregation

    def __str__(self) -> str:
        if self.source:
            return f"{self.metric}: {self.source}"
        return f"{self.metric}: {self.aggregation_label}{self.operator}{_format_number(self.bound)}"


@dataclass(frozen=True)
class ThresholdResult:
    """Outcome of one expression; ``actual`` is ``None`` if the metric was missing."""

    expr: ThresholdExpr
    actual: float | None
    passed: bool


@dataclass(frozen=True)
class EvaluationResult:
    """Aggregate outcome of :func:`evaluate`."""

    passed: bool
    violations: list[ThresholdExpr] = field(default_factory=list)
    results: list[ThresholdResult] = field(default_factory=list)


def _format_number(value: float | None) -> str:
    if value is None:
        return ""
    return f"{value:g}"


# =====================================================================
# Parsing
# =====================================================================


def parse_threshold(text: str, metric: str | None = None) -> ThresholdExpr:
    """
    Parse one threshold expression.

    Args:
        text: ``"<metric>: <aggregation> <op> <bound>[unit]"`` or, when
            *metric* is given, just ``"<aggregation> <op> <bound>[unit]"``.
        metric: Metric name to use when *text* has no prefix.

    Returns:
        The parsed :class:`ThresholdExpr`.

    Raises:
        ThresholdParseError: If the expression is malformed, names no
            metric, or names two different metrics.
    """
    if not isinstance(text, str) or not text.strip():
        raise ThresholdParseError(str(text), "expression is empty")

    match = _EXPRESSION_RE.match(text)
    if match is None:
        raise ThresholdParseError(
            text, "expected '[metric:] <aggregation> <operator> <number>[ms|s]'"
        )

    name = match.group("metric")
    if name and metric and name != metric:
        raise ThresholdParseError(text, f"expression names {name!r} but is declared under {metric!r}")
    name = name or metric
    if not name:
        raise ThresholdParseError(text, "no metric name given")

    aggregation = match.group("aggregation")
    percentile = None
    if aggregation.startswith("p") and aggregation not in AGGREGATIONS[MetricType.TREND]:
        raw = aggregation[1:].strip("()").strip()
        try:
            percentile = float(raw)
        except ValueError:
            raise ThresholdParseError(text, f"invalid percentile {raw!r}") from None
        if not 0 <= percentile <= 100:
            raise ThresholdParseError(text, "percentile must be between 0 and 100")
        aggregation = "p"

    unit = match.group("unit") or ""
    if unit and aggregation not in AGGREGATIONS[MetricType.TREND]:
        raise ThresholdParseError(text, f"unit {unit!r} only applies to trend aggregations")

    bound = float(match.group("bound")) * UNIT_FACTORS[unit]
    if not math.isfinite(bound):
        raise ThresholdParseError(text, "bound must be a finite number")

    source = text.strip()
    if match.group("metric"):
        source = source.split(":", 1)[1].strip()

    return ThresholdExpr(
        metric=name,
        aggregation=aggregation,
        operator=match.group("operator"),
        bound=bound,
        percentile=percentile,
        source=source,
    )


def parse_thresholds(raw: Iterable[str] | Mapping[str, Iterable[str] | str] | None) -> list[ThresholdExpr]:
    """
    Parse a collection of threshold expressions.

    Accepts either a list of prefixed strings
    (``["error_rate: rate<0.5"]``) or a mapping from metric name to one
    or more unprefixed expressions (``{"error_rate": ["rate<0.5"]}``).
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        return [parse_threshold(raw)]
    if isinstance(raw, Mapping):
        parsed: list[ThresholdExpr] = []
        for metric, expressions in raw.items():
            if isinstance(expressions, str):
                expressions = [expressions]
            if not isinstance(expressions, Iterable):
                raise ThresholdParseError(str(expressions), f"thresholds for {metric!r} must be a list")
            parsed.extend(parse_threshold(expr, metric=str(metric)) for expr in expressions)
        return parsed
    return [parse_threshold(expr) for expr in raw]


def validate_thresholds(thresholds: Iterable[ThresholdExpr], sink: MetricSink) -> None:
    """
    Check every threshold against the metrics registered on *sink*.

    Raises:
        UnknownMetricError: If a threshold names an unregistered metric
            or uses an aggregation that its metric type does not support.
    """
    for expr in thresholds:
        metric_type = sink.metric_type(expr.metric)
        if metric_type is None:
            raise UnknownMetricError(
                f"Threshold {str(expr)!r} references unknown metric {expr.metric!r}; "
                f"registered: {sorted(sink.names())}"
            )
        if expr.aggregation not in AGGREGATIONS[metric_type]:
            allowed = sorted("p(N)" if a == "p" else a for a in AGGREGATIONS[metric_type])
            raise UnknownMetricError(
                f"Threshold {str(expr)!r} uses {expr.aggregation_label!r} on "
                f"{metric_type.value} metric {expr.metric!r}; use one of {allowed}"
            )


# =====================================================================
# Evaluation
# =====================================================================


def aggregate(snapshot: MetricSnapshot, expr: ThresholdExpr) -> float | None:
    """
    Compute the value *expr* compares against, or ``None`` if the
    aggregation does not apply to this snapshot's type.
    """
    if isinstance(snapshot, CounterSnapshot):
        if expr.aggregation in ("count", "value"):
            return float(snapshot.value)
        return None
    if isinstance(snapshot, RateSnapshot):
        if expr.aggregation == "rate":
            return snapshot.rate
        return None
    if isinstance(snapshot, TrendSnapshot):
        if expr.aggregation == "p":
            return snapshot.percentile(expr.percentile)
        if expr.aggregation in ("avg", "min", "max", "med"):
            return float(getattr(snapshot, expr.aggregation))
    return None


def evaluate(
    snapshot: Mapping[str, MetricSnapshot],
    thresholds: Iterable[ThresholdExpr],
) -> EvaluationResult:
    """
    Evaluate every threshold against *snapshot*.

    Each expression is checked independently; a missing metric or an
    inapplicable aggregation counts as a violation rather than an error,
    since evaluation happens after the run and must always produce a
    complete report.

    Returns:
        :class:`EvaluationResult` with ``passed`` true only if no
        expression was violated.
    """
    results: list[ThresholdResult] = []
    violations: list[ThresholdExpr] = []

    for expr in thresholds:
        metric_snapshot = snapshot.get(expr.metric)
        actual = aggregate(metric_snapshot, expr) if metric_snapshot is not None else None
        passed = actual is not None and OPERATORS[expr.operator](actual, expr.bound)
        results.append(ThresholdResult(expr=expr, actual=actual, passed=passed))
        if not passed:
            violations.append(expr)

    return EvaluationResult(passed=not violations, violations=violations, results=results)

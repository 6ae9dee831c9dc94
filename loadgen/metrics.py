"""
Metric Sink — thread-safe metric registry shared by all virtual users.

Every virtual user thread writes into the same :class:`MetricSink`, so
all mutation goes through a single sink-wide lock.  One lock (rather
than one per metric) keeps :meth:`MetricSink.snapshot` consistent across
metrics as well as within each one: a reader never sees ``http_reqs``
incremented while the matching ``http_req_duration`` sample is missing.

Three metric types are supported:

- :class:`Counter` — monotonic integer total.
- :class:`Rate` — fraction of boolean observations that were ``True``.
- :class:`Trend` — raw numeric samples (latencies, in ms) aggregated
  into avg / min / max / median / percentiles on snapshot.

Key Concepts Demonstrated:
- Handles that share their owner's lock instead of owning their own
- Immutable snapshot value objects for lock-free reading after the fact
- Nearest-rank percentile aggregation over sorted samples
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from enum import Enum

from loadgen.errors import DuplicateMetricError


class MetricType(str, Enum):
    """Enumeration of supported metric types."""

    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"


# =====================================================================
# Snapshots
# =====================================================================


@dataclass(frozen=True)
class CounterSnapshot:
    """Point-in-time value of a :class:`Counter`."""

    value: int

    metric_type = MetricType.COUNTER

    def to_dict(self) -> dict[str, object]:
        return {"type": self.metric_type.value, "value": self.value}


@dataclass(frozen=True)
class RateSnapshot:
    """
    Point-in-time value of a :class:`Rate`.

    Attributes:
        passes: Number of ``True`` observations (the numerator).
        total: Number of observations (the denominator).
    """

    passes: int
    total: int

    metric_type = MetricType.RATE

    @property
    def fails(self) -> int:
        return self.total - self.passes

    @property
    def rate(self) -> float:
        """``passes / total``, or ``0.0`` when nothing was observed."""
        if self.total == 0:
            return 0.0
        return self.passes / self.total

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.metric_type.value,
            "rate": self.rate,
            "passes": self.passes,
            "fails": self.fails,
            "total": self.total,
        }


@dataclass(frozen=True)
class TrendSnapshot:
    """
    Point-in-time samples of a :class:`Trend`, sorted ascending.

    All aggregations return ``0.0`` for an empty trend so that report
    rendering never has to special-case a metric nobody wrote to.
    """

    values: tuple[float, ...]

    metric_type = MetricType.TREND

    @property
    def count(self) -> int:
        return len(self.values)

    @property
    def min(self) -> float:
        return self.values[0] if self.values else 0.0

    @property
    def max(self) -> float:
        return self.values[-1] if self.values else 0.0

    @property
    def avg(self) -> float:
        if not self.values:
            return 0.0
        return math.fsum(self.values) / len(self.values)

    @property
    def med(self) -> float:
        return self.percentile(50)

    def percentile(self, p: float) -> float:
        """
        Return the *p*-th percentile using the nearest-rank method.

        Args:
            p: Percentile in the closed range ``[0, 100]``.

        Raises:
            ValueError: If *p* is outside ``[0, 100]``.
        """
        if not 0 <= p <= 100:
            raise ValueError(f"Percentile must be between 0 and 100, got {p}")
        if not self.values:
            return 0.0
        if p == 0:
            return self.values[0]
        rank = math.ceil(p / 100 * len(self.values))
        return self.values[rank - 1]

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.metric_type.value,
            "count": self.count,
            "avg": self.avg,
            "min": self.min,
            "med": self.med,
            "max": self.max,
            "p(90)": self.percentile(90),
            "p(95)": self.percentile(95),
        }


MetricSnapshot = CounterSnapshot | RateSnapshot | TrendSnapshot


# =====================================================================
# Metric handles
# =====================================================================


class _Metric:
    """Common state for metric handles: a name and the owning sink's lock."""

    metric_type: MetricType

    def __init__(self, name: str, lock: threading.Lock):
        self.name = name
        self._lock = lock

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class Counter(_Metric):
    """Monotonic integer total."""

    metric_type = MetricType.COUNTER

    def __init__(self, name: str, lock: threading.Lock):
        super().__init__(name, lock)
        self._value = 0

    def add(self, n: int = 1) -> None:
        """
        Atomically increment the total by *n*.

        Raises:
            ValueError: If *n* is not a non-negative integer.
        """
        if isinstance(n, bool) or not isinstance(n, int) or n < 0:
            raise ValueError(f"Counter increment must be an integer >= 0, got {n!r}")
        with self._lock:
            self._value += n

    def _snapshot(self) -> CounterSnapshot:
        return CounterSnapshot(value=self._value)


class Rate(_Metric):
    """Ratio of ``True`` observations over all observations."""

    metric_type = MetricType.RATE

    def __init__(self, name: str, lock: threading.Lock):
        super().__init__(name, lock)
        self._passes = 0
        self._total = 0

    def add(self, observation: bool) -> None:
        """Atomically record one boolean observation."""
        with self._lock:
            self._total += 1
            if observation:
                self._passes += 1

    def _snapshot(self) -> RateSnapshot:
        return RateSnapshot(passes=self._passes, total=self._total)


class Trend(_Metric):
    """Collection of numeric samples, aggregated on snapshot."""

    metric_type = MetricType.TREND

    def __init__(self, name: str, lock: threading.Lock):
        super().__init__(name, lock)
        self._values: list[float] = []

    def add(self, value: float) -> None:
        """Atomically record one sample."""
        sample = float(value)
        with self._lock:
            self._values.append(sample)

    def _snapshot(self) -> TrendSnapshot:
        return TrendSnapshot(values=tuple(sorted(self._values)))


# =====================================================================
# Sink
# =====================================================================


class MetricSink:
    """
    Registry of named metrics with consistent point-in-time snapshots.

    A sink is created once per run and handed to every virtual user;
    nothing about it is global.  Registration normally happens during
    setup, before any virtual user starts, but it is lock-protected so
    late registration is safe too.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._metrics: dict[str, _Metric] = {}

    def _register(self, name: str, metric_class: type[_Metric]) -> _Metric:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Metric name must be a non-empty string")
        with self._lock:
            if name in self._metrics:
                raise DuplicateMetricError(name)
            metric = metric_class(name, self._lock)
            self._metrics[name] = metric
        return metric

    def register_counter(self, name: str) -> Counter:
        """Register and return a new :class:`Counter`."""
        return self._register(name, Counter)

    def register_rate(self, name: str) -> Rate:
        """Register and return a new :class:`Rate`."""
        return self._register(name, Rate)

    def register_trend(self, name: str) -> Trend:
        """Register and return a new :class:`Trend`."""
        return self._register(name, Trend)

    def get(self, name: str) -> _Metric | None:
        with self._lock:
            return self._metrics.get(name)

    def metric_type(self, name: str) -> MetricType | None:
        metric = self.get(name)
        return metric.metric_type if metric is not None else None

    def names(self) -> list[str]:
        """Return registered metric names in registration order."""
        with self._lock:
            return list(self._metrics)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._metrics

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)

    def snapshot(self) -> dict[str, MetricSnapshot]:
        """
        Return an immutable view of every metric at a single instant.

        The whole read happens under the sink-wide lock, so no ``add``
        call is ever half-visible and no two metrics are read at
        different moments.
        """
        with self._lock:
            return {name: metric._snapshot() for name, metric in self._metrics.items()}

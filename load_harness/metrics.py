"""
Run-scoped metrics registry.

Holds every named metric produced during a run.  The registry is a
plain object created per run and passed explicitly to the components
that write to it (executors, scheduler) or read from it (threshold
evaluator, reporter); there is no module-level instance.

Four metric kinds are supported:

- **Trend** — ordered samples; aggregated as avg/min/max/med/p(N)
- **Counter** — monotonic sum; aggregated as count or per-second rate
- **Rate** — fraction of truthy observations
- **Gauge** — last value written, plus the min/max seen

Key Concepts Demonstrated:
- Lock-free hot path for Trend samples (``deque.append`` is atomic)
- Per-metric locks instead of a global lock for counters and gauges
- On-demand aggregation so recording never sorts or allocates lists
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Callable

from load_harness.exceptions import ConfigurationError
from load_harness.models import MetricSample


class MetricType(Enum):
    """Kinds of metrics the registry can hold."""

    TREND = "trend"
    COUNTER = "counter"
    RATE = "rate"
    GAUGE = "gauge"


# Aggregators each kind understands; ``p(N)`` is handled separately for trends.
SUPPORTED_AGGREGATORS: dict[MetricType, frozenset[str]] = {
    MetricType.TREND: frozenset({"avg", "min", "max", "med", "count"}),
    MetricType.COUNTER: frozenset({"count", "rate"}),
    MetricType.RATE: frozenset({"rate", "count"}),
    MetricType.GAUGE: frozenset({"value", "min", "max"}),
}

# Built-in metric names emitted by the executor and scheduler.
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQS = "http_reqs"
HTTP_REQ_FAILED = "http_req_failed"
ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"
VUS = "vus"
VUS_MAX = "vus_max"

BUILTIN_METRICS: dict[str, MetricType] = {
    HTTP_REQ_DURATION: MetricType.TREND,
    HTTP_REQS: MetricType.COUNTER,
    HTTP_REQ_FAILED: MetricType.RATE,
    ITERATIONS: MetricType.COUNTER,
    ITERATION_DURATION: MetricType.TREND,
    VUS: MetricType.GAUGE,
    VUS_MAX: MetricType.GAUGE,
}


def percentile(sorted_values: list[float], pct: float) -> float:
    """
    Percentile with linear interpolation between the closest ranks.

    Args:
        sorted_values: Non-empty, ascending list of samples.
        pct: Percentile in ``[0, 100]``.
    """
    if not sorted_values:
        raise ValueError("percentile of an empty sample set is undefined")
    if len(sorted_values) == 1:
        return sorted_values[0]

    rank = (len(sorted_values) - 1) * (pct / 100.0)
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return sorted_values[int(rank)]
    weight = rank - lower
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * weight


class Metric:
    """Common interface for all metric kinds."""

    kind: MetricType

    def __init__(self, name: str):
        self.name = name

    @property
    def has_samples(self) -> bool:
        raise NotImplementedError

    def aggregate(self, aggregator: str, elapsed: float | None = None) -> float:
        raise NotImplementedError

    def summary(self) -> dict[str, Any]:
        raise NotImplementedError


class Trend(Metric):
    """Ordered collection of samples supporting percentile aggregation."""

    kind = MetricType.TREND

    def __init__(self, name: str, clock: Callable[[], float] = time.time):
        super().__init__(name)
        self._samples: deque[MetricSample] = deque()
        self._clock = clock

    def add(self, value: float) -> None:
        self._samples.append(MetricSample(self.name, float(value), self._clock()))

    @property
    def has_samples(self) -> bool:
        return bool(self._samples)

    def samples(self) -> list[MetricSample]:
        """Snapshot of the samples recorded so far, in append order."""
        return list(self._samples)

    def values(self) -> list[float]:
        return [sample.value for sample in list(self._samples)]

    def __len__(self) -> int:
        return len(self._samples)

    def aggregate(self, aggregator: str, elapsed: float | None = None) -> float:
        values = sorted(self.values())
        if not values:
            raise ValueError(f"Trend {self.name!r} has no samples")

        if aggregator.startswith("p("):
            return percentile(values, float(aggregator[2:-1]))
        if aggregator == "avg":
            return sum(values) / len(values)
        if aggregator == "min":
            return values[0]
        if aggregator == "max":
            return values[-1]
        if aggregator == "med":
            return percentile(values, 50)
        if aggregator == "count":
            return float(len(values))
        raise ValueError(f"Unsupported trend aggregator: {aggregator}")

    def summary(self) -> dict[str, Any]:
        values = sorted(self.values())
        if not values:
            return {"count": 0}
        return {
            "count": len(values),
            "avg": sum(values) / len(values),
            "min": values[0],
            "med": percentile(values, 50),
            "max": values[-1],
            "p(90)": percentile(values, 90),
            "p(95)": percentile(values, 95),
        }


class Counter(Metric):
    """Monotonic sum."""

    kind = MetricType.COUNTER

    def __init__(self, name: str):
        super().__init__(name)
        self._lock = threading.Lock()
        self._total = 0.0
        self._observations = 0

    def add(self, value: float = 1.0) -> None:
        if value < 0:
            raise ValueError(f"Counter {self.name!r} cannot decrease (got {value})")
        with self._lock:
            self._total += value
            self._observations += 1

    @property
    def total(self) -> float:
        return self._total

    @property
    def has_samples(self) -> bool:
        return self._observations > 0

    def aggregate(self, aggregator: str, elapsed: float | None = None) -> float:
        if aggregator == "count":
            return self._total
        if aggregator == "rate":
            if not elapsed:
                raise ValueError(f"Counter {self.name!r} rate needs a positive elapsed time")
            return self._total / elapsed
        raise ValueError(f"Unsupported counter aggregator: {aggregator}")

    def summary(self) -> dict[str, Any]:
        return {"count": self._total}


class Rate(Metric):
    """Fraction of observations that were truthy."""

    kind = MetricType.RATE

    def __init__(self, name: str):
        super().__init__(name)
        self._lock = threading.Lock()
        self._trues = 0
        self._total = 0

    def add(self, observation: bool) -> None:
        with self._lock:
            self._total += 1
            if observation:
                self._trues += 1

    @property
    def has_samples(self) -> bool:
        return self._total > 0

    @property
    def total(self) -> int:
        return self._total

    def aggregate(self, aggregator: str, elapsed: float | None = None) -> float:
        if self._total == 0:
            raise ValueError(f"Rate {self.name!r} has no observations")
        if aggregator == "rate":
            return self._trues / self._total
        if aggregator == "count":
            return float(self._trues)
        raise ValueError(f"Unsupported rate aggregator: {aggregator}")

    def summary(self) -> dict[str, Any]:
        rate = self._trues / self._total if self._total else 0.0
        return {"rate": rate, "passes": self._trues, "total": self._total}


class Gauge(Metric):
    """Last value written, with min/max tracking."""

    kind = MetricType.GAUGE

    def __init__(self, name: str):
        super().__init__(name)
        self._lock = threading.Lock()
        self._value: float | None = None
        self._min = math.inf
        self._max = -math.inf

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)
            self._min = min(self._min, self._value)
            self._max = max(self._max, self._value)

    @property
    def value(self) -> float | None:
        return self._value

    @property
    def has_samples(self) -> bool:
        return self._value is not None

    def aggregate(self, aggregator: str, elapsed: float | None = None) -> float:
        if self._value is None:
            raise ValueError(f"Gauge {self.name!r} was never set")
        if aggregator == "value":
            return self._value
        if aggregator == "min":
            return self._min
        if aggregator == "max":
            return self._max
        raise ValueError(f"Unsupported gauge aggregator: {aggregator}")

    def summary(self) -> dict[str, Any]:
        if self._value is None:
            return {"value": None}
        return {"value": self._value, "min": self._min, "max": self._max}


_METRIC_CLASSES: dict[MetricType, type[Metric]] = {
    MetricType.TREND: Trend,
    MetricType.COUNTER: Counter,
    MetricType.RATE: Rate,
    MetricType.GAUGE: Gauge,
}


class MetricsRegistry:
    """
    Run-scoped registry of named metrics.

    Only metric *creation* takes the registry lock; once a metric exists,
    recording goes straight to the metric object.

    Args:
        clock: Time source used for Trend sample timestamps and the
            elapsed time fed to per-second counter rates.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.started_at = clock()

    def _get_or_create(self, name: str, kind: MetricType) -> Metric:
        metric = self._metrics.get(name)
        if metric is None:
            with self._lock:
                metric = self._metrics.get(name)
                if metric is None:
                    if kind is MetricType.TREND:
                        metric = Trend(name, clock=self._clock)
                    else:
                        metric = _METRIC_CLASSES[kind](name)
                    self._metrics[name] = metric
        if metric.kind is not kind:
            raise ConfigurationError(
                f"Metric {name!r} already declared as {metric.kind.value}, not {kind.value}"
            )
        return metric

    def declare(self, name: str, kind: MetricType) -> Metric:
        """Create (or fetch) a metric so thresholds can be validated before the run."""
        return self._get_or_create(name, kind)

    def declare_builtins(self) -> None:
        for name, kind in BUILTIN_METRICS.items():
            self.declare(name, kind)

    def trend(self, name: str) -> Trend:
        return self._get_or_create(name, MetricType.TREND)  # type: ignore[return-value]

    def counter(self, name: str) -> Counter:
        return self._get_or_create(name, MetricType.COUNTER)  # type: ignore[return-value]

    def rate(self, name: str) -> Rate:
        return self._get_or_create(name, MetricType.RATE)  # type: ignore[return-value]

    def gauge(self, name: str) -> Gauge:
        return self._get_or_create(name, MetricType.GAUGE)  # type: ignore[return-value]

    def get(self, name: str) -> Metric | None:
        return self._metrics.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._metrics)

    def elapsed(self) -> float:
        return self._clock() - self.started_at

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Summaries of every metric, keyed by name."""
        return {name: self._metrics[name].summary() for name in self.names()}

"""
Data model for the load harness.

Every configuration object here is an immutable dataclass validated on
construction, so a :class:`RunConfig` that exists is a RunConfig that
can be executed.  Runtime objects (:class:`VirtualUser`) are mutable but
owned by exactly one VU thread.

Key Concepts Demonstrated:
- Frozen dataclasses for configuration that must not change mid-run
- Enum-based state machine for the virtual-user lifecycle
- Read-only mappings (``MappingProxyType``) for shared lookup tables
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping

from load_harness.exceptions import ConfigurationError


class VUState(Enum):
    """Lifecycle states of a virtual user."""

    SPAWNING = "spawning"
    RUNNING = "running"
    DRAINING = "draining"
    RETIRED = "retired"


class Comparator(Enum):
    """Comparison operators accepted in threshold expressions."""

    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    EQ = "=="
    NEQ = "!="

    def apply(self, observed: float, bound: float) -> bool:
        """Return ``True`` when ``observed <op> bound`` holds."""
        return _COMPARATOR_FUNCS[self](observed, bound)


_COMPARATOR_FUNCS: dict[Comparator, Callable[[float, float], bool]] = {
    Comparator.LT: operator.lt,
    Comparator.LTE: operator.le,
    Comparator.GT: operator.gt,
    Comparator.GTE: operator.ge,
    Comparator.EQ: operator.eq,
    Comparator.NEQ: operator.ne,
}

_PERCENTILE_RE = re.compile(r"^p\((\d+(?:\.\d+)?)\)$")


@dataclass(frozen=True)
class Stage:
    """
    One segment of the target-concurrency curve.

    Attributes:
        duration: Length of the stage in seconds.
        target: Number of VUs the scheduler ramps towards, reached
            exactly at the end of the stage.
    """

    duration: float
    target: int

    def __post_init__(self) -> None:
        if self.duration < 0:
            raise ConfigurationError(f"Stage duration must be >= 0, got {self.duration}")
        if self.target < 0:
            raise ConfigurationError(f"Stage target must be >= 0, got {self.target}")


@dataclass(frozen=True)
class ThresholdExpr:
    """
    A single pass/fail assertion over an aggregated metric value.

    Attributes:
        metric: Name of the metric in the registry.
        aggregator: ``avg``, ``min``, ``max``, ``med``, ``p(N)``,
            ``count``, ``rate`` or ``value``.
        comparator: Comparison applied as ``aggregate <comparator> value``.
        value: The bound.
        abort_on_fail: Evaluate at periodic checkpoints and stop the run
            early when violated.
        source: Original expression text, kept for reporting.
    """

    metric: str
    aggregator: str
    comparator: Comparator
    value: float
    abort_on_fail: bool = False
    source: str = ""

    @property
    def percentile(self) -> float | None:
        """Percentile in ``[0, 100]`` for ``p(N)`` aggregators, else ``None``."""
        match = _PERCENTILE_RE.match(self.aggregator)
        if match is None:
            return None
        return float(match.group(1))

    def describe(self) -> str:
        """Human-readable ``metric: expression`` label."""
        expression = self.source or f"{self.aggregator}{self.comparator.value}{self.value:g}"
        return f"{self.metric}: {expression}"


@dataclass(frozen=True)
class RunConfig:
    """
    Everything the scheduler needs to execute a run.

    Immutable once built: ``stages`` is stored as a tuple and
    ``thresholds`` as a read-only mapping of metric name to a tuple of
    expressions.
    """

    stages: tuple[Stage, ...]
    thresholds: Mapping[str, tuple[ThresholdExpr, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    initial_vus: int = 0
    think_time: float = 1.0
    grace_period: float = 30.0

    def __post_init__(self) -> None:
        stages = tuple(self.stages)
        if not stages:
            raise ConfigurationError("Run configuration needs at least one stage")
        if self.initial_vus < 0:
            raise ConfigurationError(f"initial_vus must be >= 0, got {self.initial_vus}")
        if self.think_time < 0:
            raise ConfigurationError(f"think_time must be >= 0, got {self.think_time}")
        if self.grace_period < 0:
            raise ConfigurationError(f"grace_period must be >= 0, got {self.grace_period}")

        frozen_thresholds = MappingProxyType(
            {name: tuple(exprs) for name, exprs in dict(self.thresholds).items()}
        )
        # Frozen dataclass: normalised values are written through object.__setattr__.
        object.__setattr__(self, "stages", stages)
        object.__setattr__(self, "thresholds", frozen_thresholds)

    @property
    def total_duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    @property
    def max_target(self) -> int:
        return max([self.initial_vus, *(stage.target for stage in self.stages)])

    def all_thresholds(self) -> list[ThresholdExpr]:
        """Flatten the thresholds mapping into a single ordered list."""
        return [expr for exprs in self.thresholds.values() for expr in exprs]


@dataclass
class VirtualUser:
    """
    One simulated client.

    ``dataset_index`` is fixed at creation from the VU id so that a given
    id always maps to the same dataset record across runs.
    """

    id: int
    dataset_index: int
    session_token: str | None = None
    state: VUState = VUState.SPAWNING

    @classmethod
    def create(cls, vu_id: int, dataset_length: int) -> "VirtualUser":
        if vu_id < 1:
            raise ValueError(f"VU ids start at 1, got {vu_id}")
        if dataset_length < 1:
            raise ValueError("Dataset must contain at least one record")
        return cls(id=vu_id, dataset_index=(vu_id - 1) % dataset_length)


@dataclass(frozen=True, slots=True)
class MetricSample:
    """A single observation appended to a Trend metric."""

    metric: str
    value: float
    timestamp: float


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool


@dataclass(frozen=True)
class CheckSummary:
    """Aggregated pass/total counts for one named check."""

    passed: int
    total: int

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def pass_rate(self) -> float:
        return self.passed / self.total if self.total else 0.0


@dataclass(frozen=True)
class IterationOutcome:
    """What happened during one pass through the workload's steps."""

    vu_id: int
    iteration: int
    completed_steps: int
    failed_steps: int
    skipped_steps: int
    duration: float

    @property
    def succeeded(self) -> bool:
        return self.failed_steps == 0 and self.skipped_steps == 0


@dataclass(frozen=True)
class ThresholdResult:
    """Outcome of evaluating one :class:`ThresholdExpr`."""

    expr: ThresholdExpr
    observed: float | None
    passed: bool


@dataclass(frozen=True)
class RunResult:
    """
    Final, immutable outcome of a run.

    The run fails when ``threshold_violations`` is non-empty or when an
    ``abort_on_fail`` threshold stopped it early.  Check results are
    informational and never influence ``passed``.
    """

    threshold_violations: frozenset[ThresholdExpr]
    threshold_results: tuple[ThresholdResult, ...]
    check_summary: Mapping[str, CheckSummary]
    aborted: bool = False
    duration: float = 0.0
    max_active_vus: int = 0
    interrupted_vus: int = 0

    @property
    def passed(self) -> bool:
        return not self.threshold_violations and not self.aborted

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dictionary."""
        return {
            "passed": self.passed,
            "aborted": self.aborted,
            "duration": self.duration,
            "max_active_vus": self.max_active_vus,
            "interrupted_vus": self.interrupted_vus,
            "thresholds": [
                {
                    "metric": result.expr.metric,
                    "expression": result.expr.describe(),
                    "observed": result.observed,
                    "passed": result.passed,
                }
                for result in self.threshold_results
            ],
            "checks": {
                name: {"passed": summary.passed, "total": summary.total}
                for name, summary in self.check_summary.items()
            },
        }

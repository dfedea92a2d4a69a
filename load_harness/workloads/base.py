"""
Workload building blocks.

A :class:`Workload` is an ordered list of :class:`Step` descriptors that
one virtual user executes per iteration.  Steps are declarative: they
say which request to build, which values of earlier steps they need,
which values they extract for later steps, and which named checks run
against their response.  The executor owns all the mechanics.

Key Concepts Demonstrated:
- Declarative step descriptors instead of per-scenario subclasses
- Explicit data dependencies (``requires`` / ``extract``) between steps
- Fail-fast validation of check names before the run starts
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping

from load_harness.checks import CheckRegistry
from load_harness.dataset import DatasetRecord
from load_harness.exceptions import ConfigurationError
from load_harness.metrics import MetricType
from load_harness.models import VirtualUser
from load_harness.transport import Request


@dataclass
class StepContext:
    """
    Per-iteration data visible to step builders.

    Attributes:
        vu: The virtual user running the iteration.
        record: The dataset record partitioned to this VU.
        values: Values extracted by earlier steps of this iteration.
        vu_data: Per-VU state created once by ``Workload.init_vu``.
    """

    vu: VirtualUser
    record: DatasetRecord
    values: dict[str, Any] = field(default_factory=dict)
    vu_data: Mapping[str, Any] = field(default_factory=dict)


BodyBuilder = Callable[[StepContext], Any]
HeaderBuilder = Callable[[StepContext], Mapping[str, str]]


@dataclass(frozen=True)
class Step:
    """
    One request in a workload iteration.

    Attributes:
        name: Step name; also names the ``<name>_duration`` Trend.
        method: HTTP method.
        path: Path appended to the base URL.
        build_body: Returns the JSON body for this iteration.
        build_headers: Returns extra request headers.
        requires: Context keys that earlier steps must have produced.
            When any is missing the step is skipped and its checks fail.
        extract: Maps context keys to dotted JSON paths in the response.
        checks: Maps check labels to registered predicate names.
        metric: Optional custom Trend receiving this step's duration.
    """

    name: str
    method: str
    path: str
    build_body: BodyBuilder | None = None
    build_headers: HeaderBuilder | None = None
    requires: tuple[str, ...] = ()
    extract: Mapping[str, str] = field(default_factory=dict)
    checks: Mapping[str, str] = field(default_factory=dict)
    metric: str | None = None

    @property
    def duration_metric(self) -> str:
        return f"{self.name}_duration"

    def missing_requirements(self, context: StepContext) -> list[str]:
        return [key for key in self.requires if context.values.get(key) in (None, "")]

    def build_request(self, context: StepContext) -> Request:
        body = self.build_body(context) if self.build_body else None
        headers = dict(self.build_headers(context)) if self.build_headers else {}
        return Request(method=self.method, path=self.path, body=body, headers=headers)


@dataclass(frozen=True)
class Workload:
    """
    Ordered steps plus the metrics and per-VU setup they need.

    Attributes:
        name: Identifier used by the CLI (``--workload``).
        steps: Steps executed in order on every iteration.
        custom_metrics: Extra metrics to declare before the run.
        required_fields: Dataset fields the steps read.
        init_vu: Builds per-VU state once, when the VU is spawned.
    """

    name: str
    steps: tuple[Step, ...]
    custom_metrics: Mapping[str, MetricType] = field(
        default_factory=lambda: MappingProxyType({})
    )
    required_fields: tuple[str, ...] = ()
    init_vu: Callable[[VirtualUser], Mapping[str, Any]] | None = None

    def __post_init__(self) -> None:
        if not self.steps:
            raise ConfigurationError(f"Workload {self.name!r} has no steps")
        names = [step.name for step in self.steps]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Workload {self.name!r} has duplicate step names")
        object.__setattr__(self, "steps", tuple(self.steps))

    def metric_declarations(self) -> dict[str, MetricType]:
        """Every metric this workload writes besides the built-ins."""
        declared = {step.duration_metric: MetricType.TREND for step in self.steps}
        declared.update({step.metric: MetricType.TREND for step in self.steps if step.metric})
        declared.update(self.custom_metrics)
        return declared

    def validate(self, check_registry: CheckRegistry) -> None:
        """Raise ConfigurationError if a step names an unregistered check predicate."""
        for step in self.steps:
            for label, predicate_name in step.checks.items():
                if predicate_name not in check_registry:
                    raise ConfigurationError(
                        f"Step {step.name!r} check {label!r} uses unknown predicate "
                        f"{predicate_name!r}"
                    )

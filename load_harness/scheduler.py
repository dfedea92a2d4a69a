"""
Stage scheduler.

Turns a declarative list of ``(duration, target)`` stages into a live
population of virtual users.  The desired concurrency is a
piecewise-linear curve over elapsed run time; at every control tick the
scheduler compares the live population to that curve and either spawns
VUs or asks the highest-numbered ones to stop after their current
iteration.

Population rules:

- New VUs take the lowest id not currently alive, so low ids (and the
  dataset records partitioned to them) stay stable across the run.
- Ramp-down retires the highest running ids first and never cancels an
  in-flight request; a draining VU still counts towards the live
  population until it leaves its loop, so the population never exceeds
  the largest target.
- When the target rises again while VUs are still draining, the
  lowest-numbered draining VUs are put back to work before any new VU
  is spawned.
- When the last stage ends every VU is asked to stop and the scheduler
  waits up to the grace period for in-flight iterations.

Key Concepts Demonstrated:
- Tick-based control loop against a pure target function
- Cooperative cancellation with one ``threading.Event`` per VU
- Early abort driven by ``abort_on_fail`` thresholds at checkpoints
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from load_harness.checks import CheckEngine, CheckRegistry, default_checks
from load_harness.dataset import Dataset
from load_harness.executor import VirtualUserExecutor
from load_harness.metrics import VUS, VUS_MAX, MetricsRegistry
from load_harness.models import RunConfig, RunResult, Stage, ThresholdExpr, VirtualUser, VUState
from load_harness.thresholds import ThresholdEvaluator
from load_harness.transport import Transport
from load_harness.workloads.base import Workload

logger = logging.getLogger(__name__)


def target_at(stages: Sequence[Stage], elapsed: float, initial: int = 0) -> int:
    """
    Desired concurrency after ``elapsed`` seconds.

    Each stage ramps linearly from the previous stage's target (or
    ``initial`` for the first stage) to its own target.  Zero-duration
    stages are ignored.  After the last stage the final target holds.
    """
    elapsed = max(0.0, elapsed)
    start_vus = initial
    stage_start = 0.0
    for stage in stages:
        if stage.duration == 0:
            continue
        stage_end = stage_start + stage.duration
        if elapsed < stage_end:
            fraction = (elapsed - stage_start) / stage.duration
            return int(math.floor(start_vus + (stage.target - start_vus) * fraction + 0.5))
        start_vus = stage.target
        stage_start = stage_end
    return start_vus


def stage_index_at(stages: Sequence[Stage], elapsed: float) -> int:
    """Index of the stage active at ``elapsed`` (the last one once the run is over)."""
    boundary = 0.0
    for index, stage in enumerate(stages):
        boundary += stage.duration
        if elapsed < boundary:
            return index
    return len(stages) - 1


@dataclass
class _VUHandle:
    vu: VirtualUser
    executor: VirtualUserExecutor
    thread: threading.Thread
    stop_event: threading.Event

    @property
    def alive(self) -> bool:
        return self.thread.is_alive() and self.vu.state is not VUState.RETIRED

    @property
    def running(self) -> bool:
        return self.alive and self.vu.state in (VUState.SPAWNING, VUState.RUNNING)

    @property
    def draining(self) -> bool:
        return self.alive and self.vu.state is VUState.DRAINING


@dataclass(frozen=True)
class TickSample:
    """Population snapshot taken at one control tick."""

    elapsed: float
    desired: int
    active: int
    running: int


class StageScheduler:
    """
    Top-level control loop of a run.

    Args:
        dataset: Shared read-only dataset.
        transport_factory: Returns a new transport for each spawned VU.
        registry: Run-scoped metrics registry.
        checks: Run-scoped check engine.
        base_url: Base URL of the API under test.
        tick_interval: Seconds between control decisions.
        abort_check_interval: Seconds between ``abort_on_fail`` checkpoints.
        check_registry: Named predicates available to workloads.
        clock: Monotonic time source, in seconds.
        sleep: Sleep function used between ticks.
    """

    def __init__(
        self,
        dataset: Dataset,
        transport_factory: Callable[[], Transport],
        registry: MetricsRegistry,
        checks: CheckEngine,
        base_url: str,
        tick_interval: float = 0.1,
        abort_check_interval: float = 1.0,
        check_registry: CheckRegistry = default_checks,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if tick_interval <= 0:
            raise ValueError("tick_interval must be > 0")
        self.dataset = dataset
        self.transport_factory = transport_factory
        self.registry = registry
        self.checks = checks
        self.base_url = base_url
        self.tick_interval = tick_interval
        self.abort_check_interval = abort_check_interval
        self.check_registry = check_registry
        self._clock = clock
        self._sleep = sleep

        self._handles: dict[int, _VUHandle] = {}
        self.timeline: list[TickSample] = []
        self.retirement_order: list[int] = []
        self.revived_order: list[int] = []
        self.spawn_order: list[int] = []
        self.max_active = 0

    # ------------------------------------------------------------------
    # Population management
    # ------------------------------------------------------------------

    def _reap(self) -> None:
        """Forget VUs that have left their loop."""
        for vu_id in [vu_id for vu_id, handle in self._handles.items() if not handle.alive]:
            self._handles.pop(vu_id)

    def active_count(self) -> int:
        """VUs still inside their loop, running or draining."""
        return sum(1 for handle in self._handles.values() if handle.alive)

    def active_ids(self) -> list[int]:
        return sorted(vu_id for vu_id, handle in self._handles.items() if handle.alive)

    def running_ids(self) -> list[int]:
        return sorted(vu_id for vu_id, handle in self._handles.items() if handle.running)

    def draining_ids(self) -> list[int]:
        return sorted(vu_id for vu_id, handle in self._handles.items() if handle.draining)

    def _next_free_id(self) -> int:
        vu_id = 1
        while vu_id in self._handles:
            vu_id += 1
        return vu_id

    def _spawn(self, workload: Workload, think_time: float) -> None:
        vu_id = self._next_free_id()
        vu = VirtualUser.create(vu_id, len(self.dataset))
        executor = VirtualUserExecutor(
            vu=vu,
            workload=workload,
            dataset=self.dataset,
            transport=self.transport_factory(),
            registry=self.registry,
            checks=self.checks,
            base_url=self.base_url,
            think_time=think_time,
            check_registry=self.check_registry,
        )
        stop_event = threading.Event()
        thread = threading.Thread(
            target=executor.run, args=(stop_event,), name=f"vu-{vu_id}", daemon=True
        )
        self._handles[vu_id] = _VUHandle(vu, executor, thread, stop_event)
        self.spawn_order.append(vu_id)
        thread.start()

    def _retire(self, handle: _VUHandle) -> None:
        if handle.executor.request_stop(handle.stop_event):
            self.retirement_order.append(handle.vu.id)

    def _revive(self, handle: _VUHandle) -> bool:
        if not handle.executor.cancel_stop(handle.stop_event):
            return False
        # Drop the most recent retirement of this VU.
        for index in range(len(self.retirement_order) - 1, -1, -1):
            if self.retirement_order[index] == handle.vu.id:
                del self.retirement_order[index]
                break
        self.revived_order.append(handle.vu.id)
        return True

    def reconcile(self, desired: int, workload: Workload, think_time: float) -> None:
        """
        Move the live population one step towards ``desired``.

        Surplus running VUs are retired highest id first.  A shortfall is
        filled by reviving draining VUs lowest id first, then by spawning
        new ones; spawning never takes the active count past ``desired``.
        """
        self._reap()
        running = self.running_ids()

        if len(running) > desired:
            for vu_id in reversed(running[desired:]):
                self._retire(self._handles[vu_id])
        elif len(running) < desired:
            needed = desired - len(running)
            for vu_id in self.draining_ids():
                if needed == 0:
                    break
                if self._revive(self._handles[vu_id]):
                    needed -= 1
            for _ in range(min(needed, desired - self.active_count())):
                self._spawn(workload, think_time)

        self.max_active = max(self.max_active, self.active_count())

    def drain(self, grace_period: float) -> int:
        """Stop every VU and wait up to ``grace_period``; return how many are still busy."""
        for vu_id in reversed(self.running_ids()):
            self._retire(self._handles[vu_id])

        deadline = time.monotonic() + grace_period
        for handle in self._handles.values():
            handle.thread.join(max(0.0, deadline - time.monotonic()))

        interrupted = [vu_id for vu_id, handle in self._handles.items() if handle.alive]
        if interrupted:
            logger.warning(
                "%s VU(s) still busy after %.1fs grace period: %s",
                len(interrupted),
                grace_period,
                interrupted,
            )
        self._reap()
        return len(interrupted)

    def _record_population(self, elapsed: float, desired: int) -> None:
        active = self.active_count()
        self.timeline.append(
            TickSample(
                elapsed=elapsed,
                desired=desired,
                active=active,
                running=len(self.running_ids()),
            )
        )
        self.registry.gauge(VUS).set(active)
        self.registry.gauge(VUS_MAX).set(self.max_active)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, config: RunConfig, workload: Workload) -> RunResult:
        """
        Execute ``workload`` following ``config.stages`` and evaluate thresholds.

        Raises:
            ConfigurationError: If the workload names unknown checks or a
                threshold aggregator does not fit its metric.  Raised
                before any VU is spawned.
        """
        workload.validate(self.check_registry)
        self.registry.declare_builtins()
        for name, kind in workload.metric_declarations().items():
            self.registry.declare(name, kind)
        evaluator = ThresholdEvaluator(config.all_thresholds())
        evaluator.validate_against(self.registry)
        has_abort_thresholds = any(expr.abort_on_fail for expr in evaluator.thresholds)

        total = config.total_duration
        logger.info(
            "Starting run: workload=%s stages=%s duration=%.1fs max_vus=%s",
            workload.name,
            len(config.stages),
            total,
            config.max_target,
        )

        started = self._clock()
        next_abort_check = self.abort_check_interval
        current_stage = -1
        aborted = False
        abort_causes: set[ThresholdExpr] = set()
        interrupted = 0
        try:
            while True:
                elapsed = self._clock() - started
                if elapsed >= total:
                    break

                stage = stage_index_at(config.stages, elapsed)
                if stage != current_stage:
                    current_stage = stage
                    logger.info(
                        "Stage %s/%s: %.1fs towards %s VUs",
                        stage + 1,
                        len(config.stages),
                        config.stages[stage].duration,
                        config.stages[stage].target,
                    )

                desired = target_at(config.stages, elapsed, config.initial_vus)
                self.reconcile(desired, workload, config.think_time)
                self._record_population(elapsed, desired)

                if has_abort_thresholds and elapsed >= next_abort_check:
                    next_abort_check = elapsed + self.abort_check_interval
                    violations = evaluator.abort_violations(self.registry)
                    if violations:
                        aborted = True
                        abort_causes.update(violation.expr for violation in violations)
                        for violation in violations:
                            logger.error(
                                "Aborting run: %s (observed=%s)",
                                violation.expr.describe(),
                                violation.observed,
                            )
                        break

                self._sleep(min(self.tick_interval, max(0.0, total - elapsed)))
        finally:
            interrupted = self.drain(config.grace_period)
            self._record_population(self._clock() - started, 0)

        duration = self._clock() - started
        results = evaluator.evaluate(self.registry)
        result = RunResult(
            threshold_violations=frozenset(r.expr for r in results if not r.passed)
            | abort_causes,
            threshold_results=results,
            check_summary=self.checks.summary(),
            aborted=aborted,
            duration=duration,
            max_active_vus=self.max_active,
            interrupted_vus=interrupted,
        )
        logger.info(
            "Run finished in %.1fs: %s (%s threshold violation(s))",
            duration,
            "PASS" if result.passed else "FAIL",
            len(result.threshold_violations),
        )
        return result

"""
Virtual-user executor.

One :class:`VirtualUserExecutor` drives one :class:`VirtualUser` through
repeated iterations of a workload.  Per step it builds the request,
sends it, runs the step's checks and records timing samples; after the
last step it pauses for the think-time and loops.

Failure handling is soft throughout:

- a failed check is counted and the iteration continues;
- a transport error fails every check of the step, still records a
  latency sample when one was measured, and the iteration continues;
- a step whose required values are missing (e.g. no token after a
  failed login) is skipped, its checks are recorded as failed, and the
  iteration still finishes with its think-time.

Retirement is cooperative: the scheduler calls :meth:`VirtualUserExecutor.request_stop`
and the executor notices it only between iterations or during the
think-time pause, never in the middle of a request.  Until the executor
has actually left its loop, :meth:`VirtualUserExecutor.cancel_stop`
puts a draining VU back to work.  Both go through the executor's state
lock, so a VU is never marked running after its thread has decided to
exit.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from load_harness.checks import CheckEngine, CheckRegistry, Predicate, default_checks
from load_harness.dataset import Dataset
from load_harness.exceptions import TransportError
from load_harness.metrics import (
    HTTP_REQ_DURATION,
    HTTP_REQ_FAILED,
    HTTP_REQS,
    ITERATION_DURATION,
    ITERATIONS,
    MetricsRegistry,
)
from load_harness.models import IterationOutcome, VirtualUser, VUState
from load_harness.transport import Response, Transport
from load_harness.workloads.base import Step, StepContext, Workload

logger = logging.getLogger(__name__)


class VirtualUserExecutor:
    """
    Runs a workload in a loop on behalf of one virtual user.

    Args:
        vu: The virtual user; owned exclusively by this executor.
        workload: Steps to execute per iteration.
        dataset: Shared read-only dataset.
        transport: Request transport, private to this VU.
        registry: Run-scoped metrics registry.
        checks: Run-scoped check engine.
        base_url: Prefix for every step path.
        think_time: Seconds to pause after each iteration.
        check_registry: Named predicates used to resolve step checks.
        clock: Monotonic time source, in seconds.
    """

    def __init__(
        self,
        vu: VirtualUser,
        workload: Workload,
        dataset: Dataset,
        transport: Transport,
        registry: MetricsRegistry,
        checks: CheckEngine,
        base_url: str,
        think_time: float = 1.0,
        check_registry: CheckRegistry = default_checks,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.vu = vu
        self.workload = workload
        self.dataset = dataset
        self.transport = transport
        self.registry = registry
        self.checks = checks
        self.base_url = base_url.rstrip("/")
        self.think_time = think_time
        self._clock = clock
        self.iterations = 0
        self.unexpected_errors = 0
        self._state_lock = threading.Lock()

        self._step_checks: dict[str, list[tuple[str, Predicate]]] = {
            step.name: [
                (label, check_registry.resolve(predicate_name))
                for label, predicate_name in step.checks.items()
            ]
            for step in workload.steps
        }
        self._vu_data = workload.init_vu(vu) if workload.init_vu else {}

    # ------------------------------------------------------------------
    # Per-step helpers
    # ------------------------------------------------------------------

    def _fail_checks(self, step: Step) -> None:
        for label, _ in self._step_checks[step.name]:
            self.checks.record(label, False)

    def _record_timing(self, step: Step, duration_ms: float) -> None:
        self.registry.trend(HTTP_REQ_DURATION).add(duration_ms)
        self.registry.trend(step.duration_metric).add(duration_ms)
        if step.metric:
            self.registry.trend(step.metric).add(duration_ms)

    def _extract(self, step: Step, response: Response, context: StepContext) -> None:
        for key, path in step.extract.items():
            value = response.json_field(path)
            if value in (None, ""):
                continue
            context.values[key] = value
            if key == "token":
                self.vu.session_token = str(value)

    def run_step(self, step: Step, context: StepContext) -> str:
        """
        Execute one step.

        Returns:
            ``"completed"``, ``"failed"`` (transport error or any failed
            check) or ``"skipped"`` (missing required values).
        """
        missing = step.missing_requirements(context)
        if missing:
            logger.debug(
                "VU %s skipping step %s: missing %s", self.vu.id, step.name, ", ".join(missing)
            )
            self._fail_checks(step)
            return "skipped"

        request = step.build_request(context)
        url = f"{self.base_url}{request.path}"
        self.registry.counter(HTTP_REQS).add(1)

        try:
            response = self.transport.send(request.method, url, request.body, request.headers)
        except TransportError as exc:
            logger.debug("VU %s step %s transport error: %s", self.vu.id, step.name, exc)
            self.registry.rate(HTTP_REQ_FAILED).add(True)
            if exc.elapsed_ms is not None:
                self._record_timing(step, exc.elapsed_ms)
            self._fail_checks(step)
            return "failed"

        self.registry.rate(HTTP_REQ_FAILED).add(not 200 <= response.status < 400)
        self._record_timing(step, response.duration_ms)

        all_passed = True
        for label, predicate in self._step_checks[step.name]:
            result = self.checks.run(label, predicate, response)
            all_passed = all_passed and result.passed

        self._extract(step, response, context)
        return "completed" if all_passed else "failed"

    # ------------------------------------------------------------------
    # Iteration loop
    # ------------------------------------------------------------------

    def iterate(self) -> IterationOutcome:
        """Run every workload step once and record iteration metrics."""
        self.iterations += 1
        self.vu.session_token = None
        context = StepContext(
            vu=self.vu,
            record=self.dataset.get(self.vu.dataset_index),
            vu_data=self._vu_data,
        )

        counts = {"completed": 0, "failed": 0, "skipped": 0}
        started = self._clock()
        for step in self.workload.steps:
            counts[self.run_step(step, context)] += 1
        duration = self._clock() - started

        self.registry.counter(ITERATIONS).add(1)
        self.registry.trend(ITERATION_DURATION).add(duration * 1000.0)

        return IterationOutcome(
            vu_id=self.vu.id,
            iteration=self.iterations,
            completed_steps=counts["completed"],
            failed_steps=counts["failed"],
            skipped_steps=counts["skipped"],
            duration=duration,
        )

    def request_stop(self, stop_event: threading.Event) -> bool:
        """
        Ask the VU to stop after its current iteration.

        Returns:
            True if the VU moved to ``DRAINING``; False if it was already
            draining or has retired.
        """
        with self._state_lock:
            if self.vu.state in (VUState.DRAINING, VUState.RETIRED):
                return False
            stop_event.set()
            self.vu.state = VUState.DRAINING
            return True

    def cancel_stop(self, stop_event: threading.Event) -> bool:
        """
        Put a draining VU back to work.

        Returns:
            True if the VU is running again; False if it was not draining
            or has already left its loop.
        """
        with self._state_lock:
            if self.vu.state is not VUState.DRAINING:
                return False
            stop_event.clear()
            self.vu.state = VUState.RUNNING
            return True

    def run(self, stop_event: threading.Event) -> None:
        """
        Iterate until ``stop_event`` is set.

        The event is checked only at iteration boundaries; setting it
        while a request is in flight lets that iteration finish.
        """
        with self._state_lock:
            if self.vu.state is VUState.SPAWNING:
                self.vu.state = VUState.RUNNING
        logger.debug("VU %s started (dataset index %s)", self.vu.id, self.vu.dataset_index)
        try:
            while True:
                with self._state_lock:
                    if stop_event.is_set():
                        self.vu.state = VUState.RETIRED
                        break
                try:
                    self.iterate()
                except Exception:  # noqa: BLE001 - a buggy step must not kill the VU
                    self.unexpected_errors += 1
                    logger.exception("VU %s iteration raised unexpectedly", self.vu.id)
                if self.think_time > 0:
                    stop_event.wait(self.think_time)
        finally:
            with self._state_lock:
                self.vu.state = VUState.RETIRED
            self.transport.close()
            logger.debug("VU %s retired after %s iterations", self.vu.id, self.iterations)

"""
Named response checks.

Checks are informational correctness assertions: a failing check is
counted, never raised, and never feeds the metrics registry, so it
cannot change whether thresholds pass.

Predicates are registered by name ahead of time and invoked with a
single ``(response) -> bool`` contract.  Workloads refer to predicates
by name, which lets a workload fail fast at construction when it names
a predicate that does not exist.

Key Concepts Demonstrated:
- Decorator-based registry of named predicates
- Thread-safe pass/total accumulation shared by every VU
- Predicate exceptions are recorded as failures, not propagated
"""

from __future__ import annotations

import logging
import threading
from types import MappingProxyType
from typing import Callable, Mapping

from load_harness.exceptions import ConfigurationError
from load_harness.models import CheckResult, CheckSummary
from load_harness.transport import Response

logger = logging.getLogger(__name__)

Predicate = Callable[[Response], bool]


class CheckRegistry:
    """Lookup table of named predicates."""

    def __init__(self) -> None:
        self._predicates: dict[str, Predicate] = {}

    def register(self, name: str) -> Callable[[Predicate], Predicate]:
        """Decorator registering ``func`` under ``name``."""

        def decorator(func: Predicate) -> Predicate:
            if name in self._predicates:
                raise ConfigurationError(f"Check predicate {name!r} is already registered")
            self._predicates[name] = func
            return func

        return decorator

    def resolve(self, name: str) -> Predicate:
        try:
            return self._predicates[name]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown check predicate: {name!r}") from exc

    def __contains__(self, name: str) -> bool:
        return name in self._predicates

    def names(self) -> list[str]:
        return sorted(self._predicates)


default_checks = CheckRegistry()


@default_checks.register("status_200")
def _status_200(response: Response) -> bool:
    return response.status == 200


@default_checks.register("status_201")
def _status_201(response: Response) -> bool:
    return response.status == 201


@default_checks.register("has_token")
def _has_token(response: Response) -> bool:
    token = response.json_field("token")
    return isinstance(token, str) and token != ""


@default_checks.register("has_id")
def _has_id(response: Response) -> bool:
    return bool(response.json_field("id"))


class _CheckCounter:
    """Pass/total counts for one check name."""

    __slots__ = ("_lock", "passed", "total")

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.passed = 0
        self.total = 0

    def add(self, passed: bool) -> None:
        with self._lock:
            self.total += 1
            if passed:
                self.passed += 1

    def snapshot(self) -> CheckSummary:
        with self._lock:
            return CheckSummary(passed=self.passed, total=self.total)


class CheckEngine:
    """
    Accumulates per-name pass/total counts across all VUs.

    Each check name has its own counter and lock; the engine lock is only
    taken the first time a name is seen.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, _CheckCounter] = {}

    def _counter(self, name: str) -> _CheckCounter:
        counter = self._counters.get(name)
        if counter is None:
            with self._lock:
                counter = self._counters.get(name)
                if counter is None:
                    counter = self._counters[name] = _CheckCounter()
        return counter

    def record(self, name: str, passed: bool) -> CheckResult:
        self._counter(name).add(passed)
        return CheckResult(name=name, passed=passed)

    def run(self, name: str, predicate: Predicate, response: Response) -> CheckResult:
        """Evaluate ``predicate`` against ``response`` and record the outcome."""
        try:
            passed = bool(predicate(response))
        except Exception as exc:  # noqa: BLE001 - a broken predicate is a failed check
            logger.debug("Check %r raised %s; recording as failed", name, exc)
            passed = False
        return self.record(name, passed)

    def summary(self) -> Mapping[str, CheckSummary]:
        with self._lock:
            counters = dict(self._counters)
        return MappingProxyType({name: counter.snapshot() for name, counter in counters.items()})

"""
Workload definitions.

Each module in this package builds one :class:`Workload`:

- :mod:`.login` — credential exchange only
- :mod:`.student_registration` — login, then create a student

``WORKLOADS`` maps the CLI ``--workload`` value to its builder.
"""

from __future__ import annotations

from typing import Callable

from load_harness.config import Config
from load_harness.exceptions import ConfigurationError
from load_harness.workloads.base import Step, StepContext, Workload
from load_harness.workloads.login import build_login_workload
from load_harness.workloads.student_registration import build_student_registration_workload

WORKLOADS: dict[str, Callable[[type[Config]], Workload]] = {
    "login": build_login_workload,
    "student-registration": build_student_registration_workload,
}

__all__ = ["Step", "StepContext", "Workload", "WORKLOADS", "get_workload"]


def get_workload(name: str, config: type[Config]) -> Workload:
    try:
        builder = WORKLOADS[name]
    except KeyError as exc:
        choices = ", ".join(sorted(WORKLOADS))
        raise ConfigurationError(f"Unknown workload {name!r}; choose one of: {choices}") from exc
    return builder(config)

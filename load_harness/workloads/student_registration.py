"""
Student-registration workload.

Models a coordinator who logs in and then registers a new student:

1. ``login`` — exchange dataset credentials for a bearer token.
2. ``create_student`` — POST a randomised student using that token.

The second step requires the token produced by the first; when login
fails the create step is skipped and its checks are recorded as failed,
so a broken login shows up in the check summary instead of silently
lowering write traffic.
"""

from __future__ import annotations

from typing import Any, Mapping

from load_harness.config import Config
from load_harness.metrics import MetricType
from load_harness.models import VirtualUser
from load_harness.payloads import student_payload_factory
from load_harness.transport import auth_header
from load_harness.workloads.base import Step, StepContext, Workload
from load_harness.workloads.login import login_step

STUDENT_CREATE_METRIC = "student_create_duration"

CREATE_STUDENT_CHECKS = {
    "create student returns status 201": "status_201",
    "create student returns an id": "has_id",
}


def _init_vu(vu: VirtualUser) -> Mapping[str, Any]:
    # One Faker instance per VU thread.
    return {"new_student": student_payload_factory()}


def _student_body(context: StepContext) -> dict[str, Any]:
    return context.vu_data["new_student"]()


def _bearer_headers(context: StepContext) -> dict[str, str]:
    return auth_header(context.values["token"])


def build_student_registration_workload(config: type[Config]) -> Workload:
    create_student = Step(
        name="create_student",
        method="POST",
        path=config.RESOURCE_PATH,
        build_body=_student_body,
        build_headers=_bearer_headers,
        requires=("token",),
        checks=CREATE_STUDENT_CHECKS,
        metric=STUDENT_CREATE_METRIC,
    )
    return Workload(
        name="student-registration",
        steps=(login_step(config), create_student),
        custom_metrics={STUDENT_CREATE_METRIC: MetricType.TREND},
        required_fields=("username", "password"),
        init_vu=_init_vu,
    )

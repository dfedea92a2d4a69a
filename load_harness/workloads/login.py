"""
Login-only workload.

Each iteration posts the VU's dataset credentials to the login endpoint
and checks that a token comes back.  Useful for isolating the
credential-exchange path (password hashing, token issuance) from
resource writes.
"""

from __future__ import annotations

from load_harness.config import Config
from load_harness.workloads.base import Step, StepContext, Workload

LOGIN_CHECKS = {
    "login returns status 200": "status_200",
    "login returns token": "has_token",
}


def credentials_body(context: StepContext) -> dict[str, str]:
    """Login payload built from the VU's partitioned dataset record."""
    return {
        "username": context.record["username"],
        "password": context.record["password"],
    }


def login_step(config: type[Config]) -> Step:
    return Step(
        name="login",
        method="POST",
        path=config.LOGIN_PATH,
        build_body=credentials_body,
        extract={"token": "token"},
        checks=LOGIN_CHECKS,
    )


def build_login_workload(config: type[Config]) -> Workload:
    return Workload(
        name="login",
        steps=(login_step(config),),
        required_fields=("username", "password"),
    )

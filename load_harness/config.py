"""
Load Harness — Environment Configuration.

Defines environment-specific configuration classes for the harness
process itself: where the target API lives, how often the scheduler
ticks, and how long the transport waits for a response.  Run-level
options (stages, thresholds, think-time) come from a YAML run
configuration instead; see :mod:`load_harness.run_config`.

The ``get_config`` factory selects the right class based on the
``HARNESS_ENV`` environment variable (or an explicit key).

Key Concepts Demonstrated:
- Class-based configuration with inheritance for DRY defaults
- Environment-variable overrides for 12-factor deployability
- Separate testing configuration with a fast tick and short timeouts
"""

from __future__ import annotations

import os


class Config:
    """
    Base (shared) configuration for the harness.

    Individual settings can be overridden by environment variables.
    """

    # Base URL of the API under test.  Request paths from workloads are
    # appended to it.
    BASE_URL: str = os.environ.get("HARNESS_BASE_URL", "http://localhost:3000")

    LOGIN_PATH: str = os.environ.get("HARNESS_LOGIN_PATH", "/login")
    RESOURCE_PATH: str = os.environ.get("HARNESS_RESOURCE_PATH", "/alunos")

    # Seconds between scheduler control decisions.
    TICK_INTERVAL: float = float(os.environ.get("HARNESS_TICK_INTERVAL", "0.1"))

    # Seconds between early-abort threshold checkpoints.
    ABORT_CHECK_INTERVAL: float = float(os.environ.get("HARNESS_ABORT_CHECK_INTERVAL", "1"))

    # Per-request timeout enforced by the transport, not the scheduler.
    REQUEST_TIMEOUT: float = float(os.environ.get("HARNESS_REQUEST_TIMEOUT", "10"))

    LOG_LEVEL: str = os.environ.get("HARNESS_LOG_LEVEL", "INFO")


class DevelopmentConfig(Config):
    """Development-oriented overrides with verbose logging."""

    LOG_LEVEL: str = os.environ.get("HARNESS_LOG_LEVEL", "DEBUG")


class TestingConfig(Config):
    """
    Test-suite overrides.

    Points the base URL at a non-routable host so unit tests never leak
    real traffic, and shortens the tick so time-scaled runs finish fast.
    """

    BASE_URL: str = os.environ.get("TEST_HARNESS_BASE_URL", "http://target.test")
    TICK_INTERVAL: float = float(os.environ.get("TEST_HARNESS_TICK_INTERVAL", "0.02"))
    ABORT_CHECK_INTERVAL: float = float(
        os.environ.get("TEST_HARNESS_ABORT_CHECK_INTERVAL", "0.05")
    )
    REQUEST_TIMEOUT: float = float(os.environ.get("TEST_HARNESS_REQUEST_TIMEOUT", "1"))


class ProductionConfig(Config):
    """Settings for CI and scheduled load runs; values come from the environment."""

    LOG_LEVEL: str = os.environ.get("HARNESS_LOG_LEVEL", "INFO")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Return the configuration class for the given environment.

    Args:
        env: One of ``"development"``, ``"testing"``, or
            ``"production"``.  When *None*, the ``HARNESS_ENV``
            environment variable is consulted, falling back to
            ``"development"`` if unset.

    Returns:
        The ``Config`` subclass matching the requested environment,
        or ``DevelopmentConfig`` if the key is unrecognised.
    """
    if env is None:
        env = os.environ.get("HARNESS_ENV", "development")
    return config.get(env, config["default"])

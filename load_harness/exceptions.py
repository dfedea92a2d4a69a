"""
Exception hierarchy for the load harness.

Startup problems (bad run configuration, unusable dataset) are fatal and
raised before any virtual user is spawned.  Transport problems happen in
steady state and are recorded as failed checks by the executor instead
of propagating.
"""

from __future__ import annotations

from typing import Any


class HarnessError(Exception):
    """Base exception for all load-harness errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(HarnessError, ValueError):
    """Malformed stage, threshold, workload or environment configuration."""


class DatasetError(HarnessError, ValueError):
    """The dataset source is unreadable, malformed or empty."""

    def __init__(self, message: str, source: str | None = None):
        details = {"source": source} if source else None
        super().__init__(message, details)
        self.source = source


class TransportError(HarnessError):
    """
    A request could not be completed at the network level.

    Attributes:
        elapsed_ms: Time spent before the failure surfaced, when it could
            be measured (e.g. a read timeout), otherwise ``None``.
    """

    def __init__(self, message: str, elapsed_ms: float | None = None):
        super().__init__(message, {"elapsed_ms": elapsed_ms})
        self.elapsed_ms = elapsed_ms

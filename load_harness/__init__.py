"""
Load Harness — stage-based HTTP load testing.

A run drives a time-varying population of virtual users through a
workload (for example: log in, then create a student), records latency
and outcome metrics, evaluates named checks on each response, and
finally decides pass/fail by comparing aggregated metrics with
declarative thresholds.

Typical programmatic use::

    registry = MetricsRegistry()
    checks = CheckEngine()
    scheduler = StageScheduler(dataset, RequestsTransport, registry, checks, base_url)
    result = scheduler.run(load_run_config("run.yml"), workload)
"""

from load_harness.checks import CheckEngine, CheckRegistry, default_checks
from load_harness.dataset import Dataset, load_dataset
from load_harness.exceptions import (
    ConfigurationError,
    DatasetError,
    HarnessError,
    TransportError,
)
from load_harness.metrics import MetricsRegistry, MetricType
from load_harness.models import RunConfig, RunResult, Stage, ThresholdExpr, VirtualUser
from load_harness.run_config import load_run_config
from load_harness.scheduler import StageScheduler, target_at
from load_harness.thresholds import ThresholdEvaluator, parse_threshold
from load_harness.transport import RequestsTransport

__version__ = "1.0.0"

__all__ = [
    "CheckEngine",
    "CheckRegistry",
    "ConfigurationError",
    "Dataset",
    "DatasetError",
    "HarnessError",
    "MetricType",
    "MetricsRegistry",
    "RequestsTransport",
    "RunConfig",
    "RunResult",
    "Stage",
    "StageScheduler",
    "ThresholdEvaluator",
    "ThresholdExpr",
    "TransportError",
    "VirtualUser",
    "default_checks",
    "load_dataset",
    "load_run_config",
    "parse_threshold",
    "target_at",
]

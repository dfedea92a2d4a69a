"""
Command-line entry point.

Usage::

    load-harness run --config run_configs/student_registration.yml \\
        --dataset data/users.json --workload student-registration \\
        --base-url http://localhost:3000

Everything that can be wrong with the inputs (YAML, dataset, workload
name, threshold aggregators) is detected before the first VU starts and
reported with exit code 2.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from load_harness.checks import CheckEngine
from load_harness.config import get_config
from load_harness.dataset import load_dataset
from load_harness.exceptions import HarnessError
from load_harness.metrics import MetricsRegistry
from load_harness.report import (
    EXIT_SCRIPT_ERROR,
    exit_code_for,
    print_summary,
    write_json_summary,
)
from load_harness.run_config import load_run_config
from load_harness.scheduler import StageScheduler
from load_harness.transport import RequestsTransport
from load_harness.workloads import WORKLOADS, get_workload

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="load-harness",
        description="Drive a stage-based HTTP load test and gate it on thresholds.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Execute a load test")
    run.add_argument("--config", required=True, type=Path, help="Path to run configuration YAML")
    run.add_argument("--dataset", required=True, type=Path, help="Path to JSON/YAML dataset")
    run.add_argument(
        "--workload",
        default="student-registration",
        choices=sorted(WORKLOADS),
        help="Workload to execute (default: student-registration)",
    )
    run.add_argument("--base-url", help="Base URL of the API under test")
    run.add_argument(
        "--env",
        choices=["development", "testing", "production"],
        help="Environment configuration (default: $HARNESS_ENV)",
    )
    run.add_argument("--summary-json", type=Path, help="Write the run result as JSON here")
    return parser


def run_command(args: argparse.Namespace) -> int:
    settings = get_config(args.env)
    base_url = args.base_url or settings.BASE_URL

    try:
        run_config = load_run_config(args.config)
        workload = get_workload(args.workload, settings)
        dataset = load_dataset(args.dataset, required_fields=workload.required_fields)
    except HarnessError as exc:
        print(f"Load test setup failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR

    registry = MetricsRegistry()
    checks = CheckEngine()
    scheduler = StageScheduler(
        dataset=dataset,
        transport_factory=lambda: RequestsTransport(timeout=settings.REQUEST_TIMEOUT),
        registry=registry,
        checks=checks,
        base_url=base_url,
        tick_interval=settings.TICK_INTERVAL,
        abort_check_interval=settings.ABORT_CHECK_INTERVAL,
    )
    logger.info("Target: %s (workload %s, %s dataset records)", base_url, workload.name, len(dataset))

    try:
        result = scheduler.run(run_config, workload)
    except HarnessError as exc:
        print(f"Load test setup failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR

    metrics = registry.snapshot()
    print_summary(result, metrics)
    if args.summary_json:
        write_json_summary(result, args.summary_json, metrics)
    return exit_code_for(result)


def main(argv: Sequence[str] | None = None) -> int:
    """
    Parse arguments, configure logging and dispatch.

    Returns:
        ``EXIT_PASS`` (0), ``EXIT_THRESHOLD_BREACH`` (1) or
        ``EXIT_SCRIPT_ERROR`` (2).
    """
    args = build_parser().parse_args(argv)
    settings = get_config(args.env)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return run_command(args)
    except Exception as exc:  # pragma: no cover - defensive CLI guard
        logger.exception("Load harness crashed")
        print(f"Load harness failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())

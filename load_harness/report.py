"""
End-of-run reporting.

Prints a human-readable summary of a :class:`RunResult` to stdout for CI
logs and optionally writes the same data as JSON.  Exit codes follow a
three-state convention so that CI can distinguish "thresholds breached"
from "the harness itself failed":

- ``0`` — all thresholds passed
- ``1`` — at least one threshold was breached (or the run was aborted)
- ``2`` — the harness failed (bad configuration, unreadable dataset, ...)
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, TextIO

from load_harness.models import RunResult

# Three-state exit codes so CI can tell "test failed" from "harness crashed".
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2


def exit_code_for(result: RunResult) -> int:
    return EXIT_PASS if result.passed else EXIT_THRESHOLD_BREACH


def _format_observed(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.2f}"


def print_summary(
    result: RunResult,
    metrics: Mapping[str, Mapping[str, Any]] | None = None,
    out: TextIO | None = None,
) -> None:
    """
    Print thresholds, checks and (optionally) metric summaries.

    Args:
        result: Outcome of the run.
        metrics: ``MetricsRegistry.snapshot()`` output; trends are
            printed with their main aggregates.
        out: Stream to write to; stdout when omitted.
    """

    def emit(line: str = "") -> None:
        print(line, file=out)

    emit("Load Test Summary")
    emit("-" * 72)
    emit(
        f"Duration: {result.duration:.1f}s   Max VUs: {result.max_active_vus}   "
        f"Aborted: {'yes' if result.aborted else 'no'}"
    )
    if result.interrupted_vus:
        emit(f"Interrupted VUs after grace period: {result.interrupted_vus}")

    emit()
    emit(f"{'Threshold':<44}{'Observed':>14}{'Status':>14}")
    emit("-" * 72)
    for threshold in result.threshold_results:
        status = "PASS" if threshold.passed else "FAIL"
        emit(
            f"{threshold.expr.describe():<44}"
            f"{_format_observed(threshold.observed):>14}{status:>14}"
        )
    if not result.threshold_results:
        emit("(no thresholds configured)")

    emit()
    emit(f"{'Check':<44}{'Passed':>14}{'Failed':>14}")
    emit("-" * 72)
    for name in sorted(result.check_summary):
        summary = result.check_summary[name]
        emit(f"{name:<44}{summary.passed:>14}{summary.failed:>14}")

    if metrics:
        emit()
        emit(f"{'Trend':<28}{'avg':>9}{'min':>9}{'med':>9}{'max':>9}{'p(95)':>9}")
        emit("-" * 72)
        for name, summary in metrics.items():
            if "avg" not in summary:
                continue
            emit(
                f"{name:<28}{summary['avg']:>9.2f}{summary['min']:>9.2f}"
                f"{summary['med']:>9.2f}{summary['max']:>9.2f}{summary['p(95)']:>9.2f}"
            )

    emit("-" * 72)
    emit(f"Overall: {'PASS' if result.passed else 'FAIL'}")


def write_json_summary(
    result: RunResult,
    path: str | Path,
    metrics: Mapping[str, Mapping[str, Any]] | None = None,
) -> None:
    """Write ``result.to_dict()`` (plus metric summaries) to ``path``."""
    payload = result.to_dict()
    if metrics is not None:
        payload["metrics"] = {name: dict(summary) for name, summary in metrics.items()}
    with Path(path).open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)

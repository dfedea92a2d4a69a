"""
Threshold parsing and evaluation.

Thresholds are written as short expressions attached to a metric name,
for example::

    http_req_duration:
      - max<100
      - p(95)<50
    http_req_failed:
      - threshold: rate<0.01
        abort_on_fail: true

Parsing happens when the run configuration is loaded, so a typo in an
aggregator or operator aborts the run before any traffic is sent.
Evaluation happens at run end (and at abort checkpoints) against the
full sample set accumulated in the :class:`MetricsRegistry`.

A metric that was never sampled fails every threshold that references
it: absence of data is not success.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping

from load_harness.exceptions import ConfigurationError
from load_harness.metrics import SUPPORTED_AGGREGATORS, MetricsRegistry, MetricType
from load_harness.models import Comparator, ThresholdExpr, ThresholdResult

logger = logging.getLogger(__name__)

_EXPRESSION_RE = re.compile(
    r"^\s*(?P<aggregator>avg|min|max|med|count|rate|value|p\(\d+(?:\.\d+)?\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*"
    r"(?P<value>-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)

# Aggregators that are only meaningful for a single metric kind.
_KIND_ONLY = {"avg": MetricType.TREND, "med": MetricType.TREND, "value": MetricType.GAUGE}


def parse_threshold(metric: str, expression: str, abort_on_fail: bool = False) -> ThresholdExpr:
    """
    Parse a single expression such as ``"p(95)<50"``.

    Raises:
        ConfigurationError: If the expression is malformed, names an
            unknown aggregator, or a percentile outside ``[0, 100]``.
    """
    if not isinstance(expression, str):
        raise ConfigurationError(f"Threshold for {metric!r} must be a string, got {expression!r}")

    match = _EXPRESSION_RE.match(expression)
    if match is None:
        raise ConfigurationError(f"Malformed threshold for {metric!r}: {expression!r}")

    aggregator = match.group("aggregator")
    expr = ThresholdExpr(
        metric=metric,
        aggregator=aggregator,
        comparator=Comparator(match.group("op")),
        value=float(match.group("value")),
        abort_on_fail=abort_on_fail,
        source=expression.strip(),
    )
    if expr.percentile is not None and not 0 <= expr.percentile <= 100:
        raise ConfigurationError(f"Percentile out of range in {metric!r}: {expression!r}")
    return expr


def parse_thresholds(raw: Mapping[str, Any] | None) -> dict[str, tuple[ThresholdExpr, ...]]:
    """
    Parse the ``thresholds`` section of a run configuration.

    Each metric maps to a list whose items are either expression strings
    or mappings ``{"threshold": str, "abort_on_fail": bool}``.
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError("thresholds must be a mapping of metric name to expressions")

    parsed: dict[str, tuple[ThresholdExpr, ...]] = {}
    for metric, items in raw.items():
        if isinstance(items, (str, Mapping)):
            items = [items]
        if not isinstance(items, list):
            raise ConfigurationError(f"Thresholds for {metric!r} must be a list")

        exprs = []
        for item in items:
            if isinstance(item, Mapping):
                if "threshold" not in item:
                    raise ConfigurationError(f"Threshold mapping for {metric!r} needs 'threshold'")
                exprs.append(
                    parse_threshold(
                        str(metric), item["threshold"], bool(item.get("abort_on_fail", False))
                    )
                )
            else:
                exprs.append(parse_threshold(str(metric), item))
        parsed[str(metric)] = tuple(exprs)
    return parsed


def aggregator_supported(expr: ThresholdExpr, kind: MetricType) -> bool:
    if expr.percentile is not None:
        return kind is MetricType.TREND
    if expr.aggregator in _KIND_ONLY:
        return _KIND_ONLY[expr.aggregator] is kind
    return expr.aggregator in SUPPORTED_AGGREGATORS[kind]


class ThresholdEvaluator:
    """Evaluates a fixed set of threshold expressions against a registry."""

    def __init__(self, thresholds: Iterable[ThresholdExpr]):
        self.thresholds = tuple(thresholds)

    def validate_against(self, registry: MetricsRegistry) -> None:
        """
        Reject expressions whose aggregator does not fit an already-declared metric.

        Metrics not declared yet are left alone; if they are never
        sampled the threshold fails at evaluation time.
        """
        for expr in self.thresholds:
            metric = registry.get(expr.metric)
            if metric is not None and not aggregator_supported(expr, metric.kind):
                raise ConfigurationError(
                    f"Aggregator {expr.aggregator!r} is not valid for "
                    f"{metric.kind.value} metric {expr.metric!r}"
                )

    def evaluate_one(
        self,
        expr: ThresholdExpr,
        registry: MetricsRegistry,
        elapsed: float | None = None,
    ) -> ThresholdResult:
        metric = registry.get(expr.metric)
        if metric is None or not metric.has_samples:
            return ThresholdResult(expr=expr, observed=None, passed=False)

        try:
            observed = metric.aggregate(expr.aggregator, elapsed=elapsed)
        except ValueError as exc:
            logger.warning("Cannot evaluate %s: %s", expr.describe(), exc)
            return ThresholdResult(expr=expr, observed=None, passed=False)

        return ThresholdResult(
            expr=expr, observed=observed, passed=expr.comparator.apply(observed, expr.value)
        )

    def evaluate(
        self, registry: MetricsRegistry, elapsed: float | None = None
    ) -> tuple[ThresholdResult, ...]:
        """Evaluate every threshold; missing data counts as a violation."""
        if elapsed is None:
            elapsed = registry.elapsed()
        results = tuple(self.evaluate_one(expr, registry, elapsed) for expr in self.thresholds)
        for result in results:
            if not result.passed:
                logger.info(
                    "Threshold violated: %s (observed=%s)", result.expr.describe(), result.observed
                )
        return results

    def abort_violations(
        self, registry: MetricsRegistry, elapsed: float | None = None
    ) -> list[ThresholdResult]:
        """
        Checkpoint evaluation of ``abort_on_fail`` thresholds.

        Unlike the final evaluation, a metric with no samples yet is not
        reported: early in a run that is expected, not a failure.
        """
        if elapsed is None:
            elapsed = registry.elapsed()
        violations = []
        for expr in self.thresholds:
            if not expr.abort_on_fail:
                continue
            metric = registry.get(expr.metric)
            if metric is None or not metric.has_samples:
                continue
            result = self.evaluate_one(expr, registry, elapsed)
            if not result.passed:
                violations.append(result)
        return violations

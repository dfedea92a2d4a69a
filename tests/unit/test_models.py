"""
Unit tests for the data model.
"""

import pytest

from load_harness.exceptions import ConfigurationError
from load_harness.models import (
    CheckSummary,
    Comparator,
    IterationOutcome,
    RunConfig,
    RunResult,
    Stage,
    ThresholdExpr,
    ThresholdResult,
    VirtualUser,
    VUState,
)


pytestmark = pytest.mark.unit


def test_stage_rejects_negative_values():
    with pytest.raises(ConfigurationError):
        Stage(duration=-1, target=5)
    with pytest.raises(ConfigurationError):
        Stage(duration=1, target=-5)


def test_zero_duration_stage_is_allowed():
    assert Stage(duration=0, target=10).duration == 0


def test_run_config_freezes_stages_and_thresholds():
    # Arrange
    expr = ThresholdExpr("http_req_duration", "max", Comparator.LT, 100)
    stages = [Stage(3, 10), Stage(5, 0)]

    # Act
    run_config = RunConfig(stages=stages, thresholds={"http_req_duration": [expr]})

    # Assert
    assert run_config.stages == (Stage(3, 10), Stage(5, 0))
    assert run_config.thresholds["http_req_duration"] == (expr,)
    with pytest.raises(TypeError):
        run_config.thresholds["other"] = ()
    assert run_config.total_duration == 8
    assert run_config.max_target == 10
    assert run_config.all_thresholds() == [expr]


def test_run_config_requires_a_stage():
    with pytest.raises(ConfigurationError):
        RunConfig(stages=[])


@pytest.mark.parametrize("field", ["initial_vus", "think_time", "grace_period"])
def test_run_config_rejects_negative_options(field):
    with pytest.raises(ConfigurationError):
        RunConfig(stages=[Stage(1, 1)], **{field: -1})


def test_max_target_includes_initial_vus():
    assert RunConfig(stages=[Stage(1, 2)], initial_vus=7).max_target == 7


def test_virtual_user_dataset_index_wraps():
    indices = [VirtualUser.create(vu_id, 3).dataset_index for vu_id in range(1, 8)]

    assert indices == [0, 1, 2, 0, 1, 2, 0]


def test_virtual_user_starts_spawning_without_token():
    vu = VirtualUser.create(1, 3)

    assert vu.state is VUState.SPAWNING
    assert vu.session_token is None


@pytest.mark.parametrize("vu_id, length", [(0, 3), (1, 0)])
def test_virtual_user_rejects_invalid_inputs(vu_id, length):
    with pytest.raises(ValueError):
        VirtualUser.create(vu_id, length)


@pytest.mark.parametrize(
    "comparator, observed, expected",
    [
        (Comparator.LT, 49.9, True),
        (Comparator.LT, 50, False),
        (Comparator.LTE, 50, True),
        (Comparator.GT, 51, True),
        (Comparator.GTE, 49, False),
        (Comparator.EQ, 50, True),
        (Comparator.NEQ, 50, False),
    ],
)
def test_comparator_apply(comparator, observed, expected):
    assert comparator.apply(observed, 50) is expected


def test_threshold_expr_percentile_and_description():
    expr = ThresholdExpr("http_req_duration", "p(95)", Comparator.LT, 50, source="p(95)<50")

    assert expr.percentile == 95.0
    assert expr.describe() == "http_req_duration: p(95)<50"
    assert ThresholdExpr("x", "avg", Comparator.LT, 1).percentile is None


def test_check_summary_counts():
    summary = CheckSummary(passed=3, total=4)

    assert summary.failed == 1
    assert summary.pass_rate == 0.75
    assert CheckSummary(passed=0, total=0).pass_rate == 0.0


def test_iteration_outcome_succeeded_only_without_failures_or_skips():
    assert IterationOutcome(1, 1, 2, 0, 0, 0.1).succeeded
    assert not IterationOutcome(1, 1, 1, 1, 0, 0.1).succeeded
    assert not IterationOutcome(1, 1, 1, 0, 1, 0.1).succeeded


def test_run_result_passes_only_without_violations():
    # Arrange
    expr = ThresholdExpr("http_req_duration", "p(95)", Comparator.LT, 50, source="p(95)<50")
    failing = ThresholdResult(expr=expr, observed=59.5, passed=False)

    # Act
    failed_run = RunResult(
        threshold_violations=frozenset({expr}),
        threshold_results=(failing,),
        check_summary={"login returns token": CheckSummary(passed=1, total=2)},
    )
    clean_run = RunResult(frozenset(), (), {})

    # Assert
    assert not failed_run.passed
    assert clean_run.passed
    data = failed_run.to_dict()
    assert data["passed"] is False
    assert data["thresholds"][0]["observed"] == 59.5
    assert data["checks"]["login returns token"] == {"passed": 1, "total": 2}


def test_aborted_run_never_passes():
    aborted_run = RunResult(frozenset(), (), {}, aborted=True)

    assert not aborted_run.passed
    assert aborted_run.to_dict()["passed"] is False

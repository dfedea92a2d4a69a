"""
Unit tests for run configuration loading.
"""

import pytest

from load_harness.exceptions import ConfigurationError
from load_harness.models import Stage
from load_harness.run_config import (
    build_run_config,
    load_run_config,
    parse_duration,
    parse_stages,
)
from tests.conftest import PROJECT_ROOT


pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "value, seconds",
    [
        (3, 3.0),
        (0.5, 0.5),
        ("3s", 3.0),
        ("500ms", 0.5),
        ("2m", 120.0),
        ("1m30s", 90.0),
        ("1h", 3600.0),
        (" 15S ", 15.0),
        ("0s", 0.0),
    ],
)
def test_parse_duration(value, seconds):
    assert parse_duration(value) == pytest.approx(seconds)


@pytest.mark.parametrize("value", ["", "3", "3x", "s", "-1s", -2, True, None, [3]])
def test_parse_duration_rejects_invalid(value):
    with pytest.raises(ConfigurationError):
        parse_duration(value)


def test_parse_stages():
    stages = parse_stages([{"duration": "3s", "target": 10}, {"duration": 5, "target": 0}])

    assert stages == (Stage(3.0, 10), Stage(5.0, 0))


@pytest.mark.parametrize(
    "raw",
    [
        None,
        [],
        ["3s"],
        [{"duration": "3s"}],
        [{"target": 3}],
        [{"duration": "3s", "target": "ten"}],
        [{"duration": "3s", "target": -1}],
    ],
)
def test_parse_stages_rejects_malformed(raw):
    with pytest.raises(ConfigurationError):
        parse_stages(raw)


def test_build_run_config_defaults():
    run_config = build_run_config({"stages": [{"duration": 1, "target": 1}]})

    assert run_config.initial_vus == 0
    assert run_config.think_time == 1.0
    assert run_config.grace_period == 30.0
    assert dict(run_config.thresholds) == {}


def test_load_run_config_from_yaml(write_file):
    # Arrange
    path = write_file(
        "run.yml",
        """
initial_vus: 2
think_time: 250ms
grace_period: 5s
stages:
  - {duration: 3s, target: 10}
  - {duration: 5s, target: 0}
thresholds:
  http_req_duration: ["max<100", "p(95)<50"]
  http_req_failed:
    - threshold: rate<0.01
      abort_on_fail: true
""",
    )

    # Act
    run_config = load_run_config(path)

    # Assert
    assert run_config.initial_vus == 2
    assert run_config.think_time == 0.25
    assert run_config.grace_period == 5.0
    assert run_config.stages == (Stage(3.0, 10), Stage(5.0, 0))
    sources = [expr.source for expr in run_config.thresholds["http_req_duration"]]
    assert sources == ["max<100", "p(95)<50"]
    (failed_rate,) = run_config.thresholds["http_req_failed"]
    assert failed_rate.abort_on_fail


def test_load_run_config_reports_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="Cannot read"):
        load_run_config(tmp_path / "missing.yml")


def test_load_run_config_reports_invalid_yaml(write_file):
    path = write_file("bad.yml", "stages: [unclosed")

    with pytest.raises(ConfigurationError, match="not valid YAML"):
        load_run_config(path)


def test_load_run_config_reports_bad_threshold(write_file):
    path = write_file(
        "bad_threshold.yml",
        "stages: [{duration: 1s, target: 1}]\nthresholds:\n  http_req_duration: ['p95<50']\n",
    )

    with pytest.raises(ConfigurationError, match="Malformed threshold"):
        load_run_config(path)


@pytest.mark.parametrize("name", ["student_registration.yml", "login.yml"])
def test_shipped_run_configs_load(name):
    run_config = load_run_config(PROJECT_ROOT / "run_configs" / name)

    assert run_config.stages
    assert run_config.thresholds["http_req_duration"]


@pytest.mark.parametrize(
    "name, initial_vus", [("student_registration.yml", 20), ("login.yml", 10)]
)
def test_shipped_run_configs_follow_the_spike_profile(name, initial_vus):
    run_config = load_run_config(PROJECT_ROOT / "run_configs" / name)

    assert run_config.initial_vus == initial_vus
    assert [(stage.duration, stage.target) for stage in run_config.stages] == [
        (3, 10),
        (15, 10),
        (2, 100),
        (3, 100),
        (5, 10),
        (5, 0),
    ]
    assert run_config.max_target == 100
    assert {expr.source for expr in run_config.thresholds["http_req_duration"]} == {
        "max<100",
        "p(95)<50",
    }

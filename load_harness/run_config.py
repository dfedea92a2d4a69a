"""
Load a :class:`~load_harness.models.RunConfig` from YAML.

Example file::

    initial_vus: 0
    think_time: 1s
    grace_period: 30s
    stages:
      - {duration: 3s, target: 10}
      - {duration: 15s, target: 10}
      - {duration: 5s, target: 0}
    thresholds:
      http_req_duration: ["max<100", "p(95)<50"]

Durations accept plain numbers (seconds) or unit strings such as
``500ms``, ``3s``, ``2m`` and ``1m30s``.  Everything is validated here,
before the run starts; the file is never re-read.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Mapping

import yaml

from load_harness.exceptions import ConfigurationError
from load_harness.models import RunConfig, Stage
from load_harness.thresholds import parse_thresholds

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """
    Convert a duration to seconds.

    Raises:
        ConfigurationError: If the value is negative or not a recognised
            duration.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip().lower()
        parts = _DURATION_PART_RE.findall(text)
        if not parts or "".join(number + unit for number, unit in parts) != text:
            raise ConfigurationError(f"Invalid duration: {value!r}")
        seconds = sum(float(number) * _UNIT_SECONDS[unit] for number, unit in parts)
    else:
        raise ConfigurationError(f"Invalid duration: {value!r}")

    if seconds < 0:
        raise ConfigurationError(f"Duration must be >= 0, got {value!r}")
    return seconds


def _parse_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{field_name} must be an integer, got {value!r}")
    return value


def parse_stages(raw: Any) -> tuple[Stage, ...]:
    if not isinstance(raw, list) or not raw:
        raise ConfigurationError("stages must be a non-empty list")

    stages = []
    for position, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise ConfigurationError(f"Stage {position} must be a mapping, got {item!r}")
        try:
            duration = item["duration"]
            target = item["target"]
        except KeyError as exc:
            raise ConfigurationError(f"Stage {position} is missing {exc.args[0]!r}") from exc
        stages.append(
            Stage(
                duration=parse_duration(duration),
                target=_parse_int(target, f"Stage {position} target"),
            )
        )
    return tuple(stages)


def build_run_config(data: Mapping[str, Any]) -> RunConfig:
    """Validate a decoded YAML/JSON mapping and build the RunConfig."""
    if not isinstance(data, Mapping):
        raise ConfigurationError("Run configuration must be a mapping")

    return RunConfig(
        stages=parse_stages(data.get("stages")),
        thresholds=parse_thresholds(data.get("thresholds")),
        initial_vus=_parse_int(data.get("initial_vus", 0), "initial_vus"),
        think_time=parse_duration(data.get("think_time", 1)),
        grace_period=parse_duration(data.get("grace_period", 30)),
    )


def load_run_config(path: str | Path) -> RunConfig:
    """
    Read and validate a YAML run configuration file.

    Raises:
        ConfigurationError: If the file cannot be read or any field is
            invalid.
    """
    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigurationError(f"Cannot read run configuration {source}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Run configuration {source} is not valid YAML: {exc}") from exc

    return build_run_config(data)

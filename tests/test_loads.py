"""
tests/test_loads.py: pytest unit tests for metercal.loads.
"""

from __future__ import annotations

import pytest

from metercal.errors import ConfigurationError
from metercal.loads import (
    LineLoad,
    LoadDefinition,
    accuracy_load,
    build_load,
    normalize_angle,
    parse_load_spec,
)


@pytest.mark.parametrize("raw, expected", [(0, 0), (3600, 0), (-900, 2700), (7350, 150), (None, None)])
def test_normalize_angle(raw, expected) -> None:
    assert normalize_angle(raw) == expected


def test_line_load_json_omits_unset_fields() -> None:
    assert LineLoad(240000, 5000).to_json() == {"voltage": 240000, "current": 5000}
    assert LineLoad(240000, 5000, -300, 0).to_json() == {
        "voltage": 240000, "current": 5000, "voltageAngle": 3300, "currentAngle": 0,
    }


def test_load_definition_json() -> None:
    load = LoadDefinition({3: LineLoad(1, 2), 1: LineLoad(3, 4)}, frequency=60.0)
    assert load.to_json() == {
        "frequency": 60.0,
        "L1": {"voltage": 3, "current": 4},
        "L3": {"voltage": 1, "current": 2},
    }


def test_load_definition_validation() -> None:
    with pytest.raises(ConfigurationError):
        LoadDefinition({0: LineLoad(1, 2)})
    with pytest.raises(ConfigurationError):
        LoadDefinition({1: LineLoad(1, 2)}, frequency=0)


# ──────────────────────────────────────────────────────────────
# Load specs from the command line
# ──────────────────────────────────────────────────────────────

def test_parse_load_spec_converts_degrees() -> None:
    line, load = parse_load_spec("2:230000,5000,-30")
    assert line == 2
    assert load == LineLoad(230000, 5000, 3300, None)


def test_parse_load_spec_allows_empty_fields() -> None:
    assert parse_load_spec("1:,5000,,12.5") == (1, LineLoad(None, 5000, None, 125))


@pytest.mark.parametrize("spec", ["240000,5000", "4:1,2", "x:1,2", "1:a,2", "1:1,2,3,4,5"])
def test_parse_load_spec_rejects(spec: str) -> None:
    with pytest.raises(ConfigurationError):
        parse_load_spec(spec)


def test_build_load() -> None:
    assert build_load([], 50.0) is None
    load = build_load(["1:240000,5000", "2:240000,5000,240"], 50.0)
    assert sorted(load.lines) == [1, 2]
    assert load.lines[2].voltage_angle == 2400
    with pytest.raises(ConfigurationError, match="more than one"):
        build_load(["1:1,2", "1:3,4"], 50.0)


# ──────────────────────────────────────────────────────────────
# Accuracy-test load
# ──────────────────────────────────────────────────────────────

def test_accuracy_load_three_phase_is_balanced() -> None:
    load = accuracy_load(True, 50.0)
    assert {line: l.voltage_angle for line, l in load.lines.items()} == {1: 0, 2: 2400, 3: 1200}
    assert all(l.voltage == 240000 and l.current == 5000 for l in load.lines.values())


def test_accuracy_load_single_line() -> None:
    load = accuracy_load(False, 60.0)
    assert load.frequency == 60.0
    assert load.lines[1] == LineLoad(240000, 5000, 0, 0)
    assert load.lines[2] == LineLoad(0, 0, 0, 0)
    assert load.lines[3] == LineLoad(0, 0, 0, 0)

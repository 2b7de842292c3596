"""
tests/test_config.py: pytest unit tests for metercal.config.
"""

from __future__ import annotations

import pytest

from metercal.config import (
    RunConfig,
    Topology,
    derive_phase_list,
    parse_read_line,
    parse_topology,
)
from metercal.errors import ConfigurationError


@pytest.mark.parametrize("topology, phases", [
    (Topology.SINGLE, (1,)),
    (Topology.THREE, (1, 2, 3)),
    (Topology.SPLIT_ELEMENT, (2, 3)),
])
def test_phase_list_follows_topology(topology: Topology, phases: tuple) -> None:
    assert derive_phase_list(topology) == phases
    assert RunConfig(topology=topology).phase_list == phases


def test_parse_topology_accepts_names() -> None:
    assert parse_topology("Split-Element") is Topology.SPLIT_ELEMENT
    assert parse_topology(" single ") is Topology.SINGLE


def test_parse_topology_rejects_unknown() -> None:
    with pytest.raises(ConfigurationError, match="unknown phase topology"):
        parse_topology("two")


def test_topology_given_as_text_is_converted() -> None:
    assert RunConfig(topology="single").topology is Topology.SINGLE


def test_split_element_reads_line_one_by_default() -> None:
    config = RunConfig(topology=Topology.SPLIT_ELEMENT)
    assert config.is_split
    assert config.read_line(2) == 1
    assert config.read_line(3) == 1


def test_read_line_override() -> None:
    config = RunConfig(topology=Topology.SPLIT_ELEMENT, read_lines={3: 2})
    assert config.read_line(2) == 1
    assert config.read_line(3) == 2
    assert RunConfig().read_line(2) == 2


def test_read_line_out_of_range() -> None:
    with pytest.raises(ConfigurationError):
        RunConfig(read_lines={1: 4})


def test_parse_read_line() -> None:
    assert parse_read_line("3:1") == (3, 1)
    with pytest.raises(ConfigurationError):
        parse_read_line("3")


def test_time_scale_must_be_positive() -> None:
    with pytest.raises(ConfigurationError):
        RunConfig(time_scale=0)


def test_accuracy_only_needs_reference() -> None:
    with pytest.raises(ConfigurationError, match="reference service"):
        RunConfig(skip_calibration=True)
    assert RunConfig(skip_calibration=True, use_reference=True).skip_calibration


def test_config_is_immutable() -> None:
    config = RunConfig()
    with pytest.raises(AttributeError):
        config.auto_answer = True

"""
Run configuration.

``RunConfig`` is built once by the CLI and never changes during a run. The
phase list is derived from the topology at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from metercal.errors import ConfigurationError
from metercal.loads import LINES, LoadDefinition
from metercal.stabilization import StabilizationSettings

DEFAULT_VENDOR = "LANDIS+GYR"
DEFAULT_FREQUENCY = 50.0


class Topology(Enum):
    SINGLE = "single"
    THREE = "three"
    SPLIT_ELEMENT = "split-element"


_PHASE_LISTS = {
    Topology.SINGLE: (1,),
    Topology.THREE: (1, 2, 3),
    Topology.SPLIT_ELEMENT: (2, 3),
}

# Split-element meters are fed from one single-phase source, which the
# reference service senses on line 1.
_SPLIT_READ_LINES = {2: 1, 3: 1}


def parse_topology(text):
    """Return the :class:`Topology` named by ``text``."""
    try:
        return Topology(text.strip().lower())
    except (AttributeError, ValueError):
        names = ", ".join(t.value for t in Topology)
        raise ConfigurationError(f"unknown phase topology '{text}' (expected one of: {names})") from None


def derive_phase_list(topology):
    return _PHASE_LISTS[topology]


def parse_read_line(text):
    """Parse ``PHASE:LINE`` into a ``(phase, line)`` tuple."""
    try:
        phase, line = (int(part) for part in text.split(":"))
    except ValueError:
        raise ConfigurationError(f"read-line mapping '{text}' must look like PHASE:LINE") from None
    return phase, line


@dataclass(frozen=True)
class RunConfig:
    """
    Immutable settings for one calibration run.

    ``use_reference`` tells whether a reference service takes part; the
    client itself is owned by the controller. ``time_scale`` multiplies every
    timer the operations arm.
    """

    topology: Topology = Topology.THREE
    use_reference: bool = False
    auto_answer: bool = False
    skip_calibration: bool = False
    time_scale: float = 1.0
    calibration_load: Optional[LoadDefinition] = None
    frequency: float = DEFAULT_FREQUENCY
    read_lines: Mapping[int, int] = field(default_factory=dict)
    stabilization: StabilizationSettings = field(default_factory=StabilizationSettings)
    vendor: str = DEFAULT_VENDOR
    test_id: int = 1
    phase_list: tuple = field(init=False)

    def __post_init__(self):
        if not isinstance(self.topology, Topology):
            object.__setattr__(self, "topology", parse_topology(self.topology))
        if not self.time_scale > 0:
            raise ConfigurationError(f"time scale must be positive, got {self.time_scale}")
        if self.skip_calibration and not self.use_reference:
            raise ConfigurationError("accuracy-only mode needs a reference service")

        read_lines = dict(_SPLIT_READ_LINES) if self.topology is Topology.SPLIT_ELEMENT else {}
        read_lines.update(self.read_lines)
        for phase, line in read_lines.items():
            if phase not in LINES or line not in LINES:
                raise ConfigurationError(f"read-line mapping {phase}:{line} is outside lines 1..3")

        object.__setattr__(self, "read_lines", read_lines)
        object.__setattr__(self, "phase_list", derive_phase_list(self.topology))

    @property
    def is_split(self):
        return self.topology is Topology.SPLIT_ELEMENT

    def read_line(self, phase):
        """Physical reference line sensed while calibrating ``phase``."""
        return self.read_lines.get(phase, phase)

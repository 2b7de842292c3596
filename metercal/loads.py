"""
Load definitions pushed to the reference service with ``PUT /api/loadef``.

Voltages are in mV, currents in mA and phase angles in tenths of a degree,
normalized to [0, 3600).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from metercal.errors import ConfigurationError

LINES = (1, 2, 3)
FULL_CIRCLE = 3600

# === Fixed accuracy-test load ===
NOMINAL_VOLTAGE = 240000
NOMINAL_CURRENT = 5000
BALANCED_ANGLES = {1: 0, 2: 2400, 3: 1200}


def normalize_angle(tenths):
    if tenths is None:
        return None
    return int(tenths) % FULL_CIRCLE


@dataclass(frozen=True)
class LineLoad:
    voltage: Optional[int] = None
    current: Optional[int] = None
    voltage_angle: Optional[int] = None
    current_angle: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "voltage_angle", normalize_angle(self.voltage_angle))
        object.__setattr__(self, "current_angle", normalize_angle(self.current_angle))

    def to_json(self):
        fields = (
            ("voltage", self.voltage),
            ("current", self.current),
            ("voltageAngle", self.voltage_angle),
            ("currentAngle", self.current_angle),
        )
        return {key: value for key, value in fields if value is not None}


@dataclass(frozen=True)
class LoadDefinition:
    """Per-line targets plus the network frequency shared by all lines."""

    lines: Mapping[int, LineLoad]
    frequency: float = 50.0

    def __post_init__(self):
        for line in self.lines:
            if line not in LINES:
                raise ConfigurationError(f"load line {line} is outside lines 1..3")
        if not self.frequency > 0:
            raise ConfigurationError(f"network frequency must be positive, got {self.frequency}")
        object.__setattr__(self, "lines", dict(sorted(self.lines.items())))

    def to_json(self):
        body = {"frequency": self.frequency}
        for line, load in self.lines.items():
            body[f"L{line}"] = load.to_json()
        return body


def _optional_number(text, convert):
    text = text.strip()
    return convert(text) if text else None


def parse_load_spec(text):
    """
    Parse ``LINE:V,I[,VANGLE[,IANGLE]]`` into ``(line, LineLoad)``.

    V is in mV, I in mA, angles in degrees; any field may be left empty.
    """
    line_part, sep, values = text.partition(":")
    if not sep:
        raise ConfigurationError(f"load spec '{text}' must look like LINE:V,I[,VANGLE[,IANGLE]]")
    fields = values.split(",")
    if len(fields) > 4:
        raise ConfigurationError(f"load spec '{text}' has more than four values")
    fields += [""] * (4 - len(fields))
    try:
        line = int(line_part)
        voltage = _optional_number(fields[0], int)
        current = _optional_number(fields[1], int)
        angles = [_optional_number(f, float) for f in fields[2:]]
    except ValueError:
        raise ConfigurationError(f"load spec '{text}' contains a non-numeric value") from None
    if line not in LINES:
        raise ConfigurationError(f"load spec '{text}' references line {line}, outside 1..3")
    voltage_angle, current_angle = (None if a is None else int(round(a * 10)) for a in angles)
    return line, LineLoad(voltage, current, voltage_angle, current_angle)


def build_load(specs, frequency):
    """Build a :class:`LoadDefinition` from CLI load specs, or None if there are none."""
    if not specs:
        return None
    lines = {}
    for spec in specs:
        line, load = parse_load_spec(spec)
        if line in lines:
            raise ConfigurationError(f"line {line} is given more than one load spec")
        lines[line] = load
    return LoadDefinition(lines, frequency)


def accuracy_load(three_phase, frequency):
    """Fixed load for the post-calibration accuracy test."""
    if three_phase:
        lines = {
            line: LineLoad(NOMINAL_VOLTAGE, NOMINAL_CURRENT, angle, angle)
            for line, angle in BALANCED_ANGLES.items()
        }
    else:
        lines = {1: LineLoad(NOMINAL_VOLTAGE, NOMINAL_CURRENT, 0, 0)}
        for line in (2, 3):
            lines[line] = LineLoad(0, 0, 0, 0)
    return LoadDefinition(lines, frequency)

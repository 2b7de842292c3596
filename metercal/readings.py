"""
Phase readings: the real-world V, I, P, Q values sent to the meter as the
calibration reference for one phase.

Units follow the meter command grammar: voltage in mV, current in mA, active
power in uW and reactive power in uvar (the plain product of mV and mA).
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from metercal.errors import InputFormatError, ServiceUnavailable

READING_PROMPT = (
    "Enter V,I,P,Q or V,I,a of L{phase}. V=mV, I=mA, P=uW, Q=uvar, a=degrees."
    " Ex: 240000,5000,848528137,848528137 or 240000,5000,45."
)


@dataclass(frozen=True)
class PhaseReading:
    voltage: int
    current: int
    active_power: int
    reactive_power: int

    @classmethod
    def from_angle(cls, voltage, current, angle):
        """Derive P and Q from V, I and the angle between them in degrees."""
        rad = np.radians(angle)
        apparent = float(voltage) * float(current)
        return cls(
            voltage,
            current,
            int(round(apparent * float(np.cos(rad)))),
            int(round(apparent * float(np.sin(rad)))),
        )

    def command_argument(self):
        return f"{self.voltage},{self.current},{self.active_power},{self.reactive_power}"


def parse_operator_reading(text):
    """
    Parse an operator answer of the form ``V,I,P,Q`` or ``V,I,angle``.

    Raises:
        InputFormatError: fewer than three fields, or a field is not a number.
    """
    fields = [part.strip() for part in text.split(",")]
    if len(fields) < 3:
        raise InputFormatError(f"expected V,I,P,Q or V,I,a, got '{text.strip()}'")
    try:
        voltage = int(fields[0])
        current = int(fields[1])
        if len(fields) >= 4:
            return PhaseReading(voltage, current, int(fields[2]), int(fields[3]))
        return PhaseReading.from_angle(voltage, current, float(fields[2]))
    except ValueError:
        raise InputFormatError(f"'{text.strip()}' is not a list of numbers") from None


@dataclass(frozen=True)
class InstantaneousSample:
    """One ``GET /api/instantaneous`` reply: per-line arrays of v, i, p, q."""

    voltage: tuple
    current: tuple
    active_power: tuple
    reactive_power: tuple

    @classmethod
    def from_json(cls, body):
        try:
            columns = [tuple(int(round(float(x))) for x in body[key]) for key in ("v", "i", "p", "q")]
        except (KeyError, TypeError, ValueError) as exc:
            raise ServiceUnavailable(f"malformed instantaneous sample: {body!r}") from exc
        return cls(*columns)

    def reading(self, line):
        """Return the :class:`PhaseReading` of physical line ``line`` (1-based)."""
        index = line - 1
        try:
            return PhaseReading(
                self.voltage[index],
                self.current[index],
                self.active_power[index],
                self.reactive_power[index],
            )
        except IndexError:
            raise ServiceUnavailable(f"instantaneous sample has no line {line}") from None

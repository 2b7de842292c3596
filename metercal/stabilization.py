"""
Stabilization check for streamed reference-service samples.

A reading is trusted once the last ``window`` samples agree: the relative
dispersion (standard deviation over the magnitude of the mean) of both the
active and the reactive power must be below ``threshold``. The magnitude is
clamped to ``magnitude_floor`` so a quantity hovering around zero (Q at unity
power factor) is judged by its absolute spread instead of blowing up.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from metercal.errors import ConfigurationError


@dataclass(frozen=True)
class StabilizationSettings:
    window: int = 5
    threshold: float = 0.005
    magnitude_floor: float = 1e6

    def __post_init__(self):
        if self.window < 2:
            raise ConfigurationError(f"stabilization window must hold at least 2 samples, got {self.window}")
        if not self.threshold > 0:
            raise ConfigurationError(f"stabilization threshold must be positive, got {self.threshold}")
        if self.magnitude_floor < 0:
            raise ConfigurationError("stabilization magnitude floor must not be negative")


def relative_dispersion(values, floor=0.0):
    samples = np.asarray(values, dtype=float)
    spread = float(samples.std())
    if spread == 0.0:
        return 0.0
    scale = max(abs(float(samples.mean())), floor)
    if scale == 0.0:
        return float("inf")
    return spread / scale


class StabilizationEvaluator:
    def __init__(self, settings=None):
        self.settings = settings or StabilizationSettings()

    def dispersion(self, values):
        return relative_dispersion(values, self.settings.magnitude_floor)

    def is_stable(self, readings):
        """Judge the most recent ``window`` :class:`PhaseReading` objects."""
        window = self.settings.window
        if len(readings) < window:
            return False
        recent = list(readings)[-window:]
        p = self.dispersion([r.active_power for r in recent])
        q = self.dispersion([r.reactive_power for r in recent])
        return p < self.settings.threshold and q < self.settings.threshold

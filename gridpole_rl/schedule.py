"""Exponential epsilon decay over global environment steps."""

from __future__ import annotations

import math

from gridpole_sim.errors import ConfigurationError


class EpsilonSchedule:
    """epsilon(t) = end + (start - end) * exp(-t / decay_steps).

    ``decay_steps`` is the e-folding time: after that many steps ~63% of the
    decay from ``start`` towards ``end`` is done.
    """

    def __init__(self, start: float = 0.9, end: float = 0.05, decay_steps: float = 1000.0):
        if decay_steps <= 0:
            raise ConfigurationError(f"decay_steps must be > 0, got {decay_steps}")
        if not 0.0 <= end <= start <= 1.0:
            raise ConfigurationError(f"need 0 <= end <= start <= 1, got start={start} end={end}")
        self.start = float(start)
        self.end = float(end)
        self.decay_steps = float(decay_steps)

    def value(self, t: int) -> float:
        if t < 0:
            raise ValueError("t must be >= 0")
        return self.end + (self.start - self.end) * math.exp(-float(t) / self.decay_steps)

    def __call__(self, t: int) -> float:
        return self.value(t)

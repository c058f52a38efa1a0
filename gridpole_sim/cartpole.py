"""Cart-pole balancing simulator (classic control physics, explicit Euler)."""

from __future__ import annotations

import math
import threading
from typing import Any

import numpy as np

from .errors import ConfigurationError, InvalidActionError

GRAVITY = 9.8
MASS_CART = 1.0
MASS_POLE = 0.1
TOTAL_MASS = MASS_CART + MASS_POLE
HALF_POLE_LENGTH = 0.5
POLE_MASS_LENGTH = MASS_POLE * HALF_POLE_LENGTH
FORCE_MAG = 10.0
TAU = 0.02

X_THRESHOLD = 2.4
# Two thresholds (35 and 45 degrees) were used historically; 45 is the one we keep.
ANGLE_THRESHOLD_DEGREES = 45.0
MAX_STEPS = 500
RESET_BOUND = 0.05


class CartPole:
    """Thread-safe cart-pole with 2 actions: 0 pushes left, 1 pushes right.

    State is (x, x_dot, theta, theta_dot). Reward is 1.0 for every step the pole
    survives and 0.0 on the step it falls.
    """

    ACTION_DIM = 2
    STATE_SIZE = 4

    def __init__(self, angle_threshold_degrees: float = ANGLE_THRESHOLD_DEGREES, seed: int | None = None):
        if not angle_threshold_degrees > 0.0:
            raise ConfigurationError(f"angle_threshold_degrees must be > 0, got {angle_threshold_degrees}")

        self.angle_threshold_degrees = float(angle_threshold_degrees)
        self.theta_threshold_radians = self.angle_threshold_degrees * math.pi / 180.0
        self.x_threshold = X_THRESHOLD
        self.max_steps = MAX_STEPS
        self._lock = threading.RLock()
        self._rng = np.random.default_rng(seed)

        self._state = (0.0, 0.0, 0.0, 0.0)
        self.steps = 0

    @property
    def state(self) -> tuple[float, float, float, float]:
        with self._lock:
            return self._state

    def set_state(self, state) -> tuple[float, float, float, float]:
        values = tuple(float(v) for v in state)
        if len(values) != self.STATE_SIZE:
            raise ConfigurationError(f"CartPole state must have {self.STATE_SIZE} values, got {len(values)}")
        with self._lock:
            self._state = values  # type: ignore[assignment]
            self.steps = 0
            return self._state

    def reset(self) -> tuple[float, float, float, float]:
        with self._lock:
            draw = self._rng.uniform(-RESET_BOUND, RESET_BOUND, size=self.STATE_SIZE)
            self._state = tuple(float(v) for v in draw)  # type: ignore[assignment]
            self.steps = 0
            return self._state

    def step(self, action: int) -> tuple[tuple[float, float, float, float], float, bool, bool]:
        """Integrate one tau step and return (observation, reward, terminated, truncated)."""
        if isinstance(action, bool) or not isinstance(action, int) or not 0 <= action < self.ACTION_DIM:
            raise InvalidActionError(f"Action must be 0 or 1, got {action!r}")

        with self._lock:
            x, x_dot, theta, theta_dot = self._state
            force = FORCE_MAG if action == 1 else -FORCE_MAG
            cos_t = math.cos(theta)
            sin_t = math.sin(theta)

            temp = (force + POLE_MASS_LENGTH * theta_dot * theta_dot * sin_t) / TOTAL_MASS
            theta_acc = (GRAVITY * sin_t - cos_t * temp) / (
                HALF_POLE_LENGTH * (4.0 / 3.0 - MASS_POLE * cos_t * cos_t / TOTAL_MASS)
            )
            x_acc = temp - POLE_MASS_LENGTH * theta_acc * cos_t / TOTAL_MASS

            self._state = (
                x + TAU * x_dot,
                x_dot + TAU * x_acc,
                theta + TAU * theta_dot,
                theta_dot + TAU * theta_acc,
            )
            self.steps += 1

            new_x, _, new_theta, _ = self._state
            terminated = abs(new_x) > self.x_threshold or abs(new_theta) > self.theta_threshold_radians
            truncated = self.steps >= self.max_steps
            reward = 0.0 if terminated else 1.0
            return self._state, reward, terminated, truncated

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": list(self._state),
                "steps": self.steps,
                "max_steps": self.max_steps,
                "x_threshold": self.x_threshold,
                "theta_threshold_radians": self.theta_threshold_radians,
            }

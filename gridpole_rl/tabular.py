"""Tabular Q-learning on raw GridWorld positions."""

from __future__ import annotations

import numpy as np

from .types import Transition

DEFAULT_ALPHA = 0.5


class TabularQLearner:
    """Q table of shape (grid_size, grid_size, action_dim) indexed by (row, col) features."""

    def __init__(self, grid_size: int, action_dim: int = 4, alpha: float = DEFAULT_ALPHA, gamma: float = 0.99):
        if not 0.0 < alpha <= 1.0:
            raise ValueError("alpha must be in (0, 1]")
        self.grid_size = int(grid_size)
        self.action_dim = int(action_dim)
        self.alpha = float(alpha)
        self.gamma = float(gamma)
        self.table = np.zeros((self.grid_size, self.grid_size, self.action_dim), dtype=np.float64)

    @staticmethod
    def _cell(features) -> tuple[int, int]:
        row, col = (int(round(float(v))) for v in np.asarray(features).reshape(-1)[:2])
        return row, col

    def q_values(self, features) -> np.ndarray:
        arr = np.asarray(features)
        if arr.ndim == 2:
            return np.stack([self.q_values(row) for row in arr])
        row, col = self._cell(arr)
        return self.table[row, col].copy()

    def greedy_action(self, features) -> int:
        return int(np.argmax(self.q_values(features)))

    def update(self, transition: Transition) -> float:
        """One Q-learning backup; returns the absolute TD error."""
        row, col = self._cell(transition.state)
        next_row, next_col = self._cell(transition.next_state)
        current = self.table[row, col, transition.action]
        next_max = 0.0 if transition.done else float(np.max(self.table[next_row, next_col]))
        td_error = transition.reward + self.gamma * next_max - current
        self.table[row, col, transition.action] = current + self.alpha * td_error
        return abs(float(td_error))

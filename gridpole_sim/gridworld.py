"""Discrete grid-world simulator with obstacles, a pit and a goal."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Iterable

from .errors import ConfigurationError, InvalidActionError

ACTION_NAMES = ("up", "down", "left", "right")
ACTION_DELTAS = ((-1, 0), (1, 0), (0, -1), (0, 1))

MIN_GRID_SIZE = 6
START_POS = (0, 0)
DEFAULT_PIT = (3, 3)
DEFAULT_BLOCKS = frozenset({(1, 2), (2, 2), (4, 2)})

GOAL_REWARD = 1.0
STEP_REWARD = -0.01
DEFAULT_PIT_DEATH_REWARD = -1.0


@dataclass(frozen=True)
class GridMetadata:
    """Static layout of a grid world, fixed for the lifetime of the environment."""

    grid_size: int
    goal: tuple[int, int]
    pit: tuple[int, int]
    blocks: frozenset[tuple[int, int]]

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.grid_size and 0 <= col < self.grid_size

    def is_blocked(self, row: int, col: int) -> bool:
        return (row, col) in self.blocks


def _as_cell(value: Iterable[int], name: str) -> tuple[int, int]:
    cell = tuple(int(v) for v in value)
    if len(cell) != 2:
        raise ConfigurationError(f"{name} must be a (row, col) pair, got {value!r}")
    return cell  # type: ignore[return-value]


class GridWorld:
    """Thread-safe grid world with 4 actions: 0 up, 1 down, 2 left, 3 right.

    The goal is always the bottom-right cell. Blocked cells are impassable but
    not terminal. Stepping towards the pit ends the episode even when the pit
    cell is also blocked.
    """

    ACTION_DIM = 4

    def __init__(
        self,
        grid_size: int = MIN_GRID_SIZE,
        pit_death_reward: float = DEFAULT_PIT_DEATH_REWARD,
        pit: Iterable[int] = DEFAULT_PIT,
        blocks: Iterable[Iterable[int]] = DEFAULT_BLOCKS,
    ):
        if int(grid_size) < MIN_GRID_SIZE:
            raise ConfigurationError(f"grid_size must be >= {MIN_GRID_SIZE}, got {grid_size}")

        grid_size = int(grid_size)
        goal = (grid_size - 1, grid_size - 1)
        pit_cell = _as_cell(pit, "pit")
        block_cells = frozenset(_as_cell(b, "block") for b in blocks)
        metadata = GridMetadata(grid_size=grid_size, goal=goal, pit=pit_cell, blocks=block_cells)

        for cell in (pit_cell, *block_cells):
            if not metadata.in_bounds(*cell):
                raise ConfigurationError(f"Cell {cell} is outside a {grid_size}x{grid_size} grid")
        if pit_cell in (START_POS, goal):
            raise ConfigurationError("pit must not coincide with the start or the goal cell")
        if START_POS in block_cells or goal in block_cells:
            raise ConfigurationError("start and goal cells must not be blocked")

        self.grid_size = grid_size
        self.pit_death_reward = float(pit_death_reward)
        self.max_steps = grid_size * grid_size * 2
        self._metadata = metadata
        self._lock = threading.RLock()

        self._agent_pos = START_POS
        self.steps = 0

    @property
    def metadata(self) -> GridMetadata:
        return self._metadata

    @property
    def goal(self) -> tuple[int, int]:
        return self._metadata.goal

    @property
    def pit(self) -> tuple[int, int]:
        return self._metadata.pit

    @property
    def blocks(self) -> frozenset[tuple[int, int]]:
        return self._metadata.blocks

    @property
    def agent_pos(self) -> tuple[int, int]:
        with self._lock:
            return self._agent_pos

    def reset(self) -> tuple[int, int]:
        with self._lock:
            self._agent_pos = START_POS
            self.steps = 0
            return self._agent_pos

    def step(self, action: int) -> tuple[tuple[int, int], float, bool, bool]:
        """Apply one move and return (observation, reward, terminated, truncated)."""
        if isinstance(action, bool) or not isinstance(action, int) or not 0 <= action < self.ACTION_DIM:
            raise InvalidActionError(f"Action must be an integer in range 0..{self.ACTION_DIM - 1}, got {action!r}")

        with self._lock:
            row, col = self._agent_pos
            d_row, d_col = ACTION_DELTAS[action]
            # Moving into a wall is a no-op on that axis.
            target = (
                min(max(row + d_row, 0), self.grid_size - 1),
                min(max(col + d_col, 0), self.grid_size - 1),
            )
            if target not in self._metadata.blocks:
                self._agent_pos = target
            self.steps += 1

            truncated = self.steps >= self.max_steps
            if target == self._metadata.pit:
                return self._agent_pos, self.pit_death_reward, True, truncated

            terminated = self._agent_pos == self._metadata.goal
            reward = GOAL_REWARD if terminated else STEP_REWARD
            return self._agent_pos, reward, terminated, truncated

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "grid_size": self.grid_size,
                "agent_pos": list(self._agent_pos),
                "blocks": sorted(list(b) for b in self._metadata.blocks),
                "pit": list(self._metadata.pit),
                "goal": list(self._metadata.goal),
                "steps": self.steps,
                "max_steps": self.max_steps,
            }

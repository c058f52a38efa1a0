"""Shared dataclasses for the RL pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

import numpy as np


def _frozen_copy(values) -> np.ndarray:
    arr = np.array(values, dtype=np.float32, copy=True).reshape(-1)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class Transition:
    state: np.ndarray  # feature vector before the action
    action: int
    next_state: np.ndarray  # feature vector after the action
    reward: float
    done: bool

    def __post_init__(self) -> None:
        object.__setattr__(self, "state", _frozen_copy(self.state))
        object.__setattr__(self, "next_state", _frozen_copy(self.next_state))
        object.__setattr__(self, "action", int(self.action))
        object.__setattr__(self, "reward", float(self.reward))
        object.__setattr__(self, "done", bool(self.done))


class TrainerStatus(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class Telemetry:
    status: TrainerStatus
    episode_index: int
    global_step: int
    epsilon: float
    episode_reward: float
    last_episode_reward: float
    rolling_average_reward: float
    reward_history: list[float]
    explore_count: int
    exploit_count: int
    last_loss: float | None = None
    episode_done: bool = False
    q_values: dict[tuple[int, int], list[float]] | None = field(default=None)

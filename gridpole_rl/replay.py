"""Experience replay: fixed-capacity FIFO buffer with uniform sampling."""

from __future__ import annotations

from collections import deque

import numpy as np

from gridpole_sim.errors import PreconditionError

from .types import Transition


class ReplayMemory:
    """Ring buffer of transitions.

    Once full, pushing evicts the oldest transition. ``sample`` draws with
    replacement, so a batch may contain the same transition twice.
    """

    def __init__(self, capacity: int = 10_000, seed: int | None = None):
        if int(capacity) < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = int(capacity)
        self._buffer: deque[Transition] = deque(maxlen=self.capacity)
        self._rng = np.random.default_rng(seed)

    def push(self, transition: Transition) -> Transition | None:
        """Append a transition; returns the one evicted to make room, if any."""
        evicted = self._buffer[0] if len(self._buffer) == self.capacity else None
        self._buffer.append(transition)
        return evicted

    def undo_push(self, evicted: Transition | None = None) -> None:
        """Revert the latest push, restoring the transition it evicted."""
        if not self._buffer:
            raise PreconditionError("Nothing to undo in an empty replay memory")
        self._buffer.pop()
        if evicted is not None:
            self._buffer.appendleft(evicted)

    def sample(self, k: int) -> list[Transition]:
        if not self._buffer:
            raise PreconditionError("Cannot sample from an empty replay memory")
        if int(k) < 1:
            raise ValueError("k must be >= 1")
        idx = self._rng.integers(0, len(self._buffer), size=int(k))
        return [self._buffer[int(i)] for i in idx]

    def clear(self) -> None:
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)


def collate(batch: list[Transition]) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Stack transitions into (states, actions, rewards, next_states, dones) arrays."""
    if not batch:
        raise ValueError("batch must not be empty")
    states = np.stack([t.state for t in batch]).astype(np.float32)
    actions = np.asarray([t.action for t in batch], dtype=np.int64)
    rewards = np.asarray([t.reward for t in batch], dtype=np.float32)
    next_states = np.stack([t.next_state for t in batch]).astype(np.float32)
    dones = np.asarray([t.done for t in batch], dtype=np.float32)
    return states, actions, rewards, next_states, dones

"""DQN learner: online network trained on replay batches, target network synced by hard copy."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import torch
import torch.nn as nn

from gridpole_sim.errors import PreconditionError

from .qnet import DEFAULT_HIDDEN_SIZES, QNetwork
from .replay import collate
from .types import Transition

GRAD_CLIP_VALUE = 5.0
TARGET_SYNC_EVERY = 200


class DQNLearner:
    """Owns the online/target Q-networks and the Adam optimizer.

    Only the online network is ever trained. The target network changes only in
    ``sync_target``, which copies the online parameters verbatim.
    """

    def __init__(
        self,
        input_dim: int,
        action_dim: int,
        hidden_sizes: Sequence[int] = DEFAULT_HIDDEN_SIZES,
        learning_rate: float = 1e-3,
        gamma: float = 0.99,
        grad_clip: float = GRAD_CLIP_VALUE,
        target_sync_every: int = TARGET_SYNC_EVERY,
        device: torch.device | str = "cpu",
    ):
        if target_sync_every < 1:
            raise ValueError("target_sync_every must be >= 1")
        self.input_dim = int(input_dim)
        self.action_dim = int(action_dim)
        self.gamma = float(gamma)
        self.grad_clip = float(grad_clip)
        self.target_sync_every = int(target_sync_every)
        self.device = torch.device(device)
        self._materialized = False

        self.online = QNetwork(self.input_dim, self.action_dim, hidden_sizes).to(self.device)
        self.target = QNetwork(self.input_dim, self.action_dim, hidden_sizes).to(self.device)
        self.target.load_state_dict(self.online.state_dict())
        self.target.eval()
        for p in self.target.parameters():
            p.requires_grad_(False)
        self.optimizer = torch.optim.Adam(self.online.parameters(), lr=float(learning_rate))

        self.optimize_steps = 0
        self._warm_up()

    @property
    def hidden_sizes(self) -> tuple[int, ...]:
        return self.online.hidden_sizes

    @property
    def learning_rate(self) -> float:
        return float(self.optimizer.param_groups[0]["lr"])

    def set_learning_rate(self, lr: float) -> None:
        for group in self.optimizer.param_groups:
            group["lr"] = float(lr)

    def _warm_up(self) -> None:
        # Dummy pass so parameters are materialised before the first real query.
        dummy = torch.zeros((1, self.input_dim), dtype=torch.float32, device=self.device)
        with torch.no_grad():
            self.online(dummy)
            self.target(dummy)
        self._materialized = True

    def _to_tensor(self, features) -> torch.Tensor:
        arr = np.array(features, dtype=np.float32, copy=True)
        if arr.ndim == 1:
            arr = arr[None, :]
        return torch.from_numpy(arr).to(self.device)

    def q_values(self, features) -> np.ndarray:
        """Self-contained inference on the online network; [dim] -> [A] or [B, dim] -> [B, A]."""
        if not self._materialized:
            raise PreconditionError("Q-network queried before warm-up")
        single = np.asarray(features).ndim == 1
        with torch.no_grad():
            q = self.online(self._to_tensor(features)).cpu().numpy()
        return q[0] if single else q

    def greedy_action(self, features) -> int:
        # np.argmax returns the first maximal index on ties.
        return int(np.argmax(self.q_values(features)))

    def compute_targets(self, batch: list[Transition]) -> tuple[torch.Tensor, torch.Tensor]:
        """Return (online predictions, TD target tensor) for a sampled batch.

        The target equals the detached predictions except for the taken action,
        which holds ``reward`` for terminal transitions and
        ``reward + gamma * max_a' target(next_state)[a']`` otherwise.
        """
        states, actions, rewards, next_states, dones = collate(batch)
        states_t = torch.from_numpy(states).to(self.device)
        actions_t = torch.from_numpy(actions).to(self.device)
        rewards_t = torch.from_numpy(rewards).to(self.device)
        next_states_t = torch.from_numpy(next_states).to(self.device)
        dones_t = torch.from_numpy(dones).to(self.device)

        predictions = self.online(states_t)  # [B, A]
        with torch.no_grad():
            next_max = self.target(next_states_t).max(dim=1).values  # [B]
            td_target = rewards_t + self.gamma * next_max * (1.0 - dones_t)
            targets = predictions.detach().clone()
            targets[torch.arange(len(batch), device=self.device), actions_t] = td_target
        return predictions, targets

    def optimize(self, batch: list[Transition]) -> float:
        predictions, targets = self.compute_targets(batch)
        loss = nn.functional.mse_loss(predictions, targets)

        self.optimizer.zero_grad()
        loss.backward()
        torch.nn.utils.clip_grad_value_(self.online.parameters(), self.grad_clip)
        self.optimizer.step()

        self.optimize_steps += 1
        if self.optimize_steps % self.target_sync_every == 0:
            self.sync_target()
        return float(loss.detach().item())

    def sync_target(self) -> None:
        self.target.load_state_dict(self.online.state_dict())

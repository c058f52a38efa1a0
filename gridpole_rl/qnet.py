"""Feed-forward Q-network: feature vector -> one Q-value per discrete action."""

from __future__ import annotations

from typing import Sequence

import torch
import torch.nn as nn

from gridpole_sim.errors import ConfigurationError

DEFAULT_HIDDEN_SIZES = (128, 128)


class QNetwork(nn.Module):
    """x(input_dim) -> [Linear -> ReLU] * len(hidden_sizes) -> Linear(action_dim)."""

    def __init__(self, input_dim: int, action_dim: int, hidden_sizes: Sequence[int] = DEFAULT_HIDDEN_SIZES):
        super().__init__()
        if int(input_dim) < 1 or int(action_dim) < 1:
            raise ConfigurationError("input_dim and action_dim must be >= 1")
        sizes = [int(h) for h in hidden_sizes]
        if any(h < 1 for h in sizes):
            raise ConfigurationError(f"hidden layer widths must be >= 1, got {list(hidden_sizes)}")

        self.input_dim = int(input_dim)
        self.action_dim = int(action_dim)
        self.hidden_sizes = tuple(sizes)

        layers: list[nn.Module] = []
        prev = self.input_dim
        for width in sizes:
            layers.append(nn.Linear(prev, width))
            layers.append(nn.ReLU())
            prev = width
        layers.append(nn.Linear(prev, self.action_dim))
        self.layers = nn.Sequential(*layers)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """x: [B, input_dim] -> Q-values: [B, action_dim]."""
        return self.layers(x)

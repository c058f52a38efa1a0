"""Greedy evaluation of a trained agent and reward-history plotting."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Sequence

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from gridpole_sim import CartPole, GridWorld

from .config import build_environment

if TYPE_CHECKING:
    from .trainer import Trainer

matplotlib.use("Agg")


@dataclass
class EvaluationMetrics:
    episodes: int
    success_count: int
    success_rate: float
    steps_min: float
    steps_mean: float
    steps_max: float
    return_mean: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "episodes": self.episodes,
            "success_count": self.success_count,
            "success_rate": self.success_rate,
            "steps_min": self.steps_min,
            "steps_mean": self.steps_mean,
            "steps_max": self.steps_max,
            "return_mean": self.return_mean,
        }


def _aggregate(successes: np.ndarray, steps: np.ndarray, returns: np.ndarray) -> EvaluationMetrics:
    successes = np.asarray(successes, dtype=bool)
    steps = np.asarray(steps, dtype=np.int64)
    episodes = int(steps.size)
    success_count = int(successes.sum())
    return EvaluationMetrics(
        episodes=episodes,
        success_count=success_count,
        success_rate=float(success_count / episodes) if episodes > 0 else 0.0,
        steps_min=float(np.min(steps)) if episodes > 0 else 0.0,
        steps_mean=float(np.mean(steps)) if episodes > 0 else 0.0,
        steps_max=float(np.max(steps)) if episodes > 0 else 0.0,
        return_mean=float(np.mean(returns)) if episodes > 0 else 0.0,
    )


def evaluate_greedy(trainer: "Trainer", episodes: int) -> EvaluationMetrics:
    """Roll out the greedy policy on a fresh environment built from ``trainer.config``.

    Success means reaching the goal (GridWorld) or surviving until truncation (CartPole).
    The trainer's own environment and counters are left untouched.
    """
    if int(episodes) < 0:
        raise ValueError("episodes must be >= 0")
    env = build_environment(trainer.config)
    successes, steps, returns = [], [], []
    for _ in range(int(episodes)):
        obs = env.reset()
        total, n, terminated, truncated = 0.0, 0, False, False
        while not (terminated or truncated):
            action = int(np.argmax(trainer.get_q_values(obs)))
            obs, reward, terminated, truncated = env.step(action)
            total += float(reward)
            n += 1
        if isinstance(env, GridWorld):
            successes.append(terminated and tuple(obs) == env.goal)
        elif isinstance(env, CartPole):
            successes.append(truncated and not terminated)
        steps.append(n)
        returns.append(total)
    return _aggregate(np.array(successes, dtype=bool), np.array(steps), np.array(returns, dtype=np.float64))


def rolling_mean(values: Sequence[float], window: int) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        return arr
    window = max(1, int(window))
    csum = np.cumsum(np.insert(arr, 0, 0.0))
    out = np.empty_like(arr)
    for i in range(arr.size):
        lo = max(0, i + 1 - window)
        out[i] = (csum[i + 1] - csum[lo]) / (i + 1 - lo)
    return out


def plot_reward_history(rewards: Sequence[float], path: str | Path, window: int = 10) -> Path:
    """Write episode rewards and their rolling average to a PNG; returns the path."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    x = np.arange(1, len(rewards) + 1)

    fig, ax = plt.subplots(figsize=(10, 5))
    if len(rewards) > 0:
        ax.plot(x, rewards, alpha=0.35, label="episode reward")
        ax.plot(x, rolling_mean(rewards, window), linewidth=2.0, label=f"rolling avg ({window})")
        ax.legend()
    else:
        ax.text(0.5, 0.5, "No Data", ha="center", va="center")
    ax.set_title("Training Reward")
    ax.set_xlabel("Episode")
    ax.set_ylabel("Reward")
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    fig.savefig(out, dpi=140)
    plt.close(fig)
    return out

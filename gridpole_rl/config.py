"""Trainer configuration: dataclass defaults, per-environment presets and YAML loading."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from gridpole_sim import ENV_KINDS, CartPole, GridWorld, make_environment
from gridpole_sim.cartpole import ANGLE_THRESHOLD_DEGREES
from gridpole_sim.errors import ConfigurationError
from gridpole_sim.gridworld import DEFAULT_PIT_DEATH_REWARD, MIN_GRID_SIZE

from .features import FEATURE_KINDS, SensorFlags
from .qnet import DEFAULT_HIDDEN_SIZES

LEARNER_KINDS = ("dqn", "table")

# training-section keys that drive a CLI run rather than the trainer itself
RUN_KEYS = frozenset({"episodes", "eval_episodes", "plot"})

# Values left as None in TrainerConfig are filled from here by resolved().
PRESETS: dict[tuple[str, str], dict[str, Any]] = {
    ("gridworld", "dqn"): {
        "features": "lidar",
        "learning_rate": 1e-3,
        "eps_start": 0.9,
        "eps_end": 0.05,
        "eps_decay": 1000.0,
    },
    ("gridworld", "table"): {
        "features": "raw",
        "learning_rate": 0.5,  # used as the table's alpha
        "eps_start": 1.0,
        "eps_end": 0.05,
        "eps_decay": 10000.0,
    },
    ("cartpole", "dqn"): {
        "features": "identity",
        "learning_rate": 3e-4,
        "eps_start": 0.9,
        "eps_end": 0.01,
        "eps_decay": 2500.0,
    },
}

# YAML section -> {yaml key: TrainerConfig field}
_SECTION_KEYS: dict[str, dict[str, str]] = {
    "env": {
        "kind": "env",
        "grid_size": "grid_size",
        "pit_death_reward": "pit_death_reward",
        "angle_threshold_degrees": "angle_threshold_degrees",
    },
    "features": {"kind": "features", "sensors": "sensor_flags"},
    "network": {
        "learner": "learner",
        "hidden_sizes": "hidden_sizes",
        "learning_rate": "learning_rate",
        "grad_clip": "grad_clip",
        "target_sync_every": "target_sync_every",
        "device": "device",
    },
}


@dataclass
class TrainerConfig:
    env: str = "gridworld"
    grid_size: int = MIN_GRID_SIZE
    pit_death_reward: float = DEFAULT_PIT_DEATH_REWARD
    angle_threshold_degrees: float = ANGLE_THRESHOLD_DEGREES
    learner: str = "dqn"
    features: str | None = None
    sensor_flags: SensorFlags = field(default_factory=SensorFlags)
    hidden_sizes: tuple[int, ...] = DEFAULT_HIDDEN_SIZES
    learning_rate: float | None = None
    gamma: float = 0.99
    batch_size: int = 64
    replay_capacity: int = 10_000
    eps_start: float | None = None
    eps_end: float | None = None
    eps_decay: float | None = None
    target_sync_every: int = 200
    grad_clip: float = 5.0
    telemetry_interval: int = 10
    reward_window: int = 10
    log_interval: int = 0
    step_delay: float = 0.0
    progress: bool = False
    tensorboard_logdir: str | None = None
    seed: int | None = None
    device: str = "cpu"

    @classmethod
    def for_env(cls, env: str, **overrides: Any) -> "TrainerConfig":
        return replace(cls(env=env), **overrides).resolved()

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> "TrainerConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        values = dict(values)
        if "sensor_flags" in values and not isinstance(values["sensor_flags"], SensorFlags):
            values["sensor_flags"] = SensorFlags.from_dict(values["sensor_flags"])
        if "hidden_sizes" in values:
            values["hidden_sizes"] = tuple(int(h) for h in values["hidden_sizes"])
        return cls(**values)

    def resolved(self) -> "TrainerConfig":
        """Fill unset values from the (env, learner) preset and validate."""
        env = str(self.env).lower()
        learner = str(self.learner).lower()
        if env not in ENV_KINDS:
            raise ConfigurationError(f"env must be one of: {', '.join(ENV_KINDS)}, got {self.env!r}")
        if learner not in LEARNER_KINDS:
            raise ConfigurationError(f"learner must be one of: {', '.join(LEARNER_KINDS)}, got {self.learner!r}")
        preset = PRESETS.get((env, learner))
        if preset is None:
            raise ConfigurationError(f"learner '{learner}' is not supported for env '{env}'")

        filled = {name: value for name, value in preset.items() if getattr(self, name) is None}
        cfg = replace(self, env=env, learner=learner, **filled)
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if self.features is not None and self.features not in FEATURE_KINDS:
            raise ConfigurationError(f"features must be one of: {', '.join(FEATURE_KINDS)}, got {self.features!r}")
        if self.env == "cartpole" and self.features not in (None, "identity"):
            raise ConfigurationError("CartPole only supports 'identity' features")
        if self.env == "gridworld" and self.features == "identity":
            raise ConfigurationError("GridWorld needs one of the grid feature extractors")
        if self.learner == "table" and self.features not in (None, "raw"):
            raise ConfigurationError("The tabular learner needs 'raw' features")
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be >= 1")
        if self.replay_capacity < self.batch_size:
            raise ConfigurationError("replay_capacity must be >= batch_size")
        if not 0.0 <= self.gamma <= 1.0:
            raise ConfigurationError("gamma must be in [0, 1]")
        if self.learning_rate is not None and self.learning_rate <= 0.0:
            raise ConfigurationError("learning_rate must be > 0")
        if self.learner == "table" and self.learning_rate is not None and self.learning_rate > 1.0:
            raise ConfigurationError("learning_rate (the table alpha) must be <= 1")
        if self.telemetry_interval < 1 or self.reward_window < 1:
            raise ConfigurationError("telemetry_interval and reward_window must be >= 1")
        if self.step_delay < 0.0:
            raise ConfigurationError("step_delay must be >= 0")


def load_config(path: str | Path) -> dict:
    """Load a YAML config file. Returns the raw mapping with section keys."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def flatten_config(raw: dict[str, Any]) -> dict[str, Any]:
    """Map YAML sections (env/features/network/training) onto TrainerConfig field names.

    ``training.episodes`` is kept under the key ``episodes`` for the CLI.
    """
    flat: dict[str, Any] = {}
    for section, values in (raw or {}).items():
        values = values or {}
        if section == "training":
            allowed = {f.name for f in fields(TrainerConfig)} | RUN_KEYS
            unknown = set(values) - allowed
            if unknown:
                raise ConfigurationError(f"Unknown training keys: {', '.join(sorted(unknown))}")
            flat.update(values)
            continue
        mapping = _SECTION_KEYS.get(section)
        if mapping is None:
            raise ConfigurationError(f"Unknown config section: {section!r}")
        for key, value in values.items():
            if key not in mapping:
                raise ConfigurationError(f"Unknown key {section}.{key}")
            flat[mapping[key]] = value
    return flat


def build_environment(config: TrainerConfig) -> GridWorld | CartPole:
    """Fresh environment instance for ``config.env`` with its environment parameters."""
    if config.env == "gridworld":
        return make_environment("gridworld", grid_size=config.grid_size, pit_death_reward=config.pit_death_reward)
    return make_environment("cartpole", angle_threshold_degrees=config.angle_threshold_degrees, seed=config.seed)

"""DQN training package for GridWorld and CartPole."""

from .config import TrainerConfig
from .dqn import DQNLearner
from .features import SensorFlags, make_extractor
from .replay import ReplayMemory
from .schedule import EpsilonSchedule
from .trainer import Trainer
from .types import Telemetry, TrainerStatus, Transition

__all__ = [
    "DQNLearner",
    "EpsilonSchedule",
    "ReplayMemory",
    "SensorFlags",
    "Telemetry",
    "Trainer",
    "TrainerConfig",
    "TrainerStatus",
    "Transition",
    "make_extractor",
]

"""Feature extractors: raw observation + static layout -> network input vector."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass

import numpy as np

from gridpole_sim.errors import ConfigurationError
from gridpole_sim.gridworld import GridMetadata

FEATURE_KINDS = ("raw", "distance", "lidar", "identity")

# Neighbour order: up, down, left, right, then up-left, up-right, down-left, down-right.
STRAIGHT_OFFSETS = ((-1, 0), (1, 0), (0, -1), (0, 1))
DIAGONAL_OFFSETS = ((-1, -1), (-1, 1), (1, -1), (1, 1))


@dataclass(frozen=True)
class SensorFlags:
    goal_localization: bool = True
    straight_sensors: bool = True
    diagonal_sensors: bool = True
    pit_distance: bool = True

    def any_enabled(self) -> bool:
        return any(asdict(self).values())

    @classmethod
    def from_dict(cls, values: dict | None) -> "SensorFlags":
        values = dict(values or {})
        unknown = set(values) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"Unknown sensor flags: {', '.join(sorted(unknown))}")
        return cls(**{k: bool(v) for k, v in values.items()})


class FeatureExtractor:
    """Base strategy. Subclasses return a fresh float32 vector on every call."""

    name = "base"
    dim = 0

    def __call__(self, observation) -> np.ndarray:
        return self.extract(observation)

    def extract(self, observation) -> np.ndarray:
        raise NotImplementedError

    def validate(self) -> None:
        """Raise ConfigurationError if the extractor cannot be used for training."""


class IdentityExtractor(FeatureExtractor):
    """CartPole: the raw observation already is the feature vector."""

    name = "identity"

    def __init__(self, dim: int = 4):
        self.dim = int(dim)

    def extract(self, observation) -> np.ndarray:
        out = np.array(observation, dtype=np.float32, copy=True).reshape(-1)
        if out.shape != (self.dim,):
            raise ValueError(f"observation must have {self.dim} values, got {out.shape}")
        return out


class _GridExtractor(FeatureExtractor):
    def __init__(self, metadata: GridMetadata):
        self.metadata = metadata

    def _cell(self, observation) -> tuple[int, int]:
        row, col = (int(v) for v in observation)
        if not self.metadata.in_bounds(row, col):
            raise ValueError(f"position {(row, col)} is outside the grid")
        return row, col


class RawPositionExtractor(_GridExtractor):
    name = "raw"
    dim = 2

    def extract(self, observation) -> np.ndarray:
        row, col = self._cell(observation)
        return np.array([row, col], dtype=np.float32)


class NormalizedDistanceExtractor(_GridExtractor):
    """[row, col] normalised, signed goal offsets and absolute pit offsets over grid size."""

    name = "distance"
    dim = 6

    def extract(self, observation) -> np.ndarray:
        row, col = self._cell(observation)
        n = self.metadata.grid_size
        goal_r, goal_c = self.metadata.goal
        pit_r, pit_c = self.metadata.pit
        return np.array(
            [
                row / (n - 1),
                col / (n - 1),
                (goal_r - row) / n,
                (goal_c - col) / n,
                abs(pit_r - row) / n,
                abs(pit_c - col) / n,
            ],
            dtype=np.float32,
        )


class LidarSensorExtractor(_GridExtractor):
    """Goal offset (2) + 8 neighbour availability flags + pit proximity (1) = 11 features.

    Neighbour flags describe whether the agent could move there, so the pit counts
    as available.
    """

    name = "lidar"
    dim = 11

    def __init__(self, metadata: GridMetadata, flags: SensorFlags | None = None):
        super().__init__(metadata)
        self.flags = flags or SensorFlags()

    def validate(self) -> None:
        if not self.flags.any_enabled():
            raise ConfigurationError("At least one sensor flag must be enabled")

    def _available(self, row: int, col: int) -> float:
        if not self.metadata.in_bounds(row, col) or self.metadata.is_blocked(row, col):
            return 0.0
        return 1.0

    def extract(self, observation) -> np.ndarray:
        row, col = self._cell(observation)
        n = self.metadata.grid_size
        out = np.zeros((self.dim,), dtype=np.float32)

        if self.flags.goal_localization:
            goal_r, goal_c = self.metadata.goal
            out[0] = (goal_c - col) / (n - 1)
            out[1] = (goal_r - row) / (n - 1)

        if self.flags.straight_sensors:
            for i, (dr, dc) in enumerate(STRAIGHT_OFFSETS):
                out[2 + i] = self._available(row + dr, col + dc)
        if self.flags.diagonal_sensors:
            for i, (dr, dc) in enumerate(DIAGONAL_OFFSETS):
                out[6 + i] = self._available(row + dr, col + dc)

        if self.flags.pit_distance:
            pit_r, pit_c = self.metadata.pit
            diag = math.sqrt(2.0) * (n - 1)
            dist = math.hypot(pit_r - row, pit_c - col)
            out[10] = max(0.0, 1.0 - dist / diag)
        return out


def make_extractor(
    name: str,
    metadata: GridMetadata | None = None,
    flags: SensorFlags | None = None,
    dim: int = 4,
) -> FeatureExtractor:
    kind = str(name).lower()
    if kind == "identity":
        return IdentityExtractor(dim=dim)
    if kind not in FEATURE_KINDS:
        raise ConfigurationError(f"features must be one of: {', '.join(FEATURE_KINDS)}, got {name!r}")
    if metadata is None:
        raise ConfigurationError(f"'{kind}' features need grid metadata (GridWorld only)")
    if kind == "raw":
        return RawPositionExtractor(metadata)
    if kind == "distance":
        return NormalizedDistanceExtractor(metadata)
    return LidarSensorExtractor(metadata, flags)

"""GridWorld and CartPole simulators."""

from __future__ import annotations

from typing import Any

from .cartpole import CartPole
from .errors import ConfigurationError, InvalidActionError, PreconditionError
from .gridworld import GridMetadata, GridWorld

ENV_KINDS = ("gridworld", "cartpole")
ACTION_COUNTS = {"gridworld": GridWorld.ACTION_DIM, "cartpole": CartPole.ACTION_DIM}


def make_environment(kind: str, **params: Any) -> GridWorld | CartPole:
    """Build an environment by name; unknown names are a configuration error."""
    name = str(kind).lower()
    if name == "gridworld":
        return GridWorld(**params)
    if name == "cartpole":
        return CartPole(**params)
    raise ConfigurationError(f"env must be one of: {', '.join(ENV_KINDS)}, got {kind!r}")


__all__ = [
    "ACTION_COUNTS",
    "CartPole",
    "ConfigurationError",
    "ENV_KINDS",
    "GridMetadata",
    "GridWorld",
    "InvalidActionError",
    "PreconditionError",
    "make_environment",
]

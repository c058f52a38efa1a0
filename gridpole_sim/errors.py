"""Error taxonomy shared by the simulators and the RL engine."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when construction or training parameters are invalid."""


class PreconditionError(RuntimeError):
    """Raised when an operation is invoked before its preconditions hold."""


class InvalidActionError(ValueError):
    """Raised when an action id is outside the environment's action range."""

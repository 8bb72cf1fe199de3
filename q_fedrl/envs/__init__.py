"""Example environments."""

from .gridworld import GridWorld, GridState
from .corridor import ContinuousCorridor, CorridorState

__all__ = ["GridWorld", "GridState", "ContinuousCorridor", "CorridorState"]

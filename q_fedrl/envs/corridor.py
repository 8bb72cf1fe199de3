"""Continuous corridor example task with an asynchronous step.

A cart sits in a one-dimensional corridor [0, 1] and must reach the far
end. Actions push left, coast or push right; position and velocity are
continuous and are bucketed into state keys by a StateDiscretizer.
"""

import asyncio
from typing import NamedTuple, Optional

import numpy as np

from ..rl.discretizer import StateDiscretizer
from ..rl.environment import StepResult


class CorridorState(NamedTuple):
    position: float
    velocity: float
    steps: int = 0


class ContinuousCorridor:
    """Cart-in-a-corridor task whose ``step`` is a coroutine."""

    actions = ("push_left", "coast", "push_right")

    def __init__(
        self,
        accel: float = 0.01,
        max_speed: float = 0.05,
        max_steps: int = 200,
        position_bins: int = 10,
        velocity_bins: int = 5,
    ):
        self.accel = accel
        self.max_speed = max_speed
        self.max_steps = max_steps
        self.discretizer = StateDiscretizer(
            bins=[position_bins, velocity_bins],
            mins=[0.0, -max_speed],
            maxs=[1.0, max_speed],
        )

    def reset(self, client_id: int = 0, previous_observation: Optional[CorridorState] = None) -> CorridorState:
        return CorridorState(0.0, 0.0, 0)

    def get_state(self, observation: CorridorState) -> str:
        return self.discretizer([observation.position, observation.velocity])

    async def step(self, observation: CorridorState, action: int) -> StepResult:
        await asyncio.sleep(0)
        velocity = float(np.clip(
            observation.velocity + (action - 1) * self.accel,
            -self.max_speed,
            self.max_speed,
        ))
        position = observation.position + velocity
        if position <= 0.0:
            position, velocity = 0.0, 0.0
        nxt = CorridorState(min(position, 1.0), velocity, observation.steps + 1)

        if nxt.position >= 1.0:
            return StepResult(nxt, 1.0, True)
        if nxt.steps >= self.max_steps:
            return StepResult(nxt, -0.01, True)
        return StepResult(nxt, -0.01, False)

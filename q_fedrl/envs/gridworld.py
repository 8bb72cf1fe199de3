"""Grid world example task.

The agent starts in the top-left corner of a square grid and must reach
the goal in the opposite corner. Every move costs -1, reaching the goal
pays +100, and an episode that runs out of time ends with -10.
"""

from typing import NamedTuple, Optional, Tuple

from ..rl.environment import StepResult


class GridState(NamedTuple):
    x: int
    y: int
    steps: int = 0


class GridWorld:
    """Deterministic grid world.

    Attributes:
        size: Side length of the grid.
        goal: Goal cell (x, y).
        max_steps: Steps before the episode times out.
    """

    actions = ("up", "down", "left", "right")

    def __init__(
        self,
        size: int = 5,
        goal: Optional[Tuple[int, int]] = None,
        max_steps: int = 100,
        goal_reward: float = 100.0,
        step_reward: float = -1.0,
        timeout_reward: float = -10.0,
    ):
        self.size = size
        self.goal = goal if goal is not None else (size - 1, size - 1)
        self.max_steps = max_steps
        self.goal_reward = goal_reward
        self.step_reward = step_reward
        self.timeout_reward = timeout_reward

    def reset(self, client_id: int = 0, previous_observation: Optional[GridState] = None) -> GridState:
        return GridState(0, 0, 0)

    def get_state(self, observation: GridState) -> str:
        return f"{observation.x},{observation.y}"

    def step(self, observation: GridState, action: int) -> StepResult:
        x, y = observation.x, observation.y
        if action == 0 and y > 0:
            y -= 1
        elif action == 1 and y < self.size - 1:
            y += 1
        elif action == 2 and x > 0:
            x -= 1
        elif action == 3 and x < self.size - 1:
            x += 1
        nxt = GridState(x, y, observation.steps + 1)

        if (x, y) == tuple(self.goal):
            return StepResult(nxt, self.goal_reward, True)
        if nxt.steps >= self.max_steps:
            return StepResult(nxt, self.timeout_reward, True)
        return StepResult(nxt, self.step_reward, False)

    def reached_goal(self, final_state: GridState, record) -> bool:
        """Success predicate: the episode ended on the goal cell."""
        return (final_state.x, final_state.y) == tuple(self.goal)

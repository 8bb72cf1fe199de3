"""Environment contract consumed by the training and evaluation loops.

An environment exposes four capabilities:

- ``actions``: ordered action labels; their count fixes the action space.
- ``get_state(observation) -> str``: discrete key for a raw observation.
- ``step(observation, action) -> StepResult``: may return the result
  directly or an awaitable resolving to it.
- ``reset(client_id, previous_observation=None) -> observation``.

The engine always goes through :func:`step_environment`, so sync and
async environments are handled identically.
"""

import inspect
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, Sequence, runtime_checkable

from ..errors import EnvironmentContractError


REQUIRED_CAPABILITIES = ("actions", "get_state", "step", "reset")


@dataclass
class StepResult:
    """Outcome of one environment step.

    Attributes:
        state: Next raw observation.
        reward: Immediate reward.
        done: Whether the episode ended.
    """
    state: Any
    reward: float = 0.0
    done: bool = False


@runtime_checkable
class Environment(Protocol):
    """Structural type for learning tasks."""

    actions: Sequence[Any]

    def get_state(self, observation: Any) -> str:
        ...

    def step(self, observation: Any, action: int) -> Any:
        ...

    def reset(self, client_id: int, previous_observation: Optional[Any] = None) -> Any:
        ...


def validate_environment(env: Any) -> int:
    """Check that ``env`` provides every capability the engine needs.

    Returns:
        Number of actions.

    Raises:
        EnvironmentContractError: If a capability is missing or the
            action list is empty.
    """
    missing = [name for name in REQUIRED_CAPABILITIES if not hasattr(env, name)]
    if missing:
        raise EnvironmentContractError(
            "environment must define: actions, get_state, step, reset "
            f"(missing: {', '.join(missing)})"
        )
    for name in ("get_state", "step", "reset"):
        if not callable(getattr(env, name)):
            raise EnvironmentContractError(f"environment.{name} must be callable")
    try:
        n_actions = len(env.actions)
    except TypeError as exc:
        raise EnvironmentContractError("environment.actions must be a sequence") from exc
    if n_actions == 0:
        raise EnvironmentContractError("environment.actions must not be empty")
    return n_actions


def coerce_step_result(result: Any) -> StepResult:
    """Normalize the shapes a ``step`` may return into a StepResult."""
    if isinstance(result, StepResult):
        return result
    if isinstance(result, Mapping):
        return StepResult(
            state=result["state"],
            reward=float(result.get("reward", 0.0)),
            done=bool(result.get("done", False)),
        )
    if isinstance(result, tuple) and len(result) == 3:
        state, reward, done = result
        return StepResult(state=state, reward=float(reward), done=bool(done))
    raise TypeError(f"unsupported step result: {type(result).__name__}")


async def step_environment(env: Any, observation: Any, action: int) -> StepResult:
    """Run one environment step, awaiting it if the environment is async."""
    result = env.step(observation, action)
    if inspect.isawaitable(result):
        result = await result
    return coerce_step_result(result)

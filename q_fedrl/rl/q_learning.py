"""Tabular Q-learning agent.

Combines:
- Sparse action-value table keyed by discrete state strings
- Epsilon-greedy (or Boltzmann) action selection
- One-step temporal-difference updates
- Inference mode for frozen-policy evaluation

Unseen states read as zero vectors and are materialized on first touch.
"""

import copy
from typing import Mapping, Optional, Sequence

import numpy as np

from ..config import AgentConfig
from ..tables import QTable, copy_table


def update_q_value(
    current_q: float,
    reward: float,
    max_next_q: float,
    alpha: float,
    gamma: float,
) -> float:
    """Apply the Q-learning update rule to a single value.

    Example:
        >>> round(update_q_value(0.5, 10.0, 0.8, alpha=0.1, gamma=0.9), 3)
        1.522
    """
    return current_q + alpha * (reward + gamma * max_next_q - current_q)


def td_error(reward: float, current_q: float, max_next_q: float, gamma: float) -> float:
    """Temporal-difference error: target minus current estimate."""
    return reward + gamma * max_next_q - current_q


def select_action(
    q_values: Sequence[float],
    epsilon: float,
    rng: np.random.Generator,
) -> int:
    """Epsilon-greedy selection; ties go to the lowest action index."""
    q_values = np.asarray(q_values, dtype=float)
    if epsilon > 0 and rng.random() < epsilon:
        return int(rng.integers(len(q_values)))
    return int(np.argmax(q_values))


def softmax_select(
    q_values: Sequence[float],
    temperature: float,
    rng: np.random.Generator,
) -> int:
    """Boltzmann selection over Q-values."""
    q_values = np.asarray(q_values, dtype=float)
    if temperature <= 0:
        return int(np.argmax(q_values))
    logits = (q_values - np.max(q_values)) / temperature
    probs = np.exp(logits)
    probs /= probs.sum()
    return int(rng.choice(len(q_values), p=probs))


class TabularQAgent:
    """Tabular Q-learning agent with a lazily populated table.

    Attributes:
        config: Agent configuration.
        q_table: Mapping from state key to action-value vector.
        epsilon: Current exploration rate.
        episode_count: Number of episodes this agent has finished.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        seed: Optional[int] = None,
    ):
        """Initialize agent.

        Args:
            config: Agent configuration.
            seed: Random seed for exploration.
        """
        self.config = copy.copy(config) if config is not None else AgentConfig()
        self.seed = seed
        self.rng = np.random.default_rng(seed)

        self.q_table: QTable = {}
        self._epsilon = self.config.epsilon_start
        self._inference_mode = False

        self.episode_count = 0
        self.training_step = 0

    @property
    def n_actions(self) -> int:
        return self.config.n_actions

    @property
    def epsilon(self) -> float:
        return self._epsilon

    @property
    def inference_mode(self) -> bool:
        return self._inference_mode

    @property
    def n_states(self) -> int:
        """Number of materialized states."""
        return len(self.q_table)

    def _row(self, state_key: str) -> np.ndarray:
        row = self.q_table.get(state_key)
        if row is None:
            row = np.zeros(self.n_actions)
            self.q_table[state_key] = row
        return row

    def get_q_values(self, state_key: str) -> np.ndarray:
        """Return a copy of the action values for a state."""
        return self._row(state_key).copy()

    def choose_action(self, state_key: str) -> int:
        """Select an action for the given state.

        Inference mode is always greedy, whatever epsilon holds, and
        leaves the table untouched.
        """
        if self._inference_mode:
            q_values = self.q_table.get(state_key)
            if q_values is None:
                return 0
            return int(np.argmax(q_values))
        q_values = self._row(state_key)
        if self.config.action_selection == "softmax":
            return softmax_select(q_values, self.config.temperature, self.rng)
        return select_action(q_values, self._epsilon, self.rng)

    def learn(
        self,
        state_key: str,
        action: int,
        reward: float,
        next_state_key: str,
    ) -> float:
        """One-step Q-learning update.

        Args:
            state_key: State the action was taken in.
            action: Action index.
            reward: Immediate reward.
            next_state_key: Resulting state.

        Returns:
            TD error before the update (0.0 in inference mode).
        """
        if self._inference_mode:
            return 0.0

        row = self._row(state_key)
        max_next_q = float(np.max(self._row(next_state_key)))
        current_q = float(row[action])

        error = td_error(reward, current_q, max_next_q, self.config.gamma)
        row[action] = update_q_value(
            current_q, reward, max_next_q, self.config.alpha, self.config.gamma
        )
        self.training_step += 1
        return error

    def decay_epsilon(self) -> None:
        """Decay exploration rate toward its floor."""
        if self._inference_mode:
            return
        self._epsilon = max(
            self.config.epsilon_min, self._epsilon * self.config.epsilon_decay
        )

    def set_inference_mode(self, enabled: bool) -> None:
        self._inference_mode = bool(enabled)

    def get_model(self) -> QTable:
        """Return a deep copy of the Q-table."""
        return {k: v.copy() for k, v in self.q_table.items()}

    def set_model(self, table: Mapping[str, Sequence[float]]) -> None:
        """Replace the Q-table with a deep copy of ``table``."""
        self.q_table = copy_table(table, self.n_actions)

    def update_hyperparameters(
        self,
        alpha: Optional[float] = None,
        gamma: Optional[float] = None,
        epsilon_decay: Optional[float] = None,
        epsilon_min: Optional[float] = None,
    ) -> None:
        """Change learning hyperparameters without touching the table."""
        if alpha is not None:
            self.config.alpha = float(alpha)
        if gamma is not None:
            self.config.gamma = float(gamma)
        if epsilon_decay is not None:
            self.config.epsilon_decay = float(epsilon_decay)
        if epsilon_min is not None:
            self.config.epsilon_min = float(epsilon_min)

    def reset(self) -> None:
        """Forget everything learned and restore the initial epsilon."""
        self.q_table = {}
        self._epsilon = self.config.epsilon_start
        self.episode_count = 0
        self.training_step = 0
        self.rng = np.random.default_rng(self.seed)

    def mean_q_value(self) -> float:
        """Mean of all stored action values (0.0 for an empty table)."""
        if not self.q_table:
            return 0.0
        return float(np.mean([row.mean() for row in self.q_table.values()]))

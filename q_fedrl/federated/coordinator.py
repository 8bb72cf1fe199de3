"""Federation coordinator for tabular clients (FedAvg).

Owns the federation state of one run: the round counter, the episode
bookmark of the last round, the auto-federate switch and the recent
reward history. A round reads every client table, averages them over the
union of states, and replaces each client's table with the result.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Deque, Dict, List, Optional, Sequence, Union

import numpy as np

from ..config import FederationConfig
from ..errors import AggregationError
from ..tables import QTable
from .aggregation import (
    ModelDelta,
    compute_client_deltas,
    compute_model_delta,
    federated_average,
)
from .triggers import FederationTrigger, get_trigger

logger = logging.getLogger(__name__)


@dataclass
class FederationRound:
    """Outcome of one successful federation round.

    Attributes:
        round_number: Round counter after this round.
        global_model: Aggregated table broadcast to the clients; None
            on the copies kept in the coordinator history.
        delta: Change against the previous global table.
        client_deltas: L2 distance of each client's pre-round table
            from the new global table.
        n_clients: Clients that took part.
        avg_episodes: Average client episode count at the round.
        timestamp: Wall-clock time of the round.
    """
    round_number: int
    global_model: Optional[QTable]
    delta: ModelDelta
    client_deltas: List[float] = field(default_factory=list)
    n_clients: int = 0
    avg_episodes: float = 0.0
    timestamp: float = field(default_factory=time.time)

    def summary(self) -> Dict[str, Any]:
        return {
            "round": self.round_number,
            "n_clients": self.n_clients,
            "avg_episodes": self.avg_episodes,
            "total_states": self.delta.total_states,
            "avg_delta": self.delta.avg_delta,
            "max_delta": self.delta.max_delta,
            "converged": self.delta.converged,
            "client_deltas": list(self.client_deltas),
        }


class FederationCoordinator:
    """Aggregates client Q-tables and decides when to do so.

    Clients are any objects exposing ``agent`` (with ``get_model`` and
    ``set_model``) and ``metrics`` (with ``episode_count`` and
    ``step_count``).

    Attributes:
        round_number: Number of successful rounds.
        last_federation_episode: Average episode count at the last round.
        auto_enabled: Whether ``should_federate`` may fire.
        reward_history: Bounded recent episode rewards.
        global_model: Table from the last round, if any.
        history: Most recent rounds, without their tables.
    """

    def __init__(
        self,
        config: Optional[FederationConfig] = None,
        trigger: Optional[Union[str, FederationTrigger]] = None,
    ):
        """Initialize coordinator.

        Args:
            config: Federation configuration.
            trigger: Strategy name or instance; defaults to config.strategy.
        """
        self.config = config or FederationConfig()
        self.trigger = get_trigger(trigger or self.config.strategy)

        self.round_number = 0
        self.last_federation_episode = 0.0
        self.auto_enabled = self.config.auto_federate
        self.reward_history: Deque[float] = deque(maxlen=self.config.reward_history_size)
        self.global_model: Optional[QTable] = None
        self.history: Deque[FederationRound] = deque(maxlen=self.config.history_size)

    def set_auto_federate(self, enabled: bool) -> None:
        self.auto_enabled = bool(enabled)

    def set_strategy(self, strategy: Union[str, FederationTrigger]) -> None:
        self.trigger = get_trigger(strategy)

    def add_reward(self, reward: float) -> None:
        """Record an episode reward for the performance trigger."""
        self.reward_history.append(float(reward))

    def should_federate(self, clients: Sequence[Any]) -> bool:
        """Whether a round should run now."""
        if not self.auto_enabled or not clients:
            return False
        return bool(self.trigger(self, clients))

    def _weights(self, clients: Sequence[Any]) -> Optional[List[float]]:
        if self.config.weighting != "samples":
            return None
        counts = [float(c.metrics.step_count) for c in clients]
        total = sum(counts)
        if total <= 0:
            return None
        return [c / total for c in counts]

    def aggregate(self, clients: Sequence[Any]) -> QTable:
        """Aggregate client tables without broadcasting or counting a round.

        Raises:
            AggregationError: If there are no clients.
        """
        models = [c.agent.get_model() for c in clients]
        return federated_average(models, self._weights(clients))

    def federate(self, clients: Sequence[Any]) -> Optional[FederationRound]:
        """Run one federation round over ``clients``.

        Returns:
            The round record, or None if nothing could be aggregated.
        """
        if not clients:
            logger.warning("Federation requested with no clients; skipping")
            return None

        models = [c.agent.get_model() for c in clients]
        try:
            global_model = federated_average(models, self._weights(clients))
        except AggregationError as exc:
            logger.warning("Federation round skipped: %s", exc)
            return None

        old_model = self.global_model if self.global_model is not None else models[0]
        delta = compute_model_delta(
            old_model,
            global_model,
            change_epsilon=self.config.change_epsilon,
            convergence_threshold=self.config.convergence_threshold,
        )
        client_deltas = compute_client_deltas(global_model, models)

        for client in clients:
            client.agent.set_model(global_model)

        avg_episodes = float(np.mean([c.metrics.episode_count for c in clients]))
        self.round_number += 1
        self.last_federation_episode = avg_episodes
        self.global_model = {k: v.copy() for k, v in global_model.items()}

        record = FederationRound(
            round_number=self.round_number,
            global_model=global_model,
            delta=delta,
            client_deltas=client_deltas,
            n_clients=len(clients),
            avg_episodes=avg_episodes,
        )
        self.history.append(replace(record, global_model=None))
        logger.info(
            "Federation round %d: %d clients, %d states, avg delta %.4f%s",
            self.round_number,
            len(clients),
            delta.total_states,
            delta.avg_delta,
            " (converged)" if delta.converged else "",
        )
        return record

    def reset(self) -> None:
        """Clear all federation state."""
        self.round_number = 0
        self.last_federation_episode = 0.0
        self.reward_history.clear()
        self.global_model = None
        self.history.clear()

    def stats(self) -> Dict[str, Any]:
        """Get coordinator statistics.

        Returns:
            Dict with round number, trigger, last delta, etc.
        """
        last = self.history[-1] if self.history else None
        return {
            "round": self.round_number,
            "strategy": self.trigger.name,
            "auto_federate": self.auto_enabled,
            "last_federation_episode": self.last_federation_episode,
            "n_rewards": len(self.reward_history),
            "global_states": len(self.global_model) if self.global_model else 0,
            "last_avg_delta": last.delta.avg_delta if last else None,
            "converged": last.delta.converged if last else False,
        }

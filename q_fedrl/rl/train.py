"""Federated training loop.

Every tick advances each client by exactly one environment step:
1. Client agents pick actions and the environment steps are awaited
   together, so the tick only completes once every client has moved
2. Finished episodes decay epsilon, feed the reward history and reset
   the client's environment
3. If any episode finished, the coordinator's trigger is consulted and
   a FedAvg round may run over the fully-advanced population
"""

import asyncio
import copy
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

import numpy as np

from ..config import FedRLConfig
from ..federated.coordinator import FederationCoordinator, FederationRound
from ..metrics.kpi import EpisodeRecord, EpisodeTracker, MetricsConfig
from .environment import step_environment, validate_environment
from .q_learning import QTable, TabularQAgent

logger = logging.getLogger(__name__)


@dataclass
class ClientMetrics:
    """Running counters for one client.

    Attributes:
        episode_count: Finished episodes.
        total_reward: Reward accumulated in the current episode.
        step_count: Steps taken across all episodes.
        episode_steps: Steps taken in the current episode.
        last_episode_reward: Total reward of the last finished episode.
    """
    episode_count: int = 0
    total_reward: float = 0.0
    step_count: int = 0
    episode_steps: int = 0
    last_episode_reward: float = 0.0


@dataclass
class Client:
    """One federated learner: an agent, its environment observation and counters.

    Attributes:
        client_id: Index within the population.
        agent: The client's Q-learning agent.
        observation: Current raw observation.
        metrics: Running counters.
        record: KPI record of the episode in progress.
        surface: Optional drawing surface for the render hook.
    """
    client_id: int
    agent: TabularQAgent
    observation: Any
    metrics: ClientMetrics = field(default_factory=ClientMetrics)
    record: EpisodeRecord = field(default_factory=EpisodeRecord)
    surface: Any = None


@dataclass
class TrainingResult:
    """Result from a training run.

    Attributes:
        n_ticks: Ticks executed.
        n_episodes: Episodes finished across all clients.
        n_rounds: Federation rounds run during training.
        episode_rewards: Reward of each episode finished during the run, in
            order; only the most recent ones when the run outgrows
            the trainer reward history.
        rounds: Summary of each federation round.
        final_epsilon: Mean client epsilon at the end.
        runtime_seconds: Total training time.
    """
    n_ticks: int = 0
    n_episodes: int = 0
    n_rounds: int = 0
    episode_rewards: List[float] = field(default_factory=list)
    rounds: List[Dict[str, Any]] = field(default_factory=list)
    final_epsilon: float = 0.0
    runtime_seconds: float = 0.0


class FederatedTrainer:
    """Runs a population of tabular clients against one environment.

    Hooks:
        on_client_init(client): after a client is created.
        on_episode_end(client, record): after a client finishes an episode.
        on_federation(global_model, round_number, delta): after a round.
        render(surface, observation, client): every ``render_interval`` ticks.
    """

    def __init__(
        self,
        env: Any,
        config: Optional[FedRLConfig] = None,
        coordinator: Optional[FederationCoordinator] = None,
        metrics_config: Optional[MetricsConfig] = None,
        on_client_init: Optional[Callable[[Client], Any]] = None,
        on_episode_end: Optional[Callable[[Client, EpisodeRecord], Any]] = None,
        on_federation: Optional[Callable[..., Any]] = None,
        render: Optional[Callable[[Any, Any, Client], Any]] = None,
        surface_factory: Optional[Callable[[int], Any]] = None,
    ):
        """Initialize trainer.

        Args:
            env: Environment implementing the four-capability contract.
            config: Configuration; agent.n_actions follows env.actions.
            coordinator: Federation coordinator; built from config if omitted.
            metrics_config: KPI configuration for training episodes.

        Raises:
            EnvironmentContractError: If ``env`` is incomplete.
        """
        n_actions = validate_environment(env)
        self.env = env
        self.config = copy.deepcopy(config) if config is not None else FedRLConfig()
        self.config.agent.n_actions = n_actions

        self.coordinator = coordinator or FederationCoordinator(self.config.federation)
        self.tracker = EpisodeTracker(metrics_config, record_trajectory=False)

        self.on_client_init = on_client_init
        self.on_episode_end = on_episode_end
        self.on_federation = on_federation
        self.render = render
        self.surface_factory = surface_factory

        self.render_interval = self.config.training.render_interval
        self.frame_count = 0
        self.episode_rewards: Deque[float] = deque(
            maxlen=self.config.training.reward_history_size
        )
        self.total_episodes = 0
        self.clients: List[Client] = []
        self.init_clients()

    @property
    def n_actions(self) -> int:
        return self.config.agent.n_actions

    @property
    def n_clients(self) -> int:
        return len(self.clients)

    def _client_seed(self, client_id: int) -> Optional[int]:
        if self.config.seed is None:
            return None
        return self.config.seed + client_id

    def init_clients(self, n_clients: Optional[int] = None) -> List[Client]:
        """Create a fresh client population."""
        if n_clients is not None:
            self.config.training.n_clients = n_clients
        self.clients = []
        for client_id in range(self.config.training.n_clients):
            agent = TabularQAgent(self.config.agent, seed=self._client_seed(client_id))
            client = Client(
                client_id=client_id,
                agent=agent,
                observation=self.env.reset(client_id, None),
                record=self.tracker.init(),
            )
            if self.surface_factory is not None:
                client.surface = self.surface_factory(client_id)
            self.clients.append(client)
            if self.on_client_init is not None:
                self.on_client_init(client)
        self.frame_count = 0
        logger.debug("Initialized %d clients", len(self.clients))
        return self.clients

    async def step_client(self, client: Client) -> bool:
        """Advance one client by one step.

        Returns:
            True if the client finished an episode on this step.
        """
        state_key = self.env.get_state(client.observation)
        action = client.agent.choose_action(state_key)
        result = await step_environment(self.env, client.observation, action)
        next_key = self.env.get_state(result.state)
        client.agent.learn(state_key, action, result.reward, next_key)

        self.tracker.step(client.record, result.state, action, result.reward)
        client.metrics.step_count += 1
        client.metrics.episode_steps += 1
        client.metrics.total_reward += result.reward
        client.observation = result.state

        max_steps = self.config.training.max_episode_steps
        if result.done or (max_steps is not None and client.metrics.episode_steps >= max_steps):
            self._finish_episode(client)
            return True
        return False

    def _finish_episode(self, client: Client) -> None:
        record = self.tracker.finalize(client.record, client.observation)
        metrics = client.metrics
        metrics.episode_count += 1
        metrics.last_episode_reward = metrics.total_reward
        self.episode_rewards.append(metrics.total_reward)
        self.total_episodes += 1
        self.coordinator.add_reward(metrics.total_reward)

        client.agent.decay_epsilon()
        client.agent.episode_count += 1

        if self.on_episode_end is not None:
            self.on_episode_end(client, record)

        client.observation = self.env.reset(client.client_id, client.observation)
        metrics.total_reward = 0.0
        metrics.episode_steps = 0
        client.record = self.tracker.init()

    async def tick(self) -> Optional[FederationRound]:
        """Advance every client by one step, then check the federation trigger.

        Returns:
            The federation round if one ran on this tick.
        """
        finished = await asyncio.gather(*(self.step_client(c) for c in self.clients))
        self.frame_count += 1

        if self.render is not None and self.frame_count % self.render_interval == 0:
            for client in self.clients:
                self.render(client.surface, client.observation, client)

        if any(finished) and self.coordinator.should_federate(self.clients):
            return self.federate()
        return None

    def federate(self) -> Optional[FederationRound]:
        """Run a federation round now, whatever the trigger says."""
        record = self.coordinator.federate(self.clients)
        if record is not None and self.on_federation is not None:
            self.on_federation(record.global_model, record.round_number, record.delta)
        return record

    def aggregate(self) -> QTable:
        """Canonical table for the current population, without broadcasting."""
        return self.coordinator.aggregate(self.clients)

    def average_episodes(self) -> float:
        if not self.clients:
            return 0.0
        return float(np.mean([c.metrics.episode_count for c in self.clients]))

    async def train(
        self,
        n_episodes: int,
        max_ticks: Optional[int] = None,
        verbose: bool = True,
        log_every: int = 100,
    ) -> TrainingResult:
        """Tick until the average client reaches ``n_episodes`` episodes.

        Args:
            n_episodes: Target average episode count.
            max_ticks: Optional hard cap on ticks.
            verbose: Whether to log progress.
            log_every: Episodes of average progress between progress logs.

        Returns:
            TrainingResult.
        """
        start_time = time.time()
        start_round = self.coordinator.round_number
        start_episodes = self.total_episodes
        n_ticks = 0
        next_log = log_every

        while self.average_episodes() < n_episodes:
            if max_ticks is not None and n_ticks >= max_ticks:
                break
            await self.tick()
            n_ticks += 1

            if verbose and self.average_episodes() >= next_log:
                recent = list(self.episode_rewards)[-len(self.clients) * 10:]
                logger.info(
                    "Episodes %.0f/%d: reward=%.3f  eps=%.3f  round=%d",
                    self.average_episodes(),
                    n_episodes,
                    float(np.mean(recent)) if recent else 0.0,
                    self.mean_epsilon(),
                    self.coordinator.round_number,
                )
                next_log += log_every

        n_rounds = self.coordinator.round_number - start_round
        n_new = self.total_episodes - start_episodes
        rounds = list(self.coordinator.history)[-n_rounds:] if n_rounds else []
        rewards = list(self.episode_rewards)[-n_new:] if n_new else []
        return TrainingResult(
            n_ticks=n_ticks,
            n_episodes=n_new,
            n_rounds=n_rounds,
            episode_rewards=rewards,
            rounds=[r.summary() for r in rounds],
            final_epsilon=self.mean_epsilon(),
            runtime_seconds=time.time() - start_time,
        )

    def mean_epsilon(self) -> float:
        if not self.clients:
            return 0.0
        return float(np.mean([c.agent.epsilon for c in self.clients]))

    def reset(self, n_clients: Optional[int] = None) -> None:
        """Discard all learning and federation state."""
        self.coordinator.reset()
        self.episode_rewards.clear()
        self.total_episodes = 0
        self.init_clients(n_clients)

    def set_client_count(self, n_clients: int) -> int:
        """Resize the population (clamped to 1..max_clients); resets learning."""
        n_clients = int(min(max(n_clients, 1), self.config.training.max_clients))
        self.reset(n_clients)
        return n_clients

    def set_render_interval(self, interval: int) -> int:
        self.render_interval = int(min(max(interval, 1), 1000))
        return self.render_interval

    def apply_hyperparameters(self, alpha: Optional[float] = None, gamma: Optional[float] = None) -> None:
        """Change alpha/gamma on every client without resetting learning."""
        if alpha is not None:
            self.config.agent.alpha = float(alpha)
        if gamma is not None:
            self.config.agent.gamma = float(gamma)
        for client in self.clients:
            client.agent.update_hyperparameters(alpha=alpha, gamma=gamma)

    def global_stats(self) -> Dict[str, Any]:
        """Population-wide statistics."""
        if not self.clients:
            return {
                "round": self.coordinator.round_number,
                "n_clients": 0,
                "avg_states": 0.0,
                "avg_episodes": 0.0,
                "avg_epsilon": 0.0,
                "total_steps": 0,
            }
        return {
            "round": self.coordinator.round_number,
            "n_clients": len(self.clients),
            "avg_states": float(np.mean([c.agent.n_states for c in self.clients])),
            "avg_episodes": self.average_episodes(),
            "avg_epsilon": self.mean_epsilon(),
            "total_steps": int(sum(c.metrics.step_count for c in self.clients)),
        }

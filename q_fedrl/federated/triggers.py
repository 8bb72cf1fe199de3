"""Strategies deciding when a federation round should run."""

import math
from typing import Dict, Sequence, Type, Union

import numpy as np


def should_federate_by_episodes(
    episode_counts: Sequence[int],
    interval: int,
    last_federation_episode: float,
) -> bool:
    """Fire once every ``interval`` episodes of average client progress.

    Compares ``floor(avg / interval)`` against the value at the last
    round, so clients advancing at different rates are averaged out.
    """
    if not episode_counts or interval <= 0:
        return False
    avg_episodes = float(np.mean(episode_counts))
    return math.floor(avg_episodes / interval) > math.floor(
        last_federation_episode / interval
    )


def should_federate_by_performance(
    rewards: Sequence[float],
    window: int = 10,
    threshold: float = 0.01,
) -> bool:
    """Fire when recent rewards have stopped improving.

    Needs at least ``2 * window`` rewards. The mean of the last window is
    compared with the window before it; a relative improvement below
    ``threshold`` (including regression) triggers. When the earlier mean
    is exactly zero the trigger fires unless rewards went up.
    """
    if window <= 0 or len(rewards) < 2 * window:
        return False
    rewards = list(rewards)
    recent = float(np.mean(rewards[-window:]))
    previous = float(np.mean(rewards[-2 * window:-window]))
    if previous == 0:
        return recent <= previous
    improvement = (recent - previous) / abs(previous)
    return improvement < threshold


class FederationTrigger:
    """Base class for pluggable trigger strategies."""

    name = "base"

    def __call__(self, coordinator, clients) -> bool:
        raise NotImplementedError


class EpisodeTrigger(FederationTrigger):
    """Episode-count trigger driven by FederationConfig.federation_interval."""

    name = "episodes"

    def __call__(self, coordinator, clients) -> bool:
        counts = [client.metrics.episode_count for client in clients]
        return should_federate_by_episodes(
            counts,
            coordinator.config.federation_interval,
            coordinator.last_federation_episode,
        )


class PerformanceTrigger(FederationTrigger):
    """Plateau trigger over the coordinator's recent-reward history."""

    name = "performance"

    def __call__(self, coordinator, clients) -> bool:
        return should_federate_by_performance(
            coordinator.reward_history,
            coordinator.config.performance_window,
            coordinator.config.improvement_threshold,
        )


TRIGGER_STRATEGIES: Dict[str, Type[FederationTrigger]] = {
    EpisodeTrigger.name: EpisodeTrigger,
    PerformanceTrigger.name: PerformanceTrigger,
}


def get_trigger(strategy: Union[str, FederationTrigger]) -> FederationTrigger:
    """Resolve a strategy name or instance to a trigger."""
    if isinstance(strategy, FederationTrigger):
        return strategy
    try:
        return TRIGGER_STRATEGIES[strategy]()
    except KeyError:
        raise ValueError(
            f"Unknown federation strategy {strategy!r}; "
            f"choose from {sorted(TRIGGER_STRATEGIES)}"
        ) from None

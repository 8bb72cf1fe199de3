"""Frozen-policy evaluation.

Runs N sequential episodes with a frozen agent (alpha = 0, epsilon = 0)
and summarizes them with mean, population standard deviation, success
rate and a consistency score. Cancellation is checked between episodes
only, so a running episode always finishes or hits the step cap.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..config import AgentConfig
from ..metrics.kpi import EpisodeRecord, EpisodeTracker, aggregate_episodes
from ..rl.environment import step_environment
from ..rl.q_learning import TabularQAgent

logger = logging.getLogger(__name__)


DEFAULT_MAX_STEPS = 300


def create_inference_agent(model: Mapping[str, Sequence[float]], n_actions: int) -> TabularQAgent:
    """Frozen agent loaded with ``model``: no learning, no exploration."""
    config = AgentConfig(
        alpha=0.0,
        gamma=0.0,
        epsilon_start=0.0,
        epsilon_min=0.0,
        epsilon_decay=1.0,
        n_actions=n_actions,
    )
    agent = TabularQAgent(config, seed=0)
    agent.set_model(model)
    agent.set_inference_mode(True)
    return agent


def compute_evaluation_statistics(
    rewards: Sequence[float],
    successes: Sequence[bool],
) -> Dict[str, float]:
    """Summary statistics over completed episodes.

    Returns:
        Dict with n_episodes, avg_reward, std_reward (population),
        min_reward, max_reward, success_count, success_rate and
        consistency = max(0, 1 - std/|avg|) when |avg| > 0.01, else 0.
    """
    n = len(rewards)
    if n == 0:
        return {
            "n_episodes": 0,
            "avg_reward": 0.0,
            "std_reward": 0.0,
            "min_reward": 0.0,
            "max_reward": 0.0,
            "success_count": 0,
            "success_rate": 0.0,
            "consistency": 0.0,
        }
    arr = np.asarray(rewards, dtype=float)
    avg = float(arr.sum() / n)
    std = float(np.sqrt(np.sum((arr - avg) ** 2) / n))
    success_count = int(sum(1 for s in successes if s))
    consistency = max(0.0, 1.0 - std / abs(avg)) if abs(avg) > 0.01 else 0.0
    return {
        "n_episodes": n,
        "avg_reward": avg,
        "std_reward": std,
        "min_reward": float(arr.min()),
        "max_reward": float(arr.max()),
        "success_count": success_count,
        "success_rate": success_count / n,
        "consistency": consistency,
    }


@dataclass
class EvaluationResult:
    """Outcome of an evaluation run.

    Attributes:
        n_requested: Episodes asked for.
        episodes: Records of completed episodes.
        stats: Output of compute_evaluation_statistics.
        kpis: Cross-episode KPI statistics.
        cancelled: Whether the run stopped early.
        runtime_seconds: Wall-clock duration.
    """
    n_requested: int
    episodes: List[EpisodeRecord] = field(default_factory=list)
    stats: Dict[str, float] = field(default_factory=dict)
    kpis: Dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False
    runtime_seconds: float = 0.0

    @property
    def n_completed(self) -> int:
        return len(self.episodes)

    @property
    def avg_reward(self) -> float:
        return self.stats.get("avg_reward", 0.0)

    @property
    def std_reward(self) -> float:
        return self.stats.get("std_reward", 0.0)

    @property
    def success_rate(self) -> float:
        return self.stats.get("success_rate", 0.0)

    @property
    def consistency(self) -> float:
        return self.stats.get("consistency", 0.0)

    def summary(self) -> Dict[str, Any]:
        return {
            "n_requested": self.n_requested,
            "n_completed": self.n_completed,
            "cancelled": self.cancelled,
            "runtime_seconds": self.runtime_seconds,
            **self.stats,
        }


async def run_single_episode(
    env: Any,
    agent: TabularQAgent,
    tracker: EpisodeTracker,
    max_steps: int = DEFAULT_MAX_STEPS,
    episode_num: int = 1,
    render: Optional[Callable[[Any, Any, Any], Any]] = None,
    surface: Any = None,
    render_every: int = 1,
) -> EpisodeRecord:
    """Play one episode with ``agent`` until done or ``max_steps``."""
    observation = env.reset(0, None)
    record = tracker.init()
    client_info = {"client_id": 0, "episode": episode_num, "inference": True}

    for step in range(max_steps):
        state_key = env.get_state(observation)
        action = agent.choose_action(state_key)
        result = await step_environment(env, observation, action)
        tracker.step(record, result.state, action, result.reward)
        observation = result.state

        if render is not None and (step + 1) % render_every == 0:
            render(surface, observation, client_info)
        if result.done:
            break

    tracker.finalize(record, observation)
    record.episode_num = episode_num
    return record


async def run_evaluation(
    env: Any,
    agent: TabularQAgent,
    n_episodes: int,
    tracker: Optional[EpisodeTracker] = None,
    max_steps: int = DEFAULT_MAX_STEPS,
    on_episode_complete: Optional[Callable[[EpisodeRecord, Dict[str, float], int, int], Any]] = None,
    on_all_complete: Optional[Callable[["EvaluationResult"], Any]] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    render: Optional[Callable[[Any, Any, Any], Any]] = None,
    surface: Any = None,
    render_every: int = 1,
    episode_delay: float = 0.0,
) -> EvaluationResult:
    """Evaluate a frozen agent over ``n_episodes`` sequential episodes.

    Args:
        env: Environment under the four-capability contract.
        agent: Agent to evaluate; should already be in inference mode.
        n_episodes: Episodes to run.
        tracker: KPI tracker; reward-based success when omitted.
        max_steps: Step cap per episode.
        on_episode_complete: ``(record, running_stats, completed, total)``.
        on_all_complete: Called with the result unless cancelled.
        should_cancel: Polled before each episode.
        episode_delay: Seconds to wait between episodes.

    Returns:
        EvaluationResult over the completed episodes.
    """
    tracker = tracker or EpisodeTracker()
    start_time = time.time()
    records: List[EpisodeRecord] = []
    cancelled = False

    for i in range(n_episodes):
        if should_cancel is not None and should_cancel():
            cancelled = True
            logger.info("Evaluation cancelled after %d/%d episodes", i, n_episodes)
            break

        record = await run_single_episode(
            env,
            agent,
            tracker,
            max_steps=max_steps,
            episode_num=i + 1,
            render=render,
            surface=surface,
            render_every=render_every,
        )
        records.append(record)

        if on_episode_complete is not None:
            running = compute_evaluation_statistics(
                [r.total_reward for r in records], [r.success for r in records]
            )
            on_episode_complete(record, running, len(records), n_episodes)

        await asyncio.sleep(episode_delay)

    result = EvaluationResult(
        n_requested=n_episodes,
        episodes=records,
        stats=compute_evaluation_statistics(
            [r.total_reward for r in records], [r.success for r in records]
        ),
        kpis=aggregate_episodes(records).get("kpis", {}),
        cancelled=cancelled,
        runtime_seconds=time.time() - start_time,
    )
    logger.info(
        "Evaluation: %d episodes, avg reward %.2f ± %.2f, success %.0f%%",
        result.n_completed,
        result.avg_reward,
        result.std_reward,
        100 * result.success_rate,
    )
    if not cancelled and on_all_complete is not None:
        on_all_complete(result)
    return result


def export_evaluation_results(
    result: EvaluationResult,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """JSON-ready report with a summary block and one entry per episode."""
    return {
        "exportedAt": datetime.now(timezone.utc).isoformat(),
        "metadata": dict(metadata or {}),
        "summary": result.summary(),
        "kpis": result.kpis,
        "episodes": [record.to_dict() for record in result.episodes],
    }

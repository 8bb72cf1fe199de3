"""Configuration dataclasses for q_fedrl."""

import json
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Literal, Optional, Dict, Any, Tuple, Union


@dataclass
class AgentConfig:
    """Configuration for a tabular Q-learning agent.

    Attributes:
        alpha: Learning rate for the TD update.
        gamma: Discount factor.
        epsilon_start: Initial exploration rate.
        epsilon_decay: Multiplicative decay applied once per episode.
        epsilon_min: Floor for the exploration rate.
        n_actions: Action space size.
        action_selection: "epsilon_greedy" (default) or "softmax".
        temperature: Boltzmann temperature for softmax selection.
    """
    alpha: float = 0.1
    gamma: float = 0.95
    epsilon_start: float = 0.2
    epsilon_decay: float = 0.995
    epsilon_min: float = 0.001
    n_actions: int = 2
    action_selection: Literal["epsilon_greedy", "softmax"] = "epsilon_greedy"
    temperature: float = 1.0


@dataclass
class FederationConfig:
    """Configuration for federated aggregation.

    Attributes:
        federation_interval: Average episodes between episode-triggered rounds.
        auto_federate: Whether rounds fire automatically after episodes.
        strategy: Trigger strategy, "episodes" or "performance".
        performance_window: Window size for the plateau trigger.
        improvement_threshold: Relative improvement below which the
            plateau trigger fires.
        reward_history_size: Capacity of the recent-reward history.
        history_size: Number of past rounds kept for inspection.
        change_epsilon: Per-state difference counted as a change.
        convergence_threshold: Average delta below which a round
            is reported as converged.
        weighting: "uniform" (1/n per client) or "samples" (weighted by
            each client's step count).
    """
    federation_interval: int = 100
    auto_federate: bool = False
    strategy: str = "episodes"
    performance_window: int = 10
    improvement_threshold: float = 0.01
    reward_history_size: int = 1000
    history_size: int = 100
    change_epsilon: float = 1e-3
    convergence_threshold: float = 0.01
    weighting: Literal["uniform", "samples"] = "uniform"


@dataclass
class EvaluationConfig:
    """Configuration for frozen-policy evaluation.

    Attributes:
        test_episode_options: Episode counts offered for a test run.
        default_test_episodes: Episode count used when none is given.
        max_steps_per_episode: Hard step cap per evaluation episode.
        render_every: Render every N-th evaluation step.
        episode_delay: Seconds to sleep between evaluation episodes.
    """
    test_episode_options: Tuple[int, ...] = (10, 25, 50, 100)
    default_test_episodes: int = 50
    max_steps_per_episode: int = 300
    render_every: int = 1
    episode_delay: float = 0.0


@dataclass
class TrainingConfig:
    """Configuration for the federated training loop.

    Attributes:
        n_clients: Number of parallel clients.
        max_clients: Upper bound accepted by set_client_count.
        render_interval: Ticks between render hook calls.
        tick_interval: Seconds to sleep between ticks in the run loop.
        max_episode_steps: Optional step cap for training episodes.
        app_name: Name used for checkpoint keys and export filenames.
        output_dir: Directory for saving outputs.
        reward_history_size: Finished-episode rewards kept by the trainer.
    """
    n_clients: int = 4
    max_clients: int = 1000
    render_interval: int = 50
    tick_interval: float = 0.0
    max_episode_steps: Optional[int] = None
    app_name: str = "q-fedrl"
    output_dir: str = "./outputs"
    reward_history_size: int = 10_000


@dataclass
class FedRLConfig:
    """Master configuration for q_fedrl.

    Combines all sub-configurations into a single object.

    Attributes:
        seed: Base random seed; client i uses seed + i.
    """
    seed: Optional[int] = 42
    agent: AgentConfig = field(default_factory=AgentConfig)
    federation: FederationConfig = field(default_factory=FederationConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)

    def __post_init__(self):
        if self.federation.strategy not in ("episodes", "performance"):
            raise ValueError(
                f"Unknown federation strategy: {self.federation.strategy!r}"
            )
        if self.federation.weighting not in ("uniform", "samples"):
            raise ValueError(
                f"Unknown federation weighting: {self.federation.weighting!r}"
            )
        if self.agent.n_actions < 1:
            raise ValueError("n_actions must be at least 1")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to nested dictionary."""
        d = asdict(self)
        d["evaluation"]["test_episode_options"] = list(
            self.evaluation.test_episode_options
        )
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "FedRLConfig":
        """Create config from dictionary."""
        evaluation = dict(d.get("evaluation", {}))
        if "test_episode_options" in evaluation:
            evaluation["test_episode_options"] = tuple(
                evaluation["test_episode_options"]
            )
        return cls(
            seed=d.get("seed", 42),
            agent=AgentConfig(**d.get("agent", {})),
            federation=FederationConfig(**d.get("federation", {})),
            evaluation=EvaluationConfig(**evaluation),
            training=TrainingConfig(**d.get("training", {})),
        )

    def save(self, path: Union[str, Path]) -> None:
        """Write config as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "FedRLConfig":
        """Read config from JSON."""
        with open(path) as f:
            return cls.from_dict(json.load(f))

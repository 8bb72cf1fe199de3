"""KPI tracking for episodes.

Keeps the reward (the learning signal) apart from KPIs, the named,
domain-meaningful measurements used to decide whether an episode
succeeded and to report on it.

Example:
    >>> tracker = EpisodeTracker(MetricsConfig(kpis={
    ...     "distance": KPIDefinition(compute=lambda s: s["dist"], aggregate="min"),
    ... }))
    >>> record = tracker.init()
    >>> _ = tracker.step(record, {"dist": 3.0}, action=0, reward=-1.0)
    >>> _ = tracker.step(record, {"dist": 1.0}, action=1, reward=5.0)
    >>> tracker.finalize(record, {"dist": 1.0}).kpis
    {'distance': 1.0}
"""

import copy
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..errors import KPIConfigError

logger = logging.getLogger(__name__)


def _sum(values):
    return float(sum(values))


def _avg(values):
    return float(sum(values)) / len(values) if values else 0.0


def _max(values):
    return float(max(values)) if values else 0.0


def _min(values):
    return float(min(values)) if values else math.inf


def _last(values):
    return float(values[-1]) if values else 0.0


def _first(values):
    return float(values[0]) if values else 0.0


def _count(values):
    return float(sum(1 for v in values if v != 0))


def _percentage(values):
    return _avg(values) * 100.0


AGGREGATORS: Dict[str, Callable[[Sequence[float]], float]] = {
    "sum": _sum,
    "avg": _avg,
    "max": _max,
    "min": _min,
    "last": _last,
    "first": _first,
    "count": _count,
    "percentage": _percentage,
}


@dataclass
class KPIDefinition:
    """One KPI.

    Attributes:
        compute: Pure function of the environment state.
        aggregate: Name of the aggregator in AGGREGATORS.
        display: Human-readable label.
        format: Optional ``(value, state) -> str`` formatter.
    """
    compute: Callable[[Any], float]
    aggregate: str = "sum"
    display: Optional[str] = None
    format: Optional[Callable[[float, Any], str]] = None


@dataclass
class MetricsConfig:
    """Success predicate, KPI set and summary function for a task.

    Attributes:
        is_successful: ``(final_state, record) -> bool``; defaults to
            positive total reward.
        kpis: KPI definitions by name.
        summary_metrics: ``(record) -> dict`` computed at finalize.
    """
    is_successful: Optional[Callable[[Any, "EpisodeRecord"], bool]] = None
    kpis: Dict[str, KPIDefinition] = field(default_factory=dict)
    summary_metrics: Optional[Callable[["EpisodeRecord"], Dict[str, Any]]] = None


@dataclass
class EpisodeRecord:
    """Accumulated data for one episode.

    Attributes:
        steps: Steps taken.
        total_reward: Sum of rewards.
        kpi_values: Per-KPI list of per-step values.
        trajectory: Per-step entries (state, action, reward, kpis).
        kpis: Aggregated KPI values, filled at finalize.
        success: Success flag, filled at finalize.
        summary: Summary metrics, filled at finalize.
        episode_num: 1-based index within an evaluation run.
        final_state: Observation the episode ended in.
    """
    steps: int = 0
    total_reward: float = 0.0
    kpi_values: Dict[str, List[float]] = field(default_factory=dict)
    trajectory: List[Dict[str, Any]] = field(default_factory=list)
    kpis: Dict[str, float] = field(default_factory=dict)
    success: bool = False
    summary: Dict[str, Any] = field(default_factory=dict)
    episode_num: int = 0
    final_state: Any = None

    def to_dict(self, include_trajectory: bool = False) -> Dict[str, Any]:
        d = {
            "episode": self.episode_num,
            "steps": self.steps,
            "total_reward": self.total_reward,
            "success": self.success,
            "kpis": dict(self.kpis),
            "summary": dict(self.summary),
        }
        if include_trajectory:
            d["trajectory"] = list(self.trajectory)
        return d


def reward_based_success(final_state: Any, record: EpisodeRecord) -> bool:
    return record.total_reward > 0


def reward_based_config() -> MetricsConfig:
    """Success means a positive total reward; no KPIs."""
    return MetricsConfig(is_successful=reward_based_success)


class EpisodeTracker:
    """Collects KPIs across the steps of an episode.

    Args:
        metrics_config: Success predicate and KPI definitions.
        record_trajectory: Keep a per-step trajectory in each record.

    Raises:
        TypeError: If a KPI's compute is not callable.
        KPIConfigError: If a KPI names an unknown aggregator.
    """

    def __init__(
        self,
        metrics_config: Optional[MetricsConfig] = None,
        record_trajectory: bool = True,
    ):
        self.config = metrics_config or MetricsConfig()
        self.record_trajectory = record_trajectory
        for name, kpi in self.config.kpis.items():
            if not callable(kpi.compute):
                raise TypeError(f"KPI '{name}': compute must be callable")
            if kpi.aggregate not in AGGREGATORS:
                raise KPIConfigError(
                    f"KPI '{name}': unknown aggregator '{kpi.aggregate}'"
                )

    @property
    def kpi_definitions(self) -> Dict[str, KPIDefinition]:
        return dict(self.config.kpis)

    def init(self) -> EpisodeRecord:
        """Fresh record with empty accumulators."""
        return EpisodeRecord(kpi_values={name: [] for name in self.config.kpis})

    def step(self, record: EpisodeRecord, state: Any, action: int, reward: float) -> EpisodeRecord:
        """Record one step; KPI errors count as 0 and never abort."""
        step_kpis = {}
        for name, kpi in self.config.kpis.items():
            try:
                value = float(kpi.compute(state))
            except Exception:
                logger.exception("Error computing KPI '%s'", name)
                value = 0.0
            step_kpis[name] = value
            record.kpi_values.setdefault(name, []).append(value)

        if self.record_trajectory:
            record.trajectory.append({
                "state": copy.copy(state),
                "action": action,
                "reward": reward,
                "kpis": step_kpis,
            })
        record.steps += 1
        record.total_reward += float(reward)
        return record

    def finalize(self, record: EpisodeRecord, final_state: Any) -> EpisodeRecord:
        """Aggregate KPIs, decide success and compute summary metrics."""
        for name, kpi in self.config.kpis.items():
            record.kpis[name] = AGGREGATORS[kpi.aggregate](record.kpi_values.get(name, []))

        if self.config.is_successful is not None:
            try:
                record.success = bool(self.config.is_successful(final_state, record))
            except Exception:
                logger.exception("Error in success predicate")
                record.success = False
        else:
            record.success = record.total_reward > 0

        if self.config.summary_metrics is not None:
            try:
                record.summary = dict(self.config.summary_metrics(record))
            except Exception:
                logger.exception("Error computing summary metrics")
                record.summary = {}

        record.final_state = final_state
        return record


def format_kpi(value: Any, kpi: KPIDefinition, state: Any = None) -> str:
    """Format a KPI value with its formatter, else two decimals."""
    if kpi.format is not None:
        return kpi.format(value, state if state is not None else {})
    if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
        return f"{value:.2f}"
    return str(value)


def aggregate_episodes(records: Sequence[EpisodeRecord]) -> Dict[str, Any]:
    """Cross-episode statistics.

    Returns:
        Dict with episodes, success_count, success_rate, avg_reward,
        avg_steps and per-KPI avg/min/max; empty for no records.
    """
    if not records:
        return {}
    n = len(records)
    success_count = sum(1 for r in records if r.success)
    result: Dict[str, Any] = {
        "episodes": n,
        "success_count": success_count,
        "success_rate": success_count / n,
        "avg_reward": sum(r.total_reward for r in records) / n,
        "avg_steps": sum(r.steps for r in records) / n,
        "kpis": {},
    }
    for name in records[0].kpis:
        values = [r.kpis.get(name, 0.0) for r in records]
        result["kpis"][name] = {
            "avg": float(np.mean(values)),
            "min": float(np.min(values)),
            "max": float(np.max(values)),
        }
    return result


DEFAULT_CONFIGS: Mapping[str, Callable[[], MetricsConfig]] = {
    "reward_based": reward_based_config,
}

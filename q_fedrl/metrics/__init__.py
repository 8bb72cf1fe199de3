"""Episode KPI tracking, separate from the learning reward."""

from .kpi import (
    AGGREGATORS,
    KPIDefinition,
    MetricsConfig,
    EpisodeRecord,
    EpisodeTracker,
    aggregate_episodes,
    format_kpi,
    reward_based_config,
)

__all__ = [
    "AGGREGATORS",
    "KPIDefinition",
    "MetricsConfig",
    "EpisodeRecord",
    "EpisodeTracker",
    "aggregate_episodes",
    "format_kpi",
    "reward_based_config",
]

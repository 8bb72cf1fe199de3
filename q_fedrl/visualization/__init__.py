"""
Visualization module for federated Q-learning runs.

Provides plotting utilities for:
- Learning curves with federation markers
- Per-round model deltas
- Evaluation reward distributions
- Epsilon schedules
"""

from .plot_utils import (
    plot_learning_curves,
    plot_federation_deltas,
    plot_evaluation_rewards,
    plot_epsilon_schedule,
    save_results_json,
    STYLE_CONFIG,
    MPL_AVAILABLE,
)

__all__ = [
    "plot_learning_curves",
    "plot_federation_deltas",
    "plot_evaluation_rewards",
    "plot_epsilon_schedule",
    "save_results_json",
    "STYLE_CONFIG",
    "MPL_AVAILABLE",
]

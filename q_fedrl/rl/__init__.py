"""RL module for tabular Q-learning clients."""

from .discretizer import (
    discretize,
    discretize_state,
    StateDiscretizer,
)
from .q_learning import (
    TabularQAgent,
    update_q_value,
    td_error,
    select_action,
    softmax_select,
)
from .environment import (
    Environment,
    StepResult,
    validate_environment,
    step_environment,
)
from .train import (
    Client,
    ClientMetrics,
    FederatedTrainer,
    TrainingResult,
)

__all__ = [
    "discretize",
    "discretize_state",
    "StateDiscretizer",
    "TabularQAgent",
    "update_q_value",
    "td_error",
    "select_action",
    "softmax_select",
    "Environment",
    "StepResult",
    "validate_environment",
    "step_environment",
    "Client",
    "ClientMetrics",
    "FederatedTrainer",
    "TrainingResult",
]

"""Federated averaging for tabular Q-learning clients.

All clients run in one process; only their Q-tables are exchanged.

Package:
    - aggregation: FedAvg over the union of states, convergence deltas
    - triggers: episode-count and performance-plateau strategies
    - coordinator: round bookkeeping and broadcast
    - serialization: versioned JSON checkpoint format
    - persistence: storage port with in-memory and file implementations
"""

from .aggregation import (
    ModelDelta,
    federated_average,
    federated_average_weighted,
    aggregate_or_fallback,
    compute_model_delta,
    compute_client_deltas,
)
from .triggers import (
    should_federate_by_episodes,
    should_federate_by_performance,
    get_trigger,
)
from .coordinator import (
    FederationCoordinator,
    FederationRound,
)
from .serialization import (
    serialize_model,
    deserialize_model,
)
from .persistence import (
    PersistencePort,
    InMemoryPersistence,
    JsonFilePersistence,
)

__all__ = [
    "ModelDelta",
    "federated_average",
    "federated_average_weighted",
    "aggregate_or_fallback",
    "compute_model_delta",
    "compute_client_deltas",
    "should_federate_by_episodes",
    "should_federate_by_performance",
    "get_trigger",
    "FederationCoordinator",
    "FederationRound",
    "serialize_model",
    "deserialize_model",
    "PersistencePort",
    "InMemoryPersistence",
    "JsonFilePersistence",
]

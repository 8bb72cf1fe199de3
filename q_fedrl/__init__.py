"""Federated tabular Q-learning.

Package:
    - rl: discretizer, tabular agent, environment contract, training loop
    - federated: FedAvg aggregation, triggers, coordinator, persistence
    - metrics: episode KPI tracking
    - evaluation: frozen-policy evaluation protocol
    - session: training/inference lifecycle
"""

__version__ = "0.1.0"

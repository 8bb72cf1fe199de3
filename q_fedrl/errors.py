"""Exception types raised by q_fedrl."""


class FedRLError(Exception):
    """Base class for all q_fedrl errors."""


class EnvironmentContractError(FedRLError):
    """Environment is missing one of the capabilities the engine needs."""


class AggregationError(FedRLError):
    """Federated averaging could not be performed on the given tables."""


class KPIConfigError(FedRLError, ValueError):
    """A KPI definition names an unknown aggregator."""

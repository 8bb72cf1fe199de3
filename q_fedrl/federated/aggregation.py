"""Federated averaging of Q-tables and convergence accounting.

Aggregation runs over the UNION of state keys. A client that never
visited a state contributes a zero vector for it and still counts in the
denominator, so rarely-visited states are attenuated rather than copied
verbatim from the one client that saw them.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..errors import AggregationError
from ..tables import QTable, copy_table

logger = logging.getLogger(__name__)


TableLike = Mapping[str, Sequence[float]]


def _union_keys(tables: Sequence[TableLike]) -> List[str]:
    keys: Dict[str, None] = {}
    for table in tables:
        for key in table:
            keys.setdefault(key, None)
    return list(keys)


def _width(tables: Sequence[TableLike]) -> int:
    width = 0
    for table in tables:
        for row in table.values():
            width = max(width, len(row))
    return width


def _padded(table: TableLike, key: str, width: int) -> np.ndarray:
    row = table.get(key)
    if row is None:
        return np.zeros(width)
    row = np.asarray(row, dtype=float)
    if len(row) < width:
        row = np.pad(row, (0, width - len(row)))
    return row


def federated_average(
    models: Sequence[TableLike],
    weights: Optional[Sequence[float]] = None,
) -> QTable:
    """Average client Q-tables (FedAvg).

    Args:
        models: Client tables.
        weights: Per-client weights; uniform ``1/n`` when omitted.
            Weights are used as given and never renormalized per state.

    Returns:
        Aggregated table whose keys are the union of all input keys.

    Raises:
        AggregationError: If no tables are given or the weight count
            does not match.

    Example:
        >>> federated_average([{"s1": [1, 0]}, {"s2": [2, 2]}])
        {'s1': array([0.5, 0. ]), 's2': array([1., 1.])}
    """
    if len(models) == 0:
        raise AggregationError("cannot aggregate zero tables")
    n = len(models)
    if weights is None:
        weights = [1.0 / n] * n
    elif len(weights) != n:
        raise AggregationError(
            f"got {len(weights)} weights for {n} tables"
        )

    width = _width(models)
    result: QTable = {}
    for key in _union_keys(models):
        total = np.zeros(width)
        for table, weight in zip(models, weights):
            total += weight * _padded(table, key, width)
        result[key] = total
    return result


def federated_average_weighted(
    models: Sequence[TableLike],
    sample_counts: Sequence[float],
) -> QTable:
    """FedAvg weighted by each client's sample (experience) count."""
    if len(models) == 0:
        raise AggregationError("cannot aggregate zero tables")
    if len(sample_counts) != len(models):
        raise AggregationError(
            f"got {len(sample_counts)} sample counts for {len(models)} tables"
        )
    total = float(sum(sample_counts))
    if total <= 0:
        return federated_average(models)
    return federated_average(models, [c / total for c in sample_counts])


def aggregate_or_fallback(
    models: Sequence[TableLike],
    weights: Optional[Sequence[float]] = None,
) -> QTable:
    """Aggregate, falling back to a copy of the first table on failure."""
    try:
        return federated_average(models, weights)
    except AggregationError as exc:
        logger.warning("Federated averaging failed (%s); using first table", exc)
        if not models:
            return {}
        return copy_table(models[0])


@dataclass
class ModelDelta:
    """Change between two aggregated tables.

    ``avg_delta`` is the summed absolute entry change divided by the
    number of distinct states compared.

    Attributes:
        total_states: Distinct states in the union of both tables.
        states_changed: States whose largest entry change exceeds epsilon.
        total_delta: Sum of absolute per-entry changes.
        avg_delta: total_delta / total_states.
        max_delta: Largest single-entry change.
        relative_delta: total_delta relative to the old table's L1 mass.
        converged: Whether avg_delta fell below the threshold.
    """
    total_states: int = 0
    states_changed: int = 0
    total_delta: float = 0.0
    avg_delta: float = 0.0
    max_delta: float = 0.0
    relative_delta: float = 0.0
    converged: bool = True

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def compute_model_delta(
    old_model: TableLike,
    new_model: TableLike,
    change_epsilon: float = 1e-3,
    convergence_threshold: float = 0.01,
) -> ModelDelta:
    """Compare two tables over the union of their states.

    Args:
        old_model: Table before the round.
        new_model: Table after the round.
        change_epsilon: Per-state change counted toward states_changed.
        convergence_threshold: avg_delta below which the round converged.

    Returns:
        ModelDelta summary.
    """
    tables = [old_model, new_model]
    keys = _union_keys(tables)
    width = _width(tables)

    total_delta = 0.0
    max_delta = 0.0
    old_mass = 0.0
    states_changed = 0
    for key in keys:
        old_row = _padded(old_model, key, width)
        diff = np.abs(_padded(new_model, key, width) - old_row)
        total_delta += float(diff.sum())
        old_mass += float(np.abs(old_row).sum())
        state_max = float(diff.max()) if width else 0.0
        max_delta = max(max_delta, state_max)
        if state_max > change_epsilon:
            states_changed += 1

    avg_delta = total_delta / len(keys) if keys else 0.0
    if old_mass > 1e-10:
        relative_delta = total_delta / old_mass
    else:
        relative_delta = 1.0 if total_delta > 0 else 0.0

    return ModelDelta(
        total_states=len(keys),
        states_changed=states_changed,
        total_delta=total_delta,
        avg_delta=avg_delta,
        max_delta=max_delta,
        relative_delta=relative_delta,
        converged=avg_delta < convergence_threshold,
    )


def compute_client_deltas(
    global_model: TableLike,
    client_models: Sequence[TableLike],
) -> List[float]:
    """L2 distance of each client table from the global table."""
    deltas = []
    for client_model in client_models:
        tables = [global_model, client_model]
        width = _width(tables)
        sq = 0.0
        for key in _union_keys(tables):
            diff = _padded(global_model, key, width) - _padded(client_model, key, width)
            sq += float(np.dot(diff, diff))
        deltas.append(float(np.sqrt(sq)))
    return deltas

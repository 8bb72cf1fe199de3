"""Q-table type and copy helper shared by agents and aggregation."""

from typing import Dict, Mapping, Optional, Sequence

import numpy as np


QTable = Dict[str, np.ndarray]


def copy_table(table: Mapping[str, Sequence[float]], n_actions: Optional[int] = None) -> QTable:
    """Deep-copy a table into float arrays, padding or truncating rows."""
    result: QTable = {}
    for key, values in table.items():
        row = np.array(values, dtype=float).reshape(-1)
        if n_actions is not None and len(row) != n_actions:
            if len(row) < n_actions:
                row = np.pad(row, (0, n_actions - len(row)))
            else:
                row = row[:n_actions]
        result[str(key)] = row
    return result

"""Continuous-to-discrete state mapping.

Turns raw continuous observations into the string keys used by the
tabular agent. Each dimension is bucketed independently and the bucket
indices are joined with commas, so the key layout follows the order of
the input values.

Example:
    >>> discretize_state([0.5, 9.0], bins=[4, 3], mins=[0, 0], maxs=[1, 10])
    '2,2'
"""

import math
from dataclasses import dataclass
from typing import Sequence


def discretize(value: float, bins: int, min_value: float, max_value: float) -> int:
    """Map a value into one of ``bins`` equal-width buckets.

    Values outside [min_value, max_value], including infinities, saturate
    at the edge buckets. NaN maps to bucket 0.

    Args:
        value: Value to bucket.
        bins: Number of buckets.
        min_value: Lower edge of the range.
        max_value: Upper edge of the range.

    Returns:
        Bucket index in [0, bins - 1].
    """
    span = max_value - min_value
    if span == 0 or math.isnan(value):
        return 0
    normalized = min(max((value - min_value) / span, 0.0), 1.0)
    bucket = math.floor(normalized * bins)
    return int(min(max(bucket, 0), bins - 1))


def discretize_state(
    values: Sequence[float],
    bins: Sequence[int],
    mins: Sequence[float],
    maxs: Sequence[float],
) -> str:
    """Discretize each dimension and join the buckets into one key."""
    return ",".join(
        str(discretize(v, b, lo, hi))
        for v, b, lo, hi in zip(values, bins, mins, maxs)
    )


@dataclass
class StateDiscretizer:
    """Reusable discretizer for a fixed observation layout.

    Attributes:
        bins: Buckets per dimension.
        mins: Lower bound per dimension.
        maxs: Upper bound per dimension.
    """
    bins: Sequence[int]
    mins: Sequence[float]
    maxs: Sequence[float]

    def __post_init__(self):
        if not (len(self.bins) == len(self.mins) == len(self.maxs)):
            raise ValueError("bins, mins and maxs must have the same length")
        if any(b < 1 for b in self.bins):
            raise ValueError("every dimension needs at least one bin")

    def __call__(self, values: Sequence[float]) -> str:
        if len(values) != len(self.bins):
            raise ValueError(
                f"expected {len(self.bins)} values, got {len(values)}"
            )
        return discretize_state(values, self.bins, self.mins, self.maxs)

    @property
    def n_dims(self) -> int:
        return len(self.bins)

    @property
    def n_states(self) -> int:
        """Number of distinct keys this discretizer can produce."""
        return int(math.prod(self.bins))

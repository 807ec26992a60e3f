"""Sliding windows and nearest-rank percentiles."""

from __future__ import annotations

import math
from collections import deque
from collections.abc import Iterable, Iterator, Sequence


class SlidingWindow:
    """Fixed-capacity buffer of recent samples; the oldest is evicted first."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._samples: deque[float] = deque(maxlen=capacity)

    def append(self, value: float) -> None:
        self._samples.append(value)

    def values(self) -> list[float]:
        """Samples in insertion order, oldest first (a copy)."""
        return list(self._samples)

    def count_at_most(self, limit: float) -> int:
        return sum(1 for v in self._samples if v <= limit)

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[float]:
        return iter(list(self._samples))


def _nearest_rank(ordered: Sequence[float], pct: float) -> float:
    if not ordered:
        return 0.0
    index = math.floor(len(ordered) * pct / 100)
    return ordered[min(index, len(ordered) - 1)]


def percentile(samples: Iterable[float], pct: float) -> float:
    """Nearest-rank percentile: ``sorted[floor(len * pct / 100)]``.

    No interpolation. Sorts a copy; returns 0.0 for no samples.
    """
    return _nearest_rank(sorted(samples), pct)


def percentiles(samples: Iterable[float], pcts: Iterable[float] = (50, 95, 99)) -> dict[float, float]:
    """Several percentiles from one sort."""
    ordered = sorted(samples)
    return {pct: _nearest_rank(ordered, pct) for pct in pcts}

# kestrel/core/stats.py
from __future__ import annotations

import math
from enum import Enum
from typing import Optional, Tuple

import numpy as np


class StatField(Enum):
    DELTA = 0  # ms between consecutive ticks
    RUN_TIME = 1  # ms spent inside the tick dispatch


def capacity_for_interval(interval_ms: float) -> int:
    """Number of samples covering one second at the given interval."""
    return max(1, math.ceil(1000.0 / interval_ms))


class StatsRingBuffer:
    """
    Fixed-capacity circular buffer of per-tick timing samples.

    Each row holds (delta_ms, run_time_ms). Once full, the oldest row is
    overwritten.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._data = np.zeros((capacity, 2), dtype=np.float64)
        self._head = 0  # next write slot
        self._count = 0

    @property
    def capacity(self) -> int:
        return self._data.shape[0]

    def __len__(self) -> int:
        return self._count

    def push(self, delta_ms: float, run_time_ms: float) -> None:
        self._data[self._head] = (delta_ms, run_time_ms)
        self._head = (self._head + 1) % self.capacity
        self._count = min(self._count + 1, self.capacity)

    def recent(self, n: Optional[int] = None) -> np.ndarray:
        """Return the newest min(n, len) rows, oldest first."""
        count = self._count if n is None else max(0, min(int(n), self._count))
        if count == 0:
            return self._data[:0]
        idx = (self._head - count + np.arange(count)) % self.capacity
        return self._data[idx]

    def average(self, field: StatField, n: Optional[int] = None) -> float:
        """Mean of a field over the newest n samples. 0.0 when empty."""
        rows = self.recent(n)
        if rows.shape[0] == 0:
            return 0.0
        return float(rows[:, field.value].mean())

    def latest(self) -> Optional[Tuple[float, float]]:
        if self._count == 0:
            return None
        delta, run_time = self._data[(self._head - 1) % self.capacity]
        return float(delta), float(run_time)

    def resize(self, capacity: int) -> None:
        """Change capacity, keeping the newest samples that still fit."""
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if capacity == self.capacity:
            return
        kept = self.recent(capacity)
        self._data = np.zeros((capacity, 2), dtype=np.float64)
        self._data[: kept.shape[0]] = kept
        self._count = kept.shape[0]
        self._head = self._count % capacity

    def clear(self) -> None:
        self._data.fill(0.0)
        self._head = 0
        self._count = 0

"""
Fixed-capacity FIFO buffer used for every rolling window in the pipeline.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Iterator

import numpy as np


class RingBuffer:
    """
    Bounded sequence of floats; appending past ``capacity`` evicts the oldest.

    Parameters
    ----------
    capacity:
        Maximum number of retained values (must be >= 1).
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"RingBuffer capacity must be >= 1, got {capacity}")
        self._data: Deque[float] = deque(maxlen=int(capacity))

    def append(self, value: float) -> None:
        self._data.append(float(value))

    def clear(self) -> None:
        self._data.clear()

    @property
    def capacity(self) -> int:
        return self._data.maxlen

    @property
    def is_full(self) -> bool:
        return len(self._data) == self._data.maxlen

    @property
    def latest(self) -> float:
        """Most recent value.  Raises ``IndexError`` when empty."""
        return self._data[-1]

    def values(self) -> np.ndarray:
        """Snapshot of the contents, oldest first."""
        return np.fromiter(self._data, dtype=np.float64, count=len(self._data))

    def last(self, n: int) -> np.ndarray:
        """Snapshot of the ``n`` most recent values (fewer if not yet available)."""
        n = max(0, min(int(n), len(self._data)))
        if n == 0:
            return np.empty(0, dtype=np.float64)
        values = self.values()
        return values[-n:]

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[float]:
        return iter(self._data)

    def __getitem__(self, index: int) -> float:
        return self._data[index]

    def __repr__(self) -> str:
        return f"RingBuffer(capacity={self.capacity}, size={len(self)})"

"""Fixed-capacity buffer that keeps the most recent items by timestamp."""
from __future__ import annotations

import heapq
from itertools import count
from typing import Generic, TypeVar

T = TypeVar("T")


class RecentBuffer(Generic[T]):
    """Holds at most ``capacity`` items, evicting the oldest on overflow.

    Items are ranked by their sort timestamp, then by insertion order, so
    out-of-order transcript lines still leave the newest ``capacity`` items.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._heap: list[tuple[float, int, T]] = []
        self._sequence = count()

    def __len__(self) -> int:
        return len(self._heap)

    def push(self, sort_ts: float, item: T) -> None:
        entry = (sort_ts, next(self._sequence), item)
        if len(self._heap) < self.capacity:
            heapq.heappush(self._heap, entry)
            return
        heapq.heappushpop(self._heap, entry)

    def items(self) -> list[T]:
        """Return the retained items in ascending timestamp order."""
        return [item for _, _, item in sorted(self._heap, key=lambda entry: entry[:2])]

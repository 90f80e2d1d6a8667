from __future__ import annotations

from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """
    Fixed-size circular buffer of records, oldest evicted first.
    Slots are preallocated; append never grows the backing list.
    Not thread-safe on its own; callers hold their own lock.
    """
    __slots__ = ("capacity", "size", "head", "_slots")

    def __init__(self, capacity: int):
        if int(capacity) <= 0:
            raise ValueError("capacity must be >= 1")
        self.capacity = int(capacity)
        self.size = 0
        self.head = 0  # next write index
        self._slots: list[Optional[T]] = [None] * self.capacity

    def append(self, item: T) -> Optional[T]:
        """Write `item`; returns the evicted record once the ring is full."""
        i = self.head
        evicted = self._slots[i] if self.size == self.capacity else None
        self._slots[i] = item
        self.head = (i + 1) % self.capacity
        if self.size < self.capacity:
            self.size += 1
        return evicted

    def last(self) -> Optional[T]:
        if self.size == 0:
            return None
        return self._slots[(self.head - 1) % self.capacity]

    def view_last(self, n: int) -> list[T]:
        """
        Up to the last n records in time order (oldest first).
        """
        if self.size == 0:
            return []
        n = int(n)
        if n <= 0:
            return []
        n = min(n, self.size)

        end = self.head  # exclusive
        start = (end - n) % self.capacity
        if start < end:
            # contiguous
            return list(self._slots[start:end])  # type: ignore[arg-type]
        # wrapped: [start..cap) + [0..end)
        return list(self._slots[start:]) + list(self._slots[:end])  # type: ignore[arg-type]

    def clear(self) -> None:
        self._slots = [None] * self.capacity
        self.size = 0
        self.head = 0

    def __len__(self) -> int:
        return self.size

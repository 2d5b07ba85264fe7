from __future__ import annotations

from typing import Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """
    Fixed-capacity history. Storage is allocated once; appending at capacity
    overwrites (evicts) the oldest slot.
    """

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = int(capacity)
        self._slots: List[Optional[T]] = [None] * self.capacity
        self._head = 0  # index of the oldest item
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def append(self, item: T) -> Optional[T]:
        """Add `item` as newest; return the evicted oldest item, if any."""
        if self._size < self.capacity:
            self._slots[(self._head + self._size) % self.capacity] = item
            self._size += 1
            return None
        evicted = self._slots[self._head]
        self._slots[self._head] = item
        self._head = (self._head + 1) % self.capacity
        return evicted

    def __iter__(self) -> Iterator[T]:
        for i in range(self._size):
            yield self._slots[(self._head + i) % self.capacity]  # type: ignore[misc]

    def to_list(self) -> List[T]:
        return list(self)

    def newest(self) -> Optional[T]:
        if self._size == 0:
            return None
        return self._slots[(self._head + self._size - 1) % self.capacity]


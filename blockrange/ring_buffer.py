"""Bounded store of the most recent items."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Keeps the newest items, dropping the oldest once full.

    ``capacity`` of ``None`` means unbounded; ``0`` means nothing is ever kept.
    """

    def __init__(self, capacity: int | None = None) -> None:
        if capacity is not None and capacity < 0:
            raise ValueError("capacity must not be negative")
        self._capacity = capacity
        self._items: deque[T] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int | None:
        return self._capacity

    def push(self, item: T) -> None:
        """Add ``item``, evicting the oldest item when the buffer is full."""
        self._items.append(item)

    def pop_back(self) -> T | None:
        """Remove and return the newest item, or ``None`` when empty."""
        return self._items.pop() if self._items else None

    def back(self) -> T | None:
        """Return the newest item without removing it, or ``None`` when empty."""
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __copy__(self) -> RingBuffer[T]:
        duplicate: RingBuffer[T] = RingBuffer(self._capacity)
        duplicate._items.extend(self._items)
        return duplicate
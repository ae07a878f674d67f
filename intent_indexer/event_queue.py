from collections import deque
from typing import Deque, Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


class EventQueue(Generic[T]):
    """
    Unbounded FIFO buffer between a producer and its consumer.

    Not thread-safe: each instance has one writer and one reader, and both
    run on the same event loop. Back-pressure is the caller's job.
    """

    def __init__(self) -> None:
        self._items: Deque[T] = deque()

    def add(self, item: T) -> None:
        self._items.append(item)

    def peek(self) -> Optional[T]:
        if not self._items:
            return None
        return self._items[0]

    def remove(self) -> Optional[T]:
        if not self._items:
            return None
        return self._items.popleft()

    def rotate(self) -> Optional[T]:
        """Move the head to the tail and return it."""
        if not self._items:
            return None
        item = self._items.popleft()
        self._items.append(item)
        return item

    def is_empty(self) -> bool:
        return not self._items

    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(tuple(self._items))

    def __repr__(self) -> str:
        return f"EventQueue(size={len(self._items)})"

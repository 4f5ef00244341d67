from collections import deque
from typing import Deque, Generic, List, TypeVar

T = TypeVar('T')


class RingBuffer(Generic[T]):
    """Fixed-capacity history; the oldest entry is evicted on overflow."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("Capacity must be positive")
        self._buffer: Deque[T] = deque(maxlen=capacity)

    def append(self, item: T) -> None:
        self._buffer.append(item)

    def get_last_n(self, n: int) -> List[T]:
        if n <= 0:
            return []
        return list(self._buffer)[-n:]

    def __len__(self) -> int:
        return len(self._buffer)

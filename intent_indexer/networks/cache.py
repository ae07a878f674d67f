import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class ExpiringCache(Generic[K, V]):
    """
    Key/value store with a per-entry TTL and a size cap.
    Entries are kept in insertion order so pruning pops from the front.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_size: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.clock = clock
        self._entries: "OrderedDict[K, Tuple[V, float]]" = OrderedDict()

    def get(self, key: K) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, stored_at = entry
        if self.clock() - stored_at > self.ttl_seconds:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: K, value: V) -> None:
        now = self.clock()
        self._entries[key] = (value, now)
        self._entries.move_to_end(key)
        self.prune(now)

    def prune(self, now: Optional[float] = None) -> int:
        prune_now = self.clock() if now is None else now
        removed = 0

        while self._entries:
            first_key = next(iter(self._entries))
            _, stored_at = self._entries[first_key]
            if (prune_now - stored_at) <= self.ttl_seconds:
                break
            self._entries.pop(first_key, None)
            removed += 1

        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            removed += 1

        return removed

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._entries)

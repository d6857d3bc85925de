"""Per-user adapter handle cache: bounded size, sliding TTL."""

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional


class HandleCache:
    """
    Maps a key (user, entity type) to a bound adapter handle.
    - sliding TTL: an entry expires ttl_seconds after its last use
    - bounded: the least recently used entry is dropped past max_size
    - thread-safe
    """

    def __init__(
        self,
        max_size: int = 256,
        ttl_seconds: float = 1800,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # key -> {"handle": Any, "expires_at": float}
        self._items: "OrderedDict[Hashable, dict]" = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def get_or_create(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        now = self._clock()
        with self._lock:
            item = self._items.get(key)
            if item is not None:
                if item["expires_at"] > now:
                    item["expires_at"] = now + self.ttl_seconds
                    self._items.move_to_end(key)
                    return item["handle"]
                # expired -> replace
                del self._items[key]

            handle = factory()
            self._items[key] = {"handle": handle, "expires_at": now + self.ttl_seconds}
            while len(self._items) > self.max_size:
                self._items.popitem(last=False)
            return handle

    def get(self, key: Hashable) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            item = self._items.get(key)
            if item is None or item["expires_at"] <= now:
                return None
            return item["handle"]

    def sweep_expired(self) -> int:
        """Delete expired handles. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, v in self._items.items() if v["expires_at"] <= now]
            for key in expired:
                del self._items[key]
            return len(expired)

    def invalidate(self, predicate: Callable[[Hashable], bool]) -> int:
        with self._lock:
            doomed = [k for k in self._items if predicate(k)]
            for key in doomed:
                del self._items[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

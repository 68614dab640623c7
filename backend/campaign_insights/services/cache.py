"""
In-process TTL cache for raw upstream lookups and collaborator results.

There is no capacity bound and no locking: one instance is created per
process and handed to the components that need it.
"""

import time
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Key -> (value, expiry) map with lazy expiry on read."""

    def __init__(
        self,
        ttl_seconds: float = 900,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[V, float]] = {}

    def get(self, key: Hashable) -> Optional[V]:
        """Get value from cache, dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, expiry = entry
        if self._clock() >= expiry:
            del self._entries[key]
            return None

        return value

    def set(self, key: Hashable, value: V, ttl_seconds: Optional[float] = None) -> None:
        """Set value in cache."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = (value, self._clock() + ttl)

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one key, or everything when no key is given."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

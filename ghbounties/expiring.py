"""
gh-bounties settlement - Expiring State

Process-scoped key/value state with a time-to-live. Entries are dropped
lazily when read after expiry, or in bulk by sweep().

Usage:
    cache = ExpiringStore(ttl=60)
    cache.put("gateway-info", info)
    info = cache.get("gateway-info")    # None once 60s have passed
"""

import threading
import time
from typing import Any, Callable, Dict, Hashable, Tuple


class ExpiringStore:

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def put(self, key: Hashable, value: Any, ttl: float = None):
        expires_at = self._clock() + (ttl if ttl is not None else self.ttl)
        with self._lock:
            self._entries[key] = (expires_at, value)

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry[0] <= self._clock():
                del self._entries[key]
                return default
            return entry[1]

    def pop(self, key: Hashable, default: Any = None) -> Any:
        """Remove and return a live entry (consume-once state)."""
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None or entry[0] <= self._clock():
            return default
        return entry[1]

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        value = self.get(key)
        if value is None:
            value = loader()
            self.put(key, value)
        return value

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (exp, _) in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_MISSING = object()

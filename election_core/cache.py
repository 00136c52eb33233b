# election_core/cache.py

import threading
import time
from typing import Any, Callable, Dict, Hashable, Tuple


class TTLCache:
    """Thread-safe key/value cache whose entries expire after ``ttl_seconds``.

    Keys are tuples whose first element is a namespace (a table name), so a
    write to one kind of reference data can drop every entry derived from it.
    """

    def __init__(self, ttl_seconds=120):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        # Bumped by every invalidate(); a load that straddles one is not stored
        self.generation = 0

    def _now(self):
        # extracted for easier monkeypatching in tests
        return time.monotonic()

    def get_or_load(self, key: Tuple, loader: Callable[[], Any]) -> Any:
        now = self._now()
        with self._lock:
            entry = self._entries.get(key)
            if entry and entry[0] > now:
                return entry[1]
            started = self.generation

        # Load outside the lock; concurrent misses may both load
        value = loader()
        with self._lock:
            if self.generation == started:
                self._entries[key] = (now + self.ttl_seconds, value)
        return value

    def invalidate(self, namespace=None):
        with self._lock:
            self.generation += 1
            if namespace is None:
                self._entries.clear()
            else:
                for key in [k for k in self._entries if k[0] == namespace]:
                    del self._entries[key]

    def __len__(self):
        with self._lock:
            return len(self._entries)

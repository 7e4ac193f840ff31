"""
cache.py

Per-scan memoization of probe results keyed by (host, port).
"""

import threading
from typing import Any, Callable, Dict, Hashable, Optional


class ProbeCache:
    """
    Thread-safe compute-once map using striped locks.

    Reads of settled entries take no lock. A miss takes only the lock of
    the key's stripe, so probes of unrelated ports do not serialize on
    one global lock, while concurrent requests for the same key wait for
    the first computation instead of repeating it.
    """

    def __init__(self, stripes: int = 64) -> None:
        self._data: Dict[Hashable, Any] = {}
        self._locks = [threading.Lock() for _ in range(max(1, stripes))]
        self._stats_lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _lock_for(self, key: Hashable) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def _count(self, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self.hits += 1
            else:
                self.misses += 1

    def get(self, key: Hashable) -> Optional[Any]:
        return self._data.get(key)

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        """Return the cached value for *key*, computing it exactly once."""
        if key in self._data:
            self._count(hit=True)
            return self._data[key]

        with self._lock_for(key):
            if key in self._data:
                self._count(hit=True)
                return self._data[key]
            value = compute()
            self._data[key] = value
            self._count(hit=False)
            return value

    def __contains__(self, key: Hashable) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

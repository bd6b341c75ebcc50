"""In-process key-value store with per-key TTL and atomic counters.

Backed by ``cachetools.TLRUCache`` so every entry carries its own expiry
(ephemeral on restarts).  The engine keeps only disposable data here: recent
push messages and their sequence counters.  Durable truth lives in the
relational store.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Any
from typing import Callable
from typing import List
from typing import Optional

from cachetools import TLRUCache


@dataclass(frozen=True)
class _Entry:
    value: Any
    ttl: Optional[float]


def _time_to_use(_key, entry: _Entry, now: float) -> float:
    return math.inf if entry.ttl is None else now + entry.ttl


class KeyValueStore:
    def __init__(self, *, maxsize: int = 10_000, timer: Callable[[], float] = time.monotonic):
        self._cache = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=timer)
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            self._cache[key] = _Entry(value, ttl)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._cache.get(key)
        return default if entry is None else entry.value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def incr(self, key: str, amount: int = 1) -> int:
        """Atomically add *amount* to an integer counter (missing counts as 0).

        A counter keeps the TTL it was first created with, restarted from the
        moment of the increment.
        """
        with self._lock:
            entry = self._cache.get(key)
            current = 0 if entry is None else int(entry.value)
            value = current + amount
            self._cache[key] = _Entry(value, None if entry is None else entry.ttl)
            return value

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            self._cache.expire()
            return [key for key in list(self._cache.keys()) if key.startswith(prefix)]

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)


__all__ = ["KeyValueStore"]

"""
Cache helpers for ClawScope
"""

import time
from collections import OrderedDict
from typing import Any, Callable, Optional


class LRUCache(OrderedDict):
    """Simple LRU cache with max size"""
    def __init__(self, maxsize=1000):
        self.maxsize = maxsize
        super().__init__()

    def __setitem__(self, key, value):
        if key in self:
            self.move_to_end(key)
        super().__setitem__(key, value)
        if len(self) > self.maxsize:
            oldest = next(iter(self))
            del self[oldest]

    def __getitem__(self, key):
        value = super().__getitem__(key)
        self.move_to_end(key)
        return value


class TTLCache:
    """Single-slot cache holding one (value, timestamp) pair.

    Concurrent readers and writers are not synchronized: a race only costs
    a redundant upstream fetch.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Any = None
        self._stored_at: Optional[float] = None

    def get(self) -> Optional[Any]:
        """Return the cached value, or None when empty or expired"""
        if self._stored_at is None:
            return None
        if self._clock() - self._stored_at >= self.ttl_seconds:
            return None
        return self._value

    def set(self, value: Any):
        self._value = value
        self._stored_at = self._clock()

    def clear(self):
        self._value = None
        self._stored_at = None

    @property
    def age(self) -> Optional[float]:
        if self._stored_at is None:
            return None
        return self._clock() - self._stored_at

"""Simple in-memory TTL cache used for resolved upstream stream URLs."""

from __future__ import annotations

import time
from collections import OrderedDict
from threading import RLock
from typing import Any, Hashable, Optional, Tuple

MISSING = object()


class TTLCache:
    """Thread-safe TTL cache with LRU eviction and optional per-entry expiry."""

    def __init__(self, maxsize: int = 128, ttl: float = 300.0) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.maxsize = maxsize
        self.ttl = ttl
        self._data: "OrderedDict[Hashable, Tuple[Any, float]]" = OrderedDict()
        self._lock = RLock()

    def _evict_expired(self) -> None:
        now = time.time()
        expired_keys = [key for key, (_, expiry) in self._data.items() if expiry <= now]
        for key in expired_keys:
            self._data.pop(key, None)

    def get(self, key: Hashable, default: Any = MISSING) -> Any:
        with self._lock:
            self._evict_expired()
            entry = self._data.get(key)
            if not entry:
                return default
            value, expiry = entry
            if expiry <= time.time():
                self._data.pop(key, None)
                return default
            self._data.move_to_end(key)
            return value

    def set(self, key: Hashable, value: Any, expires_at: Optional[float] = None) -> None:
        """Store a value; ``expires_at`` (epoch seconds) can only shorten the default TTL."""
        with self._lock:
            expiry = time.time() + self.ttl
            if expires_at is not None:
                expiry = min(expiry, expires_at)
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = (value, expiry)
            while len(self._data) > self.maxsize:
                self._data.popitem(last=False)

    def pop(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: Hashable) -> bool:  # pragma: no cover - convenience helper
        with self._lock:
            self._evict_expired()
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._data)


__all__ = ["TTLCache", "MISSING"]

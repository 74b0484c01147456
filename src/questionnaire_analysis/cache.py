"""Time-bounded in-process cache."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """Thread-safe cache whose entries expire ``ttl_seconds`` after they are stored."""

    def __init__(
        self,
        ttl_seconds: float,
        *,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}.")
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[K, tuple[float, V]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: K) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, key: K, value: V) -> None:
        with self._lock:
            if (
                self._max_entries is not None
                and key not in self._entries
                and len(self._entries) >= self._max_entries
            ):
                oldest = min(self._entries, key=lambda item: self._entries[item][0])
                del self._entries[oldest]
            self._entries[key] = (self._clock() + self._ttl_seconds, value)

    def get_or_load(self, key: K, loader: Callable[[K], V | None]) -> V | None:
        """Return a cached value, loading and caching it on a miss; None results are not cached."""

        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader(key)
        if value is not None:
            self.set(key, value)
        return value

    def invalidate(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

"""Keyed in-memory store of timestamped snapshots with read-time expiry."""

from __future__ import annotations

import time
from copy import deepcopy
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Generic, Hashable, Iterator, Optional, TypeVar

from fleetcache.models import StoreStats

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    key: Hashable
    value: T
    timestamp: float


class TTLStore(Generic[T]):
    """Holds at most one entry per key; expired entries stay until overwritten or cleared.

    Validity is ``now - timestamp < ttl`` and is only evaluated on read. Nothing
    sweeps the store in the background, so its size shrinks only through
    :meth:`delete` and :meth:`clear`.
    """

    def __init__(self, ttl_seconds: float, *, clock: Clock = time.time):
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[T]] = {}
        self._lock = Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def _is_valid(self, entry: CacheEntry[T], now: float) -> bool:
        return (now - entry.timestamp) < self._ttl

    def get(self, key: Hashable) -> Optional[CacheEntry[T]]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        return CacheEntry(entry.key, deepcopy(entry.value), entry.timestamp)

    def set(self, key: Hashable, value: T, *, timestamp: Optional[float] = None) -> CacheEntry[T]:
        """Store a copy of *value*, stamped with *timestamp* or the current clock reading."""
        if timestamp is None:
            timestamp = self._clock()
        entry = CacheEntry(key, deepcopy(value), timestamp)
        with self._lock:
            self._entries[key] = entry
        return entry

    def delete(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def read_valid(self, key: Hashable) -> Optional[tuple[T, float]]:
        """Return ``(value, age_seconds)`` for a live entry, else None."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or not self._is_valid(entry, now):
            return None
        return deepcopy(entry.value), max(0.0, now - entry.timestamp)

    def valid_items(self) -> Iterator[tuple[Hashable, T, float]]:
        now = self._clock()
        with self._lock:
            entries = list(self._entries.values())
        for entry in entries:
            if self._is_valid(entry, now):
                yield entry.key, deepcopy(entry.value), max(0.0, now - entry.timestamp)

    def stats(self) -> StoreStats:
        now = self._clock()
        with self._lock:
            entries = list(self._entries.values())
        valid = sum(1 for entry in entries if self._is_valid(entry, now))
        return StoreStats(total=len(entries), valid=valid, expired=len(entries) - valid)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

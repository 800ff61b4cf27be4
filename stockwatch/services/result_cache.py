"""TTL caches that let the checker skip redundant renders and dead URLs.

Two independent maps keyed by URL:

- snapshot cache: last observed availability plus a page fingerprint, short TTL
- reachability cache: last observed network reachability, longer TTL

Entries are never evicted on read; a stale entry is simply reported as not
fresh. When a map grows past ``max_entries`` it is cleared wholesale on the next
write, which keeps memory bounded without per-entry bookkeeping.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class PageSnapshot:
    available: bool
    fingerprint: str


@dataclass(frozen=True)
class _Entry(Generic[V]):
    value: V
    stored_at: float


class TTLCache(Generic[V]):
    """Thread-safe TTL map: ``get`` returns ``(value, fresh)``."""

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, _Entry[V]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> tuple[V | None, bool]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None, False
        fresh = self._clock() - entry.stored_at < self.ttl_seconds
        return entry.value, fresh

    def put(self, key: str, value: V) -> None:
        with self._lock:
            if len(self._entries) >= self.max_entries and key not in self._entries:
                self._entries.clear()
            self._entries[key] = _Entry(value=value, stored_at=self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ResultCache:
    def __init__(
        self,
        snapshot_ttl: float = 30.0,
        reachability_ttl: float = 60.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.snapshots: TTLCache[PageSnapshot] = TTLCache(snapshot_ttl, max_entries, clock)
        self.reachability: TTLCache[bool] = TTLCache(reachability_ttl, max_entries, clock)

    def get_snapshot(self, url: str) -> tuple[PageSnapshot | None, bool]:
        return self.snapshots.get(url)

    def put_snapshot(self, url: str, available: bool, fingerprint: str = "") -> None:
        self.snapshots.put(url, PageSnapshot(available=available, fingerprint=fingerprint))

    def get_reachable(self, url: str) -> tuple[bool | None, bool]:
        return self.reachability.get(url)

    def put_reachable(self, url: str, reachable: bool) -> None:
        self.reachability.put(url, reachable)

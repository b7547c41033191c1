from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    stored_at: float
    ttl_s: float

    def is_valid(self, now: float) -> bool:
        return now - self.stored_at < self.ttl_s


@dataclass(frozen=True)
class CacheStats:
    name: str
    total_entries: int
    valid_entries: int
    expired_entries: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "total_entries": int(self.total_entries),
            "valid_entries": int(self.valid_entries),
            "expired_entries": int(self.expired_entries),
        }


class TTLCache(Generic[V]):
    """
    Thread-safe in-memory cache with per-entry TTL.

    Expired entries are never returned by `get`; they are physically removed by
    `evict_expired`, which the optional background sweeper calls once per TTL interval.
    The clock is injectable (monotonic seconds) so tests can drive expiry directly.
    """

    def __init__(self, ttl_s: float, *, name: str = "cache", clock: Callable[[], float] | None = None):
        if ttl_s <= 0:
            raise ValueError("ttl_s must be positive")
        self.ttl_s = float(ttl_s)
        self.name = name
        self._clock = clock or time.monotonic
        self._entries: dict[Hashable, CacheEntry[V]] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.lookup(key)[0]

    def lookup(self, key: Hashable) -> tuple[bool, V | None]:
        """Return (hit, value). A cached None is a hit."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not entry.is_valid(self._clock()):
                return False, None
            return True, entry.value

    def get(self, key: Hashable, default: V | None = None) -> V | None:
        hit, value = self.lookup(key)
        return value if hit else default

    def set(self, key: Hashable, value: V, *, ttl_s: float | None = None) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl_s=float(ttl_s or self.ttl_s))

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> int:
        with self._lock:
            doomed = [k for k in self._entries if predicate(k)]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def evict_expired(self) -> int:
        with self._lock:
            now = self._clock()
            doomed = [k for k, e in self._entries.items() if not e.is_valid(now)]
            for k in doomed:
                del self._entries[k]
        if doomed:
            logger.debug("Evicted %s expired entries from %s", len(doomed), self.name)
        return len(doomed)

    def stats(self) -> CacheStats:
        with self._lock:
            now = self._clock()
            valid = sum(1 for e in self._entries.values() if e.is_valid(now))
            total = len(self._entries)
        return CacheStats(name=self.name, total_entries=total, valid_entries=valid, expired_entries=total - valid)

    # Background sweep -------------------------------------------------------------

    def start_sweeper(self) -> None:
        """Start the eviction thread (idempotent). Runs until `stop_sweeper`."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        t = threading.Thread(target=self._sweep_loop, name=f"{self.name}-sweeper", daemon=True)
        self._sweeper = t
        t.start()

    def stop_sweeper(self, timeout_s: float | None = 1.0) -> None:
        self._stop.set()
        t = self._sweeper
        self._sweeper = None
        if t is not None and t.is_alive():
            t.join(timeout=timeout_s)

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.ttl_s):
            try:
                self.evict_expired()
            except Exception:  # pragma: no cover
                logger.exception("Cache sweep failed for %s", self.name)

"""
Multi-Calendar Aggregator — Cache Store.

In-memory key/value store with per-entry TTL shared by the source registry
and the event aggregator. Expired entries are evicted lazily on read and swept
on every write; the store trims its oldest quarter when it grows past its
capacity.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)

KEY_PREFIX = "multi-calendar-aggregator-"
DEFAULT_TTL = timedelta(minutes=15)
SEARCH_TTL = timedelta(minutes=5)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass
class CacheHealth:
    total_items: int
    expired_items: int
    memory_usage: int
    hit_rate: float = 0.0

    @property
    def healthy(self) -> bool:
        """Fewer than 10% of the stored entries are expired."""
        if self.total_items == 0:
            return True
        return self.expired_items < self.total_items * 0.1


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------


def make_key(prefix: str, identifier: str) -> str:
    return f"{KEY_PREFIX}{prefix}-{identifier}"


def _joined(source_ids: Iterable[str]) -> str:
    # Order-independent so that the same set of sources shares a cache line
    return ",".join(sorted(set(source_ids)))


def sources_key(scope: str = "all") -> str:
    return make_key("calendar-sources", scope)


def events_key(source_id: str) -> str:
    return make_key("events", source_id)


def aggregated_key(source_ids: Iterable[str]) -> str:
    return make_key("aggregated-events", _joined(source_ids))


def search_key(query: str, source_ids: Iterable[str]) -> str:
    return make_key("search", f"{query.strip().lower()}|{_joined(source_ids)}")


def date_range_key(start: datetime, end: datetime, source_ids: Iterable[str]) -> str:
    return make_key("date-range", f"{start.isoformat()}_{end.isoformat()}|{_joined(source_ids)}")


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class CacheStore:
    """Thread-safe TTL cache.

    Args:
        max_entries: Entry count above which the oldest 25% are evicted.
        default_ttl: Lifetime applied when ``set`` is called without ``ttl``.
        clock: Returns the current time in epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        max_entries: int = 100,
        default_ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        lifetime = (self._default_ttl if ttl is None else ttl).total_seconds()
        if lifetime <= 0:
            raise ValueError("Cache TTL must be positive")
        with self._lock:
            now = self._clock()
            self._entries[key] = CacheEntry(value=value, created_at=now, expires_at=now + lifetime)
            self._sweep(now)
            if len(self._entries) > self._max_entries:
                self._evict_oldest()
        logger.debug("Cached %s for %.0fs", key, lifetime)

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                logger.debug("Cache entry expired: %s", key)
                return None
            return entry.value

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Cache cleared")

    def invalidate_by_substring(self, pattern: str) -> int:
        """Remove every entry whose key contains ``pattern``; return the count."""
        with self._lock:
            doomed = [key for key in self._entries if pattern in key]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d cache entr(ies) matching %r", len(doomed), pattern)
        return len(doomed)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def health(self) -> CacheHealth:
        with self._lock:
            now = self._clock()
            entries = dict(self._entries)
        expired = sum(1 for entry in entries.values() if entry.is_expired(now))
        return CacheHealth(
            total_items=len(entries),
            expired_items=expired,
            memory_usage=len(self._serialize(entries)),
        )

    def optimize(self) -> None:
        """Sweep expired entries and trim to capacity."""
        with self._lock:
            self._sweep(self._clock())
            if len(self._entries) > self._max_entries:
                self._evict_oldest()

    def export(self) -> dict:
        """Snapshot of the live entries, keyed by cache key."""
        with self._lock:
            now = self._clock()
            return {
                key: asdict(entry)
                for key, entry in self._entries.items()
                if not entry.is_expired(now)
            }

    # -- internals (callers hold the lock) ------------------------------------

    def _sweep(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

    def _evict_oldest(self) -> None:
        count = max(1, len(self._entries) // 4)
        oldest = sorted(self._entries.items(), key=lambda item: item[1].created_at)[:count]
        for key, _ in oldest:
            del self._entries[key]
        logger.info("Cache over capacity: evicted %d oldest entr(ies)", count)

    @staticmethod
    def _serialize(entries: dict[str, CacheEntry]) -> str:
        try:
            return json.dumps({key: entry.value for key, entry in entries.items()}, default=str)
        except (TypeError, ValueError):
            return json.dumps(list(entries), default=str)


# ---------------------------------------------------------------------------
# Guarded access
# ---------------------------------------------------------------------------


def safe_get(cache: CacheStore, key: str) -> Any | None:
    """Read through ``cache``; a failing cache reads as a miss."""
    try:
        value = cache.get(key)
    except Exception as exc:
        logger.warning("Cache read failed for %s: %s", key, exc)
        return None
    if value is not None:
        logger.debug("Cache hit: %s", key)
    return value


def safe_set(cache: CacheStore, key: str, value: Any, ttl: timedelta | None = None) -> None:
    """Write through ``cache``; failures are logged and dropped."""
    try:
        cache.set(key, value, ttl)
    except Exception as exc:
        logger.warning("Cache write failed for %s: %s", key, exc)

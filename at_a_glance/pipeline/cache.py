"""In-memory TTL cache used for calendar results, meeting context and advisory responses.

Process-local only; everything here is lost on restart.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry:
    key: Hashable
    payload: Any
    created_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.created_at < self.ttl


class TTLCache:
    """Key/value map whose entries expire ``ttl`` seconds after they were set.

    Expired entries are evicted on the next lookup of the same key, and every
    ``set`` sweeps out whatever else has expired, so time-bucketed keys that
    are never looked up again do not accumulate. Safe to share across threads.
    """

    def __init__(self, ttl: float, clock: Clock = time.time, name: str = "cache"):
        self.ttl = ttl
        self._clock = clock
        self._name = name
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_fresh(now):
                logger.debug("%s hit: %s (%.0fs old)", self._name, key, now - entry.created_at)
                return entry.payload
            self._entries.pop(key, None)
        logger.debug("%s expired: %s", self._name, key)
        return None

    def set(self, key: Hashable, payload: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        with self._lock:
            self._purge(now)
            self._entries[key] = CacheEntry(
                key=key,
                payload=payload,
                created_at=now,
                ttl=self.ttl if ttl is None else ttl,
            )

    def _purge(self, now: float) -> None:
        stale = [k for k, entry in self._entries.items() if not entry.is_fresh(now)]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.debug("%s purged %d expired entries", self._name, len(stale))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

"""Core event dataclass and the acquisition-tier interface shared by all calendar sources."""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import FrozenSet, List, Optional

logger = logging.getLogger(__name__)


class EventSource(str, enum.Enum):
    """Which acquisition tier produced an event."""

    BROKER = "broker"
    STORE = "store"
    FILE = "file"


@dataclass(frozen=True)
class Event:
    """A normalized calendar event.

    Built fresh every pipeline cycle by one of the acquisition tiers, so there is
    no identity across cycles. ``confidence`` is the reliability of the tier that
    produced it and decides which copy survives a cross-tier merge.
    """

    id: str
    title: str
    start: datetime
    end: datetime
    description: str = ""
    location: Optional[str] = None
    is_all_day: bool = False
    source: EventSource = EventSource.FILE
    categories: FrozenSet[str] = field(default_factory=frozenset)
    confidence: float = 0.5

    def __post_init__(self):
        if self.end < self.start:
            object.__setattr__(self, "end", self.start)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def text(self) -> str:
        """Title and description joined, the surface every keyword rule scans."""
        return f"{self.title} {self.description}".strip()

    @property
    def dedup_key(self) -> tuple[str, float]:
        return (self.title.strip().lower(), self.start.timestamp())

    def with_changes(self, **changes) -> "Event":
        return replace(self, **changes)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open range of instants an acquisition pass covers."""

    since: datetime
    until: datetime

    def contains(self, event: Event) -> bool:
        """True if the event overlaps the window at all."""
        return event.start < self.until and event.end >= self.since

    @classmethod
    def from_today(cls, now: datetime, horizon_days: int = 7) -> "TimeWindow":
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return cls(since=midnight, until=midnight + timedelta(days=horizon_days))


class AcquisitionTier(ABC):
    """One strategy in the calendar fallback chain.

    Tiers report availability once (a missing library, database, or file is a
    normal, statically-known outcome) and otherwise return parsed events for a
    window. ``try_acquire`` returns ``(events, ok)``; a tier that throws is treated
    by the caller exactly like one that returned ``ok=False``.
    """

    name: str = "tier"
    source: EventSource = EventSource.FILE
    confidence: float = 0.5

    @abstractmethod
    def available(self) -> bool:
        """Whether the backing data source exists on this machine."""

    @abstractmethod
    def fetch(self, window: TimeWindow, force_refresh: bool = False) -> List[Event]:
        """Return the raw parsed events for ``window``. May raise."""

    def try_acquire(self, window: TimeWindow, force_refresh: bool = False) -> tuple[List[Event], bool]:
        if not self.available():
            logger.debug("Calendar tier %s unavailable, skipping", self.name)
            return [], False
        events = self.fetch(window, force_refresh=force_refresh)
        stamped = [
            e.with_changes(source=self.source, confidence=self.confidence)
            for e in events
            if window.contains(e)
        ]
        return stamped, bool(stamped)

"""Walk the calendar tier chain and return one ranked event list.

Tiers are tried strictly in order (live broker → structured store → flat file by
default, configurable). The first tier whose screened yield is non-empty wins,
unless ``merge_all_tiers`` asks for every tier to be consulted and merged.
Duplicates are keyed by (title, start); across tiers the higher-confidence copy
survives. A tier that raises, times out or yields nothing is logged and skipped;
all tiers failing is a valid, empty result.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from at_a_glance.pipeline.cache import TTLCache
from at_a_glance.sources.base import AcquisitionTier, Event, TimeWindow
from at_a_glance.sources.filters import EventFilter

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 12


def dedupe_events(events: Iterable[Event]) -> List[Event]:
    """Drop repeated (title, start) pairs within one tier, keeping the first copy."""
    seen: set[tuple[str, float]] = set()
    deduped: List[Event] = []
    for event in events:
        key = event.dedup_key
        if key not in seen:
            seen.add(key)
            deduped.append(event)
    return deduped


def merge_events(merged: Dict[tuple[str, float], Event], events: Iterable[Event]) -> None:
    """Fold ``events`` into ``merged``, keeping the higher-confidence copy per key."""
    for event in events:
        key = event.dedup_key
        current = merged.get(key)
        if current is None or event.confidence > current.confidence:
            merged[key] = event


def day_bucket(event: Event, now: datetime) -> int:
    """0 = today (or already running), 1 = tomorrow, 2 = later in the horizon."""
    start_day = event.start.astimezone(now.tzinfo).date()
    today = now.date()
    if start_day <= today:
        return 0
    if start_day == today + timedelta(days=1):
        return 1
    return 2


def sort_events(events: Iterable[Event], now: datetime) -> List[Event]:
    return sorted(events, key=lambda e: (day_bucket(e, now), e.start))


def _unique_ids(events: List[Event]) -> List[Event]:
    # Recurring instances from one series share a UID.
    seen: set[str] = set()
    result: List[Event] = []
    for event in events:
        if event.id in seen:
            event = event.with_changes(id=f"{event.id}@{event.start.strftime('%Y%m%dT%H%M')}")
        seen.add(event.id)
        result.append(event)
    return result


def format_event_time(event: Event, now: datetime) -> str:
    """Short relative time label: "All day", "Now", "in 12m", "in 1h", or a clock time."""
    if event.is_all_day:
        return "All day"
    minutes = round((event.start - now).total_seconds() / 60)
    if minutes <= 0:
        return "Now"
    if minutes < 60:
        return f"in {minutes}m"
    if minutes < 120:
        return "in 1h"
    return event.start.astimezone(now.tzinfo).strftime("%I:%M %p").lstrip("0")


class CalendarAcquisition:
    """Ordered chain of acquisition tiers with a short-lived result cache."""

    def __init__(
        self,
        tiers: Sequence[AcquisitionTier],
        event_filter: Optional[EventFilter] = None,
        max_events: int = DEFAULT_MAX_EVENTS,
        horizon_days: int = 7,
        merge_all_tiers: bool = False,
        cache_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.tiers = list(tiers)
        self.event_filter = event_filter or EventFilter()
        self.max_events = max_events
        self.horizon_days = horizon_days
        self.merge_all_tiers = merge_all_tiers
        self._cache = TTLCache(cache_seconds, clock=clock, name="calendar cache")

    def acquire(self, now: Optional[datetime] = None, force_refresh: bool = False) -> List[Event]:
        now = now or datetime.now().astimezone()
        window = TimeWindow.from_today(now, self.horizon_days)
        cache_key = window.since.isoformat()

        if not force_refresh:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return [e for e in cached if e.end >= now]

        merged: Dict[tuple[str, float], Event] = {}
        for tier in self.tiers:
            try:
                raw, ok = tier.try_acquire(window, force_refresh=force_refresh)
            except Exception as exc:
                logger.warning("Calendar tier %s failed: %s", tier.name, exc)
                continue
            if not ok:
                logger.info("Calendar tier %s yielded nothing", tier.name)
                continue

            screened = self.event_filter.screen(dedupe_events(raw))
            logger.info(
                "Calendar tier %s: %d raw, %d after dedup and filtering",
                tier.name, len(raw), len(screened),
            )
            if not screened:
                continue
            merge_events(merged, screened)
            if not self.merge_all_tiers:
                break

        current = [e for e in merged.values() if e.end >= now]
        result = _unique_ids(sort_events(current, now)[: self.max_events])
        if not result:
            logger.info("Calendar: no events from any tier")
        self._cache.set(cache_key, result)
        return result

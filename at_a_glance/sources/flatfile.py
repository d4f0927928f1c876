"""Flat-file tier: parses an exported .ics calendar if one exists."""

from __future__ import annotations

import logging
from typing import List, Sequence

from at_a_glance.sources.base import AcquisitionTier, Event, EventSource, TimeWindow
from at_a_glance.sources.ical import parse_records, split_records
from at_a_glance.sources.store import resolve_paths

logger = logging.getLogger(__name__)

DEFAULT_ICS_PATHS = ["~/.local/share/evolution/calendar/system/calendar.ics"]


class FlatFileTier(AcquisitionTier):
    name = "file"
    source = EventSource.FILE

    def __init__(self, paths: Sequence[str] = tuple(DEFAULT_ICS_PATHS), confidence: float = 0.6):
        self._patterns = list(paths)
        self.confidence = confidence

    def available(self) -> bool:
        return bool(resolve_paths(self._patterns))

    def fetch(self, window: TimeWindow, force_refresh: bool = False) -> List[Event]:
        events: List[Event] = []
        for path in resolve_paths(self._patterns):
            try:
                raw = path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                logger.warning("Cannot read calendar file %s: %s", path, exc)
                continue
            records = split_records(raw)
            parsed = parse_records(records, source=EventSource.FILE)
            logger.debug("Calendar file %s: %d records → %d events", path, len(records), len(parsed))
            events.extend(parsed)
        return events

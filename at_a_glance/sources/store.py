"""Structured-store tier, reading calendar blobs out of local SQLite caches.

Evolution keeps one ``cache.db`` per calendar, with the full iCalendar text of
every event in the ``ECacheObjects`` table. Each row's blob goes through the
same parser as the flat-file export.
"""

from __future__ import annotations

import glob
import logging
import os
import sqlite3
from pathlib import Path
from typing import List, Sequence

from at_a_glance.sources.base import AcquisitionTier, Event, EventSource, TimeWindow
from at_a_glance.sources.ical import parse_records, split_records

logger = logging.getLogger(__name__)

DEFAULT_STORE_PATHS = ["~/.cache/evolution/calendar/*/cache.db"]
DEFAULT_STORE_QUERY = "SELECT ECacheOBJ FROM ECacheObjects"


def resolve_paths(patterns: Sequence[str]) -> List[Path]:
    paths: List[Path] = []
    for pattern in patterns:
        for match in sorted(glob.glob(os.path.expanduser(pattern))):
            path = Path(match)
            if path.is_file() and path not in paths:
                paths.append(path)
    return paths


def _blobs_to_records(blob) -> List[str]:
    if blob is None:
        return []
    if isinstance(blob, bytes):
        blob = blob.decode("utf-8", errors="replace")
    text = str(blob)
    # A blob is usually one VEVENT, but some caches store a whole VCALENDAR.
    records = split_records(text)
    return records or [text]


class StoreTier(AcquisitionTier):
    """Acquisition tier over one or more read-only SQLite calendar caches."""

    name = "store"
    source = EventSource.STORE

    def __init__(
        self,
        paths: Sequence[str] = tuple(DEFAULT_STORE_PATHS),
        query: str = DEFAULT_STORE_QUERY,
        confidence: float = 0.8,
    ):
        self._patterns = list(paths)
        self._query = query
        self.confidence = confidence

    def available(self) -> bool:
        return bool(resolve_paths(self._patterns))

    def fetch(self, window: TimeWindow, force_refresh: bool = False) -> List[Event]:
        events: List[Event] = []
        for db_path in resolve_paths(self._patterns):
            try:
                records = self._read_records(db_path)
            except sqlite3.Error as exc:
                logger.warning("Cannot read calendar store %s: %s", db_path, exc)
                continue
            parsed = parse_records(records, source=EventSource.STORE)
            logger.debug("Calendar store %s: %d rows → %d events", db_path, len(records), len(parsed))
            events.extend(parsed)
        return events

    def _read_records(self, db_path: Path) -> List[str]:
        conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)
        try:
            rows = conn.execute(self._query).fetchall()
        finally:
            conn.close()
        records: List[str] = []
        for row in rows:
            records.extend(_blobs_to_records(row[0]))
        return records

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from at_a_glance.sources.base import Event, EventSource


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_800_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def local(*args) -> datetime:
    return datetime(*args).astimezone()


def make_event(
    title: str,
    start: datetime,
    minutes: int = 30,
    description: str = "",
    location=None,
    is_all_day: bool = False,
    source: EventSource = EventSource.FILE,
    confidence: float = 0.5,
    uid=None,
) -> Event:
    end = start + (timedelta(days=1) if is_all_day else timedelta(minutes=minutes))
    return Event(
        id=uid or f"{title}-{start.isoformat()}",
        title=title,
        start=start,
        end=end,
        description=description,
        location=location,
        is_all_day=is_all_day,
        source=source,
        confidence=confidence,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def now() -> datetime:
    return local(2026, 10, 19, 9, 0)

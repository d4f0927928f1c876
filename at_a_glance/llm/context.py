"""Build the compact context payload sent with every advisory call.

Each signal is reduced to a single headline so the prompt stays small and
its digest is stable across cycles that see the same situation.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from at_a_glance.pipeline.meeting import MeetingSummary
from at_a_glance.sources.base import Event
from at_a_glance.sources.calendar import format_event_time
from at_a_glance.sources.system import SystemStatus
from at_a_glance.sources.tasks import Task
from at_a_glance.sources.weather import Weather


def time_of_day(now: datetime) -> str:
    if now.hour < 12:
        return "morning"
    if now.hour < 17:
        return "afternoon"
    return "evening"


@dataclass(frozen=True)
class AdvisoryContext:
    time_of_day: str
    calendar: str
    meetings: str
    tasks: str
    weather: str
    system: str
    # Digest of the slow-changing facts only; relative times ("in 12m") are left out.
    fingerprint: str = ""

    def lines(self) -> List[str]:
        return [
            f"- Time: {self.time_of_day}",
            f"- Calendar: {self.calendar}",
            f"- Meetings: {self.meetings}",
            f"- Tasks: {self.tasks}",
            f"- Weather: {self.weather}",
            f"- System: {self.system}",
        ]

    def digest(self) -> str:
        """Short fingerprint used as part of the advisory cache key."""
        return self.fingerprint or _sha(self.lines())


def _sha(parts: Sequence[str]) -> str:
    return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()[:12]


def calendar_headline(events: Sequence[Event], now: datetime) -> str:
    if not events:
        return "No events scheduled"
    first = events[0]
    headline = f"{first.title} ({format_event_time(first, now)})"
    if len(events) > 1:
        headline += f", {len(events) - 1} more"
    return headline


def task_headline(tasks: Sequence[Task]) -> str:
    urgent = [t for t in tasks if t.priority == "high"]
    if urgent:
        return "Urgent: " + ", ".join(t.title for t in urgent[:2])
    return f"{len(tasks)} tasks pending"


def weather_headline(weather: Weather) -> str:
    return f"{weather.temp}°F, {weather.condition}"


def system_headline(system: SystemStatus) -> str:
    return f"battery {system.battery_label}, {system.status}"


def build_advisory_context(
    now: datetime,
    events: Sequence[Event],
    meeting_summary: Optional[MeetingSummary],
    tasks: Sequence[Task],
    weather: Weather,
    system: SystemStatus,
) -> AdvisoryContext:
    stable = [
        time_of_day(now),
        *(e.id for e in events),
        *(f"{t.priority}:{t.title}" for t in tasks),
        weather.condition,
        system.status,
    ]
    return AdvisoryContext(
        time_of_day=time_of_day(now),
        calendar=calendar_headline(events, now),
        meetings=meeting_summary.human_summary if meeting_summary else "Unknown",
        tasks=task_headline(tasks),
        weather=weather_headline(weather),
        system=system_headline(system),
        fingerprint=_sha(stable),
    )


def format_advisory_message(context: AdvisoryContext, max_chars: int) -> str:
    """Format the user message for an advisory call."""
    lines = [
        f"It is {context.time_of_day}. Current context:",
        "",
        *context.lines(),
        "",
        f"Reply with ONE status line, at most {max_chars} characters.",
    ]
    return "\n".join(lines)

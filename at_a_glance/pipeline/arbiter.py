"""Priority arbitration: turn every signal into one status line.

Evaluation stops at the first tier that produces a line:

1. critical system alerts (low battery, failed services), never quota-gated;
2. the advisory call, through :class:`~at_a_glance.pipeline.advisor.AdvisoryGate`;
3. the deterministic ladder, which always ends in a weather line.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from at_a_glance.llm.context import build_advisory_context
from at_a_glance.pipeline.advisor import AdvisoryGate
from at_a_glance.pipeline.meeting import MeetingSummary
from at_a_glance.sources.base import Event
from at_a_glance.sources.calendar import format_event_time
from at_a_glance.sources.system import SystemStatus
from at_a_glance.sources.tasks import Task
from at_a_glance.sources.weather import Weather

logger = logging.getLogger(__name__)

# Checked in order; first keyword found in the condition wins.
WEATHER_ICONS = [
    ("thunder", "⛈️"),
    ("rain", "🌧️"),
    ("snow", "🌨️"),
    ("fog", "🌫️"),
    ("cloud", "☁️"),
    ("clear", "☀️"),
    ("sunny", "☀️"),
]
DEFAULT_WEATHER_ICON = "⛅"

_VIRTUAL_LOCATION = re.compile(r"virtual|online|https?://|zoom|teams|meet\.google|webex", re.IGNORECASE)


def weather_icon(condition: str) -> str:
    lowered = condition.lower()
    for keyword, icon in WEATHER_ICONS:
        if keyword in lowered:
            return icon
    return DEFAULT_WEATHER_ICON


def weather_line(weather: Weather) -> str:
    return f"{weather_icon(weather.condition)} {weather.temp}°F {weather.condition}"


def truncate(line: str, max_length: int) -> str:
    if len(line) <= max_length:
        return line
    return line[: max_length - 1].rstrip() + "…"


def _task_line(tasks: List[Task], single_icon: str, multi_icon: str) -> str:
    if len(tasks) > 1:
        return f"{multi_icon} {tasks[0].title} (+{len(tasks) - 1})"
    return f"{single_icon} {tasks[0].title}"


@dataclass(frozen=True)
class ArbiterInputs:
    now: datetime
    events: Sequence[Event] = ()
    tasks: Sequence[Task] = ()
    weather: Weather = field(default_factory=Weather)
    system: SystemStatus = field(default_factory=SystemStatus)
    meeting_summary: Optional[MeetingSummary] = None


@dataclass(frozen=True)
class Decision:
    line: str
    tier: str  # critical | advisory | fallback
    rule: str


class PriorityArbiter:
    def __init__(
        self,
        gate: Optional[AdvisoryGate] = None,
        battery_threshold: int = 20,
        imminent_minutes: int = 15,
        upcoming_hours: int = 4,
        max_length: int = 40,
    ):
        self.gate = gate
        self.battery_threshold = battery_threshold
        self.imminent = timedelta(minutes=imminent_minutes)
        self.upcoming = timedelta(hours=upcoming_hours)
        self.max_length = max_length

    def _decision(self, line: str, tier: str, rule: str) -> Decision:
        return Decision(truncate(line, self.max_length), tier, rule)

    # ══════════════════════════════════════════════════════════════
    # Tiers
    # ══════════════════════════════════════════════════════════════

    def critical(self, inputs: ArbiterInputs) -> Optional[Decision]:
        system = inputs.system
        if system.battery is not None and system.battery < self.battery_threshold:
            return self._decision(f"🔋 {system.battery}% battery", "critical", "battery")
        if system.failed_services > 0:
            return self._decision(f"⚠️ {system.status}", "critical", "services")
        return None

    async def advisory(self, inputs: ArbiterInputs) -> Optional[Decision]:
        if self.gate is None or not self.gate.enabled:
            return None
        context = build_advisory_context(
            inputs.now, inputs.events, inputs.meeting_summary,
            inputs.tasks, inputs.weather, inputs.system,
        )
        try:
            line = await self.gate.ask("prioritization", context)
        except Exception as exc:
            logger.warning("Advisory prioritization failed, using fallback: %s", exc)
            return None
        if not line:
            return None
        return self._decision(line, "advisory", "prioritization")

    def fallback(self, inputs: ArbiterInputs) -> Decision:
        now = inputs.now
        timed = sorted((e for e in inputs.events if not e.is_all_day), key=lambda e: e.start)

        for event in timed:
            if event.start <= now + self.imminent:
                if event.start <= now:
                    return self._decision(f"🚨 {event.title} starting", "fallback", "imminent")
                minutes = math.ceil((event.start - now).total_seconds() / 60)
                return self._decision(f"🚨 {event.title} in {minutes}m", "fallback", "imminent")

        high = [t for t in inputs.tasks if t.priority == "high"]
        if high:
            return self._decision(_task_line(high, "⚡", "🎯"), "fallback", "high-task")

        for event in timed:
            if now < event.start <= now + self.upcoming:
                when = format_event_time(event, now)
                location = event.location or ""
                if _VIRTUAL_LOCATION.search(location):
                    icon = "🎥"
                elif location:
                    icon = "📍"
                else:
                    icon = "📅"
                return self._decision(f"{icon} {event.title} @ {when}", "fallback", "upcoming")

        medium = [t for t in inputs.tasks if t.priority == "medium"]
        if medium:
            return self._decision(_task_line(medium, "📋", "📋"), "fallback", "medium-task")

        for event in sorted(inputs.events, key=lambda e: e.start):
            same_day = event.start.date() == now.date()
            if same_day and (event.is_all_day or event.start > now):
                when = format_event_time(event, now)
                return self._decision(f"📅 {event.title} @ {when}", "fallback", "later-today")

        return self._decision(weather_line(inputs.weather), "fallback", "weather")

    # ══════════════════════════════════════════════════════════════
    # Entry points
    # ══════════════════════════════════════════════════════════════

    def decide_offline(self, inputs: ArbiterInputs) -> Decision:
        """Critical tier then the ladder, skipping the advisory call."""
        return self.critical(inputs) or self.fallback(inputs)

    async def decide(self, inputs: ArbiterInputs) -> Decision:
        decision = self.critical(inputs)
        if decision is None:
            decision = await self.advisory(inputs)
        if decision is None:
            decision = self.fallback(inputs)
        logger.debug("Arbiter chose %s/%s: %s", decision.tier, decision.rule, decision.line)
        return decision

    async def insight(self, inputs: ArbiterInputs) -> Optional[str]:
        """Broad advisory insight for the snapshot summary; ``None`` when unavailable.

        Skipped while a critical alert owns the top line, so a long low-battery
        stretch does not burn quota.
        """
        if self.gate is None or not self.gate.enabled:
            return None
        if self.critical(inputs) is not None:
            return None
        context = build_advisory_context(
            inputs.now, inputs.events, inputs.meeting_summary,
            inputs.tasks, inputs.weather, inputs.system,
        )
        try:
            return await self.gate.ask("insight", context)
        except Exception as exc:
            logger.warning("Advisory insight failed: %s", exc)
            return None

"""Periodic status pipeline: collect, enrich, arbitrate, publish.

One cycle fans out to the four collaborators (weather, calendar, tasks,
system) concurrently, joins them with per-source defaults for anything that
failed, enriches events with meeting context, then asks the arbiter for the
top line. Every cycle carries a sequence number; a snapshot is published
only if no newer cycle has already published one.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from at_a_glance.config import Settings
from at_a_glance.llm.client import LLMClient
from at_a_glance.llm.loader import load_prompts
from at_a_glance.pipeline.advisor import AdvisoryGate, PromptedLLMAdvisor
from at_a_glance.pipeline.arbiter import ArbiterInputs, PriorityArbiter
from at_a_glance.pipeline.meeting import MeetingContextExtractor, MeetingSummary
from at_a_glance.pipeline.quota import AdvisoryCache
from at_a_glance.sources.base import AcquisitionTier, Event
from at_a_glance.sources.broker import BrokerTier, EdsBroker
from at_a_glance.sources.calendar import CalendarAcquisition, format_event_time
from at_a_glance.sources.filters import EventFilter
from at_a_glance.sources.flatfile import FlatFileTier
from at_a_glance.sources.store import StoreTier
from at_a_glance.sources.system import SystemStatus, read_system_status
from at_a_glance.sources.tasks import Task, read_tasks
from at_a_glance.sources.weather import Weather, error_weather, read_weather

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


@dataclass
class GlanceContext:
    """Everything a pipeline cycle needs, built once and passed explicitly."""

    calendar: CalendarAcquisition
    meetings: MeetingContextExtractor
    arbiter: PriorityArbiter
    read_weather: Callable[[], Weather]
    read_tasks: Callable[[], List[Task]]
    read_system: Callable[[], SystemStatus]
    top_events: int = 3
    now: Callable[[], datetime] = _local_now


@dataclass(frozen=True)
class StatusSnapshot:
    cycle: int
    generated_at: datetime
    top_line: str
    tier: str
    weather: Weather = field(default_factory=Weather)
    events: Tuple[Event, ...] = ()
    tasks: Tuple[Task, ...] = ()
    system: SystemStatus = field(default_factory=SystemStatus)
    meeting_summary: Optional[MeetingSummary] = None
    advisory_summary: Optional[str] = None

    def detail_lines(self) -> Dict[str, str]:
        weather = f"🌤️ Weather: {self.weather.temp}°F, {self.weather.description or self.weather.condition}"

        if self.events:
            first = self.events[0]
            calendar = f"📅 Next: {first.title} @ {format_event_time(first, self.generated_at)}"
        else:
            calendar = "📅 No upcoming events"

        urgent = [t for t in self.tasks if t.priority == "high"]
        if urgent:
            more = f" (+{len(urgent) - 2} more)" if len(urgent) > 2 else ""
            tasks = "📝 Urgent: " + ", ".join(t.title for t in urgent[:2]) + more
        elif self.tasks:
            more = f" (+{len(self.tasks) - 1} more)" if len(self.tasks) > 1 else ""
            tasks = f"📝 Next: {self.tasks[0].title}{more}"
        else:
            tasks = "📝 No tasks scheduled"

        system = f"💻 System: {self.system.status}, {self.system.battery_label} battery"
        return {"weather": weather, "calendar": calendar, "tasks": tasks, "system": system}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycle,
            "generatedAt": self.generated_at.isoformat(),
            "topLine": self.top_line,
            "tier": self.tier,
            "advisorySummary": self.advisory_summary,
            "weather": {
                "temp": self.weather.temp,
                "condition": self.weather.condition,
                "description": self.weather.description,
            },
            "events": [
                {
                    "id": e.id,
                    "title": e.title,
                    "start": e.start.isoformat(),
                    "end": e.end.isoformat(),
                    "location": e.location,
                    "isAllDay": e.is_all_day,
                    "source": e.source.value,
                    "categories": sorted(e.categories),
                    "time": format_event_time(e, self.generated_at),
                }
                for e in self.events
            ],
            "tasks": [{"title": t.title, "priority": t.priority, "due": t.due} for t in self.tasks],
            "system": {
                "battery": self.system.battery,
                "failedServices": self.system.failed_services,
                "status": self.system.status,
            },
            "meetings": self.meeting_summary.to_dict() if self.meeting_summary else None,
            "details": self.detail_lines(),
        }


class StatusPipeline:
    def __init__(
        self,
        context: GlanceContext,
        on_publish: Optional[Callable[[StatusSnapshot], None]] = None,
    ):
        self.context = context
        self.on_publish = on_publish
        self.latest: Optional[StatusSnapshot] = None
        self._sequence = 0
        self._pending: Set[asyncio.Task] = set()

    # ══════════════════════════════════════════════════════════════
    # One cycle
    # ══════════════════════════════════════════════════════════════

    async def _collect(self, now: datetime) -> Tuple[Weather, List[Event], List[Task], SystemStatus]:
        ctx = self.context
        results = await asyncio.gather(
            asyncio.to_thread(ctx.read_weather),
            asyncio.to_thread(ctx.calendar.acquire, now),
            asyncio.to_thread(ctx.read_tasks),
            asyncio.to_thread(ctx.read_system),
            return_exceptions=True,
        )
        names = ("weather", "calendar", "tasks", "system")
        defaults = (error_weather(), [], [], SystemStatus(status="Unknown"))
        joined = []
        for name, result, default in zip(names, results, defaults):
            if isinstance(result, Exception):
                logger.warning("Collector %s failed: %s", name, result)
                joined.append(default)
            else:
                joined.append(result)
        weather, events, tasks, system = joined
        return weather, events, tasks, system

    async def build_snapshot(self, cycle: int) -> StatusSnapshot:
        ctx = self.context
        now = ctx.now()
        weather, events, tasks, system = await self._collect(now)

        try:
            summary = ctx.meetings.summarize_for_arbiter(events, now)
        except Exception as exc:
            logger.warning("Meeting enrichment failed: %s", exc)
            summary = None

        inputs = ArbiterInputs(
            now=now, events=events, tasks=tasks,
            weather=weather, system=system, meeting_summary=summary,
        )
        decision, insight = await asyncio.gather(
            ctx.arbiter.decide(inputs),
            ctx.arbiter.insight(inputs),
        )
        return StatusSnapshot(
            cycle=cycle,
            generated_at=now,
            top_line=decision.line,
            tier=decision.tier,
            weather=weather,
            events=tuple(events[: ctx.top_events]),
            tasks=tuple(tasks),
            system=system,
            meeting_summary=summary,
            advisory_summary=insight,
        )

    def publish(self, snapshot: StatusSnapshot) -> bool:
        """Publish unless a newer cycle got there first."""
        if self.latest is not None and self.latest.cycle >= snapshot.cycle:
            logger.debug(
                "Discarding stale snapshot from cycle %d (cycle %d already published)",
                snapshot.cycle, self.latest.cycle,
            )
            return False
        self.latest = snapshot
        if self.on_publish is not None:
            self.on_publish(snapshot)
        return True

    async def run_cycle(self) -> Optional[StatusSnapshot]:
        self._sequence += 1
        cycle = self._sequence
        snapshot = await self.build_snapshot(cycle)
        return snapshot if self.publish(snapshot) else None

    # ══════════════════════════════════════════════════════════════
    # Periodic loop
    # ══════════════════════════════════════════════════════════════

    async def _guarded_cycle(self) -> None:
        try:
            await self.run_cycle()
        except Exception:
            logger.exception("Pipeline cycle failed")

    async def run_forever(self, interval: float, cycles: Optional[int] = None) -> None:
        """Start a cycle every ``interval`` seconds without waiting on the previous one."""
        started = 0
        while cycles is None or started < cycles:
            task = asyncio.create_task(self._guarded_cycle())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            started += 1
            if cycles is not None and started >= cycles:
                break
            await asyncio.sleep(interval)
        if self._pending:
            await asyncio.gather(*self._pending)


# ══════════════════════════════════════════════════════════════════
# Wiring
# ══════════════════════════════════════════════════════════════════


def build_tiers(settings: Settings) -> List[AcquisitionTier]:
    cal = settings.calendar
    confidence = {"broker": 0.9, "store": 0.8, "file": 0.6, **cal.tier_confidence}
    factories: Dict[str, Callable[[], AcquisitionTier]] = {
        "broker": lambda: BrokerTier(EdsBroker(), timeout=cal.broker_timeout_seconds, confidence=confidence["broker"]),
        "store": lambda: StoreTier(cal.store_paths, cal.store_query, confidence=confidence["store"]),
        "file": lambda: FlatFileTier(cal.ics_paths, confidence=confidence["file"]),
    }
    tiers: List[AcquisitionTier] = []
    for name in cal.tier_order:
        factory = factories.get(name)
        if factory is None:
            logger.warning("Unknown calendar tier '%s' in tier_order, skipping", name)
            continue
        tiers.append(factory())
    return tiers


def build_advisory_gate(settings: Settings, cache: AdvisoryCache) -> AdvisoryGate:
    adv = settings.advisory
    client = None
    prompts = load_prompts()
    if adv.enabled:
        api_key = settings.api_key(adv.provider)
        if api_key:
            try:
                llm = LLMClient(api_key, provider=adv.provider, model=adv.model)
            except (ValueError, ImportError) as exc:
                logger.warning("Advisory client unavailable: %s", exc)
            else:
                client = PromptedLLMAdvisor(llm, prompts)
        else:
            logger.info("No %s API key configured, advisory tier disabled", adv.provider)
    return AdvisoryGate(
        cache,
        client,
        timeout=adv.timeout_seconds,
        max_chars={name: p.max_chars for name, p in prompts.items()},
    )


def build_context(settings: Settings) -> GlanceContext:
    cal = settings.calendar
    calendar = CalendarAcquisition(
        build_tiers(settings),
        event_filter=EventFilter(cal.exclude_patterns, cal.category_keywords),
        max_events=cal.max_events,
        horizon_days=cal.horizon_days,
        merge_all_tiers=cal.merge_all_tiers,
        cache_seconds=cal.cache_minutes * 60,
    )
    adv = settings.advisory
    cache = AdvisoryCache(
        Path(adv.usage_path),
        max_daily_requests=adv.max_daily_requests,
        cache_ttl_minutes=adv.cache_ttl_minutes,
        low_remaining_threshold=adv.low_remaining_threshold,
    )
    arb = settings.arbiter
    arbiter = PriorityArbiter(
        build_advisory_gate(settings, cache),
        battery_threshold=arb.battery_threshold,
        imminent_minutes=arb.imminent_minutes,
        upcoming_hours=arb.upcoming_hours,
        max_length=arb.max_length,
    )
    weather = settings.weather
    tasks = settings.tasks
    return GlanceContext(
        calendar=calendar,
        meetings=MeetingContextExtractor(
            cache_minutes=settings.meeting.cache_minutes,
            lookahead_hours=settings.meeting.lookahead_hours,
        ),
        arbiter=arbiter,
        read_weather=functools.partial(
            read_weather,
            settings.api_key("openweather"),
            location=weather.location_override,
            default_location=weather.default_location,
            units=weather.units,
            timeout=weather.timeout_seconds,
        ),
        read_tasks=functools.partial(
            read_tasks,
            settings.api_key("todoist"),
            api_url=tasks.api_url,
            limit=tasks.limit,
            timeout=tasks.timeout_seconds,
        ),
        read_system=read_system_status,
        top_events=settings.pipeline.top_events,
    )

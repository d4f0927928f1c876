"""Meeting context extraction.

Enriches calendar events with conferencing links, an urgency level, a meeting
type, preparation hints and an estimated preparation time, then reduces the
upcoming window to one compact summary for the arbiter and the advisory prompt.
All rules are keyword and regex heuristics; no network calls.
"""

from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from at_a_glance.pipeline.cache import TTLCache
from at_a_glance.sources.base import Event

logger = logging.getLogger(__name__)


class Urgency(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    MEDIUM_HIGH = "medium-high"
    HIGH = "high"


class MeetingType(str, enum.Enum):
    STANDUP = "standup"
    ONE_ON_ONE = "one-on-one"
    INTERVIEW = "interview"
    ALL_HANDS = "all-hands"
    PRESENTATION = "presentation"
    REVIEW = "review"
    CLIENT = "client"
    GENERAL = "general"


class Platform(str, enum.Enum):
    ZOOM = "zoom"
    GOOGLE_MEET = "google-meet"
    TEAMS = "teams"
    WEBEX = "webex"
    JITSI = "jitsi"
    GOTOMEETING = "gotomeeting"
    GENERIC = "generic"


# ══════════════════════════════════════════════════════════════════
# Patterns and keyword tables
# ══════════════════════════════════════════════════════════════════

PLATFORM_LINK_PATTERNS = [
    r"https?://(?:[\w-]+\.)?zoom\.us/j/[\w?=&.-]+",
    r"https?://(?:[\w-]+\.)?zoom\.us/meeting/[\w?=&.-]+",
    r"https?://meet\.google\.com/[\w-]+",
    r"https?://teams\.microsoft\.com/l/meetup-join/[\w%?=&./-]+",
    r"https?://teams\.live\.com/meet/[\w%?=&.-]+",
    r"https?://[\w-]+\.webex\.com/(?:meet|join)/[\w.-]+",
    r"https?://meet\.jit\.si/[\w-]+",
    r"https?://(?:www\.)?gotomeeting\.com/join/[\w-]+",
]
GENERIC_LINK_PATTERN = r"https?://[\w.-]+/(?:meet|join|meeting|call)/[\w.-]+"

_link_res = [re.compile(p, re.IGNORECASE) for p in PLATFORM_LINK_PATTERNS + [GENERIC_LINK_PATTERN]]
_url_re = re.compile(r"https?://[^\s<>\"')]+", re.IGNORECASE)

PLATFORM_HOSTS = [
    ("zoom.us", Platform.ZOOM),
    ("meet.google.com", Platform.GOOGLE_MEET),
    ("teams.microsoft.com", Platform.TEAMS),
    ("teams.live.com", Platform.TEAMS),
    ("webex.com", Platform.WEBEX),
    ("meet.jit.si", Platform.JITSI),
    ("gotomeeting.com", Platform.GOTOMEETING),
]

PLATFORM_CONFIDENCE = {
    Platform.ZOOM: 0.9,
    Platform.GOOGLE_MEET: 0.9,
    Platform.TEAMS: 0.9,
    Platform.WEBEX: 0.8,
    Platform.JITSI: 0.7,
    Platform.GOTOMEETING: 0.7,
    Platform.GENERIC: 0.6,
}

CONTEXT_WORDS = ("meeting", "call", "conference", "join", "dial-in")
CONTEXT_RADIUS = 80

URGENT_KEYWORDS = [
    "urgent", "asap", "emergency", "critical", "immediate",
    "1:1", "one-on-one", "interview", "all-hands", "standup",
    "deadline", "review", "demo", "presentation", "client",
]

PREPARATION_KEYWORDS = [
    "agenda", "materials", "slides", "document", "prep",
    "review", "read", "prepare", "bring", "requirements",
]

# First match wins.
MEETING_TYPE_KEYWORDS = [
    (MeetingType.STANDUP, ("standup", "stand-up", "daily")),
    (MeetingType.ONE_ON_ONE, ("1:1", "one-on-one", "1-on-1")),
    (MeetingType.INTERVIEW, ("interview",)),
    (MeetingType.ALL_HANDS, ("all-hands", "all hands", "town hall")),
    (MeetingType.PRESENTATION, ("demo", "presentation")),
    (MeetingType.REVIEW, ("review",)),
    (MeetingType.CLIENT, ("client", "customer")),
]

DEFAULT_PREPARATION = {
    MeetingType.STANDUP: [
        ("Review yesterday's work progress", "high"),
        ("Prepare today's priorities", "high"),
    ],
    MeetingType.ONE_ON_ONE: [
        ("Review recent work and feedback", "medium"),
        ("Prepare discussion points", "medium"),
    ],
    MeetingType.INTERVIEW: [
        ("Research company and role", "high"),
        ("Prepare questions to ask", "high"),
        ("Review resume and examples", "high"),
    ],
    MeetingType.PRESENTATION: [
        ("Test slides and technical setup", "high"),
        ("Prepare for Q&A session", "medium"),
    ],
    MeetingType.CLIENT: [
        ("Review client account history", "high"),
        ("Prepare project updates", "medium"),
    ],
    MeetingType.GENERAL: [
        ("Review meeting agenda", "medium"),
    ],
}

BASE_PREPARATION_MINUTES = {
    MeetingType.STANDUP: 2,
    MeetingType.ONE_ON_ONE: 5,
    MeetingType.INTERVIEW: 30,
    MeetingType.ALL_HANDS: 0,
    MeetingType.PRESENTATION: 15,
    MeetingType.REVIEW: 10,
    MeetingType.CLIENT: 15,
    MeetingType.GENERAL: 5,
}

MAX_PREPARATION_TASKS = 5
LONG_MEETING = timedelta(hours=2)
SHORT_MEETING = timedelta(minutes=15)


# ══════════════════════════════════════════════════════════════════
# Data shapes
# ══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MeetingLink:
    url: str
    platform: Platform
    confidence: float


@dataclass(frozen=True)
class PreparationTask:
    text: str
    kind: str = "preparation"
    priority: str = "medium"
    url: Optional[str] = None


@dataclass(frozen=True)
class MeetingContext:
    event: Event
    urgency: Urgency
    links: List[MeetingLink] = field(default_factory=list)
    preparation_tasks: List[PreparationTask] = field(default_factory=list)
    preparation_minutes: int = 5
    meeting_type: MeetingType = MeetingType.GENERAL

    @property
    def primary_link(self) -> Optional[MeetingLink]:
        return self.links[0] if self.links else None

    @property
    def has_preparation(self) -> bool:
        return bool(self.preparation_tasks)


@dataclass(frozen=True)
class NextMeeting:
    title: str
    minutes_until: int
    urgency: Urgency
    has_link: bool
    has_preparation: bool
    preparation_minutes: int
    meeting_type: MeetingType


@dataclass(frozen=True)
class MeetingSummary:
    has_meetings: bool
    human_summary: str
    total_upcoming: int = 0
    next_meeting: Optional[NextMeeting] = None

    def to_dict(self) -> dict:
        data = {
            "hasMeetings": self.has_meetings,
            "totalUpcoming": self.total_upcoming,
            "humanSummary": self.human_summary,
        }
        if self.next_meeting is not None:
            nm = self.next_meeting
            data["nextMeeting"] = {
                "title": nm.title,
                "minutesUntil": nm.minutes_until,
                "urgency": nm.urgency.value,
                "hasLink": nm.has_link,
                "hasPreparation": nm.has_preparation,
                "preparationMinutes": nm.preparation_minutes,
                "meetingType": nm.meeting_type.value,
            }
        return data


# ══════════════════════════════════════════════════════════════════
# Extractor
# ══════════════════════════════════════════════════════════════════

def detect_platform(url: str) -> Platform:
    lowered = url.lower()
    for host, platform in PLATFORM_HOSTS:
        if host in lowered:
            return platform
    return Platform.GENERIC


def _has_context_nearby(text: str, start: int, end: int) -> bool:
    nearby = text[max(0, start - CONTEXT_RADIUS): end + CONTEXT_RADIUS].lower()
    # The URL itself often contains "join" or "meeting"; only the surroundings count.
    surroundings = nearby.replace(text[start:end].lower(), " ")
    return any(word in surroundings for word in CONTEXT_WORDS)


class MeetingContextExtractor:
    """Derives :class:`MeetingContext` for events, caching per (event id, start)."""

    def __init__(
        self,
        cache_minutes: float = 15,
        lookahead_hours: int = 4,
        clock: Callable[[], float] = time.time,
    ):
        self.lookahead_hours = lookahead_hours
        self.lookahead = timedelta(hours=lookahead_hours)
        self._cache = TTLCache(cache_minutes * 60, clock=clock, name="meeting cache")

    def extract_links(self, event: Event) -> List[MeetingLink]:
        text = event.text
        links: List[MeetingLink] = []
        seen: set[str] = set()
        spans: List[tuple[int, int]] = []
        for pattern in _link_res:
            for match in pattern.finditer(text):
                url = match.group(0).rstrip(".,;")
                overlaps = any(match.start() < end and start < match.end() for start, end in spans)
                if url in seen or overlaps:
                    continue
                seen.add(url)
                spans.append((match.start(), match.end()))
                platform = detect_platform(url)
                confidence = PLATFORM_CONFIDENCE[platform]
                if _has_context_nearby(text, match.start(), match.end()):
                    confidence += 0.1
                links.append(MeetingLink(url=url, platform=platform, confidence=round(min(confidence, 1.0), 2)))
        return sorted(links, key=lambda link: link.confidence, reverse=True)

    def is_meeting_link(self, url: str) -> bool:
        return any(pattern.fullmatch(url.rstrip(".,;")) for pattern in _link_res)

    def classify_urgency(self, event: Event) -> Urgency:
        text = event.text.lower()
        urgent = any(kw in text for kw in URGENT_KEYWORDS)
        urgency = Urgency.HIGH if urgent else Urgency.MEDIUM

        duration = event.duration
        if urgency is Urgency.HIGH or not duration:
            return urgency
        if duration > LONG_MEETING:
            return Urgency.MEDIUM_HIGH
        if duration < SHORT_MEETING:
            return Urgency.LOW
        return urgency

    def detect_meeting_type(self, event: Event) -> MeetingType:
        text = event.text.lower()
        for meeting_type, keywords in MEETING_TYPE_KEYWORDS:
            if any(kw in text for kw in keywords):
                return meeting_type
        return MeetingType.GENERAL

    @staticmethod
    def task_priority(line: str) -> str:
        text = line.lower()
        if any(word in text for word in ("urgent", "critical", "required")):
            return "high"
        if any(word in text for word in ("recommended", "helpful", "optional")):
            return "low"
        return "medium"

    def generate_preparation_tasks(self, event: Event) -> List[PreparationTask]:
        tasks: List[PreparationTask] = []
        for line in [event.title, *event.description.splitlines()]:
            stripped = line.strip()
            if not stripped:
                continue
            lowered = stripped.lower()
            if any(kw in lowered for kw in PREPARATION_KEYWORDS):
                tasks.append(PreparationTask(text=stripped, priority=self.task_priority(stripped)))
            for match in _url_re.finditer(stripped):
                url = match.group(0).rstrip(".,;")
                if not self.is_meeting_link(url):
                    tasks.append(PreparationTask(
                        text=f"Review document: {url}", kind="document", priority="medium", url=url,
                    ))

        meeting_type = self.detect_meeting_type(event)
        defaults = DEFAULT_PREPARATION.get(meeting_type, DEFAULT_PREPARATION[MeetingType.GENERAL])
        tasks.extend(PreparationTask(text=text, priority=priority) for text, priority in defaults)
        return tasks[:MAX_PREPARATION_TASKS]

    def preparation_minutes(self, event: Event) -> int:
        meeting_type = self.detect_meeting_type(event)
        urgency = self.classify_urgency(event)
        minutes = float(BASE_PREPARATION_MINUTES[meeting_type])

        if urgency is Urgency.HIGH:
            minutes *= 1.5
        elif urgency is Urgency.LOW:
            minutes *= 0.5

        duration = event.duration
        if duration > LONG_MEETING:
            minutes *= 1.5
        elif duration and duration < SHORT_MEETING:
            minutes *= 0.5

        return max(2, min(30, round(minutes)))

    def context_for(self, event: Event) -> MeetingContext:
        key = (event.id, event.start.timestamp())
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        context = MeetingContext(
            event=event,
            urgency=self.classify_urgency(event),
            links=self.extract_links(event),
            preparation_tasks=self.generate_preparation_tasks(event),
            preparation_minutes=self.preparation_minutes(event),
            meeting_type=self.detect_meeting_type(event),
        )
        self._cache.set(key, context)
        return context

    def get_upcoming_with_context(self, events: Sequence[Event], now: datetime) -> List[MeetingContext]:
        """Contexts for timed events starting within the lookahead window, by start time."""
        horizon = now + self.lookahead
        upcoming = [
            e for e in events
            if not e.is_all_day and now <= e.start <= horizon
        ]
        upcoming.sort(key=lambda e: e.start)
        return [self.context_for(e) for e in upcoming]

    def summarize_for_arbiter(self, events: Sequence[Event], now: datetime) -> MeetingSummary:
        contexts = self.get_upcoming_with_context(events, now)
        if not contexts:
            return MeetingSummary(
                has_meetings=False,
                human_summary=f"No meetings in next {self.lookahead_hours} hours",
            )

        first = contexts[0]
        minutes_until = round((first.event.start - now).total_seconds() / 60)
        return MeetingSummary(
            has_meetings=True,
            next_meeting=NextMeeting(
                title=first.event.title or "Untitled Meeting",
                minutes_until=minutes_until,
                urgency=first.urgency,
                has_link=bool(first.links),
                has_preparation=first.has_preparation,
                preparation_minutes=first.preparation_minutes,
                meeting_type=first.meeting_type,
            ),
            total_upcoming=len(contexts),
            human_summary=self._human_summary(contexts, now),
        )

    @staticmethod
    def _human_summary(contexts: List[MeetingContext], now: datetime) -> str:
        if len(contexts) == 1:
            event = contexts[0].event
            minutes = round((event.start - now).total_seconds() / 60)
            return f"{event.title} in {minutes}min"
        urgent = sum(1 for c in contexts if c.urgency is Urgency.HIGH)
        if urgent:
            return f"{len(contexts)} meetings ({urgent} urgent)"
        return f"{len(contexts)} meetings upcoming"

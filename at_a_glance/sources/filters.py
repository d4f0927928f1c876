"""Event exclusion and categorization rules.

Pure keyword rules over a single event, no I/O. Exclusion is pattern-based,
never source-based: a birthday is dropped whichever tier produced it.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional, Sequence

from at_a_glance.sources.base import Event

DEFAULT_EXCLUDE_PATTERNS = [
    r"\bholidays?\b",
    r"\bbirthdays?\b",
    r"\banniversar(?:y|ies)\b",
]

# Checked in this order; the first category with a match wins.
CATEGORY_PRIORITY = ("work", "personal")

DEFAULT_CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "work": [
        "meeting", "standup", "stand-up", "sync", "1:1", "one-on-one", "interview",
        "review", "client", "customer", "sprint", "retro", "demo", "presentation",
        "all-hands", "planning", "project", "deadline", "call", "workshop",
    ],
    "personal": [
        "dentist", "doctor", "appointment", "gym", "workout", "dinner", "lunch",
        "family", "kids", "school", "haircut", "party", "vacation", "date night",
        "yoga", "pickup", "vet",
    ],
}


def _compile_any(patterns: Iterable[str]) -> Optional[re.Pattern]:
    patterns = list(patterns)
    if not patterns:
        return None
    return re.compile("|".join(f"(?:{p})" for p in patterns), re.IGNORECASE)


def _keyword_pattern(keywords: Sequence[str]) -> Optional[re.Pattern]:
    # Word boundaries only where the keyword edge is a word character ("1:1" has none).
    parts = []
    for kw in keywords:
        left = r"\b" if kw[:1].isalnum() else ""
        right = r"\b" if kw[-1:].isalnum() else ""
        parts.append(f"{left}{re.escape(kw)}{right}")
    return _compile_any(parts)


class EventFilter:
    """Classifies events as excluded or not, and assigns them a category."""

    def __init__(
        self,
        exclude_patterns: Optional[Sequence[str]] = None,
        category_keywords: Optional[Dict[str, Sequence[str]]] = None,
    ):
        self._exclude_re = _compile_any(
            DEFAULT_EXCLUDE_PATTERNS if exclude_patterns is None else exclude_patterns
        )
        keywords = DEFAULT_CATEGORY_KEYWORDS if category_keywords is None else category_keywords
        self._category_res = [
            (name, _keyword_pattern(keywords.get(name, [])))
            for name in CATEGORY_PRIORITY
        ]

    def should_exclude(self, event: Event) -> bool:
        if self._exclude_re is None:
            return False
        return bool(self._exclude_re.search(event.text))

    def categorize(self, event: Event) -> str:
        text = event.text
        for name, pattern in self._category_res:
            if pattern is not None and pattern.search(text):
                return name
        return "general"

    def screen(self, events: Iterable[Event]) -> List[Event]:
        """Drop excluded events and stamp categories on the survivors."""
        kept: List[Event] = []
        for event in events:
            if self.should_exclude(event):
                continue
            kept.append(event.with_changes(categories=frozenset({self.categorize(event)})))
        return kept

"""Daily quota and response cache for the metered advisory service.

Usage is persisted to a small JSON file so the daily cap survives restarts:

    {"date": "2026-10-18", "requests": 7, "insights": 2, "prioritization": 5}

A stored date other than today means the counters are implicitly zero. Reads
and writes are unlocked; a second writer simply wins. If the file cannot be
read or written we fall back to an in-memory record (fail open), while an
exhausted quota always blocks (fail closed).
"""

from __future__ import annotations

import json
import logging
import time
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from at_a_glance.pipeline.cache import TTLCache

logger = logging.getLogger(__name__)

# Per-type counter names in the persisted record.
COUNTER_FIELDS = {"insight": "insights", "prioritization": "prioritization"}

DEFAULT_TTL_MINUTES = {"insight": 60, "prioritization": 5}


class UsageRecord(BaseModel):
    """Persisted daily usage counters."""

    date: str
    requests: int = Field(default=0, ge=0)
    insights: int = Field(default=0, ge=0)
    prioritization: int = Field(default=0, ge=0)

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, v):
        return str(v)

    @classmethod
    def fresh(cls, day: date) -> "UsageRecord":
        return cls(date=day.isoformat())


class UsageStore:
    """Reads and rewrites the usage JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def load(self) -> Optional[UsageRecord]:
        """Return the stored record, ``None`` if absent. Raises on unreadable data."""
        if not self.path.exists():
            return None
        data = json.loads(self.path.read_text(encoding="utf-8"))
        return UsageRecord.model_validate(data)

    def save(self, record: UsageRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(record.model_dump(), indent=2), encoding="utf-8")


class AdvisoryCache:
    """Gatekeeper for advisory calls: a daily request cap plus a short-lived response cache.

    Callers check :meth:`get_cached` and :meth:`can_make_request` before calling
    out, and call :meth:`record_request` immediately *before* issuing the call so
    a request that later fails still counts.
    """

    def __init__(
        self,
        usage_path: Path,
        max_daily_requests: int = 24,
        cache_ttl_minutes: Optional[Dict[str, float]] = None,
        low_remaining_threshold: int = 2,
        clock: Callable[[], float] = time.time,
        on_low_quota: Optional[Callable[[int], None]] = None,
    ):
        self.store = UsageStore(usage_path)
        self.max_daily_requests = max_daily_requests
        self.cache_ttl_minutes = {**DEFAULT_TTL_MINUTES, **(cache_ttl_minutes or {})}
        self.low_remaining_threshold = low_remaining_threshold
        self._clock = clock
        self._on_low_quota = on_low_quota
        self._responses = TTLCache(
            ttl=max(self.cache_ttl_minutes.values()) * 60, clock=clock, name="advisory cache"
        )
        self._memory: Optional[UsageRecord] = None

    # ══════════════════════════════════════════════════════════════
    # Quota
    # ══════════════════════════════════════════════════════════════

    def today(self) -> date:
        return datetime.fromtimestamp(self._clock()).date()

    def _read_usage(self) -> UsageRecord:
        today = self.today()
        try:
            record = self.store.load()
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Cannot read advisory usage from %s: %s", self.store.path, exc)
            record = None
        if record is None:
            record = self._memory

        if record is None or record.date != today.isoformat():
            return UsageRecord.fresh(today)
        return record

    def _write_usage(self, record: UsageRecord) -> None:
        try:
            self.store.save(record)
        except OSError as exc:
            logger.warning("Cannot write advisory usage to %s: %s", self.store.path, exc)
            self._memory = record
        else:
            self._memory = None

    def can_make_request(self, call_type: str = "prioritization") -> bool:
        usage = self._read_usage()
        remaining = self.max_daily_requests - usage.requests
        if remaining <= 0:
            logger.info(
                "Daily advisory limit reached (%d/%d), skipping %s call",
                usage.requests, self.max_daily_requests, call_type,
            )
            return False
        if remaining <= self.low_remaining_threshold:
            logger.warning("Only %d advisory requests remaining today", remaining)
            if self._on_low_quota is not None:
                self._on_low_quota(remaining)
        return True

    def record_request(self, call_type: str = "prioritization") -> UsageRecord:
        usage = self._read_usage()
        updates: Dict[str, Any] = {"requests": usage.requests + 1, "date": self.today().isoformat()}
        counter = COUNTER_FIELDS.get(call_type)
        if counter:
            updates[counter] = getattr(usage, counter) + 1
        usage = usage.model_copy(update=updates)
        self._write_usage(usage)
        logger.info(
            "Advisory request recorded: %d/%d (%s)",
            usage.requests, self.max_daily_requests, call_type,
        )
        return usage

    def usage_status(self) -> Dict[str, Any]:
        usage = self._read_usage()
        return {
            "used": usage.requests,
            "remaining": max(0, self.max_daily_requests - usage.requests),
            "limit": self.max_daily_requests,
            "insights": usage.insights,
            "prioritization": usage.prioritization,
            "date": usage.date,
            "reset": "midnight",
        }

    # ══════════════════════════════════════════════════════════════
    # Response cache
    # ══════════════════════════════════════════════════════════════

    def ttl_seconds(self, call_type: str) -> float:
        return float(self.cache_ttl_minutes.get(call_type, min(self.cache_ttl_minutes.values()))) * 60

    def cache_key(self, call_type: str, fingerprint: str = "") -> str:
        """Time-bucketed key: calls within the same TTL-sized window share an entry."""
        bucket = int(self._clock() // self.ttl_seconds(call_type))
        return f"{call_type}:{bucket}:{fingerprint}"

    def get_cached(self, key: str) -> Optional[Any]:
        return self._responses.get(key)

    def set_cached(self, key: str, value: Any, call_type: Optional[str] = None) -> None:
        if call_type is None:
            call_type = key.split(":", 1)[0]
        self._responses.set(key, value, ttl=self.ttl_seconds(call_type))

"""Calendar record parser.

Turns one raw calendar record (a block of ``KEY;PARAM=..:VALUE`` lines as found
in .ics exports and the Evolution cache, or an equivalent key/value row) into an
:class:`Event`. Records missing a title or a start are dropped, never raised.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from at_a_glance.sources.base import Event, EventSource

logger = logging.getLogger(__name__)

# Everything else (VALARM, VTIMEZONE...) is nested and may carry its own DESCRIPTION.
_CONTAINER_COMPONENTS = {"VCALENDAR", "VEVENT"}

_DURATION_RE = re.compile(
    r"^(?P<sign>[+-])?P(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)
_TEXT_ESCAPE_RE = re.compile(r"\\([\\;,nN])")

RawRecord = Union[str, Mapping[str, Any]]


def unfold_lines(raw: str) -> List[str]:
    """Join RFC 5545 continuation lines (leading space or tab) onto their parent."""
    unfolded: List[str] = []
    for line in raw.splitlines():
        if line[:1] in (" ", "\t") and unfolded:
            unfolded[-1] += line[1:]
        else:
            unfolded.append(line.rstrip("\r"))
    return unfolded


def split_records(raw: str) -> List[str]:
    """Split a full calendar file into one text block per top-level VEVENT."""
    records: List[str] = []
    current: Optional[List[str]] = None
    nested = 0
    for line in unfold_lines(raw):
        upper = line.strip().upper()
        if upper == "BEGIN:VEVENT" and current is None:
            current = [line]
            nested = 0
            continue
        if current is None:
            continue
        current.append(line)
        if upper.startswith("BEGIN:"):
            nested += 1
        elif upper == "END:VEVENT" and nested == 0:
            records.append("\n".join(current))
            current = None
        elif upper.startswith("END:"):
            nested = max(0, nested - 1)
    return records


def _split_unquoted(text: str, sep: str, maxsplit: int = -1) -> List[str]:
    parts: List[str] = []
    buf: List[str] = []
    in_quote = False
    for ch in text:
        if ch == '"':
            in_quote = not in_quote
        if ch == sep and not in_quote and (maxsplit < 0 or len(parts) < maxsplit):
            parts.append("".join(buf))
            buf = []
            continue
        buf.append(ch)
    parts.append("".join(buf))
    return parts


def parse_content_line(line: str) -> Optional[Tuple[str, Dict[str, str], str]]:
    """Split ``NAME;P1=a;P2="b:c":value`` into (NAME, params, value).

    Only the key prefix before the first ``;`` is the property name, so
    parameterized keys such as ``DTSTART;TZID=Europe/Berlin`` still match.
    """
    head_value = _split_unquoted(line, ":", maxsplit=1)
    if len(head_value) != 2:
        return None
    head, value = head_value
    pieces = _split_unquoted(head, ";")
    name = pieces[0].strip().upper()
    if not name:
        return None
    params: Dict[str, str] = {}
    for piece in pieces[1:]:
        if "=" in piece:
            key, val = piece.split("=", 1)
            params[key.strip().upper()] = val.strip().strip('"')
    return name, params, value


def unescape_text(value: str) -> str:
    def _sub(match: re.Match) -> str:
        ch = match.group(1)
        return "\n" if ch in ("n", "N") else ch

    return _TEXT_ESCAPE_RE.sub(_sub, value)


def _resolve_zone(tzid: Optional[str]):
    if not tzid:
        return None
    try:
        return ZoneInfo(tzid)
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("Unknown TZID %r, treating as local time", tzid)
        return None


def parse_ical_datetime(value: str, params: Optional[Mapping[str, str]] = None) -> Tuple[datetime, bool]:
    """Parse a DATE or DATE-TIME value into a local, timezone-aware datetime.

    Returns ``(instant, is_date)``. Date-only values resolve to local midnight.
    Raises ``ValueError`` for anything unparseable.
    """
    params = params or {}
    cleaned = value.strip()
    is_date = params.get("VALUE", "").upper() == "DATE" or (len(cleaned) == 8 and cleaned.isdigit())
    if is_date:
        day = datetime.strptime(cleaned[:8], "%Y%m%d")
        return day.astimezone(), True

    is_utc = cleaned.upper().endswith("Z")
    cleaned = cleaned.rstrip("zZ")
    fmt = "%Y%m%dT%H%M%S" if len(cleaned) == 15 else "%Y%m%dT%H%M"
    parsed = datetime.strptime(cleaned, fmt)
    if is_utc:
        return parsed.replace(tzinfo=timezone.utc).astimezone(), False
    zone = _resolve_zone(params.get("TZID"))
    if zone is not None:
        return parsed.replace(tzinfo=zone).astimezone(), False
    return parsed.astimezone(), False


def parse_duration(value: str) -> Optional[timedelta]:
    match = _DURATION_RE.match(value.strip().upper())
    if not match:
        return None
    parts = {k: int(v) for k, v in match.groupdict().items() if v and k != "sign"}
    delta = timedelta(
        weeks=parts.get("weeks", 0),
        days=parts.get("days", 0),
        hours=parts.get("hours", 0),
        minutes=parts.get("minutes", 0),
        seconds=parts.get("seconds", 0),
    )
    return -delta if match.group("sign") == "-" else delta


def _collect_properties(record: RawRecord) -> Dict[str, Tuple[Dict[str, str], str]]:
    """Gather the first occurrence of every top-level property in a record."""
    props: Dict[str, Tuple[Dict[str, str], str]] = {}

    if isinstance(record, Mapping):
        for key, value in record.items():
            if value is None:
                continue
            parsed = parse_content_line(f"{key}:{value}")
            if parsed:
                name, params, val = parsed
                props.setdefault(name, (params, val))
        return props

    nested = 0
    for line in unfold_lines(record):
        stripped = line.strip()
        if not stripped:
            continue
        upper = stripped.upper()
        if upper.startswith("BEGIN:"):
            if upper[6:] not in _CONTAINER_COMPONENTS:
                nested += 1
            continue
        if upper.startswith("END:"):
            if upper[4:] not in _CONTAINER_COMPONENTS:
                nested = max(0, nested - 1)
            continue
        if nested:
            continue
        parsed = parse_content_line(stripped)
        if parsed:
            name, params, val = parsed
            props.setdefault(name, (params, val))
    return props


def _fallback_id(title: str, start: datetime) -> str:
    key = f"{title}:{start.isoformat()}"
    return "ics-" + hashlib.sha256(key.encode()).hexdigest()[:16]


def parse_record(record: RawRecord, source: EventSource = EventSource.FILE) -> Optional[Event]:
    """Normalize one raw record into an Event, or return None if it is unusable."""
    props = _collect_properties(record)

    title = unescape_text(props.get("SUMMARY", ({}, ""))[1]).strip()
    if not title or "DTSTART" not in props:
        return None

    start_params, start_raw = props["DTSTART"]
    try:
        start, is_all_day = parse_ical_datetime(start_raw, start_params)
    except ValueError:
        logger.debug("Dropping record %r: bad DTSTART %r", title, start_raw)
        return None

    end: Optional[datetime] = None
    if "DTEND" in props:
        end_params, end_raw = props["DTEND"]
        try:
            end, _ = parse_ical_datetime(end_raw, end_params)
        except ValueError:
            end = None
    if end is None and "DURATION" in props:
        delta = parse_duration(props["DURATION"][1])
        if delta is not None:
            end = start + delta
    if end is None:
        end = start + timedelta(days=1) if is_all_day else start

    location = unescape_text(props.get("LOCATION", ({}, ""))[1]).strip() or None
    description = unescape_text(props.get("DESCRIPTION", ({}, ""))[1]).strip()
    uid = props.get("UID", ({}, ""))[1].strip() or _fallback_id(title, start)

    return Event(
        id=uid,
        title=title,
        description=description,
        start=start,
        end=end,
        location=location,
        is_all_day=is_all_day,
        source=source,
    )


def parse_records(records, source: EventSource = EventSource.FILE) -> List[Event]:
    """Parse many records, silently skipping the malformed ones."""
    events: List[Event] = []
    dropped = 0
    for record in records:
        event = parse_record(record, source=source)
        if event is None:
            dropped += 1
            continue
        events.append(event)
    if dropped:
        logger.debug("Dropped %d malformed calendar records", dropped)
    return events


def parse_broker_tuple(item: Tuple[Any, ...], source: EventSource = EventSource.BROKER) -> Optional[Event]:
    """Normalize a broker tuple ``(uid, title, start_epoch, end_epoch, props)``."""
    try:
        uid, title, start_epoch, end_epoch, props = item
        start = datetime.fromtimestamp(float(start_epoch)).astimezone()
        end = datetime.fromtimestamp(float(end_epoch)).astimezone() if end_epoch else start
    except (TypeError, ValueError, OverflowError, OSError):
        logger.debug("Dropping malformed broker tuple: %r", item)
        return None

    title = str(title or "").strip()
    if not title:
        return None
    props = props or {}
    is_all_day = bool(props.get("isAllDay") or props.get("is_all_day"))
    if is_all_day:
        day: date = start.date()
        start = datetime(day.year, day.month, day.day).astimezone()
        end_day: date = end.date()
        end = datetime(end_day.year, end_day.month, end_day.day).astimezone()
        if end <= start:
            end = start + timedelta(days=1)
    return Event(
        id=str(uid or _fallback_id(title, start)),
        title=title,
        description=str(props.get("description") or ""),
        start=start,
        end=end,
        location=str(props.get("location") or "") or None,
        is_all_day=is_all_day,
        source=source,
    )

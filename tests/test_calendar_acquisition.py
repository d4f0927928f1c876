from __future__ import annotations

import sqlite3
import threading
from datetime import timedelta

from at_a_glance.sources.base import AcquisitionTier, EventSource
from at_a_glance.sources.broker import BrokerTier
from at_a_glance.sources.calendar import CalendarAcquisition, day_bucket, format_event_time
from at_a_glance.sources.flatfile import FlatFileTier
from at_a_glance.sources.store import StoreTier

from conftest import FakeClock, local, make_event


class FakeTier(AcquisitionTier):
    def __init__(self, name, events=(), source=EventSource.FILE, confidence=0.5, available=True, error=None):
        self.name = name
        self.source = source
        self.confidence = confidence
        self._events = list(events)
        self._available = available
        self._error = error
        self.calls = 0

    def available(self):
        return self._available

    def fetch(self, window, force_refresh=False):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return list(self._events)


def _vevent(uid, summary, start, end):
    return (
        "BEGIN:VEVENT\n"
        f"UID:{uid}\nSUMMARY:{summary}\n"
        f"DTSTART:{start}\nDTEND:{end}\n"
        "END:VEVENT"
    )


def test_first_tier_with_events_wins(now):
    first = FakeTier("broker", [make_event("Standup", now + timedelta(hours=1))])
    second = FakeTier("store", [make_event("Other", now + timedelta(hours=2))])
    events = CalendarAcquisition([first, second]).acquire(now)
    assert [e.title for e in events] == ["Standup"]
    assert second.calls == 0


def test_failing_and_unavailable_tiers_fall_through(now):
    broken = FakeTier("broker", error=RuntimeError("bus gone"))
    missing = FakeTier("store", [make_event("Ghost", now)], available=False)
    good = FakeTier("file", [make_event("Planning", now + timedelta(hours=3))])
    events = CalendarAcquisition([broken, missing, good]).acquire(now)
    assert [e.title for e in events] == ["Planning"]
    assert missing.calls == 0


def test_all_tiers_failing_is_an_empty_result(now):
    tiers = [FakeTier("broker", error=TimeoutError()), FakeTier("store"), FakeTier("file", available=False)]
    assert CalendarAcquisition(tiers).acquire(now) == []


def test_tier_yielding_only_excluded_events_falls_through(now):
    holidays = FakeTier("broker", [make_event("Public Holiday", now, is_all_day=True)])
    real = FakeTier("file", [make_event("Review", now + timedelta(hours=1))])
    events = CalendarAcquisition([holidays, real]).acquire(now)
    assert [e.title for e in events] == ["Review"]


def test_excluded_events_never_appear_when_merging(now):
    a = FakeTier("broker", [make_event("Birthday lunch", now + timedelta(hours=3))])
    b = FakeTier("file", [make_event("Anniversary", now + timedelta(hours=4)), make_event("Sync", now + timedelta(hours=1))])
    events = CalendarAcquisition([a, b], merge_all_tiers=True).acquire(now)
    assert [e.title for e in events] == ["Sync"]


def test_merge_keeps_higher_confidence_copy_in_either_order(now):
    start = now + timedelta(hours=2)
    low = FakeTier("file", [make_event("Standup", start, description="from file")], EventSource.FILE, 0.6)
    high = FakeTier("broker", [make_event("Standup", start, description="from broker")], EventSource.BROKER, 0.9)

    for tiers in ([low, high], [high, low]):
        events = CalendarAcquisition(tiers, merge_all_tiers=True).acquire(now)
        assert len(events) == 1
        assert events[0].confidence == 0.9
        assert events[0].source is EventSource.BROKER
        assert events[0].description == "from broker"


def test_duplicates_within_one_tier_are_collapsed(now):
    start = now + timedelta(hours=1)
    tier = FakeTier("file", [make_event("Sync", start, uid="a"), make_event("sync ", start, uid="b")])
    assert len(CalendarAcquisition([tier]).acquire(now)) == 1


def test_output_is_bucketed_by_day_then_sorted_by_start(now):
    today_late = make_event("Today late", now.replace(hour=15))
    tomorrow = make_event("Tomorrow", now.replace(hour=8) + timedelta(days=1))
    today_early = make_event("Today early", now.replace(hour=10))
    running = make_event("Running", now.replace(hour=8), minutes=120)
    later = make_event("Later", now + timedelta(days=3))
    tier = FakeTier("file", [later, today_late, tomorrow, today_early, running])

    events = CalendarAcquisition([tier]).acquire(now)
    assert [e.title for e in events] == ["Running", "Today early", "Today late", "Tomorrow", "Later"]
    buckets = [day_bucket(e, now) for e in events]
    assert buckets == sorted(buckets)


def test_ended_and_out_of_window_events_are_dropped(now):
    ended = make_event("Ended", now - timedelta(hours=2), minutes=30)
    far = make_event("Far", now + timedelta(days=10))
    kept = make_event("Kept", now + timedelta(hours=1))
    events = CalendarAcquisition([FakeTier("file", [ended, far, kept])]).acquire(now)
    assert [e.title for e in events] == ["Kept"]


def test_result_is_truncated(now):
    many = [make_event(f"Event {i}", now + timedelta(minutes=10 * i)) for i in range(1, 20)]
    events = CalendarAcquisition([FakeTier("file", many)], max_events=5).acquire(now)
    assert len(events) == 5
    assert events[0].title == "Event 1"


def test_recurring_instances_get_unique_ids(now):
    a = make_event("Daily", now + timedelta(hours=1), uid="series")
    b = make_event("Daily", now + timedelta(days=1, hours=1), uid="series")
    events = CalendarAcquisition([FakeTier("file", [a, b])]).acquire(now)
    assert len({e.id for e in events}) == 2


def test_results_are_cached_until_ttl_or_refresh(now):
    clock = FakeClock()
    tier = FakeTier("file", [make_event("Sync", now + timedelta(hours=1))])
    acquisition = CalendarAcquisition([tier], cache_seconds=300, clock=clock)

    acquisition.acquire(now)
    acquisition.acquire(now)
    assert tier.calls == 1

    acquisition.acquire(now, force_refresh=True)
    assert tier.calls == 2

    clock.advance(301)
    acquisition.acquire(now)
    assert tier.calls == 3


def test_store_tier_reads_sqlite_blobs(tmp_path, now):
    db_path = tmp_path / "work" / "cache.db"
    db_path.parent.mkdir()
    conn = sqlite3.connect(db_path)
    conn.execute("CREATE TABLE ECacheObjects (ECacheOBJ TEXT)")
    conn.execute(
        "INSERT INTO ECacheObjects VALUES (?)",
        (_vevent("s1", "Client call", "20261019T110000", "20261019T113000"),),
    )
    conn.execute("INSERT INTO ECacheObjects VALUES (?)", ("garbage without fields",))
    conn.commit()
    conn.close()

    tier = StoreTier([str(tmp_path / "*" / "cache.db")])
    events = CalendarAcquisition([tier]).acquire(now)
    assert [e.title for e in events] == ["Client call"]
    assert events[0].source is EventSource.STORE
    assert events[0].confidence == 0.8
    assert events[0].categories == frozenset({"work"})


def test_corrupt_store_falls_back_to_flat_file(tmp_path, now):
    bad_db = tmp_path / "cache.db"
    bad_db.write_bytes(b"this is not a database")
    ics = tmp_path / "calendar.ics"
    ics.write_text(
        "BEGIN:VCALENDAR\n"
        + _vevent("f1", "Dentist", "20261019T160000", "20261019T170000")
        + "\nEND:VCALENDAR\n"
    )

    tiers = [StoreTier([str(bad_db)]), FlatFileTier([str(ics)])]
    events = CalendarAcquisition(tiers).acquire(now)
    assert [e.title for e in events] == ["Dentist"]
    assert events[0].source is EventSource.FILE
    assert events[0].categories == frozenset({"personal"})


def test_missing_flat_file_is_unavailable(tmp_path):
    assert not FlatFileTier([str(tmp_path / "nope.ics")]).available()


class ThreadedBroker:
    def __init__(self, items, delay=0.0):
        self.items = items
        self.delay = delay
        self.requests = []

    def available(self):
        return True

    def request(self, since, until, force_refresh, deliver):
        self.requests.append((since, until, force_refresh))
        timer = threading.Timer(self.delay, deliver, args=(self.items,))
        timer.daemon = True
        timer.start()


class SilentBroker:
    def available(self):
        return True

    def request(self, since, until, force_refresh, deliver):
        pass


def test_broker_tier_collects_pushed_tuples(now):
    start = now + timedelta(minutes=30)
    broker = ThreadedBroker([
        ("b1", "Standup", start.timestamp(), (start + timedelta(minutes=15)).timestamp(),
         {"location": "https://zoom.us/j/123", "description": "daily"}),
    ])
    events = CalendarAcquisition([BrokerTier(broker, timeout=2.0)]).acquire(now, force_refresh=True)
    assert [e.title for e in events] == ["Standup"]
    assert events[0].source is EventSource.BROKER
    assert events[0].location == "https://zoom.us/j/123"
    assert broker.requests[0][2] is True


def test_silent_broker_times_out_and_falls_through(now):
    fallback = FakeTier("file", [make_event("From file", now + timedelta(hours=1))])
    tiers = [BrokerTier(SilentBroker(), timeout=0.05), fallback]
    events = CalendarAcquisition(tiers).acquire(now)
    assert [e.title for e in events] == ["From file"]


def test_missing_broker_is_unavailable():
    assert not BrokerTier(None).available()


def test_format_event_time(now):
    assert format_event_time(make_event("a", now, is_all_day=True), now) == "All day"
    assert format_event_time(make_event("b", now - timedelta(minutes=5)), now) == "Now"
    assert format_event_time(make_event("c", now + timedelta(minutes=12)), now) == "in 12m"
    assert format_event_time(make_event("d", now + timedelta(minutes=75)), now) == "in 1h"
    assert format_event_time(make_event("e", local(2026, 10, 19, 14, 5)), now) == "2:05 PM"

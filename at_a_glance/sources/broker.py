"""Live calendar-broker tier that asks a running calendar service for events.

The broker answers push-style: we hand it a time range and a callback, and it
delivers ``(uid, title, start_epoch, end_epoch, props)`` tuples whenever it is
ready. The tier turns that into a future with an explicit deadline so a broker
that never answers costs at most ``timeout`` seconds.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional, Protocol, Tuple

from at_a_glance.sources.base import AcquisitionTier, Event, EventSource, TimeWindow
from at_a_glance.sources.ical import parse_broker_tuple, parse_record

logger = logging.getLogger(__name__)

BrokerTuple = Tuple[Any, str, float, float, dict]
Deliver = Callable[[Iterable[BrokerTuple]], None]


class CalendarBroker(Protocol):
    """Contract for a push-style calendar service."""

    def available(self) -> bool: ...

    def request(self, since: datetime, until: datetime, force_refresh: bool, deliver: Deliver) -> None: ...


class BrokerTier(AcquisitionTier):
    """Acquisition tier backed by a :class:`CalendarBroker`."""

    name = "broker"
    source = EventSource.BROKER

    def __init__(self, broker: Optional[CalendarBroker], timeout: float = 5.0, confidence: float = 0.9):
        self._broker = broker
        self._timeout = timeout
        self.confidence = confidence
        self._available: Optional[bool] = None

    def available(self) -> bool:
        if self._available is None:
            self._available = bool(self._broker is not None and self._broker.available())
        return self._available

    def fetch(self, window: TimeWindow, force_refresh: bool = False) -> List[Event]:
        future: Future = Future()

        def deliver(items: Iterable[BrokerTuple]) -> None:
            if not future.done():
                future.set_result(list(items))

        self._broker.request(window.since, window.until, force_refresh, deliver)
        try:
            items = future.result(timeout=self._timeout)
        except FutureTimeout:
            future.cancel()
            logger.warning("Calendar broker did not answer within %.1fs", self._timeout)
            return []

        events = [e for e in (parse_broker_tuple(item) for item in items) if e is not None]
        logger.info("Calendar broker: %d tuples, %d events", len(items), len(events))
        return events


def _ical_time(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


class EdsBroker:
    """Evolution Data Server broker, reached through GObject introspection.

    Availability is probed once; machines without PyGObject or the ECal
    typelibs simply report the broker as unavailable.
    """

    def __init__(self, connect_timeout: int = 10):
        self._connect_timeout = connect_timeout
        self._modules = None

    def available(self) -> bool:
        if self._modules is not None:
            return True
        try:
            import gi

            gi.require_version("ECal", "2.0")
            gi.require_version("EDataServer", "1.2")
            from gi.repository import ECal, EDataServer
        except (ImportError, ValueError) as exc:
            logger.debug("Evolution Data Server not available: %s", exc)
            return False
        self._modules = (ECal, EDataServer)
        return True

    def request(self, since: datetime, until: datetime, force_refresh: bool, deliver: Deliver) -> None:
        thread = threading.Thread(
            target=self._run, args=(since, until, deliver), name="eds-broker", daemon=True
        )
        thread.start()

    def _run(self, since: datetime, until: datetime, deliver: Deliver) -> None:
        try:
            deliver(self._query(since, until))
        except Exception as exc:
            logger.warning("Evolution Data Server query failed: %s", exc)
            deliver([])

    def _query(self, since: datetime, until: datetime) -> List[BrokerTuple]:
        ECal, EDataServer = self._modules
        registry = EDataServer.SourceRegistry.new_sync(None)
        sexp = (
            f'(occur-in-time-range? (make-time "{_ical_time(since)}") '
            f'(make-time "{_ical_time(until)}"))'
        )
        tuples: List[BrokerTuple] = []
        for source in registry.list_sources(EDataServer.SOURCE_EXTENSION_CALENDAR):
            if not source.get_enabled():
                continue
            try:
                client = ECal.Client.connect_sync(
                    source, ECal.ClientSourceType.EVENTS, self._connect_timeout, None
                )
                ok, comps = client.get_object_list_as_comps_sync(sexp, None)
            except Exception as exc:
                logger.info("Skipping calendar %s: %s", source.get_display_name(), exc)
                continue
            for comp in (comps or []) if ok else []:
                event = parse_record(comp.get_as_string(), source=EventSource.BROKER)
                if event is None:
                    continue
                tuples.append((
                    event.id,
                    event.title,
                    event.start.timestamp(),
                    event.end.timestamp(),
                    {
                        "description": event.description,
                        "location": event.location,
                        "isAllDay": event.is_all_day,
                    },
                ))
        return tuples

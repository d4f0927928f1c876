from at_a_glance.sources.base import AcquisitionTier, Event, EventSource, TimeWindow
from at_a_glance.sources.filters import EventFilter
from at_a_glance.sources.calendar import CalendarAcquisition, format_event_time
from at_a_glance.sources.broker import BrokerTier, EdsBroker
from at_a_glance.sources.store import StoreTier
from at_a_glance.sources.flatfile import FlatFileTier

__all__ = [
    "AcquisitionTier",
    "Event",
    "EventSource",
    "TimeWindow",
    "EventFilter",
    "CalendarAcquisition",
    "format_event_time",
    "BrokerTier",
    "EdsBroker",
    "StoreTier",
    "FlatFileTier",
]

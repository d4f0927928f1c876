"""Enrichment, advisory gating and arbitration over acquired signals."""

from at_a_glance.pipeline.cache import CacheEntry, TTLCache
from at_a_glance.pipeline.meeting import MeetingContextExtractor
from at_a_glance.pipeline.quota import AdvisoryCache

__all__ = [
    "CacheEntry",
    "TTLCache",
    "MeetingContextExtractor",
    "AdvisoryCache",
]

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from at_a_glance.pipeline.cache import CacheEntry, TTLCache


def test_entry_freshness_boundary():
    entry = CacheEntry(key="k", payload=1, created_at=100.0, ttl=10.0)
    assert entry.is_fresh(109.999)
    assert not entry.is_fresh(110.0)


def test_expired_entry_is_evicted_on_lookup(clock):
    cache = TTLCache(ttl=60, clock=clock)
    cache.set("a", "payload")
    clock.advance(59)
    assert cache.get("a") == "payload"
    clock.advance(1)
    assert "a" in cache
    assert cache.get("a") is None
    assert "a" not in cache
    assert len(cache) == 0


def test_per_entry_ttl_override(clock):
    cache = TTLCache(ttl=600, clock=clock)
    cache.set("short", 1, ttl=5)
    cache.set("long", 2)
    clock.advance(5)
    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_falsy_payloads_are_cached(clock):
    cache = TTLCache(ttl=60, clock=clock)
    cache.set("empty", [])
    assert cache.get("empty") == []
    cache.clear()
    assert cache.get("empty") is None


def test_set_sweeps_expired_keys_that_are_never_read_again(clock):
    cache = TTLCache(ttl=300, clock=clock)
    # one time-bucketed key per five-minute cycle for a week
    for bucket in range(7 * 24 * 12):
        cache.set(f"prioritization:{bucket}:fp", "line")
        clock.advance(300)
    assert len(cache) == 1


def test_sweep_respects_per_entry_ttl(clock):
    cache = TTLCache(ttl=3600, clock=clock)
    cache.set("insight", "long-lived")
    cache.set("prioritization", "short", ttl=300)
    clock.advance(300)
    cache.set("other", "x", ttl=300)
    assert "prioritization" not in cache
    assert cache.get("insight") == "long-lived"


def test_concurrent_lookups_of_expired_key(clock):
    cache = TTLCache(ttl=10, clock=clock)
    for _ in range(50):
        cache.set("calendar", ["event"])
        clock.advance(10)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: cache.get("calendar"), range(8)))
        assert results == [None] * 8
    assert len(cache) == 0

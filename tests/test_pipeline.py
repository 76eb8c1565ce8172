#!/usr/bin/env python3
"""
Fetcher and pipeline tests for TLEscope. No network: HTTP goes through
a scripted fake session.
"""
import json

import pytest
import requests

from tlescope.store import MemoryStore
from tlescope.tle_sources import TLESource, celestrak_url
from tlescope.registry import LEGACY_CACHE_PREFIX, SourceRegistry
from tlescope.load_state import LoadState, LoadStatus
from tlescope.aggregate import AggregateResult
from tlescope.celestrak import (
    CACHE_KEY_PREFIX,
    CACHE_MAX_AGE,
    RATELIMIT_COOLDOWN,
    RATELIMIT_KEY,
    CelestrakClient,
    FetchError,
    RateLimitedError,
)
from tlescope.pipeline import SourcePipeline


ISS_LINE1 = "1 25544U 98067A   24001.50000000  .00016717  00000-0  10270-3 0  9003"
ISS_LINE2 = "2 25544  51.6400 208.5000 0007417  68.0000 292.1000 15.49560000400000"


def _catalog_text(*norad_ids: int) -> str:
    blocks = []
    for n in norad_ids:
        line1 = ISS_LINE1[:2] + f"{n:05d}" + ISS_LINE1[7:]
        line2 = ISS_LINE2[:2] + f"{n:05d}" + ISS_LINE2[7:]
        blocks.append(f"SAT-{n}\n{line1}\n{line2}\n")
    return "".join(blocks)


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = ""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    """Returns scripted responses per URL; exceptions are raised."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.requests = []

    def get(self, url, timeout=None):
        self.requests.append(url)
        result = self.responses.get(url, FakeResponse(404))
        if isinstance(result, Exception):
            raise result
        return result


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class CacheFaultStore(MemoryStore):
    """Store that fails on every cache and rate-limit key."""

    def get(self, key):
        if key.startswith("tlescope_tle_") or key == RATELIMIT_KEY:
            raise OSError("cache partition unavailable")
        return super().get(key)

    def set(self, key, value):
        if key.startswith("tlescope_tle_") or key == RATELIMIT_KEY:
            raise OSError("cache partition unavailable")
        return super().set(key, value)

    def remove(self, key):
        if key.startswith("tlescope_tle_") or key == RATELIMIT_KEY:
            raise OSError("cache partition unavailable")
        super().remove(key)


def _make_client(store=None, responses=None, clock=None):
    store = store if store is not None else MemoryStore()
    session = FakeSession(responses)
    return CelestrakClient(store, session=session, clock=clock or FakeClock()), session


# ═══════════════════════════════════════════════════════════════
# FETCHER TESTS
# ═══════════════════════════════════════════════════════════════
class TestCelestrakClient:
    def test_network_fetch_caches(self):
        url = celestrak_url("visual")
        store = MemoryStore()
        client, session = _make_client(store, {url: FakeResponse(200, _catalog_text(1, 2))})

        result = client.fetch_group("visual")
        assert result.origin == "network"
        assert result.cache_age is None
        assert session.requests == [url]

        entry = json.loads(store.get(CACHE_KEY_PREFIX + "visual"))
        assert entry["count"] == 2
        assert client.cached_sat_count("visual") == 2

    def test_fresh_cache_served(self):
        url = celestrak_url("visual")
        clock = FakeClock()
        client, session = _make_client(
            responses={url: FakeResponse(200, _catalog_text(1))}, clock=clock
        )
        client.fetch_group("visual")
        clock.now += 600

        result = client.fetch_group("visual")
        assert result.origin == "cache"
        assert result.cache_age == 600
        assert len(session.requests) == 1

    def test_force_bypasses_cache(self):
        url = celestrak_url("visual")
        client, session = _make_client(responses={url: FakeResponse(200, _catalog_text(1))})
        client.fetch_group("visual")
        assert client.fetch_group("visual", force=True).origin == "network"
        assert len(session.requests) == 2

    def test_expired_cache_refetched(self):
        url = celestrak_url("visual")
        clock = FakeClock()
        client, session = _make_client(
            responses={url: FakeResponse(200, _catalog_text(1))}, clock=clock
        )
        client.fetch_group("visual")
        clock.now += CACHE_MAX_AGE + 1
        assert client.fetch_group("visual").origin == "network"

    def test_403_sets_rate_limit(self):
        url = celestrak_url("visual")
        store = MemoryStore()
        client, _ = _make_client(store, {url: FakeResponse(403)})

        with pytest.raises(RateLimitedError):
            client.fetch_group("visual")
        assert store.get(RATELIMIT_KEY) is not None
        assert client.is_rate_limited()

    def test_rate_limited_serves_stale_cache(self):
        url = celestrak_url("visual")
        clock = FakeClock()
        store = MemoryStore()
        client, session = _make_client(
            store, {url: FakeResponse(200, _catalog_text(1, 2, 3))}, clock=clock
        )
        client.fetch_group("visual")
        clock.now += CACHE_MAX_AGE + 10
        store.set(RATELIMIT_KEY, str(clock.now))

        result = client.fetch_group("visual")
        assert result.origin == "stale-cache"
        assert result.rate_limited
        assert result.cache_age == CACHE_MAX_AGE + 10
        assert len(session.requests) == 1

    def test_rate_limit_cooldown_expires(self):
        clock = FakeClock()
        store = MemoryStore()
        client, _ = _make_client(store, clock=clock)
        store.set(RATELIMIT_KEY, str(clock.now))
        assert client.is_rate_limited()
        clock.now += RATELIMIT_COOLDOWN + 1
        assert not client.is_rate_limited()

    def test_success_clears_rate_limit(self):
        url = celestrak_url("visual")
        store = MemoryStore()
        client, _ = _make_client(store, {url: FakeResponse(200, _catalog_text(1))})
        store.set(RATELIMIT_KEY, "0")
        client.fetch_group("visual", force=True)
        assert store.get(RATELIMIT_KEY) is None

    def test_http_error_without_cache(self):
        url = celestrak_url("visual")
        client, _ = _make_client(responses={url: FakeResponse(500)})
        with pytest.raises(FetchError, match="HTTP 500"):
            client.fetch_group("visual")

    def test_connection_error_falls_back_to_stale(self):
        url = celestrak_url("visual")
        clock = FakeClock()
        client, session = _make_client(
            responses={url: FakeResponse(200, _catalog_text(1))}, clock=clock
        )
        client.fetch_group("visual")
        clock.now += CACHE_MAX_AGE + 1
        session.responses[url] = requests.ConnectionError("offline")

        result = client.fetch_group("visual")
        assert result.origin == "stale-cache"
        assert not result.rate_limited

    def test_connection_error_without_cache(self):
        url = celestrak_url("visual")
        client, _ = _make_client(responses={url: requests.Timeout("slow")})
        with pytest.raises(FetchError, match="Request failed"):
            client.fetch_group("visual")

    def test_url_source_cache_key(self):
        store = MemoryStore()
        client, _ = _make_client(
            store, {"https://x/a.tle": FakeResponse(200, _catalog_text(1))}
        )
        client.fetch_url("custom:abc", "https://x/a.tle")
        assert store.get(LEGACY_CACHE_PREFIX + "custom:abc") is not None

    def test_url_fetch_ignores_cooldown(self):
        store = MemoryStore()
        client, session = _make_client(
            store, {"https://x/a.tle": FakeResponse(200, _catalog_text(1))}
        )
        store.set(RATELIMIT_KEY, str(client.clock()))

        assert client.fetch_url("custom:abc", "https://x/a.tle").origin == "network"
        assert store.get(RATELIMIT_KEY) is not None

    def test_url_403_is_plain_error(self):
        store = MemoryStore()
        client, _ = _make_client(store, {"https://x/a.tle": FakeResponse(403)})

        with pytest.raises(FetchError, match="HTTP 403") as excinfo:
            client.fetch_url("custom:abc", "https://x/a.tle")
        assert not isinstance(excinfo.value, RateLimitedError)
        assert store.get(RATELIMIT_KEY) is None

    def test_store_fault_is_cold_cache(self):
        url = celestrak_url("visual")
        client, _ = _make_client(CacheFaultStore(), {url: FakeResponse(200, _catalog_text(1))})
        assert not client.is_rate_limited()
        assert client.cache_age("visual") is None
        assert client.fetch_group("visual").origin == "network"

    def test_cached_sat_count_scans_old_entries(self):
        store = MemoryStore()
        store.set(CACHE_KEY_PREFIX + "old", json.dumps({"ts": 0, "data": _catalog_text(1, 2)}))
        client, _ = _make_client(store)
        assert client.cached_sat_count("old") == 2
        assert client.cached_sat_count("missing") is None


# ═══════════════════════════════════════════════════════════════
# PIPELINE TESTS
# ═══════════════════════════════════════════════════════════════
def _make_pipeline(responses=None, builtins=()):
    store = MemoryStore()
    registry = SourceRegistry(store, builtins=builtins)
    registry.initialize()
    client, session = _make_client(store, responses)
    pipeline = SourcePipeline(registry, client)
    return registry, pipeline, session


class TestSourcePipeline:
    def test_overlapping_text_sources(self):
        registry, pipeline, _ = _make_pipeline()
        a = registry.add_text_source("A", _catalog_text(1, 2, 3))
        b = registry.add_text_source("B", _catalog_text(2, 3, 4))

        merged = pipeline.reconcile()
        assert merged.result == AggregateResult(total_sats=4, dups_removed=2)
        assert registry.load_state(a) == LoadState.loaded(3)
        assert registry.load_state(b) == LoadState.loaded(3)

    def test_attach_reconciles_on_change(self):
        registry, pipeline, _ = _make_pipeline()
        seen = []
        pipeline.on_merged = lambda merged: seen.append(merged.result.total_sats)
        pipeline.attach()

        a = registry.add_text_source("A", _catalog_text(1, 2))
        registry.add_text_source("B", _catalog_text(2, 3))
        registry.toggle(a)
        assert seen == [2, 3, 2]

    def test_rename_does_not_reconcile(self):
        registry, pipeline, _ = _make_pipeline()
        a = registry.add_text_source("A", _catalog_text(1))
        seen = []
        pipeline.on_merged = lambda merged: seen.append(merged)
        pipeline.attach()
        registry.rename_custom_source(a, "Renamed")
        assert seen == []

    def test_catalog_source_with_cache_age(self):
        url = celestrak_url("stations")
        registry, pipeline, _ = _make_pipeline(
            {url: FakeResponse(200, _catalog_text(25544, 2))},
            builtins=[TLESource("Space Stations", "stations")],
        )
        registry.toggle("celestrak:stations")

        pipeline.reconcile()
        pipeline.client.clock.now += 120
        pipeline.reconcile()
        state = registry.load_state("celestrak:stations")
        assert state.status is LoadStatus.LOADED
        assert state.sat_count == 2
        assert state.cache_age == 120

    def test_failed_url_source_reports_error(self):
        registry, pipeline, _ = _make_pipeline({"https://x/a.tle": FakeResponse(500)})
        a = registry.add_url_source("Feed", "https://x/a.tle")
        b = registry.add_text_source("Paste", _catalog_text(1))

        merged = pipeline.reconcile()
        state = registry.load_state(a)
        assert state.status is LoadStatus.ERROR
        assert state.error == "HTTP 500"
        assert state.sat_count is None
        assert registry.load_state(b).status is LoadStatus.LOADED
        assert merged.result == AggregateResult(total_sats=1, dups_removed=0)

    def test_error_keeps_previous_count(self):
        url = "https://x/a.tle"
        registry, pipeline, session = _make_pipeline({url: FakeResponse(200, _catalog_text(1, 2))})
        a = registry.add_url_source("Feed", url)
        pipeline.reconcile()

        registry.store.remove(LEGACY_CACHE_PREFIX + a)
        session.responses[url] = FakeResponse(502)
        pipeline.reconcile()

        state = registry.load_state(a)
        assert state.status is LoadStatus.ERROR
        assert state.sat_count == 2

    def test_text_source_lost_to_quota(self):
        store = MemoryStore(capacity=300)
        registry = SourceRegistry(store, builtins=())
        registry.initialize()
        client, _ = _make_client(store)
        pipeline = SourcePipeline(registry, client)

        a = registry.add_text_source("Huge", _catalog_text(*range(1, 20)))
        pipeline.reconcile()
        state = registry.load_state(a)
        assert state.status is LoadStatus.ERROR
        assert state.error == "No TLE data stored"

    def test_removed_source_drops_out(self):
        registry, pipeline, _ = _make_pipeline()
        pipeline.attach()
        a = registry.add_text_source("A", _catalog_text(1, 2))
        registry.add_text_source("B", _catalog_text(3))
        registry.remove_custom_source(a)

        assert pipeline.merged.result == AggregateResult(total_sats=1, dups_removed=0)
        assert a not in registry.load_states

    def test_url_403_does_not_block_celestrak(self):
        stations = celestrak_url("stations")
        registry, pipeline, session = _make_pipeline(
            {
                "https://private.example/a.tle": FakeResponse(403),
                stations: FakeResponse(200, _catalog_text(25544)),
            },
            builtins=[TLESource("Space Stations", "stations")],
        )
        a = registry.add_url_source("Private", "https://private.example/a.tle")
        registry.toggle("celestrak:stations")

        pipeline.reconcile()
        assert registry.load_state(a) == LoadState.failed("HTTP 403")
        assert registry.load_state("celestrak:stations").status is LoadStatus.LOADED
        assert session.requests == [stations, "https://private.example/a.tle"]
        assert not pipeline.client.is_rate_limited()

    def test_cache_store_fault_still_loads(self):
        url = "https://x/a.tle"
        store = CacheFaultStore()
        registry = SourceRegistry(store, builtins=())
        registry.initialize()
        client, _ = _make_client(store, {url: FakeResponse(200, _catalog_text(1, 2))})
        pipeline = SourcePipeline(registry, client)
        pipeline.attach()

        a = registry.add_url_source("Feed", url)
        assert registry.load_state(a) == LoadState.loaded(2)
        assert pipeline.merged.result == AggregateResult(total_sats=2, dups_removed=0)

    def test_unexpected_error_reported(self):
        registry, pipeline, _ = _make_pipeline({"https://x/a.tle": ValueError("bad header")})
        a = registry.add_url_source("Feed", "https://x/a.tle")
        b = registry.add_text_source("Paste", _catalog_text(1))

        merged = pipeline.reconcile()
        state = registry.load_state(a)
        assert state.status is LoadStatus.ERROR
        assert "bad header" in state.error
        assert registry.load_state(b).status is LoadStatus.LOADED
        assert merged.result.total_sats == 1

    def test_cached_count(self):
        url = "https://x/a.tle"
        registry, pipeline, _ = _make_pipeline(
            {url: FakeResponse(200, _catalog_text(1, 2, 3))},
            builtins=[TLESource("Space Stations", "stations")],
        )
        a = registry.add_url_source("Feed", url)
        b = registry.add_text_source("Paste", _catalog_text(7))

        assert pipeline.cached_count(registry.get(a)) is None
        assert pipeline.cached_count(registry.get("celestrak:stations")) is None
        assert pipeline.cached_count(registry.get(b)) == 1
        pipeline.reconcile()
        assert pipeline.cached_count(registry.get(a)) == 3

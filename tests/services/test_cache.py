from __future__ import annotations

import json
import time
from datetime import datetime, timedelta, timezone

import pytest

from app.services.investors import cache as cache_module
from app.services.investors.cache import (
    INVESTORS_KEY,
    LAST_SCRAPE_KEY,
    SCRAPE_LOCK_KEY,
    InMemoryCacheBackend,
    SharedCache,
    query_key,
)
from tests.helpers.investors import FailingCacheBackend, make_investor
from tests.helpers.metrics_stub import StubMetrics


@pytest.mark.asyncio
async def test_legacy_bare_list_query_entry_is_accepted():
    backend = InMemoryCacheBackend()
    cache = SharedCache(backend)
    legacy = [make_investor("Lee").to_payload(), make_investor("Mo").to_payload()]
    await backend.set("search:demo", json.dumps(legacy))

    entry = await cache.get_query("demo")

    assert entry is not None
    assert [investor.name for investor in entry.investors] == ["Lee", "Mo"]
    assert entry.raw_response is None


@pytest.mark.asyncio
async def test_query_entry_round_trips_with_raw_response():
    cache = SharedCache(InMemoryCacheBackend())

    await cache.set_query("  Demo ", [make_investor("Lee")], raw_response='{"investors": []}')
    entry = await cache.get_query("demo")

    assert [investor.name for investor in entry.investors] == ["Lee"]
    assert entry.raw_response == '{"investors": []}'
    assert query_key("  Demo ") == "search:demo"


@pytest.mark.asyncio
async def test_query_entry_skips_invalid_records():
    backend = InMemoryCacheBackend()
    cache = SharedCache(backend)
    payload = {"investors": [make_investor("Lee").to_payload(), {"name": "no id"}]}
    await backend.set(query_key("demo"), json.dumps(payload))

    entry = await cache.get_query("demo")

    assert [investor.name for investor in entry.investors] == ["Lee"]


@pytest.mark.asyncio
async def test_undecodable_value_is_a_miss():
    backend = InMemoryCacheBackend()
    await backend.set(INVESTORS_KEY, "{not json")

    assert await SharedCache(backend).get_cached_all() is None


@pytest.mark.asyncio
async def test_failing_backend_is_swallowed(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(cache_module, "metrics", stub)
    cache = SharedCache(FailingCacheBackend())

    assert await cache.get_cached_all() is None
    assert await cache.get_query("demo") is None
    assert await cache.is_locked() is False
    assert await cache.get_last_run_time() is None
    assert await cache.ping() is False
    await cache.set_cached_all([make_investor("Lee")])
    await cache.set_query("demo", [make_investor("Lee")])
    await cache.set_locked(True)
    await cache.invalidate_all()

    assert stub.counted("cache.read_failed") >= 4
    assert stub.counted("cache.write_failed") >= 4


@pytest.mark.asyncio
async def test_missing_backend_disables_cache():
    cache = SharedCache(None)

    await cache.set_cached_all([make_investor("Lee")])

    assert cache.enabled is False
    assert await cache.get_cached_all() is None


@pytest.mark.asyncio
async def test_lock_records_last_run_and_releases():
    backend = InMemoryCacheBackend()
    cache = SharedCache(backend, lock_ttl_seconds=300)
    before = datetime.now(timezone.utc) - timedelta(seconds=1)

    await cache.set_locked(True)

    assert await cache.is_locked() is True
    assert await backend.get(SCRAPE_LOCK_KEY) == "1"
    assert await cache.get_last_run_time() >= before

    await cache.clear_lock()

    assert await cache.is_locked() is False
    assert await backend.get(LAST_SCRAPE_KEY) is not None


@pytest.mark.asyncio
async def test_invalidate_all_removes_per_id_keys():
    backend = InMemoryCacheBackend()
    cache = SharedCache(backend)
    await cache.set_cached_all([make_investor("Lee")])
    await backend.set("investor:abc", "{}")
    await backend.set("search:demo", "[]")

    await cache.invalidate_all()

    assert await backend.get(INVESTORS_KEY) is None
    assert await backend.get("investor:abc") is None
    assert await backend.get("search:demo") == "[]"


@pytest.mark.asyncio
async def test_in_memory_backend_expires_entries():
    backend = InMemoryCacheBackend()

    await backend.set("k", "v", ttl_seconds=10)
    assert await backend.get("k") == "v"

    value, _ = backend._values["k"]
    backend._values["k"] = (value, time.monotonic() - 1)
    assert await backend.get("k") is None
    assert await backend.keys("*") == []


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the adapter."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expiries: dict[str, int] = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self.values[key] = value
        if ex:
            self.expiries[key] = ex

    async def delete(self, *keys):
        for key in keys:
            self.values.pop(key, None)

    async def scan_iter(self, match=None):
        for key in list(self.values):
            if match is None or key.startswith(match.rstrip("*")):
                yield key.encode("utf-8")

    async def ping(self):
        return True


@pytest.mark.asyncio
async def test_redis_backend_applies_ttls_and_scans_keys():
    client = FakeRedis()
    cache = cache_module.build_shared_cache(client)

    await cache.set_query("demo", [make_investor("Lee")])
    await cache.set_locked(True)
    await client.set("investor:1", "{}")
    await cache.set_cached_all([make_investor("Lee")])
    await cache.invalidate_all()

    assert client.expiries[query_key("demo")] == cache_module.settings.query_cache_ttl_seconds
    assert client.expiries[SCRAPE_LOCK_KEY] == cache_module.settings.job_lock_ttl_seconds
    assert "investor:1" not in client.values
    assert INVESTORS_KEY not in client.values
    assert await cache.ping() is True

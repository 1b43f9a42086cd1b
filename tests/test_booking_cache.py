from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from booking_bridge.accounts import AccountRegistry
from booking_bridge.auth.session import SessionTokenManager
from booking_bridge.cache.booking_cache import BookingCache, CacheState
from booking_bridge.cache.search_index import SearchIndex
from booking_bridge.errors import AuthenticationError
from booking_bridge.services.platform_client import AUTH_PATH, PlatformClient
from booking_bridge.services.record_fetcher import LIST_PATH, DateWindow, FetchOptions, RecordFetcher

_OPTIONS = FetchOptions(date_windows=[DateWindow.calendar_year(2024)])


def _registry(*account_ids: str) -> AccountRegistry:
    return AccountRegistry.from_entries(
        [{"id": account_id, "login_id": "u", "secret": "s", "site_id": f"site-{account_id}"} for account_id in account_ids]
    )


class _StubSource:
    def __init__(self, data: dict[str, Any], *, delays: dict[str, float] | None = None) -> None:
        self.data = data
        self.delays = delays or {}
        self.calls: list[str] = []
        self.cancelled: list[str] = []
        self.gate: asyncio.Event | None = None

    async def fetch_all(self, account_id: str, options: FetchOptions) -> list[dict[str, Any]]:
        self.calls.append(account_id)
        try:
            if self.gate is not None:
                await self.gate.wait()
            delay = self.delays.get(account_id)
            if delay:
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self.cancelled.append(account_id)
            raise
        value = self.data[account_id]
        if isinstance(value, Exception):
            raise value
        return [dict(record) for record in value]


def _cache(source: _StubSource, *account_ids: str, **kwargs: Any) -> BookingCache:
    kwargs.setdefault("sync_timeout", 1.0)
    kwargs.setdefault("warmup_delay", 0.0)
    return BookingCache(_registry(*account_ids), source, _OPTIONS, **kwargs)


@pytest.mark.asyncio
async def test_construction_does_not_fetch() -> None:
    source = _StubSource({"a": []})
    cache = _cache(source, "a")
    await asyncio.sleep(0)

    assert cache.state is CacheState.COLD
    assert source.calls == []
    assert cache.stats()["generation"] == 0


@pytest.mark.asyncio
async def test_find_on_cold_cache_warms_up_first() -> None:
    source = _StubSource({"a": [{"id": "RRP-1"}], "b": [{"id": "RRP-2", "title": "Lisbon"}]})
    cache = _cache(source, "a", "b")

    lookup = await cache.find("rrp-2")

    assert cache.state is CacheState.WARM
    assert lookup.found
    assert lookup.account_id == "b"
    assert lookup.record["title"] == "Lisbon"
    assert lookup.generation == 1
    assert lookup.unavailable_accounts == {}


@pytest.mark.asyncio
async def test_concurrent_warm_up_runs_one_pass() -> None:
    source = _StubSource({"a": [{"id": "1"}], "b": [{"id": "2"}]}, delays={"a": 0.05})
    cache = _cache(source, "a", "b")

    snapshots = await asyncio.gather(*(cache.warm_up() for _ in range(4)))

    assert cache.sync_passes == 1
    assert sorted(source.calls) == ["a", "b"]
    assert {snapshot.generation for snapshot in snapshots} == {1}


@pytest.mark.asyncio
async def test_warm_up_is_idempotent_once_warm() -> None:
    source = _StubSource({"a": [{"id": "1"}]})
    cache = _cache(source, "a")

    await cache.warm_up()
    await cache.warm_up()

    assert cache.sync_passes == 1


@pytest.mark.asyncio
async def test_timed_out_account_is_cancelled_and_discarded() -> None:
    source = _StubSource({"fast": [{"id": "RRP-1"}], "slow": [{"id": "RRP-2"}]}, delays={"slow": 5.0})
    cache = _cache(source, "fast", "slow", sync_timeout=0.05)

    snapshot = await cache.warm_up()
    for _ in range(5):
        await asyncio.sleep(0)

    assert "fast" in snapshot.record_sets
    assert "slow" not in snapshot.record_sets
    assert "timed out" in snapshot.failures["slow"]
    assert source.cancelled == ["slow"]
    assert not (await cache.find("RRP-2")).found
    assert cache.stats()["failed_accounts"] == {"slow": snapshot.failures["slow"]}


@pytest.mark.asyncio
async def test_failed_account_is_reported_not_fatal() -> None:
    source = _StubSource({"a": AuthenticationError("a", "HTTP 401"), "b": [{"id": "RRP-7"}]})
    cache = _cache(source, "a", "b")

    lookup = await cache.find("RRP-7")

    assert lookup.found
    assert lookup.searched_accounts == ("b",)
    assert "AuthenticationError" in lookup.unavailable_accounts["a"]


@pytest.mark.asyncio
async def test_failed_account_is_retried_on_next_pass() -> None:
    source = _StubSource({"a": AuthenticationError("a", "HTTP 401")})
    cache = _cache(source, "a")

    await cache.warm_up()
    source.data["a"] = [{"id": "RRP-3"}]
    snapshot = await cache.refresh(force=True)

    assert snapshot.failures == {}
    assert (await cache.find("RRP-3")).found


@pytest.mark.asyncio
async def test_readers_see_previous_generation_during_refresh() -> None:
    source = _StubSource({"a": [{"id": "RRP-1", "title": "old"}]})
    cache = _cache(source, "a")
    await cache.warm_up()

    source.data["a"] = [{"id": "RRP-1", "title": "new"}]
    source.gate = asyncio.Event()
    refresh = asyncio.create_task(cache.refresh(force=True))
    await asyncio.sleep(0.01)

    during = await cache.find("RRP-1")
    assert cache.refreshing
    assert cache.stats()["refreshing"] is True
    assert during.generation == 1
    assert during.record["title"] == "old"

    source.gate.set()
    await refresh
    after = await cache.find("RRP-1")

    assert after.generation == 2
    assert after.record["title"] == "new"
    assert not cache.refreshing


@pytest.mark.asyncio
async def test_concurrent_refreshes_share_one_pass() -> None:
    source = _StubSource({"a": [{"id": "1"}]}, delays={"a": 0.02})
    cache = _cache(source, "a")
    await cache.warm_up()

    await asyncio.gather(cache.refresh(force=True), cache.refresh(force=True), cache.refresh(force=True))

    assert cache.sync_passes == 2
    assert cache.snapshot.generation == 2


@pytest.mark.asyncio
async def test_unforced_refresh_keeps_fresh_snapshot() -> None:
    source = _StubSource({"a": [{"id": "1"}]})
    cache = _cache(source, "a", refresh_interval=600)
    await cache.warm_up()

    snapshot = await cache.refresh()

    assert snapshot.generation == 1
    assert cache.sync_passes == 1


@pytest.mark.asyncio
async def test_colliding_ids_resolve_to_first_configured_account() -> None:
    source = _StubSource({"primary": [{"id": "RRP-5", "title": "p"}], "secondary": [{"id": "RRP-5", "title": "s"}]})
    cache = _cache(source, "primary", "secondary")
    source.delays = {"primary": 0.03}

    lookup = await cache.find("RRP-5")
    across = await cache.find_across_accounts("RRP-5")

    assert lookup.account_id == "primary"
    assert lookup.result.ambiguous
    assert cache.stats()["alias_collisions"] == 1
    assert [item.found for item in across.accounts] == [True, True]


@pytest.mark.asyncio
async def test_find_across_accounts_reports_every_account() -> None:
    source = _StubSource(
        {"a": [{"id": "1"}, {"id": "2"}], "b": [{"id": "RRP-9"}], "c": RuntimeError("listing down")}
    )
    cache = _cache(source, "a", "b", "c")

    result = await cache.find_across_accounts("RRP-9")
    by_account = {item.account_id: item for item in result.accounts}

    assert result.lookup.account_id == "b"
    assert by_account["a"].record_count == 2
    assert not by_account["a"].found
    assert by_account["b"].found
    assert "listing down" in by_account["c"].error
    assert result.to_dict()["search_results"][2]["account_id"] == "c"


@pytest.mark.asyncio
async def test_stats_and_sample_ids() -> None:
    source = _StubSource({"a": [{"id": "1", "bookingReference": "REF-1"}, {"id": "2"}], "b": [{"id": "3"}]})
    cache = _cache(source, "a", "b")
    await cache.warm_up()

    stats = cache.stats()

    assert stats["state"] == "warm"
    assert stats["generation"] == 1
    assert stats["total_records"] == 3
    assert stats["searchable_ids"] == 4
    assert stats["per_account_counts"] == {"a": 2, "b": 1}
    assert set(stats["last_sync_times"]) == {"a", "b"}
    assert stats["failed_accounts"] == {}
    assert cache.sample_ids(limit=2) == ["1", "2"]


@pytest.mark.asyncio
async def test_start_runs_warm_up_and_periodic_refresh_until_stopped() -> None:
    source = _StubSource({"a": [{"id": "1"}]})
    cache = _cache(source, "a", refresh_interval=0.01)

    cache.start()
    await asyncio.sleep(0.1)
    await cache.stop()
    generation = cache.snapshot.generation
    await asyncio.sleep(0.05)

    assert generation >= 2
    assert cache.snapshot.generation == generation
    assert cache.state is CacheState.WARM


@pytest.mark.asyncio
async def test_exact_and_substring_lookups_hit_the_same_record() -> None:
    source = _StubSource({"a": [{"id": "RRP-9263", "bookingReference": "RRP-9263"}], "b": [{"id": "RRP-1"}]})
    cache = _cache(source, "a", "b")

    exact = await cache.find("rrp-9263")
    partial = await cache.find("9263")

    assert exact.strategy == "exact"
    assert partial.strategy == "partial"
    assert exact.account_id == partial.account_id == "a"
    assert exact.record is partial.record


@pytest.mark.asyncio
async def test_account_whose_listing_goes_down_is_unavailable_not_empty() -> None:
    listing = {"status": 200}

    def platform(request: httpx.Request) -> httpx.Response:
        if request.url.path == AUTH_PATH:
            return httpx.Response(200, json={"token": "tok", "expirationInSeconds": 7200})
        assert request.url.path == LIST_PATH
        if listing["status"] != 200:
            return httpx.Response(listing["status"], text="maintenance")
        return httpx.Response(200, json={"bookedTrip": [{"id": "RRP-9263"}]})

    registry = _registry("a")
    client = PlatformClient(base_url="https://platform.test", transport=httpx.MockTransport(platform))
    fetcher = RecordFetcher(registry, SessionTokenManager(registry, client), client)
    cache = BookingCache(registry, fetcher, _OPTIONS, sync_timeout=1.0, warmup_delay=0.0)

    assert (await cache.find("RRP-9263")).found

    listing["status"] = 503
    snapshot = await cache.refresh(force=True)
    lookup = await cache.find("RRP-9263")

    assert snapshot.generation == 2
    assert "a" not in snapshot.record_sets
    assert "TransientFetchError" in snapshot.failures["a"]
    assert not lookup.found
    assert lookup.searched_accounts == ()
    assert "a" in lookup.unavailable_accounts
    assert cache.stats()["per_account_counts"] == {}


@pytest.mark.asyncio
async def test_background_loop_survives_a_failed_initial_warm_up(monkeypatch: pytest.MonkeyPatch) -> None:
    original = SearchIndex.build
    calls = {"count": 0}

    def flaky_build(cls: type[SearchIndex], record_sets: Any) -> SearchIndex:
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("index build failed")
        return original(record_sets)

    monkeypatch.setattr(SearchIndex, "build", classmethod(flaky_build))
    source = _StubSource({"a": [{"id": "RRP-1"}]})
    cache = _cache(source, "a", refresh_interval=0.01)

    cache.start()
    await asyncio.sleep(0.1)
    await cache.stop()

    assert cache.sync_passes >= 2
    assert cache.state is CacheState.WARM
    assert (await cache.find("RRP-1")).found


@pytest.mark.asyncio
async def test_timed_out_tasks_are_collected_before_the_snapshot_is_published() -> None:
    source = _StubSource({"fast": [{"id": "RRP-1"}], "slow": [{"id": "RRP-2"}]}, delays={"slow": 5.0})
    cache = _cache(source, "fast", "slow", sync_timeout=0.05)

    snapshot = await cache.warm_up()

    assert source.cancelled == ["slow"]
    assert "slow" in snapshot.failures

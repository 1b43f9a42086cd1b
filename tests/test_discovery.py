from __future__ import annotations

import json

import httpx
import pytest

from booking_bridge.accounts import AccountRegistry
from booking_bridge.auth.session import SessionTokenManager
from booking_bridge.discovery import EndpointDiscoverer, count_records, format_ranked, match_booking
from booking_bridge.errors import AuthenticationError
from booking_bridge.services.platform_client import AUTH_PATH, PlatformClient

_CATALOGUE = (
    "/resources/booking/getBookings",
    "/health",
    "/resources/trips?microsite={site}",
    "/resources/booking/{site}",
    "/broken",
    "/health",
)


class _Platform:
    def __init__(self, *, auth_status: int = 200) -> None:
        self.auth_status = auth_status
        self.calls: list[tuple[str, str, bytes]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == AUTH_PATH:
            if self.auth_status != 200:
                return httpx.Response(self.auth_status, text="nope")
            return httpx.Response(200, json={"token": "tok"})
        self.calls.append((request.method, request.url.path, request.content))
        path = request.url.path
        if path == "/resources/booking/getBookings":
            if request.method == "GET":
                return httpx.Response(405, text="Method Not Allowed")
            return httpx.Response(200, json={"bookedTrip": [{"id": 1}, {"id": 2}, {"id": 3}]})
        if path == "/health":
            return httpx.Response(200, json={"status": "ok"})
        if path == "/resources/trips":
            return httpx.Response(200, json={"trips": [{"id": "T1", "name": "Trip"}]})
        if path == "/broken":
            raise httpx.ReadTimeout("stalled", request=request)
        return httpx.Response(404, text="missing")


def _discoverer(platform: _Platform) -> EndpointDiscoverer:
    registry = AccountRegistry.from_entries([{"id": "a", "login_id": "u", "secret": "s", "site_id": "site-a"}])
    client = PlatformClient(base_url="https://platform.test", transport=httpx.MockTransport(platform))
    return EndpointDiscoverer(registry, SessionTokenManager(registry, client), client, catalogue=_CATALOGUE)


def test_count_records_heuristics() -> None:
    assert count_records({"bookedTrip": [1, 2]}) == 2
    assert count_records({"reservations": [1]}) == 1
    assert count_records({"data": [1, 2, 3]}) == 3
    assert count_records([1, 2, 3, 4]) == 4
    assert count_records({"bookings": []}) == 0
    assert count_records("text") == 0


def test_paths_are_expanded_and_deduplicated() -> None:
    discoverer = _discoverer(_Platform())

    paths = discoverer.expand_paths("site-a", year=2025)

    assert paths.count("/health") == 1
    assert "/resources/trips?microsite=site-a" in paths
    assert "/resources/booking/site-a" in paths


@pytest.mark.asyncio
async def test_discovery_ranks_data_then_success_then_failures() -> None:
    platform = _Platform()

    report = await _discoverer(platform).discover("a")
    ranked = report.ranked()

    assert [(probe.method, probe.path, probe.record_count) for probe in ranked[:2]] == [
        ("POST", "/resources/booking/getBookings", 3),
        ("GET", "/resources/trips?microsite=site-a", 1),
    ]
    assert ranked[2].path == "/health" and ranked[2].ok
    assert all(not probe.ok for probe in ranked[3:])
    broken = next(probe for probe in report.probes if probe.path == "/broken")
    assert broken.status == 0
    assert "ReadTimeout" in broken.error
    assert ranked[0].sample[0]["id"] == 1
    assert ranked[0].data_keys == ["bookedTrip"]


@pytest.mark.asyncio
async def test_post_is_only_tried_for_list_style_paths_after_get_fails() -> None:
    platform = _Platform()

    await _discoverer(platform).discover("a")

    posts = [(path, body) for method, path, body in platform.calls if method == "POST"]
    assert [path for path, _ in posts] == ["/resources/booking/getBookings"]
    assert json.loads(posts[0][1]) == {"microsite": "site-a", "operator": "site-a", "limit": 10}


@pytest.mark.asyncio
async def test_summary_and_formatting() -> None:
    report = await _discoverer(_Platform()).discover("a")

    summary = report.summary()
    lines = list(format_ranked(report, limit=3))

    assert summary["with_data"] == 2
    assert summary["max_records"] == 3
    assert summary["site_id"] == "site-a"
    assert lines[0].startswith("DATA POST")
    assert report.to_dict()["results"][0]["record_count"] == 3


@pytest.mark.asyncio
async def test_authentication_failure_is_fatal() -> None:
    platform = _Platform(auth_status=401)

    with pytest.raises(AuthenticationError):
        await _discoverer(platform).discover("a")

    assert platform.calls == []


def test_match_booking_accepts_single_objects_and_lists() -> None:
    assert match_booking({"id": 7, "title": "Rome"}, "7") == {"id": 7, "title": "Rome"}
    assert match_booking({"reference": "RRP-7"}, "RRP-7") == {"reference": "RRP-7"}
    assert match_booking({"results": [{"id": 1}, {"bookingReference": "RRP-7"}]}, "RRP-7") == {
        "bookingReference": "RRP-7"
    }
    assert match_booking([{"id": "RRP-7"}], "RRP-7") == {"id": "RRP-7"}
    assert match_booking({"bookings": [{"id": "RRP-8"}]}, "RRP-7") is None
    assert match_booking("nothing", "RRP-7") is None


@pytest.mark.asyncio
async def test_find_booking_walks_candidates_until_the_id_matches() -> None:
    def platform(request: httpx.Request) -> httpx.Response:
        if request.url.path == AUTH_PATH:
            return httpx.Response(200, json={"token": "tok"})
        if request.url.path == "/resources/booking/site-a/RRP-7":
            return httpx.Response(200, json={"message": "ok"})
        if request.url.path == "/resources/booking/site-a" and request.url.params.get("reference") == "RRP-7":
            return httpx.Response(
                200,
                json={"bookings": [{"id": "RRP-6"}, {"bookingReference": "RRP-7", "title": "Lisbon"}]},
            )
        return httpx.Response(404, text="missing")

    registry = AccountRegistry.from_entries([{"id": "a", "login_id": "u", "secret": "s", "site_id": "site-a"}])
    client = PlatformClient(base_url="https://platform.test", transport=httpx.MockTransport(platform))
    discoverer = EndpointDiscoverer(registry, SessionTokenManager(registry, client), client)

    search = await discoverer.find_booking("a", "RRP-7")

    assert search.found
    assert search.record["title"] == "Lisbon"
    assert search.path == "/resources/booking/site-a?reference=RRP-7"
    assert [probe.status for probe in search.probes] == [404, 200, 200]
    assert search.probes[2].record_count == 2
    assert search.to_dict()["found"] is True


@pytest.mark.asyncio
async def test_find_booking_reports_a_miss_with_every_attempt() -> None:
    search = await _discoverer(_Platform()).find_booking("a", "RRP-404")

    assert not search.found
    assert search.path is None
    assert len(search.probes) == 3
    assert all(probe.status == 404 for probe in search.probes)

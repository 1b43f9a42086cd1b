"""Diagnostic probing of candidate platform endpoints for one account."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from booking_bridge.accounts import AccountRegistry
from booking_bridge.auth.session import SessionTokenManager
from booking_bridge.services.platform_client import PlatformClient

logger = logging.getLogger(__name__)

# Paths may contain ``{site}`` and ``{year}`` placeholders.
DEFAULT_CATALOGUE: Tuple[str, ...] = (
    "/resources",
    "/resources/booking",
    "/resources/bookings",
    "/resources/booking/getBookings",
    "/resources/bookings/getBookings",
    "/resources/booking/getAllBookings",
    "/resources/booking/list",
    "/resources/bookings/list",
    "/resources/booking/search",
    "/resources/bookings/search",
    "/resources/booking/all",
    "/resources/booking/find",
    "/resources/bookings/find",
    "/resources/trip",
    "/resources/trips",
    "/resources/trip/getBookings",
    "/resources/trips/list",
    "/resources/reservation",
    "/resources/reservations",
    "/resources/reservations/list",
    "/resources/client",
    "/resources/customers",
    "/resources/order",
    "/resources/orders/list",
    "/api/booking",
    "/api/bookings",
    "/api/trips",
    "/api/v1/bookings",
    "/api/v2/bookings",
    "/resources/v1/bookings",
    "/resources/v2/bookings",
    "/resources/booking?microsite={site}",
    "/resources/bookings?microsite={site}",
    "/resources/trips?microsite={site}",
    "/resources/booking?operator={site}",
    "/resources/booking?site={site}",
    "/resources/booking?micrositeId={site}",
    "/resources/booking/{site}",
    "/resources/travelidea/{site}",
    "/resources/package/{site}",
    "/swagger.json",
    "/api-docs",
    "/openapi.json",
    "/health",
    "/status",
    "/version",
    "/resources/booking/getBookings?microsite={site}&from={year}0101&to={year}1231",
)

POST_MARKERS: Tuple[str, ...] = ("getBookings", "search", "find")
RECORD_KEYS: Tuple[str, ...] = (
    "bookedTrip",
    "bookings",
    "booking",
    "trips",
    "reservations",
    "results",
    "data",
)
_ERROR_PREVIEW = 300
_MATCH_FIELDS: Tuple[str, ...] = ("id", "reference", "bookingReference")
_MATCH_LIST_KEYS: Tuple[str, ...] = ("booking", "bookings", "results")


def count_records(payload: Any) -> int:
    """Best-effort count of booking-like records in a probe response."""
    if isinstance(payload, list):
        return len(payload)
    if isinstance(payload, dict):
        for key in RECORD_KEYS:
            value = payload.get(key)
            if isinstance(value, list) and value:
                return len(value)
    return 0


def _sample(payload: Any, limit: int = 3) -> List[Dict[str, Any]]:
    items: List[Any] = []
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        for key in RECORD_KEYS:
            value = payload.get(key)
            if isinstance(value, list) and value:
                items = value
                break
    samples = []
    for item in items[:limit]:
        if not isinstance(item, dict):
            continue
        samples.append(
            {
                "id": item.get("id"),
                "reference": item.get("bookingReference") or item.get("reference"),
                "title": item.get("title") or item.get("name"),
                "status": item.get("status"),
            }
        )
    return samples



def booking_search_paths(site_id: str, booking_id: str) -> List[str]:
    return [
        f"/booking/getBookings/{site_id}/{booking_id}",
        f"/resources/booking/{site_id}/{booking_id}",
        f"/resources/booking/{site_id}?{httpx.QueryParams({'reference': booking_id})}",
    ]


def _matches(item: Any, booking_id: str) -> bool:
    if not isinstance(item, dict):
        return False
    return any(item.get(key) and str(item[key]) == booking_id for key in _MATCH_FIELDS)


def match_booking(payload: Any, booking_id: str) -> Optional[Dict[str, Any]]:
    """Pick the record for ``booking_id`` out of a single-object or list response."""
    if _matches(payload, booking_id):
        return payload
    items: Any = payload
    if isinstance(payload, dict):
        items = next((payload[key] for key in _MATCH_LIST_KEYS if key in payload), [])
    if isinstance(items, list):
        for item in items:
            if _matches(item, booking_id):
                return item
    return None

@dataclass(slots=True)
class ProbeResult:
    path: str
    method: str
    status: int
    ok: bool
    content_type: Optional[str] = None
    record_count: int = 0
    data_keys: List[str] = field(default_factory=list)
    error: Optional[str] = None
    elapsed_ms: float = 0.0
    sample: List[Dict[str, Any]] = field(default_factory=list)
    is_api_doc: bool = False

    @property
    def has_data(self) -> bool:
        return self.record_count > 0

    def rank_key(self) -> tuple[int, int]:
        if self.has_data:
            tier = 0
        elif self.ok:
            tier = 1
        else:
            tier = 2
        return tier, -self.record_count

    def to_dict(self) -> dict[str, object]:
        return {
            "path": self.path,
            "method": self.method,
            "status": self.status,
            "ok": self.ok,
            "content_type": self.content_type,
            "record_count": self.record_count,
            "data_keys": list(self.data_keys),
            "error": self.error,
            "elapsed_ms": self.elapsed_ms,
            "sample": list(self.sample),
            "is_api_doc": self.is_api_doc,
        }


@dataclass(slots=True)
class DiscoveryReport:
    account_id: str
    site_id: str
    probes: List[ProbeResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def ranked(self) -> List[ProbeResult]:
        """Data-bearing probes first (largest first), then other successes, then failures."""
        return sorted(self.probes, key=ProbeResult.rank_key)

    def summary(self) -> dict[str, object]:
        ranked = self.ranked()
        with_data = [probe for probe in ranked if probe.has_data]
        working = [probe for probe in ranked if probe.ok]
        return {
            "account_id": self.account_id,
            "site_id": self.site_id,
            "probes": len(self.probes),
            "working": len(working),
            "with_data": len(with_data),
            "max_records": max((probe.record_count for probe in self.probes), default=0),
            "best": [f"{probe.method} {probe.path} ({probe.record_count})" for probe in with_data[:5]],
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "summary": self.summary(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "results": [probe.to_dict() for probe in self.ranked()],
        }


@dataclass(slots=True)
class BookingSearch:
    account_id: str
    booking_id: str
    record: Optional[Dict[str, Any]] = None
    path: Optional[str] = None
    probes: List[ProbeResult] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.record is not None

    def to_dict(self) -> dict[str, object]:
        return {
            "account_id": self.account_id,
            "booking_id": self.booking_id,
            "found": self.found,
            "path": self.path,
            "record": self.record,
            "probes": [probe.to_dict() for probe in self.probes],
        }


class EndpointDiscoverer:
    """Authenticates once, then probes every catalogue path in turn."""

    def __init__(
        self,
        registry: AccountRegistry,
        tokens: SessionTokenManager,
        client: PlatformClient,
        *,
        catalogue: Sequence[str] = DEFAULT_CATALOGUE,
    ) -> None:
        self.registry = registry
        self.tokens = tokens
        self.client = client
        self.catalogue = tuple(catalogue)

    def expand_paths(self, site_id: str, *, year: Optional[int] = None) -> List[str]:
        year = year or date.today().year
        paths: List[str] = []
        for template in self.catalogue:
            path = template.format(site=site_id, year=year)
            if path not in paths:
                paths.append(path)
        return paths

    async def discover(self, account_id: str) -> DiscoveryReport:
        account = self.registry.get(account_id)
        # Authentication failure is fatal for the run.
        token = await self.tokens.acquire(account_id)
        site_id = account.remote_site_id or ""

        report = DiscoveryReport(account_id=account_id, site_id=site_id, started_at=datetime.now(timezone.utc))
        paths = self.expand_paths(site_id)
        logger.info("Probing %s endpoints for account %s", len(paths), account_id)
        for path in paths:
            report.probes.extend(await self._probe_path(path, site_id, token))
        report.finished_at = datetime.now(timezone.utc)

        summary = report.summary()
        logger.info(
            "Discovery for %s finished: %s working, %s with data",
            account_id,
            summary["working"],
            summary["with_data"],
        )
        return report

    async def find_booking(self, account_id: str, booking_id: str) -> BookingSearch:
        """Search a handful of candidate endpoints for one booking id."""
        account = self.registry.get(account_id)
        token = await self.tokens.acquire(account_id)
        site_id = account.remote_site_id or ""

        search = BookingSearch(account_id=account_id, booking_id=booking_id)
        for path in booking_search_paths(site_id, booking_id):
            started = time.perf_counter()
            try:
                response = await self.client.request("GET", path, token=token)
            except httpx.HTTPError as exc:
                search.probes.append(
                    ProbeResult(
                        path=path,
                        method="GET",
                        status=0,
                        ok=False,
                        error=f"{type(exc).__name__}: {exc}",
                        elapsed_ms=_elapsed(started),
                    )
                )
                continue
            probe = ProbeResult(
                path=path,
                method="GET",
                status=response.status_code,
                ok=response.is_success,
                content_type=response.headers.get("content-type"),
                elapsed_ms=_elapsed(started),
            )
            search.probes.append(probe)
            if not response.is_success:
                probe.error = response.text[:_ERROR_PREVIEW] or f"HTTP {response.status_code}"
                continue
            try:
                payload = response.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                continue
            probe.record_count = count_records(payload)
            record = match_booking(payload, booking_id)
            if record is not None:
                search.record = record
                search.path = path
                logger.info("Booking %s found for account %s via %s", booking_id, account_id, path)
                return search

        logger.info("Booking %s not found for account %s after %s probes", booking_id, account_id, len(search.probes))
        return search

    async def _probe_path(self, path: str, site_id: str, token: str) -> List[ProbeResult]:
        methods = ["GET"]
        if any(marker in path for marker in POST_MARKERS):
            methods.append("POST")
        results: List[ProbeResult] = []
        for method in methods:
            body = {"microsite": site_id, "operator": site_id, "limit": 10} if method == "POST" else None
            result = await self._probe(method, path, token, body)
            results.append(result)
            if result.ok:
                break
        return results

    async def _probe(self, method: str, path: str, token: str, body: Optional[Dict[str, Any]]) -> ProbeResult:
        started = time.perf_counter()
        try:
            response = await self.client.request(method, path, token=token, json_body=body)
        except httpx.HTTPError as exc:
            logger.debug("%s %s failed: %s", method, path, exc)
            return ProbeResult(
                path=path,
                method=method,
                status=0,
                ok=False,
                error=f"{type(exc).__name__}: {exc}",
                elapsed_ms=_elapsed(started),
            )

        result = ProbeResult(
            path=path,
            method=method,
            status=response.status_code,
            ok=response.is_success,
            content_type=response.headers.get("content-type"),
            elapsed_ms=_elapsed(started),
        )
        if not response.is_success:
            result.error = response.text[:_ERROR_PREVIEW] or f"HTTP {response.status_code}"
            return result

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return result
        result.record_count = count_records(payload)
        result.sample = _sample(payload)
        if isinstance(payload, dict):
            result.data_keys = sorted(str(key) for key in payload)
            result.is_api_doc = any(key in payload for key in ("swagger", "openapi", "paths"))
        logger.debug("%s %s -> %s (%s records)", method, path, result.status, result.record_count)
        return result


def _elapsed(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


def format_ranked(report: DiscoveryReport, limit: int = 20) -> Iterable[str]:
    for probe in report.ranked()[:limit]:
        marker = "DATA" if probe.has_data else ("OK" if probe.ok else "FAIL")
        yield f"{marker:<4} {probe.method:<4} {probe.status:>3} {probe.record_count:>5}  {probe.path}"

"""Bulk retrieval of one account's bookings across date windows."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import httpx

from booking_bridge.accounts import AccountRegistry
from booking_bridge.errors import PlatformResponseError, TransientFetchError
from booking_bridge.services.platform_client import PlatformClient

if TYPE_CHECKING:  # pragma: no cover
    from booking_bridge.auth.session import SessionTokenManager

logger = logging.getLogger(__name__)

LIST_PATH = "/resources/booking/getBookings"
_RECORD_KEYS = ("bookedTrip", "bookings")
_IDENTIFIER_KEYS = ("id", "bookingId", "bookingReference")
_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class DateWindow:
    """Bounded date range; the listing endpoint refuses unbounded queries."""

    start: date
    end: date
    label: Optional[str] = None

    @classmethod
    def calendar_year(cls, year: int) -> "DateWindow":
        return cls(start=date(year, 1, 1), end=date(year, 12, 31), label=str(year))

    @property
    def name(self) -> str:
        return self.label or f"{self.start.isoformat()}..{self.end.isoformat()}"

    def query(self) -> dict[str, str]:
        return {"from": self.start.strftime("%Y%m%d"), "to": self.end.strftime("%Y%m%d")}


@dataclass(frozen=True)
class FetchOptions:
    date_windows: Sequence[DateWindow]
    page_size: int = 50
    max_pages_per_window: int = 40
    custom_window: Optional[DateWindow] = None

    def windows(self) -> list[DateWindow]:
        windows = list(self.date_windows)
        if self.custom_window is not None:
            windows.append(self.custom_window)
        return windows


def record_identifier(record: Dict[str, Any]) -> Optional[str]:
    for key in _IDENTIFIER_KEYS:
        value = record.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def identifier_sort_key(record: Dict[str, Any]) -> int:
    digits = _DIGITS.sub("", record_identifier(record) or "")
    return int(digits) if digits else 0


def extract_page_records(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if not isinstance(payload, dict):
        return []
    for key in _RECORD_KEYS:
        value = payload.get(key)
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
    return []


class RecordFetcher:
    """Pages through an account's booking listing for every configured date window."""

    def __init__(
        self,
        registry: AccountRegistry,
        tokens: SessionTokenManager,
        client: PlatformClient,
    ) -> None:
        self.registry = registry
        self.tokens = tokens
        self.client = client

    async def fetch_all(self, account_id: str, options: FetchOptions) -> List[Dict[str, Any]]:
        account = self.registry.get(account_id)
        token = await self.tokens.acquire(account_id)

        collected: List[Dict[str, Any]] = []
        seen: set[str] = set()
        pages_total = 0
        last_error: Optional[TransientFetchError] = None
        for window in options.windows():
            pages, added, error = await self._fetch_window(
                account_id,
                account.remote_site_id or "",
                token,
                window,
                options,
                collected=collected,
                seen=seen,
            )
            pages_total += pages
            if error is not None:
                last_error = error
            logger.info(
                "Account %s window %s: %s pages, %s new records",
                account_id,
                window.name,
                pages,
                added,
            )

        if pages_total == 0 and last_error is not None:
            logger.warning("No listing page succeeded for account %s", account_id)
            raise last_error

        collected.sort(key=identifier_sort_key)
        logger.info(
            "Fetched %s unique records for account %s from %s pages",
            len(collected),
            account_id,
            pages_total,
        )
        return collected

    async def _fetch_window(
        self,
        account_id: str,
        site_id: str,
        token: str,
        window: DateWindow,
        options: FetchOptions,
        *,
        collected: List[Dict[str, Any]],
        seen: set[str],
    ) -> tuple[int, int, Optional[TransientFetchError]]:
        first = 0
        pages = 0
        added = 0
        error: Optional[TransientFetchError] = None
        while True:
            if pages >= options.max_pages_per_window:
                logger.warning(
                    "Account %s window %s hit the %s page cap; remaining pages skipped",
                    account_id,
                    window.name,
                    options.max_pages_per_window,
                )
                break
            try:
                payload = await self._fetch_page(account_id, site_id, token, window, first, options.page_size)
            except TransientFetchError as exc:
                logger.warning("%s; ending window", exc)
                error = exc
                break
            pages += 1

            records = extract_page_records(payload)
            for record in records:
                identifier = record_identifier(record)
                if identifier is None or identifier in seen:
                    continue
                seen.add(identifier)
                collected.append(record)
                added += 1

            if not records or len(records) < options.page_size:
                break
            total = _total_results(payload)
            first += options.page_size
            if total is not None and first >= total:
                break
        return pages, added, error

    async def _fetch_page(
        self,
        account_id: str,
        site_id: str,
        token: str,
        window: DateWindow,
        first: int,
        limit: int,
    ) -> Any:
        params = {"microsite": site_id, **window.query(), "first": first, "limit": limit}
        try:
            return await self.client.get_json(LIST_PATH, token=token, params=params)
        except PlatformResponseError as exc:
            if exc.status == 401:
                self.tokens.invalidate(account_id)
            raise TransientFetchError(account_id, window.name, first, exc) from exc
        except httpx.HTTPError as exc:
            raise TransientFetchError(account_id, window.name, first, exc) from exc


def _total_results(payload: Any) -> Optional[int]:
    if not isinstance(payload, dict):
        return None
    pagination = payload.get("pagination") or {}
    if not isinstance(pagination, dict):
        return None
    total = pagination.get("totalResults")
    try:
        return int(total) if total is not None else None
    except (TypeError, ValueError):
        return None

"""Facade wiring the booking bridge components together."""
from __future__ import annotations

import logging
from typing import Optional, Sequence

import httpx

from booking_bridge.accounts import AccountRegistry
from booking_bridge.auth.session import SessionTokenManager
from booking_bridge.cache.booking_cache import BookingCache, CacheLookup, CrossAccountLookup
from booking_bridge.config.settings import Settings
from booking_bridge.discovery import BookingSearch, DiscoveryReport, EndpointDiscoverer
from booking_bridge.importer import ImportRequest, ImportResult, RecordType, UniversalImporter, UserRecords
from booking_bridge.services import PlatformClient, RecordFetcher

logger = logging.getLogger(__name__)


class BookingBridge:
    """Owns the shared HTTP client and every component built on top of it.

    Nothing runs on construction; call :meth:`start` (or use ``async with``) to
    schedule the cache warm-up and periodic refresh.
    """

    def __init__(
        self,
        settings: Settings,
        registry: AccountRegistry,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.client = PlatformClient(
            base_url=settings.base_url,
            timeout=settings.http_timeout_s,
            user_agent=settings.user_agent,
            transport=transport,
        )
        self.tokens = SessionTokenManager(
            registry,
            self.client,
            safety_margin=settings.token_safety_margin_s,
            default_ttl=settings.default_token_ttl_s,
        )
        self.fetcher = RecordFetcher(registry, self.tokens, self.client)
        self.cache = BookingCache(
            registry,
            self.fetcher,
            settings.fetch_options(),
            sync_timeout=settings.warmup_timeout_s,
            refresh_interval=settings.refresh_interval_s,
            warmup_delay=settings.warmup_delay_s,
        )
        self.importer = UniversalImporter(
            registry,
            self.tokens,
            self.client,
            language=settings.content_language,
        )
        self.discoverer = EndpointDiscoverer(registry, self.tokens, self.client)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "BookingBridge":
        settings = settings or Settings()
        registry = AccountRegistry.from_settings(settings)
        if not len(registry):
            logger.warning("No complete accounts configured; lookups and imports will find nothing")
        return cls(settings, registry, transport=transport)

    async def start(self) -> None:
        self.cache.start()

    async def stop(self) -> None:
        await self.cache.stop()
        await self.client.aclose()

    async def __aenter__(self) -> "BookingBridge":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def lookup_booking(self, booking_id: str) -> CacheLookup:
        return await self.cache.find(booking_id)

    async def lookup_booking_across_accounts(self, booking_id: str) -> CrossAccountLookup:
        return await self.cache.find_across_accounts(booking_id)

    async def import_record(
        self,
        record_type: RecordType | str,
        record_id: str,
        account_hint: Optional[str] = None,
        *,
        user_email: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> ImportResult:
        request = ImportRequest(
            type=record_type,
            id=record_id,
            account_hint=account_hint,
            user_email=user_email,
            user_role=user_role,
        )
        return await self.importer.import_record(request)

    async def batch_import(self, requests: Sequence[ImportRequest]) -> list[ImportResult]:
        return await self.importer.batch_import(requests)

    async def user_records(
        self,
        account_id: str,
        email: str,
        record_type: RecordType | str = RecordType.BOOKING,
    ) -> UserRecords:
        return await self.importer.user_records(account_id, email, record_type)

    async def discover_endpoints(self, account_id: str) -> DiscoveryReport:
        return await self.discoverer.discover(account_id)

    async def find_booking(self, account_id: str, booking_id: str) -> BookingSearch:
        return await self.discoverer.find_booking(account_id, booking_id)

    def cache_stats(self) -> dict[str, object]:
        return self.cache.stats()

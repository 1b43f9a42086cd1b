"""Warm, periodically refreshed in-memory snapshot of every account's bookings."""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from booking_bridge.accounts import AccountRegistry
from booking_bridge.cache.search_index import LookupResult, SearchIndex
from booking_bridge.services.record_fetcher import FetchOptions, record_identifier

logger = logging.getLogger(__name__)


class RecordSource(Protocol):
    async def fetch_all(self, account_id: str, options: FetchOptions) -> List[Dict[str, Any]]:
        ...


class CacheState(str, enum.Enum):
    COLD = "cold"
    WARMING = "warming"
    WARM = "warm"


@dataclass(frozen=True)
class AccountRecordSet:
    account_id: str
    records: Tuple[Dict[str, Any], ...]
    last_synced_at: datetime


@dataclass(frozen=True)
class CacheSnapshot:
    """One coherent generation: record sets, their index, and the accounts that failed."""

    generation: int
    record_sets: Mapping[str, AccountRecordSet] = field(default_factory=dict)
    index: SearchIndex = field(default_factory=SearchIndex)
    failures: Mapping[str, str] = field(default_factory=dict)
    built_at: Optional[datetime] = None

    @property
    def total_records(self) -> int:
        return sum(len(record_set.records) for record_set in self.record_sets.values())


@dataclass(frozen=True)
class CacheLookup:
    """Result of a cache lookup, including which accounts could not be searched."""

    query: str
    result: LookupResult
    generation: int
    searched_accounts: Tuple[str, ...]
    unavailable_accounts: Mapping[str, str]
    elapsed_ms: float

    @property
    def found(self) -> bool:
        return self.result.found

    @property
    def record(self) -> Optional[Dict[str, Any]]:
        return self.result.record

    @property
    def account_id(self) -> Optional[str]:
        return self.result.account_id

    @property
    def strategy(self) -> str:
        return self.result.strategy

    def to_dict(self) -> dict[str, object]:
        return {
            "query": self.query,
            "found": self.found,
            "booking": self.record,
            "account_id": self.account_id,
            "strategy": self.strategy,
            "matched_alias": self.result.matched_alias,
            "ambiguous": self.result.ambiguous,
            "candidate_accounts": [entry.account_id for entry in self.result.candidates],
            "generation": self.generation,
            "searched_accounts": list(self.searched_accounts),
            "unavailable_accounts": dict(self.unavailable_accounts),
            "search_time_ms": self.elapsed_ms,
        }


@dataclass(frozen=True)
class AccountSearchResult:
    account_id: str
    found: bool
    record_count: int
    error: Optional[str] = None


@dataclass(frozen=True)
class CrossAccountLookup:
    lookup: CacheLookup
    accounts: Tuple[AccountSearchResult, ...]

    def to_dict(self) -> dict[str, object]:
        payload = self.lookup.to_dict()
        payload["search_results"] = [
            {
                "account_id": item.account_id,
                "found": item.found,
                "record_count": item.record_count,
                "error": item.error,
            }
            for item in self.accounts
        ]
        return payload


class BookingCache:
    """Owns the warm-up / refresh lifecycle and serves instant lookups."""

    def __init__(
        self,
        registry: AccountRegistry,
        source: RecordSource,
        options: FetchOptions,
        *,
        sync_timeout: float = 30.0,
        refresh_interval: float = 900.0,
        warmup_delay: float = 1.0,
    ) -> None:
        self.registry = registry
        self.source = source
        self.options = options
        self.sync_timeout = sync_timeout
        self.refresh_interval = refresh_interval
        self.warmup_delay = warmup_delay
        self._snapshot = CacheSnapshot(generation=0)
        self._state = CacheState.COLD
        self._inflight: Optional[asyncio.Task[CacheSnapshot]] = None
        self._background: Optional[asyncio.Task[None]] = None
        self.sync_passes = 0

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def snapshot(self) -> CacheSnapshot:
        return self._snapshot

    @property
    def refreshing(self) -> bool:
        return self._state is CacheState.WARM and self._inflight is not None and not self._inflight.done()

    # lifecycle

    def start(self) -> None:
        """Schedule the initial warm-up and the periodic refresh loop."""
        if self._background is not None and not self._background.done():
            return
        self._background = asyncio.create_task(self._run_background(), name="booking-cache-refresh")
        logger.info(
            "Booking cache background sync started (interval %.0fs, warm-up delay %.1fs)",
            self.refresh_interval,
            self.warmup_delay,
        )

    async def stop(self) -> None:
        tasks = [task for task in (self._background, self._inflight) if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._background = None
        self._inflight = None
        if self._state is CacheState.WARMING:
            self._state = CacheState.COLD
        logger.info("Booking cache background sync stopped")

    async def _run_background(self) -> None:
        if self.warmup_delay > 0:
            await asyncio.sleep(self.warmup_delay)
        try:
            await self.warm_up()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Initial warm-up failed; retrying on the next refresh")
            if self._state is CacheState.WARMING:
                self._state = CacheState.COLD
        while True:
            await asyncio.sleep(self.refresh_interval)
            logger.info("Background refresh starting")
            try:
                await self.refresh(force=True)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Background refresh failed; keeping generation %s", self._snapshot.generation)

    # sync passes

    async def warm_up(self) -> CacheSnapshot:
        if self._state is CacheState.WARM:
            return self._snapshot
        return await self._shared_pass()

    async def refresh(self, *, force: bool = False) -> CacheSnapshot:
        """Rebuild every account's record set; readers keep the current generation meanwhile.

        Without ``force`` a snapshot younger than ``refresh_interval`` is kept as is.
        Either way a pass already in flight is joined rather than duplicated.
        """
        if not force and self._is_fresh():
            return self._snapshot
        return await self._shared_pass()

    def _is_fresh(self) -> bool:
        built_at = self._snapshot.built_at
        if self._state is not CacheState.WARM or built_at is None:
            return False
        age = (datetime.now(timezone.utc) - built_at).total_seconds()
        return age < self.refresh_interval

    async def _shared_pass(self) -> CacheSnapshot:
        if self._inflight is None or self._inflight.done():
            if self._state is CacheState.COLD:
                self._state = CacheState.WARMING
            self._inflight = asyncio.create_task(self._sync_pass(), name="booking-cache-sync")
        return await asyncio.shield(self._inflight)

    async def _sync_pass(self) -> CacheSnapshot:
        self.sync_passes += 1
        started = time.monotonic()
        account_ids = self.registry.ids()
        logger.info("Syncing %s accounts (timeout %.0fs)", len(account_ids), self.sync_timeout)

        tasks: Dict[str, asyncio.Task[List[Dict[str, Any]]]] = {
            account_id: asyncio.create_task(
                self.source.fetch_all(account_id, self.options), name=f"sync-{account_id}"
            )
            for account_id in account_ids
        }
        try:
            if tasks:
                await asyncio.wait(tasks.values(), timeout=self.sync_timeout)
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            raise

        now = datetime.now(timezone.utc)
        record_sets: Dict[str, AccountRecordSet] = {}
        failures: Dict[str, str] = {}
        timed_out = [task for task in tasks.values() if not task.done()]
        for task in timed_out:
            task.cancel()
        if timed_out:
            await asyncio.gather(*timed_out, return_exceptions=True)

        # Configured order, not completion order, so the index is deterministic.
        for account_id, task in tasks.items():
            if task in timed_out:
                failures[account_id] = f"timed out after {self.sync_timeout:.0f}s"
                logger.warning("Sync for account %s timed out; late results will be discarded", account_id)
                continue
            if task.cancelled():
                failures[account_id] = "cancelled"
                continue
            exc = task.exception()
            if exc is not None:
                failures[account_id] = f"{type(exc).__name__}: {exc}"
                logger.warning("Sync for account %s failed: %s", account_id, exc)
                continue
            records = task.result()
            record_sets[account_id] = AccountRecordSet(
                account_id=account_id,
                records=tuple(records),
                last_synced_at=now,
            )

        index = SearchIndex.build((account_id, record_set.records) for account_id, record_set in record_sets.items())
        snapshot = CacheSnapshot(
            generation=self._snapshot.generation + 1,
            record_sets=record_sets,
            index=index,
            failures=failures,
            built_at=now,
        )
        # Single assignment publishes the new generation.
        self._snapshot = snapshot
        self._state = CacheState.WARM
        logger.info(
            "Cache generation %s ready: %s records from %s accounts (%s failed) in %.1fs",
            snapshot.generation,
            snapshot.total_records,
            len(record_sets),
            len(failures),
            time.monotonic() - started,
        )
        return snapshot

    # lookups

    async def find(self, booking_id: str) -> CacheLookup:
        _, lookup = await self._lookup(booking_id)
        return lookup

    async def find_across_accounts(self, booking_id: str) -> CrossAccountLookup:
        snapshot, lookup = await self._lookup(booking_id)
        matched = {entry.account_id for entry in lookup.result.candidates}
        accounts: List[AccountSearchResult] = []
        for account_id in self.registry.ids():
            record_set = snapshot.record_sets.get(account_id)
            accounts.append(
                AccountSearchResult(
                    account_id=account_id,
                    found=account_id in matched,
                    record_count=len(record_set.records) if record_set else 0,
                    error=snapshot.failures.get(account_id),
                )
            )
        return CrossAccountLookup(lookup=lookup, accounts=tuple(accounts))

    async def _lookup(self, booking_id: str) -> Tuple[CacheSnapshot, CacheLookup]:
        started = time.perf_counter()
        if self._state is not CacheState.WARM:
            logger.info("Cache not warm yet; warming up before lookup of %s", booking_id)
            await self.warm_up()
        # Pin one generation for the whole lookup.
        snapshot = self._snapshot
        result = snapshot.index.lookup(booking_id)
        lookup = CacheLookup(
            query=booking_id,
            result=result,
            generation=snapshot.generation,
            searched_accounts=tuple(snapshot.record_sets),
            unavailable_accounts=dict(snapshot.failures),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        return snapshot, lookup

    def sample_ids(self, limit: int = 10) -> List[str]:
        ids: List[str] = []
        for record_set in self._snapshot.record_sets.values():
            for record in record_set.records[:limit]:
                identifier = record_identifier(record)
                if identifier:
                    ids.append(identifier)
        return ids[:limit]

    def stats(self) -> dict[str, object]:
        snapshot = self._snapshot
        return {
            "state": self._state.value,
            "refreshing": self.refreshing,
            "generation": snapshot.generation,
            "total_records": snapshot.total_records,
            "searchable_ids": snapshot.index.size,
            "alias_collisions": snapshot.index.collision_count,
            "per_account_counts": {
                account_id: len(record_set.records) for account_id, record_set in snapshot.record_sets.items()
            },
            "last_sync_times": {
                account_id: record_set.last_synced_at.isoformat()
                for account_id, record_set in snapshot.record_sets.items()
            },
            "failed_accounts": dict(snapshot.failures),
        }

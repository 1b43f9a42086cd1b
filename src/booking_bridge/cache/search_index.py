"""Reverse alias index over cached bookings.

An index is built once per sync generation and never mutated afterwards.
Aliases are multi-valued: when two records share an alias the record from the
earlier configured account (or earlier in that account's listing) is the
primary hit and the others stay reachable as candidates.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

ALIAS_FIELDS: Tuple[str, ...] = (
    "id",
    "bookingId",
    "reservationId",
    "bookingReference",
    "reference",
    "tripId",
    "alternativeReference",
)

STRATEGY_EXACT = "exact"
STRATEGY_PARTIAL = "partial"
STRATEGY_NONE = "none"


def normalize_key(value: object) -> str:
    return str(value).strip().lower()


def record_aliases(record: Mapping[str, Any]) -> Tuple[str, ...]:
    """Return the distinct, non-empty identifier values of ``record`` as lower-cased keys."""
    aliases: List[str] = []
    for field_name in ALIAS_FIELDS:
        value = record.get(field_name)
        if value is None or isinstance(value, (dict, list, bool)):
            continue
        key = normalize_key(value)
        if key and key not in aliases:
            aliases.append(key)
    return tuple(aliases)


@dataclass(frozen=True)
class IndexEntry:
    account_id: str
    record: Dict[str, Any]
    aliases: Tuple[str, ...]


@dataclass(frozen=True)
class LookupResult:
    query: str
    strategy: str
    entry: Optional[IndexEntry] = None
    matched_alias: Optional[str] = None
    candidates: Tuple[IndexEntry, ...] = ()
    elapsed_ms: float = 0.0

    @property
    def found(self) -> bool:
        return self.entry is not None

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1

    @property
    def record(self) -> Optional[Dict[str, Any]]:
        return self.entry.record if self.entry else None

    @property
    def account_id(self) -> Optional[str]:
        return self.entry.account_id if self.entry else None


@dataclass(frozen=True)
class SearchIndex:
    """One immutable generation of the alias index."""

    aliases: Mapping[str, Tuple[IndexEntry, ...]] = field(default_factory=dict)
    entries: Tuple[IndexEntry, ...] = ()

    @classmethod
    def build(cls, record_sets: Iterable[Tuple[str, Sequence[Dict[str, Any]]]]) -> "SearchIndex":
        """Build an index from ``(account_id, records)`` pairs in the order given."""
        aliases: Dict[str, List[IndexEntry]] = {}
        entries: List[IndexEntry] = []
        for account_id, records in record_sets:
            for record in records:
                keys = record_aliases(record)
                if not keys:
                    continue
                entry = IndexEntry(account_id=account_id, record=record, aliases=keys)
                entries.append(entry)
                for key in keys:
                    aliases.setdefault(key, []).append(entry)

        frozen = {key: tuple(values) for key, values in aliases.items()}
        index = cls(aliases=frozen, entries=tuple(entries))
        if index.collision_count:
            logger.warning(
                "Search index has %s ambiguous aliases (e.g. %s); first configured account wins",
                index.collision_count,
                ", ".join(index.colliding_aliases()[:5]),
            )
        logger.info("Search index built: %s searchable ids over %s records", len(frozen), len(entries))
        return index

    @property
    def size(self) -> int:
        return len(self.aliases)

    @property
    def collision_count(self) -> int:
        return sum(1 for values in self.aliases.values() if len(values) > 1)

    def colliding_aliases(self) -> List[str]:
        return [key for key, values in self.aliases.items() if len(values) > 1]

    def lookup(self, query: str) -> LookupResult:
        started = time.perf_counter()
        key = normalize_key(query)
        if not key:
            return LookupResult(query=query, strategy=STRATEGY_NONE, elapsed_ms=_elapsed(started))

        exact = self.aliases.get(key)
        if exact:
            return LookupResult(
                query=query,
                strategy=STRATEGY_EXACT,
                entry=exact[0],
                matched_alias=key,
                candidates=exact,
                elapsed_ms=_elapsed(started),
            )

        for alias, values in self.aliases.items():
            if key in alias or alias in key:
                return LookupResult(
                    query=query,
                    strategy=STRATEGY_PARTIAL,
                    entry=values[0],
                    matched_alias=alias,
                    candidates=values,
                    elapsed_ms=_elapsed(started),
                )

        return LookupResult(query=query, strategy=STRATEGY_NONE, elapsed_ms=_elapsed(started))


def _elapsed(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)

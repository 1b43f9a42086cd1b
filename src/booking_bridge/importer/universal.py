"""Direct import of a single booking, travel idea or holiday package by id."""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

from booking_bridge.accounts import AccountConfig, AccountRegistry
from booking_bridge.auth.session import SessionTokenManager
from booking_bridge.errors import AuthenticationError
from booking_bridge.records import normalize_booking, normalize_idea, normalize_package
from booking_bridge.records.normalizer import first_value
from booking_bridge.services.platform_client import PlatformClient

from .models import (
    FAILURE_FORBIDDEN,
    FAILURE_INVALID,
    FAILURE_NOT_FOUND,
    FAILURE_UNAVAILABLE,
    OUTCOME_ABSENT,
    OUTCOME_FOUND,
    OUTCOME_UNAVAILABLE,
    ImportAttempt,
    ImportFailure,
    ImportRequest,
    ImportResult,
    RecordType,
    UserRecords,
)

logger = logging.getLogger(__name__)

_RRP_PREFIX = re.compile(r"^RRP-?", re.IGNORECASE)
_BOOKING_ID_FIELDS = ("id", "bookingReference", "bookingId", "bookedTrip")
# Statuses that mean the platform looked and the id is not there.
_ABSENT_STATUSES = frozenset({400, 404, 410, 422})

PRIVILEGED_ROLES = frozenset({"super_admin", "admin"})
AGENT_ROLE = "agent"

_OWNER_PATHS: Dict[RecordType, Tuple[str, ...]] = {
    RecordType.BOOKING: ("client.email", "clientEmail", "customer.email"),
    RecordType.IDEA: ("customer.email", "clientEmail", "user"),
}

Endpoint = Tuple[str, Optional[Dict[str, str]]]
Acceptor = Callable[[Any], bool]


def booking_id_variants(booking_id: str) -> List[str]:
    """The id as given, then without its ``RRP-`` prefix when it has one."""
    variants = [booking_id]
    stripped = _RRP_PREFIX.sub("", booking_id)
    if stripped and stripped not in variants:
        variants.append(stripped)
    return variants


def booking_endpoints(site_id: str, booking_id: str) -> List[Endpoint]:
    endpoints: List[Endpoint] = []
    for candidate in booking_id_variants(booking_id):
        endpoints.extend(
            [
                (f"/resources/booking/{site_id}/{candidate}", None),
                ("/resources/booking/getBooking", {"microsite": site_id, "bookingId": candidate}),
                (f"/resources/booking/{candidate}", {"microsite": site_id}),
            ]
        )
    return endpoints


def idea_endpoints(site_id: str, idea_id: str, language: str) -> List[Endpoint]:
    return [(f"/resources/travelidea/{site_id}/{idea_id}", {"lang": language})]


def package_endpoints(site_id: str, package_id: str, language: str) -> List[Endpoint]:
    return [
        (f"/resources/package/{site_id}/{package_id}", {"lang": language}),
        (f"/resources/package/{site_id}/{package_id}", None),
        (f"/resources/holidaypackage/{site_id}/{package_id}", {"lang": language}),
    ]


def user_booking_endpoints(site_id: str, email: str) -> List[Endpoint]:
    return [
        (f"/resources/booking/{site_id}", {"clientEmail": email}),
        (f"/resources/booking/{site_id}", {"email": email}),
        (f"/resources/booking/{site_id}", {"client": email}),
    ]


def user_idea_endpoints(site_id: str, email: str) -> List[Endpoint]:
    return [
        (f"/resources/travelideas/{site_id}", {"clientEmail": email}),
        (f"/resources/ideas/{site_id}", {"email": email}),
        (f"/resources/travelidea/{site_id}", {"client": email}),
    ]


_USER_LIST_KEYS: Dict[RecordType, Tuple[str, ...]] = {
    RecordType.BOOKING: ("booking", "bookings"),
    RecordType.IDEA: ("travelIdea", "ideas", "travelideas"),
}


def _listed_records(payload: Any, keys: Sequence[str]) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list) and value:
                return [item for item in value if isinstance(item, dict)]
    return []


def _looks_like_booking(payload: Any) -> bool:
    return isinstance(payload, dict) and any(payload.get(key) for key in _BOOKING_ID_FIELDS)


def _is_object(payload: Any) -> bool:
    return isinstance(payload, dict) and bool(payload)


def check_permission(record_type: RecordType, raw: Mapping[str, Any], request: ImportRequest) -> bool:
    """Decide whether the requesting user may import ``raw``.

    Requests without a role come from trusted internal callers.
    """
    role = (request.user_role or "").strip().lower()
    if not role:
        return True
    if role in PRIVILEGED_ROLES:
        return True
    if role != AGENT_ROLE or not request.user_email:
        return False
    if record_type is RecordType.PACKAGE:
        return True
    owner = first_value(raw, _OWNER_PATHS[record_type])
    if not isinstance(owner, str):
        return False
    return owner.strip().casefold() == request.user_email.strip().casefold()


def _describe(endpoint: Endpoint) -> str:
    path, params = endpoint
    if not params:
        return path
    return f"{path}?{httpx.QueryParams(params)}"


class UniversalImporter:
    """Fetches one record straight from the platform, trying each candidate account in turn."""

    def __init__(
        self,
        registry: AccountRegistry,
        tokens: SessionTokenManager,
        client: PlatformClient,
        *,
        language: str = "nl",
    ) -> None:
        self.registry = registry
        self.tokens = tokens
        self.client = client
        self.language = language

    async def import_record(self, request: ImportRequest) -> ImportResult:
        try:
            record_type = RecordType(request.type)
        except ValueError:
            return self._failed(request, FAILURE_INVALID, f"Unknown record type '{request.type}'")

        if request.account_hint:
            account = self.registry.find(request.account_hint)
            if account is None:
                return self._failed(
                    request,
                    FAILURE_INVALID,
                    f"Account '{request.account_hint}' is not configured",
                )
            candidates: Sequence[AccountConfig] = (account,)
        else:
            candidates = tuple(self.registry)

        logger.info(
            "Importing %s %s across %s account(s)",
            record_type.value,
            request.id,
            len(candidates),
        )
        attempts: List[ImportAttempt] = []
        for account in candidates:
            outcome, raw, method, detail = await self._try_account(record_type, request.id, account)
            attempts.append(ImportAttempt(account_id=account.account_id, outcome=outcome, detail=detail))
            if outcome != OUTCOME_FOUND or raw is None:
                logger.info("%s %s not retrieved from %s: %s", record_type.value, request.id, account.account_id, detail)
                continue

            if not check_permission(record_type, raw, request):
                logger.warning(
                    "Import of %s %s refused for %s (%s)",
                    record_type.value,
                    request.id,
                    request.user_email,
                    request.user_role,
                )
                return ImportResult(
                    request=request,
                    success=False,
                    account_id=account.account_id,
                    failure=ImportFailure(
                        kind=FAILURE_FORBIDDEN,
                        message=f"Not permitted to import {record_type.value} {request.id}",
                    ),
                    attempts=attempts,
                )

            record = self._normalize(record_type, raw, request.id)
            logger.info("Imported %s %s from account %s", record_type.value, request.id, account.account_id)
            return ImportResult(
                request=request,
                success=True,
                record=record,
                account_id=account.account_id,
                method=method,
                attempts=attempts,
            )

        return self._exhausted(request, record_type, attempts)

    async def batch_import(self, requests: Sequence[ImportRequest]) -> List[ImportResult]:
        logger.info("Starting batch import of %s items", len(requests))
        results: List[ImportResult] = []
        for request in requests:
            try:
                result = await self.import_record(request)
            except Exception as exc:
                logger.exception("Import of %s %s failed unexpectedly", request.type, request.id)
                result = self._failed(request, FAILURE_UNAVAILABLE, f"{type(exc).__name__}: {exc}")
            results.append(result)
        succeeded = sum(1 for result in results if result.success)
        logger.info("Batch import finished: %s/%s succeeded", succeeded, len(results))
        return results

    async def user_records(
        self,
        account_id: str,
        email: str,
        record_type: RecordType | str = RecordType.BOOKING,
    ) -> UserRecords:
        """List the bookings or travel ideas one account holds for ``email``.

        The first endpoint variant that returns a non-empty list wins. Records
        come back in canonical form.
        """
        record_type = RecordType(record_type)
        if record_type is RecordType.PACKAGE:
            raise ValueError("Holiday packages are not listed per user")
        account = self.registry.get(account_id)
        try:
            token = await self.tokens.acquire(account.account_id)
        except AuthenticationError as exc:
            logger.warning("Cannot list %s records for %s: %s", record_type.value, email, exc)
            return UserRecords(account.account_id, email, record_type, OUTCOME_UNAVAILABLE, detail=str(exc))

        site_id = account.remote_site_id or ""
        if record_type is RecordType.BOOKING:
            endpoints = user_booking_endpoints(site_id, email)
        else:
            endpoints = user_idea_endpoints(site_id, email)

        checked = False
        notes: List[str] = []
        for endpoint in endpoints:
            path, params = endpoint
            try:
                response = await self.client.request("GET", path, token=token, params=params)
            except httpx.HTTPError as exc:
                notes.append(f"{path}: transport error {type(exc).__name__}")
                continue
            if not response.is_success:
                if self._status_outcome(account.account_id, path, response.status_code) == OUTCOME_ABSENT:
                    checked = True
                notes.append(f"{path}: HTTP {response.status_code}")
                continue
            try:
                payload = response.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                notes.append(f"{path}: unreadable body")
                continue
            checked = True
            raw_records = _listed_records(payload, _USER_LIST_KEYS[record_type])
            if not raw_records:
                notes.append(f"{path}: empty list")
                continue
            records = [self._normalize(record_type, raw, str(raw.get("id") or "")) for raw in raw_records]
            logger.info(
                "Found %s %s records for %s in account %s",
                len(records),
                record_type.value,
                email,
                account.account_id,
            )
            return UserRecords(
                account.account_id,
                email,
                record_type,
                OUTCOME_FOUND,
                records=records,
                endpoint=_describe(endpoint),
                detail=f"{path}: HTTP {response.status_code}",
            )

        outcome = OUTCOME_ABSENT if checked else OUTCOME_UNAVAILABLE
        logger.info("No %s records for %s in account %s (%s)", record_type.value, email, account.account_id, outcome)
        return UserRecords(account.account_id, email, record_type, outcome, detail="; ".join(notes[-3:]))

    async def _try_account(
        self,
        record_type: RecordType,
        record_id: str,
        account: AccountConfig,
    ) -> Tuple[str, Optional[Dict[str, Any]], Optional[str], str]:
        try:
            token = await self.tokens.acquire(account.account_id)
        except AuthenticationError as exc:
            return OUTCOME_UNAVAILABLE, None, None, str(exc)

        site_id = account.remote_site_id or ""
        if record_type is RecordType.BOOKING:
            endpoints = booking_endpoints(site_id, record_id)
            accept: Acceptor = _looks_like_booking
        elif record_type is RecordType.IDEA:
            endpoints = idea_endpoints(site_id, record_id, self.language)
            accept = _is_object
        else:
            endpoints = package_endpoints(site_id, record_id, self.language)
            accept = _is_object

        checked = False
        notes: List[str] = []
        for endpoint in endpoints:
            outcome, payload, note = await self._probe(account.account_id, endpoint, token, accept)
            if outcome == OUTCOME_FOUND:
                return OUTCOME_FOUND, payload, f"direct {record_type.value} lookup via {_describe(endpoint)}", note
            if outcome == OUTCOME_ABSENT:
                checked = True
            notes.append(note)
        summary = "; ".join(notes[-3:])
        if checked:
            return OUTCOME_ABSENT, None, None, summary
        return OUTCOME_UNAVAILABLE, None, None, summary

    async def _probe(
        self,
        account_id: str,
        endpoint: Endpoint,
        token: str,
        accept: Acceptor,
    ) -> Tuple[str, Any, str]:
        path, params = endpoint
        try:
            response = await self.client.request("GET", path, token=token, params=params)
        except httpx.HTTPError as exc:
            return OUTCOME_UNAVAILABLE, None, f"{path}: transport error {type(exc).__name__}"

        status = response.status_code
        if not response.is_success:
            return self._status_outcome(account_id, path, status), None, f"{path}: HTTP {status}"
        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return OUTCOME_UNAVAILABLE, None, f"{path}: unreadable body"
        if accept(payload):
            return OUTCOME_FOUND, payload, f"{path}: HTTP {status}"
        return OUTCOME_ABSENT, None, f"{path}: no record in response"

    def _status_outcome(self, account_id: str, path: str, status: int) -> str:
        if status == 401:
            logger.info("Token for account %s rejected by %s; dropping it", account_id, path)
            self.tokens.invalidate(account_id)
        return OUTCOME_ABSENT if status in _ABSENT_STATUSES else OUTCOME_UNAVAILABLE

    @staticmethod
    def _normalize(record_type: RecordType, raw: Dict[str, Any], record_id: str) -> Dict[str, Any]:
        if record_type is RecordType.BOOKING:
            return normalize_booking(raw, record_id).to_dict()
        if record_type is RecordType.IDEA:
            return normalize_idea(raw, record_id).to_dict()
        return normalize_package(raw, record_id).to_dict()

    @staticmethod
    def _failed(request: ImportRequest, kind: str, message: str) -> ImportResult:
        return ImportResult(request=request, success=False, failure=ImportFailure(kind=kind, message=message))

    @staticmethod
    def _exhausted(
        request: ImportRequest,
        record_type: RecordType,
        attempts: List[ImportAttempt],
    ) -> ImportResult:
        tried = ", ".join(attempt.account_id for attempt in attempts) or "none"
        if any(attempt.outcome == OUTCOME_ABSENT for attempt in attempts):
            unreachable = [a.account_id for a in attempts if a.outcome == OUTCOME_UNAVAILABLE]
            message = f"{record_type.value} {request.id} not found in accounts: {tried}"
            if unreachable:
                message += f" (unreachable: {', '.join(unreachable)})"
            failure = ImportFailure(kind=FAILURE_NOT_FOUND, message=message)
        else:
            failure = ImportFailure(
                kind=FAILURE_UNAVAILABLE,
                message=f"{record_type.value} {request.id} could not be checked; no account reachable ({tried})",
            )
        logger.warning("Import failed (%s): %s", failure.kind, failure.message)
        return ImportResult(request=request, success=False, failure=failure, attempts=attempts)

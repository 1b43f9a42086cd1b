"""Per-account session token management."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from booking_bridge.accounts import AccountConfig, AccountRegistry
from booking_bridge.errors import AuthenticationError, PlatformResponseError
from booking_bridge.services.platform_client import AUTH_PATH, PlatformClient

logger = logging.getLogger(__name__)

_TTL_KEYS = ("expirationInSeconds", "ttlSeconds", "expiresIn")


@dataclass(frozen=True)
class SessionToken:
    """A bearer token and the monotonic time at which the platform expires it."""

    account_id: str
    token: str
    expires_at: float

    def usable_until(self, safety_margin: float) -> float:
        return self.expires_at - safety_margin

    def is_usable(self, now: float, safety_margin: float) -> bool:
        return now < self.usable_until(safety_margin)


def _ttl_from_payload(payload: Dict[str, Any], default: float) -> float:
    for key in _TTL_KEYS:
        value = payload.get(key)
        if value is None:
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.debug("Ignoring non-numeric token lifetime %r=%r", key, value)
    return default


class SessionTokenManager:
    """Authenticates accounts on demand and caches their tokens until shortly before expiry."""

    def __init__(
        self,
        registry: AccountRegistry,
        client: PlatformClient,
        *,
        safety_margin: float = 60.0,
        default_ttl: float = 7200.0,
    ) -> None:
        self.registry = registry
        self.client = client
        self.safety_margin = safety_margin
        self.default_ttl = default_ttl
        self._tokens: Dict[str, SessionToken] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.login_count = 0

    def cached(self, account_id: str) -> Optional[SessionToken]:
        return self._tokens.get(account_id)

    def invalidate(self, account_id: Optional[str] = None) -> None:
        if account_id is None:
            self._tokens.clear()
        else:
            self._tokens.pop(account_id, None)

    async def acquire(self, account_id: str) -> str:
        account = self.registry.get(account_id)
        token = self._valid_token(account_id)
        if token is not None:
            return token.token

        lock = self._locks.setdefault(account_id, asyncio.Lock())
        async with lock:
            # Another caller may have logged in while we waited.
            token = self._valid_token(account_id)
            if token is not None:
                return token.token
            token = await self._login(account)
            self._tokens[account_id] = token
            return token.token

    def _valid_token(self, account_id: str) -> Optional[SessionToken]:
        token = self._tokens.get(account_id)
        if token and token.is_usable(time.monotonic(), self.safety_margin):
            return token
        return None

    async def _login(self, account: AccountConfig) -> SessionToken:
        logger.info("Authenticating account %s (%s)", account.account_id, account.label)
        payload = {
            "username": account.login_id,
            "password": account.secret,
            "micrositeId": account.remote_site_id,
        }
        self.login_count += 1
        try:
            data = await self.client.post_json(AUTH_PATH, payload)
        except PlatformResponseError as exc:
            raise AuthenticationError(
                account.account_id, f"HTTP {exc.status}: {exc.body[:128]}", status=exc.status
            ) from exc
        except httpx.HTTPError as exc:
            raise AuthenticationError(account.account_id, f"transport error: {exc}") from exc

        if not isinstance(data, dict) or not data.get("token"):
            raise AuthenticationError(account.account_id, "no token in authentication response")

        ttl = _ttl_from_payload(data, self.default_ttl)
        token = SessionToken(
            account_id=account.account_id,
            token=str(data["token"]),
            expires_at=time.monotonic() + ttl,
        )
        logger.info("Authenticated account %s; token valid for %.0fs", account.account_id, ttl)
        return token

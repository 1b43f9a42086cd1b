"""Async HTTP client for the booking platform."""
from __future__ import annotations

import json
import logging
import secrets
import time
from typing import Any, Dict, Mapping, Optional

import httpx

from booking_bridge.errors import PlatformResponseError

logger = logging.getLogger(__name__)

AUTH_PATH = "/resources/authentication/authenticate"


def _trace_id() -> str:
    return f"BB-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class PlatformClient:
    """Thin wrapper around ``httpx.AsyncClient`` carrying the platform's default headers."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 20.0,
        user_agent: str = "booking-bridge/0.1.0",
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.trace_id = _trace_id()
        default_headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Accept-Encoding": "gzip",
            "User-Agent": user_agent,
            "Travelc-Trace-Id": self.trace_id,
        }
        if headers:
            default_headers.update(headers)
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=default_headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "PlatformClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> httpx.Response:
        headers = {"auth-token": token} if token else None
        logger.debug("%s %s params=%s", method, path, dict(params) if params else None)
        return await self._client.request(method, path, params=params, json=json_body, headers=headers)

    async def get_json(
        self,
        path: str,
        *,
        token: Optional[str] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        response = await self.request("GET", path, token=token, params=params)
        return self._decode(response)

    async def post_json(self, path: str, payload: Any, *, token: Optional[str] = None) -> Any:
        response = await self.request("POST", path, token=token, json_body=payload)
        return self._decode(response)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        url = str(response.request.url)
        if not response.is_success:
            raise PlatformResponseError(url, response.status_code, response.text[:512])
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise PlatformResponseError(url, response.status_code, response.text[:512]) from exc

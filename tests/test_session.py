from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest

from booking_bridge.accounts import AccountRegistry
from booking_bridge.auth.session import SessionTokenManager
from booking_bridge.errors import AuthenticationError
from booking_bridge.services.platform_client import AUTH_PATH, PlatformClient


def _registry(*account_ids: str) -> AccountRegistry:
    return AccountRegistry.from_entries(
        [
            {"id": account_id, "login_id": f"user-{account_id}", "secret": "pw", "site_id": f"site-{account_id}"}
            for account_id in account_ids
        ]
    )


class _AuthServer:
    def __init__(self, responses: list[httpx.Response] | None = None, delay: float = 0.0) -> None:
        self.responses = list(responses or [])
        self.delay = delay
        self.bodies: list[dict[str, object]] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.url.path == AUTH_PATH
        body = json.loads(request.content)
        self.bodies.append(body)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(
            200,
            json={"token": f"token-{body['micrositeId']}-{len(self.bodies)}", "expirationInSeconds": 7200},
        )


def _manager(server: _AuthServer, *account_ids: str) -> SessionTokenManager:
    client = PlatformClient(base_url="https://platform.test", transport=httpx.MockTransport(server))
    return SessionTokenManager(_registry(*account_ids), client)


@pytest.mark.asyncio
async def test_cached_token_is_reused_without_network() -> None:
    server = _AuthServer()
    manager = _manager(server, "a")

    first = await manager.acquire("a")
    second = await manager.acquire("a")

    assert first == second
    assert manager.login_count == 1
    assert server.bodies == [{"username": "user-a", "password": "pw", "micrositeId": "site-a"}]


@pytest.mark.asyncio
async def test_concurrent_acquire_shares_one_login() -> None:
    server = _AuthServer(delay=0.05)
    manager = _manager(server, "a")

    tokens = await asyncio.gather(*(manager.acquire("a") for _ in range(5)))

    assert len(set(tokens)) == 1
    assert len(server.bodies) == 1


@pytest.mark.asyncio
async def test_different_accounts_log_in_independently() -> None:
    server = _AuthServer(delay=0.02)
    manager = _manager(server, "a", "b")

    token_a, token_b = await asyncio.gather(manager.acquire("a"), manager.acquire("b"))

    assert token_a != token_b
    assert sorted(body["micrositeId"] for body in server.bodies) == ["site-a", "site-b"]


@pytest.mark.asyncio
async def test_token_inside_safety_margin_is_renewed() -> None:
    server = _AuthServer(
        [
            httpx.Response(200, json={"token": "short", "expirationInSeconds": 30}),
            httpx.Response(200, json={"token": "long", "expirationInSeconds": 7200}),
        ]
    )
    manager = _manager(server, "a")

    assert await manager.acquire("a") == "short"
    assert await manager.acquire("a") == "long"
    assert await manager.acquire("a") == "long"
    assert manager.login_count == 2


@pytest.mark.asyncio
async def test_missing_lifetime_uses_default_ttl() -> None:
    server = _AuthServer([httpx.Response(200, json={"token": "abc"})])
    manager = _manager(server, "a")

    await manager.acquire("a")
    cached = manager.cached("a")

    assert cached is not None
    remaining = cached.expires_at - time.monotonic()
    assert 7100 < remaining <= 7200


@pytest.mark.asyncio
async def test_rejected_credentials_raise_authentication_error() -> None:
    server = _AuthServer([httpx.Response(401, text="bad credentials")])
    manager = _manager(server, "a")

    with pytest.raises(AuthenticationError) as excinfo:
        await manager.acquire("a")

    assert excinfo.value.account_id == "a"
    assert excinfo.value.status == 401
    assert manager.cached("a") is None


@pytest.mark.asyncio
async def test_response_without_token_raises() -> None:
    server = _AuthServer([httpx.Response(200, json={"expirationInSeconds": 7200})])
    manager = _manager(server, "a")

    with pytest.raises(AuthenticationError):
        await manager.acquire("a")


@pytest.mark.asyncio
async def test_transport_error_raises_authentication_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    client = PlatformClient(base_url="https://platform.test", transport=httpx.MockTransport(handler))
    manager = SessionTokenManager(_registry("a"), client)

    with pytest.raises(AuthenticationError):
        await manager.acquire("a")


@pytest.mark.asyncio
async def test_invalidate_forces_new_login() -> None:
    server = _AuthServer()
    manager = _manager(server, "a")

    await manager.acquire("a")
    manager.invalidate("a")
    await manager.acquire("a")

    assert manager.login_count == 2

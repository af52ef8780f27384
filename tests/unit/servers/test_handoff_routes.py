"""Tests for the hand-off HTTP endpoints."""

from __future__ import annotations

from typing import AsyncIterator
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from easyroom.auth_sync.clock import ManualClock
from easyroom.auth_sync.config import AuthSyncSettings, RedirectionConfig
from easyroom.auth_sync.state_store import RETURN_URL_KEY
from easyroom.auth_sync.store import MemoryStorage
from easyroom.auth_sync.system import OptimizedAuthSystem, build_auth_system
from easyroom.auth_sync.timer import ManualTimer
from easyroom.servers.correlation import HEADER_NAME
from easyroom.servers.handoff import build_handoff_app

BASE_URL = "https://app.example.com"


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def system(storage: MemoryStorage) -> OptimizedAuthSystem:
    clock = ManualClock()
    return build_auth_system(
        AuthSyncSettings(redirection=RedirectionConfig(base_url=BASE_URL)),
        storage=storage,
        navigate=lambda url: None,
        timer=ManualTimer(clock),
        clock=clock,
    )


@pytest.fixture
async def client(system: OptimizedAuthSystem) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=build_handoff_app(system))
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as ac:
        yield ac


# --------------------------------------------------------------------------- #
# Tests                                                                       #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_start_html_accept_redirects(client: httpx.AsyncClient, storage: MemoryStorage):
    resp = await client.get("/auth/google/start", headers={"Accept": "text/html"})

    assert resp.status_code == 303
    location = resp.headers["location"]
    assert location.startswith(f"{BASE_URL}/auth/google?")
    assert parse_qs(urlsplit(location).query)["return_url"] == [storage.get_item(RETURN_URL_KEY)]


@pytest.mark.anyio
async def test_start_json_accept_returns_json(client: httpx.AsyncClient):
    resp = await client.get(
        "/auth/kakao/start",
        params={"return_url": f"{BASE_URL}/rooms/7"},
        headers={"Accept": "application/json"},
    )

    assert resp.status_code == 200
    auth_url = resp.json()["auth_url"]
    assert parse_qs(urlsplit(auth_url).query) == {"return_url": [f"{BASE_URL}/rooms/7"]}


@pytest.mark.anyio
async def test_format_param_overrides_accept(client: httpx.AsyncClient):
    resp = await client.get("/auth/google/start?format=json", headers={"Accept": "text/html"})
    assert resp.status_code == 200
    assert "auth_url" in resp.json()

    resp = await client.get(
        "/auth/google/start?format=redirect", headers={"Accept": "application/json"}
    )
    assert resp.status_code == 303


@pytest.mark.anyio
async def test_start_with_bad_base_url_is_400():
    clock = ManualClock()
    system = build_auth_system(
        AuthSyncSettings(redirection=RedirectionConfig(base_url="not-absolute")),
        storage=MemoryStorage(),
        navigate=lambda url: None,
        timer=ManualTimer(clock),
        clock=clock,
    )
    transport = httpx.ASGITransport(app=build_handoff_app(system))
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as ac:
        resp = await ac.get("/auth/google/start")

    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "redirection_failed"
    assert body["provider"] == "google"


@pytest.mark.anyio
async def test_verified_success_persists_state(client: httpx.AsyncClient, system: OptimizedAuthSystem):
    resp = await client.get(
        "/auth/callback/verified",
        params={"success": "true", "user_id": "u1", "session_token": "t1"},
    )

    assert resp.status_code == 200
    assert "Authentication successful" in resp.text
    assert "window.close(); }, 2000)" in resp.text
    assert "t1" not in resp.text
    assert system.current_user_id() == "u1"
    assert system.get_stored_auth_result().success is True


@pytest.mark.anyio
async def test_verified_failure_page(client: httpx.AsyncClient, system: OptimizedAuthSystem):
    resp = await client.get(
        "/auth/callback/verified", params={"success": "false", "error": "<denied>"}
    )

    assert resp.status_code == 400
    assert "&lt;denied&gt;" in resp.text
    assert system.get_auth_state().status == "unauthenticated"


@pytest.mark.anyio
async def test_verified_bare_return_url_keeps_login(
    client: httpx.AsyncClient, system: OptimizedAuthSystem
):
    system.complete_auth("u1", "t1", source="external_app")

    resp = await client.get(
        "/auth/callback/verified", params={"t": "1", "source": "external_app"}
    )

    assert resp.status_code == 200
    assert "Authentication successful" in resp.text
    assert system.is_authenticated()
    assert system.current_session_token() == "t1"


@pytest.mark.anyio
async def test_status_and_logout(client: httpx.AsyncClient, system: OptimizedAuthSystem):
    system.complete_auth("u1", "secret-token")

    resp = await client.get("/auth/status")
    body = resp.json()
    assert body["status"] == "authenticated"
    assert body["user_id"] == "u1"
    assert body["health"] == "healthy"
    assert "secret-token" not in resp.text

    resp = await client.post("/auth/logout")
    assert resp.status_code == 204
    assert system.get_auth_state() is None

    resp = await client.get("/auth/status")
    assert resp.json()["status"] is None


@pytest.mark.anyio
async def test_correlation_id_is_echoed(client: httpx.AsyncClient):
    resp = await client.get("/auth/status", headers={HEADER_NAME: "abc123"})
    assert resp.headers[HEADER_NAME] == "abc123"

    resp = await client.get("/auth/status")
    assert len(resp.headers[HEADER_NAME]) == 32

"""HTTP session lookup used as the polling check.

Asks the backend ``GET /api/auth/verify-session`` whether the browser-side
session cookie now maps to a live session.  The endpoint answers::

    200 {"success": true,  "hasSession": true,  "userId": "...", ...}
    401 {"success": false, "hasSession": false, "error": "..."}

A definitive "no session" (401, or ``hasSession: false``) raises
:class:`~easyroom.auth_sync.errors.SessionMissingError`, which the scheduler
counts towards its fail-fast limit.  Transport errors and any other status
raise :class:`~easyroom.auth_sync.errors.SessionLookupError` and are retried
on the normal backoff.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from easyroom.auth_sync.clock import Clock, default_clock, now_ms
from easyroom.auth_sync.errors import SessionLookupError, SessionMissingError
from easyroom.auth_sync.log_utils import get_sync_logger
from easyroom.auth_sync.models import AuthState

DEFAULT_VERIFY_PATH = "/api/auth/verify-session"

_NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


class HttpSessionLookup:
    """Async callable returning an authenticated :class:`AuthState`."""

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
        clock: Clock = default_clock,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self.url = url
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._clock = clock
        self._log = logger or get_sync_logger(component="session_lookup")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __call__(self) -> AuthState | None:
        try:
            resp = await self._get_client().get(self.url, headers=_NO_CACHE_HEADERS)
        except httpx.HTTPError as exc:
            raise SessionLookupError(f"Session lookup request failed: {exc}") from exc

        data = self._json(resp)
        if resp.status_code == 401 or data.get("hasSession") is False:
            raise SessionMissingError(str(data.get("error") or "No active session"))
        if resp.status_code != 200:
            raise SessionLookupError(
                f"Session lookup returned {resp.status_code}: {resp.text[:200]}"
            )
        if not data.get("success"):
            self._log.debug("Session present but not yet usable")
            return None

        debug = data.get("debug") if isinstance(data.get("debug"), dict) else {}
        user_id = data.get("userId") or debug.get("sessionId")
        token = data.get("sessionToken")
        self._log.debug("Session found for user=%s", user_id)
        return AuthState(
            status="authenticated",
            timestamp=now_ms(self._clock),
            source="internal",
            user_id=str(user_id) if user_id else None,
            session_token=str(token) if token else None,
        )

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

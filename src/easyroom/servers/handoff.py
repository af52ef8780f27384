"""Browser-facing hand-off endpoints for the auth sync engine.

Handlers are intentionally thin:

1. Parse HTTP-layer parameters.
2. Delegate to the :class:`~easyroom.auth_sync.system.OptimizedAuthSystem`
   stored on ``app.state.auth_system``.
3. Return an appropriate Starlette ``Response`` type.

Routes (``base_path`` defaults to ``/auth``)::

    GET  {base}/{provider}/start      303 to the provider, or JSON
    GET  {base}/callback/verified     accept the hand-off, small HTML page
    GET  {base}/status                JSON snapshot (no tokens)
    POST {base}/logout                204

SECURITY NOTE
-------------
Session tokens are never logged or echoed back; correlation IDs, when
present in ``request.state.correlation_id``, are included in INFO logs.
"""

from __future__ import annotations

import html
import logging

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from easyroom.auth_sync.errors import RedirectionError
from easyroom.auth_sync.system import OptimizedAuthSystem
from easyroom.servers.correlation import CorrelationIdMiddleware

_LOG = logging.getLogger("easyroom.servers.handoff")


def _html_page(
    title: str, body: str, status: int = 200, *, close_after_ms: int | None = None
) -> HTMLResponse:
    """Return a tiny success / error HTML page, optionally closing itself."""
    script = ""
    if close_after_ms is not None:
        script = f"<script>setTimeout(function () {{ window.close(); }}, {int(close_after_ms)});</script>"
    content = (
        "<!doctype html><html lang='en'>"
        "<head><meta charset='utf-8'><title>"
        f"{html.escape(title)}</title></head><body><h1>{html.escape(title)}</h1>"
        f"<p>{html.escape(body)}</p>{script}</body></html>"
    )
    return HTMLResponse(content, status_code=status)


def _system(request: Request) -> OptimizedAuthSystem:
    return request.app.state.auth_system


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "-")


# ----- GET /auth/{provider}/start ------------------------------------------ #
async def _start(request: Request) -> Response:
    provider = request.path_params["provider"]
    return_url = request.query_params.get("return_url")
    system = _system(request)

    try:
        auth_url = system.redirection.prepare_redirect(provider, return_url)
    except ValueError as exc:
        err = RedirectionError(
            provider=provider,
            message=f"Failed to redirect to {provider} authentication: {exc}",
        )
        return JSONResponse(err.to_payload(), status_code=400)

    _LOG.info("Hand-off start provider=%s correlation_id=%s", provider, _correlation_id(request))

    # Content negotiation + explicit override for browser vs API clients
    fmt_param = request.query_params.get("format")
    accept_header = (request.headers.get("accept") or "").lower()
    if fmt_param == "json":
        return JSONResponse({"auth_url": auth_url})
    if fmt_param == "redirect" or "text/html" in accept_header:
        return RedirectResponse(auth_url, status_code=303)
    return JSONResponse({"auth_url": auth_url})


# ----- GET /auth/callback/verified ----------------------------------------- #
async def _verified(request: Request) -> Response:
    system = _system(request)
    result = system.complete_handoff(str(request.url))
    _LOG.info(
        "Hand-off landed success=%s correlation_id=%s",
        result.success,
        _correlation_id(request),
    )
    if result.success:
        return _html_page(
            "Authentication successful",
            "You may close this window.",
            close_after_ms=system.redirection.config.auto_redirect_delay_ms,
        )
    return _html_page("Authentication failed", result.error or "Unknown error", 400)


# ----- GET /auth/status ---------------------------------------------------- #
async def _status(request: Request) -> Response:
    system = _system(request)
    state = system.get_auth_state()
    return JSONResponse(
        {
            "status": state.status if state is not None else None,
            "user_id": state.user_id if state is not None else None,
            "source": state.source if state is not None else None,
            "polling_active": system.manager.is_polling,
            "polling_exhausted": system.polling_exhausted,
            "health": system.manager.health.health_status().status,
        }
    )


# ----- POST /auth/logout --------------------------------------------------- #
async def _logout(request: Request) -> Response:
    _system(request).logout()
    _LOG.info("Logged out correlation_id=%s", _correlation_id(request))
    return Response(status_code=204)


def handoff_routes(base_path: str = "/auth") -> list[Route]:
    base = base_path.rstrip("/")
    return [
        Route(f"{base}/callback/verified", _verified, methods=["GET"]),
        Route(f"{base}/status", _status, methods=["GET"]),
        Route(f"{base}/logout", _logout, methods=["POST"]),
        Route(f"{base}/{{provider}}/start", _start, methods=["GET"]),
    ]


def build_handoff_app(system: OptimizedAuthSystem, *, base_path: str = "/auth") -> Starlette:
    """Return a Starlette app serving the hand-off endpoints for *system*."""
    app = Starlette(
        routes=handoff_routes(base_path),
        middleware=[Middleware(CorrelationIdMiddleware)],
    )
    app.state.auth_system = system
    return app

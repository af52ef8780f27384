"""Cross-window hand-off to and from an external authentication surface.

Protocol (all values travel as query parameters)::

    outgoing   <base>/auth/<provider>?return_url=<url-encoded return URL>
    return     <base><verified_page_path>?t=<epoch ms>&source=external_app
    landing    <base><verified_page_path>?success=..&user_id=..&session_token=..&error=..

``t`` only defeats intermediate caches.  The pending return URL and the last
:class:`~easyroom.auth_sync.models.AuthResult` are kept in shared storage so a
context that reloads mid-flow can still find them.

:meth:`RedirectionHandler.redirect_to_auth` is the one operation of the engine
that raises: it runs in direct response to a user action, and the caller is
expected to show the :class:`~easyroom.auth_sync.errors.RedirectionError`.
Everything else logs and carries on.
"""

from __future__ import annotations

import logging
import webbrowser
from typing import Callable
from urllib.parse import parse_qs, urlencode, urljoin, urlsplit

from easyroom.auth_sync.clock import Clock, default_clock, now_ms
from easyroom.auth_sync.config import RedirectionConfig
from easyroom.auth_sync.errors import CorruptedDataError, RedirectionError
from easyroom.auth_sync.log_utils import get_sync_logger, mask_sensitive
from easyroom.auth_sync.manager import AuthStateManager
from easyroom.auth_sync.models import AuthResult, AuthReturnData, AuthState
from easyroom.auth_sync.state_store import AUTH_RESULT_KEY, RETURN_URL_KEY

Navigator = Callable[[str], object]


def _require_absolute(url: str) -> None:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"not an absolute URL: {url!r}")


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    return values[0] if values else None


class RedirectionHandler:
    """Build, parse and act on hand-off URLs."""

    def __init__(
        self,
        manager: AuthStateManager,
        *,
        config: RedirectionConfig | None = None,
        navigate: Navigator = webbrowser.open,
        clock: Clock = default_clock,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self.manager = manager
        self.config = config or RedirectionConfig()
        self._navigate = navigate
        self._clock = clock
        self._log = logger or get_sync_logger(component="redirection")

    @property
    def _store(self):
        return self.manager.store

    # ------------------------------------------------------------------ #
    # Outgoing                                                           #
    # ------------------------------------------------------------------ #
    def redirect_to_auth(self, provider: str, return_url: str | None = None) -> None:
        """Remember where to come back to and navigate to *provider*.

        Raises
        ------
        RedirectionError
            If any URL cannot be built or the navigation itself fails.
        """
        try:
            self._log.info("Redirecting to %s auth", provider)
            self._navigate(self.prepare_redirect(provider, return_url))
        except Exception as exc:
            self._log.error("Failed to redirect to %s auth: %s", provider, exc)
            raise RedirectionError(
                provider=provider,
                message=f"Failed to redirect to {provider} authentication: {exc}",
            ) from exc

    def prepare_redirect(self, provider: str, return_url: str | None = None) -> str:
        """Persist the return URL and return the provider URL without navigating.

        Raises ``ValueError`` when either URL cannot be built.
        """
        final_return_url = return_url or self.build_return_url(self.config.base_url)
        self._log.debug("Return URL: %s", final_return_url)
        auth_url = self.build_auth_provider_url(provider, final_return_url)
        self._store.write_text(RETURN_URL_KEY, final_return_url)
        return auth_url

    def build_return_url(self, base_url: str) -> str:
        """``<base_url><verified_page_path>?t=<now>&source=external_app``."""
        _require_absolute(base_url)
        url = urljoin(base_url, self.config.verified_page_path)
        query = urlencode({"t": str(now_ms(self._clock)), "source": "external_app"})
        return f"{url}?{query}"

    def build_auth_provider_url(self, provider: str, return_url: str) -> str:
        name = (provider or "").strip()
        if not name:
            raise ValueError("provider is required")
        _require_absolute(self.config.base_url)
        path = self.config.provider_paths.get(name.lower(), f"/auth/{name.lower()}")
        base = urljoin(self.config.base_url, path)
        return f"{base}?{urlencode({'return_url': return_url})}"

    # ------------------------------------------------------------------ #
    # Incoming                                                           #
    # ------------------------------------------------------------------ #
    def parse_return_url(self, url: str) -> AuthReturnData:
        """Extract hand-off parameters from *url*; never raises."""
        try:
            params = parse_qs(urlsplit(url).query)
            return AuthReturnData(
                success=_first(params, "success") == "true",
                user_id=_first(params, "user_id"),
                session_token=_first(params, "session_token"),
                error=_first(params, "error"),
            )
        except Exception as exc:
            self._log.error("Failed to parse return URL: %s", exc)
            return AuthReturnData(success=False, error=f"Failed to parse return URL: {exc}")

    def handle_auth_return(self, result: AuthResult) -> None:
        """Persist *result* and navigate to the verified landing page."""
        try:
            self._log.info("Handling auth return: success=%s", result.success)
            self._persist_result(result)
            self._redirect_to_verified_page(result)
        except Exception as exc:
            self._log.error("Failed to handle auth return: %s", exc)
            if not self.config.fallback_enabled:
                return
            fallback = AuthResult(
                success=False,
                timestamp=now_ms(self._clock),
                error=f"Failed to process authentication result: {exc}",
            )
            try:
                self._persist_result(fallback)
                self._redirect_to_verified_page(fallback)
            except Exception as fallback_exc:
                self._log.error("Fallback after failed auth return also failed: %s", fallback_exc)

    def complete_handoff(self, url: str) -> AuthResult:
        """Accept a hand-off on the landing page itself (no further navigation).

        Only an explicit ``success=true`` or ``success=false`` is persisted.
        The bare return URL (``?t=..&source=external_app``) carries no result:
        the external surface has written the state itself, so the current
        state (or the last stored result) is reported and nothing is written.
        """
        if not self._has_result(url):
            self.clear_stored_return_url()
            return self._observed_result()

        data = self.parse_return_url(url)
        result = AuthResult(
            success=data.success,
            timestamp=now_ms(self._clock),
            user_id=data.user_id,
            session_token=data.session_token,
            error=data.error if data.success else (data.error or "Authentication was not completed"),
        )
        self._persist_result(result)
        self.clear_stored_return_url()
        return result

    # ------------------------------------------------------------------ #
    # Stored hand-off data                                               #
    # ------------------------------------------------------------------ #
    def get_stored_auth_result(self) -> AuthResult | None:
        data = self._store.read_json(AUTH_RESULT_KEY)
        if data is None:
            return None
        try:
            return AuthResult.from_dict(data)
        except CorruptedDataError as exc:
            self._log.debug("Ignoring stored auth result: %s", exc)
            return None

    def clear_stored_auth_result(self) -> None:
        self._store.remove(AUTH_RESULT_KEY)

    def get_stored_return_url(self) -> str | None:
        return self._store.read_text(RETURN_URL_KEY)

    def clear_stored_return_url(self) -> None:
        self._store.remove(RETURN_URL_KEY)

    # ---------------- internal helpers --------------------------------- #
    @staticmethod
    def _has_result(url: str) -> bool:
        try:
            return _first(parse_qs(urlsplit(url).query), "success") in ("true", "false")
        except (AttributeError, TypeError, ValueError):
            return False

    def _observed_result(self) -> AuthResult:
        state = self.manager.get_state()
        if state is not None and state.is_authenticated:
            self._log.info("Hand-off landed without a result; session already authenticated")
            return AuthResult(
                success=True,
                timestamp=state.timestamp,
                user_id=state.user_id,
                session_token=state.session_token,
            )
        stored = self.get_stored_auth_result()
        if stored is not None and not stored.success:
            return stored
        self._log.info("Hand-off landed without a result")
        return AuthResult(
            success=False,
            timestamp=now_ms(self._clock),
            error="Authentication was not completed",
        )

    def _persist_result(self, result: AuthResult) -> None:
        if result.success:
            self._log.info(
                "Authentication successful user=%s token=%s",
                result.user_id,
                mask_sensitive(result.session_token),
            )
            state = AuthState(
                status="authenticated",
                timestamp=result.timestamp,
                source="external_app",
                user_id=result.user_id,
                session_token=result.session_token,
            )
        else:
            self._log.warning("Authentication failed: %s", result.error)
            state = AuthState(
                status="unauthenticated",
                timestamp=result.timestamp,
                source="external_app",
                user_id=result.user_id,
            )
        self.manager.set_state(state)
        # late readers (a context that reloads) pick the raw result up here
        self._store.write_json(AUTH_RESULT_KEY, result.to_dict())

    def _verified_page_url(self, result: AuthResult) -> str:
        base = urljoin(self.config.base_url, self.config.verified_page_path)
        params: dict[str, str] = {"success": "true" if result.success else "false"}
        if result.user_id:
            params["user_id"] = result.user_id
        if result.session_token:
            params["session_token"] = result.session_token
        if result.error:
            params["error"] = result.error
        return f"{base}?{urlencode(params)}"

    def _redirect_to_verified_page(self, result: AuthResult) -> None:
        url = self._verified_page_url(result)
        self._log.debug("Redirecting to verified page")
        self._navigate(url)

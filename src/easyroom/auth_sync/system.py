"""OptimizedAuthSystem – small convenience API over manager and redirection.

There is no process-wide instance.  The application's composition root calls
:func:`build_auth_system` once and threads the returned object through
explicitly (constructor arguments, Starlette ``app.state``…); tests simply
build a fresh one.
"""

from __future__ import annotations

from typing import Callable

from easyroom.auth_sync.clock import Clock, default_clock, now_ms
from easyroom.auth_sync.config import AuthSyncSettings, PollingConfig, RedirectionConfig
from easyroom.auth_sync.log_utils import get_sync_logger
from easyroom.auth_sync.manager import AuthStateManager, SessionCheck
from easyroom.auth_sync.migration import MigrationShim
from easyroom.auth_sync.models import AuthResult, AuthReturnData, AuthState, MigrationResult, StateSource
from easyroom.auth_sync.redirection import Navigator, RedirectionHandler
from easyroom.auth_sync.registry import StateListener
from easyroom.auth_sync.session_lookup import HttpSessionLookup
from easyroom.auth_sync.store import KeyValueStorage, default_storage
from easyroom.auth_sync.timer import Timer


class OptimizedAuthSystem:
    def __init__(
        self,
        manager: AuthStateManager,
        redirection: RedirectionHandler,
        *,
        migration: MigrationShim | None = None,
    ) -> None:
        self.manager = manager
        self.redirection = redirection
        self.migration = migration or MigrationShim(manager)

    @property
    def _clock(self) -> Clock:
        return self.manager.clock

    # ---------------- state ------------------------------------------- #
    def get_auth_state(self) -> AuthState | None:
        return self.manager.get_state()

    def set_auth_state(self, state: AuthState) -> bool:
        return self.manager.set_state(state)

    def clear_auth_state(self) -> None:
        self.manager.clear_state()

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        return self.manager.on_state_change(listener)

    def listen_for_auth_success(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Invoke *callback* every time an authenticated state is observed."""

        def _listener(state: AuthState | None) -> None:
            if state is not None and state.is_authenticated:
                callback()

        return self.manager.on_state_change(_listener)

    # ---------------- hand-off ---------------------------------------- #
    def redirect_to_auth(self, provider: str, return_url: str | None = None) -> None:
        self.redirection.redirect_to_auth(provider, return_url)

    def handle_auth_return(self, result: AuthResult) -> None:
        self.redirection.handle_auth_return(result)

    def complete_handoff(self, url: str) -> AuthResult:
        return self.redirection.complete_handoff(url)

    def build_return_url(self, base_url: str | None = None) -> str:
        return self.redirection.build_return_url(base_url or self.redirection.config.base_url)

    def parse_return_url(self, url: str) -> AuthReturnData:
        return self.redirection.parse_return_url(url)

    def get_stored_auth_result(self) -> AuthResult | None:
        return self.redirection.get_stored_auth_result()

    def clear_stored_auth_result(self) -> None:
        self.redirection.clear_stored_auth_result()

    def get_stored_return_url(self) -> str | None:
        return self.redirection.get_stored_return_url()

    def clear_stored_return_url(self) -> None:
        self.redirection.clear_stored_return_url()

    # ---------------- convenience ------------------------------------- #
    def is_authenticated(self) -> bool:
        state = self.get_auth_state()
        return state is not None and state.status == "authenticated"

    def is_pending(self) -> bool:
        state = self.get_auth_state()
        return state is not None and state.status == "pending"

    def current_user_id(self) -> str | None:
        state = self.get_auth_state()
        return state.user_id if state is not None else None

    def current_session_token(self) -> str | None:
        state = self.get_auth_state()
        return state.session_token if state is not None else None

    def set_pending_auth(self, user_id: str | None = None) -> bool:
        return self.set_auth_state(
            AuthState(status="pending", timestamp=now_ms(self._clock), source="internal", user_id=user_id)
        )

    def complete_auth(
        self, user_id: str, session_token: str, source: StateSource = "internal"
    ) -> bool:
        return self.set_auth_state(
            AuthState(
                status="authenticated",
                timestamp=now_ms(self._clock),
                source=source,
                user_id=user_id,
                session_token=session_token,
            )
        )

    def logout(self) -> None:
        self.clear_auth_state()

    def run_migration(self) -> MigrationResult:
        return self.migration.perform_migration()

    @property
    def polling_exhausted(self) -> bool:
        return self.manager.polling_exhausted

    def destroy(self) -> None:
        self.manager.destroy()


def build_auth_system(
    settings: AuthSyncSettings | None = None,
    *,
    storage: KeyValueStorage | None = None,
    navigate: Navigator | None = None,
    session_check: SessionCheck | None = None,
    current_path: Callable[[], str] | None = None,
    timer: Timer | None = None,
    clock: Clock = default_clock,
    polling: PollingConfig | None = None,
    redirection: RedirectionConfig | None = None,
) -> OptimizedAuthSystem:
    """Compose a ready-to-use :class:`OptimizedAuthSystem`.

    *storage* defaults to :func:`~easyroom.auth_sync.store.default_storage`
    under ``settings.storage_dir``; *session_check* defaults to an
    :class:`~easyroom.auth_sync.session_lookup.HttpSessionLookup` when
    ``settings.session_check_url`` is set.
    """
    settings = settings or AuthSyncSettings.from_env()
    log = get_sync_logger(component="system", verbose=settings.verbose)

    if storage is None:
        storage = default_storage(settings.storage_dir)
    if session_check is None and settings.session_check_url:
        session_check = HttpSessionLookup(settings.session_check_url, clock=clock)

    manager = AuthStateManager(
        storage,
        clock=clock,
        timer=timer,
        polling_config=polling or settings.polling,
        grace_period_ms=settings.grace_period_ms,
        session_check=session_check,
        current_path=current_path,
        verbose=settings.verbose,
    )
    handler_kwargs = {} if navigate is None else {"navigate": navigate}
    handler = RedirectionHandler(
        manager,
        config=redirection or settings.redirection,
        clock=clock,
        logger=get_sync_logger(component="redirection", tab_id=manager.tab_id, verbose=settings.verbose),
        **handler_kwargs,
    )
    log.debug("Auth system ready (storage=%s)", type(storage).__name__ if storage else None)
    return OptimizedAuthSystem(manager, handler)

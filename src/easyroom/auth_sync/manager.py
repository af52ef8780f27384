"""AuthStateManager – the single entry point for reading and writing auth state.

The manager composes three parts:

1. :class:`~easyroom.auth_sync.state_store.PersistentStateStore` – envelope
   and staleness policy over the shared storage.
2. :class:`~easyroom.auth_sync.registry.ListenerRegistry` – in-process
   subscribers.
3. A polling scheduler – by default
   :class:`~easyroom.auth_sync.polling.PollingScheduler` – which, while at
   least one listener is registered on an allow-listed path, periodically
   re-reads the store and asks the optional session lookup whether a session
   appeared elsewhere.

Contexts never talk to each other directly: a write in one context is
observed by every other context on its next poll (last writer wins).  None
of ``get_state``, ``set_state``, ``clear_state`` or ``on_state_change`` raises.

Swapping the change-detection strategy
--------------------------------------
``scheduler_factory`` receives the manager's async check callback and must
return an object with ``start()``, ``stop()``, ``reset()``, ``is_active``,
``is_exhausted`` and ``should_poll(path, status)``.  A push-based notifier
can be plugged in this way without touching the envelope/staleness contract.
"""

from __future__ import annotations

import uuid
from typing import Any, Awaitable, Callable

from easyroom.auth_sync.clock import Clock, default_clock
from easyroom.auth_sync.config import PollingConfig
from easyroom.auth_sync.health import AuthHealthMonitor
from easyroom.auth_sync.log_utils import SyncLogger, get_sync_logger
from easyroom.auth_sync.models import AuthState, PollingState, states_equal
from easyroom.auth_sync.polling import CheckCallback, PollingScheduler
from easyroom.auth_sync.registry import ListenerRegistry, StateListener
from easyroom.auth_sync.state_store import DEFAULT_GRACE_PERIOD_MS, PersistentStateStore
from easyroom.auth_sync.store import KeyValueStorage
from easyroom.auth_sync.timer import Timer

SessionCheck = Callable[[], Awaitable["AuthState | None"]]
SchedulerFactory = Callable[[CheckCallback], Any]


class AuthStateManager:
    """Compose store, listeners and polling for one execution context."""

    def __init__(
        self,
        storage: KeyValueStorage | None,
        *,
        clock: Clock = default_clock,
        timer: Timer | None = None,
        polling_config: PollingConfig | None = None,
        grace_period_ms: int = DEFAULT_GRACE_PERIOD_MS,
        session_check: SessionCheck | None = None,
        current_path: Callable[[], str] | None = None,
        health: AuthHealthMonitor | None = None,
        scheduler_factory: SchedulerFactory | None = None,
        tab_id: str | None = None,
        verbose: bool = False,
        logger: SyncLogger | None = None,
    ) -> None:
        self.tab_id = tab_id or uuid.uuid4().hex
        self._log = logger or get_sync_logger(
            component="manager", tab_id=self.tab_id, verbose=verbose
        )
        self._clock = clock
        self._session_check = session_check
        self._current_path = current_path
        self.health = health or AuthHealthMonitor(clock=clock, logger=self._log.child("health"))

        self.store = PersistentStateStore(
            storage,
            clock=clock,
            grace_period_ms=grace_period_ms,
            logger=self._log.child("store"),
            on_storage_event=self.health.record_storage_event,
        )
        self.health.attach_store(self.store)

        self._listeners = ListenerRegistry(
            on_first=self._on_first_listener,
            on_empty=self._on_last_listener,
            logger=self._log.child("registry"),
        )
        if scheduler_factory is not None:
            self._scheduler = scheduler_factory(self.check_now)
        else:
            self._scheduler = PollingScheduler(
                self.check_now,
                config=polling_config,
                timer=timer,
                clock=clock,
                logger=self._log.child("polling"),
                on_attempt=self.health.record_polling_event,
            )
        self._last_known: AuthState | None = None

    # ------------------------------------------------------------------ #
    # State                                                              #
    # ------------------------------------------------------------------ #
    def get_state(self) -> AuthState | None:
        """Return the current, fresh state or ``None``."""
        return self.store.read_state()

    def set_state(self, state: AuthState) -> bool:
        """Persist *state* (full replacement) and notify listeners.

        Returns *False* when the write could not be persisted; nothing is
        raised and listeners are not notified in that case.
        """
        if not self.store.write_state(state):
            self._log.warning("Auth state %s could not be persisted", state.status)
            return False
        self._log.info("Auth state set: %s (source=%s)", state.status, state.source)
        self._observe(state, origin="direct", force=True)
        return True

    def clear_state(self) -> None:
        """Remove the stored state (logout) and notify listeners with ``None``."""
        if not self.store.clear_state():
            return
        self._log.info("Auth state cleared")
        self._observe(None, origin="direct", force=True)

    # ------------------------------------------------------------------ #
    # Listeners                                                          #
    # ------------------------------------------------------------------ #
    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener*; the returned function unsubscribes it (idempotent).

        The current state is not replayed to a new listener; read it with
        :meth:`get_state` when subscribing.
        """
        return self._listeners.add(listener)

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _on_first_listener(self) -> None:
        self._last_known = self.get_state()
        self.refresh_polling()

    def _on_last_listener(self) -> None:
        self._stop_polling()

    # ------------------------------------------------------------------ #
    # Polling                                                            #
    # ------------------------------------------------------------------ #
    @property
    def is_polling(self) -> bool:
        return bool(self._scheduler.is_active)

    @property
    def polling_exhausted(self) -> bool:
        return bool(self._scheduler.is_exhausted)

    @property
    def polling_state(self) -> PollingState | None:
        return getattr(self._scheduler, "state", None)

    def refresh_polling(self) -> bool:
        """Start or stop polling for the current path and status; return activity."""
        if not self._listeners:
            self._stop_polling()
            return False
        path = self._current_path() if self._current_path is not None else ""
        state = self.get_state()
        status = state.status if state is not None else "unauthenticated"
        if self._scheduler.should_poll(path, status):
            if not self._scheduler.is_active:
                self._scheduler.reset()
                try:
                    self._scheduler.start()
                except RuntimeError as exc:
                    # AsyncioTimer outside a running event loop
                    self._log.warning("Polling unavailable: %s", exc)
                    self._scheduler.reset()
                self.health.record_polling_status(self._scheduler.is_active)
        else:
            self._stop_polling()
        return self.is_polling

    def _stop_polling(self) -> None:
        if self._scheduler.is_active:
            self._scheduler.stop()
            self.health.record_polling_status(False)

    async def check_now(self) -> AuthState | None:
        """Run one polling tick and return the state it ended with.

        Re-reads the store, notifies listeners if another context changed the
        state, then (while not authenticated) asks the session lookup.  A
        :class:`~easyroom.auth_sync.errors.SessionMissingError` from the
        lookup propagates to the scheduler, which counts it for fail-fast.
        """
        current = self.get_state()
        self._observe(current, origin="polling")

        if self._session_check is not None and (current is None or not current.is_authenticated):
            found = await self._session_check()
            if found is not None and self.set_state(found):
                current = found

        if current is not None and current.is_authenticated:
            self._stop_polling()
        return current

    # ------------------------------------------------------------------ #
    # internal                                                           #
    # ------------------------------------------------------------------ #
    def _observe(self, state: AuthState | None, *, origin: str, force: bool = False) -> None:
        if not force and states_equal(state, self._last_known):
            return
        self._last_known = state
        ok, errors = self._listeners.notify(state)
        for exc in errors:
            self.health.record_callback_event(False, len(self._listeners), exc)
        if ok:
            self.health.record_callback_event(True, len(self._listeners))
        self.health.record_state_change(state, origin)
        if state is not None and state.is_authenticated:
            self._stop_polling()

    def destroy(self) -> None:
        """Stop polling and drop every listener."""
        self._stop_polling()
        self._listeners.clear()
        self._last_known = None
        self._log.debug("Destroyed")

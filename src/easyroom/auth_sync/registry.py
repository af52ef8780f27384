"""In-process registry of auth state listeners."""

from __future__ import annotations

import logging
from typing import Callable

from easyroom.auth_sync.log_utils import get_sync_logger
from easyroom.auth_sync.models import AuthState

StateListener = Callable[[AuthState | None], None]


class ListenerRegistry:
    """Subscribe/unsubscribe callbacks and fan out state changes.

    ``on_first`` runs when the registry goes from zero to one listener and
    ``on_empty`` when the last listener leaves; the manager uses them to start
    and stop polling.  A failing listener never prevents the others from
    being called.
    """

    def __init__(
        self,
        *,
        on_first: Callable[[], None] | None = None,
        on_empty: Callable[[], None] | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self._listeners: list[StateListener] = []
        self._on_first = on_first
        self._on_empty = on_empty
        self._log = logger or get_sync_logger(component="registry")

    def __len__(self) -> int:
        return len(self._listeners)

    def __bool__(self) -> bool:
        return bool(self._listeners)

    def add(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener* and return an idempotent unsubscribe function."""
        was_empty = not self._listeners
        self._listeners.append(listener)
        if was_empty and self._on_first is not None:
            self._on_first()

        removed = False

        def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            self.remove(listener)

        return unsubscribe

    def remove(self, listener: StateListener) -> bool:
        try:
            # remove one registration; the same callable may be added twice
            self._listeners.remove(listener)
        except ValueError:
            return False
        if not self._listeners and self._on_empty is not None:
            self._on_empty()
        return True

    def notify(self, state: AuthState | None) -> tuple[int, list[Exception]]:
        """Call every listener with *state*; return ``(ok_count, errors)``."""
        ok = 0
        errors: list[Exception] = []
        # snapshot: listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener(state)
                ok += 1
            except Exception as exc:
                self._log.error("Error in state listener: %s", exc, exc_info=True)
                errors.append(exc)
        return ok, errors

    def clear(self) -> None:
        had_listeners = bool(self._listeners)
        self._listeners.clear()
        if had_listeners and self._on_empty is not None:
            self._on_empty()

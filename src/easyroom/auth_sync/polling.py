"""Timer-driven polling with exponential backoff.

:class:`PollingScheduler` re-runs an injected async *check* while an external
authentication is completing somewhere else.  It is an explicit state machine::

    idle ──start()──▶ scheduled ──timer──▶ checking ──▶ scheduled …
                         │                    │
                         └──stop()──▶ stopped ◀┘   (cap reached ─▶ exhausted)

Cost is bounded three ways: polling only runs on allow-listed paths
(:meth:`PollingScheduler.should_poll`), the delay doubles after every attempt
up to ``max_interval_ms``, and at most ``max_retries`` attempts are made.  A
check that raises :class:`~easyroom.auth_sync.errors.SessionMissingError`
``session_missing_limit`` times ends polling early; any other error is logged
and the backoff sequence continues.

Exhaustion is a *signal*, not an error: consumers read :attr:`is_exhausted`.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Awaitable, Callable

from easyroom.auth_sync.clock import Clock, default_clock, now_ms
from easyroom.auth_sync.config import PollingConfig
from easyroom.auth_sync.errors import MaxRetriesExceededError, SessionMissingError
from easyroom.auth_sync.log_utils import get_sync_logger
from easyroom.auth_sync.models import PollingPhase, PollingState
from easyroom.auth_sync.timer import AsyncioTimer, Timer

CheckCallback = Callable[[], Awaitable[None]]

STOP_REQUESTED = "stopped"
STOP_MAX_RETRIES = "max_retries"
STOP_SESSION_MISSING = "session_missing"


class PollingScheduler:
    """Exponentially backed-off re-checks, one armed timer at a time."""

    def __init__(
        self,
        check: CheckCallback,
        *,
        config: PollingConfig | None = None,
        timer: Timer | None = None,
        clock: Clock = default_clock,
        logger: logging.LoggerAdapter | None = None,
        on_attempt: Callable[[bool, int, Exception | None], None] | None = None,
    ) -> None:
        self.config = config or PollingConfig()
        self._check = check
        self._timer = timer or AsyncioTimer()
        self._clock = clock
        self._log = logger or get_sync_logger(component="polling")
        # (success, duration_ms, error) -> None; wired to the health monitor
        self._on_attempt = on_attempt
        self._state = PollingState(current_interval=self.config.base_interval_ms)
        # bumped by every start(); a tick from an earlier run is discarded
        self._generation = 0

    # ------------------------------------------------------------------ #
    # Introspection                                                      #
    # ------------------------------------------------------------------ #
    @property
    def is_active(self) -> bool:
        return self._state.is_active

    @property
    def is_exhausted(self) -> bool:
        return self._state.phase is PollingPhase.EXHAUSTED

    @property
    def phase(self) -> PollingPhase:
        return self._state.phase

    @property
    def state(self) -> PollingState:
        """Copy of the current bookkeeping."""
        return replace(self._state, attempt_delays=list(self._state.attempt_delays))

    def next_interval(self) -> int:
        """Delay before the next attempt: ``base * multiplier**retry_count``, capped."""
        interval = self.config.base_interval_ms * (
            self.config.backoff_multiplier ** self._state.retry_count
        )
        return int(min(interval, self.config.max_interval_ms))

    def should_poll(self, path: str, auth_status: str | None) -> bool:
        if auth_status == "authenticated":
            return False
        return path in self.config.enabled_paths

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        if self._state.is_active:
            self._log.debug("Polling already active, skipping start")
            return
        self._log.debug("Starting session polling")
        self._generation += 1
        self._state.is_active = True
        self._state.stop_reason = None
        self._state.phase = PollingPhase.IDLE
        self.schedule_next()

    def stop(self) -> None:
        self._halt(STOP_REQUESTED)

    def reset(self) -> None:
        self.stop()
        self._state.retry_count = 0
        self._state.session_missing_count = 0
        self._state.current_interval = self.config.base_interval_ms
        self._state.last_attempt = None
        self._state.attempt_delays.clear()
        self._state.phase = PollingPhase.IDLE
        self._state.stop_reason = None

    def schedule_next(self) -> None:
        if not self._state.is_active:
            return
        if self._state.retry_count >= self.config.max_retries:
            self._halt(STOP_MAX_RETRIES)
            return
        interval = self.next_interval()
        self._state.current_interval = interval
        self._state.attempt_delays.append(interval)
        self._log.debug(
            "Scheduling next check in %sms (attempt %s/%s)",
            interval,
            self._state.retry_count + 1,
            self.config.max_retries,
        )
        previous = self._state.timer_handle
        if previous is not None:
            previous.cancel()
        self._state.timer_handle = self._timer.call_later(interval, self._on_timer)
        self._state.phase = PollingPhase.SCHEDULED

    # ------------------------------------------------------------------ #
    # internal                                                           #
    # ------------------------------------------------------------------ #
    def _halt(self, reason: str) -> None:
        handle = self._state.timer_handle
        self._state.timer_handle = None
        if handle is not None:
            handle.cancel()
        if not self._state.is_active:
            return
        self._state.is_active = False
        self._state.stop_reason = reason
        if reason == STOP_REQUESTED:
            self._state.phase = PollingPhase.STOPPED
            self._log.debug("Stopping session polling")
        else:
            self._state.phase = PollingPhase.EXHAUSTED
            self._log.info(
                "Polling exhausted (%s): %s",
                reason,
                MaxRetriesExceededError(retries=self._state.retry_count),
            )

    async def _on_timer(self) -> None:
        self._state.timer_handle = None
        if not self._state.is_active:
            return
        generation = self._generation

        self._state.phase = PollingPhase.CHECKING
        self._state.retry_count += 1
        attempt = self._state.retry_count
        started = now_ms(self._clock)
        self._state.last_attempt = started

        error: Exception | None = None
        try:
            await self._check()
        except SessionMissingError as exc:
            error = exc
        except Exception as exc:
            error = exc
            self._log.warning("Session check failed (attempt %s): %s", attempt, exc)
        if self._on_attempt is not None:
            self._on_attempt(error is None, now_ms(self._clock) - started, error)

        if generation != self._generation:
            self._log.debug("Discarding result of attempt %s from a previous polling run", attempt)
            return
        if not self._state.is_active:
            # stopped while the check was in flight
            return
        if isinstance(error, SessionMissingError):
            self._state.session_missing_count += 1
            self._log.debug(
                "No session found (attempt %s, %s so far)",
                self._state.retry_count,
                self._state.session_missing_count,
            )
        if self._state.session_missing_count >= self.config.session_missing_limit:
            self._halt(STOP_SESSION_MISSING)
            return
        if self._state.retry_count < self.config.max_retries:
            self.schedule_next()
        else:
            self._halt(STOP_MAX_RETRIES)

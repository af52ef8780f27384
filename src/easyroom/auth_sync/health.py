"""Health counters and alerting for the auth sync engine.

The monitor is fed by the state store (storage events), the scheduler (check
attempts), the manager (listener fan-out and state changes) and turns them
into :class:`AuthHealthMetrics`, a scored :meth:`AuthHealthMonitor.health_status`
and :class:`HealthAlert` notifications when a threshold is crossed.

Counters survive restarts: they are persisted, best effort, under
``easyroom_auth_health_metrics`` through the same never-raising store the
rest of the engine uses.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Final, Literal

from easyroom.auth_sync.clock import Clock, default_clock, now_ms
from easyroom.auth_sync.log_utils import get_sync_logger
from easyroom.auth_sync.models import AuthState
from easyroom.auth_sync.state_store import HEALTH_METRICS_KEY, PersistentStateStore

AlertLevel = Literal["info", "warning", "error", "critical"]
HealthLevel = Literal["healthy", "warning", "error", "critical"]

_POLLING_HISTORY: Final[int] = 10


@dataclass(frozen=True, slots=True)
class HealthThresholds:
    max_polling_errors: int = 5
    max_storage_errors: int = 3
    max_callback_errors: int = 10
    max_check_duration_ms: int = 2000
    max_callbacks: int = 50
    stale_data_ms: int = 30_000


@dataclass(slots=True)
class AuthHealthMetrics:
    polling_errors: int = 0
    storage_errors: int = 0
    callback_errors: int = 0
    state_changes: int = 0
    average_check_ms: float = 0.0
    last_successful_poll: int | None = None
    last_error: str | None = None
    uptime_ms: int = 0
    callback_count: int = 0
    polling_active: bool = False


@dataclass(frozen=True, slots=True)
class HealthAlert:
    level: AlertLevel
    message: str
    timestamp: int
    metric: str | None = None
    value: Any = None


@dataclass(frozen=True, slots=True)
class HealthStatus:
    status: HealthLevel
    score: int
    issues: list[str] = field(default_factory=list)


_PERSISTED_FIELDS: Final[tuple[str, ...]] = (
    "polling_errors",
    "storage_errors",
    "callback_errors",
    "state_changes",
)


class AuthHealthMonitor:
    """Collect metrics and emit alerts; every method is safe to call anywhere."""

    def __init__(
        self,
        *,
        store: PersistentStateStore | None = None,
        clock: Clock = default_clock,
        thresholds: HealthThresholds | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self.thresholds = thresholds or HealthThresholds()
        self._log = logger or get_sync_logger(component="health")
        self._alert_listeners: list[Callable[[HealthAlert], None]] = []
        self._durations: deque[int] = deque(maxlen=_POLLING_HISTORY)
        self._started = now_ms(clock)
        self._metrics = AuthHealthMetrics()
        self._load_persisted()

    def attach_store(self, store: PersistentStateStore) -> None:
        """Bind the persistence store after construction and reload counters."""
        self._store = store
        self._load_persisted()

    # ------------------------------------------------------------------ #
    # persistence                                                        #
    # ------------------------------------------------------------------ #
    def _load_persisted(self) -> None:
        if self._store is None:
            return
        data = self._store.read_json(HEALTH_METRICS_KEY)
        if not isinstance(data, dict):
            return
        for name in _PERSISTED_FIELDS:
            value = data.get(name)
            if isinstance(value, int) and not isinstance(value, bool):
                setattr(self._metrics, name, value)

    def _persist(self) -> None:
        if self._store is None:
            return
        payload = {name: getattr(self._metrics, name) for name in _PERSISTED_FIELDS}
        payload["timestamp"] = now_ms(self._clock)
        self._store.write_json(HEALTH_METRICS_KEY, payload)

    # ------------------------------------------------------------------ #
    # recording                                                          #
    # ------------------------------------------------------------------ #
    def record_polling_event(
        self, success: bool, duration_ms: int, error: Exception | None = None
    ) -> None:
        if success:
            self._metrics.last_successful_poll = now_ms(self._clock)
            self._durations.append(duration_ms)
            self._metrics.average_check_ms = sum(self._durations) / len(self._durations)
            if duration_ms > self.thresholds.max_check_duration_ms:
                self._emit("warning", f"Session check is slow: {duration_ms}ms",
                           metric="average_check_ms", value=duration_ms)
        else:
            self._metrics.polling_errors += 1
            self._metrics.last_error = str(error) if error else "Unknown polling error"
            if self._metrics.polling_errors >= self.thresholds.max_polling_errors:
                self._emit("error", f"High number of polling errors: {self._metrics.polling_errors}",
                           metric="polling_errors", value=self._metrics.polling_errors)
        self._persist()

    def record_storage_event(
        self, success: bool, operation: str, error: Exception | None = None
    ) -> None:
        if success:
            return
        self._metrics.storage_errors += 1
        self._metrics.last_error = str(error) if error else f"Storage {operation} error"
        if self._metrics.storage_errors >= self.thresholds.max_storage_errors:
            self._emit("critical", f"Critical storage errors detected: {self._metrics.storage_errors}",
                       metric="storage_errors", value=self._metrics.storage_errors)
        # Storage is failing; do not try to persist through it again.

    def record_callback_event(
        self, success: bool, callback_count: int, error: Exception | None = None
    ) -> None:
        self._metrics.callback_count = callback_count
        if not success:
            self._metrics.callback_errors += 1
            self._metrics.last_error = str(error) if error else "Listener error"
            if self._metrics.callback_errors >= self.thresholds.max_callback_errors:
                self._emit("warning", f"High number of listener errors: {self._metrics.callback_errors}",
                           metric="callback_errors", value=self._metrics.callback_errors)
        if callback_count > self.thresholds.max_callbacks:
            self._emit("warning", f"High number of active listeners: {callback_count}",
                       metric="callback_count", value=callback_count)
        self._persist()

    def record_state_change(self, state: AuthState | None, source: str) -> None:
        self._metrics.state_changes += 1
        if state is not None and source == "polling":
            age = now_ms(self._clock) - state.timestamp
            if age > self.thresholds.stale_data_ms:
                self._emit("warning", f"Stale authentication state detected: {age}ms old", value=age)
        self._persist()

    def record_polling_status(self, active: bool) -> None:
        was_active = self._metrics.polling_active
        self._metrics.polling_active = active
        if was_active and not active:
            self._emit("info", "Authentication polling has stopped",
                       metric="polling_active", value=False)

    # ------------------------------------------------------------------ #
    # reporting                                                          #
    # ------------------------------------------------------------------ #
    def metrics(self) -> AuthHealthMetrics:
        self._metrics.uptime_ms = now_ms(self._clock) - self._started
        return AuthHealthMetrics(**asdict(self._metrics))

    def health_status(self) -> HealthStatus:
        m = self._metrics
        t = self.thresholds
        issues: list[str] = []
        score = 100
        status: HealthLevel = "healthy"

        if m.polling_errors:
            issues.append(f"{m.polling_errors} polling errors")
            score -= m.polling_errors * 5
            if m.polling_errors >= t.max_polling_errors:
                status = "error"
        if m.storage_errors:
            issues.append(f"{m.storage_errors} storage errors")
            score -= m.storage_errors * 10
            if m.storage_errors >= t.max_storage_errors:
                status = "critical"
        if m.callback_errors:
            issues.append(f"{m.callback_errors} listener errors")
            score -= m.callback_errors * 2
            if m.callback_errors >= t.max_callback_errors and status == "healthy":
                status = "warning"
        if m.average_check_ms > t.max_check_duration_ms:
            issues.append(f"Slow session checks: {m.average_check_ms:.0f}ms average")
            score -= 10
            if status == "healthy":
                status = "warning"
        if m.polling_active and m.last_successful_poll is not None:
            since = now_ms(self._clock) - m.last_successful_poll
            if since > t.stale_data_ms:
                issues.append(f"Stale polling: {since}ms since last success")
                score -= 20
                if status != "critical":
                    status = "error"
        if m.callback_count > t.max_callbacks:
            issues.append(f"High listener count: {m.callback_count}")
            score -= 5
            if status == "healthy":
                status = "warning"

        return HealthStatus(status=status, score=max(0, score), issues=issues)

    def on_alert(self, listener: Callable[[HealthAlert], None]) -> Callable[[], None]:
        self._alert_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._alert_listeners:
                self._alert_listeners.remove(listener)

        return unsubscribe

    def reset_metrics(self) -> None:
        self._metrics = AuthHealthMetrics()
        self._durations.clear()
        self._started = now_ms(self._clock)
        if self._store is not None:
            self._store.remove(HEALTH_METRICS_KEY)
        self._emit("info", "Health metrics have been reset")

    def _emit(self, level: AlertLevel, message: str, *, metric: str | None = None, value: Any = None) -> None:
        alert = HealthAlert(level=level, message=message, timestamp=now_ms(self._clock),
                            metric=metric, value=value)
        log_level = logging.INFO if level == "info" else logging.WARNING
        self._log.log(log_level, "%s: %s", level.upper(), message)
        for listener in list(self._alert_listeners):
            try:
                listener(alert)
            except Exception as exc:
                self._log.error("Error in health alert listener: %s", exc)

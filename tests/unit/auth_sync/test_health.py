"""
Unit tests for AuthHealthMonitor.

Coverage:
* counters, alert thresholds and alert subscription
* health score / status levels
* counters persisted through the state store and reloaded
"""

from __future__ import annotations

from easyroom.auth_sync.clock import ManualClock, now_ms
from easyroom.auth_sync.health import AuthHealthMonitor, HealthThresholds
from easyroom.auth_sync.models import AuthState
from easyroom.auth_sync.state_store import HEALTH_METRICS_KEY, PersistentStateStore
from easyroom.auth_sync.store import MemoryStorage


def _monitor(storage: MemoryStorage | None = None, **thresholds) -> tuple[AuthHealthMonitor, ManualClock]:
    clock = ManualClock()
    store = PersistentStateStore(storage, clock=clock) if storage is not None else None
    monitor = AuthHealthMonitor(store=store, clock=clock, thresholds=HealthThresholds(**thresholds))
    return monitor, clock


def test_fresh_monitor_is_healthy() -> None:
    monitor, _ = _monitor()
    status = monitor.health_status()
    assert status.status == "healthy"
    assert status.score == 100
    assert status.issues == []


def test_polling_errors_raise_alert_and_status() -> None:
    monitor, _ = _monitor(max_polling_errors=2)
    alerts = []
    monitor.on_alert(alerts.append)

    monitor.record_polling_event(False, 10, RuntimeError("down"))
    assert alerts == []
    monitor.record_polling_event(False, 10, RuntimeError("down"))

    assert [a.metric for a in alerts] == ["polling_errors"]
    assert alerts[0].level == "error"
    metrics = monitor.metrics()
    assert metrics.polling_errors == 2
    assert metrics.last_error == "down"
    status = monitor.health_status()
    assert status.status == "error"
    assert status.score == 90


def test_storage_errors_are_critical() -> None:
    monitor, _ = _monitor(max_storage_errors=1)
    alerts = []
    monitor.on_alert(alerts.append)

    monitor.record_storage_event(False, "set", OSError("quota"))
    monitor.record_storage_event(True, "get")

    assert alerts[0].level == "critical"
    assert monitor.health_status().status == "critical"


def test_average_check_duration() -> None:
    monitor, clock = _monitor(max_check_duration_ms=100)
    monitor.record_polling_event(True, 50)
    monitor.record_polling_event(True, 250)

    metrics = monitor.metrics()
    assert metrics.average_check_ms == 150
    assert metrics.last_successful_poll == now_ms(clock)
    assert monitor.health_status().status == "warning"


def test_stale_state_from_polling_alerts() -> None:
    monitor, clock = _monitor(stale_data_ms=1000)
    alerts = []
    monitor.on_alert(alerts.append)
    old = AuthState(status="authenticated", timestamp=now_ms(clock) - 5000)

    monitor.record_state_change(old, "direct")
    assert alerts == []
    monitor.record_state_change(old, "polling")
    assert alerts[0].message.startswith("Stale authentication state")
    assert monitor.metrics().state_changes == 2


def test_polling_stop_emits_info() -> None:
    monitor, _ = _monitor()
    alerts = []
    unsubscribe = monitor.on_alert(alerts.append)

    monitor.record_polling_status(True)
    monitor.record_polling_status(False)
    assert [a.level for a in alerts] == ["info"]

    unsubscribe()
    monitor.record_polling_status(True)
    monitor.record_polling_status(False)
    assert len(alerts) == 1


def test_failing_alert_listener_is_isolated() -> None:
    monitor, _ = _monitor(max_storage_errors=1)
    received = []

    def broken(_alert) -> None:
        raise RuntimeError("listener bug")

    monitor.on_alert(broken)
    monitor.on_alert(received.append)
    monitor.record_storage_event(False, "set")
    assert len(received) == 1


def test_counters_persist_and_reload() -> None:
    storage = MemoryStorage()
    monitor, _ = _monitor(storage)
    monitor.record_polling_event(False, 1)
    monitor.record_callback_event(False, 1, RuntimeError("x"))
    assert storage.get_item(HEALTH_METRICS_KEY) is not None

    reloaded, _ = _monitor(storage)
    metrics = reloaded.metrics()
    assert metrics.polling_errors == 1
    assert metrics.callback_errors == 1


def test_reset_metrics_clears_persisted_counters() -> None:
    storage = MemoryStorage()
    monitor, clock = _monitor(storage)
    monitor.record_polling_event(False, 1)
    clock.advance(5)

    monitor.reset_metrics()

    assert storage.get_item(HEALTH_METRICS_KEY) is None
    assert monitor.metrics().polling_errors == 0
    assert monitor.metrics().uptime_ms == 0

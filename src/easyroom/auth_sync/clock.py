"""Clock abstraction for testable time handling in the auth sync engine.

This module defines a `Clock` protocol representing callables that return the
current UNIX timestamp as ``float`` seconds.  Every time-based decision inside
the auth_sync package (staleness, envelope metadata, polling bookkeeping) MUST
depend on an injected ``Clock`` rather than calling ``time.time()`` directly.

Persisted records use **epoch milliseconds**; :func:`now_ms` performs the
conversion in one place.

Example
-------
>>> from easyroom.auth_sync.clock import ManualClock, now_ms
>>> clock = ManualClock(1_700_000_000.0)
>>> now_ms(clock)
1700000000000
>>> clock.advance(2.5)
>>> now_ms(clock)
1700000002500
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``.

    Returns
    -------
    float
        Seconds since the UNIX epoch.
    """
    return time.time()


def now_ms(clock: Clock = default_clock) -> int:
    """Return the clock reading as integer epoch milliseconds."""
    return int(round(clock() * 1000))


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = float(start)

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds

    def advance_ms(self, milliseconds: int) -> None:
        self._now += milliseconds / 1000.0

    def set(self, seconds: float) -> None:
        self._now = float(seconds)

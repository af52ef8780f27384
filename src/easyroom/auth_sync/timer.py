"""One-shot timer abstraction driving the polling scheduler.

The scheduler never sleeps by itself; it asks an injected :class:`Timer` to
run an async callback after a delay (in **milliseconds**) and keeps the
returned handle so it can cancel it.  Two implementations are provided:

* :class:`AsyncioTimer` – production timer on the running event loop.
* :class:`ManualTimer` – deterministic timer for tests; nothing fires until
  :meth:`ManualTimer.fire_next` is awaited, and every requested delay is
  recorded in :attr:`ManualTimer.delays`.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Protocol, runtime_checkable

from easyroom.auth_sync.clock import ManualClock

TimerCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class TimerHandle(Protocol):
    def cancel(self) -> None: ...


@runtime_checkable
class Timer(Protocol):
    """Arm a one-shot async callback after *delay_ms* milliseconds."""

    def call_later(self, delay_ms: int, callback: TimerCallback) -> TimerHandle: ...


class _AsyncioTimerHandle:
    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay_ms: int,
        callback: TimerCallback,
        tasks: set[asyncio.Task[None]],
    ) -> None:
        self._callback = callback
        self._tasks = tasks
        self._handle = loop.call_later(delay_ms / 1000.0, self._fire)

    def _fire(self) -> None:
        task = asyncio.ensure_future(self._callback())
        # keep a strong reference until the check settles
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self) -> None:
        # An in-flight check is left to finish; the scheduler ignores its
        # outcome once stopped.
        self._handle.cancel()


class AsyncioTimer(Timer):
    """:class:`Timer` backed by ``loop.call_later``."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[None]] = set()

    def call_later(self, delay_ms: int, callback: TimerCallback) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return _AsyncioTimerHandle(loop, delay_ms, callback, self._tasks)


class _ManualHandle:
    def __init__(self, delay_ms: int, callback: TimerCallback) -> None:
        self.delay_ms = delay_ms
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimer(Timer):
    """Timer whose callbacks only run when a test fires them."""

    def __init__(self, clock: ManualClock | None = None) -> None:
        self.clock = clock
        self.delays: list[int] = []
        self._pending: list[_ManualHandle] = []

    def call_later(self, delay_ms: int, callback: TimerCallback) -> TimerHandle:
        handle = _ManualHandle(delay_ms, callback)
        self.delays.append(delay_ms)
        self._pending.append(handle)
        return handle

    @property
    def pending(self) -> list[_ManualHandle]:
        return [h for h in self._pending if not h.cancelled]

    async def fire_next(self) -> bool:
        """Run the oldest armed callback; return *False* if none is armed."""
        while self._pending:
            handle = self._pending.pop(0)
            if handle.cancelled:
                continue
            if self.clock is not None:
                self.clock.advance_ms(handle.delay_ms)
            await handle.callback()
            return True
        return False

    async def run_until_idle(self, max_steps: int = 100) -> int:
        """Fire callbacks until none is armed; return how many ran."""
        fired = 0
        while fired < max_steps and await self.fire_next():
            fired += 1
        return fired

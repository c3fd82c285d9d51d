"""Audio clocks and timer services.

The scheduler never sleeps on its own: it is driven by a ``TimerService``
and reads time from an ``AudioClock``. The service implementation uses
asyncio and ``time.monotonic``; the virtual-time pair (``ManualClock`` +
``ManualTimers``) runs the same code deterministically for simulation and
tests.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class AudioClock(Protocol):
    def now(self) -> float:
        """Current clock time in seconds (monotonic)."""


class MonotonicClock:
    """Clock based on ``time.monotonic``, zeroed at construction."""

    def __init__(self) -> None:
        self._origin = time.monotonic()

    def now(self) -> float:
        return time.monotonic() - self._origin


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def set(self, t: float) -> None:
        if t < self._now:
            raise ValueError(f"Clock cannot go backwards ({t} < {self._now})")
        self._now = float(t)

    def advance(self, seconds: float) -> None:
        self.set(self._now + seconds)


class TimerHandle:
    """Cancellation token for a scheduled callback."""

    def __init__(self) -> None:
        self.cancelled = False
        self._on_cancel: Callable[[], None] | None = None

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()
            self._on_cancel = None


class TimerService(Protocol):
    def every(self, interval: float, callback: Callable[[], object]) -> TimerHandle:
        """Call *callback* every *interval* seconds until cancelled."""

    def after(self, delay: float, callback: Callable[[], object]) -> TimerHandle:
        """Call *callback* once after *delay* seconds unless cancelled."""


class AsyncioTimers:
    """Timer service on the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def after(self, delay: float, callback: Callable[[], object]) -> TimerHandle:
        handle = TimerHandle()

        def _fire() -> None:
            if not handle.cancelled:
                callback()

        pending = self._get_loop().call_later(max(0.0, delay), _fire)
        handle._on_cancel = pending.cancel
        return handle

    def every(self, interval: float, callback: Callable[[], object]) -> TimerHandle:
        loop = self._get_loop()
        handle = TimerHandle()

        def _fire() -> None:
            if handle.cancelled:
                return
            try:
                callback()
            except Exception:
                logger.exception("Periodic timer callback failed")
            if not handle.cancelled:
                nxt = loop.call_later(interval, _fire)
                handle._on_cancel = nxt.cancel

        first = loop.call_later(interval, _fire)
        handle._on_cancel = first.cancel
        return handle


class ManualTimers:
    """Virtual-time timer service driven by ``advance``."""

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self._queue: list[tuple[float, int, TimerHandle, Callable[[], object], float | None]] = []
        self._seq = itertools.count()

    def _push(self, due: float, handle: TimerHandle, callback, interval: float | None) -> None:
        heapq.heappush(self._queue, (due, next(self._seq), handle, callback, interval))

    def after(self, delay: float, callback: Callable[[], object]) -> TimerHandle:
        handle = TimerHandle()
        self._push(self.clock.now() + max(0.0, delay), handle, callback, None)
        return handle

    def every(self, interval: float, callback: Callable[[], object]) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TimerHandle()
        self._push(self.clock.now() + interval, handle, callback, interval)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for entry in self._queue if not entry[2].cancelled)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due callbacks in time order."""
        target = self.clock.now() + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback, interval = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.clock.set(max(due, self.clock.now()))
            callback()
            if interval is not None and not handle.cancelled:
                self._push(due + interval, handle, callback, interval)
        self.clock.set(target)

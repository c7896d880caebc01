"""
Injectable Clocks and Timer Scheduling
======================================

All time reads and delayed callbacks in the engine go through these
interfaces so buffering and debouncing can be driven deterministically.

MODES:
======
1. LIVE: SystemClock + AsyncioScheduler (running event loop; timers are
   held until flush when no loop runs)
2. MANUAL: FixedClock + ManualScheduler, advanced explicitly by the caller

GUARANTEES:
===========
- Every scheduled timer is individually cancellable
- ManualScheduler fires timers in deadline order, ties in scheduling order
- Nothing here starts threads
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, List, Optional
import asyncio
import heapq
import itertools
import logging
import time

logger = logging.getLogger(__name__)


# =============================================================================
# CLOCKS
# =============================================================================

class Clock:
    """Source of wall-clock milliseconds."""

    def now_ms(self) -> int:
        raise NotImplementedError


class SystemClock(Clock):
    def now_ms(self) -> int:
        return int(time.time() * 1000)


@dataclass
class FixedClock(Clock):
    """
    Settable clock for deterministic execution.

    Each read returns the current value and then advances it by step,
    so consecutive operations still get distinct timestamps.
    """
    current: int = 1_700_000_000_000
    step: int = 0

    def now_ms(self) -> int:
        value = self.current
        self.current += self.step
        return value

    def set(self, value: int) -> None:
        self.current = value

    def advance(self, millis: int) -> None:
        self.current += millis


# =============================================================================
# SCHEDULERS
# =============================================================================

class TimerHandle:
    """Cancellable reference to one scheduled callback."""

    def cancel(self) -> None:
        raise NotImplementedError

    @property
    def cancelled(self) -> bool:
        raise NotImplementedError


class Scheduler:
    """Schedules callbacks after a delay in seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError


class _AsyncioTimer(TimerHandle):
    def __init__(self, handle: asyncio.TimerHandle):
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()


class _HeldTimer(TimerHandle):
    """A callback waiting for an event loop that was not running."""

    def __init__(self, callback: Callable[[], None]):
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler(Scheduler):
    """
    Cooperative scheduling on an asyncio event loop.

    Without an explicit loop, each call uses the loop running at that
    moment. With no loop running the callback is held instead of
    raising: it fires on run_held(), and the engine's explicit flush()
    makes it unnecessary by doing the work and cancelling the timer.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._held: List[_HeldTimer] = []

    def _current_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        if self._loop is not None:
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._current_loop()
        if loop is None:
            timer = _HeldTimer(callback)
            self._held = [t for t in self._held if not t.cancelled]
            self._held.append(timer)
            return timer
        return _AsyncioTimer(loop.call_later(delay, callback))

    def held(self) -> int:
        """Callbacks waiting because no event loop was running."""
        return sum(1 for t in self._held if not t.cancelled)

    def run_held(self) -> int:
        """Fire every held callback now. Returns how many ran."""
        held, self._held = self._held, []
        fired = 0
        for timer in held:
            if not timer.cancelled:
                timer.cancel()
                timer.callback()
                fired += 1
        return fired


@dataclass(order=True)
class _ManualTimer(TimerHandle):
    deadline: float
    order: int
    callback: Callable[[], None] = field(compare=False)
    _cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """
    Virtual-time scheduler.

    Time only moves when advance() is called; due callbacks run
    synchronously inside advance().
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._queue: List[_ManualTimer] = []
        self._counter = itertools.count()

    @property
    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = _ManualTimer(self._now + max(delay, 0.0), next(self._counter), callback)
        heapq.heappush(self._queue, timer)
        return timer

    def pending(self) -> int:
        """Number of timers still waiting to fire."""
        return sum(1 for t in self._queue if not t.cancelled)

    def advance(self, seconds: float) -> int:
        """Move virtual time forward and fire every due timer. Returns fired count."""
        target = self._now + seconds
        fired = 0
        while self._queue and self._queue[0].deadline <= target:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = timer.deadline
            timer.callback()
            fired += 1
        self._now = target
        logger.debug("Manual scheduler advanced to %.3fs, fired %d timers", target, fired)
        return fired

    def run_all(self) -> int:
        """Fire every pending timer regardless of deadline."""
        fired = 0
        while self._queue:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = max(self._now, timer.deadline)
            timer.callback()
            fired += 1
        return fired

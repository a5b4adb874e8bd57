"""
Timers — schedulable delays for debounce and retry.

Everything time-driven in memopad goes through a ``Timers`` object:

    call_later(delay, callback) -> handle with cancel()
    now()                       -> monotonic seconds

AsyncioTimers runs on the current event loop. ManualTimers keeps a virtual
clock that only moves when advance() or run_all() is called, which makes
debounce and backoff behaviour reproducible without sleeping.

Author: memopad contributors
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from typing import Callable, List, Optional, Protocol, Tuple


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timers(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def now(self) -> float: ...


# ---------------------------------------------------------------------------
# asyncio
# ---------------------------------------------------------------------------


class AsyncioTimers:
    """Timers backed by an asyncio event loop.

    With no explicit loop, the running loop is looked up at call time, so the
    object can be created before the loop starts.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop if self._loop is not None else asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(max(0.0, delay), callback)

    def now(self) -> float:
        return self._get_loop().time()


# ---------------------------------------------------------------------------
# Manual (virtual clock)
# ---------------------------------------------------------------------------


class ManualTimer:
    """Handle returned by ManualTimers.call_later."""

    __slots__ = ("deadline", "callback", "cancelled")

    def __init__(self, deadline: float, callback: Callable[[], None]):
        self.deadline = deadline
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """Virtual-clock timers. Callbacks run only inside advance()/run_all()."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, ManualTimer]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self._now + max(0.0, delay), callback)
        heapq.heappush(self._queue, (timer.deadline, next(self._seq), timer))
        return timer

    @property
    def pending(self) -> int:
        """Number of scheduled, not-yet-cancelled timers."""
        return sum(1 for _, _, t in self._queue if not t.cancelled)

    def next_deadline(self) -> Optional[float]:
        """Deadline of the earliest live timer, or None."""
        self._drop_cancelled()
        return self._queue[0][0] if self._queue else None

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due timers in deadline order.

        Timers scheduled by callbacks fire too if they fall within the window.
        Returns the number of callbacks run.
        """
        if seconds < 0:
            raise ValueError("cannot move the clock backwards")
        return self._advance_to(self._now + seconds)

    def _advance_to(self, target: float) -> int:
        fired = 0
        while True:
            self._drop_cancelled()
            if not self._queue or self._queue[0][0] > target:
                break
            deadline, _, timer = heapq.heappop(self._queue)
            self._now = max(self._now, deadline)
            fired += 1
            timer.callback()
        self._now = max(self._now, target)
        return fired

    def run_all(self, max_callbacks: int = 10_000) -> int:
        """Fire every pending timer (and any they schedule) until idle."""
        fired = 0
        while True:
            deadline = self.next_deadline()
            if deadline is None:
                return fired
            if fired >= max_callbacks:
                raise RuntimeError(f"run_all: still busy after {max_callbacks} callbacks")
            fired += self._advance_to(deadline)

    def _drop_cancelled(self) -> None:
        while self._queue and self._queue[0][2].cancelled:
            heapq.heappop(self._queue)

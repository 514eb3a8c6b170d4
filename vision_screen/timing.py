"""Cooperative timer queue shared by the assessment engines.

Engines never sleep or spawn threads.  They ask a :class:`CooperativeScheduler`
to call them back later and the surrounding frame loop pumps the queue, either
by advancing a manual clock (tests, replays) or by reading a real clock such as
PsychoPy's ``core.Clock`` once per screen flip.
"""
from __future__ import annotations

import heapq
import itertools
import logging
from typing import Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class TimerHandle:
    """Reference to a pending callback; cancelling twice is harmless."""

    __slots__ = ("due_ms", "callback", "cancelled", "fired")

    def __init__(self, due_ms: float, callback: Callable[[], None]) -> None:
        self.due_ms = due_ms
        self.callback = callback
        self.cancelled = False
        self.fired = False

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler(Protocol):
    """What an engine needs from its clock/timer collaborator."""

    def now_ms(self) -> float:
        ...

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class CooperativeScheduler:
    """Single-threaded timer queue.

    Parameters
    ----------
    time_source:
        Optional zero-argument callable returning the current time in
        milliseconds.  When omitted the clock is manual and only moves through
        :meth:`advance`.
    """

    def __init__(self, time_source: Optional[Callable[[], float]] = None) -> None:
        self._time_source = time_source
        self._manual_now = 0.0
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()
        self._dispatching = False

    def now_ms(self) -> float:
        if self._time_source is not None:
            return float(self._time_source())
        return self._manual_now

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle in self._queue if handle.active)

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        due = self.now_ms() + max(0.0, float(delay_ms))
        handle = TimerHandle(due, callback)
        heapq.heappush(self._queue, (due, next(self._counter), handle))
        return handle

    def cancel_all(self) -> None:
        for _, _, handle in self._queue:
            handle.cancel()
        self._queue.clear()

    def run_due(self) -> int:
        """Fire every timer whose due time has passed; return how many fired."""

        if self._dispatching:
            return 0
        return self._dispatch(self.now_ms())

    def advance(self, delta_ms: float) -> int:
        """Move the manual clock forward, firing timers at their own due times."""

        if self._time_source is not None:
            raise RuntimeError("advance() is only available on a manual clock")
        if delta_ms < 0:
            raise ValueError("Cannot move the clock backwards")
        if self._dispatching:
            return 0
        target = self._manual_now + delta_ms
        fired = self._dispatch(target)
        self._manual_now = target
        return fired

    def _dispatch(self, until_ms: float) -> int:
        fired = 0
        self._dispatching = True
        try:
            while self._queue and self._queue[0][0] <= until_ms:
                due, _, handle = heapq.heappop(self._queue)
                if not handle.active:
                    continue
                if self._time_source is None:
                    self._manual_now = max(self._manual_now, due)
                handle.fired = True
                handle.callback()
                fired += 1
        finally:
            self._dispatching = False
        return fired


__all__ = ["CooperativeScheduler", "Scheduler", "TimerHandle"]

"""
Timer scheduling.

Escalation timers and shelving expiries are scheduled through a small
`TimerScheduler` protocol so the engine never sleeps on its own:

- `ThreadedScheduler` runs callbacks on a daemon thread against wall-clock UTC
- `VirtualScheduler` only moves when told to (``advance``), which lets tests
  and replays drive time deterministically
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class TimerScheduler(Protocol):
    """
    Protocol for a cancellable one-shot timer scheduler.

    Methods
    -------
    now()
        Current time (timezone-aware UTC).
    call_at(when, callback)
        Run ``callback`` once at ``when``. Returns a cancellable handle.
    """

    def now(self) -> datetime:
        ...

    def call_at(self, when: datetime, callback: Callback) -> TimerHandle:
        ...


@dataclass
class _Timer:
    when: datetime
    callback: Callback
    cancelled: bool = field(default=False)

    def cancel(self) -> None:
        self.cancelled = True


def call_later(scheduler: TimerScheduler, delay_s: float, callback: Callback) -> TimerHandle:
    """Schedule ``callback`` ``delay_s`` seconds after ``scheduler.now()``."""
    return scheduler.call_at(scheduler.now() + timedelta(seconds=delay_s), callback)


def _run(timer: _Timer) -> None:
    try:
        timer.callback()
    except Exception:
        logger.exception("[TIMER] callback failed")


class VirtualScheduler:
    """
    Deterministic scheduler driven by explicit time advances.

    Due timers fire in (time, scheduling order) order. A callback may schedule
    further timers; those fire within the same ``advance`` if they are due.

    Parameters
    ----------
    start
        Initial virtual time.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._heap: List[Tuple[datetime, int, _Timer]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def call_at(self, when: datetime, callback: Callback) -> TimerHandle:
        timer = _Timer(when, callback)
        with self._lock:
            heapq.heappush(self._heap, (when, next(self._seq), timer))
        return timer

    def advance(self, seconds: float) -> int:
        """Advance virtual time by ``seconds``; return the number of timers fired."""
        return self.advance_to(self.now() + timedelta(seconds=seconds))

    def advance_to(self, when: datetime) -> int:
        """
        Advance virtual time to ``when``, firing every timer due on the way.

        Returns
        -------
        int
            Number of callbacks run.
        """
        fired = 0
        while True:
            with self._lock:
                if not self._heap or self._heap[0][0] > when:
                    if when > self._now:
                        self._now = when
                    return fired
                due, _, timer = heapq.heappop(self._heap)
                if due > self._now:
                    self._now = due
            if timer.cancelled:
                continue
            _run(timer)
            fired += 1

    def pending(self) -> int:
        with self._lock:
            return sum(1 for _, _, t in self._heap if not t.cancelled)


class ThreadedScheduler:
    """
    Wall-clock scheduler running callbacks on one daemon thread.

    Callbacks must be short; long work should be handed to a worker queue.
    """

    def __init__(self, name: str = "timer-scheduler"):
        self._heap: List[Tuple[datetime, int, _Timer]] = []
        self._seq = itertools.count()
        self._cv = threading.Condition()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_at(self, when: datetime, callback: Callback) -> TimerHandle:
        timer = _Timer(when, callback)
        with self._cv:
            heapq.heappush(self._heap, (when, next(self._seq), timer))
            self._cv.notify()
        return timer

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        with self._cv:
            self._cv.notify()

    def join(self, timeout: float | None = 2.0) -> None:
        self._thread.join(timeout=timeout)

    def _loop(self) -> None:
        while not self._stop.is_set():
            with self._cv:
                if not self._heap:
                    self._cv.wait(timeout=0.5)
                    continue
                due, _, timer = self._heap[0]
                wait_s = (due - self.now()).total_seconds()
                if wait_s > 0:
                    self._cv.wait(timeout=min(wait_s, 0.5))
                    continue
                heapq.heappop(self._heap)
            if not timer.cancelled:
                _run(timer)

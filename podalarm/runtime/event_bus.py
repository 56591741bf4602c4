from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from queue import Full, Queue
from typing import Callable, List

from podalarm.domain.events import AlarmEvent

logger = logging.getLogger(__name__)

AlarmHandler = Callable[[AlarmEvent], None]


@dataclass
class EventBus:
    """
    In-process event bus for alarm lifecycle events.

    Two kinds of consumers are supported:

    - Synchronous handlers registered with :meth:`subscribe` run in the
      publishing thread, in registration order. The escalation scheduler is
      one, so its timers are armed before :meth:`publish_alarm` returns.
    - Asynchronous consumers (the notification adapter thread) drain
      :attr:`alarm_events_q`.

    Backpressure Policy
    -------------------
    If the queue is full the event is dropped for the asynchronous consumers
    and a warning is logged. Synchronous handlers still see it.

    Attributes
    ----------
    alarm_events_q
        Bounded queue of alarm events.
    dropped
        Number of events dropped because the queue was full.
    """

    alarm_events_q: "Queue[AlarmEvent]" = field(default_factory=lambda: Queue(maxsize=5000))
    dropped: int = 0
    _handlers: List[AlarmHandler] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def subscribe(self, handler: AlarmHandler) -> None:
        with self._lock:
            self._handlers = self._handlers + [handler]

    def publish_alarm(self, ev: AlarmEvent) -> None:
        """
        Publish an alarm event.

        Handler exceptions are logged and do not stop delivery to the other
        handlers or the queue.
        """
        for handler in self._handlers:
            try:
                handler(ev)
            except Exception:
                logger.exception("[BUS] handler failed for %s %s", ev.transition.value, ev.alarm_id)

        try:
            self.alarm_events_q.put_nowait(ev)
        except Full:
            with self._lock:
                self.dropped += 1
            logger.warning("[BUS] queue full, dropped %s %s", ev.transition.value, ev.alarm_id)

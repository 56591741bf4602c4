from __future__ import annotations

import logging
import threading
from queue import Empty

from podalarm.domain.events import AlarmEvent
from podalarm.notification.router import NotificationRouter
from podalarm.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)


class NotificationAdapterThread:
    """
    Adapter thread that bridges alarm lifecycle events to the notification router.

    Responsibilities
    ----------------
    - Drain `EventBus.alarm_events_q`.
    - Hand each event to :meth:`NotificationRouter.handle_event`, which records
      notifications and emits external deliveries to the notification worker.

    Concurrency Model
    -----------------
    A single daemon thread consumes the queue, so events are routed in
    publication order. Routing failures are logged and do not stop the loop.

    Parameters
    ----------
    bus
        Event bus providing the alarm event queue.
    router
        Notification router.
    stop_event
        Stop signal for the thread.
    """

    def __init__(self, bus: EventBus, router: NotificationRouter, stop_event: threading.Event):
        self._bus = bus
        self._router = router
        self._stop = stop_event
        self._thread = threading.Thread(target=self._run, name="notification-adapter", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = 2.0) -> None:
        self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                ev: AlarmEvent = self._bus.alarm_events_q.get(timeout=0.5)
            except Empty:
                continue

            try:
                created = self._router.handle_event(ev)
                if created:
                    logger.info("[NOTIFY] %d notification(s) for %s %s",
                                len(created), ev.transition.value, ev.alarm_id)
            except Exception:
                logger.exception("[NOTIFY] routing failed for %s %s", ev.transition.value, ev.alarm_id)

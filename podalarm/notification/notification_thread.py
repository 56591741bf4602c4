from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional

from podalarm.core.state.notification_store import NotificationStore
from podalarm.domain.models import NotificationChannel
from podalarm.notification.base import NotificationEvent, Notifier

logger = logging.getLogger(__name__)

_STOP = "__stop__"


@dataclass(frozen=True)
class NotificationThreadConfig:
    max_queue: int = 2000
    poll_timeout_s: float = 0.5


class NotificationWorkerThread:
    """
    Fire-and-forget delivery worker.

    The router hands deliveries over with :meth:`emit` (never blocks); this
    thread sends each one once through the notifier registered for its channel
    and records the outcome on the notification record (``delivered`` or
    ``failed``). Failed deliveries are not retried here.

    Parameters
    ----------
    notifiers
        Channel -> notifier.
    results
        Notification store receiving delivery outcomes.
    cfg
        Queue and polling settings.
    clock
        Time source for ``delivered_at``.
    """

    def __init__(
        self,
        notifiers: Mapping[NotificationChannel, Notifier],
        results: NotificationStore,
        cfg: NotificationThreadConfig | None = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._notifiers: Dict[NotificationChannel, Notifier] = dict(notifiers)
        self._results = results
        self._cfg = cfg or NotificationThreadConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._q: "queue.Queue[NotificationEvent]" = queue.Queue(maxsize=self._cfg.max_queue)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="notification-worker", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        try:
            self._q.put_nowait(NotificationEvent(notification_id="", channel=NotificationChannel.IN_APP,
                                                 address=None, payload={}, type=_STOP))
        except queue.Full:
            pass
        self._thread.join(timeout=2.0)

    def emit(self, event: NotificationEvent) -> bool:
        """
        Queue a delivery without blocking.

        Returns
        -------
        bool
            False if the queue was full; the notification is then marked failed.
        """
        try:
            self._q.put_nowait(event)
            return True
        except queue.Full:
            logger.warning("[NOTIFY] queue full, dropping %s", event.notification_id)
            self._results.mark_failed(event.notification_id, "delivery queue full")
            return False

    def deliver(self, event: NotificationEvent) -> None:
        """Send one event and record the outcome (runs on the worker thread)."""
        notifier = self._notifiers.get(event.channel)
        if notifier is None:
            self._results.mark_failed(event.notification_id, f"no notifier for channel {event.channel.value}")
            return

        try:
            notifier.notify(event)
        except Exception as e:
            logger.warning("[NOTIFY] %s via %s failed: %r", event.notification_id, event.channel.value, e)
            self._results.mark_failed(event.notification_id, repr(e))
            return

        self._results.mark_delivered(event.notification_id, self._clock())

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                event = self._q.get(timeout=self._cfg.poll_timeout_s)
            except queue.Empty:
                continue

            if event.type == _STOP:
                break

            self.deliver(event)

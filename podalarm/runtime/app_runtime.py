from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from podalarm.core.escalation.scheduler import EscalationScheduler
from podalarm.core.timing.scheduler import ThreadedScheduler
from podalarm.notification.notification_thread import NotificationWorkerThread
from podalarm.notification.router import NotificationRouter
from podalarm.runtime.event_bus import EventBus
from podalarm.runtime.notification_adapter_thread import NotificationAdapterThread
from podalarm.runtime.pod_worker_pool import PodWorkerPool
from podalarm.runtime.readings_receiver_thread import ReadingsReceiverConfig, ReadingsReceiverThread
from podalarm.services.controller import MonitoringController

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppRuntimeConfig:
    """
    Runtime configuration for thread orchestration and ingestion.

    Parameters
    ----------
    readings_host
        TCP host of the ingestion feed. ``None`` disables the receiver
        (readings are then submitted through :meth:`AppRuntime.submit`).
    readings_port
        TCP port of the ingestion feed.
    reconnect_delay_s
        Delay (seconds) between reconnect attempts after network errors.
    connect_timeout_s
        TCP connect timeout (seconds) used during initial connect.
    workers
        Number of pod evaluation workers.
    """

    readings_host: Optional[str] = None
    readings_port: int = 9009
    reconnect_delay_s: float = 0.5
    connect_timeout_s: float = 5.0
    workers: int = 4


class AppRuntime:
    """
    Thread supervisor for the monitoring service.

    Thread Topology
    ---------------
    1) ReadingsReceiverThread (I/O, optional)
       - owns the TCP connection and decodes NDJSON readings
       - submits readings to the pod worker pool

    2) PodWorkerPool (business logic)
       - one thread per shard, a pod always maps to the same shard
       - runs MonitoringController.handle_reading()
       - alarm store transitions are published to the EventBus

    3) ThreadedScheduler (timers)
       - escalation and auto-unshelve timers

    4) NotificationAdapterThread
       - drains the EventBus queue into NotificationRouter

    5) NotificationWorkerThread
       - delivers email/sms/push notifications once each

    Notes
    -----
    Backpressure: the pool drops the newest reading for a full shard, the bus
    drops events for the notification path when its queue is full. Both are
    logged.
    """

    def __init__(
        self,
        cfg: AppRuntimeConfig,
        controller: MonitoringController,
        bus: EventBus,
        router: NotificationRouter,
        notifier: NotificationWorkerThread,
        timers: ThreadedScheduler,
        escalation: Optional[EscalationScheduler] = None,
    ):
        self._cfg = cfg
        self._timers = timers
        self._notifier = notifier
        self._escalation = escalation
        self._stop = threading.Event()

        self.pool = PodWorkerPool(controller, workers=cfg.workers)

        self._receiver: Optional[ReadingsReceiverThread] = None
        if cfg.readings_host:
            self._receiver = ReadingsReceiverThread(
                ReadingsReceiverConfig(
                    host=cfg.readings_host,
                    port=cfg.readings_port,
                    reconnect_delay_s=cfg.reconnect_delay_s,
                    connect_timeout_s=cfg.connect_timeout_s,
                ),
                sink=self.pool.submit,
                stop_event=self._stop,
            )

        self._notify_adapter = NotificationAdapterThread(bus=bus, router=router, stop_event=self._stop)

    def submit(self, reading) -> bool:
        return self.pool.submit(reading)

    def start(self) -> None:
        """
        Start all runtime threads, consumers before producers.

        Open alarms restored from persistence get their escalation timers
        re-armed before readings start flowing.
        """
        self._notifier.start()
        self._notify_adapter.start()
        self._timers.start()
        if self._escalation is not None:
            armed = self._escalation.recover()
            if armed:
                logger.info("[RUNTIME] re-armed %d escalation timer(s)", armed)
        self.pool.start()
        if self._receiver is not None:
            self._receiver.start()
        logger.info("[RUNTIME] started (%d workers, receiver=%s)", self.pool.size, self._receiver is not None)

    def stop(self) -> None:
        """Stop all runtime threads and wait briefly for shutdown."""
        if self._receiver is not None:
            self._receiver.stop()
        self.pool.stop()
        self._notify_adapter.stop()
        self._timers.stop()
        self._notifier.stop()

        if self._receiver is not None:
            self._receiver.join(timeout=2.0)
        self.pool.join(timeout=2.0)
        self._notify_adapter.join(timeout=2.0)
        self._timers.join(timeout=2.0)
        logger.info("[RUNTIME] stopped")

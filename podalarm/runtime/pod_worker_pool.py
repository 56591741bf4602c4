from __future__ import annotations

import logging
import threading
import zlib
from queue import Empty, Full, Queue
from typing import List

from podalarm.domain.errors import EvaluationError
from podalarm.domain.models import TelemetryReading
from podalarm.services.controller import MonitoringController

logger = logging.getLogger(__name__)


def shard_for(pod_id: str, shards: int) -> int:
    """Stable shard index for a pod (same pod -> same worker across runs)."""
    return zlib.crc32(pod_id.encode("utf-8")) % shards


class _PodWorker:
    def __init__(self, index: int, controller: MonitoringController, max_queue: int, stop_event: threading.Event):
        self.q: "Queue[TelemetryReading]" = Queue(maxsize=max_queue)
        self._controller = controller
        self._stop = stop_event
        self._thread = threading.Thread(target=self._run, name=f"pod-worker-{index}", daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    def join(self, timeout: float | None = 2.0) -> None:
        self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                reading = self.q.get(timeout=0.5)
            except Empty:
                continue

            try:
                self._controller.handle_reading(reading)
            except EvaluationError as e:
                logger.error("[EVAL] %s", e)
            except Exception:
                logger.exception("[EVAL] handle_reading failed for pod %s", reading.pod_id)
            finally:
                self.q.task_done()


class PodWorkerPool:
    """
    Sharded evaluation workers.

    Readings are routed to a worker by pod id, so all readings of one pod are
    evaluated in arrival order by a single thread while different pods are
    evaluated in parallel.

    Parameters
    ----------
    controller
        Monitoring controller invoked for every reading.
    workers
        Number of worker threads (shards).
    max_queue
        Per-worker queue bound. When full, the newest reading is dropped.
    """

    def __init__(self, controller: MonitoringController, workers: int = 4, max_queue: int = 5000):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._stop = threading.Event()
        self._workers: List[_PodWorker] = [
            _PodWorker(i, controller, max_queue, self._stop) for i in range(workers)
        ]
        self.dropped = 0

    @property
    def size(self) -> int:
        return len(self._workers)

    def start(self) -> None:
        for w in self._workers:
            w.start()

    def submit(self, reading: TelemetryReading) -> bool:
        """
        Enqueue a reading on its pod's worker (non-blocking).

        Returns
        -------
        bool
            False if the worker queue was full and the reading was dropped.
        """
        worker = self._workers[shard_for(reading.pod_id, len(self._workers))]
        try:
            worker.q.put_nowait(reading)
            return True
        except Full:
            self.dropped += 1
            logger.warning("[EVAL] worker queue full, dropped reading for pod %s", reading.pod_id)
            return False

    def drain(self) -> None:
        """Block until every queued reading has been processed."""
        for w in self._workers:
            w.q.join()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = 2.0) -> None:
        for w in self._workers:
            w.join(timeout=timeout)

from __future__ import annotations

import bisect
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from podalarm.domain.models import TelemetryReading


@dataclass
class ReadingStore:
    """
    Append-only store of telemetry readings, per pod.

    Readings are kept ordered by timestamp so history can be sliced by UTC
    time range (export collaborator, API). Faulted readings are stored like
    any other reading.

    Notes
    -----
    - Thread-safe: a single lock guards the per-pod lists.
    - ``max_per_pod`` bounds memory; the oldest readings are dropped first.
    """

    max_per_pod: int = 100_000
    _by_pod: Dict[str, List[TelemetryReading]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def append(self, reading: TelemetryReading) -> None:
        """
        Store a reading.

        Parameters
        ----------
        reading
            Reading to store. Out-of-order readings are inserted in place.
        """
        with self._lock:
            rows = self._by_pod.setdefault(reading.pod_id, [])
            if not rows or rows[-1].timestamp <= reading.timestamp:
                rows.append(reading)
            else:
                keys = [r.timestamp for r in rows]
                rows.insert(bisect.bisect_right(keys, reading.timestamp), reading)
            if len(rows) > self.max_per_pod:
                del rows[: len(rows) - self.max_per_pod]

    def latest(self, pod_id: str) -> Optional[TelemetryReading]:
        with self._lock:
            rows = self._by_pod.get(pod_id)
            return rows[-1] if rows else None

    def query(
        self,
        pod_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TelemetryReading]:
        """
        Return readings in ``[start, end)``, oldest first.

        Parameters
        ----------
        pod_id
            Restrict to one pod. None returns every pod (ordered by time).
        start, end
            Optional UTC bounds.

        Returns
        -------
        list of TelemetryReading
            Matching readings.
        """
        with self._lock:
            if pod_id is not None:
                rows = list(self._by_pod.get(pod_id, []))
            else:
                rows = [r for v in self._by_pod.values() for r in v]

        out = [
            r for r in rows
            if (start is None or r.timestamp >= start) and (end is None or r.timestamp < end)
        ]
        if pod_id is None:
            out.sort(key=lambda r: r.timestamp)
        return out

    def pods(self) -> List[str]:
        with self._lock:
            return list(self._by_pod.keys())

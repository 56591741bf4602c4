from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional

from podalarm.domain.models import Parameter, PodContext, Setpoint


@dataclass
class PodRegistry:
    """
    Registry of pod contexts (organization, type, batch stage, setpoints).

    Setpoints and batch stage are owned by external systems (recipes,
    batches); the engine treats them as read-only inputs that can be swapped
    at runtime.
    """

    _pods: Dict[str, PodContext] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def load(self, pods: Iterable[PodContext]) -> None:
        with self._lock:
            for p in pods:
                self._pods[p.pod_id] = p

    def get(self, pod_id: str) -> Optional[PodContext]:
        with self._lock:
            return self._pods.get(pod_id)

    def all(self) -> List[PodContext]:
        with self._lock:
            return list(self._pods.values())

    def update_setpoints(self, pod_id: str, setpoints: Iterable[Setpoint]) -> PodContext:
        """
        Replace a pod's setpoints (new recipe stage).

        Raises
        ------
        KeyError
            If the pod is unknown.
        """
        with self._lock:
            cur = self._pods[pod_id]
            sp: Dict[Parameter, Setpoint] = {s.parameter: s for s in setpoints}
            new = replace(cur, setpoints=sp)
            self._pods[pod_id] = new
            return new

    def set_batch_stage(self, pod_id: str, stage: Optional[str]) -> PodContext:
        with self._lock:
            new = replace(self._pods[pod_id], batch_stage=stage)
            self._pods[pod_id] = new
            return new

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

Key = Tuple[str, str]


@dataclass
class SmoothingCache:
    """
    Per-(pod, sensor) smoothed value generator.

    Each new sample moves only ``factor`` of the way from the previous value
    toward a noisy target, so simulated readings wander instead of jumping.
    Values are held for ``hold_s`` seconds between updates.

    Parameters
    ----------
    factor
        Fraction of the distance to the target covered per update.
    hold_s
        Minimum seconds between two updates of the same key.
    noise_scale
        Fraction of the sensor variance used as uniform noise.
    seed
        RNG seed for reproducible runs.
    """

    factor: float = 0.15
    hold_s: float = 10.0
    noise_scale: float = 0.25
    seed: Optional[int] = None

    _values: Dict[Key, float] = field(default_factory=dict, init=False, repr=False)
    _updated: Dict[Key, datetime] = field(default_factory=dict, init=False, repr=False)
    _rng: random.Random = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not 0.0 < self.factor <= 1.0:
            raise ValueError("factor must be in (0, 1]")
        self._rng = random.Random(self.seed)

    def next_value(
        self,
        pod_id: str,
        sensor: str,
        setpoint: float,
        variance: float,
        now: datetime,
        drift: float = 0.0,
    ) -> float:
        """
        Return the smoothed value for ``(pod_id, sensor)`` at ``now``.

        The first call for a key returns the noisy target directly.
        """
        key = (pod_id, sensor)
        last = self._updated.get(key)
        if key in self._values and last is not None and (now - last).total_seconds() < self.hold_s:
            return self._values[key]

        noise = (self._rng.random() - 0.5) * variance * self.noise_scale
        target = setpoint + noise + drift

        prev = self._values.get(key)
        value = target if prev is None else prev + (target - prev) * self.factor
        value = round(value, 1)

        self._values[key] = value
        self._updated[key] = now
        return value

    def peek(self, pod_id: str, sensor: str) -> Optional[float]:
        return self._values.get((pod_id, sensor))

    def reset(self, pod_id: Optional[str] = None) -> None:
        """Forget cached values for one pod, or for every pod."""
        if pod_id is None:
            self._values.clear()
            self._updated.clear()
            return
        for key in [k for k in self._values if k[0] == pod_id]:
            self._values.pop(key, None)
            self._updated.pop(key, None)

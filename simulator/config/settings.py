from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class StageSetpoints:
    """Nominal climate for one growth stage."""
    temperature_c: float
    humidity_pct: float
    co2_ppm: float
    light_pct: float


STAGE_SETPOINTS: Dict[str, StageSetpoints] = {
    "propagation": StageSetpoints(24.0, 75.0, 800.0, 40.0),
    "vegetative": StageSetpoints(26.0, 65.0, 1200.0, 80.0),
    "flowering": StageSetpoints(24.0, 55.0, 1400.0, 100.0),
    "late_flowering": StageSetpoints(23.0, 45.0, 1400.0, 100.0),
}

# Sample-to-sample noise amplitude per sensor (before smoothing).
SENSOR_VARIANCE: Dict[str, float] = {
    "temperature": 0.5,
    "humidity": 2.0,
    "co2": 50.0,
    "light": 2.0,
}


@dataclass(frozen=True)
class PodProfile:
    """
    One simulated pod.

    Parameters
    ----------
    pod_id
        Pod identifier (must match the monitoring service's pod registry).
    stage
        Key into `STAGE_SETPOINTS`.
    drift
        Persistent offset factor; 1.0 pushes temperature +1.5 C, humidity +8 %
        and CO2 +200 ppm above the stage setpoints.
    """
    pod_id: str
    stage: str = "vegetative"
    drift: float = 0.0


@dataclass(frozen=True)
class SimulatorSettings:
    host: str = "127.0.0.1"
    port: int = 9009

    # Loop tick and how often each pod publishes a reading.
    tick_s: float = 1.0
    sample_interval_s: float = 10.0

    smoothing_factor: float = 0.15
    seed: Optional[int] = 123

    pods: Tuple[PodProfile, ...] = field(
        default_factory=lambda: (
            PodProfile("pod-1", "vegetative"),
            PodProfile("pod-2", "flowering", drift=0.5),
        )
    )

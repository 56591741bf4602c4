from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from simulator.config.settings import SENSOR_VARIANCE, STAGE_SETPOINTS, PodProfile, SimulatorSettings
from simulator.core.smoothing import SmoothingCache
from simulator.environment.pod_climate import PodClimate

READING_TYPE = "pod_reading"

_FAULT_FIELDS = {
    "temperature": "temp_sensor_fault",
    "humidity": "humidity_sensor_fault",
    "co2": "co2_sensor_fault",
}


@dataclass
class _PodSim:
    profile: PodProfile
    climate: PodClimate
    faults: Set[str] = field(default_factory=set)
    offline: bool = False
    last_emit: Optional[datetime] = None


class PodEnvironmentSimulator:
    """
    Simulated grow pods publishing ingestion records.

    Each pod follows its stage setpoints with smoothed noise, plus the
    excursions of its `PodClimate` (HVAC or extraction failures). Records use
    the same shape the monitoring service ingests (``type: pod_reading``).

    Parameters
    ----------
    settings
        Pods, sample interval and smoothing settings.
    """

    def __init__(self, settings: Optional[SimulatorSettings] = None):
        self.settings = settings or SimulatorSettings()
        self.smoothing = SmoothingCache(
            factor=self.settings.smoothing_factor,
            hold_s=self.settings.sample_interval_s,
            seed=self.settings.seed,
        )
        self._pods: Dict[str, _PodSim] = {}
        self._seq = itertools.count(1)
        self._last_step: Optional[datetime] = None
        for profile in self.settings.pods:
            self.add_pod(profile)

    def add_pod(self, profile: PodProfile) -> None:
        if profile.stage not in STAGE_SETPOINTS:
            raise ValueError(f"Unknown stage: {profile.stage}")
        sp = STAGE_SETPOINTS[profile.stage]
        self._pods[profile.pod_id] = _PodSim(profile=profile, climate=PodClimate(setpoint_c=sp.temperature_c))

    def pod_ids(self) -> List[str]:
        return list(self._pods)

    # ------------------------------------------------------------------
    # scenario controls
    # ------------------------------------------------------------------
    def set_hvac(self, pod_id: str, on: bool) -> None:
        self._pods[pod_id].climate.set_hvac(on)

    def set_extraction(self, pod_id: str, on: bool) -> None:
        self._pods[pod_id].climate.set_extraction(on)

    def set_sensor_fault(self, pod_id: str, sensor: str, faulted: bool) -> None:
        if sensor not in _FAULT_FIELDS:
            raise ValueError(f"Unknown sensor: {sensor}")
        faults = self._pods[pod_id].faults
        if faulted:
            faults.add(sensor)
        else:
            faults.discard(sensor)

    def set_offline(self, pod_id: str, offline: bool) -> None:
        self._pods[pod_id].offline = bool(offline)

    def reset(self) -> None:
        """Clear smoothing state and equipment excursions for every pod."""
        self.smoothing.reset()
        for pod in self._pods.values():
            sp = STAGE_SETPOINTS[pod.profile.stage]
            pod.climate = PodClimate(setpoint_c=sp.temperature_c)
            pod.faults.clear()
            pod.offline = False
            pod.last_emit = None
        self._last_step = None

    # ------------------------------------------------------------------
    # stepping
    # ------------------------------------------------------------------
    def step(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Advance every pod to ``now`` and return the records due for publishing.

        A pod publishes at most once per ``sample_interval_s``. Offline pods
        publish nothing.
        """
        now = now or datetime.now(timezone.utc)
        dt_s = 0.0 if self._last_step is None else max(0.0, (now - self._last_step).total_seconds())
        self._last_step = now

        out: List[Dict[str, Any]] = []
        for pod in self._pods.values():
            pod.climate.step(dt_s)
            if pod.offline:
                continue
            if pod.last_emit is not None and (now - pod.last_emit).total_seconds() < self.settings.sample_interval_s:
                continue
            pod.last_emit = now
            out.append(self._record(pod, now))
        return out

    def _record(self, pod: _PodSim, now: datetime) -> Dict[str, Any]:
        p = pod.profile
        sp = STAGE_SETPOINTS[p.stage]
        sample = self.smoothing.next_value

        temperature = sample(p.pod_id, "temperature", sp.temperature_c, SENSOR_VARIANCE["temperature"], now,
                             drift=p.drift * 1.5 + pod.climate.temperature_offset_c)
        humidity = sample(p.pod_id, "humidity", sp.humidity_pct, SENSOR_VARIANCE["humidity"], now,
                          drift=p.drift * 8.0)
        co2 = sample(p.pod_id, "co2", sp.co2_ppm, SENSOR_VARIANCE["co2"], now,
                     drift=p.drift * 200.0 + pod.climate.co2_offset_ppm)
        light = sample(p.pod_id, "light", sp.light_pct, SENSOR_VARIANCE["light"], now)

        record: Dict[str, Any] = {
            "type": READING_TYPE,
            "pod_id": p.pod_id,
            "timestamp": now.isoformat(),
            "reading_id": f"sim-{next(self._seq)}",
            "temperature_c": None if "temperature" in pod.faults else temperature,
            "humidity_pct": None if "humidity" in pod.faults else min(100.0, max(0.0, humidity)),
            "co2_ppm": None if "co2" in pod.faults else max(0.0, co2),
            "light_intensity_pct": min(100.0, max(0.0, light)),
            "equipment": {
                "hvac": "AUTO" if pod.climate.hvac_on else "OFF",
                "extraction": "AUTO" if pod.climate.extraction_on else "OFF",
            },
            "data_source": "simulated",
        }
        for sensor, flag in _FAULT_FIELDS.items():
            record[flag] = sensor in pod.faults
        return record

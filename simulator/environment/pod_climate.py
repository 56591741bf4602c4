from __future__ import annotations

from dataclasses import dataclass

from simulator.environment.env_constants import (
    POD_AMBIENT_C,
    POD_CO2_BUILDUP_PPM_PER_SEC,
    POD_CO2_RECOVERY_PPM_PER_SEC,
    POD_HVAC_RAMP_C_PER_SEC,
    POD_OFF_DRIFT_C_PER_SEC,
)


def _ramp(current: float, target: float, rate: float, dt_s: float) -> float:
    max_step = rate * dt_s
    diff = target - current
    if abs(diff) <= max_step:
        return target
    return current + (max_step if diff > 0 else -max_step)


@dataclass
class PodClimate:
    """
    Equipment-driven excursion model for one pod.

    Tracks how far the pod has been pushed away from its setpoints by
    equipment state, as offsets added on top of the smoothed readings:

    - HVAC off: temperature drifts toward ambient; back on, it ramps back.
    - Extraction off: CO2 builds up; back on, it recovers.

    Notes
    -----
    This class does not know about sensors or noise; the simulator engine
    adds ``temperature_offset_c`` / ``co2_offset_ppm`` to its samples.
    """

    setpoint_c: float
    hvac_on: bool = True
    extraction_on: bool = True

    ambient_c: float = POD_AMBIENT_C
    hvac_ramp_c_per_s: float = POD_HVAC_RAMP_C_PER_SEC
    off_drift_c_per_s: float = POD_OFF_DRIFT_C_PER_SEC
    co2_buildup_ppm_per_s: float = POD_CO2_BUILDUP_PPM_PER_SEC
    co2_recovery_ppm_per_s: float = POD_CO2_RECOVERY_PPM_PER_SEC

    temperature_offset_c: float = 0.0
    co2_offset_ppm: float = 0.0

    def set_hvac(self, on: bool) -> None:
        self.hvac_on = bool(on)

    def set_extraction(self, on: bool) -> None:
        self.extraction_on = bool(on)

    def step(self, dt_s: float) -> None:
        """Advance the excursion state by dt_s seconds."""
        if dt_s <= 0:
            return

        if self.hvac_on:
            self.temperature_offset_c = _ramp(self.temperature_offset_c, 0.0, self.hvac_ramp_c_per_s, dt_s)
        else:
            self.temperature_offset_c = _ramp(
                self.temperature_offset_c, self.ambient_c - self.setpoint_c, self.off_drift_c_per_s, dt_s
            )

        if self.extraction_on:
            self.co2_offset_ppm = max(0.0, self.co2_offset_ppm - self.co2_recovery_ppm_per_s * dt_s)
        else:
            self.co2_offset_ppm += self.co2_buildup_ppm_per_s * dt_s

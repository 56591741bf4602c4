"""
Spec & health classification.

Turns each parameter of a reading into:
- a health state (healthy / stale / faulted / calibration due)
- a spec status (in spec / approaching / out of spec) relative to the pod
  setpoint for that parameter

Faulted samples get no spec verdict and are not used for alarm evaluation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from podalarm.core.metrics.derived import validate_reading
from podalarm.domain.models import (
    HealthState,
    Parameter,
    PodContext,
    SpecStatus,
    TelemetryReading,
)

DEFAULT_STALE_AFTER_S = 30.0
DEFAULT_WARNING_RATIO = 0.8


def classify_health(
    value: Optional[float],
    parameter: Parameter,
    fault_flag: bool,
    age_seconds: float,
    calibration_due: bool,
    stale_after_s: float = DEFAULT_STALE_AFTER_S,
) -> HealthState:
    """
    Classify the health of one parameter sample.

    Precedence is fixed: FAULTED, then CAL_DUE, then STALE, then HEALTHY.

    Parameters
    ----------
    value
        Sample value (None counts as failing validation).
    parameter
        Parameter the value belongs to (selects physical bounds).
    fault_flag
        Sensor-reported fault.
    age_seconds
        Time since the sample was captured.
    calibration_due
        Whether the sensor is past its calibration date.
    stale_after_s
        Age beyond which a sample is stale.

    Returns
    -------
    HealthState
        Health classification.
    """
    if fault_flag or not validate_reading(parameter, value):
        return HealthState.FAULTED
    if calibration_due:
        return HealthState.CAL_DUE
    if age_seconds > stale_after_s:
        return HealthState.STALE
    return HealthState.HEALTHY


def get_spec_status(
    actual: float,
    setpoint: float,
    tolerance: float,
    warning_ratio: float = DEFAULT_WARNING_RATIO,
) -> SpecStatus:
    """
    Classify a value relative to a setpoint.

    Parameters
    ----------
    actual
        Measured value.
    setpoint
        Target value.
    tolerance
        Allowed absolute deviation.
    warning_ratio
        Fraction of the tolerance above which the value is "approaching".

    Returns
    -------
    SpecStatus
        OUT_OF_SPEC if |actual - setpoint| > tolerance, APPROACHING if it is
        above ``tolerance * warning_ratio``, IN_SPEC otherwise.
    """
    deviation = abs(actual - setpoint)
    if deviation > tolerance:
        return SpecStatus.OUT_OF_SPEC
    if deviation > tolerance * warning_ratio:
        return SpecStatus.APPROACHING
    return SpecStatus.IN_SPEC


@dataclass(frozen=True)
class ParameterStatus:
    """
    Classification of one parameter of a reading.

    Parameters
    ----------
    parameter
        Parameter classified.
    value
        Raw value (may be None or out of bounds when faulted).
    health
        Health state.
    spec_status
        Spec verdict; None when faulted or when the pod has no setpoint.
    target
        Setpoint target in effect (day or night value).
    tolerance
        Setpoint tolerance in effect.
    deviation
        Signed drift ``value - target``; None without a verdict.
    """

    parameter: Parameter
    value: Optional[float]
    health: HealthState
    spec_status: Optional[SpecStatus] = None
    target: Optional[float] = None
    tolerance: Optional[float] = None
    deviation: Optional[float] = None

    @property
    def usable(self) -> bool:
        """Whether the value may feed spec/alarm evaluation."""
        return self.health is not HealthState.FAULTED and self.value is not None


@dataclass(frozen=True)
class ClassifiedReading:
    """A reading together with its per-parameter classification."""

    reading: TelemetryReading
    pod: PodContext
    parameters: Dict[Parameter, ParameterStatus]

    def status_of(self, parameter: Parameter) -> Optional[ParameterStatus]:
        return self.parameters.get(parameter)


def classify_parameter(
    reading: TelemetryReading,
    pod: PodContext,
    parameter: Parameter,
    now: datetime,
    stale_after_s: float = DEFAULT_STALE_AFTER_S,
    warning_ratio: float = DEFAULT_WARNING_RATIO,
) -> ParameterStatus:
    """
    Classify one parameter of ``reading`` for ``pod`` at time ``now``.

    Returns
    -------
    ParameterStatus
        Health plus, for usable values with a setpoint, the spec verdict.
    """
    value = reading.value_of(parameter)
    age = max(0.0, (now - reading.timestamp).total_seconds())
    health = classify_health(
        value,
        parameter,
        fault_flag=reading.fault_flag(parameter) or reading.communication_fault,
        age_seconds=age,
        calibration_due=parameter in pod.calibration_due,
        stale_after_s=stale_after_s,
    )

    if health is HealthState.FAULTED or value is None:
        return ParameterStatus(parameter=parameter, value=value, health=health)

    sp = pod.setpoints.get(parameter)
    if sp is None:
        return ParameterStatus(parameter=parameter, value=value, health=health)

    target = sp.target(pod.is_day)
    ratio = sp.warning_ratio if sp.warning_ratio is not None else warning_ratio
    return ParameterStatus(
        parameter=parameter,
        value=value,
        health=health,
        spec_status=get_spec_status(value, target, sp.tolerance, ratio),
        target=target,
        tolerance=sp.tolerance,
        deviation=value - target,
    )


def classify_reading(
    reading: TelemetryReading,
    pod: PodContext,
    now: Optional[datetime] = None,
    stale_after_s: float = DEFAULT_STALE_AFTER_S,
    warning_ratio: float = DEFAULT_WARNING_RATIO,
) -> ClassifiedReading:
    """
    Classify every parameter of a reading.

    Parameters
    ----------
    reading
        Reading to classify (derived metrics already filled in).
    pod
        Pod context providing setpoints and calibration state.
    now
        Classification time used for staleness. Defaults to the reading
        timestamp (a reading is never stale relative to itself).
    stale_after_s
        Staleness threshold in seconds.
    warning_ratio
        Default warning ratio for setpoints that do not define one.

    Returns
    -------
    ClassifiedReading
        Reading plus per-parameter classification.
    """
    ts = now or reading.timestamp
    params = {
        p: classify_parameter(reading, pod, p, ts, stale_after_s, warning_ratio)
        for p in Parameter
    }
    return ClassifiedReading(reading=reading, pod=pod, parameters=params)

"""
Alarm trigger conditions.

Stateless building blocks used by the policy evaluator:

- map an alarm type onto the parameter (and direction) it watches
- evaluate ``actual <op> threshold``
- decide whether a value has fallen back inside the clear-side hysteresis band
- evaluate spec-driven policies (no explicit threshold) against the pod setpoint
- build the human-readable alarm message

A condition has three outcomes per reading: *holds* (breach), *cleared*
(back inside threshold +/- deadband), or neither (inside the hysteresis band,
state must not change).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from podalarm.core.classify.classifier import ClassifiedReading, ParameterStatus
from podalarm.domain.models import AlarmPolicy, AlarmType, Parameter, ThresholdOperator

_PARAMETER_OF: Dict[AlarmType, Parameter] = {
    AlarmType.TEMPERATURE_HIGH: Parameter.TEMPERATURE,
    AlarmType.TEMPERATURE_LOW: Parameter.TEMPERATURE,
    AlarmType.HUMIDITY_HIGH: Parameter.HUMIDITY,
    AlarmType.HUMIDITY_LOW: Parameter.HUMIDITY,
    AlarmType.CO2_HIGH: Parameter.CO2,
    AlarmType.CO2_LOW: Parameter.CO2,
    AlarmType.VPD_OUT_OF_RANGE: Parameter.VPD,
}

# Direction of a breach: +1 above, -1 below, 0 either side.
_DIRECTION_OF: Dict[AlarmType, int] = {
    AlarmType.TEMPERATURE_HIGH: 1,
    AlarmType.TEMPERATURE_LOW: -1,
    AlarmType.HUMIDITY_HIGH: 1,
    AlarmType.HUMIDITY_LOW: -1,
    AlarmType.CO2_HIGH: 1,
    AlarmType.CO2_LOW: -1,
    AlarmType.VPD_OUT_OF_RANGE: 0,
}

_LABELS: Dict[AlarmType, str] = {
    AlarmType.TEMPERATURE_HIGH: "Temperature High",
    AlarmType.TEMPERATURE_LOW: "Temperature Low",
    AlarmType.HUMIDITY_HIGH: "Humidity High",
    AlarmType.HUMIDITY_LOW: "Humidity Low",
    AlarmType.CO2_HIGH: "CO2 High",
    AlarmType.CO2_LOW: "CO2 Low",
    AlarmType.VPD_OUT_OF_RANGE: "VPD Out of Range",
    AlarmType.SENSOR_FAULT: "Sensor Fault",
    AlarmType.DEVICE_OFFLINE: "Device Offline",
}

_UNITS: Dict[Parameter, str] = {
    Parameter.TEMPERATURE: "°C",
    Parameter.HUMIDITY: "%",
    Parameter.CO2: " ppm",
    Parameter.LIGHT: "%",
    Parameter.VPD: " kPa",
}


def parameter_for(alarm_type: AlarmType) -> Optional[Parameter]:
    """Return the watched parameter, or None for flag-driven alarm types."""
    return _PARAMETER_OF.get(alarm_type)


def evaluate_threshold(actual: float, op: ThresholdOperator, threshold: float) -> bool:
    """
    Evaluate ``actual <op> threshold``.

    Parameters
    ----------
    actual
        Measured value.
    op
        Comparison operator.
    threshold
        Policy threshold.

    Returns
    -------
    bool
        Result of the comparison.
    """
    if op is ThresholdOperator.GT:
        return actual > threshold
    if op is ThresholdOperator.LT:
        return actual < threshold
    if op is ThresholdOperator.GE:
        return actual >= threshold
    if op is ThresholdOperator.LE:
        return actual <= threshold
    if op is ThresholdOperator.EQ:
        return actual == threshold
    if op is ThresholdOperator.NE:
        return actual != threshold
    raise ValueError(f"Unsupported operator: {op!r}")


def threshold_cleared(
    actual: float,
    op: ThresholdOperator,
    threshold: float,
    deadband: Optional[float],
) -> bool:
    """
    Return whether ``actual`` is back inside ``threshold +/- deadband``.

    High-side operators clear below ``threshold - deadband``; low-side
    operators clear above ``threshold + deadband``. Without a deadband (or
    for equality operators) a value clears as soon as the condition is false.
    """
    db = deadband or 0.0
    if db <= 0 or op in (ThresholdOperator.EQ, ThresholdOperator.NE):
        return not evaluate_threshold(actual, op, threshold)
    if op in (ThresholdOperator.GT, ThresholdOperator.GE):
        return actual < threshold - db
    return actual > threshold + db


@dataclass(frozen=True)
class ConditionResult:
    """
    Outcome of evaluating one policy against one classified reading.

    Parameters
    ----------
    holds
        Breach condition is true.
    cleared
        Value is back inside the clear-side hysteresis band.
    value
        Value the condition was evaluated on (None for flag-driven types).
    message
        Alarm message to use if the condition opens/refreshes an alarm.
    """

    holds: bool
    cleared: bool
    value: Optional[float]
    message: str


def _fmt(value: Optional[float], parameter: Optional[Parameter]) -> str:
    if value is None:
        return "n/a"
    unit = _UNITS.get(parameter, "") if parameter is not None else ""
    return f"{value:.2f}{unit}" if parameter is Parameter.VPD else f"{value:.1f}{unit}"


def build_message(
    pod_name: str,
    policy: AlarmPolicy,
    value: Optional[float],
    status: Optional[ParameterStatus] = None,
) -> str:
    """
    Build the alarm message for a trigger.

    Examples
    --------
    ``"Flower Room 1: Temperature High - 26.5°C (setpoint 24.0°C ± 2.0)"``
    ``"Flower Room 1: CO2 High - 1650.0 ppm (threshold > 1500.0 ppm)"``
    """
    label = _LABELS.get(policy.alarm_type, policy.alarm_type.value)
    parameter = parameter_for(policy.alarm_type)

    if parameter is None:
        return f"{pod_name}: {label}"

    head = f"{pod_name}: {label} - {_fmt(value, parameter)}"
    if policy.threshold_value is not None:
        return f"{head} (threshold {policy.threshold_operator.value} {_fmt(policy.threshold_value, parameter)})"
    if status is not None and status.target is not None:
        return f"{head} (setpoint {_fmt(status.target, parameter)} ± {status.tolerance})"
    return head


def _spec_condition(direction: int, status: ParameterStatus, deadband: Optional[float]) -> Tuple[bool, bool]:
    """
    Directional spec check on the signed deviation from the setpoint.

    Returns ``(holds, cleared)``.
    """
    dev = status.deviation or 0.0
    tol = status.tolerance or 0.0
    clear_limit = tol - (deadband or 0.0)

    if direction > 0:
        holds = dev > tol
        cleared = dev < clear_limit if deadband else not holds
    elif direction < 0:
        holds = dev < -tol
        cleared = dev > -clear_limit if deadband else not holds
    else:
        holds = abs(dev) > tol
        cleared = abs(dev) < clear_limit if deadband else not holds
    return holds, cleared


def evaluate_condition(policy: AlarmPolicy, classified: ClassifiedReading) -> Optional[ConditionResult]:
    """
    Evaluate one policy against a classified reading.

    Parameters
    ----------
    policy
        Policy to evaluate.
    classified
        Reading with its per-parameter classification.

    Returns
    -------
    ConditionResult or None
        None when the policy cannot be evaluated for this reading: the
        watched parameter is faulted/missing, or the policy is spec-driven
        and the pod has no setpoint for the parameter. Callers must leave
        the policy's breach state untouched in that case.
    """
    reading = classified.reading
    pod_name = classified.pod.display_name

    if policy.alarm_type is AlarmType.SENSOR_FAULT:
        holds = reading.any_sensor_fault
        return ConditionResult(holds=holds, cleared=not holds, value=None, message=build_message(pod_name, policy, None))

    if policy.alarm_type is AlarmType.DEVICE_OFFLINE:
        holds = reading.communication_fault
        return ConditionResult(holds=holds, cleared=not holds, value=None, message=build_message(pod_name, policy, None))

    parameter = parameter_for(policy.alarm_type)
    if parameter is None:
        return None

    status = classified.status_of(parameter)
    if status is None or not status.usable:
        return None

    value = status.value
    assert value is not None

    if policy.threshold_value is not None:
        holds = evaluate_threshold(value, policy.threshold_operator, policy.threshold_value)
        cleared = threshold_cleared(value, policy.threshold_operator, policy.threshold_value, policy.deadband_value)
    else:
        if status.spec_status is None:
            return None
        holds, cleared = _spec_condition(_DIRECTION_OF[policy.alarm_type], status, policy.deadband_value)

    return ConditionResult(
        holds=holds,
        cleared=cleared and not holds,
        value=value,
        message=build_message(pod_name, policy, value, status),
    )

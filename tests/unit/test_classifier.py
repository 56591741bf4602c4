"""
Unit tests for spec and health classification.

We verify:
- spec status boundaries (in spec / approaching / out of spec)
- health precedence: faulted > calibration due > stale > healthy
- faulted parameters carry no spec verdict
- day/night targets and per-setpoint warning ratios
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from podalarm.core.classify.classifier import classify_health, classify_reading, get_spec_status
from podalarm.domain.models import (
    HealthState,
    Parameter,
    PodContext,
    Setpoint,
    SpecStatus,
    TelemetryReading,
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _pod(**kwargs) -> PodContext:
    """Pod with a 24 ± 2 °C temperature setpoint (night target 20 °C)."""
    base = dict(
        pod_id="pod-1",
        organization_id="org-1",
        name="Flower Room 1",
        setpoints={
            Parameter.TEMPERATURE: Setpoint(Parameter.TEMPERATURE, day_value=24.0, tolerance=2.0, night_value=20.0),
            Parameter.HUMIDITY: Setpoint(Parameter.HUMIDITY, day_value=60.0, tolerance=10.0, warning_ratio=0.5),
        },
    )
    base.update(kwargs)
    return PodContext(**base)


def _reading(**kwargs) -> TelemetryReading:
    base = dict(pod_id="pod-1", timestamp=T0, temperature_c=24.0, humidity_pct=60.0, co2_ppm=900.0)
    base.update(kwargs)
    return TelemetryReading(**base)


@pytest.mark.parametrize(
    "actual, expected",
    [
        (24.0, SpecStatus.IN_SPEC),
        (25.5, SpecStatus.IN_SPEC),
        (25.8, SpecStatus.APPROACHING),
        (22.2, SpecStatus.APPROACHING),
        (26.0, SpecStatus.APPROACHING),
        (27.0, SpecStatus.OUT_OF_SPEC),
        (21.9, SpecStatus.OUT_OF_SPEC),
    ],
)
def test_spec_status_boundaries(actual: float, expected: SpecStatus) -> None:
    assert get_spec_status(actual, 24.0, 2.0, 0.8) is expected


def test_health_precedence() -> None:
    """A faulted sample wins over calibration due and staleness."""
    assert classify_health(24.0, Parameter.TEMPERATURE, True, 999.0, True) is HealthState.FAULTED
    assert classify_health(24.0, Parameter.TEMPERATURE, False, 999.0, True) is HealthState.CAL_DUE
    assert classify_health(24.0, Parameter.TEMPERATURE, False, 31.0, False) is HealthState.STALE
    assert classify_health(24.0, Parameter.TEMPERATURE, False, 30.0, False) is HealthState.HEALTHY


def test_out_of_bounds_value_is_faulted() -> None:
    assert classify_health(80.0, Parameter.TEMPERATURE, False, 0.0, False) is HealthState.FAULTED
    assert classify_health(None, Parameter.CO2, False, 0.0, False) is HealthState.FAULTED


def test_classify_reading_spec_and_deviation() -> None:
    out = classify_reading(_reading(temperature_c=26.5), _pod())

    st = out.status_of(Parameter.TEMPERATURE)
    assert st is not None
    assert st.health is HealthState.HEALTHY
    assert st.spec_status is SpecStatus.OUT_OF_SPEC
    assert st.target == 24.0
    assert st.deviation == pytest.approx(2.5)


def test_faulted_parameter_has_no_spec_verdict() -> None:
    out = classify_reading(_reading(temperature_c=30.0, temp_sensor_fault=True), _pod())

    st = out.status_of(Parameter.TEMPERATURE)
    assert st.health is HealthState.FAULTED
    assert st.spec_status is None
    assert st.usable is False


def test_parameter_without_setpoint_has_no_verdict() -> None:
    out = classify_reading(_reading(co2_ppm=2500.0), _pod())

    st = out.status_of(Parameter.CO2)
    assert st.health is HealthState.HEALTHY
    assert st.spec_status is None
    assert st.usable is True


def test_night_target_is_used_when_lights_off() -> None:
    out = classify_reading(_reading(temperature_c=24.0), _pod(is_day=False))

    st = out.status_of(Parameter.TEMPERATURE)
    assert st.target == 20.0
    assert st.spec_status is SpecStatus.OUT_OF_SPEC


def test_setpoint_warning_ratio_overrides_default() -> None:
    """Humidity uses 0.5: 66 % is 6 points off a 10 point tolerance."""
    out = classify_reading(_reading(humidity_pct=66.0), _pod())
    assert out.status_of(Parameter.HUMIDITY).spec_status is SpecStatus.APPROACHING


def test_staleness_measured_against_explicit_now() -> None:
    pod = _pod()
    r = _reading()

    fresh = classify_reading(r, pod)
    old = classify_reading(r, pod, now=T0 + timedelta(seconds=45))

    assert fresh.status_of(Parameter.TEMPERATURE).health is HealthState.HEALTHY
    assert old.status_of(Parameter.TEMPERATURE).health is HealthState.STALE
    assert old.status_of(Parameter.TEMPERATURE).spec_status is SpecStatus.IN_SPEC


def test_calibration_due_sensor_still_classified() -> None:
    out = classify_reading(_reading(temperature_c=27.0), _pod(calibration_due=frozenset({Parameter.TEMPERATURE})))

    st = out.status_of(Parameter.TEMPERATURE)
    assert st.health is HealthState.CAL_DUE
    assert st.spec_status is SpecStatus.OUT_OF_SPEC

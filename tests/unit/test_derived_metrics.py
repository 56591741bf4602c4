"""
Unit tests for podalarm.core.metrics.derived.

We verify:
- VPD and dew point formulas against known values
- unit conversions
- physical-bounds validation (None / NaN / out of range)
- derive_reading fills VPD only from valid, non-faulted inputs
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest

from podalarm.core.metrics.derived import (
    calculate_dew_point,
    calculate_vpd,
    celsius_to_fahrenheit,
    derive_reading,
    fahrenheit_to_celsius,
    validate_reading,
)
from podalarm.domain.models import Parameter, TelemetryReading

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_vpd_matches_reference_value() -> None:
    """24 °C at 60 % RH gives roughly 1.19 kPa."""
    assert calculate_vpd(24.0, 60.0) == pytest.approx(1.19, abs=0.01)


def test_vpd_is_zero_at_saturation() -> None:
    assert calculate_vpd(20.0, 100.0) == 0.0


def test_vpd_grows_with_temperature_at_fixed_humidity() -> None:
    assert calculate_vpd(28.0, 60.0) > calculate_vpd(22.0, 60.0)


def test_dew_point_reference_and_saturation() -> None:
    assert calculate_dew_point(25.0, 60.0) == pytest.approx(16.7, abs=0.2)
    assert calculate_dew_point(18.0, 100.0) == pytest.approx(18.0, abs=0.01)


def test_dew_point_undefined_for_zero_humidity() -> None:
    with pytest.raises(ValueError):
        calculate_dew_point(25.0, 0.0)


def test_temperature_conversions() -> None:
    assert fahrenheit_to_celsius(212.0) == pytest.approx(100.0)
    assert celsius_to_fahrenheit(-40.0) == pytest.approx(-40.0)


@pytest.mark.parametrize(
    "kind, value, ok",
    [
        (Parameter.TEMPERATURE, 24.0, True),
        (Parameter.TEMPERATURE, 50.0, True),
        (Parameter.TEMPERATURE, 50.1, False),
        (Parameter.HUMIDITY, -0.1, False),
        (Parameter.CO2, 10000.0, True),
        (Parameter.CO2, None, False),
        (Parameter.VPD, math.nan, False),
    ],
)
def test_validate_reading_bounds(kind: Parameter, value, ok: bool) -> None:
    assert validate_reading(kind, value) is ok


def test_derive_reading_fills_vpd_without_mutating_input() -> None:
    r = TelemetryReading(pod_id="pod-1", timestamp=T0, temperature_c=24.0, humidity_pct=60.0)

    out = derive_reading(r)

    assert r.vpd_kpa is None
    assert out.vpd_kpa == calculate_vpd(24.0, 60.0)


def test_derive_reading_keeps_existing_vpd() -> None:
    r = TelemetryReading(pod_id="pod-1", timestamp=T0, temperature_c=24.0, humidity_pct=60.0, vpd_kpa=0.9)
    assert derive_reading(r) is r


def test_derive_reading_skips_faulted_or_invalid_inputs() -> None:
    faulted = TelemetryReading(pod_id="pod-1", timestamp=T0, temperature_c=24.0, humidity_pct=60.0,
                               humidity_sensor_fault=True)
    invalid = TelemetryReading(pod_id="pod-1", timestamp=T0, temperature_c=99.0, humidity_pct=60.0)
    missing = TelemetryReading(pod_id="pod-1", timestamp=T0, temperature_c=24.0)

    assert derive_reading(faulted).vpd_kpa is None
    assert derive_reading(invalid).vpd_kpa is None
    assert derive_reading(missing).vpd_kpa is None

"""
Derived environmental metrics.

Pure functions computing vapor pressure deficit and dew point from air
temperature and relative humidity, unit conversions, and physical-bounds
validation of raw parameter values.
"""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Dict, Optional, Tuple

from podalarm.domain.models import Parameter, TelemetryReading

# Tetens / Magnus coefficients (over water).
_SVP_A_KPA = 0.6108
_MAGNUS_B = 17.27
_MAGNUS_C = 237.3

PHYSICAL_BOUNDS: Dict[Parameter, Tuple[float, float]] = {
    Parameter.TEMPERATURE: (-10.0, 50.0),
    Parameter.HUMIDITY: (0.0, 100.0),
    Parameter.CO2: (0.0, 10000.0),
    Parameter.LIGHT: (0.0, 100.0),
    Parameter.VPD: (0.0, 10.0),
}


def saturation_vapor_pressure(temp_c: float) -> float:
    """Saturation vapor pressure in kPa (Tetens approximation)."""
    return _SVP_A_KPA * math.exp((_MAGNUS_B * temp_c) / (temp_c + _MAGNUS_C))


def calculate_vpd(temp_c: float, rh_pct: float) -> float:
    """
    Compute the vapor pressure deficit.

    Parameters
    ----------
    temp_c
        Air temperature in degrees Celsius.
    rh_pct
        Relative humidity in percent (0..100).

    Returns
    -------
    float
        VPD in kPa, rounded to 2 decimal places.

    Notes
    -----
    SVP = 0.6108 * exp(17.27*T / (T + 237.3)); AVP = SVP * RH/100;
    VPD = SVP - AVP.
    """
    svp = saturation_vapor_pressure(temp_c)
    avp = svp * (rh_pct / 100.0)
    return round(svp - avp, 2)


def calculate_dew_point(temp_c: float, rh_pct: float) -> float:
    """
    Compute the dew point with the Magnus formula.

    Parameters
    ----------
    temp_c
        Air temperature in degrees Celsius.
    rh_pct
        Relative humidity in percent. Must be > 0.

    Returns
    -------
    float
        Dew point in degrees Celsius, rounded to 2 decimal places.

    Raises
    ------
    ValueError
        If ``rh_pct`` is not positive (dew point undefined).
    """
    if rh_pct <= 0:
        raise ValueError("Dew point is undefined for non-positive relative humidity")

    gamma = math.log(rh_pct / 100.0) + (_MAGNUS_B * temp_c) / (_MAGNUS_C + temp_c)
    return round((_MAGNUS_C * gamma) / (_MAGNUS_B - gamma), 2)


def fahrenheit_to_celsius(temp_f: float) -> float:
    return (temp_f - 32.0) * 5.0 / 9.0


def celsius_to_fahrenheit(temp_c: float) -> float:
    return temp_c * 9.0 / 5.0 + 32.0


def validate_reading(kind: Parameter, value: Optional[float]) -> bool:
    """
    Check a raw value against the fixed physical bounds of its parameter.

    A value failing validation is not rejected by callers: it is kept for
    audit and treated as faulted by the classifier.

    Parameters
    ----------
    kind
        Parameter the value belongs to.
    value
        Raw value. None and NaN are invalid.

    Returns
    -------
    bool
        True if the value is finite and inside the bounds (inclusive).
    """
    if value is None:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False

    lo, hi = PHYSICAL_BOUNDS[kind]
    return lo <= value <= hi


def derive_reading(reading: TelemetryReading) -> TelemetryReading:
    """
    Return ``reading`` with derived fields filled in.

    VPD is computed only when absent and both temperature and humidity are
    present, valid and not flagged faulty. The input is never modified.
    """
    if reading.vpd_kpa is not None:
        return reading

    t = reading.temperature_c
    rh = reading.humidity_pct
    if reading.temp_sensor_fault or reading.humidity_sensor_fault:
        return reading
    if not validate_reading(Parameter.TEMPERATURE, t) or not validate_reading(Parameter.HUMIDITY, rh):
        return reading

    return replace(reading, vpd_kpa=calculate_vpd(t, rh))  # type: ignore[arg-type]

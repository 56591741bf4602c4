"""
Ingestion record decoding.

Readings arrive as JSON objects (one per NDJSON line) with a pod id, an
ISO-8601 timestamp, parameter values, per-sensor fault booleans and a
``data_source`` tag. This module turns them into immutable
`TelemetryReading` objects with UTC timestamps.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional

from podalarm.core.metrics.derived import fahrenheit_to_celsius
from podalarm.domain.equipment import EquipmentControl, parse_control, to_record
from podalarm.domain.models import DataSource, TelemetryReading

READING_TYPE = "pod_reading"


def parse_timestamp(s: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    A trailing ``Z`` is accepted. Naive timestamps are taken as UTC.

    Raises
    ------
    ValueError
        If the string is not a valid ISO-8601 datetime.
    """
    text = s.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _opt_float(obj: Mapping[str, Any], key: str) -> Optional[float]:
    v = obj.get(key)
    if v is None or v == "":
        return None
    return float(v)


def decode_reading(obj: Mapping[str, Any]) -> TelemetryReading:
    """
    Decode an ingestion record into a `TelemetryReading`.

    Temperature may be given in Celsius (``temperature_c``) or Fahrenheit
    (``temperature_f``); Celsius wins when both are present.

    Parameters
    ----------
    obj
        JSON-decoded record.

    Returns
    -------
    TelemetryReading
        Decoded reading.

    Raises
    ------
    KeyError
        If ``pod_id`` or ``timestamp`` is missing.
    ValueError
        If the record type, data source or a value is invalid.
    """
    t = obj.get("type", READING_TYPE)
    if t != READING_TYPE:
        raise ValueError(f"Unknown message type: {t}")

    temp_c = _opt_float(obj, "temperature_c")
    if temp_c is None:
        temp_f = _opt_float(obj, "temperature_f")
        temp_c = round(fahrenheit_to_celsius(temp_f), 2) if temp_f is not None else None

    equipment: Dict[str, EquipmentControl] = {
        str(name): parse_control(raw) for name, raw in (obj.get("equipment") or {}).items()
    }

    return TelemetryReading(
        pod_id=str(obj["pod_id"]),
        timestamp=parse_timestamp(str(obj["timestamp"])),
        temperature_c=temp_c,
        humidity_pct=_opt_float(obj, "humidity_pct"),
        co2_ppm=_opt_float(obj, "co2_ppm"),
        light_intensity_pct=_opt_float(obj, "light_intensity_pct"),
        vpd_kpa=_opt_float(obj, "vpd_kpa"),
        temp_sensor_fault=bool(obj.get("temp_sensor_fault", False)),
        humidity_sensor_fault=bool(obj.get("humidity_sensor_fault", False)),
        co2_sensor_fault=bool(obj.get("co2_sensor_fault", False)),
        pressure_sensor_fault=bool(obj.get("pressure_sensor_fault", False)),
        communication_fault=bool(obj.get("communication_fault", False)),
        equipment=equipment,
        data_source=DataSource(obj.get("data_source", DataSource.TAGOIO.value)),
        reading_id=obj.get("reading_id"),
        active_recipe_id=obj.get("active_recipe_id"),
    )


def reading_to_record(r: TelemetryReading) -> Dict[str, Any]:
    """Serialize a reading back to its ingestion/record form (UTC ISO timestamps)."""
    return {
        "type": READING_TYPE,
        "pod_id": r.pod_id,
        "timestamp": r.timestamp.astimezone(timezone.utc).isoformat(),
        "temperature_c": r.temperature_c,
        "humidity_pct": r.humidity_pct,
        "co2_ppm": r.co2_ppm,
        "light_intensity_pct": r.light_intensity_pct,
        "vpd_kpa": r.vpd_kpa,
        "temp_sensor_fault": r.temp_sensor_fault,
        "humidity_sensor_fault": r.humidity_sensor_fault,
        "co2_sensor_fault": r.co2_sensor_fault,
        "pressure_sensor_fault": r.pressure_sensor_fault,
        "communication_fault": r.communication_fault,
        "equipment": {name: to_record(c) for name, c in r.equipment.items()},
        "data_source": r.data_source.value,
        "reading_id": r.reading_id,
        "active_recipe_id": r.active_recipe_id,
    }


def iter_json_objects(text: str) -> Iterator[Dict[str, Any]]:
    """
    Yield one or more JSON objects found in a string.

    Tolerates objects concatenated without delimiters (``'{"a": 1}{"b": 2}'``).
    Only dictionary objects are yielded.

    Parameters
    ----------
    text
        Input string potentially containing one or more JSON objects.

    Yields
    ------
    dict
        Parsed JSON objects.
    """
    s = text.strip()
    if not s:
        return

    dec = json.JSONDecoder()
    i = 0
    n = len(s)

    while i < n:
        while i < n and s[i].isspace():
            i += 1
        if i >= n:
            break

        obj, end = dec.raw_decode(s, i)
        if isinstance(obj, dict):
            yield obj
        i = end


def decode_message(line: str) -> TelemetryReading:
    """
    Decode an NDJSON line into a reading.

    If several JSON objects were concatenated on one line, the first one is
    decoded.

    Raises
    ------
    ValueError
        If no JSON object is found or the record is invalid.
    """
    for obj in iter_json_objects(line):
        return decode_reading(obj)

    raise ValueError("No JSON object found in line")

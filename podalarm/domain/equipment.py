"""
Equipment control state.

Pod equipment (cooling, heating, dehumidifier, CO2 injection, ...) is modelled
as a tagged variant:

- ``Off``              equipment is off
- ``Manual(level)``    operator-set output level, 0..100 percent
- ``Auto(config)``     controller regulates the output from its own config

Older consumers only understand a boolean "on/off" flag. That view is produced
by :func:`to_boolean` and parsed back by :func:`from_boolean`; both are pure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Union


@dataclass(frozen=True)
class Off:
    pass


@dataclass(frozen=True)
class Manual:
    """Manual output level in percent (0..100)."""

    level: float = 100.0

    def __post_init__(self) -> None:
        if not (0.0 <= self.level <= 100.0):
            raise ValueError(f"Manual level must be within 0..100, got {self.level}")


@dataclass(frozen=True)
class Auto:
    """Controller-regulated output; ``config`` is opaque to the engine."""

    config: Mapping[str, Any] = field(default_factory=dict)


EquipmentControl = Union[Off, Manual, Auto]


def to_boolean(control: EquipmentControl) -> bool:
    """
    Legacy on/off view of an equipment control state.

    ``Auto`` counts as on: the controller may run the equipment at any time.

    Parameters
    ----------
    control
        Equipment control state.

    Returns
    -------
    bool
        False for ``Off`` and ``Manual(0)``, True otherwise.
    """
    if isinstance(control, Off):
        return False
    if isinstance(control, Manual):
        return control.level > 0
    if isinstance(control, Auto):
        return True
    raise TypeError(f"Unknown equipment control: {control!r}")


def from_boolean(is_on: bool) -> EquipmentControl:
    """Map a legacy boolean flag onto the tagged variant."""
    return Manual(100.0) if is_on else Off()


def parse_control(raw: Any) -> EquipmentControl:
    """
    Decode an equipment state as found in ingestion records.

    Accepted forms
    --------------
    - booleans (legacy ``cooling_on`` style fields)
    - strings ``"OFF"``, ``"ON"``, ``"AUTO"`` (case-insensitive)
    - mappings ``{"mode": "manual", "level": 40}`` / ``{"mode": "auto", ...}``

    Raises
    ------
    ValueError
        If the value cannot be interpreted.
    """
    if isinstance(raw, bool):
        return from_boolean(raw)

    if isinstance(raw, str):
        s = raw.strip().upper()
        if s == "OFF":
            return Off()
        if s == "ON":
            return Manual(100.0)
        if s == "AUTO":
            return Auto()
        raise ValueError(f"Unknown equipment state: {raw!r}")

    if isinstance(raw, Mapping):
        mode = str(raw.get("mode", "")).lower()
        if mode == "off":
            return Off()
        if mode == "manual":
            return Manual(float(raw.get("level", 100.0)))
        if mode == "auto":
            return Auto(dict(raw.get("config", {})))
        raise ValueError(f"Unknown equipment mode: {mode!r}")

    raise ValueError(f"Unsupported equipment state: {raw!r}")


def to_record(control: EquipmentControl) -> Dict[str, Any]:
    """Serialize a control state to a JSON-friendly mapping."""
    if isinstance(control, Off):
        return {"mode": "off"}
    if isinstance(control, Manual):
        return {"mode": "manual", "level": control.level}
    return {"mode": "auto", "config": dict(control.config)}

"""
Unit tests for the equipment control variant and its legacy boolean view.
"""

from __future__ import annotations

import pytest

from podalarm.domain.equipment import Auto, Manual, Off, from_boolean, parse_control, to_boolean, to_record


def test_boolean_view() -> None:
    assert to_boolean(Off()) is False
    assert to_boolean(Manual(0.0)) is False
    assert to_boolean(Manual(35.0)) is True
    assert to_boolean(Auto({"target": 24})) is True


def test_from_boolean_round_trips_the_flag() -> None:
    assert to_boolean(from_boolean(True)) is True
    assert from_boolean(False) == Off()


def test_manual_level_is_bounded() -> None:
    with pytest.raises(ValueError):
        Manual(120.0)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (True, Manual(100.0)),
        ("off", Off()),
        ("AUTO", Auto()),
        ({"mode": "manual", "level": 40}, Manual(40.0)),
        ({"mode": "auto", "config": {"target": 24}}, Auto({"target": 24})),
    ],
)
def test_parse_control(raw, expected) -> None:
    assert parse_control(raw) == expected


def test_parse_control_rejects_unknown_values() -> None:
    with pytest.raises(ValueError):
        parse_control("BOOST")
    with pytest.raises(ValueError):
        parse_control(3)


def test_to_record_is_parseable() -> None:
    assert parse_control(to_record(Manual(25.0))) == Manual(25.0)
    assert to_record(Off()) == {"mode": "off"}

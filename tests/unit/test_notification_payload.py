"""
Unit tests for podalarm.notification.payload.

These tests validate that:
- alarm and notification snapshots serialize enums as values and
  timestamps with second precision
- build_delivery_payload produces subject/body/notification/alarm
- event_to_dict embeds the alarm snapshot of the transition

No I/O is performed.
"""

from __future__ import annotations

from datetime import datetime, timezone

from podalarm.domain.events import AlarmEvent, AlarmTransition
from podalarm.domain.models import (
    Alarm,
    AlarmSeverity,
    AlarmStatus,
    AlarmType,
    Notification,
    NotificationChannel,
    NotificationKind,
    NotificationUrgency,
)
from podalarm.notification.payload import alarm_to_dict, build_delivery_payload, event_to_dict, iso_utc

TS = datetime(2026, 1, 1, 10, 0, 5, 123456, tzinfo=timezone.utc)


def _alarm() -> Alarm:
    return Alarm(
        alarm_id="a1",
        pod_id="pod-1",
        organization_id="org-1",
        policy_id="co2-high",
        alarm_type=AlarmType.CO2_HIGH,
        severity=AlarmSeverity.CRITICAL,
        status=AlarmStatus.ACTIVE,
        message="Veg Room: CO2 High - 1800ppm",
        triggered_at=TS,
        last_updated_at=TS,
        threshold_value=1500.0,
        actual_value=1800.0,
        escalated_to_level=2,
    )


def _notification(level: int = 2) -> Notification:
    return Notification(
        notification_id="n1",
        user_id="u-sup",
        organization_id="org-1",
        channel=NotificationChannel.SMS,
        kind=NotificationKind.ESCALATED,
        message="[Escalation L2] Veg Room: CO2 High - 1800ppm",
        urgency=NotificationUrgency.HIGH,
        sent_at=TS,
        alarm_id="a1",
        escalation_level=level,
    )


def test_alarm_to_dict_values_and_timestamps() -> None:
    d = alarm_to_dict(_alarm())

    assert d["alarm_type"] == "co2_high"
    assert d["severity"] == "critical"
    assert d["status"] == "active"
    assert d["triggered_at"] == "2026-01-01T10:00:05+00:00"
    assert d["acknowledged_at"] is None
    assert d["escalated_to_level"] == 2
    assert d["version"] == 1


def test_iso_utc_second_precision_and_none() -> None:
    assert iso_utc(TS) == "2026-01-01T10:00:05+00:00"
    assert iso_utc(None) is None


def test_build_delivery_payload_structure() -> None:
    payload = build_delivery_payload(_notification(), _alarm())

    assert set(payload) == {"subject", "body", "notification", "alarm"}
    assert payload["subject"] == "[HIGH] [L2] escalated alarm"
    assert payload["body"].startswith("[Escalation L2]")
    assert payload["notification"]["channel"] == "sms"
    assert payload["notification"]["status"] == "sent"
    assert payload["alarm"]["alarm_id"] == "a1"


def test_payload_without_level_or_alarm() -> None:
    n = _notification(level=0)

    payload = build_delivery_payload(n, None)

    assert payload["subject"] == "[HIGH] escalated alarm"
    assert payload["alarm"] is None


def test_event_to_dict_embeds_snapshot() -> None:
    ev = AlarmEvent(AlarmTransition.ACKNOWLEDGED, _alarm(), TS, actor="u-op", note="on my way")

    d = event_to_dict(ev)

    assert d["transition"] == "acknowledged"
    assert d["alarm_id"] == "a1"
    assert d["actor"] == "u-op"
    assert d["note"] == "on my way"
    assert d["alarm"]["pod_id"] == "pod-1"

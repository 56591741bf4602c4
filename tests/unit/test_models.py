"""
Unit tests for podalarm.domain.models.

We verify:
- setpoint day/night targets
- severity ranking and open statuses
- shelving suppression on alarm snapshots
- policy applicability filters
- maintenance window coverage rules
- recipient subscription filters
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from podalarm.domain.models import (
    Alarm,
    AlarmPolicy,
    AlarmSeverity,
    AlarmStatus,
    AlarmType,
    Parameter,
    PodContext,
    Recipient,
    Setpoint,
    SuppressionWindow,
)

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _alarm(**kwargs) -> Alarm:
    base = Alarm(
        alarm_id="a1",
        pod_id="pod-1",
        organization_id="org-1",
        policy_id="p1",
        alarm_type=AlarmType.HUMIDITY_HIGH,
        severity=AlarmSeverity.WARNING,
        status=AlarmStatus.ACTIVE,
        message="Humidity high",
        triggered_at=T0,
        last_updated_at=T0,
    )
    return replace(base, **kwargs)


def test_setpoint_night_target_falls_back_to_day() -> None:
    sp = Setpoint(Parameter.TEMPERATURE, day_value=24.0, tolerance=2.0, night_value=20.0)

    assert sp.target(is_day=True) == 24.0
    assert sp.target(is_day=False) == 20.0
    assert Setpoint(Parameter.CO2, 1000.0, 300.0).target(is_day=False) == 1000.0


def test_severity_rank_and_open_statuses() -> None:
    ranks = [s.rank for s in (AlarmSeverity.INFO, AlarmSeverity.WARNING, AlarmSeverity.CRITICAL)]
    assert ranks == sorted(ranks)
    assert [s for s in AlarmStatus if not s.is_open] == [AlarmStatus.RESOLVED]


def test_is_shelved_at_respects_until() -> None:
    shelved = _alarm(status=AlarmStatus.SHELVED, shelved_until=T0 + timedelta(minutes=30))

    assert shelved.is_shelved_at(T0 + timedelta(minutes=29))
    assert not shelved.is_shelved_at(T0 + timedelta(minutes=30))
    assert _alarm(status=AlarmStatus.SHELVED).is_shelved_at(T0 + timedelta(days=30))
    assert not _alarm().is_shelved_at(T0)


def test_policy_applicability_filters() -> None:
    policy = AlarmPolicy(
        policy_id="p1",
        organization_id="org-1",
        name="Humidity high in flower",
        alarm_type=AlarmType.HUMIDITY_HIGH,
        severity=AlarmSeverity.WARNING,
        applies_to_stage=("flowering",),
        applies_to_pod_types=("standard",),
    )
    pod = PodContext(pod_id="pod-1", organization_id="org-1", pod_type="standard", batch_stage="flowering")

    assert policy.applies_to(pod)
    assert not policy.applies_to(replace(pod, batch_stage=None))
    assert not policy.applies_to(replace(pod, pod_type="mini"))


def test_window_covers_matching_pod_and_time() -> None:
    w = SuppressionWindow("org-1", T0, T0 + timedelta(hours=2), pod_ids=frozenset({"pod-1"}), reason="HVAC service")

    assert w.covers(_alarm(), T0)
    assert not w.covers(_alarm(), T0 + timedelta(hours=2))
    assert not w.covers(_alarm(pod_id="pod-2"), T0)
    assert not w.covers(_alarm(organization_id="org-2"), T0)


def test_window_lets_critical_through_unless_configured() -> None:
    critical = _alarm(severity=AlarmSeverity.CRITICAL)

    assert not SuppressionWindow("org-1", T0, T0 + timedelta(hours=1)).covers(critical, T0)
    assert SuppressionWindow("org-1", T0, T0 + timedelta(hours=1), suppress_critical=True).covers(critical, T0)


def test_recipient_subscription() -> None:
    r = Recipient(user_id="u1", organization_id="org-1", severities=frozenset({AlarmSeverity.CRITICAL}))

    assert r.subscribed_to("org-1", AlarmSeverity.CRITICAL)
    assert not r.subscribed_to("org-1", AlarmSeverity.WARNING)
    assert not r.subscribed_to("org-2", AlarmSeverity.CRITICAL)

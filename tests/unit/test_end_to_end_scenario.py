"""
End-to-end scenario on virtual time.

A pod runs hot; readings flow through the controller, the alarm opens after
its time in state, the event bus fans out to the escalation scheduler and
the notification router, and operator commands close the loop.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from podalarm.core.alarm.policy_evaluator import AlarmPolicyEvaluator
from podalarm.core.config.pod_registry import PodRegistry
from podalarm.core.config.policy_catalog import PolicyCatalog
from podalarm.core.escalation.scheduler import EscalationScheduler
from podalarm.core.state.alarm_store import AlarmLifecycleStore
from podalarm.core.state.notification_store import NotificationStore
from podalarm.core.state.persistence import RetryPolicy
from podalarm.core.state.reading_store import ReadingStore
from podalarm.core.timing.scheduler import VirtualScheduler
from podalarm.domain.events import AlarmTransition
from podalarm.domain.models import (
    AlarmPolicy,
    AlarmRoute,
    AlarmSeverity,
    AlarmStatus,
    AlarmType,
    NotificationChannel,
    NotificationKind,
    Parameter,
    PodContext,
    Recipient,
    Setpoint,
    TelemetryReading,
)
from podalarm.notification.router import NotificationRouter, RoutingDirectory
from podalarm.runtime.event_bus import EventBus
from podalarm.services.alarm_commands import AlarmCommandService
from podalarm.services.controller import MonitoringController

T0 = datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)


class _Site:
    def __init__(self) -> None:
        self.timers = VirtualScheduler(start=T0)
        self.store = AlarmLifecycleStore(retry=RetryPolicy(attempts=1), clock=self.timers.now)
        self.catalog = PolicyCatalog()
        self.catalog.load([AlarmPolicy(
            policy_id="temp-high",
            organization_id="org-1",
            name="Temperature high",
            alarm_type=AlarmType.TEMPERATURE_HIGH,
            severity=AlarmSeverity.WARNING,
            time_in_state_seconds=300,
            suppression_duration_minutes=5,
            expected_response_seconds=600,
        )])
        pods = PodRegistry()
        pods.load([PodContext(
            pod_id="pod-1",
            organization_id="org-1",
            name="Flower Room 1",
            setpoints={Parameter.TEMPERATURE: Setpoint(Parameter.TEMPERATURE, 24.0, 2.0)},
        )])

        directory = RoutingDirectory()
        directory.replace(
            routes=[
                AlarmRoute("org-1", AlarmSeverity.WARNING, "operator", NotificationChannel.IN_APP),
                AlarmRoute("org-1", AlarmSeverity.WARNING, "supervisor", NotificationChannel.IN_APP, escalation_level=1),
            ],
            recipients=[
                Recipient(user_id="u-op", organization_id="org-1", roles=frozenset({"operator"})),
                Recipient(user_id="u-sup", organization_id="org-1", roles=frozenset({"supervisor"})),
            ],
        )

        self.notifications = NotificationStore()
        self.escalation = EscalationScheduler(self.store, self.catalog, self.timers)
        self.router = NotificationRouter(self.store, self.notifications, directory)

        bus = EventBus()
        self.store.subscribe(bus.publish_alarm)
        bus.subscribe(self.escalation.handle_event)
        bus.subscribe(self.router.handle_event)

        self.controller = MonitoringController(pods, ReadingStore(), AlarmPolicyEvaluator(self.catalog, self.store))
        self.commands = AlarmCommandService(self.store, self.timers)

    def feed(self, start_s: int, end_s: int, value: float, step_s: int = 10):
        events = []
        for t in range(start_s, end_s + 1, step_s):
            self.timers.advance_to(T0 + timedelta(seconds=t))
            res = self.controller.handle_reading(TelemetryReading(
                pod_id="pod-1",
                timestamp=T0 + timedelta(seconds=t),
                temperature_c=value,
                humidity_pct=60.0,
            ))
            events.extend(res.events)
        return events

    def inbox(self, user_id: str):
        return self.notifications.list_for_user(user_id)


def test_hot_pod_opens_alarm_and_notifies_operator() -> None:
    site = _Site()

    assert site.feed(0, 290, 26.5) == []
    events = site.feed(300, 300, 26.5)

    assert [e.transition for e in events] == [AlarmTransition.OPENED]
    alarm = events[0].alarm
    assert alarm.triggered_at == T0 + timedelta(seconds=300)
    assert alarm.message == "Flower Room 1: Temperature High - 26.5°C (setpoint 24.0°C ± 2.0)"
    assert site.escalation.due_at(alarm.alarm_id) == T0 + timedelta(seconds=900)

    [n] = site.inbox("u-op")
    assert n.kind is NotificationKind.OPENED
    assert site.inbox("u-sup") == []


def test_unanswered_alarm_escalates_to_supervisor() -> None:
    site = _Site()
    [opened] = site.feed(0, 300, 26.5)

    site.timers.advance_to(T0 + timedelta(seconds=900))

    alarm = site.store.get(opened.alarm.alarm_id)
    assert alarm.escalated_to_level == 1
    [n] = site.inbox("u-sup")
    assert n.kind is NotificationKind.ESCALATED
    assert n.message.startswith("[Escalation L1] ")
    assert site.escalation.due_at(alarm.alarm_id) == T0 + timedelta(seconds=1500)


def test_acknowledge_resolve_then_suppressed_until_window_ends() -> None:
    site = _Site()
    [opened] = site.feed(0, 300, 26.5)
    alarm_id = opened.alarm.alarm_id

    site.timers.advance_to(T0 + timedelta(seconds=310))
    assert site.commands.acknowledge(alarm_id, "u-op", "opening vents").ok
    assert not site.escalation.is_armed(alarm_id)

    site.timers.advance_to(T0 + timedelta(seconds=350))
    res = site.commands.resolve(alarm_id, "u-op", "vents opened")
    assert res.alarm.status is AlarmStatus.RESOLVED

    assert site.feed(360, 640, 26.5) == []
    assert site.store.find_open("pod-1", AlarmType.TEMPERATURE_HIGH) is None

    [reopened] = site.feed(650, 650, 26.5)
    assert reopened.transition is AlarmTransition.OPENED
    assert reopened.alarm.alarm_id != alarm_id

    site.timers.advance_to(T0 + timedelta(seconds=3600))
    assert site.store.get(alarm_id).escalated_to_level == 0
    assert site.inbox("u-sup")[0].alarm_id == reopened.alarm.alarm_id


def test_recovered_temperature_resets_time_in_state() -> None:
    site = _Site()

    site.feed(0, 200, 26.5)
    site.feed(210, 210, 24.0)

    assert site.feed(220, 510, 26.5) == []
    [opened] = site.feed(520, 520, 26.5)
    assert opened.alarm.triggered_at == T0 + timedelta(seconds=520)

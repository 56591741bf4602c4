"""
Wiring test for the assembled service.

build_app_system() is started for real (threads, wall-clock timers) with a
small config: readings submitted to the runtime must end up as an open alarm
and an in-app notification, and the HTTP surface must see both.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

from podalarm.bootstrap import build_app_system
from podalarm.domain.models import AlarmStatus, TelemetryReading

CONFIG = """
log_level: WARNING
engine:
  workers: 2
pods:
  - pod_id: pod-1
    organization_id: org-1
    name: Veg Room
    setpoints:
      co2: {day: 1000, tolerance: 300}
policies:
  - policy_id: co2-high
    organization_id: org-1
    alarm_type: co2_high
    severity: critical
    threshold_value: 1500
    time_in_state_seconds: 0
    expected_response_seconds: 3600
routes:
  - organization_id: org-1
    severity: critical
    notify_role: operator
    channel: in_app
recipients:
  - user_id: u-op
    organization_id: org-1
    roles: [operator]
"""


def _wait_for(predicate, timeout_s: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_submitted_readings_open_alarm_and_notify(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG, encoding="utf-8")
    app = build_app_system(str(path))

    assert app.config.transport.enabled is False
    app.runtime.start()
    try:
        now = datetime.now(timezone.utc)
        for k in range(3):
            assert app.runtime.submit(TelemetryReading(
                pod_id="pod-1",
                timestamp=now + timedelta(seconds=k),
                co2_ppm=1800.0,
            ))
        app.runtime.pool.drain()

        assert _wait_for(lambda: app.notifications.unread_count("u-op") == 1)
    finally:
        app.runtime.stop()

    [alarm] = app.store.open_alarms()
    assert alarm.status is AlarmStatus.ACTIVE
    assert app.escalation.is_armed(alarm.alarm_id)

    client = app.api.test_client()
    body = client.get("/alarms?status=active").get_json()
    assert [a["alarm_id"] for a in body["alarms"]] == [alarm.alarm_id]
    inbox = client.get("/users/u-op/notifications").get_json()
    assert inbox["notifications"][0]["alarm_id"] == alarm.alarm_id
    assert inbox["notifications"][0]["status"] == "delivered"

"""
Unit tests for podalarm.notification.webhook_notifier and the delivery worker.

These tests validate webhook delivery using mocked HTTP calls:
- request body combines delivery metadata and payload
- Authorization header handling
- HTTP error propagation via raise_for_status()
- the worker records delivered / failed outcomes on the notification record

No real network requests are made.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest
import requests

from podalarm.core.state.notification_store import NotificationStore
from podalarm.domain.models import (
    Notification,
    NotificationChannel,
    NotificationKind,
    NotificationStatus,
    NotificationUrgency,
)
from podalarm.notification.base import NotificationEvent
from podalarm.notification.notification_thread import NotificationThreadConfig, NotificationWorkerThread
from podalarm.notification.webhook_notifier import WebhookConfig, WebhookNotifier

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _mk_event(notification_id: str = "n1", channel: NotificationChannel = NotificationChannel.EMAIL) -> NotificationEvent:
    """
    Create a minimal NotificationEvent for webhook tests.
    """
    return NotificationEvent(
        notification_id=notification_id,
        channel=channel,
        address="op@example.com",
        payload={"subject": "s", "body": "b"},
        type="alarm_opened",
        severity="warning",
        ts="2026-01-01T00:00:00+00:00",
    )


def _record(store: NotificationStore, notification_id: str = "n1") -> None:
    store.add(Notification(
        notification_id=notification_id,
        user_id="u-operator",
        organization_id="org-1",
        channel=NotificationChannel.EMAIL,
        kind=NotificationKind.OPENED,
        message="m",
        urgency=NotificationUrgency.MEDIUM,
        sent_at=T0,
    ))


class _RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        if self.fail:
            raise ConnectionError("gateway down")
        self.sent.append(event)


def test_webhook_notifier_posts_body_without_auth(monkeypatch) -> None:
    """
    notify() should POST delivery metadata plus payload with the configured
    timeout and TLS settings.
    """
    mock_response = MagicMock()
    mock_response.raise_for_status.return_value = None

    def fake_post(url: str, json: Dict[str, Any], headers: Dict[str, str], timeout: float, verify: bool):
        assert url == "https://gateway.example.com/email"
        assert json == {
            "notification_id": "n1",
            "channel": "email",
            "to": "op@example.com",
            "type": "alarm_opened",
            "subject": "s",
            "body": "b",
        }
        assert headers == {"Content-Type": "application/json"}
        assert timeout == 3.0
        assert verify is False
        return mock_response

    monkeypatch.setattr("requests.post", fake_post)

    notifier = WebhookNotifier(WebhookConfig(url="https://gateway.example.com/email", timeout_s=3.0, verify_tls=False))
    notifier.notify(_mk_event())

    mock_response.raise_for_status.assert_called_once()


def test_webhook_notifier_sends_authorization_header(monkeypatch) -> None:
    captured: Dict[str, Any] = {}

    def fake_post(url, json, headers, timeout, verify):
        captured.update(headers)
        return MagicMock()

    monkeypatch.setattr("requests.post", fake_post)

    WebhookNotifier(WebhookConfig(url="https://x", auth_header="Bearer T")).notify(_mk_event())

    assert captured["Authorization"] == "Bearer T"


def test_webhook_notifier_raises_on_http_error(monkeypatch) -> None:
    mock_response = MagicMock()
    mock_response.raise_for_status.side_effect = requests.HTTPError("500")
    monkeypatch.setattr("requests.post", lambda *a, **k: mock_response)

    with pytest.raises(requests.HTTPError):
        WebhookNotifier(WebhookConfig(url="https://x")).notify(_mk_event())


def test_worker_marks_delivered_on_success() -> None:
    store = NotificationStore()
    _record(store)
    notifier = _RecordingNotifier()
    worker = NotificationWorkerThread({NotificationChannel.EMAIL: notifier}, store, clock=lambda: T0)

    worker.deliver(_mk_event())

    n = store.get("n1")
    assert n.status is NotificationStatus.DELIVERED
    assert n.delivered_at == T0
    assert len(notifier.sent) == 1


def test_worker_marks_failed_once_without_retry() -> None:
    store = NotificationStore()
    _record(store)
    worker = NotificationWorkerThread({NotificationChannel.EMAIL: _RecordingNotifier(fail=True)}, store)

    worker.deliver(_mk_event())

    n = store.get("n1")
    assert n.status is NotificationStatus.FAILED
    assert "gateway down" in n.error


def test_worker_marks_failed_for_unconfigured_channel() -> None:
    store = NotificationStore()
    _record(store)
    worker = NotificationWorkerThread({}, store)

    worker.deliver(_mk_event(channel=NotificationChannel.SMS))

    assert store.get("n1").error == "no notifier for channel sms"


def test_emit_on_full_queue_fails_without_blocking() -> None:
    store = NotificationStore()
    _record(store, "n1")
    _record(store, "n2")
    worker = NotificationWorkerThread({}, store, cfg=NotificationThreadConfig(max_queue=1))

    assert worker.emit(_mk_event("n1")) is True
    assert worker.emit(_mk_event("n2")) is False
    assert store.get("n2").status is NotificationStatus.FAILED


def test_worker_thread_delivers_queued_events() -> None:
    store = NotificationStore()
    _record(store)
    notifier = _RecordingNotifier()
    worker = NotificationWorkerThread({NotificationChannel.EMAIL: notifier}, store,
                                      cfg=NotificationThreadConfig(poll_timeout_s=0.05))
    worker.start()
    try:
        worker.emit(_mk_event())
        deadline = time.monotonic() + 2.0
        while store.get("n1").status is NotificationStatus.SENT and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        worker.stop()

    assert store.get("n1").status is NotificationStatus.DELIVERED

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from podalarm.domain.events import AlarmEvent
from podalarm.domain.models import Alarm, Notification


def iso_utc(ts: Optional[datetime]) -> Optional[str]:
    """
    Convert datetime to ISO-8601 string with second precision.

    Parameters
    ----------
    ts
        Timestamp to convert (None passes through).

    Returns
    -------
    str or None
        ISO-8601 formatted timestamp (seconds precision).
    """
    return ts.isoformat(timespec="seconds") if ts is not None else None


def alarm_to_dict(alarm: Alarm) -> Dict[str, Any]:
    """Serialize an alarm snapshot to a JSON-friendly mapping."""
    return {
        "alarm_id": alarm.alarm_id,
        "pod_id": alarm.pod_id,
        "organization_id": alarm.organization_id,
        "policy_id": alarm.policy_id,
        "alarm_type": alarm.alarm_type.value,
        "severity": alarm.severity.value,
        "status": alarm.status.value,
        "message": alarm.message,
        "threshold_value": alarm.threshold_value,
        "actual_value": alarm.actual_value,
        "triggered_at": iso_utc(alarm.triggered_at),
        "last_updated_at": iso_utc(alarm.last_updated_at),
        "acknowledged_at": iso_utc(alarm.acknowledged_at),
        "acknowledged_by": alarm.acknowledged_by,
        "ack_note": alarm.ack_note,
        "resolved_at": iso_utc(alarm.resolved_at),
        "resolved_by": alarm.resolved_by,
        "resolution_note": alarm.resolution_note,
        "root_cause": alarm.root_cause,
        "escalated_at": iso_utc(alarm.escalated_at),
        "escalated_to_level": alarm.escalated_to_level,
        "shelved_at": iso_utc(alarm.shelved_at),
        "shelved_by": alarm.shelved_by,
        "shelved_reason": alarm.shelved_reason,
        "shelved_until": iso_utc(alarm.shelved_until),
        "auto_unshelve": alarm.auto_unshelve,
        "version": alarm.version,
    }


def notification_to_dict(n: Notification) -> Dict[str, Any]:
    return {
        "notification_id": n.notification_id,
        "alarm_id": n.alarm_id,
        "user_id": n.user_id,
        "organization_id": n.organization_id,
        "channel": n.channel.value,
        "kind": n.kind.value,
        "escalation_level": n.escalation_level,
        "message": n.message,
        "category": n.category,
        "urgency": n.urgency.value,
        "status": n.status.value,
        "sent_at": iso_utc(n.sent_at),
        "delivered_at": iso_utc(n.delivered_at),
        "read_at": iso_utc(n.read_at),
        "error": n.error,
    }


def build_delivery_payload(notification: Notification, alarm: Optional[Alarm]) -> Dict[str, Any]:
    """
    Build the gateway payload for one notification.

    The payload includes:
    - "notification": the delivery record fields
    - "alarm": the alarm snapshot at send time (None for non-alarm notices)

    Parameters
    ----------
    notification
        Notification being delivered.
    alarm
        Alarm the notification refers to.

    Returns
    -------
    dict
        Payload with keys "subject", "body", "notification" and "alarm".
    """
    level = f" [L{notification.escalation_level}]" if notification.escalation_level else ""
    subject = f"[{notification.urgency.value.upper()}]{level} {notification.kind.value} alarm"
    return {
        "subject": subject,
        "body": notification.message,
        "notification": notification_to_dict(notification),
        "alarm": alarm_to_dict(alarm) if alarm is not None else None,
    }


def event_to_dict(ev: AlarmEvent) -> Dict[str, Any]:
    """Serialize a lifecycle event (audit trail entry) with its alarm snapshot."""
    return {
        "transition": ev.transition.value,
        "alarm_id": ev.alarm_id,
        "timestamp": iso_utc(ev.timestamp),
        "actor": ev.actor,
        "note": ev.note,
        "alarm": alarm_to_dict(ev.alarm),
    }

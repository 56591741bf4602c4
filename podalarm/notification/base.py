from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from podalarm.domain.models import NotificationChannel


@dataclass(frozen=True)
class NotificationEvent:
    """
    Outbound delivery message handed to channel notifiers.

    A 'NotificationEvent' represents *what should be delivered to whom*, not
    *how* it is delivered. It is built by the notification router from a
    stored `Notification` record.

    Parameters
    ----------
    notification_id
        Id of the `Notification` record the delivery result is written to.
    channel
        Delivery channel (email, sms, push).
    address
        Channel-specific address (email, phone number, device token).
    payload
        Structured payload (alarm + notification fields).
    type
        Event type identifier (e.g. "alarm_opened", "alarm_escalated").
    severity
        Optional severity label.
    ts
        Optional timestamp string describing when the event occurred.

    Notes
    -----
    The class is frozen (immutable) so events remain stable once created,
    supporting safe logging and auditability.
    """

    notification_id: str
    channel: NotificationChannel
    address: Optional[str]
    payload: Dict[str, Any]
    type: str = "alarm_notification"
    severity: Optional[str] = None
    ts: Optional[str] = None


class Notifier(Protocol):
    """
    Protocol interface for one delivery channel.

    Implementations raise on failure; the delivery worker records the error
    on the notification record.

    Methods
    -------
    notify(event)
        Deliver a notification event.
    """

    def notify(self, event: NotificationEvent) -> None:
        ...


class Dispatcher(Protocol):
    """Non-blocking hand-off of deliveries (see `NotificationWorkerThread`)."""

    def emit(self, event: NotificationEvent) -> bool:
        ...

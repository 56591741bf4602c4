"""
Notification routing.

Fans alarm lifecycle events out to users and channels:

- OPENED      every subscribed user reached by a matching route
- ESCALATED   same audience rules at the new level, tagged with the level
- ACK/RESOLVE optional "handled" notice to everyone already notified

A route matches when organization and severity match, its optional policy
filter matches and ``route.escalation_level <= alarm.escalated_to_level``.
Organizations without routes fall back to each subscribed user's preferred
channels.

Repeat notifications are de-duplicated on (alarm, kind, level, channel,
user) while the alarm is open; the keys are dropped once it resolves.
Shelved alarms and maintenance windows suppress notifications, and an
escalation for an alarm that is no longer active by the time it is routed is
dropped.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from podalarm.core.state.alarm_store import AlarmLifecycleStore
from podalarm.core.state.notification_store import NotificationStore
from podalarm.domain.errors import AlarmNotFound
from podalarm.domain.events import AlarmEvent, AlarmTransition
from podalarm.domain.models import (
    Alarm,
    AlarmRoute,
    AlarmSeverity,
    AlarmStatus,
    Notification,
    NotificationChannel,
    NotificationKind,
    NotificationUrgency,
    Recipient,
    SuppressionWindow,
)
from podalarm.notification.base import Dispatcher, NotificationEvent
from podalarm.notification.payload import build_delivery_payload

logger = logging.getLogger(__name__)

DedupKey = Tuple[str, NotificationKind, int, NotificationChannel, str]

_URGENCY = {
    AlarmSeverity.CRITICAL: NotificationUrgency.HIGH,
    AlarmSeverity.WARNING: NotificationUrgency.MEDIUM,
    AlarmSeverity.INFO: NotificationUrgency.LOW,
}


def urgency_for(severity: AlarmSeverity) -> NotificationUrgency:
    return _URGENCY[severity]


@dataclass
class RoutingDirectory:
    """
    Routes, recipients and maintenance windows, swappable at runtime.

    Attributes
    ----------
    routes
        Role-based routing rules.
    recipients
        Users that can be notified.
    windows
        Maintenance windows suppressing notifications.
    """

    routes: List[AlarmRoute] = field(default_factory=list)
    recipients: List[Recipient] = field(default_factory=list)
    windows: List[SuppressionWindow] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def replace(
        self,
        routes: Optional[Iterable[AlarmRoute]] = None,
        recipients: Optional[Iterable[Recipient]] = None,
        windows: Optional[Iterable[SuppressionWindow]] = None,
    ) -> None:
        with self._lock:
            if routes is not None:
                self.routes = list(routes)
            if recipients is not None:
                self.recipients = list(recipients)
            if windows is not None:
                self.windows = list(windows)

    def add_window(self, window: SuppressionWindow) -> None:
        with self._lock:
            self.windows = self.windows + [window]

    def snapshot(self) -> Tuple[List[AlarmRoute], List[Recipient], List[SuppressionWindow]]:
        with self._lock:
            return list(self.routes), list(self.recipients), list(self.windows)

    def recipient(self, user_id: str) -> Optional[Recipient]:
        with self._lock:
            for r in self.recipients:
                if r.user_id == user_id:
                    return r
        return None


class NotificationRouter:
    """
    Turn alarm lifecycle events into notification records and deliveries.

    Parameters
    ----------
    store
        Alarm store, re-read at routing time to drop stale escalations.
    notifications
        Notification record store (the in-app channel reads from it).
    directory
        Routes, recipients and maintenance windows.
    dispatcher
        Non-blocking delivery hand-off for email/sms/push. Without one, those
        notifications are recorded as failed.
    notify_on_handled
        Send a "handled" notice on acknowledge/resolve.
    id_factory
        Notification id generator.
    """

    def __init__(
        self,
        store: AlarmLifecycleStore,
        notifications: NotificationStore,
        directory: RoutingDirectory,
        dispatcher: Optional[Dispatcher] = None,
        notify_on_handled: bool = False,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self._store = store
        self._notifications = notifications
        self._directory = directory
        self._dispatcher = dispatcher
        self.notify_on_handled = notify_on_handled
        self._new_id = id_factory or (lambda: uuid.uuid4().hex)
        self._lock = threading.Lock()
        self._sent: Dict[str, Set[DedupKey]] = {}

    def handle_event(self, ev: AlarmEvent) -> List[Notification]:
        """
        Route one lifecycle event.

        Parameters
        ----------
        ev
            Alarm lifecycle event.

        Returns
        -------
        list of Notification
            Notification records created for this event.
        """
        t = ev.transition
        if t is AlarmTransition.OPENED:
            return self._notify_audience(ev, NotificationKind.OPENED)
        if t is AlarmTransition.ESCALATED:
            return self._notify_audience(ev, NotificationKind.ESCALATED)
        if t is AlarmTransition.ACKNOWLEDGED and self.notify_on_handled:
            return self._notify_handled(ev, NotificationKind.ACKNOWLEDGED)
        if t is AlarmTransition.RESOLVED:
            created = self._notify_handled(ev, NotificationKind.RESOLVED) if self.notify_on_handled else []
            self.forget(ev.alarm.alarm_id)
            return created
        return []

    def forget(self, alarm_id: str) -> None:
        """Drop the de-duplication keys of a closed alarm."""
        with self._lock:
            self._sent.pop(alarm_id, None)

    @property
    def tracked_alarms(self) -> int:
        """Number of alarms that still hold de-duplication keys."""
        with self._lock:
            return len(self._sent)

    # ------------------------------------------------------------------
    # audience selection
    # ------------------------------------------------------------------
    def targets_for(self, alarm: Alarm) -> List[Tuple[Recipient, NotificationChannel]]:
        """
        Resolve (recipient, channel) pairs for an alarm at its current level.

        Returns
        -------
        list of (Recipient, NotificationChannel)
            Unique targets, in route order.
        """
        routes, recipients, _ = self._directory.snapshot()
        org_routes = [r for r in routes if r.is_active and r.organization_id == alarm.organization_id]
        subscribed = [r for r in recipients if r.subscribed_to(alarm.organization_id, alarm.severity)]

        out: List[Tuple[Recipient, NotificationChannel]] = []
        seen: Set[Tuple[str, NotificationChannel]] = set()

        def add(rcp: Recipient, ch: NotificationChannel) -> None:
            if (rcp.user_id, ch) not in seen:
                seen.add((rcp.user_id, ch))
                out.append((rcp, ch))

        if not org_routes:
            for rcp in subscribed:
                for ch in rcp.channels:
                    add(rcp, ch)
            return out

        for route in org_routes:
            if route.severity is not alarm.severity:
                continue
            if route.policy_id is not None and route.policy_id != alarm.policy_id:
                continue
            if route.escalation_level > alarm.escalated_to_level:
                continue
            for rcp in subscribed:
                if route.notify_role in rcp.roles:
                    add(rcp, route.channel)
        return out

    def _suppressed(self, alarm: Alarm, ev: AlarmEvent) -> Optional[str]:
        if alarm.is_shelved_at(ev.timestamp):
            return "shelved"
        _, _, windows = self._directory.snapshot()
        for w in windows:
            if w.covers(alarm, ev.timestamp):
                return f"maintenance window ({w.reason or 'no reason'})"
        return None

    # ------------------------------------------------------------------
    # notification builders
    # ------------------------------------------------------------------
    def _notify_audience(self, ev: AlarmEvent, kind: NotificationKind) -> List[Notification]:
        alarm = ev.alarm

        if kind is NotificationKind.ESCALATED:
            try:
                current = self._store.get(alarm.alarm_id)
            except AlarmNotFound:
                return []
            if current.status is not AlarmStatus.ACTIVE:
                logger.info("[ROUTER] escalation of %s dropped: alarm now %s", alarm.alarm_id, current.status.value)
                return []

        reason = self._suppressed(alarm, ev)
        if reason is not None:
            logger.info("[ROUTER] %s notification for %s suppressed: %s", kind.value, alarm.alarm_id, reason)
            return []

        if kind is NotificationKind.ESCALATED:
            message = f"[Escalation L{alarm.escalated_to_level}] {alarm.message}"
            urgency = NotificationUrgency.HIGH
        else:
            message = alarm.message
            urgency = urgency_for(alarm.severity)

        created: List[Notification] = []
        for rcp, ch in self.targets_for(alarm):
            n = self._create(alarm, ev, rcp, ch, kind, message, urgency)
            if n is not None:
                created.append(n)
        return created

    def _notify_handled(self, ev: AlarmEvent, kind: NotificationKind) -> List[Notification]:
        alarm = ev.alarm
        verb = "acknowledged" if kind is NotificationKind.ACKNOWLEDGED else "resolved"
        message = f"{alarm.message} - {verb} by {ev.actor}"

        audience: List[Tuple[str, NotificationChannel]] = []
        for prior in self._notifications.for_alarm(alarm.alarm_id):
            if prior.kind in (NotificationKind.OPENED, NotificationKind.ESCALATED):
                pair = (prior.user_id, prior.channel)
                if pair not in audience:
                    audience.append(pair)

        created: List[Notification] = []
        for user_id, ch in audience:
            rcp = self._directory.recipient(user_id)
            if rcp is None:
                continue
            n = self._create(alarm, ev, rcp, ch, kind, message, NotificationUrgency.LOW)
            if n is not None:
                created.append(n)
        return created

    def _create(
        self,
        alarm: Alarm,
        ev: AlarmEvent,
        rcp: Recipient,
        channel: NotificationChannel,
        kind: NotificationKind,
        message: str,
        urgency: NotificationUrgency,
    ) -> Optional[Notification]:
        key: DedupKey = (alarm.alarm_id, kind, alarm.escalated_to_level, channel, rcp.user_id)
        with self._lock:
            sent = self._sent.setdefault(alarm.alarm_id, set())
            if key in sent:
                return None
            sent.add(key)

        n = Notification(
            notification_id=self._new_id(),
            user_id=rcp.user_id,
            organization_id=alarm.organization_id,
            channel=channel,
            kind=kind,
            message=message,
            urgency=urgency,
            sent_at=ev.timestamp,
            alarm_id=alarm.alarm_id,
            escalation_level=alarm.escalated_to_level,
        )
        self._notifications.add(n)

        if channel is NotificationChannel.IN_APP:
            delivered = self._notifications.mark_delivered(n.notification_id, ev.timestamp)
            return delivered or n

        if self._dispatcher is None:
            return self._notifications.mark_failed(n.notification_id, "no dispatcher configured") or n

        self._dispatcher.emit(
            NotificationEvent(
                notification_id=n.notification_id,
                channel=channel,
                address=rcp.addresses.get(channel),
                payload=build_delivery_payload(n, alarm),
                type=f"alarm_{kind.value}",
                severity=alarm.severity.value,
                ts=ev.timestamp.isoformat(timespec="seconds"),
            )
        )
        return n

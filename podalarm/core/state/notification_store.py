from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional

from podalarm.domain.models import Notification, NotificationStatus


@dataclass
class NotificationStore:
    """
    In-memory store of notification delivery records.

    Records are created by the notification router and only mutated to record
    delivery or read status. Reads are scoped per user for the notification
    surface (list / mark read).

    Notes
    -----
    Thread-safe: delivery results are recorded from the delivery worker
    thread while the router and API read from other threads.
    """

    _rows: Dict[str, Notification] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def add(self, notification: Notification) -> None:
        with self._lock:
            self._rows[notification.notification_id] = notification

    def get(self, notification_id: str) -> Optional[Notification]:
        with self._lock:
            return self._rows.get(notification_id)

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[Notification]:
        """
        List a user's notifications, newest first.

        Parameters
        ----------
        user_id
            Recipient user id.
        unread_only
            Only return notifications not marked read.

        Returns
        -------
        list of Notification
            Matching notifications.
        """
        with self._lock:
            rows = [n for n in self._rows.values() if n.user_id == user_id]
        if unread_only:
            rows = [n for n in rows if not n.is_read]
        rows.sort(key=lambda n: n.sent_at, reverse=True)
        return rows

    def for_alarm(self, alarm_id: str) -> List[Notification]:
        with self._lock:
            rows = [n for n in self._rows.values() if n.alarm_id == alarm_id]
        rows.sort(key=lambda n: n.sent_at)
        return rows

    def unread_count(self, user_id: str) -> int:
        return len(self.list_for_user(user_id, unread_only=True))

    def mark_delivered(self, notification_id: str, now: datetime) -> Optional[Notification]:
        return self._update(notification_id, status=NotificationStatus.DELIVERED, delivered_at=now)

    def mark_failed(self, notification_id: str, error: str) -> Optional[Notification]:
        return self._update(notification_id, status=NotificationStatus.FAILED, error=error)

    def mark_read(self, notification_id: str, user_id: str, now: datetime) -> Optional[Notification]:
        """
        Mark one notification read.

        Returns None if the notification does not exist or belongs to another
        user.
        """
        with self._lock:
            cur = self._rows.get(notification_id)
            if cur is None or cur.user_id != user_id:
                return None
            if cur.is_read:
                return cur
            new = replace(cur, status=NotificationStatus.READ, read_at=now)
            self._rows[notification_id] = new
            return new

    def mark_all_read(self, user_id: str, now: datetime) -> int:
        """Mark every unread notification of a user read; return how many changed."""
        with self._lock:
            changed = 0
            for nid, n in list(self._rows.items()):
                if n.user_id == user_id and not n.is_read:
                    self._rows[nid] = replace(n, status=NotificationStatus.READ, read_at=now)
                    changed += 1
            return changed

    def _update(self, notification_id: str, **changes) -> Optional[Notification]:
        with self._lock:
            cur = self._rows.get(notification_id)
            if cur is None:
                return None
            new = replace(cur, **changes)
            self._rows[notification_id] = new
            return new

"""
Escalation scheduler.

For every alarm entering ACTIVE, arm a timer of the policy's
``expected_response_seconds``. If the alarm is still ACTIVE when the timer
expires, the store raises ``escalated_to_level`` and emits an ESCALATED event,
and a new timer is armed at the same interval, up to ``max_level``.

- acknowledge / resolve cancel the timer
- shelve suspends it (the remaining time is kept)
- unshelve back to ACTIVE resumes the remaining time

Every armed timer carries a generation number; a timer whose generation is no
longer current does nothing when it fires. The escalate write itself is
re-checked under the alarm lock by the store, so a resolve that races a firing
timer always wins.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from podalarm.core.config.policy_catalog import PolicyCatalog
from podalarm.core.state.alarm_store import AlarmLifecycleStore
from podalarm.core.timing.scheduler import TimerHandle, TimerScheduler
from podalarm.domain.events import AlarmEvent, AlarmTransition
from podalarm.domain.models import Alarm, AlarmStatus

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_S = 900
DEFAULT_MAX_LEVEL = 3


@dataclass(frozen=True)
class _Armed:
    generation: int
    handle: TimerHandle
    due_at: datetime


class EscalationScheduler:
    """
    Escalation timers for active, unacknowledged alarms.

    Subscribe :meth:`handle_event` to the alarm store so it observes every
    lifecycle transition in commit order.

    Parameters
    ----------
    store
        Alarm lifecycle store (performs the guarded escalate write).
    catalog
        Policy catalog providing ``expected_response_seconds``.
    scheduler
        Timer scheduler (threaded in production, virtual in tests).
    max_level
        Highest escalation level.
    default_response_s
        Interval used when the policy does not define an expected response.
    """

    def __init__(
        self,
        store: AlarmLifecycleStore,
        catalog: PolicyCatalog,
        scheduler: TimerScheduler,
        max_level: int = DEFAULT_MAX_LEVEL,
        default_response_s: float = DEFAULT_RESPONSE_S,
    ):
        self._store = store
        self._catalog = catalog
        self._scheduler = scheduler
        self.max_level = max_level
        self.default_response_s = default_response_s

        self._lock = threading.Lock()
        self._gen = itertools.count(1)
        self._armed: Dict[str, _Armed] = {}
        self._suspended: Dict[str, float] = {}

    # ------------------------------------------------------------------
    # inspection
    # ------------------------------------------------------------------
    def is_armed(self, alarm_id: str) -> bool:
        with self._lock:
            return alarm_id in self._armed

    def due_at(self, alarm_id: str) -> Optional[datetime]:
        with self._lock:
            armed = self._armed.get(alarm_id)
            return armed.due_at if armed else None

    def suspended_remaining(self, alarm_id: str) -> Optional[float]:
        with self._lock:
            return self._suspended.get(alarm_id)

    # ------------------------------------------------------------------
    # event handling
    # ------------------------------------------------------------------
    def handle_event(self, ev: AlarmEvent) -> None:
        """
        React to one alarm lifecycle event.

        Parameters
        ----------
        ev
            Committed lifecycle event.
        """
        alarm = ev.alarm
        t = ev.transition

        if t is AlarmTransition.OPENED:
            self._arm(alarm.alarm_id, ev.timestamp + timedelta(seconds=self.interval_for(alarm)))

        elif t is AlarmTransition.ESCALATED:
            if alarm.escalated_to_level < self.max_level and alarm.status is AlarmStatus.ACTIVE:
                self._arm(alarm.alarm_id, ev.timestamp + timedelta(seconds=self.interval_for(alarm)))
            else:
                self._cancel(alarm.alarm_id)

        elif t in (AlarmTransition.ACKNOWLEDGED, AlarmTransition.RESOLVED):
            self._cancel(alarm.alarm_id)

        elif t is AlarmTransition.SHELVED:
            self._suspend(alarm.alarm_id, ev.timestamp)

        elif t is AlarmTransition.UNSHELVED:
            self._resume(alarm, ev.timestamp)

    def recover(self, now: Optional[datetime] = None) -> int:
        """
        Arm timers for active alarms loaded at startup.

        Returns
        -------
        int
            Number of timers armed.
        """
        ts = now or self._scheduler.now()
        count = 0
        for alarm in self._store.open_alarms():
            if alarm.status is not AlarmStatus.ACTIVE or alarm.escalated_to_level >= self.max_level:
                continue
            base = alarm.escalated_at or alarm.triggered_at
            due = max(ts, base + timedelta(seconds=self.interval_for(alarm)))
            self._arm(alarm.alarm_id, due)
            count += 1
        return count

    def interval_for(self, alarm: Alarm) -> float:
        policy = self._catalog.get(alarm.policy_id)
        if policy is not None and policy.expected_response_seconds:
            return float(policy.expected_response_seconds)
        return float(self.default_response_s)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _arm(self, alarm_id: str, due_at: datetime) -> None:
        with self._lock:
            prev = self._armed.pop(alarm_id, None)
            if prev is not None:
                prev.handle.cancel()
            self._suspended.pop(alarm_id, None)

            generation = next(self._gen)
            handle = self._scheduler.call_at(due_at, lambda: self._fire(alarm_id, generation))
            self._armed[alarm_id] = _Armed(generation=generation, handle=handle, due_at=due_at)
        logger.debug("[ESCALATION] armed %s for %s", alarm_id, due_at.isoformat())

    def _cancel(self, alarm_id: str) -> None:
        with self._lock:
            armed = self._armed.pop(alarm_id, None)
            self._suspended.pop(alarm_id, None)
            if armed is not None:
                armed.handle.cancel()
                logger.debug("[ESCALATION] cancelled %s", alarm_id)

    def _suspend(self, alarm_id: str, at: datetime) -> None:
        with self._lock:
            armed = self._armed.pop(alarm_id, None)
            if armed is None:
                return
            armed.handle.cancel()
            self._suspended[alarm_id] = max(0.0, (armed.due_at - at).total_seconds())
        logger.debug("[ESCALATION] suspended %s", alarm_id)

    def _resume(self, alarm: Alarm, at: datetime) -> None:
        with self._lock:
            remaining = self._suspended.pop(alarm.alarm_id, None)

        if alarm.status is not AlarmStatus.ACTIVE or alarm.escalated_to_level >= self.max_level:
            return
        if remaining is None:
            remaining = self.interval_for(alarm)
        self._arm(alarm.alarm_id, at + timedelta(seconds=remaining))

    def _fire(self, alarm_id: str, generation: int) -> None:
        with self._lock:
            armed = self._armed.get(alarm_id)
            if armed is None or armed.generation != generation:
                return
            del self._armed[alarm_id]

        alarm = self._store.escalate(alarm_id, now=self._scheduler.now(), max_level=self.max_level)
        if alarm is None:
            logger.debug("[ESCALATION] %s no longer active, escalation dropped", alarm_id)

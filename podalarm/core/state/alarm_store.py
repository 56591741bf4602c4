"""
Alarm lifecycle store.

Canonical holder of alarm state-machine instances. Every mutation is a guarded
state transition that:

1. runs under a lock scoped to the alarm id (unrelated alarms never contend)
2. checks the caller's ``expected_version`` (optimistic concurrency)
3. writes through the repository (compare-and-swap, retried with backoff)
4. updates the in-memory cache and event history only after the write
5. dispatches the resulting `AlarmEvent` to subscribers, in commit order
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, Hashable, Iterator, List, Optional, Tuple

from podalarm.core.state.persistence import AlarmRepository, InMemoryAlarmRepository, RetryPolicy, retry_with_backoff
from podalarm.domain.errors import AlarmNotFound, ConcurrentModification, InvalidTransition
from podalarm.domain.events import AlarmEvent, AlarmTransition
from podalarm.domain.models import Alarm, AlarmPolicy, AlarmSeverity, AlarmStatus, AlarmType

logger = logging.getLogger(__name__)

AlarmListener = Callable[[AlarmEvent], None]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _LockRegistry:
    """
    Re-entrant lock per key, created on first use.

    Entries are reference counted and dropped once no caller holds or waits
    on them, so resolved alarms leave nothing behind.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class AlarmLifecycleStore:
    """
    Thread-safe alarm lifecycle store.

    Invariants
    ----------
    - At most one open (not resolved) alarm per (pod, alarm type).
    - ``version`` increases by exactly one per committed transition.
    - Resolved alarms are terminal and retained.

    Parameters
    ----------
    repository
        Durable backend. Defaults to an in-memory repository.
    retry
        Retry policy for repository writes.
    clock
        Time source used when a caller does not pass ``now``.
    id_factory
        Alarm id generator.
    sleep
        Sleep used between retries (injected by tests).
    """

    def __init__(
        self,
        repository: Optional[AlarmRepository] = None,
        retry: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None,
        id_factory: Optional[Callable[[], str]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._repo = repository if repository is not None else InMemoryAlarmRepository()
        self._retry = retry or RetryPolicy()
        self._clock = clock or _utcnow
        self._new_id = id_factory or (lambda: uuid.uuid4().hex)
        self._sleep = sleep

        self._locks = _LockRegistry()
        # Guards the dictionaries below; never held across repository I/O.
        self._index_lock = threading.Lock()
        self._alarms: Dict[str, Alarm] = {}
        self._open: Dict[Tuple[str, AlarmType], str] = {}
        self._last_resolved: Dict[Tuple[str, AlarmType], datetime] = {}
        self._events: List[AlarmEvent] = []
        self._listeners: List[AlarmListener] = []

        for alarm in self._repo.load_all():
            self._index(alarm)

    # ------------------------------------------------------------------
    # subscription
    # ------------------------------------------------------------------
    def subscribe(self, listener: AlarmListener) -> None:
        """
        Register a callback invoked for every committed transition.

        Callbacks run on the committing thread while the alarm's lock is held,
        so events for one alarm are delivered in commit order. They must not
        block on I/O.
        """
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def get(self, alarm_id: str) -> Alarm:
        """
        Return the current snapshot of an alarm.

        Raises
        ------
        AlarmNotFound
            If the id is unknown.
        """
        with self._index_lock:
            alarm = self._alarms.get(alarm_id)
        if alarm is None:
            raise AlarmNotFound(alarm_id)
        return alarm

    def find_open(self, pod_id: str, alarm_type: AlarmType) -> Optional[Alarm]:
        with self._index_lock:
            alarm_id = self._open.get((pod_id, alarm_type))
            return self._alarms.get(alarm_id) if alarm_id else None

    def last_resolved_at(self, pod_id: str, alarm_type: AlarmType) -> Optional[datetime]:
        with self._index_lock:
            return self._last_resolved.get((pod_id, alarm_type))

    def open_alarms(self) -> List[Alarm]:
        with self._index_lock:
            return [self._alarms[i] for i in self._open.values()]

    def query(
        self,
        pod_id: Optional[str] = None,
        severity: Optional[AlarmSeverity] = None,
        status: Optional[AlarmStatus] = None,
        organization_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Alarm]:
        """
        List alarms matching every given filter, newest first.

        Parameters
        ----------
        pod_id, severity, status, organization_id
            Equality filters; None disables a filter.
        start, end
            Half-open ``[start, end)`` window on ``triggered_at``.

        Returns
        -------
        list of Alarm
            Matching alarm snapshots.
        """
        with self._index_lock:
            alarms = list(self._alarms.values())

        out = [
            a for a in alarms
            if (pod_id is None or a.pod_id == pod_id)
            and (severity is None or a.severity is severity)
            and (status is None or a.status is status)
            and (organization_id is None or a.organization_id == organization_id)
            and (start is None or a.triggered_at >= start)
            and (end is None or a.triggered_at < end)
        ]
        out.sort(key=lambda a: a.triggered_at, reverse=True)
        return out

    def events_between(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[AlarmEvent]:
        """Return lifecycle events with ``start <= timestamp < end``, oldest first."""
        with self._index_lock:
            events = list(self._events)
        return [
            e for e in events
            if (start is None or e.timestamp >= start) and (end is None or e.timestamp < end)
        ]

    def events_for(self, alarm_id: str) -> List[AlarmEvent]:
        with self._index_lock:
            return [e for e in self._events if e.alarm_id == alarm_id]

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------
    def open(
        self,
        pod_id: str,
        alarm_type: AlarmType,
        policy: AlarmPolicy,
        trigger_value: Optional[float],
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Alarm:
        """
        Open an alarm for (pod, alarm type), or refresh the one already open.

        Parameters
        ----------
        pod_id
            Pod the breach was observed on.
        alarm_type
            Alarm type.
        policy
            Policy that triggered (severity, threshold, organization).
        trigger_value
            Value that triggered the alarm.
        message
            Alarm message. Defaults to the policy name.
        now
            Transition time.

        Returns
        -------
        Alarm
            The new alarm (status ACTIVE, escalation level 0) or the refreshed
            open alarm.
        """
        ts = now or self._clock()
        msg = message or policy.name

        with self._locks.hold(("open", pod_id, alarm_type)):
            existing = self.find_open(pod_id, alarm_type)
            if existing is not None:
                try:
                    return self.refresh(
                        existing.alarm_id, trigger_value, msg, now=ts, severity=policy.severity, policy=policy
                    )
                except InvalidTransition:
                    # Resolved between the lookup and the refresh.
                    pass

            alarm = Alarm(
                alarm_id=self._new_id(),
                pod_id=pod_id,
                organization_id=policy.organization_id,
                policy_id=policy.policy_id,
                alarm_type=alarm_type,
                severity=policy.severity,
                status=AlarmStatus.ACTIVE,
                message=msg,
                triggered_at=ts,
                last_updated_at=ts,
                threshold_value=policy.threshold_value,
                actual_value=trigger_value,
            )
            with self._locks.hold(alarm.alarm_id):
                self._commit(None, alarm, AlarmTransition.OPENED, ts)
            logger.info("[STORE] opened %s %s on %s (%s)", alarm.alarm_id, alarm_type.value, pod_id, alarm.severity.value)
            return alarm

    def refresh(
        self,
        alarm_id: str,
        trigger_value: Optional[float],
        message: str,
        now: Optional[datetime] = None,
        severity: Optional[AlarmSeverity] = None,
        policy: Optional[AlarmPolicy] = None,
    ) -> Alarm:
        """
        Update the triggering value/message of an open alarm.

        A more severe ``severity`` upgrades the alarm; a less severe one is
        ignored. ``policy`` (optional) re-attributes the alarm to the policy
        responsible for the upgrade.

        Raises
        ------
        InvalidTransition
            If the alarm is resolved.
        """
        ts = now or self._clock()

        def apply(cur: Alarm) -> Optional[Alarm]:
            if not cur.is_open:
                raise InvalidTransition(alarm_id, cur.status, "refresh")
            changes = dict(actual_value=trigger_value, message=message)
            if severity is not None and severity.rank > cur.severity.rank:
                changes["severity"] = severity
                if policy is not None:
                    changes.update(policy_id=policy.policy_id, threshold_value=policy.threshold_value)
            return replace(cur, **changes)

        return self._transition(alarm_id, None, AlarmTransition.REFRESHED, apply, ts)

    def acknowledge(
        self,
        alarm_id: str,
        actor: str,
        note: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Alarm:
        """
        Acknowledge an active alarm.

        Acknowledging an already acknowledged alarm is a no-op.

        Raises
        ------
        ValueError
            If ``actor`` is empty.
        InvalidTransition
            If the alarm is resolved or shelved.
        ConcurrentModification
            If ``expected_version`` does not match.
        """
        if not actor:
            raise ValueError("acknowledge requires an actor")
        ts = now or self._clock()

        def apply(cur: Alarm) -> Optional[Alarm]:
            if cur.status is AlarmStatus.ACKNOWLEDGED:
                return None
            if cur.status is not AlarmStatus.ACTIVE:
                raise InvalidTransition(alarm_id, cur.status, "acknowledge")
            return replace(
                cur,
                status=AlarmStatus.ACKNOWLEDGED,
                acknowledged_at=ts,
                acknowledged_by=actor,
                ack_note=note,
            )

        return self._transition(alarm_id, expected_version, AlarmTransition.ACKNOWLEDGED, apply, ts, actor, note)

    def resolve(
        self,
        alarm_id: str,
        actor: str,
        note: str,
        root_cause: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Alarm:
        """
        Resolve an alarm (terminal).

        Resolving an already resolved alarm is a no-op returning the current
        snapshot.

        Raises
        ------
        ValueError
            If the resolution note is empty.
        ConcurrentModification
            If ``expected_version`` does not match.
        """
        ts = now or self._clock()

        def apply(cur: Alarm) -> Optional[Alarm]:
            if cur.status is AlarmStatus.RESOLVED:
                return None
            if not note or not note.strip():
                raise ValueError("resolve requires a resolution note")
            return replace(
                cur,
                status=AlarmStatus.RESOLVED,
                resolved_at=ts,
                resolved_by=actor,
                resolution_note=note,
                root_cause=root_cause,
            )

        return self._transition(alarm_id, expected_version, AlarmTransition.RESOLVED, apply, ts, actor, note)

    def shelve(
        self,
        alarm_id: str,
        actor: str,
        reason: str,
        until: datetime,
        auto_unshelve: bool = True,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Alarm:
        """
        Temporarily shelve an active or acknowledged alarm.

        Raises
        ------
        ValueError
            If the reason is empty or ``until`` is not in the future.
        InvalidTransition
            If the alarm is resolved or already shelved.
        ConcurrentModification
            If ``expected_version`` does not match.
        """
        ts = now or self._clock()
        if not reason or not reason.strip():
            raise ValueError("shelve requires a reason")
        if until <= ts:
            raise ValueError("shelve requires 'until' in the future")

        def apply(cur: Alarm) -> Optional[Alarm]:
            if cur.status not in (AlarmStatus.ACTIVE, AlarmStatus.ACKNOWLEDGED):
                raise InvalidTransition(alarm_id, cur.status, "shelve")
            return replace(
                cur,
                status=AlarmStatus.SHELVED,
                shelved_at=ts,
                shelved_by=actor,
                shelved_reason=reason,
                shelved_until=until,
                auto_unshelve=auto_unshelve,
                shelved_from_status=cur.status,
            )

        return self._transition(alarm_id, expected_version, AlarmTransition.SHELVED, apply, ts, actor, reason)

    def unshelve(
        self,
        alarm_id: str,
        actor: str = "system",
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Alarm:
        """
        Return a shelved alarm to the status it had before shelving.

        Raises
        ------
        InvalidTransition
            If the alarm is not shelved.
        ConcurrentModification
            If ``expected_version`` does not match.
        """
        ts = now or self._clock()

        def apply(cur: Alarm) -> Optional[Alarm]:
            if cur.status is not AlarmStatus.SHELVED:
                raise InvalidTransition(alarm_id, cur.status, "unshelve")
            return replace(
                cur,
                status=cur.shelved_from_status or AlarmStatus.ACTIVE,
                shelved_at=None,
                shelved_by=None,
                shelved_reason=None,
                shelved_until=None,
                auto_unshelve=False,
                shelved_from_status=None,
            )

        return self._transition(alarm_id, expected_version, AlarmTransition.UNSHELVED, apply, ts, actor)

    def release_expired_shelve(self, alarm_id: str, now: Optional[datetime] = None) -> Optional[Alarm]:
        """
        Auto-unshelve an alarm whose shelving window has elapsed.

        Safe to call from several places (timer, evaluator): only the first
        caller past ``shelved_until`` performs the transition.

        Returns
        -------
        Alarm or None
            The unshelved alarm, or None if nothing was due.
        """
        ts = now or self._clock()
        with self._locks.hold(alarm_id):
            cur = self.get(alarm_id)
            if cur.status is not AlarmStatus.SHELVED or not cur.auto_unshelve:
                return None
            if cur.shelved_until is not None and ts < cur.shelved_until:
                return None
            return self.unshelve(alarm_id, now=ts)

    def escalate(self, alarm_id: str, now: Optional[datetime] = None, max_level: int = 3) -> Optional[Alarm]:
        """
        Raise the escalation level of an alarm that is still active.

        The status check happens under the alarm lock, so an escalation racing
        an acknowledge/resolve/shelve either commits before it or not at all.

        Returns
        -------
        Alarm or None
            The escalated alarm, or None if the alarm is no longer active or
            already at ``max_level``.
        """
        ts = now or self._clock()
        with self._locks.hold(alarm_id):
            cur = self.get(alarm_id)
            if cur.status is not AlarmStatus.ACTIVE or cur.escalated_to_level >= max_level:
                return None
            new = replace(
                cur,
                escalated_at=ts,
                escalated_to_level=cur.escalated_to_level + 1,
                version=cur.version + 1,
                last_updated_at=ts,
            )
            self._commit(cur, new, AlarmTransition.ESCALATED, ts)
            logger.info("[STORE] escalated %s to level %d", alarm_id, new.escalated_to_level)
            return new

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _transition(
        self,
        alarm_id: str,
        expected_version: Optional[int],
        transition: AlarmTransition,
        apply: Callable[[Alarm], Optional[Alarm]],
        ts: datetime,
        actor: str = "system",
        note: Optional[str] = None,
    ) -> Alarm:
        with self._locks.hold(alarm_id):
            cur = self.get(alarm_id)
            if expected_version is not None and expected_version != cur.version:
                raise ConcurrentModification(alarm_id, expected_version, cur.version)

            new = apply(cur)
            if new is None:
                return cur

            new = replace(new, version=cur.version + 1, last_updated_at=ts)
            self._commit(cur, new, transition, ts, actor, note)
            if transition is not AlarmTransition.REFRESHED:
                logger.info("[STORE] %s %s by %s", transition.value, alarm_id, actor)
            return new

    def _commit(
        self,
        cur: Optional[Alarm],
        new: Alarm,
        transition: AlarmTransition,
        ts: datetime,
        actor: str = "system",
        note: Optional[str] = None,
    ) -> None:
        """Write through the repository, then update cache/history and notify."""
        expected = cur.version if cur is not None else None
        retry_with_backoff(
            lambda: self._repo.save(new, expected, self._retry.timeout_s),
            self._retry,
            what=f"save alarm {new.alarm_id}",
            sleep=self._sleep,
        )

        event = AlarmEvent(transition=transition, alarm=new, timestamp=ts, actor=actor, note=note)
        with self._index_lock:
            self._index(new)
            self._events.append(event)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("[STORE] alarm listener failed for %s", transition.value)

    def _index(self, alarm: Alarm) -> None:
        key = (alarm.pod_id, alarm.alarm_type)
        self._alarms[alarm.alarm_id] = alarm
        if alarm.is_open:
            self._open[key] = alarm.alarm_id
        else:
            if self._open.get(key) == alarm.alarm_id:
                del self._open[key]
            if alarm.resolved_at is not None:
                prev = self._last_resolved.get(key)
                if prev is None or alarm.resolved_at > prev:
                    self._last_resolved[key] = alarm.resolved_at

"""
Alarm policy evaluator.

This module contains the per-pod state machine that turns classified readings
into alarm lifecycle decisions:

- debounce: a breach must hold for ``time_in_state_seconds`` before an alarm
  opens
- hysteresis: a breach only clears once the value is back inside
  ``threshold +/- deadband``
- de-duplication: an open alarm is refreshed, never duplicated
- suppression: no new alarm within ``suppression_duration_minutes`` of the
  last resolution for the same (pod, alarm type)
- auto-clear: only for policies flagged ``auto_clear``
- shelving: shelved alarms are neither refreshed nor re-notified until
  ``shelved_until``; auto-unshelve returns them to their prior state

The evaluator keeps only debounce bookkeeping (`BreachState`) in memory. The
canonical alarm state lives in `AlarmLifecycleStore`. Readings for one pod
must be evaluated sequentially; different pods may be evaluated concurrently.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set, Tuple

from podalarm.core.alarm.conditions import ConditionResult, evaluate_condition, parameter_for
from podalarm.core.classify.classifier import ClassifiedReading
from podalarm.core.config.policy_catalog import PolicyCatalog
from podalarm.core.state.alarm_store import AlarmLifecycleStore
from podalarm.domain.errors import InvalidTransition, PersistenceError
from podalarm.domain.events import AlarmEvent, AlarmTransition
from podalarm.domain.models import Alarm, AlarmPolicy, AlarmStatus, AlarmType, PodContext

logger = logging.getLogger(__name__)

StateKey = Tuple[AlarmType, str]

AUTO_CLEAR_NOTE = "Auto-resolved: condition returned to normal"


def _value_changed(a: Optional[float], b: Optional[float], eps: float = 0.5) -> bool:
    """
    Compare two optional floats with a tolerance.

    Parameters
    ----------
    a, b
        Values to compare. Either value may be None.
    eps
        Minimum absolute difference to consider the value changed.

    Returns
    -------
    bool
        True if values differ meaningfully, False otherwise.
    """
    if a is None and b is None:
        return False
    if a is None or b is None:
        return True
    return abs(a - b) > eps


@dataclass(frozen=True)
class BreachState:
    """
    Debounce bookkeeping for one (pod, alarm type, policy).

    Parameters
    ----------
    breach_since
        When the breach condition was first observed (None when clear).
    clear_since
        When the value first came back inside the hysteresis band.
    """

    breach_since: Optional[datetime] = None
    clear_since: Optional[datetime] = None


@dataclass(frozen=True)
class EvaluationOutcome:
    """
    Result of evaluating one reading.

    Parameters
    ----------
    events
        Lifecycle events caused by this reading.
    failures
        Persistence failures; the affected alarm types did not advance.
    """

    events: List[AlarmEvent] = field(default_factory=list)
    failures: List[PersistenceError] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.failures)


def advance_state(prev: BreachState, cond: ConditionResult, now: datetime) -> BreachState:
    """
    Compute the next debounce state.

    - breach: keep (or start) ``breach_since``
    - cleared: drop ``breach_since``, keep (or start) ``clear_since``
    - inside the hysteresis band: drop both

    The band only holds an open alarm back from clearing. It never counts
    towards the time-in-state of a new breach.
    """
    if cond.holds:
        return BreachState(breach_since=prev.breach_since or now, clear_since=None)
    if cond.cleared:
        return BreachState(breach_since=None, clear_since=prev.clear_since or now)
    return BreachState()


class AlarmPolicyEvaluator:
    """
    Per-pod alarm policy state machine.

    Parameters
    ----------
    catalog
        Policy catalog (refreshable at runtime).
    store
        Alarm lifecycle store holding canonical alarm state.
    value_eps
        Minimum change of the triggering value that refreshes an open alarm
        when its policy has no deadband.
    """

    def __init__(self, catalog: PolicyCatalog, store: AlarmLifecycleStore, value_eps: float = 0.5):
        self._catalog = catalog
        self._store = store
        self.value_eps = value_eps
        self._guard = threading.Lock()
        self._states: Dict[str, Dict[StateKey, BreachState]] = {}
        self._warned: Set[Tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # inspection
    # ------------------------------------------------------------------
    def state_for(self, pod_id: str, alarm_type: AlarmType, policy_id: str) -> Optional[BreachState]:
        return self._pod_states(pod_id).get((alarm_type, policy_id))

    def reset(self, pod_id: Optional[str] = None) -> None:
        """Drop debounce state for one pod (or all pods)."""
        with self._guard:
            if pod_id is None:
                self._states.clear()
            else:
                self._states.pop(pod_id, None)

    # ------------------------------------------------------------------
    # evaluation
    # ------------------------------------------------------------------
    def evaluate(self, classified: ClassifiedReading) -> EvaluationOutcome:
        """
        Evaluate every applicable policy against one classified reading.

        The reading timestamp is the evaluation time. Alarm types are
        evaluated independently; a persistence failure on one type does not
        stop the others.

        Parameters
        ----------
        classified
            Classified reading for one pod.

        Returns
        -------
        EvaluationOutcome
            Events produced and persistence failures encountered.
        """
        pod = classified.pod
        now = classified.reading.timestamp
        states = self._pod_states(pod.pod_id)
        outcome = EvaluationOutcome()
        live: Set[StateKey] = set()

        for alarm_type, policies in self._catalog.grouped_by_type(pod.organization_id).items():
            applicable: List[AlarmPolicy] = []
            for p in policies:
                key = (alarm_type, p.policy_id)
                if not p.applies_to(pod):
                    states.pop(key, None)
                    continue
                applicable.append(p)
                live.add(key)

            if not applicable:
                continue

            try:
                outcome.events.extend(self._evaluate_type(classified, alarm_type, applicable, states, now))
            except PersistenceError as e:
                logger.error("[EVAL] %s/%s not advanced, persistence failed: %s", pod.pod_id, alarm_type.value, e)
                outcome.failures.append(e)

        for key in [k for k in states if k not in live]:
            del states[key]

        return outcome

    def _evaluate_type(
        self,
        classified: ClassifiedReading,
        alarm_type: AlarmType,
        policies: Sequence[AlarmPolicy],
        states: Dict[StateKey, BreachState],
        now: datetime,
    ) -> List[AlarmEvent]:
        pod = classified.pod
        events: List[AlarmEvent] = []

        open_alarm = self._store.find_open(pod.pod_id, alarm_type)
        if open_alarm is not None and open_alarm.status is AlarmStatus.SHELVED and not open_alarm.is_shelved_at(now):
            released = self._store.release_expired_shelve(open_alarm.alarm_id, now)
            if released is not None:
                events.append(AlarmEvent(AlarmTransition.UNSHELVED, released, now))
                open_alarm = released

        # Stage new state; commit only once the store calls below succeeded.
        staged: Dict[StateKey, BreachState] = {}
        evaluated: Dict[str, Tuple[AlarmPolicy, ConditionResult, BreachState]] = {}
        triggered: List[Tuple[AlarmPolicy, ConditionResult]] = []

        for policy in policies:
            key = (alarm_type, policy.policy_id)
            cond = evaluate_condition(policy, classified)
            if cond is None:
                self._log_skip(classified, policy)
                continue

            nxt = advance_state(states.get(key) or BreachState(), cond, now)
            staged[key] = nxt
            evaluated[policy.policy_id] = (policy, cond, nxt)

            if cond.holds and nxt.breach_since is not None:
                held_s = (now - nxt.breach_since).total_seconds()
                if held_s >= policy.time_in_state_seconds:
                    triggered.append((policy, cond))

        ev: Optional[AlarmEvent] = None
        if triggered:
            policy, cond = max(triggered, key=lambda pc: pc[0].severity.rank)
            ev = self._trigger(pod, alarm_type, policy, cond, open_alarm, now)
        elif open_alarm is not None:
            ev = self._auto_clear(open_alarm, evaluated, now)

        if ev is not None:
            events.append(ev)

        states.update(staged)
        return events

    def _trigger(
        self,
        pod: PodContext,
        alarm_type: AlarmType,
        policy: AlarmPolicy,
        cond: ConditionResult,
        open_alarm: Optional[Alarm],
        now: datetime,
    ) -> Optional[AlarmEvent]:
        if open_alarm is None:
            last = self._store.last_resolved_at(pod.pod_id, alarm_type)
            if last is not None and policy.suppression_duration_minutes:
                if now - last < timedelta(minutes=policy.suppression_duration_minutes):
                    logger.debug("[EVAL] %s/%s suppressed after resolution at %s",
                                 pod.pod_id, alarm_type.value, last.isoformat())
                    return None

            alarm = self._store.open(pod.pod_id, alarm_type, policy, cond.value, cond.message, now=now)
            return AlarmEvent(AlarmTransition.OPENED, alarm, now)

        if open_alarm.is_shelved_at(now):
            return None

        eps = policy.deadband_value if policy.deadband_value else self.value_eps
        upgrade = policy.severity.rank > open_alarm.severity.rank
        if not upgrade and not _value_changed(open_alarm.actual_value, cond.value, eps):
            return None

        try:
            alarm = self._store.refresh(
                open_alarm.alarm_id, cond.value, cond.message, now=now, severity=policy.severity, policy=policy
            )
        except InvalidTransition:
            logger.debug("[EVAL] %s resolved concurrently, refresh skipped", open_alarm.alarm_id)
            return None
        return AlarmEvent(AlarmTransition.REFRESHED, alarm, now)

    def _auto_clear(
        self,
        open_alarm: Alarm,
        evaluated: Dict[str, Tuple[AlarmPolicy, ConditionResult, BreachState]],
        now: datetime,
    ) -> Optional[AlarmEvent]:
        if open_alarm.status not in (AlarmStatus.ACTIVE, AlarmStatus.ACKNOWLEDGED):
            return None

        owner = evaluated.get(open_alarm.policy_id)
        if owner is None:
            return None

        policy, cond, st = owner
        if not policy.auto_clear or not cond.cleared or st.clear_since is None:
            return None
        if (now - st.clear_since).total_seconds() < policy.auto_clear_after_seconds:
            return None

        alarm = self._store.resolve(open_alarm.alarm_id, actor="system", note=AUTO_CLEAR_NOTE, now=now)
        return AlarmEvent(AlarmTransition.RESOLVED, alarm, now, note=AUTO_CLEAR_NOTE)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _pod_states(self, pod_id: str) -> Dict[StateKey, BreachState]:
        with self._guard:
            return self._states.setdefault(pod_id, {})

    def _log_skip(self, classified: ClassifiedReading, policy: AlarmPolicy) -> None:
        parameter = parameter_for(policy.alarm_type)
        status = classified.status_of(parameter) if parameter is not None else None
        pod_id = classified.pod.pod_id

        if status is not None and status.usable and policy.threshold_value is None:
            key = (pod_id, policy.policy_id)
            if key not in self._warned:
                self._warned.add(key)
                logger.warning("[EVAL] %s has no %s setpoint; policy %s skipped",
                               pod_id, parameter.value if parameter else "?", policy.policy_id)
            return

        logger.debug("[EVAL] %s policy %s skipped: %s unusable", pod_id, policy.policy_id,
                     parameter.value if parameter else "?")

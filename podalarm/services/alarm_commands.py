"""
Alarm command service.

Operators never mutate alarm state locally. They issue a command and apply
the authoritative alarm snapshot returned in the `CommandResult`; a failed
command says why (not found, invalid transition, version conflict, bad input,
persistence failure) and leaves state untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from podalarm.core.state.alarm_store import AlarmLifecycleStore
from podalarm.core.timing.scheduler import TimerScheduler
from podalarm.domain.errors import AlarmNotFound, ConcurrentModification, InvalidTransition, PersistenceError
from podalarm.domain.models import Alarm

logger = logging.getLogger(__name__)


class ResultCode:
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    CONFLICT = "conflict"
    INVALID = "invalid"
    PERSISTENCE = "persistence"


@dataclass(frozen=True)
class CommandResult:
    """
    Authoritative outcome of an alarm command.

    Parameters
    ----------
    ok
        Whether the command was applied (or was an idempotent no-op).
    alarm
        Current alarm snapshot (on failure: the latest known one, if any).
    code
        One of the `ResultCode` values.
    error
        Human-readable error on failure.
    """

    ok: bool
    alarm: Optional[Alarm] = None
    code: str = ResultCode.OK
    error: Optional[str] = None


class AlarmCommandService:
    """
    Command/result facade over the alarm lifecycle store.

    Parameters
    ----------
    store
        Alarm lifecycle store.
    scheduler
        Timer scheduler; provides the command time and runs auto-unshelve
        timers.
    """

    def __init__(self, store: AlarmLifecycleStore, scheduler: TimerScheduler):
        self._store = store
        self._scheduler = scheduler

    def get(self, alarm_id: str) -> CommandResult:
        return self._run(lambda: self._store.get(alarm_id), alarm_id)

    def acknowledge(
        self,
        alarm_id: str,
        actor: str,
        note: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CommandResult:
        now = self._scheduler.now()
        return self._run(
            lambda: self._store.acknowledge(alarm_id, actor, note, expected_version=expected_version, now=now),
            alarm_id,
        )

    def resolve(
        self,
        alarm_id: str,
        actor: str,
        note: str,
        root_cause: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CommandResult:
        now = self._scheduler.now()
        return self._run(
            lambda: self._store.resolve(
                alarm_id, actor, note, root_cause=root_cause, expected_version=expected_version, now=now
            ),
            alarm_id,
        )

    def shelve(
        self,
        alarm_id: str,
        actor: str,
        reason: str,
        duration_minutes: Optional[float] = None,
        until: Optional[datetime] = None,
        auto_unshelve: bool = True,
        expected_version: Optional[int] = None,
    ) -> CommandResult:
        """
        Shelve an alarm for ``duration_minutes`` (or until ``until``).

        With ``auto_unshelve`` a timer returns the alarm to its prior status
        at ``until``.
        """
        now = self._scheduler.now()
        if until is None:
            if duration_minutes is None:
                return CommandResult(ok=False, code=ResultCode.INVALID, error="shelve requires a duration or 'until'")
            until = now + timedelta(minutes=duration_minutes)

        result = self._run(
            lambda: self._store.shelve(
                alarm_id, actor, reason, until, auto_unshelve=auto_unshelve,
                expected_version=expected_version, now=now,
            ),
            alarm_id,
        )
        if result.ok and auto_unshelve:
            self._scheduler.call_at(until, lambda: self._release(alarm_id))
        return result

    def unshelve(self, alarm_id: str, actor: str, expected_version: Optional[int] = None) -> CommandResult:
        now = self._scheduler.now()
        return self._run(
            lambda: self._store.unshelve(alarm_id, actor, expected_version=expected_version, now=now),
            alarm_id,
        )

    def _release(self, alarm_id: str) -> None:
        alarm = self._store.release_expired_shelve(alarm_id, now=self._scheduler.now())
        if alarm is not None:
            logger.info("[COMMANDS] %s auto-unshelved to %s", alarm_id, alarm.status.value)

    def _run(self, op: Callable[[], Alarm], alarm_id: str) -> CommandResult:
        try:
            return CommandResult(ok=True, alarm=op())
        except AlarmNotFound as e:
            return CommandResult(ok=False, code=ResultCode.NOT_FOUND, error=str(e))
        except InvalidTransition as e:
            return CommandResult(ok=False, alarm=self._current(alarm_id), code=ResultCode.INVALID_TRANSITION, error=str(e))
        except ConcurrentModification as e:
            return CommandResult(ok=False, alarm=self._current(alarm_id), code=ResultCode.CONFLICT, error=str(e))
        except PersistenceError as e:
            logger.error("[COMMANDS] persistence failure on %s: %s", alarm_id, e)
            return CommandResult(ok=False, alarm=self._current(alarm_id), code=ResultCode.PERSISTENCE, error=str(e))
        except ValueError as e:
            return CommandResult(ok=False, alarm=self._current(alarm_id), code=ResultCode.INVALID, error=str(e))

    def _current(self, alarm_id: str) -> Optional[Alarm]:
        try:
            return self._store.get(alarm_id)
        except AlarmNotFound:
            return None

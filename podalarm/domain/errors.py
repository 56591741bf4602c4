"""
Typed errors raised by the alarm engine.

Callers are expected to handle these explicitly:

- ``InvalidTransition``: the requested lifecycle change is not allowed from
  the alarm's current status. State is left untouched.
- ``ConcurrentModification``: the alarm changed since the caller read it.
  Re-read and retry.
- ``AlarmNotFound``: unknown alarm id.
- ``PersistenceError``: the repository write failed after all retries.
- ``EvaluationError``: one evaluation cycle for one pod failed; the engine
  keeps running.
"""

from __future__ import annotations

from typing import Optional

from podalarm.domain.models import AlarmStatus


class AlarmError(Exception):
    """Base class for alarm engine errors."""


class AlarmNotFound(AlarmError, KeyError):
    def __init__(self, alarm_id: str):
        super().__init__(alarm_id)
        self.alarm_id = alarm_id

    def __str__(self) -> str:
        return f"Alarm not found: {self.alarm_id}"


class InvalidTransition(AlarmError):
    """
    Raised when a lifecycle operation is not allowed from the current status.

    Parameters
    ----------
    alarm_id
        Alarm the operation targeted.
    current
        Status the alarm is in.
    operation
        Name of the rejected operation (e.g. "acknowledge").
    """

    def __init__(self, alarm_id: str, current: AlarmStatus, operation: str):
        super().__init__(f"Cannot {operation} alarm {alarm_id} in status {current.value}")
        self.alarm_id = alarm_id
        self.current = current
        self.operation = operation


class ConcurrentModification(AlarmError):
    """
    Raised when the caller's expected version does not match the stored one.

    Parameters
    ----------
    alarm_id
        Alarm the operation targeted.
    expected
        Version the caller read.
    actual
        Version currently stored.
    """

    def __init__(self, alarm_id: str, expected: int, actual: int):
        super().__init__(f"Alarm {alarm_id} modified concurrently (expected v{expected}, found v{actual})")
        self.alarm_id = alarm_id
        self.expected = expected
        self.actual = actual


class PersistenceError(AlarmError):
    """Repository write failed (after retries when raised by the store)."""


class EvaluationError(AlarmError):
    """
    One evaluation cycle failed for one pod.

    Parameters
    ----------
    pod_id
        Pod whose cycle failed.
    cause
        Underlying error, usually a ``PersistenceError``.
    """

    def __init__(self, pod_id: str, cause: Optional[BaseException] = None):
        super().__init__(f"Evaluation cycle failed for pod {pod_id}: {cause!r}")
        self.pod_id = pod_id
        self.cause = cause

"""
Alarm persistence.

The lifecycle store keeps an in-memory cache of alarms and writes every
transition through an `AlarmRepository`. Writes are compare-and-swap on the
alarm version and are retried with bounded exponential backoff.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, TypeVar

from podalarm.domain.errors import ConcurrentModification, PersistenceError
from podalarm.domain.models import Alarm

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry-with-backoff settings for repository writes.

    Parameters
    ----------
    attempts
        Total number of attempts (first try included).
    base_delay_s
        Delay before the second attempt; doubles for each further attempt.
    max_delay_s
        Upper bound for a single delay.
    timeout_s
        Per-call timeout handed to the repository.
    """

    attempts: int = 3
    base_delay_s: float = 0.1
    max_delay_s: float = 2.0
    timeout_s: float = 5.0


def retry_with_backoff(
    fn: Callable[[], T],
    policy: RetryPolicy,
    what: str = "write",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` until it succeeds or the attempts are exhausted.

    Only ``PersistenceError`` (and ``TimeoutError`` / ``OSError`` raised by
    I/O-backed repositories) are retried. ``ConcurrentModification`` is a
    caller error and propagates immediately.

    Parameters
    ----------
    fn
        Operation to run.
    policy
        Retry settings.
    what
        Short description used in log messages.
    sleep
        Sleep function (injected by tests).

    Returns
    -------
    T
        Result of ``fn``.

    Raises
    ------
    PersistenceError
        If every attempt failed.
    """
    last: Optional[BaseException] = None
    for attempt in range(policy.attempts):
        try:
            return fn()
        except ConcurrentModification:
            raise
        except (PersistenceError, TimeoutError, OSError) as e:
            last = e
            if attempt >= policy.attempts - 1:
                break
            delay = min(policy.base_delay_s * (2 ** attempt), policy.max_delay_s)
            logger.warning("[STORE] %s failed (attempt %d/%d): %r; retrying in %.2fs",
                           what, attempt + 1, policy.attempts, e, delay)
            sleep(delay)

    raise PersistenceError(f"{what} failed after {policy.attempts} attempts: {last!r}") from last


class AlarmRepository(Protocol):
    """
    Durable storage for alarm snapshots.

    Implementations must perform ``save`` as a compare-and-swap: the write
    succeeds only if the stored version equals ``expected_version`` (None
    means the alarm must not exist yet).
    """

    def save(self, alarm: Alarm, expected_version: Optional[int], timeout_s: float) -> None:
        ...

    def load_all(self) -> List[Alarm]:
        ...


@dataclass
class InMemoryAlarmRepository:
    """
    Process-local repository.

    Used for tests, demos and as the default backend. Writes are atomic under
    an internal lock.
    """

    _rows: Dict[str, Alarm] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def save(self, alarm: Alarm, expected_version: Optional[int], timeout_s: float = 5.0) -> None:
        with self._lock:
            current = self._rows.get(alarm.alarm_id)
            if expected_version is None:
                if current is not None:
                    raise ConcurrentModification(alarm.alarm_id, 0, current.version)
            elif current is None or current.version != expected_version:
                raise ConcurrentModification(
                    alarm.alarm_id, expected_version, current.version if current else 0
                )
            self._rows[alarm.alarm_id] = alarm

    def load_all(self) -> List[Alarm]:
        with self._lock:
            return list(self._rows.values())

    def get(self, alarm_id: str) -> Optional[Alarm]:
        with self._lock:
            return self._rows.get(alarm_id)

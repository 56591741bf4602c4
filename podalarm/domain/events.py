"""
Alarm event domain models.

This module defines the event-level representation of alarm lifecycle changes.
An `AlarmEvent` represents *what happened* at a specific time, while `Alarm`
(in models.py) represents *what is currently true*.

Events are used for:
- the audit trail (every transition is queryable by time range)
- escalation scheduling
- notification routing
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from podalarm.domain.models import Alarm


class AlarmTransition(str, Enum):
    """
    Alarm lifecycle transition.

    Members
    -------
    OPENED : str
        A new alarm was created (status ACTIVE).
    REFRESHED : str
        An open alarm's triggering value/message/severity changed.
    ACKNOWLEDGED : str
        An operator acknowledged the alarm.
    RESOLVED : str
        The alarm was closed (manually or by auto-clear).
    SHELVED : str
        The alarm was temporarily shelved.
    UNSHELVED : str
        The alarm returned from shelving to its prior status.
    ESCALATED : str
        The alarm stayed unacknowledged past its expected response time.
    """

    OPENED = "opened"
    REFRESHED = "refreshed"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    SHELVED = "shelved"
    UNSHELVED = "unshelved"
    ESCALATED = "escalated"


@dataclass(frozen=True)
class AlarmEvent:
    """
    Alarm event emitted when an alarm transitions.

    Parameters
    ----------
    transition
        Lifecycle transition.
    alarm
        Alarm snapshot *after* the transition was applied.
    timestamp
        When the transition occurred (UTC).
    actor
        User id for operator actions, "system" for engine actions.
    note
        Optional free text attached to the transition.
    """

    transition: AlarmTransition
    alarm: Alarm
    timestamp: datetime
    actor: str = "system"
    note: Optional[str] = None

    @property
    def alarm_id(self) -> str:
        return self.alarm.alarm_id

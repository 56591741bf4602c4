"""
Domain models and enums.

This module defines the core domain-level types used across the engine:
- Alarm types, severities, lifecycle statuses and ISA-18.2 priorities
- Telemetry readings, setpoints and pod context
- Alarm policies, alarm instances and notification delivery records
- Routing rules, recipients and maintenance suppression windows

Everything that crosses a thread boundary is a frozen dataclass. State changes
are expressed by building a new instance (``dataclasses.replace``), never by
mutating a shared object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from podalarm.domain.equipment import EquipmentControl


class AlarmType(str, Enum):
    """
    Category identifying the parameter and direction of a policy breach.

    Members
    -------
    TEMPERATURE_HIGH / TEMPERATURE_LOW : str
        Air temperature above / below the allowed range.
    HUMIDITY_HIGH / HUMIDITY_LOW : str
        Relative humidity above / below the allowed range.
    CO2_HIGH / CO2_LOW : str
        CO2 concentration above / below the allowed range.
    VPD_OUT_OF_RANGE : str
        Vapor pressure deficit outside the allowed band (either side).
    SENSOR_FAULT : str
        One or more sensors report a fault.
    DEVICE_OFFLINE : str
        The pod controller stopped communicating.
    """

    TEMPERATURE_HIGH = "temperature_high"
    TEMPERATURE_LOW = "temperature_low"
    HUMIDITY_HIGH = "humidity_high"
    HUMIDITY_LOW = "humidity_low"
    CO2_HIGH = "co2_high"
    CO2_LOW = "co2_low"
    VPD_OUT_OF_RANGE = "vpd_out_of_range"
    SENSOR_FAULT = "sensor_fault"
    DEVICE_OFFLINE = "device_offline"


class AlarmSeverity(str, Enum):
    """
    Severity level for alarms.

    Members
    -------
    CRITICAL : str
        Severe condition requiring immediate intervention.
    WARNING : str
        Abnormal condition requiring attention.
    INFO : str
        Informational condition, no action expected.
    """

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Higher is more severe."""
        return {"info": 0, "warning": 1, "critical": 2}[self.value]


class AlarmStatus(str, Enum):
    """
    Alarm lifecycle status.

    Members
    -------
    ACTIVE : str
        Alarm raised and not yet handled.
    ACKNOWLEDGED : str
        An operator has taken ownership.
    SHELVED : str
        Temporarily suppressed (no notifications, no escalation).
    RESOLVED : str
        Closed. Terminal.
    """

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    SHELVED = "shelved"
    RESOLVED = "resolved"

    @property
    def is_open(self) -> bool:
        return self is not AlarmStatus.RESOLVED


class AlarmPriority(str, Enum):
    """ISA-18.2 alarm priority."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RationalizationStatus(str, Enum):
    """ISA-18.2 rationalization workflow state of a policy."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ThresholdOperator(str, Enum):
    """Comparison operator applied as ``actual <op> threshold``."""

    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "="
    NE = "!="


class DataSource(str, Enum):
    """Origin of a telemetry reading."""

    TAGOIO = "tagoio"
    MANUAL = "manual"
    CALCULATED = "calculated"
    SIMULATED = "simulated"


class Parameter(str, Enum):
    """Environmental parameter measured (or derived) for a pod."""

    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    CO2 = "co2"
    LIGHT = "light"
    VPD = "vpd"


class HealthState(str, Enum):
    """
    Health of one parameter sample.

    Precedence when several apply: FAULTED > CAL_DUE > STALE > HEALTHY.
    """

    HEALTHY = "healthy"
    STALE = "stale"
    FAULTED = "faulted"
    CAL_DUE = "cal_due"


class SpecStatus(str, Enum):
    """Position of a value relative to its setpoint and tolerance."""

    IN_SPEC = "in_spec"
    APPROACHING = "approaching"
    OUT_OF_SPEC = "out_of_spec"


class NotificationChannel(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class NotificationStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    READ = "read"


class NotificationUrgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NotificationKind(str, Enum):
    """Lifecycle moment a notification was produced for."""

    OPENED = "opened"
    ESCALATED = "escalated"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class TelemetryReading:
    """
    One environmental sample for one pod at one timestamp.

    Parameters
    ----------
    pod_id
        Pod (grow room) identifier.
    timestamp
        Capture time. Stored as timezone-aware UTC.
    temperature_c, humidity_pct, co2_ppm, light_intensity_pct
        Measured values. None when the sensor did not report.
    vpd_kpa
        Vapor pressure deficit. Derived from temperature/humidity when the
        source does not provide it.
    temp_sensor_fault, humidity_sensor_fault, co2_sensor_fault, pressure_sensor_fault
        Per-sensor fault flags reported by the controller.
    communication_fault
        Controller reports lost communication with the sensor bus.
    equipment
        Equipment control snapshot keyed by equipment name.
    data_source
        Where the sample came from.
    reading_id
        Optional upstream identifier.
    active_recipe_id
        Recipe active on the pod when the sample was taken.

    Notes
    -----
    Readings are immutable once persisted; faulted samples are retained so
    that gaps stay visible in history.
    """

    pod_id: str
    timestamp: datetime
    temperature_c: Optional[float] = None
    humidity_pct: Optional[float] = None
    co2_ppm: Optional[float] = None
    light_intensity_pct: Optional[float] = None
    vpd_kpa: Optional[float] = None
    temp_sensor_fault: bool = False
    humidity_sensor_fault: bool = False
    co2_sensor_fault: bool = False
    pressure_sensor_fault: bool = False
    communication_fault: bool = False
    equipment: Mapping[str, EquipmentControl] = field(default_factory=dict)
    data_source: DataSource = DataSource.TAGOIO
    reading_id: Optional[str] = None
    active_recipe_id: Optional[str] = None

    def value_of(self, parameter: Parameter) -> Optional[float]:
        """Return the measured value for ``parameter`` (or None)."""
        return {
            Parameter.TEMPERATURE: self.temperature_c,
            Parameter.HUMIDITY: self.humidity_pct,
            Parameter.CO2: self.co2_ppm,
            Parameter.LIGHT: self.light_intensity_pct,
            Parameter.VPD: self.vpd_kpa,
        }[parameter]

    def fault_flag(self, parameter: Parameter) -> bool:
        """
        Return whether the sensor feeding ``parameter`` is flagged faulty.

        VPD is derived, so it inherits the temperature and humidity flags.
        """
        if parameter is Parameter.TEMPERATURE:
            return self.temp_sensor_fault
        if parameter is Parameter.HUMIDITY:
            return self.humidity_sensor_fault
        if parameter is Parameter.CO2:
            return self.co2_sensor_fault
        if parameter is Parameter.VPD:
            return self.temp_sensor_fault or self.humidity_sensor_fault
        return False

    @property
    def any_sensor_fault(self) -> bool:
        return (
            self.temp_sensor_fault
            or self.humidity_sensor_fault
            or self.co2_sensor_fault
            or self.pressure_sensor_fault
        )


@dataclass(frozen=True)
class Setpoint:
    """
    Target value and tolerance for one parameter.

    Parameters
    ----------
    parameter
        Parameter the setpoint applies to.
    day_value
        Target during the light period.
    tolerance
        Allowed absolute deviation from the target.
    night_value
        Target during the dark period. Falls back to ``day_value``.
    warning_ratio
        Fraction of the tolerance at which a value is "approaching".
        None uses the engine default.
    """

    parameter: Parameter
    day_value: float
    tolerance: float
    night_value: Optional[float] = None
    warning_ratio: Optional[float] = None

    def target(self, is_day: bool = True) -> float:
        if not is_day and self.night_value is not None:
            return self.night_value
        return self.day_value


@dataclass(frozen=True)
class PodContext:
    """
    Read-only context the evaluator needs about a pod.

    Parameters
    ----------
    pod_id
        Pod identifier.
    organization_id
        Owning organization, used to select policies and routes.
    name
        Display name used in alarm messages.
    pod_type
        Pod hardware/type label used by policy applicability filters.
    batch_stage
        Current growth stage of the batch in the pod (None if empty).
    setpoints
        Setpoints keyed by parameter for the active recipe stage.
    calibration_due
        Parameters whose sensors are past their calibration date.
    is_day
        Whether the light period is active (selects day/night setpoints).
    """

    pod_id: str
    organization_id: str
    name: str = ""
    pod_type: Optional[str] = None
    batch_stage: Optional[str] = None
    setpoints: Mapping[Parameter, Setpoint] = field(default_factory=dict)
    calibration_due: FrozenSet[Parameter] = frozenset()
    is_day: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.pod_id


@dataclass(frozen=True)
class AlarmPolicy:
    """
    Configuration for one (organization, alarm type) threshold rule.

    Parameters
    ----------
    policy_id
        Unique policy identifier.
    organization_id
        Owning organization.
    name
        Human-readable policy name.
    alarm_type
        Alarm type the policy raises.
    severity
        Severity of alarms raised by the policy.
    threshold_value
        Threshold compared against the actual value. None means the policy
        follows the parameter's spec status against the pod setpoint.
    threshold_operator
        Comparison operator (``actual <op> threshold``).
    time_in_state_seconds
        Continuous breach duration required before the alarm opens.
    deadband_value
        Clear-side hysteresis margin around the threshold.
    suppression_duration_minutes
        Quiet period after resolution during which a re-breach does not
        open a new alarm.
    applies_to_stage
        If set, the policy only applies to pods in one of these batch stages.
    applies_to_pod_types
        If set, the policy only applies to pods of one of these types.
    is_active
        Inactive policies are ignored.
    auto_clear
        Whether the evaluator may resolve the alarm once the condition clears.
    auto_clear_after_seconds
        How long the condition must stay cleared before auto-resolution.
    priority, expected_response_seconds, rationalization_status,
    consequence_if_ignored, corrective_action
        ISA-18.2 rationalization fields. ``expected_response_seconds`` drives
        the escalation timer.
    """

    policy_id: str
    organization_id: str
    name: str
    alarm_type: AlarmType
    severity: AlarmSeverity
    threshold_value: Optional[float] = None
    threshold_operator: ThresholdOperator = ThresholdOperator.GT
    time_in_state_seconds: int = 300
    deadband_value: Optional[float] = None
    suppression_duration_minutes: Optional[int] = None
    applies_to_stage: Optional[Tuple[str, ...]] = None
    applies_to_pod_types: Optional[Tuple[str, ...]] = None
    is_active: bool = True
    auto_clear: bool = False
    auto_clear_after_seconds: int = 0
    priority: AlarmPriority = AlarmPriority.MEDIUM
    expected_response_seconds: Optional[int] = None
    rationalization_status: RationalizationStatus = RationalizationStatus.PENDING
    consequence_if_ignored: Optional[str] = None
    corrective_action: Optional[str] = None

    def applies_to(self, pod: PodContext) -> bool:
        """
        Return whether the applicability filters accept ``pod``.

        A stage filter never matches an empty pod (no batch stage).
        """
        if self.applies_to_stage and pod.batch_stage not in self.applies_to_stage:
            return False
        if self.applies_to_pod_types and pod.pod_type not in self.applies_to_pod_types:
            return False
        return True


@dataclass(frozen=True)
class Alarm:
    """
    One instance of a policy breach for one pod.

    Instances are immutable snapshots; every lifecycle transition produces a
    new snapshot with ``version`` incremented by one.

    Parameters
    ----------
    alarm_id
        Unique identifier.
    pod_id, organization_id, policy_id
        What breached and under which policy.
    alarm_type, severity
        Category and current severity.
    status
        Current lifecycle status.
    message
        Human-readable description of the latest trigger.
    threshold_value
        Threshold of the policy that triggered (None for spec-driven policies).
    actual_value
        Latest triggering value.
    triggered_at, last_updated_at
        When the alarm opened / was last written.
    acknowledged_at, acknowledged_by, ack_note
        Acknowledgement details.
    resolved_at, resolved_by, resolution_note, root_cause
        Resolution details.
    escalated_at, escalated_to_level
        Last escalation time and number of escalation cycles (starts at 0).
    shelved_at, shelved_by, shelved_reason, shelved_until, auto_unshelve
        Shelving details.
    shelved_from_status
        Status to return to when the alarm is unshelved.
    version
        Optimistic concurrency token.
    """

    alarm_id: str
    pod_id: str
    organization_id: str
    policy_id: str
    alarm_type: AlarmType
    severity: AlarmSeverity
    status: AlarmStatus
    message: str
    triggered_at: datetime
    last_updated_at: datetime
    threshold_value: Optional[float] = None
    actual_value: Optional[float] = None
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    ack_note: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_note: Optional[str] = None
    root_cause: Optional[str] = None
    escalated_at: Optional[datetime] = None
    escalated_to_level: int = 0
    shelved_at: Optional[datetime] = None
    shelved_by: Optional[str] = None
    shelved_reason: Optional[str] = None
    shelved_until: Optional[datetime] = None
    auto_unshelve: bool = False
    shelved_from_status: Optional[AlarmStatus] = None
    version: int = 1

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    def is_shelved_at(self, now: datetime) -> bool:
        """Return whether shelving suppression is in effect at ``now``."""
        if self.status is not AlarmStatus.SHELVED:
            return False
        return self.shelved_until is None or now < self.shelved_until


@dataclass(frozen=True)
class Notification:
    """
    Delivery record for one message to one user on one channel.

    Only the delivery/read fields change after creation.
    """

    notification_id: str
    user_id: str
    organization_id: str
    channel: NotificationChannel
    kind: NotificationKind
    message: str
    urgency: NotificationUrgency
    sent_at: datetime
    alarm_id: Optional[str] = None
    escalation_level: int = 0
    category: str = "alarm"
    status: NotificationStatus = NotificationStatus.SENT
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


@dataclass(frozen=True)
class AlarmRoute:
    """
    Role-based routing rule.

    A route fires for an alarm when the organization and severity match, the
    optional policy filter matches, and ``escalation_level`` is at or below
    the alarm's current escalation level.
    """

    organization_id: str
    severity: AlarmSeverity
    notify_role: str
    channel: NotificationChannel
    escalation_level: int = 0
    policy_id: Optional[str] = None
    is_active: bool = True


@dataclass(frozen=True)
class Recipient:
    """
    A user that can receive notifications.

    Parameters
    ----------
    user_id
        User identifier.
    organization_id
        Organization the user belongs to.
    roles
        Roles held by the user (matched against ``AlarmRoute.notify_role``).
    channels
        Preferred channels, used when an organization has no routes.
    severities
        Severities the user is subscribed to.
    addresses
        Delivery address per channel (email, phone number, device token).
    """

    user_id: str
    organization_id: str
    roles: FrozenSet[str] = frozenset()
    channels: Tuple[NotificationChannel, ...] = (NotificationChannel.IN_APP,)
    severities: FrozenSet[AlarmSeverity] = frozenset(AlarmSeverity)
    addresses: Dict[NotificationChannel, str] = field(default_factory=dict)

    def subscribed_to(self, organization_id: str, severity: AlarmSeverity) -> bool:
        return self.organization_id == organization_id and severity in self.severities


@dataclass(frozen=True)
class SuppressionWindow:
    """
    Maintenance window during which alarm notifications are suppressed.

    Parameters
    ----------
    organization_id
        Organization the window applies to.
    start, end
        Window bounds (``start <= now < end``).
    pod_ids
        Restrict the window to these pods. Empty means every pod.
    reason
        Free-text reason (e.g. "HVAC service").
    suppress_critical
        Critical alarms still notify unless this is set.
    """

    organization_id: str
    start: datetime
    end: datetime
    pod_ids: FrozenSet[str] = frozenset()
    reason: str = ""
    suppress_critical: bool = False

    def covers(self, alarm: Alarm, now: datetime) -> bool:
        if alarm.organization_id != self.organization_id:
            return False
        if not (self.start <= now < self.end):
            return False
        if self.pod_ids and alarm.pod_id not in self.pod_ids:
            return False
        if alarm.severity is AlarmSeverity.CRITICAL and not self.suppress_critical:
            return False
        return True

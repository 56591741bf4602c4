from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from podalarm.domain.models import (
    AlarmPolicy,
    AlarmPriority,
    AlarmRoute,
    AlarmSeverity,
    AlarmType,
    NotificationChannel,
    Parameter,
    PodContext,
    RationalizationStatus,
    Recipient,
    Setpoint,
    SuppressionWindow,
    ThresholdOperator,
)
from podalarm.transport.ndjson import parse_timestamp


@dataclass(frozen=True)
class EngineConfig:
    """Evaluation and escalation tuning."""
    stale_after_seconds: float = 30.0
    warning_ratio: float = 0.8
    value_eps: float = 0.5
    max_escalation_level: int = 3
    default_expected_response_seconds: int = 900
    workers: int = 4


@dataclass(frozen=True)
class PersistenceConfig:
    """Alarm write retry policy."""
    retry_attempts: int = 3
    retry_base_delay_s: float = 0.1
    retry_max_delay_s: float = 2.0
    timeout_s: float = 5.0


@dataclass(frozen=True)
class TcpClientConfig:
    """TCP ingestion feed settings used by the readings receiver."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9009
    timeout_s: float = 5.0
    reconnect_delay_s: float = 0.5


@dataclass(frozen=True)
class WebhookConfigData:
    """Webhook gateway for one external channel (URL + auth)."""
    url: str
    auth_header: Optional[str] = None
    timeout_s: float = 3.0
    verify_tls: bool = True


@dataclass(frozen=True)
class NotificationsConfig:
    """Notification routing and delivery settings."""
    notify_on_handled: bool = False
    max_queue: int = 2000
    channels: Dict[NotificationChannel, WebhookConfigData] = field(default_factory=dict)


@dataclass(frozen=True)
class ApiConfig:
    """HTTP API settings. ``token`` enables Bearer authentication."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080
    token: Optional[str] = None


@dataclass(frozen=True)
class AppConfig:
    """
    Root application configuration loaded from YAML.

    Single source of truth for runtime-tunable values: engine tuning, retry
    policy, ingestion, delivery gateways, and the alarm policies, routes,
    recipients, maintenance windows and pods the service starts with.
    """
    source: Optional[Path] = None
    log_level: str = "INFO"
    engine: EngineConfig = field(default_factory=EngineConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    transport: TcpClientConfig = field(default_factory=TcpClientConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    policies: List[AlarmPolicy] = field(default_factory=list)
    routes: List[AlarmRoute] = field(default_factory=list)
    recipients: List[Recipient] = field(default_factory=list)
    suppression_windows: List[SuppressionWindow] = field(default_factory=list)
    pods: List[PodContext] = field(default_factory=list)


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} must contain a YAML mapping at the root")
    return data


def _resolve_default_config_path() -> Path:
    """
    Resolve config.yaml location.

    Priority:
    1) PODALARM_CONFIG env var if provided
    2) config.yaml next to the executable
    3) ./config.yaml in current working directory
    """
    env = os.getenv("PODALARM_CONFIG")
    if env:
        return Path(env).expanduser().resolve()

    exe_dir = Path(sys.executable).resolve().parent
    candidate = exe_dir / "config.yaml"
    if candidate.exists():
        return candidate

    return Path("config.yaml").resolve()


def _secret(item: Mapping[str, Any], key: str) -> Optional[str]:
    """Inline value for ``key``, else the environment variable named by ``<key>_env``."""
    if item.get(key):
        return str(item[key])
    env_name = item.get(f"{key}_env")
    if env_name:
        return os.getenv(str(env_name)) or None
    return None


def _timestamp(v: Any) -> datetime:
    if isinstance(v, datetime):
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v.astimezone(timezone.utc)
    return parse_timestamp(str(v))


def _opt_tuple(v: Any) -> Optional[Tuple[str, ...]]:
    if not v:
        return None
    if isinstance(v, str):
        return (v,)
    return tuple(str(x) for x in v)


def _opt_float(v: Any) -> Optional[float]:
    return None if v is None else float(v)


def _opt_int(v: Any) -> Optional[int]:
    return None if v is None else int(v)


def parse_policy(item: Mapping[str, Any]) -> AlarmPolicy:
    """
    Convert one YAML policy mapping into an `AlarmPolicy`.

    Raises
    ------
    KeyError
        If a required field is missing.
    ValueError
        If an enum value or number is invalid.
    """
    return AlarmPolicy(
        policy_id=str(item["policy_id"]),
        organization_id=str(item["organization_id"]),
        name=str(item.get("name", item["policy_id"])),
        alarm_type=AlarmType(item["alarm_type"]),
        severity=AlarmSeverity(item["severity"]),
        threshold_value=_opt_float(item.get("threshold_value")),
        threshold_operator=ThresholdOperator(str(item.get("threshold_operator", ">"))),
        time_in_state_seconds=int(item.get("time_in_state_seconds", 300)),
        deadband_value=_opt_float(item.get("deadband_value")),
        suppression_duration_minutes=_opt_int(item.get("suppression_duration_minutes")),
        applies_to_stage=_opt_tuple(item.get("applies_to_stage")),
        applies_to_pod_types=_opt_tuple(item.get("applies_to_pod_types")),
        is_active=bool(item.get("is_active", True)),
        auto_clear=bool(item.get("auto_clear", False)),
        auto_clear_after_seconds=int(item.get("auto_clear_after_seconds", 0)),
        priority=AlarmPriority(item.get("priority", AlarmPriority.MEDIUM.value)),
        expected_response_seconds=_opt_int(item.get("expected_response_seconds")),
        rationalization_status=RationalizationStatus(
            item.get("rationalization_status", RationalizationStatus.PENDING.value)
        ),
        consequence_if_ignored=item.get("consequence_if_ignored"),
        corrective_action=item.get("corrective_action"),
    )


def parse_pod(item: Mapping[str, Any]) -> PodContext:
    """Convert one YAML pod mapping (with ``setpoints`` keyed by parameter) into a `PodContext`."""
    setpoints: Dict[Parameter, Setpoint] = {}
    for name, sp in (item.get("setpoints") or {}).items():
        p = Parameter(name)
        setpoints[p] = Setpoint(
            parameter=p,
            day_value=float(sp["day"]),
            tolerance=float(sp["tolerance"]),
            night_value=_opt_float(sp.get("night")),
            warning_ratio=_opt_float(sp.get("warning_ratio")),
        )

    return PodContext(
        pod_id=str(item["pod_id"]),
        organization_id=str(item["organization_id"]),
        name=str(item.get("name", "")),
        pod_type=item.get("pod_type"),
        batch_stage=item.get("batch_stage"),
        setpoints=setpoints,
        calibration_due=frozenset(Parameter(x) for x in item.get("calibration_due") or []),
        is_day=bool(item.get("is_day", True)),
    )


def parse_route(item: Mapping[str, Any]) -> AlarmRoute:
    return AlarmRoute(
        organization_id=str(item["organization_id"]),
        severity=AlarmSeverity(item["severity"]),
        notify_role=str(item["notify_role"]),
        channel=NotificationChannel(item.get("channel", NotificationChannel.IN_APP.value)),
        escalation_level=int(item.get("escalation_level", 0)),
        policy_id=item.get("policy_id"),
        is_active=bool(item.get("is_active", True)),
    )


def parse_recipient(item: Mapping[str, Any]) -> Recipient:
    severities = item.get("severities")
    return Recipient(
        user_id=str(item["user_id"]),
        organization_id=str(item["organization_id"]),
        roles=frozenset(str(r) for r in item.get("roles") or []),
        channels=tuple(NotificationChannel(c) for c in item.get("channels") or [NotificationChannel.IN_APP.value]),
        severities=frozenset(AlarmSeverity(s) for s in severities) if severities else frozenset(AlarmSeverity),
        addresses={NotificationChannel(k): str(v) for k, v in (item.get("addresses") or {}).items()},
    )


def parse_window(item: Mapping[str, Any]) -> SuppressionWindow:
    start = _timestamp(item["start"])
    end = _timestamp(item["end"])
    if end <= start:
        raise ValueError("suppression window must end after it starts")
    return SuppressionWindow(
        organization_id=str(item["organization_id"]),
        start=start,
        end=end,
        pod_ids=frozenset(str(p) for p in item.get("pod_ids") or []),
        reason=str(item.get("reason", "")),
        suppress_critical=bool(item.get("suppress_critical", False)),
    )


def load_policies(path: str | Path) -> List[AlarmPolicy]:
    """
    Read only the ``policies`` section of a YAML file.

    Used for reloading policies at runtime without restarting the service.
    """
    raw = _read_yaml(Path(path).expanduser().resolve())
    return [parse_policy(p) for p in raw.get("policies") or []]


def load_app_config(path: Optional[str] = None) -> AppConfig:
    """
    Load application configuration from YAML and convert into typed config objects.

    A ``.env`` file next to the config file is loaded first (existing
    environment variables win), so ``*_env`` secret references resolve.

    Parameters
    ----------
    path
        Explicit path to config.yaml. If None, uses default resolution.

    Returns
    -------
    AppConfig
        Parsed and validated configuration.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    KeyError
        If a required field is missing.
    ValueError
        If a field is invalid.
    """
    cfg_path = Path(path).expanduser().resolve() if path else _resolve_default_config_path()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config not found: {cfg_path}")

    load_dotenv(cfg_path.parent / ".env")
    raw = _read_yaml(cfg_path)

    # ---- engine ----
    e = raw.get("engine") or {}
    engine = EngineConfig(
        stale_after_seconds=float(e.get("stale_after_seconds", 30.0)),
        warning_ratio=float(e.get("warning_ratio", 0.8)),
        value_eps=float(e.get("value_eps", 0.5)),
        max_escalation_level=int(e.get("max_escalation_level", 3)),
        default_expected_response_seconds=int(e.get("default_expected_response_seconds", 900)),
        workers=int(e.get("workers", 4)),
    )
    if not 0.0 < engine.warning_ratio < 1.0:
        raise ValueError("engine.warning_ratio must be between 0 and 1")

    # ---- persistence ----
    p = raw.get("persistence") or {}
    persistence = PersistenceConfig(
        retry_attempts=int(p.get("retry_attempts", 3)),
        retry_base_delay_s=float(p.get("retry_base_delay_s", 0.1)),
        retry_max_delay_s=float(p.get("retry_max_delay_s", 2.0)),
        timeout_s=float(p.get("timeout_s", 5.0)),
    )

    # ---- transport ----
    t = (raw.get("transport") or {}).get("tcp_client") or {}
    transport = TcpClientConfig(
        enabled=bool(t.get("enabled", False)),
        host=str(t.get("host", "127.0.0.1")),
        port=int(t.get("port", 9009)),
        timeout_s=float(t.get("timeout_s", 5.0)),
        reconnect_delay_s=float(t.get("reconnect_delay_s", 0.5)),
    )

    # ---- notifications ----
    n = raw.get("notifications") or {}
    channels: Dict[NotificationChannel, WebhookConfigData] = {}
    for name, w in (n.get("channels") or {}).items():
        ch = NotificationChannel(name)
        if ch is NotificationChannel.IN_APP:
            raise ValueError("in_app notifications are stored, not delivered through a webhook")
        channels[ch] = WebhookConfigData(
            url=str(w["url"]),
            auth_header=_secret(w, "auth_header"),
            timeout_s=float(w.get("timeout_s", 3.0)),
            verify_tls=bool(w.get("verify_tls", True)),
        )
    notifications = NotificationsConfig(
        notify_on_handled=bool(n.get("notify_on_handled", False)),
        max_queue=int(n.get("max_queue", 2000)),
        channels=channels,
    )

    # ---- api ----
    a = raw.get("api") or {}
    api = ApiConfig(
        enabled=bool(a.get("enabled", True)),
        host=str(a.get("host", "127.0.0.1")),
        port=int(a.get("port", 8080)),
        token=_secret(a, "token"),
    )

    return AppConfig(
        source=cfg_path,
        log_level=str(raw.get("log_level", "INFO")).upper(),
        engine=engine,
        persistence=persistence,
        transport=transport,
        notifications=notifications,
        api=api,
        policies=[parse_policy(x) for x in raw.get("policies") or []],
        routes=[parse_route(x) for x in raw.get("routes") or []],
        recipients=[parse_recipient(x) for x in raw.get("recipients") or []],
        suppression_windows=[parse_window(x) for x in raw.get("suppression_windows") or []],
        pods=[parse_pod(x) for x in raw.get("pods") or []],
    )

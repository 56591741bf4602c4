"""
Unit tests for YAML configuration loading.

We verify:
- the shipped config.yaml parses into typed objects
- secrets are resolved from the environment and from a .env file
- defaults apply for omitted sections
- invalid values are rejected
- the policy catalog and pod registry accept the parsed objects
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from podalarm.core.config.pod_registry import PodRegistry
from podalarm.core.config.policy_catalog import PolicyCatalog
from podalarm.core.config.yaml_config import load_app_config, load_policies, parse_policy, parse_window
from podalarm.domain.models import (
    AlarmSeverity,
    AlarmType,
    NotificationChannel,
    Parameter,
    Setpoint,
    ThresholdOperator,
)

REPO_CONFIG = Path(__file__).resolve().parents[2] / "config.yaml"

MINIMAL = """
pods:
  - pod_id: p1
    organization_id: org-1
    setpoints:
      temperature: {day: 24, tolerance: 2}
policies:
  - policy_id: t1
    organization_id: org-1
    alarm_type: temperature_high
    severity: warning
"""


def _write(tmp_path: Path, text: str, name: str = "config.yaml") -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_shipped_config_loads(monkeypatch) -> None:
    monkeypatch.delenv("WEBHOOK_AUTH_HEADER", raising=False)
    monkeypatch.setenv("PODALARM_API_TOKEN", "s3cret")

    cfg = load_app_config(str(REPO_CONFIG))

    assert cfg.source == REPO_CONFIG
    assert {p.pod_id for p in cfg.pods} == {"pod-1", "pod-2"}
    assert len(cfg.policies) == 6
    assert cfg.api.token == "s3cret"
    assert set(cfg.notifications.channels) == {NotificationChannel.EMAIL, NotificationChannel.SMS}
    assert cfg.transport.enabled is True

    critical = next(p for p in cfg.policies if p.policy_id == "temp-high-critical")
    assert critical.threshold_operator is ThresholdOperator.GT
    assert critical.threshold_value == 32.0
    assert critical.expected_response_seconds == 300

    pod1 = next(p for p in cfg.pods if p.pod_id == "pod-1")
    assert pod1.setpoints[Parameter.TEMPERATURE].night_value == 20.0


def test_minimal_config_uses_defaults(tmp_path: Path) -> None:
    cfg = load_app_config(str(_write(tmp_path, MINIMAL)))

    assert cfg.engine.stale_after_seconds == 30.0
    assert cfg.engine.max_escalation_level == 3
    assert cfg.persistence.retry_attempts == 3
    assert cfg.api.port == 8080
    assert cfg.api.token is None
    assert cfg.notifications.channels == {}

    policy = cfg.policies[0]
    assert policy.name == "t1"
    assert policy.time_in_state_seconds == 300
    assert policy.threshold_value is None
    assert cfg.pods[0].setpoints[Parameter.TEMPERATURE] == Setpoint(Parameter.TEMPERATURE, 24.0, 2.0)


def test_secret_read_from_dotenv_next_to_config(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("GATEWAY_AUTH", "")
    monkeypatch.delenv("GATEWAY_AUTH")
    _write(tmp_path, "GATEWAY_AUTH=Bearer from-dotenv\n", name=".env")
    text = MINIMAL + """
notifications:
  channels:
    email:
      url: https://gateway.example.com/email
      auth_header_env: GATEWAY_AUTH
"""
    cfg = load_app_config(str(_write(tmp_path, text)))

    email = cfg.notifications.channels[NotificationChannel.EMAIL]
    assert email.auth_header == "Bearer from-dotenv"
    assert email.verify_tls is True


def test_in_app_webhook_is_rejected(tmp_path: Path) -> None:
    text = MINIMAL + """
notifications:
  channels:
    in_app:
      url: https://nowhere
"""
    with pytest.raises(ValueError):
        load_app_config(str(_write(tmp_path, text)))


def test_warning_ratio_must_be_a_fraction(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        load_app_config(str(_write(tmp_path, MINIMAL + "engine:\n  warning_ratio: 1.5\n")))


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_app_config(str(tmp_path / "absent.yaml"))


def test_non_mapping_root_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        load_app_config(str(_write(tmp_path, "- just\n- a list\n")))


def test_parse_policy_rejects_unknown_enum() -> None:
    with pytest.raises(ValueError):
        parse_policy({"policy_id": "x", "organization_id": "o", "alarm_type": "smoke", "severity": "warning"})
    with pytest.raises(KeyError):
        parse_policy({"policy_id": "x", "organization_id": "o", "severity": "warning"})


def test_parse_window_accepts_yaml_datetimes_and_validates_order() -> None:
    start = datetime(2026, 1, 1, 8, 0)
    w = parse_window({"organization_id": "org-1", "start": start, "end": "2026-01-01T10:00:00Z",
                      "pod_ids": ["pod-1"]})

    assert w.start == datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
    assert w.pod_ids == frozenset({"pod-1"})

    with pytest.raises(ValueError):
        parse_window({"organization_id": "org-1", "start": "2026-01-01T10:00:00Z", "end": "2026-01-01T09:00:00Z"})


def test_load_policies_feeds_catalog_replace(tmp_path: Path) -> None:
    catalog = PolicyCatalog()
    catalog.load(load_policies(REPO_CONFIG))
    rev = catalog.revision

    catalog.replace_all(load_policies(_write(tmp_path, MINIMAL)))

    assert catalog.revision == rev + 1
    assert [p.policy_id for p in catalog.all()] == ["t1"]
    assert catalog.get("temp-high-warning") is None
    assert list(catalog.grouped_by_type("org-1")) == [AlarmType.TEMPERATURE_HIGH]


def test_catalog_hides_inactive_and_rejects_foreign_policies() -> None:
    catalog = PolicyCatalog()
    active = parse_policy({"policy_id": "a", "organization_id": "org-1", "alarm_type": "co2_high",
                           "severity": "critical", "threshold_value": 1500})
    inactive = parse_policy({"policy_id": "b", "organization_id": "org-1", "alarm_type": "co2_low",
                             "severity": "info", "is_active": False})
    catalog.load([active, inactive])

    assert catalog.for_organization("org-1") == (active,)
    assert catalog.get("b") == inactive
    assert active.severity is AlarmSeverity.CRITICAL

    with pytest.raises(ValueError):
        catalog.replace("org-2", [active])


def test_pod_registry_swaps_setpoints_and_stage(tmp_path: Path) -> None:
    registry = PodRegistry()
    registry.load(load_app_config(str(_write(tmp_path, MINIMAL))).pods)

    updated = registry.update_setpoints("p1", [Setpoint(Parameter.HUMIDITY, 55.0, 5.0)])
    staged = registry.set_batch_stage("p1", "flowering")

    assert list(updated.setpoints) == [Parameter.HUMIDITY]
    assert staged.batch_stage == "flowering"
    assert registry.get("p1").setpoints == updated.setpoints
    with pytest.raises(KeyError):
        registry.update_setpoints("missing", [])

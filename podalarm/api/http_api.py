"""
HTTP query/command surface.

Read endpoints expose alarms, the lifecycle audit trail, reading history and
per-user notifications. Alarm commands go through `AlarmCommandService`, so
the response always carries the authoritative alarm snapshot; result codes
map to HTTP status (not found 404, invalid transition or version conflict
409, bad input 400, persistence failure 503).

When a token is configured every endpoint except ``/health`` requires
``Authorization: Bearer <token>``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Optional, Type, TypeVar

from flask import Flask, abort, jsonify, request

from podalarm.core.config.policy_catalog import PolicyCatalog
from podalarm.core.config.yaml_config import load_policies, parse_policy
from podalarm.core.state.alarm_store import AlarmLifecycleStore
from podalarm.core.state.notification_store import NotificationStore
from podalarm.core.state.reading_store import ReadingStore
from podalarm.domain.errors import AlarmNotFound
from podalarm.domain.models import AlarmSeverity, AlarmStatus
from podalarm.notification.payload import alarm_to_dict, event_to_dict, iso_utc, notification_to_dict
from podalarm.services.alarm_commands import AlarmCommandService, CommandResult, ResultCode
from podalarm.services.controller import MonitoringController
from podalarm.transport.ndjson import parse_timestamp, reading_to_record

E = TypeVar("E", bound=Enum)

_HTTP_STATUS = {
    ResultCode.OK: 200,
    ResultCode.NOT_FOUND: 404,
    ResultCode.INVALID_TRANSITION: 409,
    ResultCode.CONFLICT: 409,
    ResultCode.INVALID: 400,
    ResultCode.PERSISTENCE: 503,
}


def _enum_arg(enum_cls: Type[E], name: str) -> Optional[E]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return enum_cls(raw)
    except ValueError:
        abort(400, f"invalid {name}: {raw!r}")


def _time_arg(name: str) -> Optional[datetime]:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_timestamp(raw)
    except ValueError:
        abort(400, f"invalid {name}: {raw!r}")


def _body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, "JSON body must be an object")
    return data


def _version(body: Dict[str, Any]) -> Optional[int]:
    v = body.get("expected_version")
    if v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        abort(400, f"invalid expected_version: {v!r}")


def _result(res: CommandResult):
    body = {
        "ok": res.ok,
        "code": res.code,
        "error": res.error,
        "alarm": alarm_to_dict(res.alarm) if res.alarm is not None else None,
    }
    return jsonify(body), _HTTP_STATUS.get(res.code, 500)


def create_app(
    store: AlarmLifecycleStore,
    commands: AlarmCommandService,
    readings: ReadingStore,
    notifications: NotificationStore,
    catalog: PolicyCatalog,
    clock: Callable[[], datetime],
    controller: Optional[MonitoringController] = None,
    policies_path: Optional[str] = None,
    token: Optional[str] = None,
) -> Flask:
    """
    Build the Flask application.

    Parameters
    ----------
    store
        Alarm lifecycle store (queries).
    commands
        Alarm command service (acknowledge/resolve/shelve/unshelve).
    readings
        Reading history store.
    notifications
        Notification record store.
    catalog
        Policy catalog, swapped by ``POST /policies/reload``.
    clock
        Time source for read receipts and pod status.
    controller
        Enables ``GET /pods/<pod_id>/status`` when given.
    policies_path
        YAML file re-read by ``POST /policies/reload`` when the request body
        carries no policies.
    token
        Bearer token; None disables authentication.

    Returns
    -------
    Flask
        Configured application.
    """
    app = Flask(__name__)

    def require_bearer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not token:
                return fn(*args, **kwargs)
            auth = request.headers.get("Authorization", "")
            if not auth.startswith("Bearer "):
                return jsonify({"error": "unauthorized"}), 401
            if auth.removeprefix("Bearer ").strip() != token:
                return jsonify({"error": "invalid token"}), 403
            return fn(*args, **kwargs)
        return wrapper

    @app.errorhandler(400)
    @app.errorhandler(404)
    @app.errorhandler(405)
    def _http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "open_alarms": len(store.open_alarms())}), 200

    # ---- alarms ----
    @app.get("/alarms")
    @require_bearer
    def list_alarms():
        alarms = store.query(
            pod_id=request.args.get("pod_id") or None,
            severity=_enum_arg(AlarmSeverity, "severity"),
            status=_enum_arg(AlarmStatus, "status"),
            organization_id=request.args.get("organization_id") or None,
            start=_time_arg("start"),
            end=_time_arg("end"),
        )
        return jsonify({"count": len(alarms), "alarms": [alarm_to_dict(a) for a in alarms]}), 200

    @app.get("/alarms/<alarm_id>")
    @require_bearer
    def get_alarm(alarm_id: str):
        try:
            alarm = store.get(alarm_id)
        except AlarmNotFound:
            abort(404, f"alarm {alarm_id} not found")
        return jsonify({"alarm": alarm_to_dict(alarm), "events": [event_to_dict(e) for e in store.events_for(alarm_id)]}), 200

    @app.post("/alarms/<alarm_id>/acknowledge")
    @require_bearer
    def acknowledge(alarm_id: str):
        body = _body()
        return _result(commands.acknowledge(
            alarm_id, str(body.get("actor") or ""), body.get("note"), expected_version=_version(body)
        ))

    @app.post("/alarms/<alarm_id>/resolve")
    @require_bearer
    def resolve(alarm_id: str):
        body = _body()
        return _result(commands.resolve(
            alarm_id,
            str(body.get("actor") or ""),
            str(body.get("note") or ""),
            root_cause=body.get("root_cause"),
            expected_version=_version(body),
        ))

    @app.post("/alarms/<alarm_id>/shelve")
    @require_bearer
    def shelve(alarm_id: str):
        body = _body()
        until = None
        if body.get("until"):
            try:
                until = parse_timestamp(str(body["until"]))
            except ValueError:
                abort(400, f"invalid until: {body['until']!r}")
        duration = body.get("duration_minutes")
        try:
            duration = float(duration) if duration is not None else None
        except (TypeError, ValueError):
            abort(400, f"invalid duration_minutes: {duration!r}")
        return _result(commands.shelve(
            alarm_id,
            str(body.get("actor") or ""),
            str(body.get("reason") or ""),
            duration_minutes=duration,
            until=until,
            auto_unshelve=bool(body.get("auto_unshelve", True)),
            expected_version=_version(body),
        ))

    @app.post("/alarms/<alarm_id>/unshelve")
    @require_bearer
    def unshelve(alarm_id: str):
        body = _body()
        return _result(commands.unshelve(
            alarm_id, str(body.get("actor") or "operator"), expected_version=_version(body)
        ))

    @app.get("/alarm-events")
    @require_bearer
    def alarm_events():
        events = store.events_between(_time_arg("start"), _time_arg("end"))
        return jsonify({"count": len(events), "events": [event_to_dict(e) for e in events]}), 200

    # ---- readings / pods ----
    @app.get("/readings")
    @require_bearer
    def list_readings():
        pod_id = request.args.get("pod_id")
        if not pod_id:
            abort(400, "pod_id is required")
        rows = readings.query(pod_id, _time_arg("start"), _time_arg("end"))
        return jsonify({"pod_id": pod_id, "count": len(rows), "readings": [reading_to_record(r) for r in rows]}), 200

    if controller is not None:
        @app.get("/pods/<pod_id>/status")
        @require_bearer
        def pod_status(pod_id: str):
            now = clock()
            classified = controller.pod_status(pod_id, now)
            if classified is None:
                abort(404, f"no readings for pod {pod_id}")
            params = {
                p.value: {
                    "value": s.value,
                    "health": s.health.value,
                    "spec_status": s.spec_status.value if s.spec_status else None,
                    "target": s.target,
                    "tolerance": s.tolerance,
                    "deviation": s.deviation,
                }
                for p, s in classified.parameters.items()
            }
            return jsonify({
                "pod_id": pod_id,
                "as_of": iso_utc(now),
                "reading_timestamp": iso_utc(classified.reading.timestamp),
                "parameters": params,
            }), 200

    # ---- notifications ----
    @app.get("/users/<user_id>/notifications")
    @require_bearer
    def user_notifications(user_id: str):
        unread_only = request.args.get("unread_only", "").lower() in ("1", "true", "yes")
        rows = notifications.list_for_user(user_id, unread_only=unread_only)
        return jsonify({
            "user_id": user_id,
            "unread": notifications.unread_count(user_id),
            "notifications": [notification_to_dict(n) for n in rows],
        }), 200

    @app.post("/notifications/<notification_id>/read")
    @require_bearer
    def mark_read(notification_id: str):
        user_id = str(_body().get("user_id") or "")
        if not user_id:
            abort(400, "user_id is required")
        n = notifications.mark_read(notification_id, user_id, clock())
        if n is None:
            abort(404, f"notification {notification_id} not found")
        return jsonify({"notification": notification_to_dict(n)}), 200

    @app.post("/users/<user_id>/notifications/read-all")
    @require_bearer
    def mark_all_read(user_id: str):
        return jsonify({"user_id": user_id, "updated": notifications.mark_all_read(user_id, clock())}), 200

    # ---- policies ----
    @app.post("/policies/reload")
    @require_bearer
    def reload_policies():
        body = _body()
        try:
            if "policies" in body:
                policies = [parse_policy(p) for p in body["policies"] or []]
            elif policies_path:
                policies = load_policies(policies_path)
            else:
                abort(400, "no policies in body and no policies file configured")
        except (KeyError, TypeError, ValueError) as e:
            abort(400, f"invalid policies: {e}")
        catalog.replace_all(policies)
        return jsonify({"policies": len(policies), "revision": catalog.revision}), 200

    return app

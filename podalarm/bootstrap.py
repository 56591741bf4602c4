from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from flask import Flask

from podalarm.api.http_api import create_app
from podalarm.core.alarm.policy_evaluator import AlarmPolicyEvaluator
from podalarm.core.config.pod_registry import PodRegistry
from podalarm.core.config.policy_catalog import PolicyCatalog
from podalarm.core.config.yaml_config import AppConfig, load_app_config
from podalarm.core.escalation.scheduler import EscalationScheduler
from podalarm.core.state.alarm_store import AlarmLifecycleStore
from podalarm.core.state.notification_store import NotificationStore
from podalarm.core.state.persistence import InMemoryAlarmRepository, RetryPolicy
from podalarm.core.state.reading_store import ReadingStore
from podalarm.core.timing.scheduler import ThreadedScheduler
from podalarm.domain.models import NotificationChannel
from podalarm.notification.base import Notifier
from podalarm.notification.notification_thread import NotificationThreadConfig, NotificationWorkerThread
from podalarm.notification.router import NotificationRouter, RoutingDirectory
from podalarm.notification.webhook_notifier import WebhookConfig, WebhookNotifier
from podalarm.runtime.app_runtime import AppRuntime, AppRuntimeConfig
from podalarm.runtime.event_bus import EventBus
from podalarm.services.alarm_commands import AlarmCommandService
from podalarm.services.controller import MonitoringController

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


@dataclass(frozen=True)
class AppWiring:
    """Everything the entry points need to run the service."""
    config: AppConfig
    store: AlarmLifecycleStore
    readings: ReadingStore
    notifications: NotificationStore
    catalog: PolicyCatalog
    pods: PodRegistry
    directory: RoutingDirectory
    bus: EventBus
    controller: MonitoringController
    commands: AlarmCommandService
    escalation: EscalationScheduler
    router: NotificationRouter
    notifier: NotificationWorkerThread
    timers: ThreadedScheduler
    runtime: AppRuntime
    api: Flask


def build_notifier(cfg: AppConfig, results: NotificationStore) -> NotificationWorkerThread:
    notifiers: Dict[NotificationChannel, Notifier] = {}
    for channel, w in cfg.notifications.channels.items():
        auth_header = w.auth_header
        if auth_header and not auth_header.startswith("Bearer "):
            auth_header = f"Bearer {auth_header}"
        notifiers[channel] = WebhookNotifier(
            WebhookConfig(
                url=w.url,
                auth_header=auth_header,
                timeout_s=w.timeout_s,
                verify_tls=w.verify_tls,
            )
        )

    return NotificationWorkerThread(
        notifiers=notifiers,
        results=results,
        cfg=NotificationThreadConfig(max_queue=cfg.notifications.max_queue),
    )


def build_app_system(config_path: Optional[str] = None) -> AppWiring:
    cfg = load_app_config(config_path)
    configure_logging(cfg.log_level)

    timers = ThreadedScheduler()

    # --- CONFIG ---
    catalog = PolicyCatalog()
    catalog.load(cfg.policies)
    pods = PodRegistry()
    pods.load(cfg.pods)
    directory = RoutingDirectory()
    directory.replace(routes=cfg.routes, recipients=cfg.recipients, windows=cfg.suppression_windows)

    # --- STATE ---
    store = AlarmLifecycleStore(
        repository=InMemoryAlarmRepository(),
        retry=RetryPolicy(
            attempts=cfg.persistence.retry_attempts,
            base_delay_s=cfg.persistence.retry_base_delay_s,
            max_delay_s=cfg.persistence.retry_max_delay_s,
            timeout_s=cfg.persistence.timeout_s,
        ),
        clock=timers.now,
    )
    readings = ReadingStore()
    notifications = NotificationStore()

    # --- EVENT BUS ---
    bus = EventBus()
    store.subscribe(bus.publish_alarm)

    # --- ESCALATION ---
    escalation = EscalationScheduler(
        store=store,
        catalog=catalog,
        scheduler=timers,
        max_level=cfg.engine.max_escalation_level,
        default_response_s=cfg.engine.default_expected_response_seconds,
    )
    bus.subscribe(escalation.handle_event)

    # --- NOTIFICATIONS ---
    notifier = build_notifier(cfg, notifications)
    router = NotificationRouter(
        store=store,
        notifications=notifications,
        directory=directory,
        dispatcher=notifier,
        notify_on_handled=cfg.notifications.notify_on_handled,
    )

    # --- CONTROLLER ---
    evaluator = AlarmPolicyEvaluator(catalog=catalog, store=store, value_eps=cfg.engine.value_eps)
    controller = MonitoringController(
        pods=pods,
        readings=readings,
        evaluator=evaluator,
        stale_after_s=cfg.engine.stale_after_seconds,
        warning_ratio=cfg.engine.warning_ratio,
    )
    commands = AlarmCommandService(store=store, scheduler=timers)

    # --- RUNTIME ---
    runtime = AppRuntime(
        cfg=AppRuntimeConfig(
            readings_host=cfg.transport.host if cfg.transport.enabled else None,
            readings_port=cfg.transport.port,
            connect_timeout_s=cfg.transport.timeout_s,
            reconnect_delay_s=cfg.transport.reconnect_delay_s,
            workers=cfg.engine.workers,
        ),
        controller=controller,
        bus=bus,
        router=router,
        notifier=notifier,
        timers=timers,
        escalation=escalation,
    )

    # --- API ---
    api = create_app(
        store=store,
        commands=commands,
        readings=readings,
        notifications=notifications,
        catalog=catalog,
        clock=timers.now,
        controller=controller,
        policies_path=str(cfg.source) if cfg.source else None,
        token=cfg.api.token,
    )

    return AppWiring(
        config=cfg,
        store=store,
        readings=readings,
        notifications=notifications,
        catalog=catalog,
        pods=pods,
        directory=directory,
        bus=bus,
        controller=controller,
        commands=commands,
        escalation=escalation,
        router=router,
        notifier=notifier,
        timers=timers,
        runtime=runtime,
        api=api,
    )

"""
Stress tests for parallel pod evaluation.

These tests drive the PodWorkerPool with many pods at once and validate:
- shard assignment is stable and in range
- every submitted reading is stored (drain waits for all of them)
- readings of one pod are evaluated in order, so each hot pod opens
  exactly one alarm
- the reading store tolerates concurrent writers and readers

Notes
-----
Threading tests are probabilistic: they increase confidence but do not prove
the absence of races.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from podalarm.core.alarm.policy_evaluator import AlarmPolicyEvaluator
from podalarm.core.config.pod_registry import PodRegistry
from podalarm.core.config.policy_catalog import PolicyCatalog
from podalarm.core.state.alarm_store import AlarmLifecycleStore
from podalarm.core.state.reading_store import ReadingStore
from podalarm.domain.events import AlarmTransition
from podalarm.domain.models import (
    AlarmPolicy,
    AlarmSeverity,
    AlarmType,
    Parameter,
    PodContext,
    Setpoint,
    TelemetryReading,
)
from podalarm.runtime.pod_worker_pool import PodWorkerPool, shard_for
from podalarm.services.controller import MonitoringController

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)
PODS = [f"pod-{i}" for i in range(24)]


def _controller():
    pods = PodRegistry()
    pods.load([
        PodContext(
            pod_id=p,
            organization_id="org-1",
            name=p,
            setpoints={Parameter.TEMPERATURE: Setpoint(Parameter.TEMPERATURE, 24.0, 2.0)},
        )
        for p in PODS
    ])
    catalog = PolicyCatalog()
    catalog.load([AlarmPolicy(
        policy_id="temp-high",
        organization_id="org-1",
        name="Temperature high",
        alarm_type=AlarmType.TEMPERATURE_HIGH,
        severity=AlarmSeverity.WARNING,
        time_in_state_seconds=60,
    )])
    store = AlarmLifecycleStore()
    readings = ReadingStore()
    return MonitoringController(pods, readings, AlarmPolicyEvaluator(catalog, store)), readings, store


def test_shard_for_is_stable_and_in_range() -> None:
    for p in PODS:
        s = shard_for(p, 4)
        assert 0 <= s < 4
        assert shard_for(p, 4) == s


def test_pool_rejects_zero_workers() -> None:
    controller, _, _ = _controller()
    with pytest.raises(ValueError):
        PodWorkerPool(controller, workers=0)


@pytest.mark.stress
def test_parallel_pods_each_open_one_alarm() -> None:
    controller, readings, store = _controller()
    pool = PodWorkerPool(controller, workers=4)
    pool.start()
    try:
        for k in range(30):
            for i, p in enumerate(PODS):
                hot = i % 2 == 0
                pool.submit(TelemetryReading(
                    pod_id=p,
                    timestamp=T0 + timedelta(seconds=10 * k),
                    temperature_c=27.0 if hot else 24.0,
                    humidity_pct=60.0,
                ))
        pool.drain()
    finally:
        pool.stop()
        pool.join()

    assert pool.dropped == 0
    for p in PODS:
        assert len(readings.query(p)) == 30

    opened = [e for e in store.events_between() if e.transition is AlarmTransition.OPENED]
    assert sorted(e.alarm.pod_id for e in opened) == sorted(PODS[::2])
    for e in opened:
        assert e.alarm.triggered_at == T0 + timedelta(seconds=60)


@pytest.mark.stress
def test_reading_store_concurrent_writers_and_readers() -> None:
    readings = ReadingStore()
    start = threading.Barrier(8)
    errors: List[BaseException] = []

    def writer(tid: int) -> None:
        try:
            start.wait()
            for k in range(2000):
                # Interleave timestamps so inserts land out of order.
                ts = T0 + timedelta(milliseconds=k * 4 + tid)
                readings.append(TelemetryReading(pod_id="pod-1", timestamp=ts, temperature_c=24.0))
        except BaseException as e:
            errors.append(e)

    def reader(tid: int) -> None:
        try:
            start.wait()
            for _ in range(500):
                rows = readings.query("pod-1")
                stamps = [r.timestamp for r in rows]
                assert stamps == sorted(stamps)
                readings.latest("pod-1")
                readings.query(start=T0)
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(t,)) for t in range(4)]
    threads += [threading.Thread(target=reader, args=(t,)) for t in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=20)

    assert all(not t.is_alive() for t in threads), "A thread did not finish (possible deadlock)"
    if errors:
        raise AssertionError(f"Concurrency test caught exceptions: {errors!r}")
    assert len(readings.query("pod-1")) == 8000

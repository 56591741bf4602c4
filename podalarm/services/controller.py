from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from podalarm.core.alarm.policy_evaluator import AlarmPolicyEvaluator
from podalarm.core.classify.classifier import (
    DEFAULT_STALE_AFTER_S,
    DEFAULT_WARNING_RATIO,
    ClassifiedReading,
    classify_reading,
)
from podalarm.core.config.pod_registry import PodRegistry
from podalarm.core.metrics.derived import derive_reading
from podalarm.core.state.reading_store import ReadingStore
from podalarm.domain.errors import EvaluationError
from podalarm.domain.events import AlarmEvent
from podalarm.domain.models import TelemetryReading

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationResult:
    """
    Outcome of processing one reading.

    Parameters
    ----------
    reading
        Stored reading (derived metrics filled in).
    classified
        Per-parameter classification; None for unknown pods.
    events
        Alarm lifecycle events caused by the reading.
    """

    reading: TelemetryReading
    classified: Optional[ClassifiedReading] = None
    events: List[AlarmEvent] = field(default_factory=list)


@dataclass
class MonitoringController:
    """
    Orchestrate ingestion of one reading through the evaluation pipeline.

    Responsibilities
    ----------------
    - Fill in derived metrics (VPD).
    - Persist the reading (faulted readings included, so gaps stay visible).
    - Classify each parameter against the pod's setpoints.
    - Run the alarm policy evaluator for the pod.

    Notes
    -----
    This controller contains orchestration logic only. Lifecycle events are
    published by the alarm store to its subscribers (event bus), so the
    controller does not publish anything itself.

    Parameters
    ----------
    pods
        Pod registry providing organization, setpoints and filters.
    readings
        Reading history store.
    evaluator
        Alarm policy evaluator.
    stale_after_s
        Staleness threshold for health classification.
    warning_ratio
        Default "approaching" ratio for setpoints without their own.
    """

    pods: PodRegistry
    readings: ReadingStore
    evaluator: AlarmPolicyEvaluator
    stale_after_s: float = DEFAULT_STALE_AFTER_S
    warning_ratio: float = DEFAULT_WARNING_RATIO

    def handle_reading(self, reading: TelemetryReading, now: Optional[datetime] = None) -> EvaluationResult:
        """
        Handle one incoming reading.

        Parameters
        ----------
        reading
            Decoded reading.
        now
            Classification time (staleness). Defaults to the reading timestamp.

        Returns
        -------
        EvaluationResult
            Stored reading, classification and alarm events.

        Raises
        ------
        EvaluationError
            If an alarm write failed after retries. The reading is stored and
            the evaluator state for the affected alarm types did not advance.
        """
        derived = derive_reading(reading)
        self.readings.append(derived)

        pod = self.pods.get(derived.pod_id)
        if pod is None:
            logger.warning("[CONTROLLER] reading for unknown pod %s stored, not evaluated", derived.pod_id)
            return EvaluationResult(reading=derived)

        classified = classify_reading(
            derived, pod, now=now, stale_after_s=self.stale_after_s, warning_ratio=self.warning_ratio
        )
        outcome = self.evaluator.evaluate(classified)

        if outcome.failed:
            raise EvaluationError(pod.pod_id, outcome.failures[0])

        return EvaluationResult(reading=derived, classified=classified, events=list(outcome.events))

    def pod_status(self, pod_id: str, now: datetime) -> Optional[ClassifiedReading]:
        """
        Classify a pod's latest reading as of ``now`` (staleness included).

        Returns
        -------
        ClassifiedReading or None
            None if the pod is unknown or has no readings yet.
        """
        pod = self.pods.get(pod_id)
        latest = self.readings.latest(pod_id)
        if pod is None or latest is None:
            return None
        return classify_reading(latest, pod, now=now, stale_after_s=self.stale_after_s,
                                warning_ratio=self.warning_ratio)

"""Prometheus metrics for agent observability.

Metrics Defined:
- pilot_jobs_total: Counter of queued jobs finished, by label and result
- pilot_job_duration_seconds: Histogram of job run time, by label
- pilot_queue_jobs: Gauge of queued jobs, by status (pending/running)
- pilot_phase_errors_total: Counter of errors caught at phase boundaries
- pilot_issues_by_state: Gauge of issues per lifecycle state

The MetricsEventEmitter keeps the error counter and the state gauge in
step with emitted events. Metrics are exposed at ``/metrics``.
"""

import logging
from typing import Dict, Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from src.linear_pilot.events.emitter import EventEmitter
from src.linear_pilot.events.models import EventType, PilotEvent


logger = logging.getLogger(__name__)


# Agent runs range from seconds to well over an hour
DEFAULT_DURATION_BUCKETS = (
    1.0,
    5.0,
    15.0,
    60.0,
    300.0,
    600.0,
    1800.0,
    3600.0,
    7200.0,
)

ISSUE_STATES = (
    "planning",
    "awaiting_clarification",
    "awaiting_approval",
    "in_progress",
    "reviewing",
    "implemented",
)


class PilotMetrics:
    """Container for all Prometheus metrics.

    Pass a custom CollectorRegistry in tests to keep metric state isolated.

    Example:
        >>> metrics = PilotMetrics(registry=CollectorRegistry())
        >>> metrics.record_job("planning", succeeded=True, duration_seconds=42.0)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.jobs_total = Counter(
            "pilot_jobs_total",
            "Total number of queued jobs that finished",
            labelnames=["label", "result"],
            registry=self.registry,
        )

        self.job_duration_seconds = Histogram(
            "pilot_job_duration_seconds",
            "Time spent running queued jobs in seconds",
            labelnames=["label"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.queue_jobs = Gauge(
            "pilot_queue_jobs",
            "Jobs accepted by the work queue",
            labelnames=["status"],
            registry=self.registry,
        )

        self.phase_errors_total = Counter(
            "pilot_phase_errors_total",
            "Errors caught at phase boundaries",
            labelnames=["phase"],
            registry=self.registry,
        )

        self.issues_by_state = Gauge(
            "pilot_issues_by_state",
            "Issues currently in each lifecycle state",
            labelnames=["state"],
            registry=self.registry,
        )

        for state in ISSUE_STATES:
            self.issues_by_state.labels(state=state).set(0)

    def record_job(self, label: str, succeeded: bool, duration_seconds: float) -> None:
        result = "success" if succeeded else "failure"
        self.jobs_total.labels(label=label, result=result).inc()
        self.job_duration_seconds.labels(label=label).observe(duration_seconds)

    def set_queue_depth(self, pending: int, running: int) -> None:
        self.queue_jobs.labels(status="pending").set(pending)
        self.queue_jobs.labels(status="running").set(running)

    def record_phase_error(self, phase: str) -> None:
        self.phase_errors_total.labels(phase=phase).inc()

    def set_issue_counts(self, counts: Dict[str, int]) -> None:
        """Reset the state gauge to stored counts, e.g. at startup."""
        for state in ISSUE_STATES:
            self.issues_by_state.labels(state=state).set(counts.get(state, 0))

    def record_state_change(
        self,
        from_state: Optional[str],
        to_state: Optional[str],
    ) -> None:
        if from_state in ISSUE_STATES:
            self.issues_by_state.labels(state=from_state).dec()
        if to_state in ISSUE_STATES:
            self.issues_by_state.labels(state=to_state).inc()


# Global metrics instance for the default registry
_default_metrics: Optional[PilotMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> PilotMetrics:
    """Get the shared metrics instance, or a fresh one for a custom registry."""
    global _default_metrics

    if registry is not None:
        return PilotMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = PilotMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Render metrics in Prometheus text format for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - STATE_TRANSITION: moves one issue between state gauges
    - ERROR: increments the phase error counter
    - COMPLETION: no metric; job timing is recorded by the work queue
    """

    def __init__(self, metrics: Optional[PilotMetrics] = None):
        self._metrics = metrics if metrics is not None else get_metrics()

    @property
    def metrics(self) -> PilotMetrics:
        return self._metrics

    async def emit(self, event: PilotEvent) -> None:
        try:
            if event.event_type == EventType.STATE_TRANSITION:
                self._metrics.record_state_change(
                    event.details.get("from_state"),
                    event.details.get("to_state"),
                )
            elif event.event_type == EventType.ERROR:
                self._metrics.record_phase_error(event.details.get("phase", "unknown"))
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={"event_type": event.event_type.value, "subject": event.subject},
            )

"""Event emission and metrics.

Event Emitters:
- EventEmitter: Abstract base class for event emission
- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- MetricsEventEmitter: Updates Prometheus metrics from events
- NullEventEmitter: Discards events

Metrics:
- PilotMetrics: Container for all Prometheus metrics
- get_metrics: Get or create the metrics instance
- generate_metrics_output: Prometheus text output for /metrics
"""

from src.linear_pilot.events.emitter import (
    CompositeEventEmitter,
    EventEmitter,
    LoggingEventEmitter,
    NullEventEmitter,
)
from src.linear_pilot.events.metrics import (
    MetricsEventEmitter,
    PilotMetrics,
    generate_metrics_output,
    get_metrics,
)
from src.linear_pilot.events.models import EventType, PilotEvent

__all__ = [
    "CompositeEventEmitter",
    "EventEmitter",
    "EventType",
    "LoggingEventEmitter",
    "MetricsEventEmitter",
    "NullEventEmitter",
    "PilotEvent",
    "PilotMetrics",
    "generate_metrics_output",
    "get_metrics",
]

"""Relay event emission and metrics.

Event Emitters:
- EventEmitter: Abstract base class for event emission
- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- MetricsEventEmitter: Emits events as Prometheus metrics
- NullEventEmitter: Discards events (for testing)

Metrics:
- RelayMetrics: Container for all Prometheus metrics
- generate_metrics_output: Prometheus format output for /metrics
"""

from src.relay.events.emitter import (
    CompositeEventEmitter,
    EventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
)
from src.relay.events.metrics import (
    MetricsEventEmitter,
    RelayMetrics,
    generate_metrics_output,
    get_metrics,
)
from src.relay.events.models import EventType, RelayEvent

__all__ = [
    # Event models
    "EventType",
    "RelayEvent",
    # Event emitters
    "EventEmitter",
    "LoggingEventEmitter",
    "CompositeEventEmitter",
    "MetricsEventEmitter",
    "NullEventEmitter",
    # Metrics
    "RelayMetrics",
    "get_metrics",
    "generate_metrics_output",
    # Factory and configuration
    "EventSinkType",
    "create_event_emitter",
]

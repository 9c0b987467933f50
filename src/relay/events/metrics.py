"""Prometheus metrics for relay observability.

Metrics Defined:
- relay_webhooks_total: Counter of deliveries by source and outcome
- relay_workflow_dispatches_total: Counter of workflow dispatches
- relay_workflow_runs_completed_total: Counter of finished runs by conclusion
- relay_correlation_misses_total: Counter of unmatched workflow_run events
- relay_errors_total: Counter of handling failures by stage
- relay_workflow_duration_seconds: Histogram of dispatch-to-completion time

The MetricsEventEmitter updates these from relay events. Metrics are
exposed at the `/metrics` endpoint.

Source:
- src/relay/events/models.py (RelayEvent, EventType)
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from src.relay.events.emitter import EventEmitter
from src.relay.events.models import EventType, RelayEvent


logger = logging.getLogger(__name__)


# Workflow runs take from under a minute to about an hour
DEFAULT_DURATION_BUCKETS = (
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    900.0,
    1800.0,
    3600.0,
    7200.0,
)


class RelayMetrics:
    """Container for all relay Prometheus metrics.

    Pass a custom registry in tests to avoid duplicate registration.

    Example:
        >>> metrics = RelayMetrics(registry=CollectorRegistry())
        >>> metrics.record_webhook("github", "ok")
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.webhooks_total = Counter(
            "relay_webhooks_total",
            "Webhook deliveries handled by the relay",
            labelnames=["source", "outcome"],
            registry=self.registry,
        )

        self.workflow_dispatches_total = Counter(
            "relay_workflow_dispatches_total",
            "Workflow dispatches sent to GitHub",
            labelnames=["repository"],
            registry=self.registry,
        )

        self.workflow_runs_completed_total = Counter(
            "relay_workflow_runs_completed_total",
            "Correlated workflow runs that finished",
            labelnames=["repository", "conclusion"],
            registry=self.registry,
        )

        self.correlation_misses_total = Counter(
            "relay_correlation_misses_total",
            "workflow_run events that matched no pending trigger",
            labelnames=["repository"],
            registry=self.registry,
        )

        self.errors_total = Counter(
            "relay_errors_total",
            "Failures while handling webhooks",
            labelnames=["stage"],
            registry=self.registry,
        )

        self.workflow_duration_seconds = Histogram(
            "relay_workflow_duration_seconds",
            "Time from run correlation to completion in seconds",
            labelnames=["repository"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

    def record_webhook(self, source: str, outcome: str) -> None:
        self.webhooks_total.labels(source=source, outcome=outcome).inc()

    def record_dispatch(self, repository: str) -> None:
        self.workflow_dispatches_total.labels(repository=repository).inc()

    def record_completion(
        self,
        repository: str,
        conclusion: str,
        duration_seconds: Optional[float] = None,
    ) -> None:
        self.workflow_runs_completed_total.labels(
            repository=repository,
            conclusion=conclusion,
        ).inc()
        if duration_seconds is not None:
            self.workflow_duration_seconds.labels(repository=repository).observe(
                duration_seconds
            )

    def record_correlation_miss(self, repository: str) -> None:
        self.correlation_misses_total.labels(repository=repository).inc()

    def record_error(self, stage: str) -> None:
        self.errors_total.labels(stage=stage).inc()


# Global metrics instance for the default registry
_default_metrics: Optional[RelayMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> RelayMetrics:
    """Get the metrics instance for the default registry, or a new one for
    a custom registry."""
    global _default_metrics

    if registry is not None:
        return RelayMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = RelayMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Prometheus text exposition for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    Attributes:
        metrics: The RelayMetrics instance to update.
    """

    def __init__(
        self,
        metrics: Optional[RelayMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        if metrics is not None:
            self._metrics = metrics
        else:
            self._metrics = get_metrics(registry)

    @property
    def metrics(self) -> RelayMetrics:
        return self._metrics

    async def emit(self, event: RelayEvent) -> None:
        repository = event.repository or "unknown"
        try:
            if event.event_type == EventType.WEBHOOK_PROCESSED:
                self._metrics.record_webhook(
                    source=event.details.get("source", "unknown"),
                    outcome=event.details.get("outcome", "unknown"),
                )
            elif event.event_type == EventType.WORKFLOW_DISPATCHED:
                self._metrics.record_dispatch(repository)
            elif event.event_type == EventType.WORKFLOW_COMPLETED:
                duration = event.details.get("duration_seconds")
                self._metrics.record_completion(
                    repository,
                    event.details.get("conclusion") or "unknown",
                    float(duration) if duration is not None else None,
                )
            elif event.event_type == EventType.WORKFLOW_CANCELLED:
                self._metrics.record_completion(repository, "cancelled")
            elif event.event_type == EventType.CORRELATION_MISS:
                self._metrics.record_correlation_miss(repository)
            elif event.event_type == EventType.ERROR:
                self._metrics.record_error(event.details.get("stage", "unknown"))
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "subject": event.subject,
                },
            )

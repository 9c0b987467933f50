"""Relay event models for observability.

This module defines the data models for relay events:
- EventType: Enum of all event types emitted by the relay
- RelayEvent: Structured event with its metadata

Events feed structured logs and Prometheus metrics. They are separate
from the run log, which is the persisted audit trail.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the relay.

    Event Categories:
        WEBHOOK_PROCESSED: A delivery was handled. ``details.outcome`` is one
            of ok, ignored, already_processed or error.

        WORKFLOW_DISPATCHED: A workflow_dispatch was sent to GitHub.

        WORKFLOW_CORRELATED: A workflow_run event was bound to a pending
            trigger and a run record created.

        CORRELATION_MISS: A workflow_run event matched no pending trigger.
            Expected for runs the relay did not dispatch.

        WORKFLOW_COMPLETED: A correlated run finished and was reported.

        WORKFLOW_CANCELLED: A run was cancelled after unassignment.

        ERROR: Handling failed.
    """

    WEBHOOK_PROCESSED = "webhook_processed"
    WORKFLOW_DISPATCHED = "workflow_dispatched"
    WORKFLOW_CORRELATED = "workflow_correlated"
    CORRELATION_MISS = "correlation_miss"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    ERROR = "error"


class RelayEvent(BaseModel):
    """Structured event emitted by the relay.

    Attributes:
        event_type: The category of event.
        subject: What the event is about, usually an agent session id or
            webhook id.
        repository: Target repository in format "{owner}/{repo}", if known.
        timestamp: When the event occurred (UTC).
        details: Additional context specific to the event type.

    Example:
        >>> event = RelayEvent(
        ...     event_type=EventType.WORKFLOW_COMPLETED,
        ...     subject="session-1",
        ...     repository="acme/api",
        ...     details={"conclusion": "success", "pr_number": 7},
        ... )
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    subject: str = Field(
        ...,
        min_length=1,
        description="Agent session id or webhook id the event refers to",
    )

    repository: Optional[str] = Field(
        default=None,
        description='Target repository in format "{owner}/{repo}"',
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten the event for structured logging.

        >>> RelayEvent(event_type=EventType.ERROR, subject="s").to_log_dict()["event_type"]
        'error'
        """
        return {
            "event_type": self.event_type.value,
            "subject": self.subject,
            "repository": self.repository,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }

"""Correlation state persistence.

Entities, the workflow status transition table, the CorrelationStore
protocol with PostgreSQL and in-memory implementations, and the webhook
idempotency ledger.
"""

from src.relay.store.base import CorrelationStore, DatabaseError, RunNotFoundError
from src.relay.store.ledger import IdempotencyLedger
from src.relay.store.memory import InMemoryCorrelationStore
from src.relay.store.models import (
    VALID_TRANSITIONS,
    GitHubInstallation,
    InvalidRunTransitionError,
    OAuthToken,
    PendingConfig,
    PendingWorkflowTrigger,
    RunLogEntry,
    RunLogEvent,
    TeamConfig,
    WebhookSource,
    WorkflowKind,
    WorkflowRun,
    WorkflowRunUpdate,
    WorkflowStatus,
    apply_run_update,
    is_terminal_status,
    is_valid_transition,
)
from src.relay.store.repository import PostgresCorrelationStore

__all__ = [
    # Models
    "GitHubInstallation",
    "OAuthToken",
    "PendingConfig",
    "PendingWorkflowTrigger",
    "RunLogEntry",
    "RunLogEvent",
    "TeamConfig",
    "WebhookSource",
    "WorkflowKind",
    "WorkflowRun",
    "WorkflowRunUpdate",
    "WorkflowStatus",
    # Transitions
    "VALID_TRANSITIONS",
    "InvalidRunTransitionError",
    "apply_run_update",
    "is_terminal_status",
    "is_valid_transition",
    # Stores
    "CorrelationStore",
    "DatabaseError",
    "RunNotFoundError",
    "InMemoryCorrelationStore",
    "PostgresCorrelationStore",
    # Ledger
    "IdempotencyLedger",
]

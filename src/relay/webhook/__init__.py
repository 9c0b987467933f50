"""Webhook intake: signature verification and payload parsing.

The WebhookProcessor lives in ``src.relay.webhook.processor`` and is
imported from there, since it depends on the session and workflow layers.
"""

from src.relay.webhook.handler import WebhookParser, linear_webhook_id
from src.relay.webhook.models import (
    GitHubEvent,
    InstallationEvent,
    IssueUnassignedEvent,
    LinearEvent,
    LinearIssueRef,
    PullRequestEvent,
    SessionCreatedEvent,
    SessionPromptedEvent,
    WorkflowRunAction,
    WorkflowRunEvent,
)
from src.relay.webhook.signature import (
    compute_signature,
    verify_github_signature,
    verify_linear_signature,
)

__all__ = [
    # Parsing
    "WebhookParser",
    "linear_webhook_id",
    # Linear events
    "LinearEvent",
    "LinearIssueRef",
    "SessionCreatedEvent",
    "SessionPromptedEvent",
    "IssueUnassignedEvent",
    # GitHub events
    "GitHubEvent",
    "WorkflowRunAction",
    "WorkflowRunEvent",
    "InstallationEvent",
    "PullRequestEvent",
    # Signatures
    "compute_signature",
    "verify_linear_signature",
    "verify_github_signature",
]

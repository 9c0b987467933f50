"""Webhook payload parsing for Linear and GitHub deliveries.

This module provides the WebhookParser class, which turns raw webhook
payloads into the tagged event variants in ``models.py`` and derives the
ledger id for each delivery. Signature verification happens before
parsing, in the processor.

Linear Payload Structure (AgentSessionEvent):
{
  "type": "AgentSessionEvent",
  "action": "created" | "prompted",
  "organizationId": "org-uuid",
  "agentSession": {
    "id": "session-uuid",
    "issue": {
      "id": "issue-uuid",
      "identifier": "ABC-123",
      "title": "Issue title",
      "team": {"id": "team-uuid", "name": "Backend"}
    }
  },
  "agentActivity": {"id": "activity-uuid", "content": {"body": "..."}}
}

Linear Payload Structure (unassignment):
{
  "type": "AppUserNotification",
  "action": "issueUnassignedFromYou",
  "organizationId": "org-uuid",
  "webhookTimestamp": 1700000000000,
  "notification": {"issue": {"id": "issue-uuid", "identifier": "ABC-123"}}
}

GitHub event types handled: workflow_run, installation, pull_request.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from src.relay.store.ledger import (
    linear_session_webhook_id,
    linear_unassign_webhook_id,
)
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

logger = logging.getLogger(__name__)


AGENT_SESSION_EVENT = "AgentSessionEvent"
APP_USER_NOTIFICATION = "AppUserNotification"
ISSUE_UNASSIGNED_ACTION = "issueUnassignedFromYou"

GITHUB_WORKFLOW_RUN = "workflow_run"
GITHUB_INSTALLATION = "installation"
GITHUB_PULL_REQUEST = "pull_request"


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


class WebhookParser:
    """Parses webhook payloads into event variants.

    Every parse method returns None for payloads it does not handle or
    cannot read; the caller answers those with "ignored".
    """

    # ------------------------------------------------------------------
    # Linear
    # ------------------------------------------------------------------

    def parse_linear(self, payload: Any) -> Optional[LinearEvent]:
        """Parse a Linear webhook payload.

        Args:
            payload: The decoded JSON body.

        Returns:
            A SessionCreatedEvent, SessionPromptedEvent or
            IssueUnassignedEvent, or None.
        """
        if not isinstance(payload, dict):
            logger.warning("Invalid Linear payload: expected dict, got %s", type(payload))
            return None

        payload_type = payload.get("type")
        action = payload.get("action")

        try:
            if payload_type == AGENT_SESSION_EVENT and action == "created":
                return self._parse_session_created(payload)
            if payload_type == AGENT_SESSION_EVENT and action == "prompted":
                return self._parse_session_prompted(payload)
            if (
                payload_type == APP_USER_NOTIFICATION
                and action == ISSUE_UNASSIGNED_ACTION
            ):
                return self._parse_issue_unassigned(payload)
        except ValidationError as e:
            logger.warning(
                "Malformed Linear %s payload: %s",
                payload_type,
                e.errors(include_url=False),
            )
            return None

        logger.debug("Ignoring Linear event: type=%s, action=%s", payload_type, action)
        return None

    def _parse_issue(self, session: Dict[str, Any]) -> LinearIssueRef:
        issue = _dict(session.get("issue"))
        team = _dict(issue.get("team"))
        return LinearIssueRef(
            id=issue.get("id") or "",
            identifier=issue.get("identifier") or "",
            title=issue.get("title") or "",
            team_id=team.get("id") or issue.get("teamId") or "",
            team_name=team.get("name"),
        )

    def _parse_session_created(self, payload: Dict[str, Any]) -> SessionCreatedEvent:
        session = _dict(payload.get("agentSession"))
        return SessionCreatedEvent(
            workspace_id=payload.get("organizationId") or "",
            agent_session_id=session.get("id") or "",
            issue=self._parse_issue(session),
        )

    def _parse_session_prompted(self, payload: Dict[str, Any]) -> SessionPromptedEvent:
        session = _dict(payload.get("agentSession"))
        activity = _dict(payload.get("agentActivity"))
        content = _dict(activity.get("content"))
        message = content.get("body") or activity.get("body") or ""
        return SessionPromptedEvent(
            workspace_id=payload.get("organizationId") or "",
            agent_session_id=session.get("id") or "",
            issue=self._parse_issue(session),
            activity_id=activity.get("id"),
            message=message if isinstance(message, str) else "",
        )

    def _parse_issue_unassigned(self, payload: Dict[str, Any]) -> IssueUnassignedEvent:
        notification = _dict(payload.get("notification"))
        issue = _dict(notification.get("issue"))
        timestamp = payload.get("webhookTimestamp")
        return IssueUnassignedEvent(
            workspace_id=payload.get("organizationId") or "",
            issue_id=issue.get("id") or notification.get("issueId") or "",
            issue_identifier=issue.get("identifier") or "",
            webhook_timestamp=timestamp if isinstance(timestamp, int) else None,
        )

    # ------------------------------------------------------------------
    # GitHub
    # ------------------------------------------------------------------

    def parse_github(self, event_type: Optional[str], payload: Any) -> Optional[GitHubEvent]:
        """Parse a GitHub webhook payload.

        Args:
            event_type: The ``X-GitHub-Event`` header.
            payload: The decoded JSON body.

        Returns:
            A WorkflowRunEvent, InstallationEvent or PullRequestEvent, or None.
        """
        if not isinstance(payload, dict):
            logger.warning("Invalid GitHub payload: expected dict, got %s", type(payload))
            return None

        try:
            if event_type == GITHUB_WORKFLOW_RUN:
                return self._parse_workflow_run(payload)
            if event_type == GITHUB_INSTALLATION:
                return self._parse_installation(payload)
            if event_type == GITHUB_PULL_REQUEST:
                return self._parse_pull_request(payload)
        except ValidationError as e:
            logger.warning(
                "Malformed GitHub %s payload: %s",
                event_type,
                e.errors(include_url=False),
            )
            return None

        logger.debug("Ignoring GitHub event: %s", event_type)
        return None

    def _parse_workflow_run(self, payload: Dict[str, Any]) -> Optional[WorkflowRunEvent]:
        action = payload.get("action")
        try:
            run_action = WorkflowRunAction(action)
        except ValueError:
            logger.debug("Ignoring workflow_run action: %s", action)
            return None

        run = _dict(payload.get("workflow_run"))
        repository = _dict(run.get("repository")) or _dict(payload.get("repository"))
        owner = _dict(repository.get("owner"))
        installation = _dict(payload.get("installation"))

        return WorkflowRunEvent(
            action=run_action,
            run_id=run.get("id"),
            workflow_name=run.get("name") or "",
            status=run.get("status"),
            conclusion=run.get("conclusion"),
            html_url=run.get("html_url") or "",
            head_branch=run.get("head_branch") or "",
            owner=owner.get("login") or "",
            repo=repository.get("name") or "",
            installation_id=installation.get("id"),
            trigger_event=run.get("event"),
            workflow_path=run.get("path"),
        )

    def _parse_installation(self, payload: Dict[str, Any]) -> InstallationEvent:
        installation = _dict(payload.get("installation"))
        account = _dict(installation.get("account"))
        return InstallationEvent(
            action=payload.get("action") or "",
            installation_id=installation.get("id"),
            account_login=account.get("login") or "",
            account_type=account.get("type") or "User",
        )

    def _parse_pull_request(self, payload: Dict[str, Any]) -> PullRequestEvent:
        pull_request = _dict(payload.get("pull_request"))
        repository = _dict(payload.get("repository"))
        owner = _dict(repository.get("owner"))
        return PullRequestEvent(
            action=payload.get("action") or "",
            number=pull_request.get("number"),
            html_url=pull_request.get("html_url") or "",
            head_ref=_dict(pull_request.get("head")).get("ref"),
            owner=owner.get("login") or "",
            repo=repository.get("name") or "",
        )


def linear_webhook_id(event: LinearEvent) -> str:
    """Ledger id for a parsed Linear event."""
    if isinstance(event, IssueUnassignedEvent):
        return linear_unassign_webhook_id(event.issue_id, event.webhook_timestamp)
    if isinstance(event, SessionPromptedEvent):
        return linear_session_webhook_id(
            event.agent_session_id, "prompted", event.activity_id
        )
    return linear_session_webhook_id(event.agent_session_id, "created")


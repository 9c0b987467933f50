"""Unit tests for webhook payload parsing."""

from typing import Any, Dict, Optional

import pytest

from src.relay.webhook.handler import WebhookParser, linear_webhook_id
from src.relay.webhook.models import (
    InstallationEvent,
    IssueUnassignedEvent,
    PullRequestEvent,
    SessionCreatedEvent,
    SessionPromptedEvent,
    WorkflowRunAction,
    WorkflowRunEvent,
)


# ---------------------------------------------------------------------------
# Payload factories
# ---------------------------------------------------------------------------


def _session_payload(
    action: str = "created",
    activity: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "type": "AgentSessionEvent",
        "action": action,
        "organizationId": "org-1",
        "agentSession": {
            "id": "session-1",
            "issue": {
                "id": "issue-1",
                "identifier": "ABC-123",
                "title": "Add retries",
                "team": {"id": "team-1", "name": "Backend"},
            },
        },
    }
    if activity is not None:
        payload["agentActivity"] = activity
    return payload


def _unassign_payload(timestamp: Optional[int] = 1700000000000) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "type": "AppUserNotification",
        "action": "issueUnassignedFromYou",
        "organizationId": "org-1",
        "notification": {"issue": {"id": "issue-1", "identifier": "ABC-123"}},
    }
    if timestamp is not None:
        payload["webhookTimestamp"] = timestamp
    return payload


def _workflow_run_payload(action: str = "completed", **run_overrides: Any) -> Dict[str, Any]:
    run = {
        "id": 555,
        "name": "Linear Agent",
        "status": "completed",
        "conclusion": "success",
        "html_url": "https://github.com/acme/widgets/actions/runs/555",
        "head_branch": "main",
        "event": "workflow_dispatch",
        "path": ".github/workflows/linear-agent.yml",
        "repository": {"name": "widgets", "owner": {"login": "acme"}},
    }
    run.update(run_overrides)
    return {"action": action, "workflow_run": run, "installation": {"id": 42}}


@pytest.fixture
def parser():
    return WebhookParser()


# ---------------------------------------------------------------------------
# Linear
# ---------------------------------------------------------------------------


class TestLinearParsing:
    def test_session_created(self, parser):
        event = parser.parse_linear(_session_payload())

        assert isinstance(event, SessionCreatedEvent)
        assert event.workspace_id == "org-1"
        assert event.agent_session_id == "session-1"
        assert event.issue.identifier == "ABC-123"
        assert event.issue.team_id == "team-1"
        assert event.issue.team_name == "Backend"

    def test_session_prompted_reads_content_body(self, parser):
        event = parser.parse_linear(
            _session_payload(
                "prompted",
                {"id": "act-1", "content": {"body": "please implement"}},
            )
        )

        assert isinstance(event, SessionPromptedEvent)
        assert event.activity_id == "act-1"
        assert event.message == "please implement"

    def test_session_prompted_falls_back_to_activity_body(self, parser):
        event = parser.parse_linear(
            _session_payload("prompted", {"id": "act-1", "body": "acme/widgets"})
        )
        assert event.message == "acme/widgets"

    def test_issue_unassigned(self, parser):
        event = parser.parse_linear(_unassign_payload())

        assert isinstance(event, IssueUnassignedEvent)
        assert event.issue_id == "issue-1"
        assert event.issue_identifier == "ABC-123"
        assert event.webhook_timestamp == 1700000000000

    def test_unknown_type_ignored(self, parser):
        assert parser.parse_linear({"type": "Issue", "action": "update"}) is None

    def test_unknown_session_action_ignored(self, parser):
        assert parser.parse_linear(_session_payload("archived")) is None

    def test_missing_session_id_is_invalid(self, parser):
        payload = _session_payload()
        del payload["agentSession"]["id"]
        assert parser.parse_linear(payload) is None

    def test_missing_team_is_invalid(self, parser):
        payload = _session_payload()
        del payload["agentSession"]["issue"]["team"]
        assert parser.parse_linear(payload) is None

    def test_non_dict_payload(self, parser):
        assert parser.parse_linear(["not", "a", "dict"]) is None


class TestLinearWebhookIds:
    def test_created(self, parser):
        event = parser.parse_linear(_session_payload())
        assert linear_webhook_id(event) == "linear-session-session-1-created"

    def test_prompted_includes_activity(self, parser):
        event = parser.parse_linear(
            _session_payload("prompted", {"id": "act-1", "content": {"body": "hi"}})
        )
        assert linear_webhook_id(event) == "linear-session-session-1-prompted-act-1"

    def test_unassigned_uses_timestamp(self, parser):
        event = parser.parse_linear(_unassign_payload(1700000000123))
        assert linear_webhook_id(event) == "linear-unassign-issue-1-1700000000123"


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class TestGitHubParsing:
    def test_workflow_run(self, parser):
        event = parser.parse_github("workflow_run", _workflow_run_payload())

        assert isinstance(event, WorkflowRunEvent)
        assert event.action == WorkflowRunAction.COMPLETED
        assert event.run_id == 555
        assert event.owner == "acme"
        assert event.repo == "widgets"
        assert event.head_branch == "main"
        assert event.conclusion == "success"
        assert event.installation_id == 42
        assert event.trigger_event == "workflow_dispatch"
        assert event.repository == "acme/widgets"

    def test_workflow_run_unknown_action_ignored(self, parser):
        assert parser.parse_github("workflow_run", _workflow_run_payload("waiting")) is None

    def test_workflow_run_without_installation_ignored(self, parser):
        payload = _workflow_run_payload()
        del payload["installation"]
        assert parser.parse_github("workflow_run", payload) is None

    def test_installation(self, parser):
        event = parser.parse_github(
            "installation",
            {
                "action": "created",
                "installation": {
                    "id": 42,
                    "account": {"login": "acme", "type": "Organization"},
                },
            },
        )

        assert isinstance(event, InstallationEvent)
        assert event.installation_id == 42
        assert event.account_login == "acme"
        assert event.account_type == "Organization"

    def test_pull_request(self, parser):
        event = parser.parse_github(
            "pull_request",
            {
                "action": "opened",
                "pull_request": {
                    "number": 7,
                    "html_url": "https://github.com/acme/widgets/pull/7",
                    "head": {"ref": "agent/abc-123"},
                },
                "repository": {"name": "widgets", "owner": {"login": "acme"}},
            },
        )

        assert isinstance(event, PullRequestEvent)
        assert event.number == 7
        assert event.head_ref == "agent/abc-123"

    def test_unhandled_event_type(self, parser):
        assert parser.parse_github("push", {"ref": "refs/heads/main"}) is None

    def test_missing_event_header(self, parser):
        assert parser.parse_github(None, _workflow_run_payload()) is None

"""Parsed webhook event models.

Inbound payloads are parsed into one tagged variant per event kind so
that handlers match on the type instead of probing dictionaries. Linear
variants carry the workspace id; GitHub variants carry the installation
context where GitHub sends it.
"""

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Linear
# ---------------------------------------------------------------------------


class LinearIssueRef(BaseModel):
    """The issue an agent session is attached to."""

    id: str = Field(..., min_length=1)
    identifier: str = Field(..., min_length=1)
    title: str = ""
    team_id: str = Field(..., min_length=1)
    team_name: Optional[str] = None


class SessionCreatedEvent(BaseModel):
    """The agent was assigned to or mentioned on an issue."""

    kind: Literal["session_created"] = "session_created"
    workspace_id: str = Field(..., min_length=1)
    agent_session_id: str = Field(..., min_length=1)
    issue: LinearIssueRef


class SessionPromptedEvent(BaseModel):
    """A user replied inside an existing agent session."""

    kind: Literal["session_prompted"] = "session_prompted"
    workspace_id: str = Field(..., min_length=1)
    agent_session_id: str = Field(..., min_length=1)
    issue: LinearIssueRef
    activity_id: Optional[str] = None
    message: str = ""


class IssueUnassignedEvent(BaseModel):
    """The agent was unassigned from an issue."""

    kind: Literal["issue_unassigned"] = "issue_unassigned"
    workspace_id: str = Field(..., min_length=1)
    issue_id: str = Field(..., min_length=1)
    issue_identifier: str = ""
    webhook_timestamp: Optional[int] = None


LinearEvent = Union[SessionCreatedEvent, SessionPromptedEvent, IssueUnassignedEvent]


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class WorkflowRunAction(str, Enum):
    """workflow_run webhook actions."""

    REQUESTED = "requested"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class WorkflowRunEvent(BaseModel):
    """A GitHub Actions run changed state.

    ``head_branch`` is the ref the run executes on, which for dispatched
    runs is the ref passed to workflow_dispatch.
    """

    kind: Literal["workflow_run"] = "workflow_run"
    action: WorkflowRunAction
    run_id: int
    workflow_name: str = ""
    status: Optional[str] = None
    conclusion: Optional[str] = None
    html_url: str = ""
    head_branch: str = Field(..., min_length=1)
    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)
    installation_id: int
    # GitHub event that started the run, e.g. "workflow_dispatch" or "push"
    trigger_event: Optional[str] = None
    # Workflow file path, e.g. ".github/workflows/linear-agent.yml"
    workflow_path: Optional[str] = None

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"


class InstallationEvent(BaseModel):
    """The GitHub App was installed on or removed from an account."""

    kind: Literal["installation"] = "installation"
    action: str
    installation_id: int
    account_login: str = Field(..., min_length=1)
    account_type: str = "User"


class PullRequestEvent(BaseModel):
    """A pull request changed; recorded for information only."""

    kind: Literal["pull_request"] = "pull_request"
    action: str
    number: int
    html_url: str = ""
    head_ref: Optional[str] = None
    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)


GitHubEvent = Union[WorkflowRunEvent, InstallationEvent, PullRequestEvent]

"""Correlation store models.

This module defines the persisted entities of the relay:
- TeamConfig: Linear team to GitHub repository mapping
- GitHubInstallation: GitHub App installation per account
- PendingConfig: configuration conversation awaiting a repository reply
- PendingWorkflowTrigger: dispatch record waiting to be matched to a run
- WorkflowRun: a correlated GitHub Actions run and its outcome
- RunLogEntry: append-only audit trail
- OAuthToken: Linear workspace credentials

It also holds the workflow status transition table, which the store
implementations apply on every run update.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStatus(str, Enum):
    """Lifecycle status of a GitHub Actions workflow run.

    Status Flow:
        queued → in_progress → completed
        queued → completed

    ``completed`` is terminal. Status never moves backward, even when
    GitHub delivers events out of order.

    Attributes:
        QUEUED: Run created, not yet picked up by a runner.
        IN_PROGRESS: Run is executing.
        COMPLETED: Run finished; ``conclusion`` holds the outcome.
    """

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class WorkflowKind(str, Enum):
    """Kind of workflow dispatched for an agent session."""

    IMPLEMENT = "implement"


class WebhookSource(str, Enum):
    """Origin of an inbound webhook, part of its ledger key."""

    LINEAR = "linear"
    GITHUB = "github"


class RunLogEvent(str, Enum):
    """Event types recorded in the run log."""

    SESSION_CREATED = "session_created"
    SESSION_PROMPTED = "session_prompted"
    AGENT_UNASSIGNED = "agent_unassigned"
    TEAM_CONFIGURED = "team_configured"
    WORKFLOW_TRIGGER = "workflow_trigger"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    GITHUB_APP_INSTALLED = "github_app_installed"
    GITHUB_APP_UNINSTALLED = "github_app_uninstalled"
    WEBHOOK_ERROR = "webhook_error"
    ERROR = "error"


# Valid status transitions.
# Same-status writes are not listed; they are accepted as no-ops.
VALID_TRANSITIONS: Dict[WorkflowStatus, List[WorkflowStatus]] = {
    WorkflowStatus.QUEUED: [
        WorkflowStatus.IN_PROGRESS,
        WorkflowStatus.COMPLETED,
    ],
    WorkflowStatus.IN_PROGRESS: [
        WorkflowStatus.COMPLETED,
    ],
    # Terminal
    WorkflowStatus.COMPLETED: [],
}


def is_valid_transition(
    from_status: WorkflowStatus,
    to_status: WorkflowStatus,
) -> bool:
    """Check if a status transition is valid.

    Args:
        from_status: The current status.
        to_status: The target status.

    Returns:
        True if the transition is allowed.

    Example:
        >>> is_valid_transition(WorkflowStatus.QUEUED, WorkflowStatus.IN_PROGRESS)
        True
        >>> is_valid_transition(WorkflowStatus.COMPLETED, WorkflowStatus.IN_PROGRESS)
        False
    """
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def is_terminal_status(status: WorkflowStatus) -> bool:
    """Check if a status is terminal.

    >>> is_terminal_status(WorkflowStatus.COMPLETED)
    True
    """
    return len(VALID_TRANSITIONS.get(status, [])) == 0


class InvalidRunTransitionError(Exception):
    """Raised when a workflow run update violates the transition table.

    Attributes:
        github_run_id: The run being updated.
        from_status: The stored status.
        to_status: The requested status, if any.
        message: Human-readable error message.
    """

    def __init__(
        self,
        github_run_id: int,
        from_status: WorkflowStatus,
        to_status: Optional[WorkflowStatus] = None,
        message: Optional[str] = None,
    ):
        self.github_run_id = github_run_id
        self.from_status = from_status
        self.to_status = to_status
        target = to_status.value if to_status else "unchanged"
        self.message = message or (
            f"Invalid update of run {github_run_id} "
            f"from {from_status.value} to {target}"
        )
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class TeamConfig(BaseModel):
    """Mapping of a Linear team to the GitHub repository it dispatches to.

    Unique per (linear_workspace_id, linear_team_id). Created on first
    successful configuration and replaced on reconfiguration.
    """

    id: Optional[int] = None
    linear_workspace_id: str = Field(..., min_length=1)
    linear_team_id: str = Field(..., min_length=1)
    linear_team_name: Optional[str] = None
    github_installation_id: Optional[int] = None
    github_owner: Optional[str] = None
    github_repo: Optional[str] = None
    github_branch: str = "main"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_configured(self) -> bool:
        """True when the team has a target repository."""
        return bool(self.github_owner and self.github_repo)


class GitHubInstallation(BaseModel):
    """A GitHub App installation on a user or organization account."""

    installation_id: int
    account_login: str = Field(..., min_length=1)
    account_type: str = "User"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PendingConfig(BaseModel):
    """An unconfigured team's session waiting for an ``owner/repo`` reply."""

    agent_session_id: str = Field(..., min_length=1)
    linear_workspace_id: str = Field(..., min_length=1)
    linear_team_id: str = Field(..., min_length=1)
    pending_issue_id: str = Field(..., min_length=1)
    pending_issue_identifier: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)


class PendingWorkflowTrigger(BaseModel):
    """A dispatched workflow waiting for its GitHub run to appear.

    Unique per (agent_session_id, workflow_type); writing again for the
    same pair replaces the record and clears ``matched_at``. Matching is
    by (github_owner, github_repo, branch_name), where ``branch_name`` is
    the ref the workflow was dispatched on.
    """

    id: Optional[int] = None
    agent_session_id: str = Field(..., min_length=1)
    linear_workspace_id: str = Field(..., min_length=1)
    linear_issue_id: str = Field(..., min_length=1)
    linear_issue_identifier: str = Field(..., min_length=1)
    linear_team_id: Optional[str] = None
    workflow_type: WorkflowKind = WorkflowKind.IMPLEMENT
    github_owner: str = Field(..., min_length=1)
    github_repo: str = Field(..., min_length=1)
    branch_name: str = Field(..., min_length=1)
    feature_branch: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    matched_at: Optional[datetime] = None

    @property
    def is_matched(self) -> bool:
        return self.matched_at is not None


class WorkflowRun(BaseModel):
    """A GitHub Actions run correlated to an agent session.

    ``branch_name`` is the feature branch the run pushes to. ``status``
    only moves forward through VALID_TRANSITIONS; ``conclusion`` and the
    pull request fields are written at completion.
    """

    id: Optional[int] = None
    github_run_id: int
    github_owner: str = Field(..., min_length=1)
    github_repo: str = Field(..., min_length=1)
    github_installation_id: Optional[int] = None
    agent_session_id: str = Field(..., min_length=1)
    linear_issue_id: str = Field(..., min_length=1)
    linear_issue_identifier: str = Field(..., min_length=1)
    linear_workspace_id: Optional[str] = None
    workflow_type: WorkflowKind = WorkflowKind.IMPLEMENT
    branch_name: str = Field(..., min_length=1)
    status: WorkflowStatus = WorkflowStatus.QUEUED
    conclusion: Optional[str] = None
    pr_number: Optional[int] = None
    pr_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_completed(self) -> bool:
        return self.status == WorkflowStatus.COMPLETED

    @property
    def repository(self) -> str:
        return f"{self.github_owner}/{self.github_repo}"


class WorkflowRunUpdate(BaseModel):
    """Partial update of a workflow run. Unset fields are left unchanged."""

    status: Optional[WorkflowStatus] = None
    conclusion: Optional[str] = None
    pr_number: Optional[int] = None
    pr_url: Optional[str] = None


class RunLogEntry(BaseModel):
    """Append-only audit record."""

    id: Optional[int] = None
    workflow_run_id: Optional[int] = None
    agent_session_id: Optional[str] = None
    event_type: RunLogEvent
    message: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class OAuthToken(BaseModel):
    """OAuth credentials for a Linear workspace."""

    workspace_id: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        """True when the token expires within ``seconds`` of ``now``.

        Tokens without an expiry never need refreshing.
        """
        if self.expires_at is None:
            return False
        now = now or utcnow()
        return (self.expires_at - now).total_seconds() <= seconds


def apply_run_update(run: WorkflowRun, update: WorkflowRunUpdate) -> WorkflowRun:
    """Apply ``update`` to ``run`` and return the updated copy.

    Rules enforced here are shared by every store implementation:
    - a completed run accepts no further changes
    - status only moves along VALID_TRANSITIONS; rewriting the current
      status is a no-op
    - a conclusion requires the resulting status to be completed
    - pull request number and URL are set at most once

    Args:
        run: The stored run.
        update: Requested changes.

    Returns:
        A new WorkflowRun with the changes applied and updated_at advanced.

    Raises:
        InvalidRunTransitionError: If the update violates any rule.
    """
    if run.is_completed:
        raise InvalidRunTransitionError(
            run.github_run_id,
            run.status,
            update.status,
            message=f"Run {run.github_run_id} is completed and cannot change",
        )

    new_status = run.status
    if update.status is not None and update.status != run.status:
        if not is_valid_transition(run.status, update.status):
            raise InvalidRunTransitionError(
                run.github_run_id, run.status, update.status
            )
        new_status = update.status

    if update.conclusion is not None and new_status != WorkflowStatus.COMPLETED:
        raise InvalidRunTransitionError(
            run.github_run_id,
            run.status,
            update.status,
            message=(
                f"Conclusion for run {run.github_run_id} requires "
                f"status {WorkflowStatus.COMPLETED.value}"
            ),
        )

    for field in ("pr_number", "pr_url"):
        current = getattr(run, field)
        requested = getattr(update, field)
        if requested is not None and current is not None and requested != current:
            raise InvalidRunTransitionError(
                run.github_run_id,
                run.status,
                update.status,
                message=f"{field} for run {run.github_run_id} is already set",
            )

    return run.model_copy(
        update={
            "status": new_status,
            "conclusion": update.conclusion
            if update.conclusion is not None
            else run.conclusion,
            "pr_number": update.pr_number
            if update.pr_number is not None
            else run.pr_number,
            "pr_url": update.pr_url if update.pr_url is not None else run.pr_url,
            "updated_at": utcnow(),
        }
    )

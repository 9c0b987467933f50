"""Correlation store interface.

The relay's handlers depend on the CorrelationStore protocol rather than
a concrete backend. The PostgreSQL implementation lives in repository.py
and an in-memory implementation for local development in memory.py.
"""

from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable

from src.relay.store.models import (
    GitHubInstallation,
    OAuthToken,
    PendingConfig,
    PendingWorkflowTrigger,
    RunLogEntry,
    TeamConfig,
    WebhookSource,
    WorkflowRun,
    WorkflowRunUpdate,
)


class DatabaseError(Exception):
    """Raised when a database operation fails.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class RunNotFoundError(Exception):
    """Raised when updating a workflow run that does not exist.

    Attributes:
        github_run_id: The run id that was not found.
    """

    def __init__(self, github_run_id: int):
        self.github_run_id = github_run_id
        super().__init__(f"Workflow run not found: {github_run_id}")


@runtime_checkable
class CorrelationStore(Protocol):
    """Persistence contract for correlation state.

    Implementations must provide these atomicity guarantees:
    - mark_webhook_processed is insert-or-ignore on (webhook_id, source)
    - create_pending_trigger replaces any trigger for the same
      (agent_session_id, workflow_type)
    - claim_trigger_and_create_run only succeeds for a trigger not yet
      matched, and the claim and the run insert commit together
    - update_workflow_run validates the change with apply_run_update
      against the stored row, under a row lock where the backend has one
    """

    async def health_check(self) -> bool:
        ...

    # Team configuration ------------------------------------------------

    async def get_team_config(
        self, workspace_id: str, team_id: str
    ) -> Optional[TeamConfig]:
        ...

    async def upsert_team_config(self, config: TeamConfig) -> TeamConfig:
        ...

    # GitHub installations ----------------------------------------------

    async def get_installation_by_account(
        self, account_login: str
    ) -> Optional[GitHubInstallation]:
        ...

    async def upsert_installation(self, installation: GitHubInstallation) -> None:
        ...

    async def delete_installation(self, installation_id: int) -> bool:
        ...

    # Pending configuration ---------------------------------------------

    async def create_pending_config(self, pending: PendingConfig) -> None:
        ...

    async def get_pending_config(self, agent_session_id: str) -> Optional[PendingConfig]:
        ...

    async def delete_pending_config(self, agent_session_id: str) -> bool:
        ...

    # Pending workflow triggers -----------------------------------------

    async def create_pending_trigger(
        self, trigger: PendingWorkflowTrigger
    ) -> PendingWorkflowTrigger:
        ...

    async def find_pending_trigger(
        self, owner: str, repo: str, branch: str
    ) -> Optional[PendingWorkflowTrigger]:
        """Most recently created unmatched trigger for the target and branch."""
        ...

    async def claim_trigger_and_create_run(
        self, trigger_id: int, run: WorkflowRun
    ) -> Optional[WorkflowRun]:
        """Set the trigger's matched_at and insert its run in one step.

        Returns None if the trigger is gone or already matched. If the run
        id is already stored, the stored row is returned. A failure leaves
        the trigger unmatched.
        """
        ...

    # Workflow runs -----------------------------------------------------

    async def get_workflow_run(self, github_run_id: int) -> Optional[WorkflowRun]:
        ...

    async def get_active_workflow_run_by_issue(
        self, linear_issue_id: str
    ) -> Optional[WorkflowRun]:
        """Most recent non-completed run for a Linear issue."""
        ...

    async def update_workflow_run(
        self, github_run_id: int, update: WorkflowRunUpdate
    ) -> WorkflowRun:
        ...

    # Idempotency ledger ------------------------------------------------

    async def is_webhook_processed(
        self, webhook_id: str, source: WebhookSource
    ) -> bool:
        ...

    async def mark_webhook_processed(
        self, webhook_id: str, source: WebhookSource
    ) -> bool:
        """Record the webhook. Returns False if it was already recorded."""
        ...

    # Run log -----------------------------------------------------------

    async def append_run_log(self, entry: RunLogEntry) -> None:
        ...

    # OAuth tokens ------------------------------------------------------

    async def get_oauth_token(self, workspace_id: str) -> Optional[OAuthToken]:
        ...

    async def save_oauth_token(self, token: OAuthToken) -> None:
        ...

    async def list_expiring_oauth_tokens(self, before: datetime) -> List[OAuthToken]:
        """Tokens with a refresh token whose expiry is at or before ``before``."""
        ...

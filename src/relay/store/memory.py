"""In-memory correlation store for local development and tests.

Selected with ``RELAY_DATABASE_URL=memory://``. State lives in plain
dicts on the instance and is lost on restart. An asyncio lock serializes
writes so the claim and update guarantees match the PostgreSQL store
within one process.
"""

import asyncio
import itertools
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from src.relay.store.base import RunNotFoundError
from src.relay.store.models import (
    GitHubInstallation,
    OAuthToken,
    PendingConfig,
    PendingWorkflowTrigger,
    RunLogEntry,
    TeamConfig,
    WebhookSource,
    WorkflowKind,
    WorkflowRun,
    WorkflowRunUpdate,
    apply_run_update,
    utcnow,
)


class InMemoryCorrelationStore:
    """CorrelationStore backed by instance dictionaries."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self.team_configs: Dict[Tuple[str, str], TeamConfig] = {}
        self.installations: Dict[int, GitHubInstallation] = {}
        self.pending_configs: Dict[str, PendingConfig] = {}
        self.triggers: Dict[Tuple[str, WorkflowKind], PendingWorkflowTrigger] = {}
        self.workflow_runs: Dict[int, WorkflowRun] = {}
        self.processed: Set[Tuple[str, WebhookSource]] = set()
        self.run_log: List[RunLogEntry] = []
        self.oauth_tokens: Dict[str, OAuthToken] = {}

    async def health_check(self) -> bool:
        return True

    # Team configuration

    async def get_team_config(
        self, workspace_id: str, team_id: str
    ) -> Optional[TeamConfig]:
        return self.team_configs.get((workspace_id, team_id))

    async def upsert_team_config(self, config: TeamConfig) -> TeamConfig:
        key = (config.linear_workspace_id, config.linear_team_id)
        async with self._lock:
            existing = self.team_configs.get(key)
            if existing is None:
                stored = config.model_copy(update={"id": next(self._ids)})
            else:
                stored = config.model_copy(
                    update={
                        "id": existing.id,
                        "linear_team_name": config.linear_team_name
                        or existing.linear_team_name,
                        "created_at": existing.created_at,
                        "updated_at": utcnow(),
                    }
                )
            self.team_configs[key] = stored
        return stored

    # GitHub installations

    async def get_installation_by_account(
        self, account_login: str
    ) -> Optional[GitHubInstallation]:
        matches = [
            i for i in self.installations.values() if i.account_login == account_login
        ]
        if not matches:
            return None
        return max(matches, key=lambda i: i.updated_at)

    async def upsert_installation(self, installation: GitHubInstallation) -> None:
        existing = self.installations.get(installation.installation_id)
        if existing is not None:
            installation = installation.model_copy(
                update={"created_at": existing.created_at, "updated_at": utcnow()}
            )
        self.installations[installation.installation_id] = installation

    async def delete_installation(self, installation_id: int) -> bool:
        return self.installations.pop(installation_id, None) is not None

    # Pending configuration

    async def create_pending_config(self, pending: PendingConfig) -> None:
        self.pending_configs[pending.agent_session_id] = pending

    async def get_pending_config(self, agent_session_id: str) -> Optional[PendingConfig]:
        return self.pending_configs.get(agent_session_id)

    async def delete_pending_config(self, agent_session_id: str) -> bool:
        return self.pending_configs.pop(agent_session_id, None) is not None

    # Pending workflow triggers

    async def create_pending_trigger(
        self, trigger: PendingWorkflowTrigger
    ) -> PendingWorkflowTrigger:
        key = (trigger.agent_session_id, trigger.workflow_type)
        async with self._lock:
            existing = self.triggers.get(key)
            stored = trigger.model_copy(
                update={
                    "id": existing.id if existing else next(self._ids),
                    "created_at": utcnow(),
                    "matched_at": None,
                }
            )
            self.triggers[key] = stored
        return stored

    async def find_pending_trigger(
        self, owner: str, repo: str, branch: str
    ) -> Optional[PendingWorkflowTrigger]:
        candidates = [
            t
            for t in self.triggers.values()
            if t.github_owner == owner
            and t.github_repo == repo
            and t.branch_name == branch
            and t.matched_at is None
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda t: (t.created_at, t.id or 0))

    async def claim_trigger_and_create_run(
        self, trigger_id: int, run: WorkflowRun
    ) -> Optional[WorkflowRun]:
        async with self._lock:
            key = next(
                (k for k, t in self.triggers.items() if t.id == trigger_id), None
            )
            if key is None or self.triggers[key].matched_at is not None:
                return None
            stored = self.workflow_runs.get(run.github_run_id)
            if stored is None:
                stored = run.model_copy(update={"id": next(self._ids)})
                self.workflow_runs[run.github_run_id] = stored
            self.triggers[key] = self.triggers[key].model_copy(
                update={"matched_at": utcnow()}
            )
        return stored

    # Workflow runs

    async def get_workflow_run(self, github_run_id: int) -> Optional[WorkflowRun]:
        return self.workflow_runs.get(github_run_id)

    async def get_active_workflow_run_by_issue(
        self, linear_issue_id: str
    ) -> Optional[WorkflowRun]:
        active = [
            r
            for r in self.workflow_runs.values()
            if r.linear_issue_id == linear_issue_id and not r.is_completed
        ]
        if not active:
            return None
        return max(active, key=lambda r: (r.created_at, r.id or 0))

    async def update_workflow_run(
        self, github_run_id: int, update: WorkflowRunUpdate
    ) -> WorkflowRun:
        async with self._lock:
            run = self.workflow_runs.get(github_run_id)
            if run is None:
                raise RunNotFoundError(github_run_id)
            updated = apply_run_update(run, update)
            self.workflow_runs[github_run_id] = updated
        return updated

    # Idempotency ledger

    async def is_webhook_processed(
        self, webhook_id: str, source: WebhookSource
    ) -> bool:
        return (webhook_id, source) in self.processed

    async def mark_webhook_processed(
        self, webhook_id: str, source: WebhookSource
    ) -> bool:
        key = (webhook_id, source)
        if key in self.processed:
            return False
        self.processed.add(key)
        return True

    # Run log

    async def append_run_log(self, entry: RunLogEntry) -> None:
        self.run_log.append(entry.model_copy(update={"id": next(self._ids)}))

    # OAuth tokens

    async def get_oauth_token(self, workspace_id: str) -> Optional[OAuthToken]:
        return self.oauth_tokens.get(workspace_id)

    async def save_oauth_token(self, token: OAuthToken) -> None:
        existing = self.oauth_tokens.get(token.workspace_id)
        if existing is not None:
            token = token.model_copy(
                update={
                    "refresh_token": token.refresh_token or existing.refresh_token,
                    "scope": token.scope or existing.scope,
                    "created_at": existing.created_at,
                    "updated_at": utcnow(),
                }
            )
        self.oauth_tokens[token.workspace_id] = token

    async def list_expiring_oauth_tokens(self, before: datetime) -> List[OAuthToken]:
        expiring = [
            t
            for t in self.oauth_tokens.values()
            if t.refresh_token and t.expires_at is not None and t.expires_at <= before
        ]
        return sorted(expiring, key=lambda t: t.expires_at)

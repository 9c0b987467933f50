"""Workflow orchestrator connecting Linear sessions to GitHub Actions runs.

Drives one unit of work through its lifecycle:
dispatch → correlate → in_progress → complete, or cancel on unassignment.

GitHub never returns a run id from workflow_dispatch, so every dispatch
leaves a pending trigger behind. When a workflow_run webhook arrives for
an unknown run, the most recent unmatched trigger for the same
(owner, repo, dispatch branch) is claimed and a run record is created
from it. A trigger can be claimed at most once.

Source:
- src/relay/store/base.py (CorrelationStore)
- src/relay/github/client.py (GitHubClient)
- src/relay/linear/oauth.py (LinearClientFactory)
- src/relay/events/emitter.py (EventEmitter)
"""

import json
import logging
from typing import Dict, Optional

from src.relay import messages
from src.relay.events.emitter import EventEmitter
from src.relay.events.models import EventType, RelayEvent
from src.relay.github.client import GitHubClient
from src.relay.github.models import PullRequestRef, RepoTarget
from src.relay.linear.client import LinearClient
from src.relay.linear.oauth import LinearClientFactory
from src.relay.store.base import CorrelationStore
from src.relay.store.models import (
    InvalidRunTransitionError,
    PendingWorkflowTrigger,
    RunLogEntry,
    RunLogEvent,
    TeamConfig,
    WorkflowKind,
    WorkflowRun,
    WorkflowRunUpdate,
    WorkflowStatus,
    utcnow,
)
from src.relay.webhook.models import WorkflowRunAction, WorkflowRunEvent
from src.relay.workflow.branch import next_available_branch

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_FILE = "linear-agent.yml"

SUCCESS_CONCLUSION = "success"
CANCELLED_CONCLUSION = "cancelled"


class ConfigurationError(Exception):
    """Raised when a team config lacks what a dispatch needs.

    Attributes:
        team_id: The Linear team whose configuration is incomplete.
        missing: Names of the missing fields.
    """

    def __init__(self, team_id: str, missing: list):
        self.team_id = team_id
        self.missing = missing
        super().__init__(
            f"Team {team_id} is missing configuration: {', '.join(missing)}"
        )


class WorkflowOrchestrator:
    """Dispatches, correlates, completes and cancels workflow runs.

    Attributes:
        store: Correlation state persistence.
        github: GitHub App client.
        linear_clients: Builds Linear clients for workflow_run events,
            which carry no Linear context of their own.
        event_emitter: Emits relay events for observability.
        workflow_file: Workflow dispatched for implementation requests.
    """

    def __init__(
        self,
        store: CorrelationStore,
        github: GitHubClient,
        linear_clients: LinearClientFactory,
        event_emitter: EventEmitter,
        workflow_file: str = DEFAULT_WORKFLOW_FILE,
    ):
        self.store = store
        self.github = github
        self.linear_clients = linear_clients
        self.event_emitter = event_emitter
        self.workflow_file = workflow_file

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        linear: LinearClient,
        agent_session_id: str,
        issue_id: str,
        issue_identifier: str,
        config: TeamConfig,
    ) -> PendingWorkflowTrigger:
        """Dispatch the implementation workflow for an issue.

        The pending trigger is written before the dispatch call so that a
        fast workflow_run webhook always finds it. Dispatching again for
        the same session before the first run is correlated replaces the
        trigger; the earlier dispatch then goes unmatched.

        Args:
            linear: Client for the session's workspace.
            agent_session_id: The Linear agent session.
            issue_id: Linear issue id.
            issue_identifier: Human identifier, e.g. "ABC-123".
            config: The team's repository configuration.

        Returns:
            The stored pending trigger.

        Raises:
            ConfigurationError: If the config lacks repository coordinates
                or an installation.
        """
        missing = [
            name
            for name in ("github_owner", "github_repo", "github_installation_id")
            if not getattr(config, name)
        ]
        if missing:
            raise ConfigurationError(config.linear_team_id, missing)

        target = RepoTarget(
            installation_id=config.github_installation_id,
            owner=config.github_owner,
            repo=config.github_repo,
        )

        context = await linear.get_issue_context(issue_id)

        existing_branches = await self.github.list_branch_names(target)
        feature_branch = next_available_branch(issue_identifier, existing_branches)

        await self.store.append_run_log(
            RunLogEntry(
                agent_session_id=agent_session_id,
                event_type=RunLogEvent.WORKFLOW_TRIGGER,
                message=f"Triggering implementation for {issue_identifier}",
                metadata={
                    "repository": target.full_name,
                    "ref": config.github_branch,
                    "branch_name": feature_branch,
                },
            )
        )

        trigger = await self.store.create_pending_trigger(
            PendingWorkflowTrigger(
                agent_session_id=agent_session_id,
                linear_workspace_id=config.linear_workspace_id,
                linear_issue_id=issue_id,
                linear_issue_identifier=issue_identifier,
                linear_team_id=config.linear_team_id,
                workflow_type=WorkflowKind.IMPLEMENT,
                github_owner=target.owner,
                github_repo=target.repo,
                branch_name=config.github_branch,
                feature_branch=feature_branch,
            )
        )

        await linear.send_action(
            agent_session_id, messages.DISPATCH_ACTION, messages.WORKFLOW_PARAMETER
        )

        await self.github.dispatch_workflow(
            target,
            self.workflow_file,
            config.github_branch,
            self._workflow_inputs(agent_session_id, issue_identifier, context, feature_branch),
        )

        logger.info(
            "Dispatched implementation workflow",
            extra={
                "agent_session_id": agent_session_id,
                "issue_identifier": issue_identifier,
                "repository": target.full_name,
                "branch_name": feature_branch,
            },
        )
        await self._safe_emit(
            RelayEvent(
                event_type=EventType.WORKFLOW_DISPATCHED,
                subject=agent_session_id,
                repository=target.full_name,
                details={"branch_name": feature_branch},
            )
        )
        return trigger

    @staticmethod
    def _workflow_inputs(
        agent_session_id: str,
        issue_identifier: str,
        context,
        feature_branch: str,
    ) -> Dict[str, str]:
        # workflow_dispatch inputs must all be strings
        return {
            "agent_session_id": agent_session_id,
            "ticket_id": issue_identifier,
            "ticket_title": context.title,
            "ticket_description": context.description or "",
            "ticket_context": json.dumps(context.workflow_context()),
            "branch_name": feature_branch,
        }

    # ------------------------------------------------------------------
    # Correlation and lifecycle
    # ------------------------------------------------------------------

    async def handle_workflow_run(self, event: WorkflowRunEvent) -> Optional[WorkflowRun]:
        """Apply a workflow_run webhook.

        Unknown runs are correlated first; runs matching no trigger are
        dropped. Events for a completed run are ignored, since deliveries
        can arrive out of order.

        Returns:
            The run after the event was applied, or None if uncorrelated.
        """
        run = await self.store.get_workflow_run(event.run_id)
        if run is None:
            run = await self._correlate(event)
            if run is None:
                return None

        if run.is_completed:
            logger.info(
                "Ignoring event for completed workflow run",
                extra={
                    "github_run_id": run.github_run_id,
                    "action": event.action.value,
                    "conclusion": run.conclusion,
                },
            )
            return run

        if event.action == WorkflowRunAction.IN_PROGRESS:
            if run.status == WorkflowStatus.IN_PROGRESS:
                return run
            run = await self.store.update_workflow_run(
                run.github_run_id,
                WorkflowRunUpdate(status=WorkflowStatus.IN_PROGRESS),
            )
            async with await self._linear_for(run) as linear:
                await linear.send_action(
                    run.agent_session_id,
                    messages.RUNNING_ACTION,
                    messages.WORKFLOW_PARAMETER,
                )
        elif event.action == WorkflowRunAction.COMPLETED:
            async with await self._linear_for(run) as linear:
                run = await self.complete(linear, run, event)

        return run

    def _is_dispatched_run(self, event: WorkflowRunEvent) -> bool:
        if event.trigger_event and event.trigger_event != "workflow_dispatch":
            return False
        if event.workflow_path and not event.workflow_path.endswith(
            "/" + self.workflow_file
        ):
            return False
        return True

    async def _correlate(self, event: WorkflowRunEvent) -> Optional[WorkflowRun]:
        if not self._is_dispatched_run(event):
            logger.debug(
                "Skipping workflow run not started by dispatch",
                extra={
                    "github_run_id": event.run_id,
                    "trigger_event": event.trigger_event,
                    "workflow_path": event.workflow_path,
                },
            )
            return None

        trigger = await self.store.find_pending_trigger(
            event.owner, event.repo, event.head_branch
        )
        if trigger is None:
            logger.info(
                "No pending trigger for workflow run",
                extra={
                    "github_run_id": event.run_id,
                    "repository": event.repository,
                    "branch": event.head_branch,
                    "workflow_name": event.workflow_name,
                },
            )
            await self._safe_emit(
                RelayEvent(
                    event_type=EventType.CORRELATION_MISS,
                    subject=str(event.run_id),
                    repository=event.repository,
                    details={"branch": event.head_branch},
                )
            )
            return None

        run = await self.store.claim_trigger_and_create_run(
            trigger.id,
            WorkflowRun(
                github_run_id=event.run_id,
                github_owner=event.owner,
                github_repo=event.repo,
                github_installation_id=event.installation_id,
                agent_session_id=trigger.agent_session_id,
                linear_issue_id=trigger.linear_issue_id,
                linear_issue_identifier=trigger.linear_issue_identifier,
                linear_workspace_id=trigger.linear_workspace_id,
                workflow_type=trigger.workflow_type,
                branch_name=trigger.feature_branch or event.head_branch,
            ),
        )
        if run is None:
            # A concurrent delivery for this run claimed the trigger first
            existing = await self.store.get_workflow_run(event.run_id)
            if existing is None:
                logger.warning(
                    "Pending trigger claimed by another run",
                    extra={"github_run_id": event.run_id, "trigger_id": trigger.id},
                )
            return existing

        logger.info(
            "Correlated workflow run",
            extra={
                "github_run_id": event.run_id,
                "trigger_id": trigger.id,
                "agent_session_id": trigger.agent_session_id,
            },
        )
        await self._safe_emit(
            RelayEvent(
                event_type=EventType.WORKFLOW_CORRELATED,
                subject=trigger.agent_session_id,
                repository=event.repository,
                details={"github_run_id": event.run_id},
            )
        )
        return run

    async def complete(
        self,
        linear: LinearClient,
        run: WorkflowRun,
        event: WorkflowRunEvent,
    ) -> WorkflowRun:
        """Record a finished run and report the outcome to the session.

        On success the pull request is looked up by the run's feature
        branch, then by the issue identifier in open pull request titles.
        """
        conclusion = event.conclusion or "unknown"
        target = RepoTarget(
            installation_id=event.installation_id,
            owner=run.github_owner,
            repo=run.github_repo,
        )

        pull_request: Optional[PullRequestRef] = None
        if conclusion == SUCCESS_CONCLUSION:
            pull_request = await self._find_pull_request(target, run)

        run = await self.store.update_workflow_run(
            run.github_run_id,
            WorkflowRunUpdate(
                status=WorkflowStatus.COMPLETED,
                conclusion=conclusion,
                pr_number=pull_request.number if pull_request else None,
                pr_url=pull_request.html_url if pull_request else None,
            ),
        )

        if pull_request is not None:
            await linear.create_attachment(
                run.linear_issue_id,
                messages.pull_request_title(pull_request.number),
                pull_request.html_url,
            )
            await linear.send_response(
                run.agent_session_id,
                messages.implementation_complete(
                    pull_request.number,
                    run.linear_issue_identifier,
                    pull_request.html_url,
                ),
            )
        elif conclusion == SUCCESS_CONCLUSION:
            await linear.send_response(run.agent_session_id, messages.NO_CHANGES)
        else:
            await linear.send_error(
                run.agent_session_id,
                messages.workflow_failed(
                    conclusion,
                    self.github.run_url(run.github_owner, run.github_repo, run.github_run_id),
                ),
            )

        await self.store.append_run_log(
            RunLogEntry(
                workflow_run_id=run.id,
                agent_session_id=run.agent_session_id,
                event_type=RunLogEvent.WORKFLOW_COMPLETED,
                message=f"Workflow completed: {conclusion}",
                metadata={"conclusion": conclusion, "pr_number": run.pr_number},
            )
        )

        await self._safe_emit(
            RelayEvent(
                event_type=EventType.WORKFLOW_COMPLETED,
                subject=run.agent_session_id,
                repository=run.repository,
                details={
                    "conclusion": conclusion,
                    "pr_number": run.pr_number,
                    "duration_seconds": (run.updated_at - run.created_at).total_seconds(),
                },
            )
        )
        return run

    async def _find_pull_request(
        self, target: RepoTarget, run: WorkflowRun
    ) -> Optional[PullRequestRef]:
        candidates = await self.github.list_pull_requests_for_branch(
            target, run.branch_name
        )
        if not candidates and run.linear_issue_identifier:
            candidates = await self.github.search_pull_requests_by_title(
                target, run.linear_issue_identifier
            )
        return candidates[0] if candidates else None

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_for_issue(
        self,
        workspace_id: str,
        issue_id: str,
    ) -> Optional[WorkflowRun]:
        """Cancel the active run for an issue, if there is one.

        The Linear client is only resolved once there is a run to cancel.

        Returns:
            The cancelled run, or None when nothing was cancelled.
        """
        run = await self.store.get_active_workflow_run_by_issue(issue_id)
        if run is None:
            logger.info(
                "No active workflow run to cancel",
                extra={"linear_issue_id": issue_id},
            )
            return None

        installation_id = run.github_installation_id
        if installation_id is None:
            installation = await self.store.get_installation_by_account(run.github_owner)
            if installation is None:
                logger.error(
                    "No GitHub installation for workflow run owner",
                    extra={
                        "github_run_id": run.github_run_id,
                        "owner": run.github_owner,
                    },
                )
                return None
            installation_id = installation.installation_id

        target = RepoTarget(
            installation_id=installation_id,
            owner=run.github_owner,
            repo=run.github_repo,
        )
        await self.github.cancel_workflow_run(target, run.github_run_id)

        try:
            run = await self.store.update_workflow_run(
                run.github_run_id,
                WorkflowRunUpdate(
                    status=WorkflowStatus.COMPLETED,
                    conclusion=CANCELLED_CONCLUSION,
                ),
            )
        except InvalidRunTransitionError:
            logger.info(
                "Workflow run completed before cancellation was recorded",
                extra={"github_run_id": run.github_run_id},
            )
            return None

        async with await self.linear_clients.for_workspace(
            run.linear_workspace_id or workspace_id
        ) as linear:
            await linear.send_thought(run.agent_session_id, messages.CANCELLED)
        await self.store.append_run_log(
            RunLogEntry(
                workflow_run_id=run.id,
                agent_session_id=run.agent_session_id,
                event_type=RunLogEvent.WORKFLOW_CANCELLED,
                message=f"Workflow cancelled for {run.linear_issue_identifier}",
                metadata={"github_run_id": run.github_run_id},
            )
        )
        await self.store.delete_pending_config(run.agent_session_id)

        await self._safe_emit(
            RelayEvent(
                event_type=EventType.WORKFLOW_CANCELLED,
                subject=run.agent_session_id,
                repository=run.repository,
                details={"github_run_id": run.github_run_id},
            )
        )
        return run

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _linear_for(self, run: WorkflowRun) -> LinearClient:
        if not run.linear_workspace_id:
            raise ValueError(f"Workflow run {run.github_run_id} has no Linear workspace")
        return await self.linear_clients.for_workspace(run.linear_workspace_id)

    async def _safe_emit(self, event: RelayEvent) -> None:
        """Emit an event, logging failures instead of raising."""
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit relay event",
                extra={
                    "event_type": event.event_type.value,
                    "subject": event.subject,
                },
            )

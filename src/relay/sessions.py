"""Handlers for Linear agent session events.

SessionHandler owns the Linear side of the relay: it resolves a Linear
client for the event's workspace and then either starts work, hands the
message to the IntentRouter, or cancels work on unassignment.

Source:
- src/relay/linear/oauth.py (LinearClientFactory)
- src/relay/intent/router.py (IntentRouter)
- src/relay/workflow/orchestrator.py (WorkflowOrchestrator)
"""

import logging
from typing import Optional

from src.relay import messages
from src.relay.intent.router import IntentRouter
from src.relay.linear.oauth import LinearClientFactory
from src.relay.store.base import CorrelationStore
from src.relay.store.models import (
    PendingConfig,
    PendingWorkflowTrigger,
    RunLogEntry,
    RunLogEvent,
    WorkflowRun,
)
from src.relay.webhook.models import (
    IssueUnassignedEvent,
    SessionCreatedEvent,
    SessionPromptedEvent,
)
from src.relay.workflow.orchestrator import WorkflowOrchestrator

logger = logging.getLogger(__name__)


class SessionHandler:
    """Handles created, prompted and unassigned events from Linear.

    Attributes:
        store: Correlation state persistence.
        linear_clients: Builds a LinearClient for each event's workspace.
        orchestrator: Dispatches and cancels workflow runs.
        router: Handles follow-up messages.
    """

    def __init__(
        self,
        store: CorrelationStore,
        linear_clients: LinearClientFactory,
        orchestrator: WorkflowOrchestrator,
        router: IntentRouter,
    ):
        self.store = store
        self.linear_clients = linear_clients
        self.orchestrator = orchestrator
        self.router = router

    async def on_session_created(
        self, event: SessionCreatedEvent
    ) -> Optional[PendingWorkflowTrigger]:
        """Acknowledge a new session, then configure the team or dispatch.

        The acknowledgment goes out before any slow work so the user sees
        a response right away.

        Returns:
            The pending trigger when work was dispatched, otherwise None.

        Raises:
            CredentialsNotFoundError: If the workspace has no stored token.
            LinearAPIError: If the acknowledgment cannot be posted.
        """
        issue = event.issue
        await self.store.append_run_log(
            RunLogEntry(
                agent_session_id=event.agent_session_id,
                event_type=RunLogEvent.SESSION_CREATED,
                message=f"Session created for {issue.identifier}",
                metadata={
                    "issue_id": issue.id,
                    "issue_identifier": issue.identifier,
                    "team_id": issue.team_id,
                },
            )
        )

        async with await self.linear_clients.for_workspace(event.workspace_id) as linear:
            try:
                await linear.send_thought(event.agent_session_id, messages.ACKNOWLEDGE)
            except Exception as e:
                await self.store.append_run_log(
                    RunLogEntry(
                        agent_session_id=event.agent_session_id,
                        event_type=RunLogEvent.ERROR,
                        message="Failed to acknowledge session",
                        metadata={"error_type": type(e).__name__},
                    )
                )
                raise

            config = await self.store.get_team_config(event.workspace_id, issue.team_id)
            if config is None or not config.is_configured:
                await self.store.create_pending_config(
                    PendingConfig(
                        agent_session_id=event.agent_session_id,
                        linear_workspace_id=event.workspace_id,
                        linear_team_id=issue.team_id,
                        pending_issue_id=issue.id,
                        pending_issue_identifier=issue.identifier,
                    )
                )
                await linear.send_elicitation(
                    event.agent_session_id, messages.REQUEST_REPOSITORY
                )
                logger.info(
                    "Team not configured, requested repository",
                    extra={
                        "agent_session_id": event.agent_session_id,
                        "linear_team_id": issue.team_id,
                    },
                )
                return None

            return await self.orchestrator.dispatch(
                linear,
                event.agent_session_id,
                issue.id,
                issue.identifier,
                config,
            )

    async def on_session_prompted(self, event: SessionPromptedEvent) -> None:
        async with await self.linear_clients.for_workspace(event.workspace_id) as linear:
            await self.router.handle_prompt(linear, event)

    async def on_issue_unassigned(
        self, event: IssueUnassignedEvent
    ) -> Optional[WorkflowRun]:
        """Cancel any active workflow run for the unassigned issue."""
        await self.store.append_run_log(
            RunLogEntry(
                event_type=RunLogEvent.AGENT_UNASSIGNED,
                message=f"Agent unassigned from {event.issue_identifier or event.issue_id}",
                metadata={
                    "issue_id": event.issue_id,
                    "issue_identifier": event.issue_identifier,
                },
            )
        )

        return await self.orchestrator.cancel_for_issue(event.workspace_id, event.issue_id)

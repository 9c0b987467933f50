"""Routing of follow-up messages in an agent session.

A prompted session is handled in this order:
1. A pending configuration conversation consumes the message as an
   ``owner/repo`` reply.
2. An active workflow run for the issue gets a status update.
3. Otherwise the message is classified and acted on.

Source:
- src/relay/intent/classifier.py (IntentClassifier, parse_repository)
- src/relay/workflow/orchestrator.py (WorkflowOrchestrator.dispatch)
"""

import logging
from typing import Optional

from src.relay import messages
from src.relay.github.client import GitHubClient
from src.relay.github.models import RepoTarget
from src.relay.intent.classifier import (
    IntentClassifier,
    KeywordIntentClassifier,
    parse_repository,
)
from src.relay.intent.models import Intent, IntentContext
from src.relay.linear.client import LinearClient
from src.relay.store.base import CorrelationStore
from src.relay.store.models import (
    GitHubInstallation,
    PendingConfig,
    RunLogEntry,
    RunLogEvent,
    TeamConfig,
)
from src.relay.webhook.models import SessionPromptedEvent
from src.relay.workflow.orchestrator import WorkflowOrchestrator

logger = logging.getLogger(__name__)

# Prompt text stored in the run log is truncated to this many characters
RUN_LOG_MESSAGE_LIMIT = 500


class IntentRouter:
    """Acts on follow-up messages in an agent session.

    Attributes:
        store: Correlation state persistence.
        github: GitHub App client, used by the configuration conversation.
        orchestrator: Dispatches work once a team is configured.
        classifier: Maps free text to an Intent.
    """

    def __init__(
        self,
        store: CorrelationStore,
        github: GitHubClient,
        orchestrator: WorkflowOrchestrator,
        classifier: Optional[IntentClassifier] = None,
    ):
        self.store = store
        self.github = github
        self.orchestrator = orchestrator
        self.classifier = classifier or KeywordIntentClassifier()

    async def handle_prompt(
        self,
        linear: LinearClient,
        event: SessionPromptedEvent,
    ) -> Optional[Intent]:
        """Handle a user message in an existing session.

        Returns:
            The classified intent, or None when the message was consumed by
            the configuration conversation or answered with run status.
        """
        await self.store.append_run_log(
            RunLogEntry(
                agent_session_id=event.agent_session_id,
                event_type=RunLogEvent.SESSION_PROMPTED,
                message=event.message[:RUN_LOG_MESSAGE_LIMIT],
                metadata={
                    "issue_identifier": event.issue.identifier,
                    "activity_id": event.activity_id,
                },
            )
        )

        pending = await self.store.get_pending_config(event.agent_session_id)
        if pending is not None:
            await self.configure_team(linear, event, pending)
            return None

        run = await self.store.get_active_workflow_run_by_issue(event.issue.id)
        if run is not None:
            await linear.send_thought(
                event.agent_session_id, messages.run_status(run.status)
            )
            return None

        config = await self.store.get_team_config(event.workspace_id, event.issue.team_id)
        intent = self.classifier.classify(
            event.message,
            IntentContext(
                team_configured=config is not None and config.is_configured,
                issue_identifier=event.issue.identifier,
            ),
        )
        logger.info(
            "Routing prompted session",
            extra={
                "agent_session_id": event.agent_session_id,
                "intent": intent.value,
            },
        )

        if intent == Intent.TEAM_UNCONFIGURED:
            await linear.send_elicitation(
                event.agent_session_id, messages.TEAM_UNCONFIGURED
            )
        elif intent == Intent.REQUEST_WORK:
            await linear.send_thought(
                event.agent_session_id, messages.NEW_IMPLEMENTATION
            )
            await self.orchestrator.dispatch(
                linear,
                event.agent_session_id,
                event.issue.id,
                event.issue.identifier,
                config,
            )
        elif intent == Intent.REQUEST_STATUS:
            await linear.send_response(event.agent_session_id, messages.NO_ACTIVE_WORK)
        else:
            await linear.send_elicitation(
                event.agent_session_id, messages.UNCLEAR_REQUEST
            )
        return intent

    async def configure_team(
        self,
        linear: LinearClient,
        event: SessionPromptedEvent,
        pending: PendingConfig,
    ) -> Optional[TeamConfig]:
        """Treat the message as an ``owner/repo`` reply and configure the team.

        On success the pending issue is dispatched immediately.

        Returns:
            The stored TeamConfig, or None if the user was asked again.
        """
        repository = parse_repository(event.message)
        if repository is None:
            await linear.send_elicitation(
                event.agent_session_id, messages.REPOSITORY_NOT_PARSED
            )
            return None

        installation = await self.github.get_repo_installation(
            repository.owner, repository.repo
        )
        if installation is None:
            await linear.send_elicitation(
                event.agent_session_id,
                messages.app_not_installed(
                    repository.owner, repository.repo, self.github.install_url()
                ),
            )
            return None

        target = RepoTarget(
            installation_id=installation.installation_id,
            owner=repository.owner,
            repo=repository.repo,
        )
        default_branch = await self.github.get_default_branch(target)

        await self.store.upsert_installation(
            GitHubInstallation(
                installation_id=installation.installation_id,
                account_login=installation.account_login,
                account_type=installation.account_type,
            )
        )
        config = await self.store.upsert_team_config(
            TeamConfig(
                linear_workspace_id=pending.linear_workspace_id,
                linear_team_id=pending.linear_team_id,
                linear_team_name=event.issue.team_name,
                github_installation_id=installation.installation_id,
                github_owner=repository.owner,
                github_repo=repository.repo,
                github_branch=default_branch,
            )
        )
        await self.store.delete_pending_config(event.agent_session_id)

        await linear.send_thought(
            event.agent_session_id,
            messages.configured(repository.owner, repository.repo, default_branch),
        )
        await self.store.append_run_log(
            RunLogEntry(
                agent_session_id=event.agent_session_id,
                event_type=RunLogEvent.TEAM_CONFIGURED,
                message=f"Configured team {pending.linear_team_id} for {repository.full_name}",
                metadata={
                    "repository": repository.full_name,
                    "branch": default_branch,
                    "installation_id": installation.installation_id,
                },
            )
        )
        logger.info(
            "Configured team",
            extra={
                "linear_team_id": pending.linear_team_id,
                "repository": repository.full_name,
                "branch": default_branch,
            },
        )

        await self.orchestrator.dispatch(
            linear,
            event.agent_session_id,
            pending.pending_issue_id,
            pending.pending_issue_identifier,
            config,
        )
        return config

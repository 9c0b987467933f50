"""Webhook intake pipeline shared by the Linear and GitHub endpoints.

Every delivery goes through the same steps:
1. Verify the signature (401 on failure, nothing else happens)
2. Decode and parse the payload (400 for bad JSON, "ignored" for events
   the relay does not handle)
3. Check the idempotency ledger ("already_processed" for repeats)
4. Mark the delivery processed
5. Run the handler for the event variant

Handler failures are logged, recorded in the run log when possible, and
answered with 200 ``{"status": "error"}`` so the sender does not retry.

Source:
- src/relay/webhook/signature.py (signature verification)
- src/relay/webhook/handler.py (WebhookParser)
- src/relay/store/ledger.py (IdempotencyLedger)
"""

import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from pydantic import BaseModel, Field

from src.relay.events.emitter import EventEmitter
from src.relay.events.models import EventType, RelayEvent
from src.relay.sessions import SessionHandler
from src.relay.store.base import CorrelationStore
from src.relay.store.ledger import IdempotencyLedger, github_webhook_id
from src.relay.store.models import (
    GitHubInstallation,
    RunLogEntry,
    RunLogEvent,
    WebhookSource,
)
from src.relay.webhook.handler import WebhookParser, linear_webhook_id
from src.relay.webhook.models import (
    GitHubEvent,
    InstallationEvent,
    IssueUnassignedEvent,
    LinearEvent,
    PullRequestEvent,
    SessionCreatedEvent,
    SessionPromptedEvent,
    WorkflowRunEvent,
)
from src.relay.webhook.signature import (
    verify_github_signature,
    verify_linear_signature,
)
from src.relay.workflow.orchestrator import WorkflowOrchestrator

logger = logging.getLogger(__name__)


class WebhookStatus(str, Enum):
    """Value of the ``status`` field in a 200 response."""

    OK = "ok"
    IGNORED = "ignored"
    ALREADY_PROCESSED = "already_processed"
    ERROR = "error"


class WebhookResult(BaseModel):
    """HTTP response for a webhook delivery."""

    status_code: int = 200
    body: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def for_status(cls, status: WebhookStatus) -> "WebhookResult":
        return cls(status_code=200, body={"status": status.value})


INVALID_SIGNATURE = WebhookResult(status_code=401, body={"error": "Invalid signature"})
INVALID_JSON = WebhookResult(status_code=400, body={"error": "Invalid JSON"})


class WebhookProcessor:
    """Verifies, deduplicates and routes webhook deliveries.

    Attributes:
        store: Correlation state persistence.
        ledger: Records processed deliveries.
        sessions: Handles Linear agent session events.
        orchestrator: Handles workflow_run events.
        event_emitter: Emits WEBHOOK_PROCESSED and ERROR events.
        parser: Turns payloads into event variants.
    """

    def __init__(
        self,
        store: CorrelationStore,
        sessions: SessionHandler,
        orchestrator: WorkflowOrchestrator,
        event_emitter: EventEmitter,
        linear_webhook_secret: str,
        github_webhook_secret: str,
        ledger: Optional[IdempotencyLedger] = None,
        parser: Optional[WebhookParser] = None,
    ):
        self.store = store
        self.sessions = sessions
        self.orchestrator = orchestrator
        self.event_emitter = event_emitter
        self._linear_secret = linear_webhook_secret
        self._github_secret = github_webhook_secret
        self.ledger = ledger or IdempotencyLedger(store)
        self.parser = parser or WebhookParser()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process_linear(
        self, body: bytes, signature: Optional[str]
    ) -> WebhookResult:
        """Process a delivery to ``POST /webhook/linear``.

        Args:
            body: The raw request body, exactly as signed.
            signature: The ``Linear-Signature`` header.
        """
        source = WebhookSource.LINEAR
        if not verify_linear_signature(body, signature or "", self._linear_secret):
            logger.warning("Rejected Linear webhook with invalid signature")
            return await self._finish(source, INVALID_SIGNATURE, "invalid_signature")

        payload = self._decode(body)
        if payload is None:
            return await self._finish(source, INVALID_JSON, "invalid_json")

        event = self.parser.parse_linear(payload)
        if event is None:
            return await self._finish(
                source, WebhookResult.for_status(WebhookStatus.IGNORED)
            )

        return await self._process(
            source, linear_webhook_id(event), event, self._handle_linear
        )

    async def process_github(
        self,
        body: bytes,
        signature: Optional[str],
        event_type: Optional[str],
        delivery_id: Optional[str],
    ) -> WebhookResult:
        """Process a delivery to ``POST /webhook/github``.

        Args:
            body: The raw request body, exactly as signed.
            signature: The ``X-Hub-Signature-256`` header.
            event_type: The ``X-GitHub-Event`` header.
            delivery_id: The ``X-GitHub-Delivery`` header.
        """
        source = WebhookSource.GITHUB
        if not verify_github_signature(body, signature or "", self._github_secret):
            logger.warning(
                "Rejected GitHub webhook with invalid signature",
                extra={"event_type": event_type, "delivery_id": delivery_id},
            )
            return await self._finish(source, INVALID_SIGNATURE, "invalid_signature")

        payload = self._decode(body)
        if payload is None:
            return await self._finish(source, INVALID_JSON, "invalid_json")

        event = self.parser.parse_github(event_type, payload)
        if event is None:
            return await self._finish(
                source, WebhookResult.for_status(WebhookStatus.IGNORED)
            )

        return await self._process(
            source,
            github_webhook_id(event_type, delivery_id),
            event,
            self._handle_github,
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    @staticmethod
    def _decode(body: bytes) -> Optional[Any]:
        try:
            return json.loads(body)
        except ValueError:
            logger.warning("Webhook body is not valid JSON")
            return None

    async def _process(
        self,
        source: WebhookSource,
        webhook_id: str,
        event: Union[LinearEvent, GitHubEvent],
        handler: Callable[[Any], Awaitable[None]],
    ) -> WebhookResult:
        try:
            if await self.ledger.is_processed(webhook_id, source):
                logger.info(
                    "Skipping already processed webhook",
                    extra={"webhook_id": webhook_id, "source": source.value},
                )
                return await self._finish(
                    source, WebhookResult.for_status(WebhookStatus.ALREADY_PROCESSED)
                )

            # Marked before handling: a handler failure is never retried
            await self.ledger.mark_processed(webhook_id, source)
            await handler(event)
        except Exception as e:
            logger.exception(
                "Failed to process webhook",
                extra={
                    "webhook_id": webhook_id,
                    "source": source.value,
                    "event_kind": event.kind,
                },
            )
            await self._record_failure(source, webhook_id, event, e)
            return await self._finish(
                source, WebhookResult.for_status(WebhookStatus.ERROR)
            )

        logger.info(
            "Processed webhook",
            extra={
                "webhook_id": webhook_id,
                "source": source.value,
                "event_kind": event.kind,
            },
        )
        return await self._finish(source, WebhookResult.for_status(WebhookStatus.OK))

    async def _record_failure(
        self,
        source: WebhookSource,
        webhook_id: str,
        event: Union[LinearEvent, GitHubEvent],
        error: Exception,
    ) -> None:
        try:
            await self.store.append_run_log(
                RunLogEntry(
                    agent_session_id=getattr(event, "agent_session_id", None),
                    event_type=RunLogEvent.WEBHOOK_ERROR,
                    message=f"Failed to process {source.value} {event.kind} webhook",
                    metadata={
                        "webhook_id": webhook_id,
                        "error_type": type(error).__name__,
                    },
                )
            )
        except Exception:
            logger.exception(
                "Failed to record webhook error in run log",
                extra={"webhook_id": webhook_id},
            )

        await self._safe_emit(
            RelayEvent(
                event_type=EventType.ERROR,
                subject=webhook_id,
                details={
                    "stage": f"{source.value}_{event.kind}",
                    "error_type": type(error).__name__,
                },
            )
        )

    async def _finish(
        self,
        source: WebhookSource,
        result: WebhookResult,
        outcome: Optional[str] = None,
    ) -> WebhookResult:
        await self._safe_emit(
            RelayEvent(
                event_type=EventType.WEBHOOK_PROCESSED,
                subject=source.value,
                details={
                    "source": source.value,
                    "outcome": outcome or result.body.get("status", "unknown"),
                },
            )
        )
        return result

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def _handle_linear(self, event: LinearEvent) -> None:
        if isinstance(event, SessionCreatedEvent):
            await self.sessions.on_session_created(event)
        elif isinstance(event, SessionPromptedEvent):
            await self.sessions.on_session_prompted(event)
        elif isinstance(event, IssueUnassignedEvent):
            await self.sessions.on_issue_unassigned(event)
        else:
            raise TypeError(f"Unhandled Linear event: {type(event).__name__}")

    async def _handle_github(self, event: GitHubEvent) -> None:
        if isinstance(event, WorkflowRunEvent):
            await self.orchestrator.handle_workflow_run(event)
        elif isinstance(event, InstallationEvent):
            await self._handle_installation(event)
        elif isinstance(event, PullRequestEvent):
            logger.info(
                "Pull request %s",
                event.action,
                extra={
                    "repository": f"{event.owner}/{event.repo}",
                    "pr_number": event.number,
                    "head_ref": event.head_ref,
                },
            )
        else:
            raise TypeError(f"Unhandled GitHub event: {type(event).__name__}")

    async def _handle_installation(self, event: InstallationEvent) -> None:
        if event.action == "created":
            await self.store.upsert_installation(
                GitHubInstallation(
                    installation_id=event.installation_id,
                    account_login=event.account_login,
                    account_type=event.account_type,
                )
            )
            await self.store.append_run_log(
                RunLogEntry(
                    event_type=RunLogEvent.GITHUB_APP_INSTALLED,
                    message=f"GitHub App installed on {event.account_login}",
                    metadata={"installation_id": event.installation_id},
                )
            )
        elif event.action == "deleted":
            await self.store.delete_installation(event.installation_id)
            await self.store.append_run_log(
                RunLogEntry(
                    event_type=RunLogEvent.GITHUB_APP_UNINSTALLED,
                    message=f"GitHub App uninstalled from {event.account_login}",
                    metadata={"installation_id": event.installation_id},
                )
            )
        else:
            logger.debug(
                "Ignoring installation action: %s",
                event.action,
                extra={"installation_id": event.installation_id},
            )

    async def _safe_emit(self, event: RelayEvent) -> None:
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit relay event",
                extra={"event_type": event.event_type.value},
            )

"""Idempotency ledger for inbound webhooks.

Every delivery is reduced to a stable webhook id and recorded before its
handlers run. A delivery whose id is already recorded is acknowledged
without side effects. Recording before handling means a crash mid-handler
is never retried: at-most-once, not exactly-once.
"""

import logging
import time
from typing import Optional

from src.relay.store.base import CorrelationStore
from src.relay.store.models import WebhookSource

logger = logging.getLogger(__name__)


def _now_millis() -> int:
    return int(time.time() * 1000)


def linear_session_webhook_id(
    agent_session_id: str,
    action: str,
    activity_id: Optional[str] = None,
) -> str:
    """Webhook id for an agent session event.

    >>> linear_session_webhook_id("s1", "created")
    'linear-session-s1-created'
    >>> linear_session_webhook_id("s1", "prompted", "a9")
    'linear-session-s1-prompted-a9'
    """
    if activity_id:
        return f"linear-session-{agent_session_id}-{action}-{activity_id}"
    return f"linear-session-{agent_session_id}-{action}"


def linear_unassign_webhook_id(
    issue_id: str,
    webhook_timestamp: Optional[int] = None,
) -> str:
    """Webhook id for an unassignment notification.

    Redeliveries of one notification share ``webhookTimestamp``; when the
    payload lacks it the current time is used and the event is not
    deduplicated.
    """
    stamp = webhook_timestamp if webhook_timestamp is not None else _now_millis()
    return f"linear-unassign-{issue_id}-{stamp}"


def github_webhook_id(event_type: str, delivery_id: Optional[str]) -> str:
    """Webhook id for a GitHub delivery.

    >>> github_webhook_id("workflow_run", "abc")
    'github-workflow_run-abc'
    """
    return f"github-{event_type}-{delivery_id or _now_millis()}"


class IdempotencyLedger:
    """Records which webhook deliveries have been processed."""

    def __init__(self, store: CorrelationStore):
        self.store = store

    async def is_processed(self, webhook_id: str, source: WebhookSource) -> bool:
        return await self.store.is_webhook_processed(webhook_id, source)

    async def mark_processed(self, webhook_id: str, source: WebhookSource) -> None:
        """Record a delivery. Marking an already-recorded id is a no-op."""
        inserted = await self.store.mark_webhook_processed(webhook_id, source)
        if not inserted:
            logger.debug(
                "Webhook already marked processed",
                extra={"webhook_id": webhook_id, "source": source.value},
            )

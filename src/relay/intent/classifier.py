"""Intent classification for follow-up messages.

IntentClassifier is the seam; KeywordIntentClassifier is the default and
only implementation. Work markers are checked before status markers, so
"fix the progress bar" is a work request.
"""

import logging
import re
from typing import Optional, Protocol, Tuple, runtime_checkable

from src.relay.intent.models import Intent, IntentContext, RepositoryRef


logger = logging.getLogger(__name__)


WORK_MARKERS: Tuple[str, ...] = (
    "implement",
    "work on",
    "fix",
    "add",
    "update",
    "change",
)

STATUS_MARKERS: Tuple[str, ...] = (
    "status",
    "progress",
    "how's it going",
)

REPOSITORY_PATTERN = re.compile(r"([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)")


@runtime_checkable
class IntentClassifier(Protocol):
    """Maps a user message to an Intent."""

    def classify(self, text: str, context: IntentContext) -> Intent:
        ...


class KeywordIntentClassifier:
    """Classifies by lowercase substring containment.

    Example:
        >>> classifier = KeywordIntentClassifier()
        >>> classifier.classify("please fix it", IntentContext(team_configured=True))
        <Intent.REQUEST_WORK: 'request_work'>
    """

    def __init__(
        self,
        work_markers: Tuple[str, ...] = WORK_MARKERS,
        status_markers: Tuple[str, ...] = STATUS_MARKERS,
    ):
        self.work_markers = work_markers
        self.status_markers = status_markers

    def classify(self, text: str, context: IntentContext) -> Intent:
        if not context.team_configured:
            return Intent.TEAM_UNCONFIGURED

        lowered = text.lower()
        if any(marker in lowered for marker in self.work_markers):
            intent = Intent.REQUEST_WORK
        elif any(marker in lowered for marker in self.status_markers):
            intent = Intent.REQUEST_STATUS
        else:
            intent = Intent.UNCLEAR

        logger.debug(
            "Classified message intent: %s",
            intent.value,
            extra={"issue_identifier": context.issue_identifier},
        )
        return intent


def parse_repository(text: str) -> Optional[RepositoryRef]:
    """Find the first ``owner/repo`` in free text.

    >>> parse_repository("use acme/backend please").full_name
    'acme/backend'
    >>> parse_repository("no repository here") is None
    True
    """
    match = REPOSITORY_PATTERN.search(text)
    if match is None:
        return None
    return RepositoryRef(owner=match.group(1), repo=match.group(2))

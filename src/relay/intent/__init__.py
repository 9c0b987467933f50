"""Intent routing for follow-up messages in agent sessions."""

from src.relay.intent.classifier import (
    IntentClassifier,
    KeywordIntentClassifier,
    parse_repository,
)
from src.relay.intent.models import Intent, IntentContext, RepositoryRef
from src.relay.intent.router import IntentRouter

__all__ = [
    "Intent",
    "IntentContext",
    "RepositoryRef",
    "IntentClassifier",
    "KeywordIntentClassifier",
    "parse_repository",
    "IntentRouter",
]

"""Linear API integration: agent activities, issue context and credentials."""

from src.relay.linear.client import LinearAPIError, LinearClient
from src.relay.linear.models import (
    ActionContent,
    ActivityContent,
    ElicitationContent,
    ErrorContent,
    IssueContext,
    ResponseContent,
    ThoughtContent,
)
from src.relay.linear.oauth import (
    CredentialsNotFoundError,
    LinearClientFactory,
    OAuthTokenService,
)

__all__ = [
    "LinearAPIError",
    "LinearClient",
    "LinearClientFactory",
    "OAuthTokenService",
    "CredentialsNotFoundError",
    "ActivityContent",
    "ActionContent",
    "ElicitationContent",
    "ErrorContent",
    "IssueContext",
    "ResponseContent",
    "ThoughtContent",
]

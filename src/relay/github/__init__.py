"""GitHub App integration for workflow dispatch and pull request lookup."""

from src.relay.github.auth import generate_app_jwt
from src.relay.github.client import GitHubAPIError, GitHubClient
from src.relay.github.models import PullRequestRef, RepoInstallation, RepoTarget

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "PullRequestRef",
    "RepoInstallation",
    "RepoTarget",
    "generate_app_jwt",
]

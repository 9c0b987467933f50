"""GitHub API models used by the relay."""

from typing import Optional

from pydantic import BaseModel, Field


class RepoTarget(BaseModel):
    """A repository reached through a GitHub App installation."""

    installation_id: int
    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class RepoInstallation(BaseModel):
    """The App installation that grants access to a repository."""

    installation_id: int
    account_login: str
    account_type: str = "User"


class PullRequestRef(BaseModel):
    """The subset of a pull request the relay reports back."""

    number: int
    html_url: str
    title: str = ""
    head_ref: Optional[str] = None

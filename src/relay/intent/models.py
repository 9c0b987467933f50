"""Intent models for follow-up messages in an agent session."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Intent(str, Enum):
    """What a user wants from a follow-up message.

    Attributes:
        TEAM_UNCONFIGURED: The team has no repository configured yet.
        REQUEST_WORK: Start a new implementation.
        REQUEST_STATUS: Report on existing work.
        UNCLEAR: Nothing recognizable; ask the user to choose.
    """

    TEAM_UNCONFIGURED = "team_unconfigured"
    REQUEST_WORK = "request_work"
    REQUEST_STATUS = "request_status"
    UNCLEAR = "unclear"


class IntentContext(BaseModel):
    """Session state the classifier may take into account."""

    team_configured: bool = Field(
        ...,
        description="Whether the issue's team has a repository configured",
    )
    issue_identifier: Optional[str] = Field(
        default=None,
        description="Human identifier of the session's issue",
    )


class RepositoryRef(BaseModel):
    """An ``owner/repo`` pair typed by the user."""

    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

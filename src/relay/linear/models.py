"""Linear agent activity content and issue context models.

Agent activities are the conversational updates shown in a Linear agent
session. Each content type is a tagged variant serialized as the
``content`` input of the ``agentActivityCreate`` mutation.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class ThoughtContent(BaseModel):
    """Ephemeral progress note."""

    type: Literal["thought"] = "thought"
    body: str


class ActionContent(BaseModel):
    """A tool-style step, e.g. ``Starting`` / ``Implementation workflow``."""

    type: Literal["action"] = "action"
    action: str
    parameter: str
    result: Optional[str] = None


class ElicitationContent(BaseModel):
    """A question that expects a reply from the user."""

    type: Literal["elicitation"] = "elicitation"
    body: str


class ResponseContent(BaseModel):
    """Final answer for the session."""

    type: Literal["response"] = "response"
    body: str


class ErrorContent(BaseModel):
    """User-visible failure."""

    type: Literal["error"] = "error"
    body: str


ActivityContent = Union[
    ThoughtContent,
    ActionContent,
    ElicitationContent,
    ResponseContent,
    ErrorContent,
]


class IssueComment(BaseModel):
    id: str
    body: str
    author: str = "Unknown"
    created_at: str = Field(default="", serialization_alias="createdAt")


class LinkedIssue(BaseModel):
    identifier: str
    title: str
    relation: str


class IssueReference(BaseModel):
    identifier: str
    title: str


class IssueAttachment(BaseModel):
    title: Optional[str] = None
    url: str


class IssueContext(BaseModel):
    """Everything about a Linear issue that the workflow receives as input."""

    identifier: str
    title: str
    description: Optional[str] = None
    comments: List[IssueComment] = Field(default_factory=list)
    linked_issues: List[LinkedIssue] = Field(default_factory=list)
    parent_issue: Optional[IssueReference] = None
    attachments: List[IssueAttachment] = Field(default_factory=list)

    def workflow_context(self) -> Dict[str, Any]:
        """The JSON-serializable ``ticket_context`` workflow input."""
        return {
            "comments": [c.model_dump(by_alias=True) for c in self.comments],
            "linkedIssues": [i.model_dump() for i in self.linked_issues],
            "parentIssue": self.parent_issue.model_dump()
            if self.parent_issue
            else None,
            "attachments": [a.model_dump() for a in self.attachments],
        }

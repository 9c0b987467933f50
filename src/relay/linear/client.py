"""Linear GraphQL client for agent session activities.

This module provides an async wrapper around the Linear API for:
- Posting agent activities (thought, action, elicitation, response, error)
- Fetching issue context for workflow inputs
- Attaching pull request links to issues

A client is bound to one workspace access token. Tokens are resolved per
request by LinearClientFactory, so no credential outlives a request.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from src.relay.linear.models import (
    ActionContent,
    ActivityContent,
    ElicitationContent,
    ErrorContent,
    IssueAttachment,
    IssueComment,
    IssueContext,
    IssueReference,
    LinkedIssue,
    ResponseContent,
    ThoughtContent,
)


logger = logging.getLogger(__name__)


DEFAULT_API_URL = "https://api.linear.app/graphql"

CREATE_AGENT_ACTIVITY = """
mutation CreateAgentActivity($input: AgentActivityCreateInput!) {
  agentActivityCreate(input: $input) {
    success
  }
}
"""

GET_ISSUE_CONTEXT = """
query GetIssueContext($id: String!) {
  issue(id: $id) {
    identifier
    title
    description
    comments {
      nodes {
        id
        body
        user {
          name
        }
        createdAt
      }
    }
    relations {
      nodes {
        type
        relatedIssue {
          identifier
          title
        }
      }
    }
    parent {
      identifier
      title
    }
    attachments {
      nodes {
        title
        url
      }
    }
  }
}
"""

CREATE_ATTACHMENT = """
mutation CreateAttachment($input: AttachmentCreateInput!) {
  attachmentCreate(input: $input) {
    success
  }
}
"""


class LinearAPIError(Exception):
    """Raised when a Linear API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code, if the failure was at the HTTP level.
        errors: GraphQL error objects returned by Linear, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[list] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.errors = errors or []
        super().__init__(message)


class LinearClient:
    """Async Linear GraphQL client bound to one workspace token.

    Example:
        >>> async with LinearClient(token="lin_oauth_xxx") as linear:
        ...     await linear.send_thought("session-id", "Looking at this issue...")
    """

    def __init__(
        self,
        token: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the Linear client.

        Args:
            token: OAuth access token for the workspace.
            api_url: GraphQL endpoint.
            timeout: Request timeout in seconds.
            http_client: Shared connection pool. When given, the client
                borrows it and never closes it.
        """
        self.token = token
        self.api_url = api_url
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def close(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LinearClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _graphql(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Execute a GraphQL operation and return its ``data`` object.

        Raises:
            LinearAPIError: On HTTP errors or when the response carries
                GraphQL ``errors``.
        """
        response = await self.client.post(
            self.api_url,
            headers=self._headers(),
            json={"query": query, "variables": variables or {}},
        )

        if response.status_code >= 400:
            logger.error(
                "Linear API error",
                extra={
                    "status_code": response.status_code,
                    "response_body": response.text[:500],
                },
            )
            raise LinearAPIError(
                f"Linear API error: {response.status_code}",
                status_code=response.status_code,
            )

        body = response.json()
        errors = body.get("errors") or []
        if errors:
            first = errors[0].get("message", "unknown error")
            logger.error(
                "Linear GraphQL error",
                extra={"error": first, "error_count": len(errors)},
            )
            raise LinearAPIError(f"Linear GraphQL error: {first}", errors=errors)

        return body.get("data") or {}

    # ------------------------------------------------------------------
    # Agent activities
    # ------------------------------------------------------------------

    async def create_agent_activity(
        self,
        agent_session_id: str,
        content: ActivityContent,
    ) -> None:
        """Post an activity to an agent session."""
        logger.info(
            "Creating agent activity",
            extra={"agent_session_id": agent_session_id, "type": content.type},
        )
        await self._graphql(
            CREATE_AGENT_ACTIVITY,
            {
                "input": {
                    "agentSessionId": agent_session_id,
                    "content": content.model_dump(exclude_none=True),
                }
            },
        )

    async def send_thought(self, agent_session_id: str, body: str) -> None:
        await self.create_agent_activity(agent_session_id, ThoughtContent(body=body))

    async def send_action(
        self,
        agent_session_id: str,
        action: str,
        parameter: str,
        result: Optional[str] = None,
    ) -> None:
        await self.create_agent_activity(
            agent_session_id,
            ActionContent(action=action, parameter=parameter, result=result),
        )

    async def send_elicitation(self, agent_session_id: str, body: str) -> None:
        await self.create_agent_activity(
            agent_session_id, ElicitationContent(body=body)
        )

    async def send_response(self, agent_session_id: str, body: str) -> None:
        await self.create_agent_activity(agent_session_id, ResponseContent(body=body))

    async def send_error(self, agent_session_id: str, body: str) -> None:
        await self.create_agent_activity(agent_session_id, ErrorContent(body=body))

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def get_issue_context(self, issue_id: str) -> IssueContext:
        """Fetch an issue with its comments, relations, parent and attachments.

        Args:
            issue_id: Linear issue id (not the identifier).

        Returns:
            The issue context.

        Raises:
            LinearAPIError: If the request fails or the issue is missing.
        """
        data = await self._graphql(GET_ISSUE_CONTEXT, {"id": issue_id})
        issue = data.get("issue")
        if not issue:
            raise LinearAPIError(f"Linear issue not found: {issue_id}")

        comments = [
            IssueComment(
                id=c["id"],
                body=c.get("body") or "",
                author=(c.get("user") or {}).get("name") or "Unknown",
                created_at=c.get("createdAt") or "",
            )
            for c in (issue.get("comments") or {}).get("nodes", [])
        ]
        linked = [
            LinkedIssue(
                identifier=r["relatedIssue"]["identifier"],
                title=r["relatedIssue"]["title"],
                relation=r["type"],
            )
            for r in (issue.get("relations") or {}).get("nodes", [])
            if r.get("relatedIssue")
        ]
        parent = issue.get("parent")
        attachments = [
            IssueAttachment(title=a.get("title"), url=a["url"])
            for a in (issue.get("attachments") or {}).get("nodes", [])
        ]

        return IssueContext(
            identifier=issue["identifier"],
            title=issue["title"],
            description=issue.get("description"),
            comments=comments,
            linked_issues=linked,
            parent_issue=IssueReference(**parent) if parent else None,
            attachments=attachments,
        )

    async def create_attachment(self, issue_id: str, title: str, url: str) -> None:
        """Attach a link, e.g. a pull request, to an issue."""
        logger.info(
            "Creating issue attachment",
            extra={"issue_id": issue_id, "title": title},
        )
        await self._graphql(
            CREATE_ATTACHMENT,
            {"input": {"issueId": issue_id, "title": title, "url": url}},
        )

"""GitHub API client for Actions dispatch and pull request lookup.

This module provides an async wrapper around the GitHub API for:
- Listing branches and reading the default branch
- Dispatching and cancelling workflow runs
- Finding pull requests by head branch or by title
- Resolving the App installation for a repository

Every repository call authenticates with an installation access token
minted from the App JWT. Failures are surfaced as GitHubAPIError and are
not retried.

Source:
- src/relay/github/auth.py (generate_app_jwt)
- src/relay/github/models.py (RepoTarget, PullRequestRef, RepoInstallation)
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from src.relay.github.auth import generate_app_jwt
from src.relay.github.models import PullRequestRef, RepoInstallation, RepoTarget


logger = logging.getLogger(__name__)


BRANCHES_PER_PAGE = 100

# Open pull requests scanned when falling back to a title search
TITLE_SEARCH_LIMIT = 10


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class GitHubClient:
    """Async GitHub App client.

    Attributes:
        app_id: GitHub App id.
        private_key: PEM private key of the App.
        app_slug: Public slug of the App, used in install links.
        base_url: Base URL for GitHub API (default: https://api.github.com).
        web_url: Base URL for browser links (default: https://github.com).
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubClient(app_id="123", private_key=pem) as github:
        ...     target = RepoTarget(installation_id=1, owner="acme", repo="api")
        ...     names = await github.list_branch_names(target)
    """

    def __init__(
        self,
        app_id: str,
        private_key: str,
        app_slug: str = "linear-code-agent",
        base_url: str = "https://api.github.com",
        web_url: str = "https://github.com",
        timeout: float = 30.0,
    ):
        self.app_id = app_id
        self.private_key = private_key
        self.app_slug = app_slug
        self.base_url = base_url.rstrip("/")
        self.web_url = web_url.rstrip("/")
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "linear-agent-relay/1.0",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an authenticated request.

        Args:
            method: HTTP method.
            path: API path (e.g., /repos/owner/repo/branches).
            token: Bearer credential, an App JWT or installation token.
            json_data: Optional JSON body.
            params: Optional query parameters.

        Returns:
            The HTTP response.

        Raises:
            GitHubAPIError: If the response status is 400 or above.
        """
        response = await self.client.request(
            method=method,
            url=path,
            json=json_data,
            params=params,
            headers={"Authorization": f"Bearer {token}"},
        )

        if response.status_code >= 400:
            error_body = response.text
            logger.error(
                "GitHub API error",
                extra={
                    "status_code": response.status_code,
                    "path": path,
                    "method": method,
                    "response_body": error_body[:500],
                },
            )
            raise GitHubAPIError(
                message=f"GitHub API error: {response.status_code}",
                status_code=response.status_code,
                response_body=error_body,
                request_url=str(response.url),
            )

        return response

    # ------------------------------------------------------------------
    # App authentication
    # ------------------------------------------------------------------

    def _app_jwt(self) -> str:
        return generate_app_jwt(self.app_id, self.private_key)

    async def get_installation_token(self, installation_id: int) -> str:
        """Exchange the App JWT for an installation access token."""
        response = await self._request(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            token=self._app_jwt(),
        )
        return response.json()["token"]

    async def get_repo_installation(
        self, owner: str, repo: str
    ) -> Optional[RepoInstallation]:
        """Return the App installation covering a repository.

        Returns:
            The installation, or None when the App is not installed there.

        Raises:
            GitHubAPIError: For failures other than 404.
        """
        try:
            response = await self._request(
                "GET",
                f"/repos/{owner}/{repo}/installation",
                token=self._app_jwt(),
            )
        except GitHubAPIError as e:
            if e.status_code == 404:
                logger.info(
                    "GitHub App not installed on repository",
                    extra={"repository": f"{owner}/{repo}"},
                )
                return None
            raise

        data = response.json()
        account = data.get("account") or {}
        return RepoInstallation(
            installation_id=data["id"],
            account_login=account.get("login", owner),
            account_type=account.get("type", "User"),
        )

    def install_url(self) -> str:
        """Browser link for installing the App."""
        return f"{self.web_url}/apps/{self.app_slug}/installations/new"

    def run_url(self, owner: str, repo: str, run_id: int) -> str:
        """Browser link to a workflow run's logs."""
        return f"{self.web_url}/{owner}/{repo}/actions/runs/{run_id}"

    # ------------------------------------------------------------------
    # Repository operations
    # ------------------------------------------------------------------

    async def get_default_branch(self, target: RepoTarget) -> str:
        token = await self.get_installation_token(target.installation_id)
        response = await self._request(
            "GET", f"/repos/{target.owner}/{target.repo}", token=token
        )
        return response.json().get("default_branch") or "main"

    async def list_branch_names(self, target: RepoTarget) -> List[str]:
        """List every branch name in the repository."""
        token = await self.get_installation_token(target.installation_id)
        names: List[str] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                f"/repos/{target.owner}/{target.repo}/branches",
                token=token,
                params={"per_page": BRANCHES_PER_PAGE, "page": page},
            )
            batch = response.json()
            names.extend(b["name"] for b in batch)
            if len(batch) < BRANCHES_PER_PAGE:
                break
            page += 1

        logger.debug(
            "Listed branches",
            extra={"repository": target.full_name, "count": len(names)},
        )
        return names

    async def dispatch_workflow(
        self,
        target: RepoTarget,
        workflow_file: str,
        ref: str,
        inputs: Dict[str, str],
    ) -> None:
        """Trigger a workflow_dispatch run.

        GitHub does not return the run id; the run is correlated later
        from its workflow_run webhook.
        """
        token = await self.get_installation_token(target.installation_id)
        logger.info(
            "Dispatching workflow",
            extra={
                "repository": target.full_name,
                "workflow": workflow_file,
                "ref": ref,
            },
        )
        await self._request(
            "POST",
            f"/repos/{target.owner}/{target.repo}/actions/workflows/{workflow_file}/dispatches",
            token=token,
            json_data={"ref": ref, "inputs": inputs},
        )

    async def cancel_workflow_run(self, target: RepoTarget, run_id: int) -> None:
        """Cancel a workflow run.

        Raises:
            GitHubAPIError: For failures other than 409 (run already finished).
        """
        token = await self.get_installation_token(target.installation_id)
        try:
            await self._request(
                "POST",
                f"/repos/{target.owner}/{target.repo}/actions/runs/{run_id}/cancel",
                token=token,
            )
        except GitHubAPIError as e:
            # 409 means the run already finished
            if e.status_code == 409:
                logger.info(
                    "Workflow run already finished",
                    extra={"repository": target.full_name, "run_id": run_id},
                )
                return
            raise
        logger.info(
            "Cancelled workflow run",
            extra={"repository": target.full_name, "run_id": run_id},
        )

    async def list_pull_requests_for_branch(
        self, target: RepoTarget, branch: str
    ) -> List[PullRequestRef]:
        """Open pull requests whose head is ``branch`` in the target repo."""
        token = await self.get_installation_token(target.installation_id)
        response = await self._request(
            "GET",
            f"/repos/{target.owner}/{target.repo}/pulls",
            token=token,
            params={"head": f"{target.owner}:{branch}", "state": "open"},
        )
        return [_to_pull_request(pr) for pr in response.json()]

    async def search_pull_requests_by_title(
        self, target: RepoTarget, term: str
    ) -> List[PullRequestRef]:
        """Recent open pull requests whose title contains ``term``.

        Matching is case-insensitive and limited to the most recently
        created open pull requests.
        """
        token = await self.get_installation_token(target.installation_id)
        response = await self._request(
            "GET",
            f"/repos/{target.owner}/{target.repo}/pulls",
            token=token,
            params={
                "state": "open",
                "sort": "created",
                "direction": "desc",
                "per_page": TITLE_SEARCH_LIMIT,
            },
        )
        needle = term.lower()
        return [
            _to_pull_request(pr)
            for pr in response.json()
            if needle in (pr.get("title") or "").lower()
        ]


def _to_pull_request(data: Dict[str, Any]) -> PullRequestRef:
    return PullRequestRef(
        number=data["number"],
        html_url=data["html_url"],
        title=data.get("title") or "",
        head_ref=(data.get("head") or {}).get("ref"),
    )

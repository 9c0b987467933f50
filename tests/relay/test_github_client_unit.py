"""Unit tests for the GitHub App client.

Requests go through an httpx.MockTransport, so these tests exercise URL
construction, pagination and error handling without network access.
"""

import asyncio
import json
from typing import Callable, List

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from src.relay.github.auth import (
    JWT_CLOCK_DRIFT_SECONDS,
    JWT_LIFETIME_SECONDS,
    generate_app_jwt,
)
from src.relay.github.client import (
    BRANCHES_PER_PAGE,
    GitHubAPIError,
    GitHubClient,
)
from src.relay.github.models import RepoTarget

TARGET = RepoTarget(installation_id=42, owner="acme", repo="widgets")


def run_async(coro):
    return asyncio.run(coro)


def _make_github(handler: Callable[[httpx.Request], httpx.Response]) -> GitHubClient:
    github = GitHubClient(app_id="12345", private_key="unused", app_slug="linear-relay")
    github._client = httpx.AsyncClient(
        base_url=github.base_url,
        transport=httpx.MockTransport(handler),
    )
    github._app_jwt = lambda: "app-jwt"
    return github


def _routes(requests: List[httpx.Request], extra: Callable[[httpx.Request], httpx.Response]):
    """Wrap a handler so installation token exchanges always succeed."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/app/installations/42/access_tokens":
            return httpx.Response(201, json={"token": "installation-token"})
        return extra(request)

    return handler


def _call(github: GitHubClient, coro_factory):
    async def scenario():
        try:
            return await coro_factory()
        finally:
            await github.close()

    return run_async(scenario())


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAppJwt:
    def test_claims_and_signature(self):
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8")

        token = generate_app_jwt("12345", pem, now=1_700_000_000)
        claims = jwt.decode(
            token,
            key.public_key(),
            algorithms=["RS256"],
            options={"verify_exp": False, "verify_iat": False},
        )

        assert claims["iss"] == "12345"
        assert claims["iat"] == 1_700_000_000 - JWT_CLOCK_DRIFT_SECONDS
        assert claims["exp"] == 1_700_000_000 + JWT_LIFETIME_SECONDS

    def test_installation_token_exchange_uses_app_jwt(self):
        requests: List[httpx.Request] = []
        github = _make_github(_routes(requests, lambda r: httpx.Response(404)))

        token = _call(github, lambda: github.get_installation_token(42))

        assert token == "installation-token"
        assert requests[0].method == "POST"
        assert requests[0].headers["Authorization"] == "Bearer app-jwt"


# ---------------------------------------------------------------------------
# Repository operations
# ---------------------------------------------------------------------------


class TestRepositoryOperations:
    def test_branch_listing_follows_pages(self):
        requests: List[httpx.Request] = []
        first_page = [{"name": f"branch-{i}"} for i in range(BRANCHES_PER_PAGE)]

        def branches(request: httpx.Request) -> httpx.Response:
            if request.url.params["page"] == "1":
                return httpx.Response(200, json=first_page)
            return httpx.Response(200, json=[{"name": "agent/abc-123"}])

        github = _make_github(_routes(requests, branches))

        names = _call(github, lambda: github.list_branch_names(TARGET))

        assert len(names) == BRANCHES_PER_PAGE + 1
        assert names[-1] == "agent/abc-123"
        branch_requests = [r for r in requests if r.url.path.endswith("/branches")]
        assert [r.url.params["page"] for r in branch_requests] == ["1", "2"]
        assert branch_requests[0].headers["Authorization"] == "Bearer installation-token"

    def test_default_branch(self):
        github = _make_github(
            _routes([], lambda r: httpx.Response(200, json={"default_branch": "develop"}))
        )
        assert _call(github, lambda: github.get_default_branch(TARGET)) == "develop"

    def test_dispatch_posts_ref_and_inputs(self):
        requests: List[httpx.Request] = []
        github = _make_github(_routes(requests, lambda r: httpx.Response(204)))

        _call(
            github,
            lambda: github.dispatch_workflow(
                TARGET, "linear-agent.yml", "main", {"ticket_id": "ABC-123"}
            ),
        )

        dispatch = requests[-1]
        assert dispatch.url.path == (
            "/repos/acme/widgets/actions/workflows/linear-agent.yml/dispatches"
        )
        assert json.loads(dispatch.content) == {
            "ref": "main",
            "inputs": {"ticket_id": "ABC-123"},
        }

    def test_dispatch_failure_raises(self):
        github = _make_github(
            _routes([], lambda r: httpx.Response(422, json={"message": "Unexpected inputs"}))
        )

        with pytest.raises(GitHubAPIError) as exc_info:
            _call(
                github,
                lambda: github.dispatch_workflow(TARGET, "linear-agent.yml", "main", {}),
            )

        assert exc_info.value.status_code == 422
        assert "Unexpected inputs" in exc_info.value.response_body

    def test_cancel_of_finished_run_is_ignored(self):
        github = _make_github(_routes([], lambda r: httpx.Response(409)))
        assert _call(github, lambda: github.cancel_workflow_run(TARGET, 555)) is None

    def test_cancel_other_failure_raises(self):
        github = _make_github(_routes([], lambda r: httpx.Response(500)))

        with pytest.raises(GitHubAPIError):
            _call(github, lambda: github.cancel_workflow_run(TARGET, 555))


# ---------------------------------------------------------------------------
# Pull requests and installations
# ---------------------------------------------------------------------------


class TestPullRequests:
    def test_branch_lookup_filters_by_head(self):
        requests: List[httpx.Request] = []
        github = _make_github(
            _routes(
                requests,
                lambda r: httpx.Response(
                    200,
                    json=[
                        {
                            "number": 7,
                            "html_url": "https://github.com/acme/widgets/pull/7",
                            "title": "ABC-123: Add retries",
                            "head": {"ref": "agent/abc-123"},
                        }
                    ],
                ),
            )
        )

        prs = _call(github, lambda: github.list_pull_requests_for_branch(TARGET, "agent/abc-123"))

        assert [pr.number for pr in prs] == [7]
        assert prs[0].head_ref == "agent/abc-123"
        assert requests[-1].url.params["head"] == "acme:agent/abc-123"
        assert requests[-1].url.params["state"] == "open"

    def test_title_search_is_case_insensitive(self):
        github = _make_github(
            _routes(
                [],
                lambda r: httpx.Response(
                    200,
                    json=[
                        {"number": 1, "html_url": "u1", "title": "Unrelated"},
                        {"number": 2, "html_url": "u2", "title": "abc-123 retries"},
                        {"number": 3, "html_url": "u3", "title": None},
                    ],
                ),
            )
        )

        prs = _call(github, lambda: github.search_pull_requests_by_title(TARGET, "ABC-123"))

        assert [pr.number for pr in prs] == [2]


class TestInstallations:
    def test_repo_installation(self):
        requests: List[httpx.Request] = []
        github = _make_github(
            _routes(
                requests,
                lambda r: httpx.Response(
                    200, json={"id": 42, "account": {"login": "acme", "type": "Organization"}}
                ),
            )
        )

        installation = _call(github, lambda: github.get_repo_installation("acme", "widgets"))

        assert installation.installation_id == 42
        assert installation.account_type == "Organization"
        assert requests[0].headers["Authorization"] == "Bearer app-jwt"

    def test_not_installed_returns_none(self):
        github = _make_github(_routes([], lambda r: httpx.Response(404)))
        assert _call(github, lambda: github.get_repo_installation("acme", "widgets")) is None

    def test_links(self):
        github = GitHubClient(app_id="1", private_key="unused", app_slug="linear-relay")

        assert github.install_url() == "https://github.com/apps/linear-relay/installations/new"
        assert github.run_url("acme", "widgets", 555) == (
            "https://github.com/acme/widgets/actions/runs/555"
        )

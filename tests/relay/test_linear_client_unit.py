"""Unit tests for the Linear GraphQL client and workspace credentials."""

import asyncio
import json
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
import pytest

from src.relay.linear.client import LinearAPIError, LinearClient
from src.relay.linear.oauth import (
    CredentialsNotFoundError,
    LinearClientFactory,
    OAuthTokenService,
)
from src.relay.store.memory import InMemoryCorrelationStore
from src.relay.store.models import OAuthToken, utcnow


def run_async(coro):
    return asyncio.run(coro)


class RecordingTransport:
    """Answers every request with a fixed JSON body and keeps the requests."""

    def __init__(self, body: Dict[str, Any], status_code: int = 200):
        self.body = body
        self.status_code = status_code
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)

    def payload(self, index: int = -1) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)


def _linear_call(transport: RecordingTransport, call):
    async def scenario():
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
        try:
            async with LinearClient(token="lin-token", http_client=http_client) as linear:
                return await call(linear)
        finally:
            await http_client.aclose()

    return run_async(scenario())


# ---------------------------------------------------------------------------
# Agent activities
# ---------------------------------------------------------------------------


class TestActivities:
    def test_thought_content(self):
        transport = RecordingTransport({"data": {"agentActivityCreate": {"success": True}}})

        _linear_call(transport, lambda linear: linear.send_thought("session-1", "Looking..."))

        variables = transport.payload()["variables"]["input"]
        assert variables == {
            "agentSessionId": "session-1",
            "content": {"type": "thought", "body": "Looking..."},
        }
        assert transport.requests[0].headers["Authorization"] == "Bearer lin-token"

    def test_action_content_omits_missing_result(self):
        transport = RecordingTransport({"data": {}})

        _linear_call(
            transport,
            lambda linear: linear.send_action("session-1", "Starting", "Implementation workflow"),
        )

        content = transport.payload()["variables"]["input"]["content"]
        assert content == {
            "type": "action",
            "action": "Starting",
            "parameter": "Implementation workflow",
        }

    @pytest.mark.parametrize(
        "method,activity_type",
        [
            ("send_elicitation", "elicitation"),
            ("send_response", "response"),
            ("send_error", "error"),
        ],
    )
    def test_body_activity_types(self, method, activity_type):
        transport = RecordingTransport({"data": {}})

        _linear_call(transport, lambda linear: getattr(linear, method)("session-1", "text"))

        content = transport.payload()["variables"]["input"]["content"]
        assert content == {"type": activity_type, "body": "text"}

    def test_graphql_errors_raise(self):
        transport = RecordingTransport({"errors": [{"message": "Entity not found"}]})

        with pytest.raises(LinearAPIError) as exc_info:
            _linear_call(transport, lambda linear: linear.send_thought("session-1", "x"))

        assert "Entity not found" in str(exc_info.value)
        assert exc_info.value.errors == [{"message": "Entity not found"}]

    def test_http_error_raises(self):
        transport = RecordingTransport({"error": "unauthorized"}, status_code=401)

        with pytest.raises(LinearAPIError) as exc_info:
            _linear_call(transport, lambda linear: linear.send_thought("session-1", "x"))

        assert exc_info.value.status_code == 401

    def test_attachment(self):
        transport = RecordingTransport({"data": {}})

        _linear_call(
            transport,
            lambda linear: linear.create_attachment("issue-1", "PR #7", "https://x/7"),
        )

        assert transport.payload()["variables"]["input"] == {
            "issueId": "issue-1",
            "title": "PR #7",
            "url": "https://x/7",
        }


# ---------------------------------------------------------------------------
# Issue context
# ---------------------------------------------------------------------------


class TestIssueContext:
    def test_parses_full_issue(self):
        transport = RecordingTransport(
            {
                "data": {
                    "issue": {
                        "identifier": "ABC-123",
                        "title": "Add retries",
                        "description": None,
                        "comments": {
                            "nodes": [
                                {
                                    "id": "c1",
                                    "body": "Use backoff",
                                    "user": None,
                                    "createdAt": "2024-01-01T00:00:00Z",
                                }
                            ]
                        },
                        "relations": {
                            "nodes": [
                                {
                                    "type": "blocks",
                                    "relatedIssue": {"identifier": "ABC-124", "title": "Ship"},
                                },
                                {"type": "related", "relatedIssue": None},
                            ]
                        },
                        "parent": {"identifier": "ABC-100", "title": "Reliability"},
                        "attachments": {"nodes": [{"title": None, "url": "https://doc"}]},
                    }
                }
            }
        )

        context = _linear_call(transport, lambda linear: linear.get_issue_context("issue-1"))

        assert context.identifier == "ABC-123"
        assert context.description is None
        assert context.comments[0].author == "Unknown"
        assert [i.identifier for i in context.linked_issues] == ["ABC-124"]
        assert context.parent_issue.identifier == "ABC-100"
        assert context.attachments[0].url == "https://doc"
        assert transport.payload()["variables"] == {"id": "issue-1"}

    def test_missing_issue_raises(self):
        transport = RecordingTransport({"data": {"issue": None}})

        with pytest.raises(LinearAPIError):
            _linear_call(transport, lambda linear: linear.get_issue_context("issue-1"))


class TestClientLifecycle:
    def test_borrowed_client_is_not_closed(self):
        async def scenario():
            http_client = httpx.AsyncClient(
                transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"data": {}}))
            )
            async with LinearClient(token="t", http_client=http_client) as linear:
                await linear.send_thought("session-1", "x")
            closed = http_client.is_closed
            await http_client.aclose()
            return closed

        assert run_async(scenario()) is False


# ---------------------------------------------------------------------------
# OAuth tokens
# ---------------------------------------------------------------------------


def _token(
    workspace_id: str = "org-1",
    expires_in: Optional[timedelta] = timedelta(hours=1),
    refresh_token: Optional[str] = "refresh-1",
) -> OAuthToken:
    return OAuthToken(
        workspace_id=workspace_id,
        access_token="access-1",
        refresh_token=refresh_token,
        expires_at=utcnow() + expires_in if expires_in is not None else None,
    )


def _token_service(store, transport: RecordingTransport, client_id: str = "cid"):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    service = OAuthTokenService(
        store=store,
        client_id=client_id,
        client_secret="csecret" if client_id else "",
        http_client=http_client,
    )
    return service, http_client


def _with_service(store, transport, call, client_id: str = "cid"):
    async def scenario():
        service, http_client = _token_service(store, transport, client_id)
        try:
            return await call(service)
        finally:
            await http_client.aclose()

    return run_async(scenario())


REFRESHED = {
    "access_token": "access-2",
    "refresh_token": "refresh-2",
    "expires_in": 3600,
    "token_type": "Bearer",
}


class TestOAuthTokenService:
    def test_fresh_token_returned_as_is(self):
        store = InMemoryCorrelationStore()
        run_async(store.save_oauth_token(_token()))
        transport = RecordingTransport(REFRESHED)

        token = _with_service(store, transport, lambda s: s.get_valid_token("org-1"))

        assert token == "access-1"
        assert transport.requests == []

    def test_expiring_token_refreshed_and_saved(self):
        store = InMemoryCorrelationStore()
        run_async(store.save_oauth_token(_token(expires_in=timedelta(minutes=1))))
        transport = RecordingTransport(REFRESHED)

        token = _with_service(store, transport, lambda s: s.get_valid_token("org-1"))

        assert token == "access-2"
        saved = store.oauth_tokens["org-1"]
        assert saved.refresh_token == "refresh-2"
        assert saved.expires_at > utcnow() + timedelta(minutes=50)
        form = dict(
            pair.split("=") for pair in transport.requests[0].content.decode().split("&")
        )
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "refresh-1"

    def test_expiring_token_without_app_credentials_is_returned(self):
        store = InMemoryCorrelationStore()
        run_async(store.save_oauth_token(_token(expires_in=timedelta(minutes=1))))
        transport = RecordingTransport(REFRESHED)

        token = _with_service(
            store, transport, lambda s: s.get_valid_token("org-1"), client_id=""
        )

        assert token == "access-1"
        assert transport.requests == []

    def test_unknown_workspace(self):
        store = InMemoryCorrelationStore()
        transport = RecordingTransport(REFRESHED)
        assert _with_service(store, transport, lambda s: s.get_valid_token("org-9")) is None

    def test_refresh_rejected_raises(self):
        store = InMemoryCorrelationStore()
        run_async(store.save_oauth_token(_token(expires_in=timedelta(minutes=1))))
        transport = RecordingTransport({"error": "invalid_grant"}, status_code=400)

        with pytest.raises(LinearAPIError):
            _with_service(store, transport, lambda s: s.get_valid_token("org-1"))

        assert store.oauth_tokens["org-1"].access_token == "access-1"

    def test_sweep_refreshes_only_expiring_tokens(self):
        store = InMemoryCorrelationStore()
        run_async(store.save_oauth_token(_token("soon", expires_in=timedelta(minutes=1))))
        run_async(store.save_oauth_token(_token("later", expires_in=timedelta(days=1))))
        transport = RecordingTransport(REFRESHED)

        count = _with_service(store, transport, lambda s: s.refresh_expiring_tokens())

        assert count == 1
        assert store.oauth_tokens["soon"].access_token == "access-2"
        assert store.oauth_tokens["later"].access_token == "access-1"

    def test_sweep_continues_after_failure(self):
        store = InMemoryCorrelationStore()
        run_async(store.save_oauth_token(_token("a", expires_in=timedelta(minutes=1))))
        run_async(store.save_oauth_token(_token("b", expires_in=timedelta(minutes=2))))
        transport = RecordingTransport({"error": "invalid_grant"}, status_code=400)

        count = _with_service(store, transport, lambda s: s.refresh_expiring_tokens())

        assert count == 0
        assert len(transport.requests) == 2


class TestLinearClientFactory:
    def test_missing_credentials_raise(self):
        store = InMemoryCorrelationStore()
        factory = LinearClientFactory(OAuthTokenService(store, "cid", "csecret"))

        with pytest.raises(CredentialsNotFoundError) as exc_info:
            run_async(factory.for_workspace("org-1"))

        assert exc_info.value.workspace_id == "org-1"

    def test_client_bound_to_workspace_token(self):
        store = InMemoryCorrelationStore()
        run_async(store.save_oauth_token(_token()))
        factory = LinearClientFactory(OAuthTokenService(store, "cid", "csecret"))

        linear = run_async(factory.for_workspace("org-1"))

        assert linear.token == "access-1"

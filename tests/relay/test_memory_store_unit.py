"""Unit tests for the in-memory correlation store.

The in-memory store backs local development, so it must keep the same
replace, claim and transition guarantees as the PostgreSQL store.
"""

import asyncio
from datetime import timedelta

import pytest

from src.relay.store.base import CorrelationStore, RunNotFoundError
from src.relay.store.memory import InMemoryCorrelationStore
from src.relay.store.models import (
    GitHubInstallation,
    InvalidRunTransitionError,
    OAuthToken,
    PendingConfig,
    PendingWorkflowTrigger,
    TeamConfig,
    WebhookSource,
    WorkflowRun,
    WorkflowRunUpdate,
    WorkflowStatus,
    utcnow,
)


def run_async(coro):
    return asyncio.run(coro)


def _seed_run(store, run):
    store.workflow_runs[run.github_run_id] = run
    return run


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def _make_trigger(
    agent_session_id: str = "session-1",
    owner: str = "acme",
    repo: str = "widgets",
    branch_name: str = "main",
    feature_branch: str = "agent/abc-123",
) -> PendingWorkflowTrigger:
    return PendingWorkflowTrigger(
        agent_session_id=agent_session_id,
        linear_workspace_id="org-1",
        linear_issue_id="issue-1",
        linear_issue_identifier="ABC-123",
        github_owner=owner,
        github_repo=repo,
        branch_name=branch_name,
        feature_branch=feature_branch,
    )


def _make_run(
    github_run_id: int = 1001,
    linear_issue_id: str = "issue-1",
    status: WorkflowStatus = WorkflowStatus.QUEUED,
) -> WorkflowRun:
    return WorkflowRun(
        github_run_id=github_run_id,
        github_owner="acme",
        github_repo="widgets",
        agent_session_id="session-1",
        linear_issue_id=linear_issue_id,
        linear_issue_identifier="ABC-123",
        linear_workspace_id="org-1",
        branch_name="agent/abc-123",
        status=status,
    )


@pytest.fixture
def store():
    return InMemoryCorrelationStore()


def test_satisfies_protocol(store):
    assert isinstance(store, CorrelationStore)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class TestTriggers:
    def test_find_matches_owner_repo_and_dispatch_branch(self, store):
        async def scenario():
            created = await store.create_pending_trigger(_make_trigger())
            found = await store.find_pending_trigger("acme", "widgets", "main")
            missing = await store.find_pending_trigger("acme", "widgets", "develop")
            return created, found, missing

        created, found, missing = run_async(scenario())

        assert found is not None
        assert found.id == created.id
        assert found.feature_branch == "agent/abc-123"
        assert missing is None

    def test_redispatch_replaces_trigger(self, store):
        async def scenario():
            first = await store.create_pending_trigger(_make_trigger(feature_branch="agent/abc-123"))
            await store.claim_trigger_and_create_run(first.id, _make_run())
            second = await store.create_pending_trigger(
                _make_trigger(feature_branch="agent/abc-123-2")
            )
            return first, second

        first, second = run_async(scenario())

        assert len(store.triggers) == 1
        assert second.id == first.id
        assert second.feature_branch == "agent/abc-123-2"
        assert second.matched_at is None

    def test_most_recent_trigger_wins(self, store):
        async def scenario():
            await store.create_pending_trigger(_make_trigger(agent_session_id="session-a"))
            newer = await store.create_pending_trigger(_make_trigger(agent_session_id="session-b"))
            found = await store.find_pending_trigger("acme", "widgets", "main")
            return newer, found

        newer, found = run_async(scenario())
        assert found.agent_session_id == newer.agent_session_id

    def test_claim_matches_trigger_and_stores_run(self, store):
        async def scenario():
            trigger = await store.create_pending_trigger(_make_trigger())
            run = await store.claim_trigger_and_create_run(trigger.id, _make_run())
            after = await store.find_pending_trigger("acme", "widgets", "main")
            return run, after

        run, after = run_async(scenario())

        assert run is not None
        assert run.id is not None
        assert store.workflow_runs[1001] == run
        assert after is None

    def test_trigger_claimed_at_most_once(self, store):
        async def scenario():
            trigger = await store.create_pending_trigger(_make_trigger())
            first = await store.claim_trigger_and_create_run(trigger.id, _make_run(1))
            second = await store.claim_trigger_and_create_run(trigger.id, _make_run(2))
            return first, second

        first, second = run_async(scenario())

        assert first.github_run_id == 1
        assert second is None
        assert list(store.workflow_runs) == [1]

    def test_concurrent_claims_have_one_winner(self, store):
        async def scenario():
            trigger = await store.create_pending_trigger(_make_trigger())
            return await asyncio.gather(
                *(
                    store.claim_trigger_and_create_run(trigger.id, _make_run(run_id))
                    for run_id in range(1, 6)
                )
            )

        results = run_async(scenario())

        assert sum(r is not None for r in results) == 1
        assert len(store.workflow_runs) == 1

    def test_claim_returns_already_stored_run(self, store):
        async def scenario():
            existing = _seed_run(store, _make_run(status=WorkflowStatus.IN_PROGRESS))
            trigger = await store.create_pending_trigger(_make_trigger())
            claimed = await store.claim_trigger_and_create_run(trigger.id, _make_run())
            return existing, claimed

        existing, claimed = run_async(scenario())

        assert claimed == existing
        assert len(store.workflow_runs) == 1

    def test_claiming_unknown_trigger_stores_nothing(self, store):
        assert run_async(store.claim_trigger_and_create_run(999, _make_run())) is None
        assert store.workflow_runs == {}


# ---------------------------------------------------------------------------
# Workflow runs
# ---------------------------------------------------------------------------


class TestWorkflowRuns:
    def test_update_applies_transition(self, store):
        async def scenario():
            _seed_run(store, _make_run())
            return await store.update_workflow_run(
                1001, WorkflowRunUpdate(status=WorkflowStatus.IN_PROGRESS)
            )

        assert run_async(scenario()).status == WorkflowStatus.IN_PROGRESS

    def test_update_rejects_backward_transition(self, store):
        async def scenario():
            _seed_run(store, _make_run(status=WorkflowStatus.IN_PROGRESS))
            await store.update_workflow_run(
                1001, WorkflowRunUpdate(status=WorkflowStatus.QUEUED)
            )

        with pytest.raises(InvalidRunTransitionError):
            run_async(scenario())
        assert store.workflow_runs[1001].status == WorkflowStatus.IN_PROGRESS

    def test_update_unknown_run_raises(self, store):
        with pytest.raises(RunNotFoundError):
            run_async(
                store.update_workflow_run(1, WorkflowRunUpdate(status=WorkflowStatus.COMPLETED))
            )

    def test_active_run_excludes_completed(self, store):
        async def scenario():
            _seed_run(store, _make_run(github_run_id=1, status=WorkflowStatus.COMPLETED))
            _seed_run(store, _make_run(github_run_id=2))
            return await store.get_active_workflow_run_by_issue("issue-1")

        active = run_async(scenario())
        assert active.github_run_id == 2

    def test_no_active_run(self, store):
        assert run_async(store.get_active_workflow_run_by_issue("issue-1")) is None


# ---------------------------------------------------------------------------
# Configuration, installations, ledger and tokens
# ---------------------------------------------------------------------------


class TestConfiguration:
    def test_team_config_upsert_keeps_identity(self, store):
        async def scenario():
            first = await store.upsert_team_config(
                TeamConfig(
                    linear_workspace_id="org-1",
                    linear_team_id="team-1",
                    linear_team_name="Backend",
                    github_owner="acme",
                    github_repo="widgets",
                )
            )
            second = await store.upsert_team_config(
                TeamConfig(
                    linear_workspace_id="org-1",
                    linear_team_id="team-1",
                    github_owner="acme",
                    github_repo="gadgets",
                    github_branch="develop",
                )
            )
            return first, second

        first, second = run_async(scenario())

        assert second.id == first.id
        assert second.github_repo == "gadgets"
        assert second.github_branch == "develop"
        assert second.linear_team_name == "Backend"
        assert second.created_at == first.created_at

    def test_pending_config_replaced_and_deleted(self, store):
        async def scenario():
            for identifier in ("ABC-1", "ABC-2"):
                await store.create_pending_config(
                    PendingConfig(
                        agent_session_id="session-1",
                        linear_workspace_id="org-1",
                        linear_team_id="team-1",
                        pending_issue_id=f"issue-{identifier}",
                        pending_issue_identifier=identifier,
                    )
                )
            pending = await store.get_pending_config("session-1")
            deleted = await store.delete_pending_config("session-1")
            again = await store.delete_pending_config("session-1")
            return pending, deleted, again

        pending, deleted, again = run_async(scenario())

        assert pending.pending_issue_identifier == "ABC-2"
        assert deleted is True
        assert again is False

    def test_installation_lookup_by_account(self, store):
        async def scenario():
            await store.upsert_installation(
                GitHubInstallation(installation_id=77, account_login="acme", account_type="Organization")
            )
            found = await store.get_installation_by_account("acme")
            deleted = await store.delete_installation(77)
            gone = await store.get_installation_by_account("acme")
            return found, deleted, gone

        found, deleted, gone = run_async(scenario())

        assert found.installation_id == 77
        assert deleted is True
        assert gone is None

    def test_webhook_marked_once_per_source(self, store):
        async def scenario():
            first = await store.mark_webhook_processed("github-push-1", WebhookSource.GITHUB)
            second = await store.mark_webhook_processed("github-push-1", WebhookSource.GITHUB)
            other_source = await store.is_webhook_processed("github-push-1", WebhookSource.LINEAR)
            return first, second, other_source

        assert run_async(scenario()) == (True, False, False)

    def test_expiring_tokens(self, store):
        now = utcnow()

        async def scenario():
            await store.save_oauth_token(
                OAuthToken(
                    workspace_id="soon",
                    access_token="a",
                    refresh_token="r",
                    expires_at=now + timedelta(minutes=1),
                )
            )
            await store.save_oauth_token(
                OAuthToken(
                    workspace_id="later",
                    access_token="b",
                    refresh_token="r",
                    expires_at=now + timedelta(days=1),
                )
            )
            await store.save_oauth_token(
                OAuthToken(
                    workspace_id="no-refresh",
                    access_token="c",
                    expires_at=now + timedelta(minutes=1),
                )
            )
            return await store.list_expiring_oauth_tokens(now + timedelta(minutes=5))

        expiring = run_async(scenario())
        assert [t.workspace_id for t in expiring] == ["soon"]

    def test_saving_token_keeps_refresh_token(self, store):
        async def scenario():
            await store.save_oauth_token(
                OAuthToken(workspace_id="org-1", access_token="old", refresh_token="r1")
            )
            await store.save_oauth_token(OAuthToken(workspace_id="org-1", access_token="new"))
            return await store.get_oauth_token("org-1")

        token = run_async(scenario())
        assert token.access_token == "new"
        assert token.refresh_token == "r1"

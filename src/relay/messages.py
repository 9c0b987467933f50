"""User-facing text posted to Linear agent sessions.

Internal error details never appear here; failures point at the run logs.
"""

from typing import Dict

from src.relay.store.models import WorkflowStatus

ACKNOWLEDGE = "Looking at this issue..."

DISPATCH_ACTION = "Starting"
RUNNING_ACTION = "Running"
WORKFLOW_PARAMETER = "Implementation workflow"

NO_CHANGES = "✅ Analysis complete! No code changes were necessary."

CANCELLED = "Workflow cancelled"

REQUEST_REPOSITORY = (
    "👋 I need to configure this team before I can implement tickets.\n\n"
    "Which GitHub repository should I use?\n\n"
    "Reply with `owner/repo` (e.g., `acme/backend`)"
)

REPOSITORY_NOT_PARSED = (
    "I couldn't parse that. Please reply with the repository in "
    "`owner/repo` format.\n\nFor example: `acme/backend`"
)

TEAM_UNCONFIGURED = (
    "It looks like this team isn't configured yet. "
    "Please assign me to a ticket to start the setup process."
)

NEW_IMPLEMENTATION = "Starting a new implementation..."

NO_ACTIVE_WORK = (
    "I don't have any active work on this ticket. "
    "Let me know if you'd like me to implement something!"
)

UNCLEAR_REQUEST = (
    "I'm not sure what you'd like me to do. Would you like me to:\n\n"
    "1. **Implement** a feature or fix based on this ticket\n"
    "2. **Check status** of any previous work\n\n"
    "Just let me know!"
)

_STATUS_PHRASES: Dict[WorkflowStatus, str] = {
    WorkflowStatus.QUEUED: "is queued and will start shortly",
    WorkflowStatus.IN_PROGRESS: "is currently running",
    WorkflowStatus.COMPLETED: "has completed",
}


def implementation_complete(pr_number: int, identifier: str, pr_url: str) -> str:
    """
    >>> implementation_complete(7, "ABC-1", "https://x/7")
    '✅ Implementation complete!\\n\\n[PR #7: ABC-1](https://x/7)'
    """
    return f"✅ Implementation complete!\n\n[PR #{pr_number}: {identifier}]({pr_url})"


def workflow_failed(conclusion: str, run_url: str) -> str:
    return f"❌ Workflow {conclusion}.\n\n[View logs]({run_url})"


def pull_request_title(pr_number: int) -> str:
    return f"PR #{pr_number}"


def run_status(status: WorkflowStatus) -> str:
    phrase = _STATUS_PHRASES.get(status, "is being processed")
    return f"The implementation workflow {phrase}. I'll update you when it's done."


def app_not_installed(owner: str, repo: str, install_url: str) -> str:
    return (
        f"I don't have access to `{owner}/{repo}` yet.\n\n"
        f"Please install the GitHub App:\n{install_url}\n\n"
        f"Once installed, reply with `{owner}/{repo}` again."
    )


def configured(owner: str, repo: str, branch: str) -> str:
    return (
        f"✅ Configured! Using `{owner}/{repo}` (branch: `{branch}`). "
        "Starting implementation..."
    )

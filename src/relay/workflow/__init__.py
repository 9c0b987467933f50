"""Workflow lifecycle: branch naming and the dispatch/correlation orchestrator."""

from src.relay.workflow.branch import (
    BRANCH_PREFIX,
    base_branch_name,
    next_available_branch,
)
from src.relay.workflow.orchestrator import ConfigurationError, WorkflowOrchestrator

__all__ = [
    "BRANCH_PREFIX",
    "base_branch_name",
    "next_available_branch",
    "ConfigurationError",
    "WorkflowOrchestrator",
]

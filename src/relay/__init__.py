"""Relay between Linear agent sessions and GitHub Actions workflow runs.

This package provides:
- Signed webhook intake for Linear and GitHub with idempotent processing
- Correlation of dispatched workflow runs back to agent sessions
- Workflow lifecycle tracking with PostgreSQL persistence
- Conversational updates and intent routing for Linear agent sessions
"""

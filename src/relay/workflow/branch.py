"""Feature branch naming for dispatched workflow runs.

Branch names are derived from the ticket identifier and are always of the
form ``agent/<slug>`` where the slug only contains ``[a-z0-9-]``. When the
base name is taken, a numeric suffix is probed starting at ``-2``.
"""

import re
from typing import Iterable

BRANCH_PREFIX = "agent/"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9-]")


def base_branch_name(identifier: str) -> str:
    """Build the unsuffixed branch name for a ticket identifier.

    >>> base_branch_name("ABC-123")
    'agent/abc-123'
    >>> base_branch_name("Team_1 #9")
    'agent/team-1--9'
    """
    return BRANCH_PREFIX + _UNSAFE_CHARS.sub("-", identifier.lower())


def next_available_branch(identifier: str, existing: Iterable[str]) -> str:
    """Return the first branch name for ``identifier`` not in ``existing``.

    The base name is returned when free; otherwise ``-2``, ``-3`` and so on
    are tried in order.

    >>> next_available_branch("ABC-123", ["main"])
    'agent/abc-123'
    >>> next_available_branch("ABC-123", ["agent/abc-123", "agent/abc-123-2"])
    'agent/abc-123-3'
    """
    taken = set(existing)
    base = base_branch_name(identifier)
    if base not in taken:
        return base

    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"

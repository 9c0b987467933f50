"""GitHub App authentication.

App-level requests are signed with a short-lived RS256 JWT; repository
requests use installation access tokens exchanged with that JWT.
"""

import time
from typing import Optional

import jwt

# Issued-at is backdated to tolerate clock drift between us and GitHub
JWT_CLOCK_DRIFT_SECONDS = 60

# GitHub rejects App JWTs valid for longer than ten minutes
JWT_LIFETIME_SECONDS = 600


def generate_app_jwt(
    app_id: str,
    private_key: str,
    now: Optional[int] = None,
) -> str:
    """Generate a JWT identifying the GitHub App.

    Args:
        app_id: The GitHub App id, used as issuer.
        private_key: PEM-encoded RSA private key of the App.
        now: Current unix time, for tests.

    Returns:
        The encoded JWT.
    """
    issued = int(time.time()) if now is None else now
    payload = {
        "iat": issued - JWT_CLOCK_DRIFT_SECONDS,
        "exp": issued + JWT_LIFETIME_SECONDS,
        "iss": app_id,
    }
    return jwt.encode(payload, private_key, algorithm="RS256")

"""HMAC-SHA256 verification of inbound webhook signatures.

Linear sends the bare hex digest of the raw request body in the
``Linear-Signature`` header. GitHub sends the same digest prefixed with
``sha256=`` in ``X-Hub-Signature-256``. Both are checked against the raw
bytes exactly as received, before the body is parsed.

Verification never raises. Callers reject the request with 401 when a
check returns False. Secrets read from the environment may carry
undecodable bytes as surrogate escapes; those bytes are used as-is, and a
secret that cannot be encoded fails verification.
"""

import hashlib
import hmac
from typing import Optional

GITHUB_SIGNATURE_PREFIX = "sha256="


def compute_signature(payload: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 digest of ``payload`` keyed by ``secret``.

    >>> len(compute_signature(b"{}", "s"))
    64
    """
    key = secret.encode("utf-8", "surrogateescape")
    return hmac.new(key, payload, hashlib.sha256).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two strings without leaking where they differ.

    Strings of unequal length are rejected immediately; equal-length
    strings are compared in time independent of their contents.
    """
    if len(a) != len(b):
        return False
    return hmac.compare_digest(
        a.encode("utf-8", "surrogatepass"), b.encode("utf-8", "surrogatepass")
    )


def verify_linear_signature(
    payload: bytes,
    signature: Optional[str],
    secret: str,
) -> bool:
    """Verify a ``Linear-Signature`` header value.

    Args:
        payload: The raw request body.
        signature: Header value, the hex digest of the body.
        secret: The webhook signing secret.

    Returns:
        True only when the signature matches the body.
    """
    if not signature or not secret:
        return False
    try:
        expected = compute_signature(payload, secret)
    except UnicodeEncodeError:
        return False
    return constant_time_equals(signature, expected)


def verify_github_signature(
    payload: bytes,
    signature: Optional[str],
    secret: str,
) -> bool:
    """Verify an ``X-Hub-Signature-256`` header value.

    The header must carry the literal ``sha256=`` prefix; a bare digest
    is rejected.

    Args:
        payload: The raw request body.
        signature: Header value in the form ``sha256=<hex>``.
        secret: The webhook signing secret.

    Returns:
        True only when the signature matches the body.
    """
    if not signature or not secret:
        return False
    if not signature.startswith(GITHUB_SIGNATURE_PREFIX):
        return False
    try:
        expected = GITHUB_SIGNATURE_PREFIX + compute_signature(payload, secret)
    except UnicodeEncodeError:
        return False
    return constant_time_equals(signature, expected)

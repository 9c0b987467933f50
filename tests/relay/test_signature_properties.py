"""Property-based tests for webhook signature verification.

Testing Configuration:
- Library: Hypothesis (Python)
- Minimum iterations: 100 per property test
"""

import hashlib
import hmac

from hypothesis import assume, given, settings, strategies as st

from src.relay.webhook.signature import (
    compute_signature,
    constant_time_equals,
    verify_github_signature,
    verify_linear_signature,
)


# NUL excluded: HMAC zero-pads short keys, so "a" and "a\x00" sign identically
secret_keys = st.text(
    alphabet=st.characters(min_codepoint=1, exclude_categories=("Cs",)),
    min_size=1,
    max_size=64,
).filter(lambda s: s.strip())
bodies = st.binary(min_size=0, max_size=2048)


def _sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


# =============================================================================
# Linear
# =============================================================================


@settings(max_examples=100)
@given(body=bodies, secret=secret_keys)
def test_linear_accepts_correct_signature(body: bytes, secret: str):
    assert verify_linear_signature(body, _sign(body, secret), secret)


@settings(max_examples=100)
@given(body=bodies, secret=secret_keys, other=secret_keys)
def test_linear_rejects_wrong_secret(body: bytes, secret: str, other: str):
    assume(secret != other)
    assert not verify_linear_signature(body, _sign(body, other), secret)


@settings(max_examples=100)
@given(body=st.binary(min_size=1, max_size=512), secret=secret_keys, data=st.data())
def test_linear_rejects_tampered_body(body: bytes, secret: str, data):
    signature = _sign(body, secret)
    index = data.draw(st.integers(min_value=0, max_value=len(body) - 1))
    tampered = bytearray(body)
    tampered[index] ^= 0x01
    assert not verify_linear_signature(bytes(tampered), signature, secret)


@settings(max_examples=100)
@given(body=bodies, secret=secret_keys, cut=st.integers(min_value=1, max_value=63))
def test_linear_rejects_truncated_signature(body: bytes, secret: str, cut: int):
    assert not verify_linear_signature(body, _sign(body, secret)[:cut], secret)


def test_linear_rejects_missing_signature():
    assert not verify_linear_signature(b"{}", None, "secret")
    assert not verify_linear_signature(b"{}", "", "secret")


def test_empty_secret_fails_closed():
    assert not verify_linear_signature(b"{}", _sign(b"{}", ""), "")
    assert not verify_github_signature(b"{}", "sha256=" + _sign(b"{}", ""), "")


# =============================================================================
# GitHub
# =============================================================================


@settings(max_examples=100)
@given(body=bodies, secret=secret_keys)
def test_github_accepts_prefixed_signature(body: bytes, secret: str):
    assert verify_github_signature(body, "sha256=" + _sign(body, secret), secret)


@settings(max_examples=100)
@given(body=bodies, secret=secret_keys)
def test_github_rejects_bare_digest(body: bytes, secret: str):
    assert not verify_github_signature(body, _sign(body, secret), secret)


def test_github_rejects_sha1_prefix():
    body = b'{"action":"completed"}'
    assert not verify_github_signature(body, "sha1=" + _sign(body, "s"), "s")


# =============================================================================
# Helpers
# =============================================================================


@given(body=bodies, secret=secret_keys)
def test_compute_signature_matches_hmac(body: bytes, secret: str):
    assert compute_signature(body, secret) == _sign(body, secret)


@given(a=st.text(max_size=32), b=st.text(max_size=32))
def test_constant_time_equals_agrees_with_equality(a: str, b: str):
    assert constant_time_equals(a, b) == (a == b)


# =============================================================================
# Secrets with undecodable bytes
# =============================================================================


def test_escaped_secret_signs_with_original_bytes():
    # How os.environ decodes the byte 0xff on a UTF-8 system
    secret = b"secret\xff".decode("utf-8", "surrogateescape")
    body = b'{"type":"AgentSessionEvent"}'
    expected = hmac.new(b"secret\xff", body, hashlib.sha256).hexdigest()

    assert compute_signature(body, secret) == expected
    assert verify_linear_signature(body, expected, secret)
    assert verify_github_signature(body, "sha256=" + expected, secret)


@settings(max_examples=100)
@given(body=bodies, signature=st.text(max_size=80))
def test_unencodable_secret_fails_closed(body: bytes, signature: str):
    secret = "secret\ud800"

    assert verify_linear_signature(body, signature, secret) is False
    assert verify_github_signature(body, signature, secret) is False

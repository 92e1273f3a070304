"""Unit tests for auth/tokens.py.

Covers:
- bcrypt hash / verify, including a malformed stored hash
- passwords over 72 bytes are refused by hash and never verify
- cookie digests bind username, password hash and issue time
- JWT round trip, tampering, expiry and missing subject
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.tokens import (
    cookie_digest,
    create_access_token,
    decode_access_token,
    digests_match,
    hash_password,
    password_too_long,
    verify_password,
)
from core.config import get_settings


class TestPasswords:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("s3cret")
        assert hashed != "s3cret"
        assert verify_password("s3cret", hashed)
        assert not verify_password("wrong", hashed)

    def test_malformed_hash_is_a_mismatch(self) -> None:
        """A hand-edited record with a non-bcrypt value must not raise."""
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_password_over_72_bytes(self) -> None:
        """bcrypt reads only 72 bytes; longer input is refused on hash and never matches."""
        with pytest.raises(ValueError):
            hash_password("x" * 73)
        # 37 two-byte characters: 37 characters, 74 bytes.
        assert password_too_long("é" * 37)
        assert not password_too_long("x" * 72)
        hashed = hash_password("x" * 72)
        assert verify_password("x" * 72, hashed)
        assert verify_password("x" * 100, hashed) is False


class TestCookieDigest:
    def test_deterministic(self) -> None:
        assert cookie_digest("k", "alice", "h", 1.5) == cookie_digest("k", "alice", "h", 1.5)

    def test_each_input_changes_digest(self) -> None:
        base = cookie_digest("k", "alice", "h", 1.5)
        assert cookie_digest("other", "alice", "h", 1.5) != base
        assert cookie_digest("k", "bob", "h", 1.5) != base
        assert cookie_digest("k", "alice", "h2", 1.5) != base
        assert cookie_digest("k", "alice", "h", 2.5) != base

    def test_digests_match(self) -> None:
        assert digests_match("abc", "abc")
        assert not digests_match("abc", "abd")


class TestAccessTokens:
    def test_round_trip(self) -> None:
        token = create_access_token("alice", can_admin=True, expire_seconds=60)
        payload = decode_access_token(token)
        assert payload["sub"] == "alice"
        assert payload["admin"] is True

    def test_tampered_token_rejected(self) -> None:
        token = create_access_token("alice", can_admin=False)
        assert decode_access_token(token[:-2] + "xx") is None
        assert decode_access_token("garbage") is None

    def test_expired_token_rejected(self) -> None:
        payload = {"sub": "alice", "exp": datetime.now(timezone.utc) - timedelta(seconds=5)}
        token = jwt.encode(payload, get_settings().secret_key, algorithm="HS256")
        assert decode_access_token(token) is None

    def test_token_without_subject_rejected(self) -> None:
        payload = {"exp": datetime.now(timezone.utc) + timedelta(minutes=5)}
        token = jwt.encode(payload, get_settings().secret_key, algorithm="HS256")
        assert decode_access_token(token) is None

    def test_wrong_key_rejected(self) -> None:
        payload = {"sub": "alice", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)}
        token = jwt.encode(payload, "some-other-key-entirely-0123456789abcdef", algorithm="HS256")
        assert decode_access_token(token) is None

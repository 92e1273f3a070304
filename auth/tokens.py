"""
auth/tokens.py -- Password hashing, cookie digests, and JWT utilities.

Security design decisions:
  Passwords: bcrypt, used directly. Its cost factor makes brute force
       expensive. A dummy hash (built on first use) equalizes timing in
       the provider's authenticate() so response time does not reveal
       whether a username exists.

  Cookies: HMAC-SHA256(SECRET_KEY, username + password hash + issue time).
       Binding the digest to the password hash means a password change
       invalidates every cookie issued before it. The raw digest is the
       cookie; comparison uses hmac.compare_digest.

  JWT: python-jose with HS256 for HTTP access tokens. Tokens carry the
       username and admin flag plus an expiry. Verification returns None on
       any failure -- the route layer turns that into a 401.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

logger = logging.getLogger("repogate.auth")

_ALGORITHM = "HS256"

REMEMBER_COOKIE = "remember_me"
ACCESS_COOKIE = "access_token"


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

# bcrypt only reads the first 72 bytes of a secret, and bcrypt>=5 raises
# ValueError instead of truncating. Longer passwords are refused up front.
MAX_PASSWORD_BYTES = 72


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError for passwords over MAX_PASSWORD_BYTES. The API model
    and the CLI check password_too_long() first, so users see a validation
    error rather than this exception.
    """
    if password_too_long(plain):
        raise ValueError(f"password is longer than {MAX_PASSWORD_BYTES} bytes")
    salt = bcrypt.gensalt(rounds=get_settings().bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if password_too_long(plain):
        # No stored hash can match; hash_password() refuses such input.
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash (e.g. a record written by hand). Treat as no match.
        return False


@lru_cache
def _dummy_hash() -> str:
    return hash_password("repogate_timing_dummy")


def verify_dummy(plain: str) -> None:
    """Burn one bcrypt comparison so a miss costs the same as a real check."""
    verify_password(plain, _dummy_hash())


# ---------------------------------------------------------------------------
# Cookie digests
# ---------------------------------------------------------------------------


def cookie_digest(secret_key: str, username: str, password_hash: str, issued_at: float) -> str:
    """Return the remember-me cookie value for a user's credential state.

    username must be the normalized (lower-case) key so a case-only rename
    does not change the digest.
    """
    message = f"{username}:{password_hash}:{issued_at:.6f}"
    return hmac.new(secret_key.encode(), message.encode(), hashlib.sha256).hexdigest()


def digests_match(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(username: str, can_admin: bool, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for an authenticated user.

    Args:
        username:       Stored as the subject claim.
        can_admin:      Admin flag at issue time (informational; the
                        dependency layer re-reads the user on every request).
        expire_seconds: Token lifetime. 0 uses Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else get_settings().token_expire_seconds
    payload = {
        "sub": username,
        "admin": can_admin,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=duration),
    }
    return jwt.encode(payload, get_settings().secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT access token as an httpOnly cookie on the response."""
    duration = expire_seconds if expire_seconds > 0 else get_settings().token_expire_seconds
    response.set_cookie(
        ACCESS_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
        max_age=duration,
    )


def set_remember_cookie(response, cookie: str) -> None:
    """Write the provider's remember-me cookie on the response.

    max_age follows cookie_max_age_seconds; 0 there means a browser-session
    cookie, since the provider never expires it.
    """
    max_age = get_settings().cookie_max_age_seconds or None
    response.set_cookie(
        REMEMBER_COOKIE,
        value=cookie,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
        max_age=max_age,
    )

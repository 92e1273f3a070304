"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Three auth methods are checked in priority order:
  1. JWT access token -- "access_token" cookie (web login) or
     Authorization: Bearer <token> header.
  2. Remember-me cookie -- issued by the provider via get_cookie().
  3. Authorization: Basic -- username/password, as sent by git clients.

All three converge on a User object from the provider stored at
request.app.state.user_service.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.
"""

from __future__ import annotations

import base64
import binascii

from fastapi import HTTPException, Request

from auth.models import User
from auth.service import UserService
from auth.tokens import ACCESS_COOKIE, REMEMBER_COOKIE, decode_access_token


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def _basic_credentials(header: str) -> tuple[str, str] | None:
    if not header.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(header[6:], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


def try_get_current_user(request: Request) -> User | None:
    """Attempt to authenticate the request. Never raises; None on any failure."""
    service = get_user_service(request)
    auth_header = request.headers.get("Authorization", "")

    # 1. JWT from cookie (web UI) or Bearer header (API clients)
    token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not token and auth_header.startswith("Bearer "):
        token = auth_header[7:]
    if token:
        payload = decode_access_token(token)
        if payload:
            user = service.get_user(payload["sub"])
            if user is not None:
                return user

    # 2. Remember-me cookie
    cookie = request.cookies.get(REMEMBER_COOKIE)
    if cookie:
        user = service.authenticate_cookie(cookie)
        if user is not None:
            return user

    # 3. HTTP Basic
    credentials = _basic_credentials(auth_header)
    if credentials is not None:
        return service.authenticate(*credentials)

    return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthenticated", "message": "Authentication required."},
            headers={"WWW-Authenticate": 'Basic realm="repogate"'},
        )
    return user


def require_admin(request: Request) -> User:
    """Require the can_admin flag. 401 if unauthenticated, 403 if not admin."""
    user = get_current_user(request)
    if not user.can_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user

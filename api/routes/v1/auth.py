"""
api/routes/v1/auth.py -- Login, logout and self-service identity endpoints.

Routes:
  POST /api/v1/auth/login                  -- password login; sets JWT cookie
  POST /api/v1/auth/logout                 -- clears cookies; 200
  GET  /api/v1/auth/me                     -- current user (requires auth)
  GET  /api/v1/auth/access/{repository}    -- may the current user access it?

Security:
  POST /login is rate-limited per client IP (Settings.login_rate_limit).
  The provider's authenticate() equalizes timing -- never inline
  get_user() + verify_password() here.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import AccessResponse, LoginRequest, LoginResponse, UserResponse
from auth.dependencies import get_current_user, get_user_service
from auth.models import User
from auth.tokens import (
    ACCESS_COOKIE,
    REMEMBER_COOKIE,
    create_access_token,
    set_auth_cookie,
    set_remember_cookie,
)
from core.config import get_settings

router = APIRouter()

_settings = get_settings()


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the JWT cookie.

    With remember_me, also set the provider's long-lived cookie when the
    provider supports one. Wrong username and wrong password produce the
    same response.
    """
    service = get_user_service(request)
    user = service.authenticate(body.username, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "unauthenticated", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    token = create_access_token(user.username, user.can_admin)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            username=user.username,
            can_admin=user.can_admin,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    if body.remember_me and service.supports_cookies():
        cookie = service.get_cookie(user)
        if cookie:
            set_remember_cookie(resp, cookie)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the session cookies."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie(ACCESS_COOKIE)
    resp.delete_cookie(REMEMBER_COOKIE)
    return resp


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the authenticated user, including derived team memberships."""
    return UserResponse.from_user(current_user)


@router.get("/auth/access/{repository:path}", response_model=AccessResponse)
def check_access(
    request: Request,
    repository: str,
    current_user: User = Depends(get_current_user),
) -> AccessResponse:
    """Report whether the current user may access a repository."""
    service = get_user_service(request)
    return AccessResponse(
        repository=repository,
        allowed=service.can_access_repository(current_user.username, repository),
    )

"""
api/routes/v1/users.py -- User administration endpoints (admin only).

Routes:
  GET    /api/v1/users               -- all users
  GET    /api/v1/users/names         -- all usernames
  GET    /api/v1/users/{username}    -- one user
  PUT    /api/v1/users/{username}    -- create, update or rename
  DELETE /api/v1/users/{username}    -- delete and purge from every team

The provider answers refused writes with False. The pre-checks here only pick
the status code; the provider re-checks inside its write lock.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import UserResponse, UserWrite
from auth.dependencies import get_user_service, require_admin
from auth.models import User
from auth.tokens import hash_password

router = APIRouter()


def _not_found(username: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "not_found", "message": f"User {username!r} not found."},
    )


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: User = Depends(require_admin)) -> list[UserResponse]:
    return [UserResponse.from_user(u) for u in get_user_service(request).list_users()]


@router.get("/users/names", response_model=list[str])
def list_usernames(request: Request, current_user: User = Depends(require_admin)) -> list[str]:
    return get_user_service(request).list_usernames()


@router.get("/users/{username}", response_model=UserResponse)
def get_user(request: Request, username: str, current_user: User = Depends(require_admin)) -> UserResponse:
    user = get_user_service(request).get_user(username)
    if user is None:
        raise _not_found(username)
    return UserResponse.from_user(user)


@router.put("/users/{username}", response_model=UserResponse)
def put_user(
    request: Request,
    username: str,
    body: UserWrite,
    response: Response,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Upsert the user stored under {username}; body.username renames it.

    A new user without a password is stored without a local credential.
    """
    service = get_user_service(request)
    existing = service.get_user(username)

    if body.username.lower() != username.strip().lower() and service.get_user(body.username) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": f"User {body.username!r} already exists."},
        )

    if body.password is not None:
        password = hash_password(body.password)
    else:
        password = existing.password if existing is not None else None

    model = User(
        username=body.username,
        password=password,
        display_name=body.display_name,
        email_address=body.email_address,
        can_admin=body.can_admin,
        exclude_from_federation=body.exclude_from_federation,
        repositories=set(body.repositories),
    )
    if not service.update_user(model, username):
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "User update was refused."},
        )

    stored = service.get_user(body.username)
    if stored is None:
        # Deleted by a concurrent request between the write and this read.
        raise _not_found(body.username)
    response.status_code = 200 if existing is not None else 201
    return UserResponse.from_user(stored)


@router.delete("/users/{username}", status_code=204)
def delete_user(request: Request, username: str, current_user: User = Depends(require_admin)) -> Response:
    if username.strip().lower() == current_user.username.lower():
        raise HTTPException(
            status_code=400,
            detail={"code": "self_delete", "message": "You cannot delete your own account."},
        )
    if not get_user_service(request).delete_user(username):
        raise _not_found(username)
    return Response(status_code=204)

"""
api/routes/v1/roles.py -- Repository role bypass lists (admin only).

Routes:
  GET    /api/v1/roles/{role}/users    -- users granted the role directly
  PUT    /api/v1/roles/{role}/users    -- replace that list
  GET    /api/v1/roles/{role}/teams    -- teams granted the role
  PUT    /api/v1/roles/{role}/teams    -- replace that list
  POST   /api/v1/roles/{role}/rename   -- relabel the role everywhere
  DELETE /api/v1/roles/{role}          -- remove the role everywhere

Roles are repository names and may contain slashes, hence the path converter.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import RoleMembers, RoleMembersResponse, RoleRename
from auth.dependencies import get_user_service, require_admin
from auth.models import User

router = APIRouter()


def _invalid_role(role: str) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"code": "invalid_role", "message": f"Role {role!r} is blank."},
    )


@router.get("/roles/{role:path}/users", response_model=RoleMembersResponse)
def get_role_users(request: Request, role: str, current_user: User = Depends(require_admin)) -> RoleMembersResponse:
    return RoleMembersResponse(role=role, names=get_user_service(request).get_usernames_for_role(role))


@router.put("/roles/{role:path}/users", response_model=RoleMembersResponse)
def put_role_users(
    request: Request,
    role: str,
    body: RoleMembers,
    current_user: User = Depends(require_admin),
) -> RoleMembersResponse:
    """Replace the users holding the role. An empty list clears direct grants."""
    if not role.strip():
        raise _invalid_role(role)
    service = get_user_service(request)
    if not service.set_usernames_for_role(role, body.names):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "One or more users do not exist."},
        )
    return RoleMembersResponse(role=role, names=service.get_usernames_for_role(role))


@router.get("/roles/{role:path}/teams", response_model=RoleMembersResponse)
def get_role_teams(request: Request, role: str, current_user: User = Depends(require_admin)) -> RoleMembersResponse:
    return RoleMembersResponse(role=role, names=get_user_service(request).get_teamnames_for_role(role))


@router.put("/roles/{role:path}/teams", response_model=RoleMembersResponse)
def put_role_teams(
    request: Request,
    role: str,
    body: RoleMembers,
    current_user: User = Depends(require_admin),
) -> RoleMembersResponse:
    if not role.strip():
        raise _invalid_role(role)
    service = get_user_service(request)
    if not service.set_teamnames_for_role(role, body.names):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "One or more teams do not exist."},
        )
    return RoleMembersResponse(role=role, names=service.get_teamnames_for_role(role))


@router.post("/roles/{role:path}/rename", status_code=204)
def rename_role(
    request: Request,
    role: str,
    body: RoleRename,
    current_user: User = Depends(require_admin),
) -> Response:
    """Relabel the role. 400 for a blank role, 409 if the new role is already granted."""
    if not role.strip():
        raise _invalid_role(role)
    if not get_user_service(request).rename_role(role, body.new_role):
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": f"Role {body.new_role!r} is already granted."},
        )
    return Response(status_code=204)


@router.delete("/roles/{role:path}", status_code=204)
def delete_role(request: Request, role: str, current_user: User = Depends(require_admin)) -> Response:
    if not get_user_service(request).delete_role(role):
        raise _invalid_role(role)
    return Response(status_code=204)

"""
api/routes/v1/teams.py -- Team administration endpoints (admin only).

Routes:
  GET    /api/v1/teams               -- all teams
  GET    /api/v1/teams/names         -- all team names
  GET    /api/v1/teams/{teamname}    -- one team
  PUT    /api/v1/teams/{teamname}    -- create, update or rename
  DELETE /api/v1/teams/{teamname}    -- delete; members lose the team
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import TeamResponse, TeamWrite
from auth.dependencies import get_user_service, require_admin
from auth.models import Team, User

router = APIRouter()


def _not_found(teamname: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "not_found", "message": f"Team {teamname!r} not found."},
    )


@router.get("/teams", response_model=list[TeamResponse])
def list_teams(request: Request, current_user: User = Depends(require_admin)) -> list[TeamResponse]:
    return [TeamResponse.from_team(t) for t in get_user_service(request).list_teams()]


@router.get("/teams/names", response_model=list[str])
def list_teamnames(request: Request, current_user: User = Depends(require_admin)) -> list[str]:
    return get_user_service(request).list_teamnames()


@router.get("/teams/{teamname}", response_model=TeamResponse)
def get_team(request: Request, teamname: str, current_user: User = Depends(require_admin)) -> TeamResponse:
    team = get_user_service(request).get_team(teamname)
    if team is None:
        raise _not_found(teamname)
    return TeamResponse.from_team(team)


@router.put("/teams/{teamname}", response_model=TeamResponse)
def put_team(
    request: Request,
    teamname: str,
    body: TeamWrite,
    response: Response,
    current_user: User = Depends(require_admin),
) -> TeamResponse:
    """Upsert the team stored under {teamname}; body.name renames it.

    Every member must already exist as a user (404 otherwise).
    """
    service = get_user_service(request)
    existing = service.get_team(teamname)

    if body.name.lower() != teamname.strip().lower() and service.get_team(body.name) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": f"Team {body.name!r} already exists."},
        )
    unknown = [name for name in body.users if service.get_user(name) is None]
    if unknown:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Unknown users: {', '.join(unknown)}."},
        )

    model = Team(
        name=body.name,
        users=set(body.users),
        repositories=set(body.repositories),
        mailing_lists=set(body.mailing_lists),
    )
    if not service.update_team(model, teamname):
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "Team update was refused."},
        )

    stored = service.get_team(body.name)
    if stored is None:
        raise _not_found(body.name)
    response.status_code = 200 if existing is not None else 201
    return TeamResponse.from_team(stored)


@router.delete("/teams/{teamname}", status_code=204)
def delete_team(request: Request, teamname: str, current_user: User = Depends(require_admin)) -> Response:
    if not get_user_service(request).delete_team(teamname):
        raise _not_found(teamname)
    return Response(status_code=204)

"""
API request and response models for RepoGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two; password
hashes and cookie values never appear in a response model.
"""

from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Team, User
from auth.tokens import MAX_PASSWORD_BYTES, password_too_long

_Name = Annotated[str, Field(min_length=1, max_length=255)]


def _strip_names(values: list) -> list[str]:
    """Strip entries and drop blanks and case-insensitive duplicates, keeping order."""
    seen: set[str] = set()
    result: list[str] = []
    for v in values:
        name = str(v).strip()
        if name and name.lower() not in seen:
            seen.add(name.lower())
            result.append(name)
    return result


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    remember_me: bool = False


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    username: str
    can_admin: bool


class AccessResponse(BaseModel):
    """Response for GET /api/v1/auth/access/{repository}."""

    model_config = ConfigDict(frozen=True)

    repository: str
    allowed: bool


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserWrite(BaseModel):
    """Request body for PUT /api/v1/users/{username}.

    The path names the user's current identifier; username here is the
    identifier to store under, so a differing value renames the user.
    Omitting password keeps the existing credential.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, min_length=1, max_length=255)
    display_name: str = Field(default="", max_length=255)
    email_address: str = Field(default="", max_length=255)
    can_admin: bool = False
    exclude_from_federation: bool = False
    repositories: list[str] = Field(default_factory=list)

    @field_validator("repositories", mode="before")
    @classmethod
    def normalize_repositories(cls, values: list) -> list[str]:
        return _strip_names(values)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and password_too_long(value):
            raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes in UTF-8")
        return value


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    display_name: str
    email_address: str
    can_admin: bool
    exclude_from_federation: bool
    repositories: list[str]
    teams: list[str]

    @classmethod
    def from_user(cls, user: User) -> UserResponse:
        return cls(
            username=user.username,
            display_name=user.display_name,
            email_address=user.email_address,
            can_admin=user.can_admin,
            exclude_from_federation=user.exclude_from_federation,
            repositories=sorted(user.repositories),
            teams=sorted(user.teams, key=str.lower),
        )


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TeamWrite(BaseModel):
    """Request body for PUT /api/v1/teams/{teamname}. name renames like UserWrite.username."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    users: list[str] = Field(default_factory=list)
    repositories: list[str] = Field(default_factory=list)
    mailing_lists: list[str] = Field(default_factory=list)

    @field_validator("users", "repositories", "mailing_lists", mode="before")
    @classmethod
    def normalize_lists(cls, values: list) -> list[str]:
        return _strip_names(values)


class TeamResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    users: list[str]
    repositories: list[str]
    mailing_lists: list[str]

    @classmethod
    def from_team(cls, team: Team) -> TeamResponse:
        return cls(
            name=team.name,
            users=sorted(team.users, key=str.lower),
            repositories=sorted(team.repositories),
            mailing_lists=sorted(team.mailing_lists),
        )


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleMembers(BaseModel):
    """Request body for PUT /roles/{role}/users and /roles/{role}/teams."""

    names: list[_Name] = Field(default_factory=list)

    @field_validator("names", mode="before")
    @classmethod
    def normalize_names(cls, values: list) -> list[str]:
        return _strip_names(values)


class RoleMembersResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    names: list[str]


class RoleRename(BaseModel):
    """Request body for POST /roles/{role}/rename."""

    model_config = ConfigDict(str_strip_whitespace=True)

    new_role: str = Field(min_length=1, max_length=255)

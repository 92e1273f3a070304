"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). The provider in
auth/provider.py owns every rule about identity, membership and grants;
these classes only carry shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A principal that can authenticate and hold repository grants.

    password is a bcrypt hash, never plaintext. None means the account has no
    local credential and cannot authenticate with a password or cookie.

    teams is derived from team membership (teams own the member list). The
    provider ignores it on update_user() and fills it in on every read.

    repositories holds the repository roles granted to this user directly.
    """

    username: str
    password: str | None = None
    cookie: str | None = None
    cookie_issued_at: float = 0.0  # UTC epoch seconds, 0 = never issued
    display_name: str = ""
    email_address: str = ""
    can_admin: bool = False
    exclude_from_federation: bool = False
    repositories: set[str] = field(default_factory=set)
    teams: set[str] = field(default_factory=set)


@dataclass
class Team:
    """A named group of users sharing repository grants.

    users holds member usernames. The team is the owning side of membership.
    """

    name: str
    users: set[str] = field(default_factory=set)
    repositories: set[str] = field(default_factory=set)
    mailing_lists: set[str] = field(default_factory=set)

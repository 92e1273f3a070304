"""
auth/service.py -- The pluggable identity-and-access provider contract.

UserService is the interface request handlers, the admin API and the CLI
program against. Implementations own every user and team record and every
repository-role grant. A single instance is constructed at startup, set up
once, and passed to consumers explicitly (app.state.user_service in api/).

Result convention: lookups that miss return None; mutations that are refused
(unknown key, identifier collision) return False. Exceptions are reserved for
ConfigurationError and genuine faults.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from auth.models import Team, User
from core.config import Settings


class UserService(ABC):
    """Owns users, teams and repository grants, and authenticates requests against them."""

    #: Whether this implementation can issue remember-me cookies. Stores that
    #: delegate to an external directory typically cannot.
    SUPPORTS_COOKIES: bool = False

    @abstractmethod
    def setup(self, settings: Settings) -> None:
        """Prepare the service from a settings snapshot.

        Must be called exactly once before any other method. Raises
        ConfigurationError on failure; the service must not be used after.
        """

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def supports_cookies(self) -> bool:
        return self.SUPPORTS_COOKIES

    @abstractmethod
    def get_cookie(self, user: User) -> str | None:
        """Return the cookie value for the user, or None if none can be issued."""

    @abstractmethod
    def authenticate_cookie(self, cookie: str) -> User | None:
        """Resolve a previously issued cookie to its user, or None."""

    @abstractmethod
    def authenticate(self, username: str, password: str) -> User | None:
        """Authenticate a username/password pair. None on any mismatch."""

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @abstractmethod
    def get_user(self, username: str) -> User | None: ...

    @abstractmethod
    def update_user(self, user: User, username: str | None = None) -> bool:
        """Create, overwrite or rename a user.

        username is the user's current identifier; when it differs from
        user.username the record is renamed. Defaults to user.username.
        """

    def delete_user_model(self, user: User) -> bool:
        return self.delete_user(user.username)

    @abstractmethod
    def delete_user(self, username: str) -> bool: ...

    @abstractmethod
    def list_usernames(self) -> list[str]: ...

    @abstractmethod
    def list_users(self) -> list[User]: ...

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    @abstractmethod
    def get_team(self, teamname: str) -> Team | None: ...

    @abstractmethod
    def update_team(self, team: Team, teamname: str | None = None) -> bool:
        """Create, overwrite or rename a team. Same shape as update_user()."""

    def delete_team_model(self, team: Team) -> bool:
        return self.delete_team(team.name)

    @abstractmethod
    def delete_team(self, teamname: str) -> bool: ...

    @abstractmethod
    def list_teamnames(self) -> list[str]: ...

    @abstractmethod
    def list_teams(self) -> list[Team]: ...

    # ------------------------------------------------------------------
    # Repository roles
    # ------------------------------------------------------------------

    @abstractmethod
    def get_usernames_for_role(self, role: str) -> list[str]:
        """Users allowed to bypass the access restriction on a repository."""

    @abstractmethod
    def set_usernames_for_role(self, role: str, usernames: Iterable[str]) -> bool:
        """Replace the full set of users holding the role."""

    @abstractmethod
    def get_teamnames_for_role(self, role: str) -> list[str]: ...

    @abstractmethod
    def set_teamnames_for_role(self, role: str, teamnames: Iterable[str]) -> bool: ...

    @abstractmethod
    def rename_role(self, old_role: str, new_role: str) -> bool: ...

    @abstractmethod
    def delete_role(self, role: str) -> bool:
        """Remove a repository role from every user and team."""

    @abstractmethod
    def can_access_repository(self, username: str, repository: str) -> bool: ...

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def flush(self) -> bool:
        """Push any unsaved state to durable storage. True when nothing is pending."""
        return True

    def ping(self) -> bool:
        """Report whether the backing store is reachable."""
        return True

    def close(self) -> None:
        """Release the backing store."""

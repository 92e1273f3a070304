"""
auth/provider.py -- StoreUserService: the built-in identity provider.

All users and teams live in memory as an immutable snapshot. Readers take a
single reference to the current snapshot, so they see either the state before
a mutation or the state after it, never a mixture.

Writers serialize on one store-wide lock. Each write deep-copies the
snapshot into a draft, applies the change and every cascade to the draft,
rebuilds the derived indexes (user team sets, cookie lookup) and publishes
the draft with one reference swap. If the change is refused or raises, the
draft is dropped and the published state is untouched.

Persistence to the AccessStore happens after publishing, outside the write
lock. Saves are serialized and always write the newest published snapshot,
so a late writer never puts an older version back on disk. A failed save
is logged and retried on the next write or flush(); authentication never
touches disk.

Identifiers are indexed by normalize_name() (case-insensitive), repository
roles by normalize_role(). Membership sets store each user's canonical
spelling of their username.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from auth.exceptions import ConfigurationError, ErrorCode
from auth.models import Team, User
from auth.service import UserService
from auth.store import AccessStore
from auth.tokens import cookie_digest, digests_match, verify_dummy, verify_password
from core.config import Settings

logger = logging.getLogger("repogate.auth")


def normalize_name(name: str) -> str:
    """Index key for usernames and teamnames."""
    return name.strip().lower()


def normalize_role(role: str) -> str:
    """Canonical form of a repository role."""
    return role.strip().lower()


def _roles(values: Iterable[str]) -> set[str]:
    return {normalize_role(v) for v in values if v.strip()}


def _sorted_names(names: Iterable[str]) -> list[str]:
    return sorted(names, key=str.lower)


# ---------------------------------------------------------------------------
# Snapshot / draft
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Snapshot:
    """Published state. Nothing reachable from it is mutated after publishing."""

    version: int
    users: dict[str, User]
    teams: dict[str, Team]
    cookies: dict[str, str]  # cookie value -> user key


@dataclass
class _Draft:
    """Private working copy for a single write."""

    users: dict[str, User]
    teams: dict[str, Team]

    def freeze(self, version: int) -> _Snapshot:
        # User team sets are derived from team membership, recomputed here so
        # no write path has to maintain them by hand. A member without a user
        # record raises KeyError and aborts the write.
        for user in self.users.values():
            user.teams = set()
        for team in self.teams.values():
            for member in team.users:
                self.users[normalize_name(member)].teams.add(team.name)
        cookies = {u.cookie: key for key, u in self.users.items() if u.cookie}
        return _Snapshot(version=version, users=self.users, teams=self.teams, cookies=cookies)


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class StoreUserService(UserService):
    """UserService backed by an in-memory snapshot and an AccessStore.

    Usage:
        service = StoreUserService()
        service.setup(get_settings())
        service.update_user(User(username="alice", password=hash_password("s3cret")))
        user = service.authenticate("alice", "s3cret")
        service.close()
    """

    SUPPORTS_COOKIES = True

    def __init__(self) -> None:
        self._settings: Settings | None = None
        self._store: AccessStore | None = None
        self._state = _Snapshot(version=0, users={}, teams={}, cookies={})
        self._write_lock = threading.RLock()
        self._persist_lock = threading.Lock()
        self._persisted_version = 0

    def __repr__(self) -> str:
        if self._store is None:
            return f"{type(self).__name__}(not set up)"
        return f"{type(self).__name__}({self._store.engine.url.render_as_string(hide_password=True)})"

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup(self, settings: Settings) -> None:
        """Open the backing store and load it into the first snapshot.

        The settings are copied so later changes to the caller's object have
        no effect. Any failure raises ConfigurationError and leaves the
        service unusable.
        """
        if self._settings is not None:
            raise ConfigurationError(f"{self!r} is already set up")
        snapshot = settings.model_copy(deep=True)
        try:
            store = AccessStore(snapshot.users_db_url)
        except (SQLAlchemyError, ImportError, ValueError) as exc:
            # ImportError: the URL names a DBAPI driver that is not installed.
            raise ConfigurationError(f"Cannot open user store: {exc}") from exc
        try:
            users, teams = store.load()
            draft = self._build_draft(users, teams)
            state = draft.freeze(version=0)
        except (SQLAlchemyError, ValueError, KeyError) as exc:
            store.close()
            raise ConfigurationError(f"Cannot load user store: {exc}") from exc

        self._store = store
        self._state = state
        self._settings = snapshot
        logger.info("%r ready (%d users, %d teams)", self, len(state.users), len(state.teams))

    @staticmethod
    def _build_draft(users: list[User], teams: list[Team]) -> _Draft:
        draft = _Draft(users={}, teams={})
        for user in users:
            key = normalize_name(user.username)
            if not key or key in draft.users:
                raise ValueError(f"duplicate or empty username {user.username!r}")
            user.repositories = _roles(user.repositories)
            draft.users[key] = user
        for team in teams:
            key = normalize_name(team.name)
            if not key or key in draft.teams:
                raise ValueError(f"duplicate or empty team name {team.name!r}")
            missing = sorted(m for m in team.users if normalize_name(m) not in draft.users)
            if missing:
                raise ValueError(f"team {team.name!r} lists unknown members {missing}")
            team.users = {draft.users[normalize_name(m)].username for m in team.users}
            team.repositories = _roles(team.repositories)
            draft.teams[key] = team
        return draft

    def _snapshot(self) -> _Snapshot:
        if self._settings is None:
            raise ConfigurationError(f"{type(self).__name__} used before setup()")
        return self._state

    # ------------------------------------------------------------------
    # Write transaction and persistence
    # ------------------------------------------------------------------

    def _apply(self, description: str, change: Callable[[_Draft], bool]) -> bool:
        """Run change() against a draft and publish it if it returns True."""
        self._snapshot()
        with self._write_lock:
            current = self._state
            draft = _Draft(users=copy.deepcopy(current.users), teams=copy.deepcopy(current.teams))
            if not change(draft):
                return False
            published = draft.freeze(current.version + 1)
            self._state = published
        logger.info("%s (version %d)", description, published.version)
        self._persist()
        return True

    def _persist(self) -> bool:
        """Save the newest published snapshot unless it is already on disk.

        Always reads self._state under the lock, so a writer that reaches
        this point late never writes back an older version than one a
        failed save left pending.
        """
        with self._persist_lock:
            snapshot = self._state
            if snapshot.version <= self._persisted_version:
                return True
            try:
                self._store.save(snapshot.users.values(), snapshot.teams.values())
            except SQLAlchemyError:
                logger.exception(
                    "Failed to persist version %d; in-memory state kept, retrying on next write",
                    snapshot.version,
                )
                return False
            self._persisted_version = snapshot.version
            return True

    def flush(self) -> bool:
        """Persist the current snapshot if an earlier save failed."""
        self._snapshot()
        return self._persist()

    def ping(self) -> bool:
        # Not under _persist_lock: health checks must not wait out a save.
        self._snapshot()
        try:
            return self._store.ping()
        except SQLAlchemyError:
            logger.warning("User store did not answer ping", exc_info=True)
            return False

    def close(self) -> None:
        if self._store is not None:
            self.flush()
            self._store.close()

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    def _cookie_valid(self, user: User) -> bool:
        if not user.cookie or not user.password:
            return False
        expected = cookie_digest(
            self._settings.secret_key, normalize_name(user.username), user.password, user.cookie_issued_at
        )
        if not digests_match(user.cookie, expected):
            return False
        max_age = self._settings.cookie_max_age_seconds
        return not max_age or time.time() - user.cookie_issued_at < max_age

    def get_cookie(self, user: User) -> str | None:
        if not self.supports_cookies():
            logger.debug("%s cannot issue cookies (%s)", type(self).__name__, ErrorCode.unsupported.value)
            return None
        key = normalize_name(user.username)
        current = self._snapshot().users.get(key)
        if current is not None and self._cookie_valid(current):
            return current.cookie

        issued: dict[str, str] = {}

        def change(draft: _Draft) -> bool:
            record = draft.users.get(key)
            if record is None or not record.password:
                logger.warning("Cannot issue cookie for %r: %s", user.username, ErrorCode.not_found.value)
                return False
            if self._cookie_valid(record):
                # Another request issued one while we waited for the lock.
                issued["cookie"] = record.cookie
                return False
            now = time.time()
            record.cookie = cookie_digest(self._settings.secret_key, key, record.password, now)
            record.cookie_issued_at = now
            issued["cookie"] = record.cookie
            return True

        self._apply(f"Issued cookie for {user.username!r}", change)
        return issued.get("cookie")

    def authenticate_cookie(self, cookie: str) -> User | None:
        state = self._snapshot()
        if not self.supports_cookies() or not cookie:
            return None
        key = state.cookies.get(cookie)
        user = state.users.get(key) if key is not None else None
        if user is None or not digests_match(user.cookie or "", cookie) or not self._cookie_valid(user):
            logger.debug("Cookie authentication failed")
            return None
        return copy.deepcopy(user)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def authenticate(self, username: str, password: str) -> User | None:
        """Check a username/password pair against the current snapshot.

        Unknown users and users without a password still cost one bcrypt
        comparison, so the two failure cases take the same time.
        """
        state = self._snapshot()
        user = state.users.get(normalize_name(username or ""))
        if user is None or not user.password:
            verify_dummy(password or "")
            logger.debug("Authentication failed for %r", username)
            return None
        if not verify_password(password or "", user.password):
            logger.debug("Authentication failed for %r", username)
            return None
        return copy.deepcopy(user)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_user(self, username: str) -> User | None:
        user = self._snapshot().users.get(normalize_name(username))
        return copy.deepcopy(user) if user is not None else None

    def update_user(self, user: User, username: str | None = None) -> bool:
        old_name = username if username is not None else user.username
        old_key = normalize_name(old_name)
        new_key = normalize_name(user.username)
        if not new_key:
            logger.warning("Refusing to store a user with an empty username")
            return False

        record = copy.deepcopy(user)
        record.username = user.username.strip()
        record.repositories = _roles(user.repositories)

        def change(draft: _Draft) -> bool:
            if new_key != old_key and new_key in draft.users:
                logger.warning(
                    "Cannot rename user %r to %r: %s", old_name, record.username, ErrorCode.conflict.value
                )
                return False
            original = draft.users.pop(old_key, None)
            if original is not None and original.password == record.password and old_key == new_key:
                record.cookie, record.cookie_issued_at = original.cookie, original.cookie_issued_at
            else:
                record.cookie, record.cookie_issued_at = None, 0.0
            if original is not None and original.username != record.username:
                for team in draft.teams.values():
                    if original.username in team.users:
                        team.users.discard(original.username)
                        team.users.add(record.username)
            draft.users[new_key] = record
            return True

        if old_key != new_key:
            description = f"Renamed user {old_name!r} to {record.username!r}"
        else:
            description = f"Updated user {record.username!r}"
        return self._apply(description, change)

    def delete_user(self, username: str) -> bool:
        key = normalize_name(username)

        def change(draft: _Draft) -> bool:
            user = draft.users.pop(key, None)
            if user is None:
                logger.warning("Cannot delete user %r: %s", username, ErrorCode.not_found.value)
                return False
            for team in draft.teams.values():
                team.users.discard(user.username)
            return True

        return self._apply(f"Deleted user {username!r}", change)

    def list_usernames(self) -> list[str]:
        return _sorted_names(u.username for u in self._snapshot().users.values())

    def list_users(self) -> list[User]:
        users = self._snapshot().users.values()
        return [copy.deepcopy(u) for u in sorted(users, key=lambda u: u.username.lower())]

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    def get_team(self, teamname: str) -> Team | None:
        team = self._snapshot().teams.get(normalize_name(teamname))
        return copy.deepcopy(team) if team is not None else None

    def update_team(self, team: Team, teamname: str | None = None) -> bool:
        old_name = teamname if teamname is not None else team.name
        old_key = normalize_name(old_name)
        new_key = normalize_name(team.name)
        if not new_key:
            logger.warning("Refusing to store a team with an empty name")
            return False

        member_keys = {normalize_name(m) for m in team.users}
        record = Team(
            name=team.name.strip(),
            repositories=_roles(team.repositories),
            mailing_lists=set(team.mailing_lists),
        )

        def change(draft: _Draft) -> bool:
            if new_key != old_key and new_key in draft.teams:
                logger.warning(
                    "Cannot rename team %r to %r: %s", old_name, record.name, ErrorCode.conflict.value
                )
                return False
            missing = sorted(member_keys - draft.users.keys())
            if missing:
                logger.warning(
                    "Cannot store team %r, unknown members %s: %s", record.name, missing, ErrorCode.not_found.value
                )
                return False
            record.users = {draft.users[k].username for k in member_keys}
            draft.teams.pop(old_key, None)
            draft.teams[new_key] = record
            return True

        if old_key != new_key:
            description = f"Renamed team {old_name!r} to {record.name!r}"
        else:
            description = f"Updated team {record.name!r}"
        return self._apply(description, change)

    def delete_team(self, teamname: str) -> bool:
        key = normalize_name(teamname)

        def change(draft: _Draft) -> bool:
            if draft.teams.pop(key, None) is None:
                logger.warning("Cannot delete team %r: %s", teamname, ErrorCode.not_found.value)
                return False
            return True

        return self._apply(f"Deleted team {teamname!r}", change)

    def list_teamnames(self) -> list[str]:
        return _sorted_names(t.name for t in self._snapshot().teams.values())

    def list_teams(self) -> list[Team]:
        teams = self._snapshot().teams.values()
        return [copy.deepcopy(t) for t in sorted(teams, key=lambda t: t.name.lower())]

    # ------------------------------------------------------------------
    # Repository roles
    # ------------------------------------------------------------------

    def get_usernames_for_role(self, role: str) -> list[str]:
        role = normalize_role(role)
        return _sorted_names(u.username for u in self._snapshot().users.values() if role in u.repositories)

    def set_usernames_for_role(self, role: str, usernames: Iterable[str]) -> bool:
        role = normalize_role(role)
        if not role:
            logger.warning("Refusing to grant an empty role")
            return False
        wanted = {normalize_name(n) for n in usernames}

        def change(draft: _Draft) -> bool:
            missing = sorted(wanted - draft.users.keys())
            if missing:
                logger.warning("Cannot grant %r to unknown users %s: %s", role, missing, ErrorCode.not_found.value)
                return False
            for key, user in draft.users.items():
                if key in wanted:
                    user.repositories.add(role)
                else:
                    user.repositories.discard(role)
            return True

        return self._apply(f"Set {len(wanted)} users for role {role!r}", change)

    def get_teamnames_for_role(self, role: str) -> list[str]:
        role = normalize_role(role)
        return _sorted_names(t.name for t in self._snapshot().teams.values() if role in t.repositories)

    def set_teamnames_for_role(self, role: str, teamnames: Iterable[str]) -> bool:
        role = normalize_role(role)
        if not role:
            logger.warning("Refusing to grant an empty role")
            return False
        wanted = {normalize_name(n) for n in teamnames}

        def change(draft: _Draft) -> bool:
            missing = sorted(wanted - draft.teams.keys())
            if missing:
                logger.warning("Cannot grant %r to unknown teams %s: %s", role, missing, ErrorCode.not_found.value)
                return False
            for key, team in draft.teams.items():
                if key in wanted:
                    team.repositories.add(role)
                else:
                    team.repositories.discard(role)
            return True

        return self._apply(f"Set {len(wanted)} teams for role {role!r}", change)

    def rename_role(self, old_role: str, new_role: str) -> bool:
        old_role, new_role = normalize_role(old_role), normalize_role(new_role)
        if not old_role or not new_role:
            logger.warning("Refusing to rename role %r to %r", old_role, new_role)
            return False
        if old_role == new_role:
            self._snapshot()
            return True

        def change(draft: _Draft) -> bool:
            holders = [*draft.users.values(), *draft.teams.values()]
            if any(new_role in h.repositories for h in holders):
                logger.warning(
                    "Cannot rename role %r to %r, target already granted: %s",
                    old_role,
                    new_role,
                    ErrorCode.conflict.value,
                )
                return False
            for holder in holders:
                if old_role in holder.repositories:
                    holder.repositories.discard(old_role)
                    holder.repositories.add(new_role)
            return True

        return self._apply(f"Renamed role {old_role!r} to {new_role!r}", change)

    def delete_role(self, role: str) -> bool:
        role = normalize_role(role)
        if not role:
            logger.warning("Refusing to delete an empty role")
            return False

        def change(draft: _Draft) -> bool:
            for holder in [*draft.users.values(), *draft.teams.values()]:
                holder.repositories.discard(role)
            return True

        return self._apply(f"Deleted role {role!r}", change)

    # ------------------------------------------------------------------
    # Access checks
    # ------------------------------------------------------------------

    def can_access_repository(self, username: str, repository: str) -> bool:
        """True if the user is an admin or holds the role directly or via a team."""
        state = self._snapshot()
        user = state.users.get(normalize_name(username))
        if user is None:
            return False
        role = normalize_role(repository)
        if user.can_admin or role in user.repositories:
            return True
        return any(role in state.teams[normalize_name(t)].repositories for t in user.teams)

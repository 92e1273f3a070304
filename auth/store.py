"""
auth/store.py -- SQLAlchemy Core persistence for users, teams and grants.

Pattern: Repository + Data Mapper. AccessStore is the repository;
_row_to_user / _row_to_team are the mappers. The provider keeps the working
state in memory and hands complete snapshots to save(); only load() and
save() ever touch SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

Schema:
  users          one row per user; repositories as a JSON array in text.
  teams          one row per team; repositories and mailing_lists as JSON.
  team_members   (team, username) pairs. Teams own membership, so the
                 user's team set is rebuilt from this table on load.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from auth.models import Team, User

logger = logging.getLogger("repogate.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("username", String(255), primary_key=True),
    Column("password", Text),  # bcrypt hash; NULL = no local credential
    Column("cookie", String(64)),
    Column("cookie_issued_at", Float, nullable=False, server_default="0"),
    Column("display_name", String(255), nullable=False, server_default=""),
    Column("email_address", String(255), nullable=False, server_default=""),
    Column("can_admin", Integer, nullable=False, server_default="0"),
    Column("exclude_from_federation", Integer, nullable=False, server_default="0"),
    Column("repositories", Text),  # JSON array serialized as text
)

_teams = Table(
    "teams",
    _metadata,
    Column("name", String(255), primary_key=True),
    Column("repositories", Text),  # JSON array
    Column("mailing_lists", Text),  # JSON array
)

_team_members = Table(
    "team_members",
    _metadata,
    Column("team", String(255), nullable=False),
    Column("username", String(255), nullable=False),
    UniqueConstraint("team", "username", name="uq_team_member"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during a save."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _is_memory_sqlite(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in db_url


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccessStore:
    """Durable home of the provider's users and teams.

    Usage:
        store = AccessStore("sqlite:///users.db")
        users, teams = store.load()
        store.save(users, teams)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.db_url = db_url
        kwargs: dict = {}
        if db_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if _is_memory_sqlite(db_url):
                # One shared connection, otherwise each thread sees its own
                # empty in-memory database.
                kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(db_url, **kwargs)
        if db_url.startswith("sqlite") and not _is_memory_sqlite(db_url):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def load(self) -> tuple[list[User], list[Team]]:
        """Read every user and team. User team sets are rebuilt from team_members."""
        with self.engine.connect() as conn:
            user_rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
            team_rows = conn.execute(_teams.select().order_by(_teams.c.name)).fetchall()
            member_rows = conn.execute(_team_members.select()).fetchall()

        users = [_row_to_user(r) for r in user_rows]
        teams = [_row_to_team(r) for r in team_rows]

        by_user = {u.username: u for u in users}
        by_team = {t.name: t for t in teams}
        for row in member_rows:
            team = by_team.get(row.team)
            if team is None:
                logger.warning("Ignoring membership of %r in unknown team %r", row.username, row.team)
                continue
            team.users.add(row.username)
            user = by_user.get(row.username)
            if user is not None:
                user.teams.add(team.name)
        return users, teams

    def save(self, users: Iterable[User], teams: Iterable[Team]) -> None:
        """Replace the stored state with the given snapshot in one transaction."""
        user_rows = [
            {
                "username": u.username,
                "password": u.password,
                "cookie": u.cookie,
                "cookie_issued_at": u.cookie_issued_at,
                "display_name": u.display_name,
                "email_address": u.email_address,
                "can_admin": 1 if u.can_admin else 0,
                "exclude_from_federation": 1 if u.exclude_from_federation else 0,
                "repositories": json.dumps(sorted(u.repositories)),
            }
            for u in users
        ]
        team_rows = []
        member_rows = []
        for t in teams:
            team_rows.append(
                {
                    "name": t.name,
                    "repositories": json.dumps(sorted(t.repositories)),
                    "mailing_lists": json.dumps(sorted(t.mailing_lists)),
                }
            )
            member_rows.extend({"team": t.name, "username": m} for m in sorted(t.users))

        with self.engine.begin() as conn:
            conn.execute(_team_members.delete())
            conn.execute(_teams.delete())
            conn.execute(_users.delete())
            if user_rows:
                conn.execute(_users.insert(), user_rows)
            if team_rows:
                conn.execute(_teams.insert(), team_rows)
            if member_rows:
                conn.execute(_team_members.insert(), member_rows)
        logger.debug("Saved %d users, %d teams", len(user_rows), len(team_rows))

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _json_set(value: str | None) -> set[str]:
    return set(json.loads(value)) if value else set()


def _row_to_user(row) -> User:
    return User(
        username=row.username,
        password=row.password,
        cookie=row.cookie,
        cookie_issued_at=row.cookie_issued_at or 0.0,
        display_name=row.display_name or "",
        email_address=row.email_address or "",
        can_admin=bool(row.can_admin),
        exclude_from_federation=bool(row.exclude_from_federation),
        repositories=_json_set(row.repositories),
    )


def _row_to_team(row) -> Team:
    return Team(
        name=row.name,
        repositories=_json_set(row.repositories),
        mailing_lists=_json_set(row.mailing_lists),
    )

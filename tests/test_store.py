"""Tests for auth/store.py and provider persistence.

Covers:
- AccessStore save / load round trip, including rebuilt team membership
- provider state survives a restart on a file-backed SQLite database
- a failed save keeps the in-memory state and is retried by flush()
- a late writer saves the newest snapshot, never an older one
- inconsistent stored data makes setup() fail with ConfigurationError
- ping() on a live store
"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from auth.exceptions import ConfigurationError
from auth.models import Team, User
from auth.provider import StoreUserService
from auth.store import AccessStore
from auth.tokens import hash_password


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'users.db'}"


@pytest.fixture
def open_service(db_url: str, settings_factory):
    """Return a callable that sets up a fresh provider over the test database."""

    def _open() -> StoreUserService:
        svc = StoreUserService()
        svc.setup(settings_factory(users_db_url=db_url))
        return svc

    return _open


class TestAccessStore:
    def test_round_trip(self, db_url: str) -> None:
        store = AccessStore(db_url)
        alice = User(
            username="alice",
            password="hash",
            display_name="Alice",
            email_address="alice@example.com",
            can_admin=True,
            exclude_from_federation=True,
            repositories={"repo/a", "repo/b"},
        )
        store.save([alice], [Team(name="core", users={"alice"}, repositories={"repo/x"}, mailing_lists={"core@x"})])

        users, teams = store.load()
        store.close()

        assert len(users) == 1
        loaded = users[0]
        assert loaded.username == "alice"
        assert loaded.can_admin is True
        assert loaded.exclude_from_federation is True
        assert loaded.repositories == {"repo/a", "repo/b"}
        assert loaded.teams == {"core"}
        assert teams == [Team(name="core", users={"alice"}, repositories={"repo/x"}, mailing_lists={"core@x"})]

    def test_save_replaces_previous_state(self, db_url: str) -> None:
        store = AccessStore(db_url)
        store.save([User(username="alice"), User(username="bob")], [Team(name="core", users={"bob"})])
        store.save([User(username="alice")], [])
        users, teams = store.load()
        store.close()
        assert [u.username for u in users] == ["alice"]
        assert teams == []

    def test_ping(self, db_url: str) -> None:
        store = AccessStore(db_url)
        assert store.ping() is True
        store.close()


class TestProviderPersistence:
    def test_state_survives_restart(self, open_service) -> None:
        svc = open_service()
        svc.update_user(User(username="Alice", password=hash_password("pw"), repositories={"repo/a"}))
        svc.update_user(User(username="bob"))
        svc.update_team(Team(name="core", users={"alice", "bob"}, repositories={"repo/x"}))
        cookie = svc.get_cookie(User(username="alice"))
        svc.close()

        reopened = open_service()
        assert reopened.list_usernames() == ["Alice", "bob"]
        assert reopened.get_user("alice").teams == {"core"}
        assert reopened.get_teamnames_for_role("repo/x") == ["core"]
        assert reopened.authenticate("alice", "pw") is not None
        assert reopened.authenticate_cookie(cookie).username == "Alice"
        reopened.close()

    def test_cascade_is_persisted(self, open_service) -> None:
        svc = open_service()
        svc.update_user(User(username="alice"))
        svc.update_team(Team(name="core", users={"alice"}))
        alice = svc.get_user("alice")
        alice.username = "alicia"
        svc.update_user(alice, "alice")
        svc.close()

        reopened = open_service()
        assert reopened.get_team("core").users == {"alicia"}
        reopened.close()

    def test_failed_save_is_retried(self, open_service, monkeypatch: pytest.MonkeyPatch) -> None:
        """A save error is logged; the write still succeeds and flush() persists it later."""
        svc = open_service()
        real_save = svc._store.save

        def failing_save(users, teams):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(svc._store, "save", failing_save)
        assert svc.update_user(User(username="alice"))
        assert svc.get_user("alice") is not None
        assert svc.flush() is False

        monkeypatch.setattr(svc._store, "save", real_save)
        assert svc.flush() is True
        svc.close()

        reopened = open_service()
        assert reopened.list_usernames() == ["alice"]
        reopened.close()

    def test_late_writer_saves_newest_version(self, open_service, db_url: str, monkeypatch: pytest.MonkeyPatch) -> None:
        """A writer that reaches the save late persists the newest state, not its own older one."""
        svc = open_service()
        arrived = threading.Event()
        release = threading.Event()
        real_lock = svc._persist_lock

        class _GatedLock:
            """Holds the "writer-a" thread at the save until released."""

            def __enter__(self):
                if threading.current_thread().name == "writer-a" and not arrived.is_set():
                    arrived.set()
                    release.wait(timeout=5)
                return real_lock.__enter__()

            def __exit__(self, *exc_info):
                return real_lock.__exit__(*exc_info)

        real_save = svc._store.save
        failed: list[bool] = []

        def flaky_save(users, teams):
            users = list(users)
            if not failed and any(u.username == "bob" for u in users):
                failed.append(True)
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            real_save(users, teams)

        monkeypatch.setattr(svc, "_persist_lock", _GatedLock())
        monkeypatch.setattr(svc._store, "save", flaky_save)

        writer = threading.Thread(target=svc.update_user, args=(User(username="alice"),), name="writer-a")
        writer.start()
        assert arrived.wait(timeout=5)
        # Published after alice's version; its own save fails.
        assert svc.update_user(User(username="bob"))
        release.set()
        writer.join(timeout=5)
        assert not writer.is_alive()

        store = AccessStore(db_url)
        users, _teams = store.load()
        store.close()
        assert [u.username for u in users] == ["alice", "bob"]
        svc.close()


class TestCorruptStore:
    def test_duplicate_usernames_rejected(self, db_url: str, open_service) -> None:
        store = AccessStore(db_url)
        store.save([User(username="alice"), User(username="ALICE")], [])
        store.close()
        with pytest.raises(ConfigurationError):
            open_service()

    def test_team_member_without_user_rejected(self, db_url: str, open_service) -> None:
        store = AccessStore(db_url)
        store.save([], [Team(name="core", users={"ghost"})])
        store.close()
        with pytest.raises(ConfigurationError):
            open_service()

"""
tests/conftest.py -- Shared test fixtures for RepoGate.

This module provides:
  - settings / service: an isolated in-memory StoreUserService per test
  - seeded: the same service pre-loaded with users, a team and grants
  - api_client: TestClient with an admin JWT for API integration tests

The environment is prepared before any auth/core import: DEBUG and a fixed
SECRET_KEY so get_settings() succeeds, BCRYPT_ROUNDS=4 so hashing is fast,
and a generous login rate limit so repeated logins in one module pass.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("USERS_DB_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Team, User
from auth.provider import StoreUserService
from auth.tokens import create_access_token, hash_password
from core.config import Settings

# ---------------------------------------------------------------------------
# Provider fixtures
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": "provider-secret-key-abcdefghijklmnopqrstuvwxyz",
        "users_db_url": "sqlite://",
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_factory():
    """Build Settings for a test-local provider; keyword arguments override defaults."""
    return make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def service(settings: Settings) -> Generator[StoreUserService, None, None]:
    """A set-up provider over a private in-memory SQLite store."""
    svc = StoreUserService()
    svc.setup(settings)
    yield svc
    svc.close()


@pytest.fixture
def seeded(service: StoreUserService) -> StoreUserService:
    """Provider with a small realistic population.

    Users:
      - alice: password "alice-pw", direct grant on repo/a
      - bob:   password "bob-pw", no direct grants
      - carol: admin, no password
    Teams:
      - core: members alice and bob, granted repo/x
    """
    assert service.update_user(User(username="alice", password=hash_password("alice-pw"), repositories={"repo/a"}))
    assert service.update_user(User(username="bob", password=hash_password("bob-pw")))
    assert service.update_user(User(username="carol", can_admin=True))
    assert service.update_team(Team(name="core", users={"alice", "bob"}, repositories={"repo/x"}))
    return service


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(service: StoreUserService):
    """Return a lifespan that wires a pre-built test provider into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str], None, None]:
    """Yield (client, token) for API integration tests.

    The admin user is username="testadmin", password="testpass123". The
    token is a JWT for that user, for use in Authorization headers.
    """
    service = StoreUserService()
    service.setup(make_settings())
    service.update_user(User(username="testadmin", password=hash_password("testpass123"), can_admin=True))

    token = create_access_token("testadmin", can_admin=True, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token

    service.close()

"""
tests/conftest.py -- Shared test fixtures for authgate tests.

This module provides:
  - settings: an explicit Settings object (fast bcrypt, fixed distinct secrets)
  - engine:   a fresh SQLite file database per test under tmp_path
  - stores / flow: the auth components wired the same way api.main does it
  - client:   TestClient over the real app with a patched lifespan

Design: a file database (not :memory:) per test because TestClient runs sync
route handlers in a worker thread pool and the concurrency tests hit the same
database from several threads. A file under tmp_path is shared by every
connection and disappears with the test.

The env vars must be set before any api/ import so get_settings() (used by
the rate limiter) builds in dev mode with generous limits.

Cookies: the app sets Secure cookies and TestClient talks plain http, so the
client's cookie jar never sends them back. Tests pass cookies explicitly with
helpers.cookie_header() -- each request states exactly which session
markers it holds.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any api/core import so get_settings() builds in dev
# mode instead of raising ValueError for missing signing secrets.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REFRESH_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app, configure_auth
from auth.flow import AuthFlow
from auth.passwords import PasswordHasher
from auth.store import EntitlementStore, SessionStore, UserStore, create_auth_engine
from auth.tokens import TokenService
from core.config import Settings
from helpers import ACCESS_SECRET, REFRESH_SECRET


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        debug=False,
        jwt_access_secret=ACCESS_SECRET,
        jwt_refresh_secret=REFRESH_SECRET,
        bcrypt_rounds=4,
        secure_cookies=True,
    )


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    eng = create_auth_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def users(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def sessions(engine: Engine) -> SessionStore:
    return SessionStore(engine)


@pytest.fixture
def entitlements(engine: Engine) -> EntitlementStore:
    return EntitlementStore(engine)


@pytest.fixture
def tokens(settings: Settings) -> TokenService:
    return TokenService(settings)


@pytest.fixture
def flow(settings, users, sessions, entitlements, tokens) -> AuthFlow:
    return AuthFlow(settings, users, sessions, entitlements, hasher=PasswordHasher(rounds=4), tokens=tokens)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, engine: Engine):
    """Return an async context manager that replaces the real lifespan.

    Wires the test settings and engine through the same configure_auth() the
    real lifespan uses, so routes see isolated components.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        configure_auth(app, settings, engine)
        yield

    return test_lifespan


@pytest.fixture
def client(settings: Settings, engine: Engine) -> Generator[TestClient, None, None]:
    app.router.lifespan_context = _patch_lifespan(settings, engine)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c



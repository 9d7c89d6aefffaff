"""
tests/conftest.py -- Shared test fixtures for AuthApp.

This module provides:
  - store / hasher / service: function-scoped in-memory CredentialStore with
    the baseline roles (plus an extra "Auditor" role) for unit tests
  - basic_auth(): build an Authorization header value
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: module-scoped TestClient over a seeded shared-memory store

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit-test fixtures run on one thread and use plain :memory:.

Environment variables must be set before any api/ import so get_settings()
sees them on first (cached) call.
"""

from __future__ import annotations

import base64
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before api/core imports. The login limit is raised so the
# module-scoped client does not trip it; one test lowers it explicitly.
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.hashing import PasswordHasher
from auth.seed import seed_baseline
from auth.service import IdentityService
from auth.store import CredentialStore, InsertRole

ADMIN_EMAIL = "admin@task.com"
ADMIN_PASSWORD = "Admin123!"
USER_EMAIL = "user@task.com"
USER_PASSWORD = "User123!"


def basic_auth(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[CredentialStore, None, None]:
    """Empty in-memory store with roles Admin, User and Auditor."""
    s = CredentialStore("sqlite:///:memory:")
    result = s.apply([InsertRole("Admin"), InsertRole("User"), InsertRole("Auditor")])
    assert result.committed
    yield s
    s.close()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher()


@pytest.fixture
def service(store: CredentialStore, hasher: PasswordHasher) -> IdentityService:
    return IdentityService(store, hasher)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store into app.state so TestClient routes see
    an isolated DB rather than the configured DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.identity_service = IdentityService(store, PasswordHasher())
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient over a freshly seeded store.

    The database name includes the test module name so modules never share
    state. Seeded accounts: admin@task.com (Admin), user@task.com (User).
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    store = CredentialStore(f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")
    seed_baseline(store, PasswordHasher())

    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    store.close()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": basic_auth(ADMIN_EMAIL, ADMIN_PASSWORD)}


@pytest.fixture
def user_headers() -> dict[str, str]:
    return {"Authorization": basic_auth(USER_EMAIL, USER_PASSWORD)}

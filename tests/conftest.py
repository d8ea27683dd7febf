"""
tests/conftest.py -- Shared test fixtures for Capgate.

This module provides:
  - make_store(): isolated named shared-memory SQLite UserStore
  - store / registry / tokens / single_use_tokens / authenticator: unit fixtures
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers and dependencies in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Each TokenService fixture gets its own UsedTokenSet so single-use state never
leaks between tests through the process-wide set.

DEBUG must be set before any auth/core import so get_settings() auto-generates
SECRET_KEY in dev mode instead of raising ValueError. BCRYPT_ROUNDS is lowered
so password hashing does not dominate the run time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SIGNIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_auth
from auth.authenticator import Authenticator
from auth.roles import DEFAULT_ROLES, RoleRegistry
from auth.store import UserStore
from auth.tokens import TokenService, UsedTokenSet

TEST_SECRET = "capgate-test-secret-0123456789abcdef0123456789"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(name: str | None = None) -> UserStore:
    """Create an isolated named shared-memory store.

    Args:
        name: Database name. Defaults to a random one so tests never share state.
    """
    db_name = name or f"test_auth_{uuid.uuid4().hex}"
    return UserStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")


def make_token_service(single_use: bool = False, lifetime: int = 300) -> TokenService:
    return TokenService(TEST_SECRET, lifetime=lifetime, single_use=single_use, used_tokens=UsedTokenSet())


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def registry(store: UserStore) -> RoleRegistry:
    """RoleRegistry over `store` with admin/editor/user already seeded."""
    r = RoleRegistry(store)
    r.seed(DEFAULT_ROLES)
    return r


@pytest.fixture
def secret() -> str:
    return TEST_SECRET


@pytest.fixture
def token_service_factory():
    """Build a TokenService with its own UsedTokenSet: factory(single_use=..., lifetime=...)."""
    return make_token_service


@pytest.fixture
def tokens() -> TokenService:
    return make_token_service()


@pytest.fixture
def single_use_tokens() -> TokenService:
    return make_token_service(single_use=True)


@pytest.fixture
def authenticator(store: UserStore, registry: RoleRegistry, tokens: TokenService) -> Authenticator:
    return Authenticator(store, registry, tokens)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, token_service: TokenService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store and token service into app.state so
    TestClient routes see an isolated database and used-token set.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_auth(app, user_store, token_service)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with isolated auth state.

    Roles are seeded by wire_auth() during startup, exactly as in production.
    Single-use enforcement is off so tokens can be reused across requests.
    """
    user_store = make_store(f"test_auth_api_{uuid.uuid4().hex}")
    app.router.lifespan_context = _patch_lifespan(user_store, make_token_service())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    user_store.close()

"""
tests/conftest.py -- Shared test fixtures for the account lifecycle tests.

This module provides:
  - engine / stores: an isolated in-memory SQLite database per test
  - hasher: bcrypt at the minimum cost so tests stay fast
  - service: AccountService wired over the in-memory stores
  - registered: a service with one NORMAL account already registered
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

The DEBUG env var must be set before any api/ import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# Set DEBUG before any core/api import so get_settings() can auto-generate
# SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from auth.service import AccountService
from auth.store import SqlAccountStore, SqlRefreshTokenStore, SqlRevokedTokenStore, open_engine
from auth.tokens import BcryptHasher, JWTCodec

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"
USERNAME = "asdfg12345"
PASSWORD = "TestPassword123!"


# ---------------------------------------------------------------------------
# Store and service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    eng = open_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def account_store(engine) -> SqlAccountStore:
    return SqlAccountStore(engine)


@pytest.fixture
def refresh_store(engine) -> SqlRefreshTokenStore:
    return SqlRefreshTokenStore(engine, ttl_seconds=3600)


@pytest.fixture
def revoked_store(engine) -> SqlRevokedTokenStore:
    return SqlRevokedTokenStore(engine)


@pytest.fixture
def hasher() -> BcryptHasher:
    return BcryptHasher(rounds=4)


@pytest.fixture
def codec() -> JWTCodec:
    return JWTCodec(TEST_SECRET, expire_seconds=600)


@pytest.fixture
def service(account_store, refresh_store, revoked_store, hasher, codec) -> AccountService:
    return AccountService(
        accounts=account_store,
        refresh_tokens=refresh_store,
        revoked_tokens=revoked_store,
        hasher=hasher,
        access_tokens=codec,
        access_token_ttl=600,
    )


@pytest.fixture
def registered(service: AccountService) -> AccountService:
    """Service with USERNAME / PASSWORD registered as a NORMAL account."""
    outcome = service.register(USERNAME, PASSWORD, name="Kim", email="kim@test.com", bio="hello")
    assert outcome.ok, outcome.error
    return service


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AccountService, engine, codec: JWTCodec):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test service into app.state so routes see an isolated
    database. The purge_task is a long-sleeping coroutine so shutdown can
    cancel a real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.account_service = service
        app.state.token_codec = codec
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app backed by a fresh shared-memory database."""
    from api.main import app

    eng = open_engine(f"sqlite:///file:test_api_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    codec = JWTCodec(TEST_SECRET, expire_seconds=600)
    svc = AccountService(
        accounts=SqlAccountStore(eng),
        refresh_tokens=SqlRefreshTokenStore(eng, ttl_seconds=3600),
        revoked_tokens=SqlRevokedTokenStore(eng),
        hasher=BcryptHasher(rounds=4),
        access_tokens=codec,
        access_token_ttl=600,
    )
    app.router.lifespan_context = _patch_lifespan(svc, eng, codec)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    eng.dispose()

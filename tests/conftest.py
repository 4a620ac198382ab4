"""
tests/conftest.py -- Shared test fixtures for auth service tests.

This module provides:
  - store / hasher / signer / refresh_tokens / service: unit-level fixtures
    over a private in-memory SQLite database
  - _make_test_store(): named shared-memory DB for the HTTP fixtures
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client: (client, token, account_id) over the real FastAPI app
  - _register_and_login(): HTTP helper used to seed the api_client account

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the HTTP fixtures because TestClient runs sync route handlers in a thread
pool. Plain :memory: DBs are per-connection and would present a blank schema
to each worker thread.

DEBUG must be set before any api/ or core/ import so get_settings()
auto-generates SECRET_KEY instead of raising ValueError. BCRYPT_ROUNDS is
dropped to the minimum so the suite does not spend seconds per hash.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any core/api import so Settings picks it up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_auth_service
from auth.hashing import CredentialHasher
from auth.refresh import RefreshTokenStore
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenSigner
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def hasher() -> CredentialHasher:
    return CredentialHasher(rounds=4)


@pytest.fixture
def signer() -> TokenSigner:
    return TokenSigner(secret_key=TEST_SECRET)


@pytest.fixture
def refresh_tokens(store: AccountStore) -> RefreshTokenStore:
    return RefreshTokenStore(store)


@pytest.fixture
def service(
    store: AccountStore,
    hasher: CredentialHasher,
    signer: TokenSigner,
    refresh_tokens: RefreshTokenStore,
) -> AuthService:
    return AuthService(store=store, hasher=hasher, signer=signer, refresh_tokens=refresh_tokens)


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> AccountStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return AccountStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: AccountStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can .cancel() it
    exactly like the real one.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = store
        app.state.auth_service = build_auth_service(get_settings(), store)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, access_token, account_id) bound to a fresh database.

    A seed account (seed@example.com / seedpass123) is registered and logged
    in so tests that only need "some authenticated caller" can use its token
    directly.
    """
    store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        tokens = _register_and_login(client, "Seed", "seed@example.com", "seedpass123")
        account_id = store.get_by_email("seed@example.com").id
        yield client, tokens["access_token"], account_id

    store.close()


def _register_and_login(client: TestClient, name: str, email: str, password: str) -> dict:
    """Register an account over HTTP, log it in, and return the token response body."""
    resp = client.post("/api/v1/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()

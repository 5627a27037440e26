"""
tests/conftest.py -- Shared test fixtures for the identity service tests.

This module provides:
  - make_settings(): explicit test Settings (no .env, no environment reliance)
  - engine / identity_store / session_store: a fresh in-memory DB per test
  - google: a mocked authlib Google client (no network)
  - client: TestClient over create_app(settings) with the mocked Google client

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. A uuid in
the name keeps every test on its own database.
"""

from __future__ import annotations

from collections.abc import Generator
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi.responses import RedirectResponse
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import create_app
from auth.store import IdentityStore, SessionStore, open_engine
from core.config import Settings

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth?client_id=test-client-id"
TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"


def memory_url(name: str) -> str:
    return f"sqlite:///file:{name}_{uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    """Build Settings for tests. Keyword overrides win over the defaults here."""
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "database_url": memory_url("test_auth"),
        "base_url": "http://testserver",
        "rate_limit_enabled": False,
        "google_client_id": "test-client-id.apps.googleusercontent.com",
        "google_client_secret": "test-client-secret",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def google_token(subject: str | None, email: str | None, verified: object = True) -> dict:
    """Shape of authlib's token dict after a successful OIDC code exchange."""
    userinfo: dict = {"email_verified": verified}
    if subject is not None:
        userinfo["sub"] = subject
    if email is not None:
        userinfo["email"] = email
    return {"access_token": "ya29.test", "token_type": "Bearer", "userinfo": userinfo}


def session_cookie_headers(resp) -> list[str]:
    return [h for h in resp.headers.get_list("set-cookie") if h.startswith("mauto.sid=")]


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = open_engine(memory_url("test_store"))
    yield eng
    eng.dispose()


@pytest.fixture
def identity_store(engine: Engine) -> IdentityStore:
    return IdentityStore(engine)


@pytest.fixture
def session_store(engine: Engine) -> SessionStore:
    return SessionStore(engine)


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def google() -> MagicMock:
    """A stand-in for the authlib Google client.

    authorize_redirect and authorize_access_token are the only two calls the
    gateway makes; both are coroutines on the real client.
    """
    client = MagicMock()
    client.authorize_redirect = AsyncMock(return_value=RedirectResponse(GOOGLE_AUTHORIZE_URL, status_code=302))
    client.authorize_access_token = AsyncMock(return_value=google_token("g-1", "a@x.com"))
    return client


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def client(settings: Settings, google: MagicMock) -> Generator[TestClient, None, None]:
    """TestClient over the real app with an isolated DB and mocked Google.

    follow_redirects=False so OAuth tests can assert on Location headers.
    """
    app = create_app(settings)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as tc:
        app.state.gateway.oauth = MagicMock(create_client=MagicMock(return_value=google))
        yield tc

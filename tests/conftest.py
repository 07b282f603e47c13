"""
tests/conftest.py -- Shared test fixtures for LabLIMS unit and integration tests.

This module provides:
  - auth_store / standards_store: plain in-memory stores for unit tests
  - clock: a settable UTC clock injected into TokenCodec / SessionRegistry
  - codec / registry / audit / guard / service: the auth core wired on auth_store
  - make_user: factory that inserts a user with a known password
  - api: module-scoped TestClient with ADMIN, PROFESSOR and TÉCNICO tokens

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the TestClient fixture because route handlers run in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment variables must be set before any api/ import: api.main and
api.limiter read get_settings() at import time.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any api/ or core/ import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.audit import AuditSink
from auth.guard import AuthorizationGuard
from auth.models import Role, User
from auth.service import AuthService
from auth.sessions import SessionRegistry
from auth.store import AuthStore
from auth.tokens import TokenCodec, hash_password
from core.config import get_settings
from standards.store import StandardsStore

TEST_SECRET = "unit-test-secret"
DEFAULT_PASSWORD = "correct-horse-9"

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Unit-test wiring (single thread, plain :memory:)
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_store() -> Generator[AuthStore, None, None]:
    store = AuthStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def standards_store() -> Generator[StandardsStore, None, None]:
    store = StandardsStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(TEST_SECRET, clock=clock)


@pytest.fixture
def registry(auth_store: AuthStore, codec: TokenCodec) -> SessionRegistry:
    return SessionRegistry(auth_store, codec)


@pytest.fixture
def audit(auth_store: AuthStore) -> AuditSink:
    return AuditSink(auth_store)


@pytest.fixture
def guard(registry: SessionRegistry, audit: AuditSink) -> AuthorizationGuard:
    return AuthorizationGuard(registry, audit)


@pytest.fixture
def service(auth_store, registry, audit, guard) -> AuthService:
    return AuthService(auth_store, registry, audit, guard)


@pytest.fixture
def make_user(auth_store: AuthStore):
    """Insert a user and return it (with id). Password defaults to DEFAULT_PASSWORD."""

    def _make(email: str, role: Role = Role.TECNICO, password: str = DEFAULT_PASSWORD, **fields) -> User:
        user = User(email=email, role=role, full_name=fields.pop("full_name", email), **fields)
        user.password_hash = hash_password(password)
        user.id = auth_store.create_user(user)
        return auth_store.get_user_by_id(user.id)

    return _make


# ---------------------------------------------------------------------------
# Integration wiring (TestClient, shared-memory stores)
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    auth_store: AuthStore
    standards_store: StandardsStore
    admin_id: int
    admin_token: str
    professor_id: int
    professor_token: str
    tecnico_id: int
    tecnico_token: str

    def auth(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def login_as(self, email: str, password: str = DEFAULT_PASSWORD) -> str:
        resp = self.client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["token"]

    def create_user(self, email: str, role: Role, password: str = DEFAULT_PASSWORD) -> int:
        user = User(email=email, role=role, full_name=email, password_hash=hash_password(password))
        return self.auth_store.create_user(user)


def _make_test_stores(db_suffix: str) -> tuple[AuthStore, StandardsStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    standards_url = f"sqlite:///file:test_standards_{db_suffix}?mode=memory&cache=shared&uri=true"
    return AuthStore(auth_url), StandardsStore(standards_url)


def _patch_lifespan(auth_store: AuthStore, standards_store: StandardsStore):
    """Return a lifespan that wires the test stores instead of the real database."""

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, auth_store, standards_store, get_settings())
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext with one logged-in user per privileged role.

    Tokens come from real sessions (SessionRegistry.create), so they also
    pass when require_live_session is switched on.
    """
    auth_store, standards_store = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])

    def _seed(email: str, role: Role) -> int:
        return auth_store.create_user(
            User(email=email, role=role, full_name=email, password_hash=hash_password(DEFAULT_PASSWORD))
        )

    admin_id = _seed("admin@lab.test", Role.ADMIN)
    professor_id = _seed("professor@lab.test", Role.PROFESSOR)
    tecnico_id = _seed("tecnico@lab.test", Role.TECNICO)

    app.router.lifespan_context = _patch_lifespan(auth_store, standards_store)

    with TestClient(app, raise_server_exceptions=False) as client:
        sessions: SessionRegistry = app.state.sessions
        _, admin_token = sessions.create(admin_id, "testclient", "pytest")
        _, professor_token = sessions.create(professor_id, "testclient", "pytest")
        _, tecnico_token = sessions.create(tecnico_id, "testclient", "pytest")
        yield ApiContext(
            client=client,
            auth_store=auth_store,
            standards_store=standards_store,
            admin_id=admin_id,
            admin_token=admin_token,
            professor_id=professor_id,
            professor_token=professor_token,
            tecnico_id=tecnico_id,
            tecnico_token=tecnico_token,
        )

    auth_store.close()
    standards_store.close()

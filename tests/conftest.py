"""
tests/conftest.py -- Shared test fixtures for the user service.

This module provides:
  - store: a fresh in-memory UserStore per test
  - FakeClock / clock: a settable clock for time-dependent registry tests
  - make_user(): inserts a user row directly, skipping bcrypt for speed
  - api_client: TestClient wired to an isolated shared-memory store

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

Environment variables must be set before any auth/core/api import:
  DEBUG=true lets get_settings() auto-generate SECRET_KEY;
  ALLOWED_HOSTS admits TestClient's "testserver" host;
  the rate limits are raised so the suite never trips them by accident.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.models import User
from auth.store import UserStore

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


def make_user(store: UserStore, n: int = 1, **overrides) -> User:
    """Insert a user with deterministic unique fields and return the stored record."""
    fields = dict(
        nombre="Ana",
        apellido="Diaz",
        dni=f"{30000000 + n}",
        email=f"user{n}@example.com",
        telefono=None,
        hashed_password="not-a-real-hash",
        cvu=f"{n:022d}",
        alias=f"sol.luna.{'x' * n}",
    )
    fields.update(overrides)
    user_id = store.create_user(User(**fields))
    return store.get_user_by_id(user_id)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: UserStore):
    """Return a lifespan that wires the given test store instead of the real DB.

    No purge task is started: tests call purge_expired() explicitly.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, store)
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient backed by a private shared-memory database.

    Function-scoped so every test starts from an empty user table; the DB name
    carries a uuid so parallel or repeated runs never share state.
    """
    db_url = f"sqlite:///file:test_api_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    store = UserStore(db_url=db_url)
    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    store.close()


ANA = {
    "nombre": "Ana",
    "apellido": "Diaz",
    "dni": "30111222",
    "email": "ana@x.com",
    "telefono": "+5491122223333",
    "password": "secret123",
}

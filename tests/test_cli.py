"""
tests/test_cli.py -- Tests for the admin CLI in main.py.

Each command opens its own UserStore, so the tests share state through a
SQLite file under tmp_path rather than an in-memory database.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import make_user

from auth.sessions import SessionRegistry
from auth.store import UserStore
from main import main


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def seeded(db_url):
    """A user with one live and one already-expired session."""
    store = UserStore(db_url)
    user = make_user(store)
    registry = SessionRegistry(store)
    now = registry.now()
    registry.create(user, "a" * 64, now + timedelta(hours=1), user_agent="Mozilla/5.0 Firefox/120.0")
    registry.create(user, "b" * 64, now - timedelta(minutes=1))
    store.close()
    return user


def _reopen(db_url) -> UserStore:
    return UserStore(db_url)


def test_purge_sessions(db_url, seeded, capsys) -> None:
    assert main(["--database-url", db_url, "purge-sessions"]) == 0
    assert "Removed 1 expired session(s)" in capsys.readouterr().out

    store = _reopen(db_url)
    assert store.get_session_by_hash("a" * 64) is not None
    assert store.get_session_by_hash("b" * 64) is None
    store.close()


def test_sessions_lists_only_valid(db_url, seeded, capsys) -> None:
    assert main(["--database-url", db_url, "sessions", seeded.email]) == 0
    out = capsys.readouterr().out
    assert "1 valid session(s)" in out
    assert "Firefox" in out
    assert "a" * 64 not in out


def test_logout_all(db_url, seeded, capsys) -> None:
    assert main(["--database-url", db_url, "logout-all", seeded.email]) == 0
    # The expired row was never logged out, so it is switched off too.
    assert "Invalidated 2 session(s)" in capsys.readouterr().out

    store = _reopen(db_url)
    assert store.get_session_by_hash("a" * 64).is_active is False
    store.close()


def test_deactivate_then_activate(db_url, seeded) -> None:
    assert main(["--database-url", db_url, "deactivate", seeded.email]) == 0
    store = _reopen(db_url)
    assert store.get_user_by_id(seeded.id).activo is False
    assert store.get_session_by_hash("a" * 64).is_active is False
    store.close()

    assert main(["--database-url", db_url, "activate", seeded.email]) == 0
    store = _reopen(db_url)
    assert store.get_user_by_id(seeded.id).activo is True
    store.close()


def test_unknown_email_exits_nonzero(db_url, seeded, capsys) -> None:
    assert main(["--database-url", db_url, "deactivate", "nobody@x.com"]) == 1
    assert "No user registered" in capsys.readouterr().out


def test_no_command_prints_help(db_url, capsys) -> None:
    assert main(["--database-url", db_url]) == 2
    assert "purge-sessions" in capsys.readouterr().out

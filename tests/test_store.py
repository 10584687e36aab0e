"""Unit tests for auth/store.py -- the persistence boundary.

Covers:
- UNIQUE constraints on email, dni, cvu, alias and token_hash
- created_at set once; updated_at moves on every user mutation
- update_user() rejects unknown or immutable fields
- infrastructure errors surface as StorageUnavailable; IntegrityError passes through
- datetimes come back timezone-aware UTC
"""

from datetime import timedelta, timezone

import pytest
from conftest import T0, make_user
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import StorageUnavailable
from auth.models import Session
from auth.store import UserStore


class TestUniqueness:
    @pytest.mark.parametrize(
        "field,value",
        [
            ("email", "user1@example.com"),
            ("dni", "30000001"),
            ("cvu", f"{1:022d}"),
            ("alias", "sol.luna.x"),
        ],
    )
    def test_unique_user_columns(self, store: UserStore, field: str, value: str) -> None:
        make_user(store, 1)
        with pytest.raises(IntegrityError):
            make_user(store, 2, **{field: value})
        assert store.count_users() == 1

    def test_unique_token_hash(self, store: UserStore) -> None:
        user = make_user(store)
        store.create_session(Session(user_id=user.id, token_hash="h" * 64, expires_at=T0))
        with pytest.raises(IntegrityError):
            store.create_session(Session(user_id=user.id, token_hash="h" * 64, expires_at=T0))

    def test_exists_helpers(self, store: UserStore) -> None:
        user = make_user(store)
        assert store.email_exists(user.email)
        assert store.dni_exists(user.dni)
        assert store.cvu_exists(user.cvu)
        assert store.alias_exists(user.alias)
        assert not store.email_exists("missing@example.com")
        assert not store.dni_exists("99999999")


class TestTimestamps:
    def test_created_at_fixed_updated_at_moves(self, store: UserStore) -> None:
        user = make_user(store)
        assert user.created_at == user.updated_at
        assert user.created_at.tzinfo is not None

        stamped = store.update_user(user.id, telefono="+5491100000000")
        reloaded = store.get_user_by_id(user.id)

        assert reloaded.created_at == user.created_at
        assert reloaded.updated_at == stamped
        assert reloaded.updated_at >= user.updated_at
        assert reloaded.telefono == "+5491100000000"

    def test_created_at_cannot_be_updated(self, store: UserStore) -> None:
        user = make_user(store)
        with pytest.raises(ValueError):
            store.update_user(user.id, created_at=T0)

    def test_update_missing_user_returns_none(self, store: UserStore) -> None:
        assert store.update_user(12345, activo=False) is None

    def test_session_datetimes_round_trip_as_utc(self, store: UserStore) -> None:
        user = make_user(store)
        local = T0.astimezone(timezone(timedelta(hours=-3)))
        store.create_session(
            Session(user_id=user.id, token_hash="z" * 64, created_at=local, expires_at=local + timedelta(hours=1))
        )
        stored = store.get_session_by_hash("z" * 64)
        assert stored.created_at == T0
        assert stored.expires_at == T0 + timedelta(hours=1)
        assert stored.expires_at.utcoffset() == timedelta(0)


class TestFailures:
    def test_operational_error_becomes_storage_unavailable(self, store: UserStore, monkeypatch) -> None:
        def down():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(store.engine, "connect", down)

        with pytest.raises(StorageUnavailable) as excinfo:
            store.get_user_by_email("ana@x.com")
        assert isinstance(excinfo.value.__cause__, OperationalError)
        assert "locked" not in str(excinfo.value)

    def test_ping(self, store: UserStore, monkeypatch) -> None:
        assert store.ping() is True

        def down():
            raise OperationalError("SELECT 1", {}, Exception("gone"))

        monkeypatch.setattr(store.engine, "connect", down)
        assert store.ping() is False

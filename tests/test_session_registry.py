"""
tests/test_session_registry.py -- Unit tests for auth/sessions.py.

Covers:
  - create(): persists an active session; duplicate fingerprint rejected
  - is_valid(): recomputed from the clock, flips exactly at expires_at
  - invalidate(): idempotent
  - invalidate_all_for_user(): snapshot cutoff; other users untouched
  - purge_expired(): removes exactly the rows past expiry, active or not
  - remaining_minutes(), active_sessions_for(), describe_device()

Time is driven by FakeClock, so no test sleeps.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import FakeClock, make_user

from auth.errors import DuplicateTokenHash
from auth.models import Session
from auth.sessions import SessionRegistry, describe_device
from auth.store import UserStore


@pytest.fixture
def registry(store: UserStore, clock: FakeClock) -> SessionRegistry:
    return SessionRegistry(store, clock=clock)


class TestCreate:
    def test_create_persists_active_session(self, store: UserStore, registry: SessionRegistry, clock) -> None:
        user = make_user(store)
        expires = clock() + timedelta(hours=1)
        session = registry.create(user, "a" * 64, expires, ip_address="10.0.0.1", user_agent="Firefox/120")

        assert session.id is not None
        stored = registry.find_by_token_hash("a" * 64)
        assert stored is not None
        assert stored.user_id == user.id
        assert stored.is_active is True
        assert stored.created_at == clock()
        assert stored.expires_at == expires
        assert stored.ip_address == "10.0.0.1"
        assert stored.user_agent == "Firefox/120"

    def test_duplicate_token_hash_rejected(self, store: UserStore, registry: SessionRegistry, clock) -> None:
        user = make_user(store)
        other = make_user(store, 2)
        registry.create(user, "b" * 64, clock() + timedelta(hours=1))

        with pytest.raises(DuplicateTokenHash):
            registry.create(other, "b" * 64, clock() + timedelta(hours=2))

        # The original session is untouched.
        stored = registry.find_by_token_hash("b" * 64)
        assert stored.user_id == user.id

    def test_duplicate_caught_by_unique_index_when_precheck_races(
        self, store: UserStore, registry: SessionRegistry, clock, monkeypatch
    ) -> None:
        """If another writer inserts between the pre-check and the INSERT, the index still rejects it."""
        user = make_user(store)
        registry.create(user, "c" * 64, clock() + timedelta(hours=1))
        monkeypatch.setattr(store, "token_hash_exists", lambda _h: False)

        with pytest.raises(DuplicateTokenHash):
            registry.create(user, "c" * 64, clock() + timedelta(hours=1))

    def test_find_missing_returns_none(self, registry: SessionRegistry) -> None:
        assert registry.find_by_token_hash("0" * 64) is None

    def test_long_audit_fields_are_truncated(self, store: UserStore, registry: SessionRegistry, clock) -> None:
        user = make_user(store)
        session = registry.create(user, "d" * 64, clock() + timedelta(hours=1), user_agent="x" * 900)
        assert len(session.user_agent) == 500
        assert len(registry.find_by_token_hash("d" * 64).user_agent) == 500


class TestValidity:
    def test_is_valid_flips_at_expiry_without_any_call(
        self, store: UserStore, registry: SessionRegistry, clock: FakeClock
    ) -> None:
        user = make_user(store)
        session = registry.create(user, "e" * 64, clock() + timedelta(minutes=30))

        assert registry.is_valid(session) is True
        clock.advance(minutes=29, seconds=59)
        assert registry.is_valid(session) is True
        clock.advance(seconds=1)  # now == expires_at: no longer strictly before
        assert registry.is_valid(session) is False

    def test_naive_expiry_is_taken_as_utc(self, store: UserStore, registry: SessionRegistry, clock: FakeClock) -> None:
        user = make_user(store)
        naive = (clock() + timedelta(hours=1)).replace(tzinfo=None)
        session = registry.create(user, "n" * 64, naive)

        assert session.expires_at == clock() + timedelta(hours=1)
        assert registry.is_valid(session) is True
        assert registry.remaining_minutes(session) == 60
        clock.advance(hours=1)
        assert registry.is_valid(session) is False

    def test_inactive_session_is_not_valid(self, store: UserStore, registry: SessionRegistry, clock) -> None:
        user = make_user(store)
        session = registry.create(user, "f" * 64, clock() + timedelta(hours=1))
        registry.invalidate(session)
        assert registry.is_valid(session) is False
        assert registry.is_valid(registry.find_by_token_hash("f" * 64)) is False

    def test_find_valid_by_token_hash(self, store: UserStore, registry: SessionRegistry, clock: FakeClock) -> None:
        user = make_user(store)
        registry.create(user, "1" * 64, clock() + timedelta(minutes=5))
        assert registry.find_valid_by_token_hash("1" * 64) is not None
        clock.advance(minutes=5)
        assert registry.find_valid_by_token_hash("1" * 64) is None
        # The plain lookup still finds it until the purge removes it.
        assert registry.find_by_token_hash("1" * 64) is not None

    def test_remaining_minutes(self, store: UserStore, registry: SessionRegistry, clock: FakeClock) -> None:
        user = make_user(store)
        session = registry.create(user, "2" * 64, clock() + timedelta(minutes=90, seconds=30))
        assert registry.remaining_minutes(session) == 90
        assert registry.remaining_minutes(session, now=clock() + timedelta(minutes=89, seconds=31)) == 0
        clock.advance(hours=3)
        assert registry.remaining_minutes(session) == 0


class TestInvalidate:
    def test_invalidate_is_idempotent(self, store: UserStore, registry: SessionRegistry, clock) -> None:
        user = make_user(store)
        session = registry.create(user, "3" * 64, clock() + timedelta(hours=1))

        registry.invalidate(session)
        assert session.is_active is False
        registry.invalidate(session)  # second call: no error
        assert session.is_active is False
        assert registry.find_by_token_hash("3" * 64).is_active is False

    def test_invalidate_all_respects_snapshot(
        self, store: UserStore, registry: SessionRegistry, clock: FakeClock
    ) -> None:
        user = make_user(store)
        expires = clock() + timedelta(hours=8)
        early = registry.create(user, "4" * 64, expires)
        clock.advance(seconds=10)
        also_early = registry.create(user, "5" * 64, expires)

        snapshot = clock()
        clock.advance(microseconds=1)
        late = registry.create(user, "6" * 64, expires)

        count = registry.invalidate_all_for_user(user, snapshot=snapshot)

        assert count == 2
        assert registry.find_by_token_hash(early.token_hash).is_active is False
        assert registry.find_by_token_hash(also_early.token_hash).is_active is False
        assert registry.find_by_token_hash(late.token_hash).is_active is True
        assert [s.id for s in registry.active_sessions_for(user)] == [late.id]

    def test_session_created_at_snapshot_instant_is_cut_off(
        self, store: UserStore, registry: SessionRegistry, clock: FakeClock
    ) -> None:
        user = make_user(store)
        session = registry.create(user, "7" * 64, clock() + timedelta(hours=1))
        assert registry.invalidate_all_for_user(user, snapshot=session.created_at) == 1

    def test_invalidate_all_defaults_to_now(self, store: UserStore, registry: SessionRegistry, clock) -> None:
        user = make_user(store)
        for i in range(3):
            registry.create(user, f"{i}".ljust(64, "a"), clock() + timedelta(hours=1))
        assert registry.invalidate_all_for_user(user) == 3
        assert registry.active_sessions_for(user) == []
        # Already inactive sessions are not counted a second time.
        assert registry.invalidate_all_for_user(user) == 0

    def test_sweep_between_stamp_and_insert_revokes_new_session(
        self, store: UserStore, registry: SessionRegistry, clock: FakeClock, monkeypatch
    ) -> None:
        """A logout-everywhere that finishes while a login is mid-create still wins."""
        user = make_user(store)
        snapshot = clock() + timedelta(seconds=1)
        real_create_session = store.create_session
        swept: list[int] = []

        def sweep_then_insert(session):
            swept.append(registry.invalidate_all_for_user(user, snapshot=snapshot))
            return real_create_session(session)

        monkeypatch.setattr(store, "create_session", sweep_then_insert)
        session = registry.create(user, "r" * 64, clock() + timedelta(hours=1))

        assert swept == [0]
        assert session.created_at <= snapshot
        assert session.is_active is False
        assert registry.find_by_token_hash("r" * 64).is_active is False
        assert registry.active_sessions_for(user) == []

    def test_sweep_after_insert_catches_new_session(
        self, store: UserStore, registry: SessionRegistry, clock: FakeClock, monkeypatch
    ) -> None:
        user = make_user(store)
        real_create_session = store.create_session

        def insert_then_sweep(session):
            session_id = real_create_session(session)
            assert registry.invalidate_all_for_user(user, snapshot=clock()) == 1
            return session_id

        monkeypatch.setattr(store, "create_session", insert_then_sweep)
        session = registry.create(user, "s" * 64, clock() + timedelta(hours=1))

        assert session.is_active is False
        assert registry.find_by_token_hash("s" * 64).is_active is False

    def test_login_after_sweep_is_unaffected(
        self, store: UserStore, registry: SessionRegistry, clock: FakeClock
    ) -> None:
        user = make_user(store)
        registry.invalidate_all_for_user(user)
        clock.advance(microseconds=1)
        session = registry.create(user, "t" * 64, clock() + timedelta(hours=1))
        assert session.is_active is True
        assert registry.is_valid(registry.find_by_token_hash("t" * 64)) is True

    def test_earlier_snapshot_never_lowers_the_mark(
        self, store: UserStore, registry: SessionRegistry, clock: FakeClock
    ) -> None:
        user = make_user(store)
        later = clock() + timedelta(minutes=5)
        registry.invalidate_all_for_user(user, snapshot=later)
        registry.invalidate_all_for_user(user, snapshot=clock())
        assert store.sessions_revoked_up_to(user.id) == later

    def test_invalidate_all_leaves_other_users_alone(
        self, store: UserStore, registry: SessionRegistry, clock
    ) -> None:
        alice = make_user(store, 1)
        bob = make_user(store, 2)
        registry.create(alice, "8" * 64, clock() + timedelta(hours=1))
        bob_session = registry.create(bob, "9" * 64, clock() + timedelta(hours=1))

        registry.invalidate_all_for_user(alice)

        assert registry.is_valid(registry.find_by_token_hash(bob_session.token_hash)) is True


class TestPurge:
    def test_purge_removes_only_rows_before_cutoff(
        self, store: UserStore, registry: SessionRegistry, clock: FakeClock
    ) -> None:
        user = make_user(store)
        t = clock()
        expired_active = registry.create(user, "p1".ljust(64, "0"), t - timedelta(minutes=1))
        expired_inactive = registry.create(user, "p2".ljust(64, "0"), t - timedelta(hours=2))
        registry.invalidate(expired_inactive)
        at_cutoff = registry.create(user, "p3".ljust(64, "0"), t)
        future_inactive = registry.create(user, "p4".ljust(64, "0"), t + timedelta(hours=1))
        registry.invalidate(future_inactive)
        future_active = registry.create(user, "p5".ljust(64, "0"), t + timedelta(hours=1))

        removed = registry.purge_expired(t)

        assert removed == 2
        assert registry.find_by_token_hash(expired_active.token_hash) is None
        assert registry.find_by_token_hash(expired_inactive.token_hash) is None
        assert registry.find_by_token_hash(at_cutoff.token_hash) is not None
        kept_inactive = registry.find_by_token_hash(future_inactive.token_hash)
        assert kept_inactive is not None and kept_inactive.is_active is False
        assert registry.find_by_token_hash(future_active.token_hash).is_active is True

    def test_purge_defaults_to_clock(self, store: UserStore, registry: SessionRegistry, clock: FakeClock) -> None:
        user = make_user(store)
        registry.create(user, "q" * 64, clock() + timedelta(minutes=1))
        assert registry.purge_expired() == 0
        clock.advance(minutes=2)
        assert registry.purge_expired() == 1


class TestDescribeDevice:
    @pytest.mark.parametrize(
        ("user_agent", "expected"),
        [
            (None, "Unknown device"),
            ("", "Unknown device"),
            ("Mozilla/5.0 (X11) AppleWebKit/537.36 Chrome/120.0 Safari/537.36", "Chrome"),
            ("Mozilla/5.0 (X11; rv:120.0) Gecko/20100101 Firefox/120.0", "Firefox"),
            ("Mozilla/5.0 (Macintosh) AppleWebKit/605.1.15 Version/17.0 Safari/605.1.15", "Safari"),
            ("SomeApp/1.0 Mobile", "Mobile device"),
            ("curl/8.4.0", "Unknown browser"),
        ],
    )
    def test_classification(self, user_agent, expected, clock) -> None:
        session = Session(user_id=1, token_hash="x", expires_at=clock(), user_agent=user_agent)
        assert describe_device(session) == expected
